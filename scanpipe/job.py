"""Immutable scan job description and the layered sources it is built from.

Precedence, highest first: command line, per-device config file, global
config file, built-in defaults. Config files hold ``KEY=value`` lines and
are read with python-dotenv, so quoting and comments behave the same way
as in `.env` files.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import re
from typing import Any, Final

from dotenv import dotenv_values

from scanpipe.errors import ConfigurationError
from scanpipe.layout import Layout
from scanpipe.utils.log_utils import logger


UNBOUNDED: Final = 0

GLOBAL_CONFIG_NAME = "scanpipe.conf"
DEVICE_CONFIG_DIR = "devices"


class ScanMode(str, Enum):
    LINEART = "lineart"
    GRAY = "gray"
    COLOR = "color"

    @property
    def scanner_name(self) -> str:
        return {"lineart": "Lineart", "gray": "Gray", "color": "Color"}[self.value]


class DuplexMode(str, Enum):
    NONE = "none"
    ADF = "adf"
    MANUAL = "manual"


# Portrait page formats in millimetres (width, height).
PAGE_SIZES: dict[str, tuple[float, float]] = {
    "a4": (210.0, 297.0),
    "a5": (148.0, 210.0),
    "a6": (105.0, 148.0),
    "b5": (176.0, 250.0),
    "letter": (215.9, 279.4),
    "legal": (215.9, 355.6),
}

_CUSTOM_SIZE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*x\s*(\d+(?:\.\d+)?)\s*$", re.IGNORECASE)


def parse_page_size(value: str) -> tuple[float, float]:
    """Resolve a named format (``a4``) or a ``WIDTHxHEIGHT`` string in mm."""
    key = value.strip().lower()
    if key in PAGE_SIZES:
        return PAGE_SIZES[key]
    match = _CUSTOM_SIZE.match(key)
    if not match:
        known = ", ".join(sorted(PAGE_SIZES))
        raise ConfigurationError(
            f"Unknown page size '{value}'. Use one of {known} or WIDTHxHEIGHT in mm."
        )
    return float(match.group(1)), float(match.group(2))


@dataclass(frozen=True)
class DeviceProfile:
    """Capabilities of one scanner as declared in its config file."""

    max_width: float = 215.9
    max_height: float = 355.6
    flatbed_source: str = "Flatbed"
    adf_source: str = "ADF"
    duplex_source: str | None = "ADF Duplex"


@dataclass(frozen=True)
class OutputTarget:
    path: Path
    directory: bool = False
    force: bool = False


@dataclass(frozen=True)
class ScanArea:
    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class ScanJob:
    """Everything a run needs, fixed before the first tool starts."""

    output: OutputTarget
    device: str | None = None
    resolution: int = 300
    mode: ScanMode = ScanMode.LINEART
    size: str = "a4"
    layout: Layout = Layout.SINGLE
    duplex: DuplexMode = DuplexMode.NONE
    rotate: int = 0
    pages: int = UNBOUNDED
    documents: int = 1
    center: bool = False
    offset: float = 0.0
    blank: bool = False
    adf: bool = True
    profile: DeviceProfile = field(default_factory=DeviceProfile)

    @property
    def pages_unbounded(self) -> bool:
        return self.pages == UNBOUNDED

    @property
    def documents_unbounded(self) -> bool:
        return self.documents == UNBOUNDED

    @property
    def page_size(self) -> tuple[float, float]:
        return parse_page_size(self.size)

    def scan_area(self) -> ScanArea:
        """Scanner geometry in mm for one capture.

        ``size`` is the physical area the scanner reads. The double layouts
        split that capture into two halves afterwards.
        """
        width, height = self.page_size
        left = (self.profile.max_width - width) / 2 if self.center else 0.0
        return ScanArea(left=left, top=self.offset, width=width, height=height)

    @property
    def source(self) -> str:
        if self.duplex is DuplexMode.ADF:
            return self.profile.duplex_source or self.profile.adf_source
        return self.profile.adf_source if self.adf else self.profile.flatbed_source


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_device(value: str) -> str | None:
    return value.strip() or None


_JOB_FIELDS: dict[str, Callable[[str], Any]] = {
    "device": _parse_device,
    "resolution": int,
    "mode": lambda value: ScanMode(value.strip().lower()),
    "size": lambda value: value.strip().lower(),
    "layout": lambda value: Layout(value.strip().lower()),
    "duplex": lambda value: DuplexMode(value.strip().lower()),
    "rotate": int,
    "pages": int,
    "documents": int,
    "center": _parse_bool,
    "offset": float,
    "blank": _parse_bool,
    "adf": _parse_bool,
}

_PROFILE_FIELDS: dict[str, Callable[[str], Any]] = {
    "max_width": float,
    "max_height": float,
    "flatbed_source": str,
    "adf_source": str,
    "duplex_source": lambda value: value.strip() or None,
}


def device_config_path(config_dir: Path, device: str) -> Path:
    """Location of the per-device config for ``device``."""
    safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", device).strip("_")
    return config_dir / DEVICE_CONFIG_DIR / f"{safe_name}.conf"


def read_config_file(
    path: Path, *, allowed: Mapping[str, Callable[[str], Any]]
) -> dict[str, Any]:
    """Parse a ``KEY=value`` file into typed values keyed by lowercase name.

    Missing files yield an empty mapping. Unknown keys are ignored with a
    warning; values that do not parse raise `ConfigurationError`.
    """
    if not path.is_file():
        return {}

    parsed: dict[str, Any] = {}
    for raw_key, raw_value in dotenv_values(path).items():
        key = raw_key.strip().lower()
        if key not in allowed:
            logger.warning(f"Ignoring unknown key '{raw_key}' in {path}")
            continue
        try:
            parsed[key] = allowed[key](raw_value or "")
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value for {raw_key} in {path}: {exc}") from exc
    logger.debug(f"Loaded {len(parsed)} setting(s) from {path}")
    return parsed


def build_job(
    cli: Mapping[str, Any],
    output: OutputTarget,
    *,
    config_dir: Path,
) -> ScanJob:
    """Merge defaults, config files and command-line values into a job.

    ``cli`` maps job field names to values; ``None`` means "not given".
    """
    unknown = set(cli) - set(_JOB_FIELDS)
    if unknown:
        raise ConfigurationError(f"Unknown job option(s): {', '.join(sorted(unknown))}")

    global_values = read_config_file(config_dir / GLOBAL_CONFIG_NAME, allowed=_JOB_FIELDS)
    cli_values = {key: value for key, value in cli.items() if value is not None}

    device = cli_values.get("device") or global_values.get("device")
    device_values: dict[str, Any] = {}
    profile_values: dict[str, Any] = {}
    if device:
        device_file = device_config_path(config_dir, device)
        raw_device = read_config_file(device_file, allowed={**_JOB_FIELDS, **_PROFILE_FIELDS})
        profile_values = {k: v for k, v in raw_device.items() if k in _PROFILE_FIELDS}
        # A device file describes one device; it cannot redirect to another.
        device_values = {
            k: v for k, v in raw_device.items() if k in _JOB_FIELDS and k != "device"
        }

    merged: dict[str, Any] = {}
    for source in (global_values, device_values, cli_values):
        merged.update(source)
    merged["device"] = device

    return ScanJob(output=output, profile=DeviceProfile(**profile_values), **merged)


def validate_job(job: ScanJob) -> None:
    """Reject jobs that cannot run, before anything touches the scanner."""
    if job.pages < 0 or job.documents < 0:
        raise ConfigurationError("Page and document counts must not be negative.")
    if job.pages_unbounded and job.documents_unbounded:
        raise ConfigurationError(
            "Pages and documents cannot both be unbounded; set --pages or --documents."
        )
    if job.pages_unbounded and job.duplex is not DuplexMode.NONE:
        raise ConfigurationError("Duplex scanning needs a fixed page count per document.")
    if not job.pages_unbounded and job.pages % 2:
        if job.blank:
            raise ConfigurationError(
                f"Blank-page removal needs an even page count, got {job.pages}."
            )
        if job.duplex is not DuplexMode.NONE:
            raise ConfigurationError(f"Duplex scanning needs an even page count, got {job.pages}.")
        if job.layout is Layout.DOUBLE_FOLDED:
            raise ConfigurationError(
                f"Folded layout needs both faces of every sheet, got {job.pages} pages."
            )
    if job.blank and job.layout is Layout.DOUBLE_FOLDED:
        raise ConfigurationError("Blank-page removal is not supported with the folded layout.")
    if job.resolution <= 0:
        raise ConfigurationError(f"Resolution must be positive, got {job.resolution}.")
    if not 0 <= job.rotate < 360:
        raise ConfigurationError(f"Rotation must be within [0, 360), got {job.rotate}.")
    if job.offset < 0:
        raise ConfigurationError(f"Vertical offset must not be negative, got {job.offset}.")
    if job.duplex is DuplexMode.ADF and not job.profile.duplex_source:
        raise ConfigurationError(f"Device {job.device or '(default)'} cannot scan duplex.")
    if job.duplex is not DuplexMode.NONE and not job.adf:
        raise ConfigurationError("Duplex scanning requires the document feeder.")

    area = job.scan_area()
    if area.width <= 0 or area.height <= 0:
        raise ConfigurationError(f"Invalid page size '{job.size}'.")
    if area.left < 0 or area.left + area.width > job.profile.max_width:
        raise ConfigurationError(
            f"Scan size {job.size} needs {area.width:.1f} mm width; "
            f"device allows {job.profile.max_width:.1f} mm."
        )
    if area.top + area.height > job.profile.max_height:
        raise ConfigurationError(
            f"Scan size {job.size} needs {area.top + area.height:.1f} mm "
            f"height; device allows {job.profile.max_height:.1f} mm."
        )


__all__ = [
    "DeviceProfile",
    "DuplexMode",
    "OutputTarget",
    "PAGE_SIZES",
    "ScanArea",
    "ScanJob",
    "ScanMode",
    "UNBOUNDED",
    "build_job",
    "device_config_path",
    "parse_page_size",
    "read_config_file",
    "validate_job",
]
