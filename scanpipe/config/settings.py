"""Centralised environment configuration for scanpipe.

This module ensures `.env` loading happens in one place and exposes a
typed snapshot of tool locations, scheduling thresholds, and storage
paths. Downstream modules call `get_settings()` instead of touching
`os.environ` directly, which keeps overrides easy in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import os
from pathlib import Path

from dotenv import load_dotenv


_DEFAULT_ENV_PATH = Path.cwd() / ".env"
_DEFAULT_CONFIG_DIR = Path("~/.config/scanpipe")


def _coerce_int(value: str | None, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _coerce_float(value: str | None, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class ToolSettings:
    scanimage: str
    unpaper: str
    tiffcp: str
    tiff2pdf: str


@dataclass(frozen=True)
class SchedulingSettings:
    memory_threshold: float
    poll_interval: float
    low_memory_kib: int


@dataclass(frozen=True)
class ScanPipeSettings:
    """Top-level snapshot of configuration values."""

    env_file: Path
    config_dir: Path
    tmp_dir: Path | None
    jpeg_quality: int
    tools: ToolSettings
    scheduling: SchedulingSettings


def _resolve_env_path(env_file: os.PathLike[str] | str | None) -> Path:
    if env_file is None:
        return _DEFAULT_ENV_PATH
    return Path(env_file).resolve()


@lru_cache(maxsize=4)
def _load_settings(env_path: Path) -> ScanPipeSettings:
    # Existing environment variables take precedence over `.env` defaults.
    load_dotenv(dotenv_path=env_path, override=False)

    tools = ToolSettings(
        scanimage=os.getenv("SCANPIPE_SCANIMAGE", "scanimage"),
        unpaper=os.getenv("SCANPIPE_UNPAPER", "unpaper"),
        tiffcp=os.getenv("SCANPIPE_TIFFCP", "tiffcp"),
        tiff2pdf=os.getenv("SCANPIPE_TIFF2PDF", "tiff2pdf"),
    )
    scheduling = SchedulingSettings(
        memory_threshold=_coerce_float(os.getenv("SCANPIPE_MEMORY_THRESHOLD"), 30.0),
        poll_interval=_coerce_float(os.getenv("SCANPIPE_POLL_INTERVAL"), 2.0),
        low_memory_kib=_coerce_int(os.getenv("SCANPIPE_LOW_MEMORY_KIB"), 512000),
    )

    tmp_dir = os.getenv("SCANPIPE_TMPDIR")
    return ScanPipeSettings(
        env_file=env_path,
        config_dir=Path(os.getenv("SCANPIPE_CONFIG_DIR") or _DEFAULT_CONFIG_DIR).expanduser(),
        tmp_dir=Path(tmp_dir).expanduser() if tmp_dir else None,
        jpeg_quality=_coerce_int(os.getenv("SCANPIPE_JPEG_QUALITY"), 85),
        tools=tools,
        scheduling=scheduling,
    )


def get_settings(
    env_file: os.PathLike[str] | str | None = None,
    *,
    reload: bool = False,
) -> ScanPipeSettings:
    """Return the cached settings snapshot.

    Args:
        env_file: Optional explicit path to a `.env` file. When omitted the
            `.env` file of the current working directory is used.
        reload: When True the cached snapshot is cleared before loading.
    """
    env_path = _resolve_env_path(env_file)
    if reload:
        _load_settings.cache_clear()
    return _load_settings(env_path)
