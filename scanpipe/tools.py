"""Command lines for the external scanning and imaging tools.

Builders are pure so they can be checked in tests; `run_tool` is the only
place that starts a process.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
import subprocess

from scanpipe.config.settings import ToolSettings
from scanpipe.errors import ToolError
from scanpipe.job import ScanJob, ScanMode
from scanpipe.layout import Layout
from scanpipe.utils.log_utils import logger


RAW_PAGE_TEMPLATE = "raw-%03d.pnm"
STDERR_TAIL = 2000

# Per-mode cleanup filters; halftone filters damage photographic pages.
_CLEANUP_MODE_FLAGS: dict[ScanMode, tuple[str, ...]] = {
    ScanMode.LINEART: (),
    ScanMode.GRAY: ("--no-blackfilter", "--no-noisefilter", "--no-blurfilter"),
    ScanMode.COLOR: (
        "--no-blackfilter",
        "--no-noisefilter",
        "--no-blurfilter",
        "--no-grayfilter",
    ),
}


@dataclass(frozen=True)
class BatchScheme:
    """Numbering of one scanner batch; ``count=None`` scans until empty."""

    start: int = 1
    increment: int = 1
    count: int | None = None

    def index(self, position: int) -> int:
        return self.start + position * self.increment


def raw_page_path(workdir: Path, index: int) -> Path:
    return workdir / (RAW_PAGE_TEMPLATE % index)


def scan_command(
    job: ScanJob, tools: ToolSettings, workdir: Path, scheme: BatchScheme
) -> list[str]:
    area = job.scan_area()
    command = [tools.scanimage]
    if job.device:
        command += ["-d", job.device]
    command += [
        "--resolution",
        str(job.resolution),
        "--mode",
        job.mode.scanner_name,
        "--source",
        job.source,
        "-l",
        f"{area.left:g}",
        "-t",
        f"{area.top:g}",
        "-x",
        f"{area.width:g}",
        "-y",
        f"{area.height:g}",
        "--format=pnm",
        f"--batch={workdir / RAW_PAGE_TEMPLATE}",
        f"--batch-start={scheme.start}",
        f"--batch-increment={scheme.increment}",
    ]
    if scheme.count is not None:
        command.append(f"--batch-count={scheme.count}")
    if not job.adf:
        # Flatbed: the operator places each page and confirms.
        command.append("--batch-prompt")
    return command


def list_devices_command(tools: ToolSettings) -> list[str]:
    return [tools.scanimage, "-L"]


def cleanup_command(
    job: ScanJob,
    tools: ToolSettings,
    source: Path,
    outputs: Sequence[Path],
    *,
    pre_rotation: int = 0,
    low_memory: bool = False,
) -> list[str]:
    """Deskew/crop invocation emitting one side per entry of ``outputs``."""
    expected = job.layout.sides
    if len(outputs) != expected:
        raise ValueError(f"{job.layout.value} layout emits {expected} side(s), got {len(outputs)}")

    command = [
        tools.unpaper,
        "--overwrite",
        "--dpi",
        str(job.resolution),
        "--layout",
        job.layout.cleanup_layout,
        "--output-pages",
        str(expected),
    ]
    if pre_rotation:
        command += ["--pre-rotate", str(pre_rotation)]
    if low_memory:
        command.append("--no-qpixels")
    command += _CLEANUP_MODE_FLAGS[job.mode]
    if job.layout is Layout.DOUBLE_FOLDED:
        # The fold sits on the seam between the sides; keep it out of the masks.
        command.append("--no-mask-center")
    command.append(str(source))
    command += [str(path) for path in outputs]
    return command


def concat_command(tools: ToolSettings, pages: Sequence[Path], output: Path) -> list[str]:
    return [tools.tiffcp, *(str(page) for page in pages), str(output)]


def encode_command(
    tools: ToolSettings, mode: ScanMode, source: Path, output: Path, *, jpeg_quality: int
) -> list[str]:
    if mode is ScanMode.LINEART:
        compression = ["-z"]
    else:
        compression = ["-j", "-q", str(jpeg_quality)]
    return [tools.tiff2pdf, *compression, "-o", str(output), str(source)]


def run_tool(
    command: Sequence[str],
    *,
    outputs: Sequence[Path] = (),
    error: type[ToolError] = ToolError,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Run ``command`` and verify it produced ``outputs``.

    Raises ``error`` on a non-zero exit (unless ``check`` is False) or when
    a declared output is missing.
    """
    logger.debug(f"Running: {' '.join(command)}")
    try:
        proc = subprocess.run(list(command), capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise error(f"{command[0]} is not installed or not on PATH", command=command) from exc

    if proc.returncode != 0 and check:
        stderr = proc.stderr.strip()[-STDERR_TAIL:]
        raise error(
            f"{Path(command[0]).name} failed with exit code {proc.returncode}: {stderr}",
            command=command,
            returncode=proc.returncode,
            stderr=stderr,
        )

    missing = [path for path in outputs if not path.exists()]
    if missing:
        raise error(
            f"{Path(command[0]).name} did not produce {', '.join(p.name for p in missing)}",
            command=command,
            returncode=proc.returncode,
            stderr=proc.stderr.strip()[-STDERR_TAIL:],
        )
    return proc


__all__ = [
    "BatchScheme",
    "RAW_PAGE_TEMPLATE",
    "cleanup_command",
    "concat_command",
    "encode_command",
    "list_devices_command",
    "raw_page_path",
    "run_tool",
    "scan_command",
]
