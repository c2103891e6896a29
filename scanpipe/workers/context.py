"""Read-only state handed to every worker process."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from scanpipe.config.settings import ToolSettings
from scanpipe.job import ScanJob


@dataclass(frozen=True)
class WorkerContext:
    job: ScanJob
    tools: ToolSettings
    workdir: Path
    low_memory: bool = False
    jpeg_quality: int = 85


def target_page_path(workdir: Path, target: int) -> Path:
    """Intermediate image for logical page ``target``."""
    return workdir / f"page-{target:04d}.tif"


__all__ = ["WorkerContext", "target_page_path"]
