"""Per-page pipeline: rotate, clean, split and convert one raw capture."""

from __future__ import annotations

from pathlib import Path

from scanpipe.planning import PageTask
from scanpipe.tools import cleanup_command, run_tool
from scanpipe.utils.image import convert_to_tiff, rotate_image
from scanpipe.utils.log_utils import logger
from scanpipe.workers.context import WorkerContext, target_page_path


def process_page(task: PageTask, context: WorkerContext) -> list[Path]:
    """Produce every target page assigned to ``task``.

    Returns the intermediate images written, in side order. Blank captures
    are deleted and produce nothing.
    """
    raw = task.raw
    if task.blank or task.resolution is None:
        raw.path.unlink(missing_ok=True)
        logger.info(f"Dropped blank page {raw.index}")
        return []

    job = context.job
    workdir = context.workdir
    scratch: list[Path] = []

    source = raw.path
    if job.rotate:
        rotated = workdir / f"rotated-{raw.index:03d}.pnm"
        source = rotate_image(source, rotated, job.rotate)
        scratch.append(rotated)

    sides = [
        workdir / f"clean-{raw.index:03d}-{side}.pnm" for side in range(1, job.layout.sides + 1)
    ]
    run_tool(
        cleanup_command(
            job,
            context.tools,
            source,
            sides,
            pre_rotation=task.resolution.pre_rotation,
            low_memory=context.low_memory,
        ),
        outputs=sides,
    )
    scratch.extend(sides)

    written: list[Path] = []
    for side_target, side_path in zip(task.resolution.targets, sides, strict=True):
        written.append(
            convert_to_tiff(
                side_path,
                target_page_path(workdir, side_target.target),
                mode=job.mode.value,
                resolution=job.resolution,
            )
        )

    for path in (raw.path, *scratch):
        path.unlink(missing_ok=True)
    logger.debug(f"Raw page {raw.index} -> target page(s) {list(task.targets)}")
    return written


__all__ = ["process_page"]
