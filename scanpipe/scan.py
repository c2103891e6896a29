"""Drive the scanner and collect the raw pages of every document."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from scanpipe.config.settings import ToolSettings
from scanpipe.errors import ScanError
from scanpipe.job import DuplexMode, ScanJob
from scanpipe.planning import RawPage, split_batches
from scanpipe.tools import BatchScheme, raw_page_path, run_tool, scan_command
from scanpipe.utils.log_utils import logger


Prompt = Callable[[str], None]


def log_prompt(message: str) -> None:
    logger.info(message)


def collect_raw_pages(workdir: Path, scheme: BatchScheme) -> list[RawPage]:
    """Raw pages written for ``scheme``, in capture order.

    Unbounded schemes stop at the first index with no file.
    """
    pages: list[RawPage] = []
    position = 0
    while scheme.count is None or position < scheme.count:
        index = scheme.index(position)
        if index < 1:
            break
        path = raw_page_path(workdir, index)
        if not path.exists():
            break
        pages.append(RawPage(index=index, path=path))
        position += 1
    return pages


def scan_batch(
    job: ScanJob,
    tools: ToolSettings,
    workdir: Path,
    scheme: BatchScheme,
) -> list[RawPage]:
    """Run one scanner batch and return the pages it produced.

    An unbounded batch always ends with the scanner reporting an empty
    feeder; that exit status is expected once at least one page arrived.
    """
    command = scan_command(job, tools, workdir, scheme)
    proc = run_tool(command, error=ScanError, check=False)
    pages = collect_raw_pages(workdir, scheme)

    if proc.returncode != 0:
        stderr = proc.stderr.strip()
        if scheme.count is None and pages:
            logger.info(f"Feeder empty after {len(pages)} page(s).")
        else:
            raise ScanError(
                f"Scanner failed with exit code {proc.returncode}: {stderr}",
                command=command,
                returncode=proc.returncode,
                stderr=stderr,
            )

    if scheme.count is not None and len(pages) != scheme.count:
        raise ScanError(
            f"Expected {scheme.count} page(s) from the scanner, found {len(pages)}.",
            command=command,
            returncode=proc.returncode,
        )
    if not pages:
        raise ScanError("The scanner produced no pages.", command=command)
    logger.info(f"Scanned {len(pages)} page(s).")
    return pages


def fronts_scheme(sheets: int | None) -> BatchScheme:
    """Fronts land on odd indices, in feed order."""
    return BatchScheme(start=1, increment=2, count=sheets)


def backs_scheme(sheets: int) -> BatchScheme:
    """Backs arrive last-sheet-first once the stack is flipped."""
    return BatchScheme(start=2 * sheets, increment=-2, count=sheets)


def _scan_manual_duplex(
    job: ScanJob, tools: ToolSettings, workdir: Path, sheets: int | None, prompt: Prompt
) -> list[RawPage]:
    fronts = scan_batch(job, tools, workdir, fronts_scheme(sheets))
    prompt(
        f"Scanned {len(fronts)} front side(s). Turn the stack over without "
        "reordering it and load it again."
    )
    backs = scan_batch(job, tools, workdir, backs_scheme(len(fronts)))
    return sorted(fronts + backs, key=lambda page: page.index)


def scan_documents(
    job: ScanJob,
    tools: ToolSettings,
    workdir: Path,
    *,
    prompt: Prompt = log_prompt,
) -> list[list[RawPage]]:
    """Scan every document of ``job`` and return its raw pages per document."""
    if job.pages_unbounded:
        # One feeder load per document; the operator reloads between them.
        batches: list[list[RawPage]] = []
        next_index = 1
        for number in range(1, job.documents + 1):
            if number > 1:
                prompt(f"Load document {number} of {job.documents} into the feeder.")
            pages = scan_batch(job, tools, workdir, BatchScheme(start=next_index))
            batches.append(pages)
            next_index = pages[-1].index + 1
        return batches

    total = None if job.documents_unbounded else job.pages * job.documents
    if job.duplex is DuplexMode.MANUAL:
        pages = _scan_manual_duplex(
            job, tools, workdir, None if total is None else total // 2, prompt
        )
    else:
        pages = scan_batch(job, tools, workdir, BatchScheme(count=total))
    return split_batches(pages, job.pages)


__all__ = [
    "Prompt",
    "backs_scheme",
    "collect_raw_pages",
    "fronts_scheme",
    "log_prompt",
    "scan_batch",
    "scan_documents",
]
