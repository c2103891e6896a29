"""End-to-end run: validate, scan, plan, convert pages, assemble documents."""

from __future__ import annotations

from collections.abc import Callable, Iterator
import contextlib
from dataclasses import dataclass
from pathlib import Path
import signal
import tempfile
import threading
from types import FrameType

from scanpipe.config.settings import ScanPipeSettings
from scanpipe.job import DuplexMode, ScanJob, validate_job
from scanpipe.memory import AdmissionController, is_low_memory_host
from scanpipe.planning import (
    Plan,
    RawPage,
    build_plan,
    check_destination,
    numbered_output,
)
from scanpipe.scan import Prompt, backs_scheme, fronts_scheme, log_prompt, scan_documents
from scanpipe.scheduler import Launcher, ProgressFactory, Scheduler
from scanpipe.tools import BatchScheme, raw_page_path, scan_command
from scanpipe.utils.log_utils import logger
from scanpipe.utils.progress import TqdmProgressReporter
from scanpipe.workers import WorkerContext


Scanner = Callable[..., list[list[RawPage]]]


@dataclass(frozen=True)
class PipelineResult:
    documents: tuple[Path, ...]
    pages: int
    constrained: bool


@contextlib.contextmanager
def working_directory(settings: ScanPipeSettings) -> Iterator[Path]:
    """Isolated per-run directory, removed on every exit path."""
    if settings.tmp_dir is not None:
        settings.tmp_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(
        prefix="scanpipe-", dir=settings.tmp_dir, ignore_cleanup_errors=True
    ) as tmp:
        logger.debug(f"Working directory: {tmp}")
        yield Path(tmp)


@contextlib.contextmanager
def exit_on_sigterm() -> Iterator[None]:
    """Turn SIGTERM into SystemExit so cleanup handlers run."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        raise SystemExit(128 + signum)

    previous = signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def prepare(job: ScanJob) -> None:
    """All configuration checks; nothing has been started when this raises."""
    validate_job(job)
    check_destination(job)


def plan_documents(job: ScanJob, batches: list[list[RawPage]]) -> Plan:
    return build_plan(
        batches,
        layout=job.layout,
        blank=job.blank,
        output=job.output,
        numbered=numbered_output(job),
    )


def _tqdm_progress(phase: str) -> TqdmProgressReporter:
    return TqdmProgressReporter(phase)


def run_pipeline(
    job: ScanJob,
    settings: ScanPipeSettings,
    *,
    admission: AdmissionController | None = None,
    launcher: Launcher | None = None,
    scanner: Scanner = scan_documents,
    prompt: Prompt = log_prompt,
    progress_factory: ProgressFactory | None = None,
    low_memory: bool | None = None,
) -> PipelineResult:
    """Run ``job`` to completion and return the documents written."""
    prepare(job)

    if admission is None:
        admission = AdmissionController(
            threshold=settings.scheduling.memory_threshold,
            poll_interval=settings.scheduling.poll_interval,
        )
    if low_memory is None:
        low_memory = is_low_memory_host(settings.scheduling.low_memory_kib)
    if low_memory:
        logger.info("Low-memory host: qpixel deskewing disabled.")

    with exit_on_sigterm(), working_directory(settings) as workdir:
        constrained = admission.latch()

        batches = scanner(job, settings.tools, workdir, prompt=prompt)
        plan = plan_documents(job, batches)
        logger.info(
            f"Planned {plan.target_count} page(s) in {len(plan.documents)} document(s) "
            f"from {len(plan.tasks)} scan(s)."
        )

        context = WorkerContext(
            job=job,
            tools=settings.tools,
            workdir=workdir,
            low_memory=low_memory,
            jpeg_quality=settings.jpeg_quality,
        )
        scheduler = Scheduler(
            admission,
            launcher=launcher,
            progress_factory=progress_factory or _tqdm_progress,
        )
        scheduler.run_pages(plan.tasks, context)
        scheduler.run_documents(plan.documents, context)

    return PipelineResult(
        documents=tuple(document.path for document in plan.documents),
        pages=plan.target_count,
        constrained=constrained,
    )


def describe(job: ScanJob, settings: ScanPipeSettings) -> list[str]:
    """Human-readable dry-run report of what ``run_pipeline`` would do."""
    prepare(job)
    workdir = Path(tempfile.gettempdir()) / "scanpipe-XXXX"
    lines: list[str] = []

    total = None
    if not job.pages_unbounded and not job.documents_unbounded:
        total = job.pages * job.documents

    if job.duplex is DuplexMode.MANUAL:
        sheets = None if total is None else total // 2
        schemes = [fronts_scheme(sheets)]
        if sheets is not None:
            schemes.append(backs_scheme(sheets))
    elif job.pages_unbounded:
        schemes = [BatchScheme()]
    else:
        schemes = [BatchScheme(count=total)]
    for scheme in schemes:
        lines.append(" ".join(scan_command(job, settings.tools, workdir, scheme)))

    if total is None:
        lines.append("Document plan depends on the number of pages scanned.")
        return lines

    raw_pages = [RawPage(index=i, path=raw_page_path(workdir, i)) for i in range(1, total + 1)]
    batches = [raw_pages[i : i + job.pages] for i in range(0, total, job.pages)]
    plan = plan_documents(job, batches)
    for document in plan.documents:
        lines.append(
            f"Document {document.number}: pages {document.start}-{document.end - 1} "
            f"-> {document.path}"
        )
    return lines


__all__ = [
    "PipelineResult",
    "describe",
    "exit_on_sigterm",
    "plan_documents",
    "prepare",
    "run_pipeline",
    "working_directory",
]
