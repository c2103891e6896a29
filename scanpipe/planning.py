"""Explicit raw page → target page → document plan.

Everything here is computed in the control process before any worker
starts. Workers receive their `PageTask` or `Document` directly instead of
rediscovering it from file names.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import glob
from pathlib import Path

from scanpipe.errors import ConfigurationError, ScanError
from scanpipe.job import OutputTarget, ScanJob
from scanpipe.layout import Layout, Resolution, resolve


@dataclass(frozen=True)
class RawPage:
    index: int
    path: Path


@dataclass(frozen=True)
class PageTask:
    """Work order for one raw capture.

    ``logical`` is the page index after blank removal; ``None`` marks a
    blank capture that is deleted without being converted.
    """

    raw: RawPage
    logical: int | None
    resolution: Resolution | None

    @property
    def blank(self) -> bool:
        return self.logical is None

    @property
    def targets(self) -> tuple[int, ...]:
        return self.resolution.indices if self.resolution else ()


@dataclass(frozen=True)
class Document:
    """Half-open target range ``[start, end)`` and its output file."""

    number: int
    start: int
    end: int
    path: Path

    @property
    def target_indices(self) -> range:
        return range(self.start, self.end)

    @property
    def page_count(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class Plan:
    tasks: tuple[PageTask, ...]
    documents: tuple[Document, ...]

    @property
    def target_count(self) -> int:
        return sum(document.page_count for document in self.documents)


def numbered_output(job: ScanJob) -> bool:
    return job.output.directory or job.documents != 1


def document_path(output: OutputTarget, number: int, *, numbered: bool) -> Path:
    """Output file for document ``number`` (1-based)."""
    path = output.path
    suffix = path.suffix or ".pdf"
    if output.directory:
        return path.with_suffix("") / f"{number:03d}{suffix}"
    if not numbered:
        return path
    return path.with_name(f"{path.stem}-{number:03d}{suffix}")


def check_destination(job: ScanJob) -> None:
    """Refuse to overwrite existing output unless forced."""
    output = job.output
    parent = output.path.parent
    if not parent.is_dir():
        raise ConfigurationError(f"Output directory does not exist: {parent}")
    if output.force:
        return

    if output.directory:
        directory = output.path.with_suffix("")
        if directory.exists():
            raise ConfigurationError(f"Destination {directory} exists; use --force to replace it.")
        return

    numbered = numbered_output(job)
    if job.documents_unbounded:
        stem, suffix = output.path.stem, output.path.suffix or ".pdf"
        pattern = f"{glob.escape(stem)}-[0-9][0-9][0-9]{glob.escape(suffix)}"
        existing = sorted(parent.glob(pattern))
        if existing:
            raise ConfigurationError(
                f"Destination {existing[0]} exists; use --force to replace it."
            )
        return

    for number in range(1, job.documents + 1):
        path = document_path(output, number, numbered=numbered)
        if path.exists():
            raise ConfigurationError(f"Destination {path} exists; use --force to replace it.")


def split_batches(raw_pages: Sequence[RawPage], pages_per_document: int) -> list[list[RawPage]]:
    """Cut one continuous scan into documents of ``pages_per_document``."""
    if pages_per_document <= 0:
        raise ValueError("pages_per_document must be positive")
    if len(raw_pages) % pages_per_document:
        raise ScanError(
            f"Scanned {len(raw_pages)} page(s), which is not a multiple of "
            f"{pages_per_document} pages per document."
        )
    return [
        list(raw_pages[i : i + pages_per_document])
        for i in range(0, len(raw_pages), pages_per_document)
    ]


def build_plan(
    batches: Sequence[Sequence[RawPage]],
    *,
    layout: Layout,
    blank: bool,
    output: OutputTarget,
    numbered: bool,
) -> Plan:
    """Assign target indices to every raw page and ranges to every document.

    Each batch holds the raw pages of one document in scan order. With
    ``blank`` set, the last capture of every document is the blank back of
    its final sheet and receives no target.
    """
    tasks: list[PageTask] = []
    documents: list[Document] = []
    logical = 0
    next_target = 1

    for number, batch in enumerate(batches, start=1):
        if not batch:
            raise ScanError(f"Document {number} has no scanned pages.")
        kept = len(batch) - 1 if blank else len(batch)
        if layout is Layout.DOUBLE_FOLDED and kept % 2:
            raise ScanError(
                f"Document {number} has {kept} folded capture(s); each sheet needs two."
            )
        for position, raw in enumerate(batch):
            if position >= kept:
                tasks.append(PageTask(raw=raw, logical=None, resolution=None))
                continue
            logical += 1
            tasks.append(PageTask(raw=raw, logical=logical, resolution=resolve(layout, logical)))

        count = kept * layout.sides
        if count == 0:
            raise ScanError(f"Document {number} has no pages left after blank removal.")
        documents.append(
            Document(
                number=number,
                start=next_target,
                end=next_target + count,
                path=document_path(output, number, numbered=numbered),
            )
        )
        next_target += count

    return Plan(tasks=tuple(tasks), documents=tuple(documents))


__all__ = [
    "Document",
    "PageTask",
    "Plan",
    "RawPage",
    "build_plan",
    "check_destination",
    "document_path",
    "numbered_output",
    "split_batches",
]
