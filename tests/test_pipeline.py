from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

import fitz  # PyMuPDF
import pytest

from scanpipe.errors import ConfigurationError, PhaseError
from scanpipe.job import OutputTarget, ScanJob, UNBOUNDED
from scanpipe.layout import Layout
from scanpipe.memory import AdmissionController
from scanpipe.pipeline import describe, run_pipeline
from scanpipe.planning import RawPage
from scanpipe.utils.progress import NullProgressReporter


class _FakeScanner:
    """Writes ``per_document`` captures for each of ``documents`` documents."""

    def __init__(
        self,
        factory: Callable[[Path, Sequence[int]], list[Path]],
        per_document: int,
        documents: int = 1,
    ) -> None:
        self._factory = factory
        self._per_document = per_document
        self._documents = documents
        self.calls = 0
        self.workdir: Path | None = None

    def __call__(self, job, tools, workdir: Path, *, prompt) -> list[list[RawPage]]:
        self.calls += 1
        self.workdir = workdir
        total = self._per_document * self._documents
        paths = self._factory(workdir, range(1, total + 1))
        pages = [RawPage(index=i, path=path) for i, path in enumerate(paths, start=1)]
        return [
            pages[i : i + self._per_document] for i in range(0, total, self._per_document)
        ]


def _job(tmp_path: Path, **overrides: object) -> ScanJob:
    values: dict[str, object] = {"output": OutputTarget(path=tmp_path / "out.pdf")}
    values.update(overrides)
    return ScanJob(**values)  # type: ignore[arg-type]


def _run(job, settings, scanner, launcher):
    return run_pipeline(
        job,
        settings,
        admission=AdmissionController(lambda: 90.0, sleep=lambda _: None),
        launcher=launcher,
        scanner=scanner,
        progress_factory=lambda _phase: NullProgressReporter(),
        low_memory=False,
    )


def _page_count(path: Path) -> int:
    with fitz.open(path) as pdf:
        return pdf.page_count


def test_single_layout_round_trip(
    tmp_path, settings, fake_tools, inline_launcher, raw_pages_factory
) -> None:
    scanner = _FakeScanner(raw_pages_factory, per_document=4)

    result = _run(_job(tmp_path, pages=4), settings, scanner, inline_launcher)

    assert result.documents == (tmp_path / "out.pdf",)
    assert result.pages == 4
    assert result.constrained is False
    assert _page_count(tmp_path / "out.pdf") == 4
    assert inline_launcher.names == [
        "pages-1",
        "pages-2",
        "pages-3",
        "pages-4",
        "documents-1",
    ]
    assert scanner.workdir is not None and not scanner.workdir.exists()


def test_double_layout_two_documents(
    tmp_path, settings, fake_tools, inline_launcher, raw_pages_factory
) -> None:
    job = _job(tmp_path, pages=4, documents=2, layout=Layout.DOUBLE)
    scanner = _FakeScanner(raw_pages_factory, per_document=4, documents=2)

    result = _run(job, settings, scanner, inline_launcher)

    assert result.documents == (tmp_path / "out-001.pdf", tmp_path / "out-002.pdf")
    assert result.pages == 16
    assert [_page_count(path) for path in result.documents] == [8, 8]
    second = fake_tools.by_tool("tiffcp")[1]
    assert Path(second[1]).name == "page-0009.tif"
    assert Path(second[-2]).name == "page-0016.tif"


def test_blank_removal_drops_last_capture(
    tmp_path, settings, fake_tools, inline_launcher, raw_pages_factory
) -> None:
    job = _job(tmp_path, pages=4, blank=True)

    result = _run(job, settings, _FakeScanner(raw_pages_factory, per_document=4), inline_launcher)

    assert result.pages == 3
    assert _page_count(tmp_path / "out.pdf") == 3
    assert len(fake_tools.by_tool("unpaper")) == 3


def test_invalid_job_fails_before_scanning(
    tmp_path, settings, fake_tools, inline_launcher, raw_pages_factory
) -> None:
    scanner = _FakeScanner(raw_pages_factory, per_document=5)

    with pytest.raises(ConfigurationError, match="even page count"):
        _run(_job(tmp_path, pages=5, blank=True), settings, scanner, inline_launcher)

    assert scanner.calls == 0
    assert not settings.tmp_dir.exists()


def test_existing_destination_fails_before_workdir(
    tmp_path, settings, fake_tools, inline_launcher, raw_pages_factory
) -> None:
    (tmp_path / "out.pdf").write_bytes(b"%PDF")
    scanner = _FakeScanner(raw_pages_factory, per_document=2)

    with pytest.raises(ConfigurationError, match="exists"):
        _run(_job(tmp_path, pages=2), settings, scanner, inline_launcher)

    assert scanner.calls == 0
    assert not settings.tmp_dir.exists()


def test_page_failure_stops_pipeline_and_cleans_up(
    tmp_path, settings, fake_tools, inline_launcher, raw_pages_factory
) -> None:
    fake_tools.fail_on = "raw-002.pnm"
    scanner = _FakeScanner(raw_pages_factory, per_document=4)

    with pytest.raises(PhaseError) as excinfo:
        _run(_job(tmp_path, pages=4), settings, scanner, inline_launcher)

    assert excinfo.value.phase == "pages"
    assert excinfo.value.failed == [2]
    assert fake_tools.by_tool("tiffcp") == []
    assert not (tmp_path / "out.pdf").exists()
    assert list(settings.tmp_dir.iterdir()) == []


def test_describe_bounded_plan(tmp_path, settings) -> None:
    lines = describe(_job(tmp_path, pages=4, documents=2, blank=True), settings)

    assert lines[0].startswith("scanimage ")
    assert "--batch-count=8" in lines[0]
    assert lines[1:] == [
        f"Document 1: pages 1-3 -> {tmp_path / 'out-001.pdf'}",
        f"Document 2: pages 4-6 -> {tmp_path / 'out-002.pdf'}",
    ]


def test_describe_unbounded_documents(tmp_path, settings) -> None:
    lines = describe(_job(tmp_path, pages=2, documents=UNBOUNDED), settings)

    assert "--batch-count" not in lines[0]
    assert lines[-1] == "Document plan depends on the number of pages scanned."
