"""Per-document pipeline: merge target pages in order and encode the PDF."""

from __future__ import annotations

from pathlib import Path

import fitz  # PyMuPDF

from scanpipe.errors import AssemblyError, ToolError
from scanpipe.planning import Document
from scanpipe.tools import concat_command, encode_command, run_tool
from scanpipe.utils.log_utils import logger
from scanpipe.workers.context import WorkerContext, target_page_path


def _count_pdf_pages(path: Path) -> int:
    with fitz.open(path) as pdf:
        return pdf.page_count


def assemble_document(document: Document, context: WorkerContext) -> Path:
    """Build ``document.path`` from its target range and return it."""
    workdir = context.workdir
    pages = [target_page_path(workdir, index) for index in document.target_indices]
    missing = [page.name for page in pages if not page.exists()]
    if missing:
        raise AssemblyError(
            f"Document {document.number}: missing page image(s) {', '.join(missing)}"
        )

    merged = workdir / f"document-{document.number:03d}.tif"
    document.path.parent.mkdir(parents=True, exist_ok=True)
    try:
        run_tool(
            concat_command(context.tools, pages, merged), outputs=[merged], error=AssemblyError
        )
        run_tool(
            encode_command(
                context.tools,
                context.job.mode,
                merged,
                document.path,
                jpeg_quality=context.jpeg_quality,
            ),
            outputs=[document.path],
            error=AssemblyError,
        )
    except ToolError as exc:
        raise AssemblyError(
            f"Document {document.number}: {exc}",
            command=exc.command,
            returncode=exc.returncode,
            stderr=exc.stderr,
        ) from exc
    finally:
        merged.unlink(missing_ok=True)

    page_count = _count_pdf_pages(document.path)
    if page_count != document.page_count:
        raise AssemblyError(
            f"Document {document.number}: {document.path} has {page_count} page(s), "
            f"expected {document.page_count}."
        )
    logger.info(f"Created {document.path} ({page_count} pages)")
    return document.path


__all__ = ["assemble_document"]
