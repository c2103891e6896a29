"""Worker entry points run in their own processes."""

from .context import WorkerContext, target_page_path
from .document import assemble_document
from .page import process_page


__all__ = ["WorkerContext", "assemble_document", "process_page", "target_page_path"]
