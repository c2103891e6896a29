"""Turn scanner captures into finished PDF documents.

The pipeline scans raw pages with an external scanner tool, maps each
capture onto logical page positions for its physical layout, cleans and
converts pages in parallel worker processes gated by memory pressure, and
finally merges the pages of every document into a PDF.

Primary public entry point:
    ``run_pipeline`` – validate a `ScanJob`, scan, then run the page and
    document phases inside an isolated working directory.
"""

from .job import ScanJob, build_job
from .pipeline import run_pipeline


__all__ = ["ScanJob", "build_job", "run_pipeline"]
