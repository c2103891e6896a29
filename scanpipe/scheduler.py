"""Two-phase fan-out/fan-in of worker processes.

Each phase launches one process per unit, lets the admission controller
decide when the next launch may happen, and then joins every process it
launched. The page phase must finish completely before the document phase
starts, since assemblers read the images the page workers write.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from multiprocessing import current_process, get_context
from typing import Protocol

from scanpipe.errors import PhaseError, ScanPipeError
from scanpipe.memory import AdmissionController
from scanpipe.planning import Document, PageTask
from scanpipe.utils.log_utils import logger
from scanpipe.utils.progress import NullProgressReporter, ProgressReporter
from scanpipe.workers import WorkerContext, assemble_document, process_page


class WorkerHandle(Protocol):
    @property
    def exitcode(self) -> int | None: ...

    def join(self) -> None: ...

    def terminate(self) -> None: ...


class Launcher(Protocol):
    def launch(
        self, name: str, target: Callable[..., object], *args: object
    ) -> WorkerHandle: ...


def run_in_child(target: Callable[..., object], *args: object) -> None:
    """Process entry point: report failures through the exit status."""
    try:
        target(*args)
    except ScanPipeError as exc:
        logger.error(f"{current_process().name}: {exc}")
        raise SystemExit(1) from exc
    except Exception as exc:
        logger.exception(f"{current_process().name} crashed")
        raise SystemExit(1) from exc


class ProcessLauncher:
    """Start each worker as a separate OS process.

    Always uses the ``spawn`` start method so workers never inherit locks
    held by threads of the control process.
    """

    def __init__(self, start_method: str = "spawn") -> None:
        self._ctx = get_context(start_method)

    def launch(self, name: str, target: Callable[..., object], *args: object) -> WorkerHandle:
        process = self._ctx.Process(target=run_in_child, args=(target, *args), name=name)
        process.start()
        return process


ProgressFactory = Callable[[str], ProgressReporter]


def _no_progress(_: str) -> ProgressReporter:
    return NullProgressReporter()


class Scheduler:
    def __init__(
        self,
        admission: AdmissionController,
        *,
        launcher: Launcher | None = None,
        progress_factory: ProgressFactory = _no_progress,
    ) -> None:
        self._admission = admission
        self._launcher = launcher or ProcessLauncher()
        self._progress_factory = progress_factory

    def run_phase(
        self,
        phase: str,
        target: Callable[..., object],
        units: Sequence[tuple[int, tuple[object, ...]]],
    ) -> None:
        """Launch ``target(*args)`` for every ``(key, args)`` unit and join all.

        Raises `PhaseError` naming every failed key. No new worker is
        admitted once a failure has been observed.
        """
        launched: list[tuple[int, WorkerHandle]] = []
        reported: set[int] = set()
        progress = self._progress_factory(phase)
        progress.start(len(units))
        try:
            for key, args in units:
                if _failed_keys(launched):
                    logger.error(f"Stopping {phase} phase early; a worker already failed.")
                    break
                handle = self._launcher.launch(f"{phase}-{key}", target, *args)
                launched.append((key, handle))
                self._admission.admit(handle)
                # Constrained admission joins the worker before returning.
                if handle.exitcode is not None:
                    reported.add(key)
                    progress.increment()

            for key, handle in launched:
                handle.join()
                if key not in reported:
                    progress.increment()
        except BaseException:
            _stop_workers(launched)
            raise
        finally:
            progress.close()

        failed = _failed_keys(launched)
        if failed:
            raise PhaseError(phase, failed)
        logger.info(f"{phase.capitalize()} phase finished: {len(launched)} worker(s).")

    def run_pages(self, tasks: Sequence[PageTask], context: WorkerContext) -> None:
        self.run_phase(
            "pages",
            process_page,
            [(task.raw.index, (task, context)) for task in tasks],
        )

    def run_documents(self, documents: Sequence[Document], context: WorkerContext) -> None:
        self.run_phase(
            "documents",
            assemble_document,
            [(document.number, (document, context)) for document in documents],
        )


def _failed_keys(launched: Sequence[tuple[int, WorkerHandle]]) -> list[int]:
    return [key for key, handle in launched if handle.exitcode not in (None, 0)]


def _stop_workers(launched: Sequence[tuple[int, WorkerHandle]]) -> None:
    """Terminate and reap workers still running when a phase is interrupted."""
    running = [handle for _, handle in launched if handle.exitcode is None]
    if running:
        logger.warning(f"Terminating {len(running)} running worker(s).")
    for handle in running:
        handle.terminate()
    for handle in running:
        handle.join()


__all__ = [
    "Launcher",
    "ProcessLauncher",
    "Scheduler",
    "WorkerHandle",
    "run_in_child",
]
