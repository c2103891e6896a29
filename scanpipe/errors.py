"""Exception types raised by the scanning pipeline."""

from __future__ import annotations

from collections.abc import Sequence


class ScanPipeError(RuntimeError):
    """Base class for every failure surfaced to the operator."""

    pass


class ConfigurationError(ScanPipeError):
    """Raised when a job cannot run as configured.

    Always raised before any external tool is started and before the
    working directory exists, so there is no scan state to clean up.
    """

    pass


class ToolError(ScanPipeError):
    """Raised when an external tool exits non-zero or skips its output."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(command) if command is not None else None
        self.returncode = returncode
        self.stderr = stderr


class ScanError(ToolError):
    """Raised when the scan step fails or yields an unusable page set."""

    pass


class AssemblyError(ToolError):
    """Raised when a document cannot be encoded into its final file."""

    pass


class PhaseError(ScanPipeError):
    """Raised after a phase barrier when one or more workers failed."""

    def __init__(self, phase: str, failed: Sequence[int]) -> None:
        self.phase = phase
        self.failed = list(failed)
        super().__init__(
            f"{phase} phase failed for {len(self.failed)} unit(s): "
            f"{', '.join(str(unit) for unit in self.failed)}"
        )


__all__ = [
    "AssemblyError",
    "ConfigurationError",
    "PhaseError",
    "ScanError",
    "ScanPipeError",
    "ToolError",
]
