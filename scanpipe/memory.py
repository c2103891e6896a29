"""Memory-pressure based admission of worker processes.

There is no fixed worker count. When the run starts with enough free
memory, workers are launched back to back and the controller only pauses
while the free-memory ratio sits at or below the threshold. When the run
starts short on memory, workers run strictly one at a time for the whole
pipeline.
"""

from __future__ import annotations

from collections.abc import Callable
import time
from typing import Protocol

import psutil

from scanpipe.utils.log_utils import logger


DEFAULT_THRESHOLD = 30.0
DEFAULT_POLL_INTERVAL = 2.0
LOW_MEMORY_KIB = 512000


def sample_free_ratio() -> float:
    """Available (free plus reclaimable) memory as a percentage of total."""
    stats = psutil.virtual_memory()
    if not stats.total:
        return 0.0
    return max(0.0, min(100.0, stats.available * 100.0 / stats.total))


def total_memory_kib() -> int:
    return int(psutil.virtual_memory().total // 1024)


def is_low_memory_host(
    limit_kib: int = LOW_MEMORY_KIB,
    total: Callable[[], int] = total_memory_kib,
) -> bool:
    """Whether expensive cleanup stages should be disabled on this host."""
    return total() < limit_kib


class Joinable(Protocol):
    def join(self) -> None: ...


class AdmissionController:
    """Gate between consecutive worker launches.

    ``sampler`` and ``sleep`` are injectable so the policy can be exercised
    without real memory pressure.
    """

    def __init__(
        self,
        sampler: Callable[[], float] = sample_free_ratio,
        *,
        threshold: float = DEFAULT_THRESHOLD,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._sampler = sampler
        self._threshold = threshold
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._started_constrained: bool | None = None

    @property
    def threshold(self) -> float:
        return self._threshold

    def sample_free_ratio(self) -> float:
        return self._sampler()

    def latch(self) -> bool:
        """Sample once and fix the scheduling strategy for this pipeline."""
        if self._started_constrained is None:
            ratio = self._sampler()
            self._started_constrained = ratio < self._threshold
            if self._started_constrained:
                logger.warning(
                    f"Only {ratio:.1f}% memory free at start; running one worker at a time."
                )
            else:
                logger.debug(f"{ratio:.1f}% memory free at start; admitting workers by pressure.")
        return self._started_constrained

    def started_constrained(self) -> bool:
        return self.latch()

    def admit(self, handle: Joinable) -> None:
        """Block after launching ``handle`` until the next worker may start."""
        if self.latch():
            handle.join()
            return

        polls = 0
        while (ratio := self._sampler()) <= self._threshold:
            if polls == 0:
                logger.debug(
                    f"Free memory at {ratio:.1f}%; waiting for more than {self._threshold:.0f}%."
                )
            polls += 1
            self._sleep(self._poll_interval)
        if polls:
            logger.debug(f"Free memory recovered to {ratio:.1f}% after {polls} poll(s).")


__all__ = [
    "AdmissionController",
    "Joinable",
    "is_low_memory_host",
    "sample_free_ratio",
    "total_memory_kib",
]
