from __future__ import annotations

from collections.abc import Iterator
from types import SimpleNamespace

import pytest

from scanpipe import memory
from scanpipe.memory import AdmissionController, is_low_memory_host


class _Handle:
    def __init__(self, trace: list[str], name: str) -> None:
        self._trace = trace
        self._name = name

    def join(self) -> None:
        self._trace.append(f"join {self._name}")


def _sampler(values: list[float], trace: list[str]):
    iterator: Iterator[float] = iter(values)

    def sample() -> float:
        value = next(iterator)
        trace.append(f"sample {value:g}")
        return value

    return sample


def test_sample_free_ratio_uses_available_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        memory.psutil,
        "virtual_memory",
        lambda: SimpleNamespace(total=1000, available=250),
    )
    assert memory.sample_free_ratio() == pytest.approx(25.0)


def test_low_memory_host_policy() -> None:
    assert is_low_memory_host(512000, total=lambda: 400000) is True
    assert is_low_memory_host(512000, total=lambda: 8_000_000) is False


def test_constrained_start_joins_every_worker_before_next() -> None:
    trace: list[str] = []
    controller = AdmissionController(_sampler([10.0], trace), sleep=lambda _: None)

    assert controller.started_constrained() is True
    for name in ("a", "b", "c"):
        trace.append(f"launch {name}")
        controller.admit(_Handle(trace, name))

    assert trace == [
        "sample 10",
        "launch a",
        "join a",
        "launch b",
        "join b",
        "launch c",
        "join c",
    ]


def test_constrained_flag_is_latched() -> None:
    trace: list[str] = []
    controller = AdmissionController(_sampler([10.0, 90.0, 90.0], trace), sleep=lambda _: None)

    assert controller.latch() is True
    assert controller.started_constrained() is True
    assert trace == ["sample 10"]


def test_unconstrained_admission_waits_for_memory() -> None:
    trace: list[str] = []
    sleeps: list[float] = []
    controller = AdmissionController(
        _sampler([80.0, 50.0, 20.0, 30.0, 45.0], trace),
        threshold=30.0,
        poll_interval=2.0,
        sleep=sleeps.append,
    )

    assert controller.latch() is False
    controller.admit(_Handle(trace, "a"))
    controller.admit(_Handle(trace, "b"))

    assert "join a" not in trace
    assert "join b" not in trace
    # First admission passes immediately; the second polls twice at or below 30%.
    assert trace == ["sample 80", "sample 50", "sample 20", "sample 30", "sample 45"]
    assert sleeps == [2.0, 2.0]


def test_unconstrained_admission_never_passes_below_threshold() -> None:
    ratios = [90.0, 5.0, 12.0, 29.9, 31.0]
    trace: list[str] = []
    controller = AdmissionController(_sampler(ratios, trace), sleep=lambda _: None)
    controller.latch()

    controller.admit(_Handle(trace, "a"))

    assert trace[-1] == "sample 31"
