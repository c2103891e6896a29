# Test configuration utilities.
# Ensures the repository root is on sys.path so that 'scanpipe' can be imported
# when running pytest without installing the package, and provides in-process
# stand-ins for worker processes and external tools.
from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
import sys

import fitz  # PyMuPDF
from PIL import Image
import pytest


ROOT = Path(__file__).parent.resolve()
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scanpipe.config.settings import (  # noqa: E402
    ScanPipeSettings,
    SchedulingSettings,
    ToolSettings,
)
from scanpipe.errors import ToolError  # noqa: E402
from scanpipe.scheduler import run_in_child  # noqa: E402


class InlineHandle:
    def __init__(self, exitcode: int) -> None:
        self.exitcode = exitcode
        self.joined = False

    def join(self) -> None:
        self.joined = True

    def terminate(self) -> None:
        pass


class InlineLauncher:
    """Runs each worker to completion in the test process."""

    def __init__(self) -> None:
        self.names: list[str] = []

    def launch(self, name: str, target: Callable[..., object], *args: object) -> InlineHandle:
        self.names.append(name)
        try:
            run_in_child(target, *args)
        except SystemExit as exc:
            return InlineHandle(exitcode=int(exc.code or 0))
        return InlineHandle(exitcode=0)


class FakeTools:
    """Replacement for `run_tool` that fabricates each declared output."""

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self.fail_on: str | None = None
        self._concat_pages: dict[str, int] = {}

    def __call__(
        self,
        command: Sequence[str],
        *,
        outputs: Sequence[Path] = (),
        error: type[ToolError] = ToolError,
        check: bool = True,
    ) -> None:
        command = list(command)
        self.commands.append(command)
        tool = Path(command[0]).name
        if self.fail_on and self.fail_on in " ".join(command):
            raise error(f"{tool} failed with exit code 1: boom", command=command, returncode=1)

        if tool == "tiffcp":
            merged = command[-1]
            self._concat_pages[merged] = len(command) - 2
            Path(merged).write_bytes(b"II*\x00")
        elif tool == "tiff2pdf":
            source = command[-1]
            target = Path(command[command.index("-o") + 1])
            pdf = fitz.open()
            for _ in range(self._concat_pages.get(source, 1)):
                pdf.new_page()
            pdf.save(target)
            pdf.close()
        else:
            for path in outputs:
                Image.new("L", (16, 24), color=255).save(path, format="PPM")

    def by_tool(self, name: str) -> list[list[str]]:
        return [command for command in self.commands if Path(command[0]).name == name]


@pytest.fixture
def inline_launcher() -> InlineLauncher:
    return InlineLauncher()


@pytest.fixture
def fake_tools(monkeypatch: pytest.MonkeyPatch) -> FakeTools:
    tools = FakeTools()
    monkeypatch.setattr("scanpipe.workers.page.run_tool", tools)
    monkeypatch.setattr("scanpipe.workers.document.run_tool", tools)
    return tools


@pytest.fixture
def settings(tmp_path: Path) -> ScanPipeSettings:
    return ScanPipeSettings(
        env_file=tmp_path / ".env",
        config_dir=tmp_path / "config",
        tmp_dir=tmp_path / "work",
        jpeg_quality=80,
        tools=ToolSettings(
            scanimage="scanimage",
            unpaper="unpaper",
            tiffcp="tiffcp",
            tiff2pdf="tiff2pdf",
        ),
        scheduling=SchedulingSettings(
            memory_threshold=30.0, poll_interval=2.0, low_memory_kib=512000
        ),
    )


def _write_raw_pages(directory: Path, indices: Sequence[int]) -> list[Path]:
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for index in indices:
        path = directory / f"raw-{index:03d}.pnm"
        Image.new("L", (20, 30), color=255).save(path, format="PPM")
        paths.append(path)
    return paths


@pytest.fixture
def raw_pages_factory() -> Callable[[Path, Sequence[int]], list[Path]]:
    """Create small raw capture files named like the scanner's batch output."""
    return _write_raw_pages
