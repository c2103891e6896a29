from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import ParamSpec, TypeVar

import typer  # type: ignore[import]

from scanpipe.config.settings import get_settings
from scanpipe.errors import ConfigurationError, ScanPipeError
from scanpipe.job import DuplexMode, OutputTarget, ScanMode, build_job
from scanpipe.layout import Layout
from scanpipe.pipeline import describe, run_pipeline
from scanpipe.tools import list_devices_command, run_tool
from scanpipe.utils.log_utils import logger, set_console_level


app = typer.Typer(
    help="Scan paper into PDF documents.",
)


_P = ParamSpec("_P")
_T = TypeVar("_T")

CONFIG_ERROR_EXIT = 2
RUN_ERROR_EXIT = 1


def _reporting_errors(handler: Callable[_P, _T]) -> Callable[_P, _T]:
    @wraps(handler)
    def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _T:
        try:
            return handler(*args, **kwargs)
        except ConfigurationError as err:
            logger.error(f"Configuration error: {err}")
            raise typer.Exit(code=CONFIG_ERROR_EXIT) from err
        except ScanPipeError as err:
            logger.error(f"Scan failed: {err}")
            raise typer.Exit(code=RUN_ERROR_EXIT) from err
        except KeyboardInterrupt as err:
            logger.info("Interrupted by user")
            raise typer.Exit(code=130) from err

    return wrapper


def operator_prompt(message: str) -> None:
    typer.pause(info=f"{message} Press any key to continue...")


@app.command("scan")
@_reporting_errors
def scan_command(
    output: Path = typer.Argument(
        ...,
        help="Output PDF. Several documents are numbered <name>-001.pdf, ...",
        dir_okay=False,
    ),
    device: str | None = typer.Option(None, "--device", "-d", help="Scanner device name."),
    resolution: int | None = typer.Option(
        None, "--resolution", "-r", help="Scan resolution in DPI."
    ),
    mode: ScanMode | None = typer.Option(None, "--mode", "-m", help="Colour mode."),
    size: str | None = typer.Option(
        None, "--size", help="Scan area per capture: a4, a5, letter, ... or WIDTHxHEIGHT in mm."
    ),
    layout: Layout | None = typer.Option(None, "--layout", help="Pages per capture."),
    duplex: DuplexMode | None = typer.Option(None, "--duplex", help="Duplex strategy."),
    rotate: int | None = typer.Option(
        None, "--rotate", help="Clockwise rotation applied to every capture."
    ),
    pages: int | None = typer.Option(
        None, "--pages", "-p", help="Captures per document; 0 scans until the feeder is empty."
    ),
    documents: int | None = typer.Option(
        None, "--documents", "-n", help="Number of documents; 0 scans until the feeder is empty."
    ),
    center: bool | None = typer.Option(
        None, "--center/--no-center", help="Center the scan area on the feeder."
    ),
    offset: float | None = typer.Option(None, "--offset", help="Vertical offset in mm."),
    blank: bool | None = typer.Option(
        None, "--blank/--no-blank", help="Drop the blank last capture of every document."
    ),
    adf: bool | None = typer.Option(
        None, "--adf/--flatbed", help="Use the document feeder or the flatbed."
    ),
    directory: bool = typer.Option(
        False, "--directory", help="Write documents into a new directory named after OUTPUT."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing output."),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the scan command and document plan, then exit."
    ),
    env_file: Path | None = typer.Option(None, "--env-file", help="Alternative .env file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log external commands."),
) -> int:
    if verbose:
        set_console_level("DEBUG")
    settings = get_settings(env_file)
    job = build_job(
        {
            "device": device,
            "resolution": resolution,
            "mode": mode,
            "size": size,
            "layout": layout,
            "duplex": duplex,
            "rotate": rotate,
            "pages": pages,
            "documents": documents,
            "center": center,
            "offset": offset,
            "blank": blank,
            "adf": adf,
        },
        OutputTarget(path=output.expanduser().absolute(), directory=directory, force=force),
        config_dir=settings.config_dir,
    )

    if dry_run:
        for line in describe(job, settings):
            typer.echo(line)
        return 0

    result = run_pipeline(job, settings, prompt=operator_prompt)
    for path in result.documents:
        typer.echo(str(path))
    logger.info(f"Wrote {len(result.documents)} document(s), {result.pages} page(s).")
    return 0


@app.command("devices")
@_reporting_errors
def devices_command(
    env_file: Path | None = typer.Option(None, "--env-file", help="Alternative .env file."),
) -> int:
    """List the scanners the scan tool can see."""
    settings = get_settings(env_file)
    proc = run_tool(list_devices_command(settings.tools))
    output = proc.stdout.strip()
    typer.echo(output or "No scanners found.")
    return 0


def main() -> None:
    app()


if __name__ == "__main__":
    main()
