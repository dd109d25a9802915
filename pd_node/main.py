"""Main CLI entry point for pd-node."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from pd_node import __app_name__, __version__
from pd_node.cli import config, run, runtimes
from pd_node.cli.exit_codes import ExitCode
from pd_node.config import LoggingConfig, get_config

app = typer.Typer(
    name=__app_name__,
    help="pd-node - Run JavaScript & TypeScript scripts as Pure Data style message processors.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# "run" is a top-level command, the others are groups
app.add_typer(run.app)
app.add_typer(runtimes.app, name="runtimes")
app.add_typer(config.app, name="config")

DEBUG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _console_level(verbose: bool, debug: bool, quiet: bool, level_name: Optional[str]) -> int:
    """Flags win over the configured level; unknown level names mean WARNING."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    if quiet:
        return logging.ERROR
    level = logging.getLevelName((level_name or "WARNING").upper())
    return level if isinstance(level, int) else logging.WARNING


def _setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
    level_name: Optional[str] = None,
    format_str: str = LoggingConfig.format,
) -> None:
    """Configure the root logger for a CLI invocation.

    The console handler follows the flags (or the configured level); a log
    file, when given, always receives DEBUG records, including every frame
    exchanged with the script.
    """
    level = _console_level(verbose, debug, quiet, level_name)
    handlers: list[logging.Handler] = []

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if not quiet:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(level)
        handlers.append(stderr_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format=DEBUG_FORMAT if debug else format_str,
        handlers=handlers,
        force=True,
    )
    logging.getLogger(__name__).debug(f"Console log level: {logging.getLevelName(level)}")


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output (INFO level logging).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode (DEBUG level logging, including every frame).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log to file (logs DEBUG level regardless of console settings).",
    ),
) -> None:
    """pd-node - Run JavaScript & TypeScript scripts as Pure Data style message processors.

    [bold]Commands:[/bold]

    • [cyan]run[/cyan] - Run a script and exchange messages with it
    • [cyan]runtimes[/cyan] - Show installed JavaScript runtimes
    • [cyan]config[/cyan] - Inspect configuration

    [bold]Examples:[/bold]

        pd-node run hello.js --send bang --duration 2
        pd-node runtimes
        pd-node config show
    """
    if quiet and (verbose or debug):
        other = "--debug" if debug else "--verbose"
        console.print(f"[red]Error:[/red] --quiet and {other} are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    logging_config = get_config().logging
    _setup_logging(
        verbose=verbose,
        debug=debug,
        quiet=quiet,
        log_file=log_file or logging_config.file,
        level_name=logging_config.level,
        format_str=logging_config.format,
    )
    logging.getLogger(__name__).debug(f"pd-node v{__version__} starting")


__all__ = ["app", "main"]


if __name__ == "__main__":
    app()
