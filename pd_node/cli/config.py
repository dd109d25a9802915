"""pd-node config command - Configuration inspection."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from pd_node.cli.error_handler import ConfigurationError, handle_errors

app = typer.Typer(help="Inspect pd-node configuration.")
console = Console()


@app.command("show")
@handle_errors
def show_config(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in JSON format.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
) -> None:
    """Show the effective configuration (defaults, file and environment).

    Example:
        pd-node config show
        pd-node config show --json
    """
    from pd_node.config import load_config, export_config_json

    config = load_config(config_file)

    if json_output:
        console.print(Syntax(export_config_json(config), "json", theme="monokai"))
        return

    sections = {
        "bridge": [
            ("poll_interval", str(config.bridge.poll_interval)),
            ("grace_period", str(config.bridge.grace_period)),
            ("read_chunk_size", str(config.bridge.read_chunk_size)),
            ("max_frame_size", str(config.bridge.max_frame_size)),
            ("max_frames_per_pump", str(config.bridge.max_frames_per_pump) + (" (unlimited)" if not config.bridge.max_frames_per_pump else "")),
        ],
        "runtime": [
            ("executable", config.runtime.executable or "auto-detect"),
            ("preferred", config.runtime.preferred or ""),
            ("wrapper_path", str(config.runtime.wrapper_path) if config.runtime.wrapper_path else "bundled"),
        ],
        "logging": [
            ("level", config.logging.level),
            ("format", config.logging.format),
            ("file", str(config.logging.file) if config.logging.file else ""),
        ],
    }

    console.print("[bold]pd-node Configuration[/bold]")
    console.print()

    for name, rows in sections.items():
        table = Table(title=name, show_header=True, header_style="bold")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in rows:
            table.add_row(key, value)
        console.print(table)
        console.print()


@app.command("path")
def config_path() -> None:
    """Print the path of the configuration file."""
    from pd_node.config import default_config_path

    typer.echo(str(default_config_path()))


@app.command("validate")
@handle_errors
def validate(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
) -> None:
    """Validate the configuration and report problems."""
    from pd_node.config import load_config, validate_config

    problems = validate_config(load_config(config_file))

    for problem in problems:
        color = "red" if problem.severity == "error" else "yellow"
        console.print(f"[{color}]{escape(str(problem))}[/{color}]")

    errors = [p for p in problems if p.severity == "error"]
    if errors:
        raise ConfigurationError(f"Configuration has {len(errors)} error(s)")

    console.print("[green]Configuration is valid.[/green]")
