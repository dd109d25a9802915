"""pd-node runtimes command - Show installed JavaScript runtimes."""

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from pd_node.bridge.discovery import ScriptType, discover_all_runtimes
from pd_node.cli.error_handler import handle_errors

app = typer.Typer(help="Show installed JavaScript runtimes.")
console = Console()


@app.callback(invoke_without_command=True)
@handle_errors
def list_runtimes(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in JSON format.",
    ),
) -> None:
    """List the runtimes pd-node can use, in order of preference.

    Example:
        pd-node runtimes
        pd-node runtimes --json
    """
    runtimes = asyncio.run(discover_all_runtimes())

    if json_output:
        data = [
            {
                "name": info.name,
                "version": info.version,
                "executable": info.executable,
                "typescript": info.supports(ScriptType.TYPESCRIPT),
            }
            for info in runtimes
        ]
        typer.echo(json.dumps(data, indent=2))
        return

    if not runtimes:
        console.print("[yellow]No JavaScript runtime found.[/yellow]")
        console.print("Install Bun (https://bun.sh) or Node.js (https://nodejs.org).")
        return

    table = Table(title="JavaScript Runtimes")
    table.add_column("Runtime", style="cyan")
    table.add_column("Version")
    table.add_column("Executable")
    table.add_column("TypeScript", justify="center")

    for info in runtimes:
        table.add_row(
            info.name,
            info.version or "unknown",
            info.executable,
            "yes" if info.supports(ScriptType.TYPESCRIPT) else "no",
        )

    console.print(table)
