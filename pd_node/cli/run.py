"""pd-node run command - Run a script and exchange messages with it."""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from pd_node.bridge.bridge import Bridge, BridgeState
from pd_node.bridge.discovery import RuntimeInfo, RuntimeType, discover_runtime, runtime_from_executable
from pd_node.bridge.paths import default_wrapper_path, resolve_script_path
from pd_node.bridge.protocol import Atom, Selector
from pd_node.cli.console_sink import ConsoleEventSink
from pd_node.cli.error_handler import (
    BridgeFailedError,
    ConfigurationError,
    ValidationError,
    handle_errors,
)
from pd_node.cli.exit_codes import ExitCode

app = typer.Typer(help="Run a script in a JavaScript runtime and exchange messages with it.")
console = Console(stderr=True)

logger = logging.getLogger(__name__)


def parse_atom(token: str) -> Atom:
    """Numbers become floats, everything else stays a symbol."""
    try:
        return float(token)
    except ValueError:
        return token


def parse_message(text: str) -> tuple[str, list[Atom]]:
    """
    Parse a message the way a Pd message box does.

    Examples:
        "bang"        -> ("bang", [])
        "3.5"         -> ("float", [3.5])
        "1 2 foo"     -> ("list", [1.0, 2.0, "foo"])
        "symbol foo"  -> ("symbol", ["foo"])
        "set 1 2"     -> ("set", [1.0, 2.0])

    Raises:
        ValidationError: If the message is empty
    """
    tokens = text.split()
    if not tokens:
        raise ValidationError("Empty message", details={"message": repr(text)})

    atoms = [parse_atom(token) for token in tokens]
    head = atoms[0]
    if isinstance(head, float):
        if len(atoms) == 1:
            return Selector.FLOAT, atoms
        return Selector.LIST, atoms
    return head, atoms[1:]


async def _select_runtime(
    script_path: Path,
    executable: Optional[str],
    preferred: Optional[str],
) -> RuntimeInfo:
    """Use the configured executable, or discover one for the script."""
    if executable:
        return await runtime_from_executable(executable)

    preferred_type = RuntimeType[preferred.upper()] if preferred else None
    return await discover_runtime(script_path, preferred_type)


async def _run_session(
    bridge: Bridge,
    messages: list[tuple[str, list[Atom]]],
    duration: Optional[float],
    ready_timeout: float,
) -> int:
    """Drive one bridge from start to shutdown. Returns the exit code."""
    if not bridge.start():
        # The sink already printed the diagnostic
        return ExitCode.BRIDGE_ERROR

    try:
        try:
            ready = await bridge.wait_ready(ready_timeout)
        except TimeoutError as e:
            raise BridgeFailedError(str(e), details={"pid": bridge.pid})

        if not ready:
            return ExitCode.BRIDGE_ERROR

        for selector, args in messages:
            bridge.send(selector, args)

        task = bridge.start_polling()
        await asyncio.wait({task}, timeout=duration)
    finally:
        bridge.shutdown()

    if bridge.state == BridgeState.FAILED:
        return ExitCode.BRIDGE_ERROR
    return ExitCode.SUCCESS


@app.command("run")
@handle_errors
def run(
    script: Path = typer.Argument(
        ...,
        help="Script to run (.js, .ts or .tsx).",
    ),
    send: List[str] = typer.Option(
        [],
        "--send",
        "-s",
        help="Message to send once the script is ready, e.g. 'bang', '3.5', 'list 1 2'. Repeatable.",
    ),
    duration: Optional[float] = typer.Option(
        None,
        "--duration",
        "-t",
        help="Stop after this many seconds (default: run until the script exits).",
        min=0.0,
    ),
    ready_timeout: float = typer.Option(
        10.0,
        "--ready-timeout",
        help="Seconds to wait for the script to become ready.",
        min=0.0,
    ),
    runtime: Optional[str] = typer.Option(
        None,
        "--runtime",
        "-r",
        help="Runtime executable to use (auto-detect if not set).",
    ),
    prefer: Optional[str] = typer.Option(
        None,
        "--prefer",
        help="Preferred runtime when several are installed (bun or node).",
    ),
    wrapper: Optional[Path] = typer.Option(
        None,
        "--wrapper",
        help="Wrapper script loaded before the user script.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    base_dir: Optional[Path] = typer.Option(
        None,
        "--base-dir",
        "-b",
        help="Directory relative script paths are resolved against (default: current directory).",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Run a script and print what it sends to its outlets.

    Outlet values are printed to stdout; logs and errors go to stderr.

    Example:
        pd-node run hello.js --send bang --send 21 --duration 2
        pd-node run synth.ts --runtime bun
    """
    from pd_node.config import load_config, validate_config

    config = load_config(config_file)
    problems = [e for e in validate_config(config) if e.severity == "error"]
    if problems:
        raise ConfigurationError(
            "Invalid configuration",
            details={problem.field: problem.message for problem in problems},
        )

    preferred = prefer or config.runtime.preferred
    if preferred and preferred.lower() not in ("bun", "node"):
        raise ValidationError(f"Unknown runtime '{preferred}' (expected 'bun' or 'node')")

    messages = [parse_message(text) for text in send]

    script_path = resolve_script_path(script, base_dir)
    info = asyncio.run(_select_runtime(script_path, runtime or config.runtime.executable, preferred))
    wrapper_path = wrapper or config.runtime.wrapper_path or default_wrapper_path()

    console.print(f"[bold]Runtime:[/bold] {info.display_name} ({info.executable})")
    console.print(f"[bold]Script:[/bold] {script_path}")

    sink = ConsoleEventSink()
    bridge = Bridge(info.executable, wrapper_path, script_path, sink, config.to_bridge_config())
    logger.debug(f"Starting {bridge!r}")

    exit_code = asyncio.run(_run_session(bridge, messages, duration, ready_timeout))
    if exit_code != ExitCode.SUCCESS:
        raise typer.Exit(code=exit_code)
