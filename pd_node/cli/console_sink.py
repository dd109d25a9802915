"""Rich console output for events emitted by a running script."""

from __future__ import annotations

from typing import Sequence

from rich.console import Console
from rich.markup import escape

from pd_node.bridge.protocol import Atom


def format_atom(value: Atom) -> str:
    """Format an atom the way a Pd console prints it."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class ConsoleEventSink:
    """Prints outlet values, logs and errors to a rich console.

    Outlet values go to stdout so they can be piped; logs and errors go to
    stderr.
    """

    def __init__(self, out: Console | None = None, err: Console | None = None) -> None:
        self.out = out or Console()
        self.err = err or Console(stderr=True)
        self.error_count = 0
        self.output_count = 0

    def emit_bang(self) -> None:
        self._output("bang")

    def emit_float(self, value: float) -> None:
        self._output(format_atom(value))

    def emit_symbol(self, text: str) -> None:
        self._output(f"symbol {text}")

    def emit_list(self, args: Sequence[Atom]) -> None:
        self._output(" ".join(["list", *(format_atom(a) for a in args)]))

    def log(self, text: str) -> None:
        self.err.print(f"[dim]\\[node][/dim] {escape(text)}")

    def report_error(self, text: str) -> None:
        self.error_count += 1
        self.err.print(f"[red]\\[node] error:[/red] {escape(text)}")

    def _output(self, text: str) -> None:
        self.output_count += 1
        self.out.print(escape(text), highlight=False)
