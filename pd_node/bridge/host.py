"""Host-side event sinks that receive what the script emits."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from .protocol import Atom

logger = logging.getLogger(__name__)


@runtime_checkable
class HostEventSink(Protocol):
    """Capabilities the bridge uses to hand events back to the host.

    The bridge only calls these methods; it never reaches into host
    internals.
    """

    def emit_bang(self) -> None: ...

    def emit_float(self, value: float) -> None: ...

    def emit_symbol(self, text: str) -> None: ...

    def emit_list(self, args: Sequence[Atom]) -> None: ...

    def log(self, text: str) -> None: ...

    def report_error(self, text: str) -> None: ...


class LoggingEventSink:
    """Sink that writes every event to a logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._logger = log or logger

    def emit_bang(self) -> None:
        self._logger.info("outlet: bang")

    def emit_float(self, value: float) -> None:
        self._logger.info(f"outlet: float {value}")

    def emit_symbol(self, text: str) -> None:
        self._logger.info(f"outlet: symbol {text}")

    def emit_list(self, args: Sequence[Atom]) -> None:
        self._logger.info(f"outlet: list {' '.join(str(a) for a in args)}")

    def log(self, text: str) -> None:
        self._logger.info(text)

    def report_error(self, text: str) -> None:
        self._logger.error(text)


class RecordingEventSink:
    """Sink that records calls in order, as ``(method, value)`` tuples.

    Example:
        sink = RecordingEventSink()
        bridge = Bridge(runtime, wrapper, script, sink)
        ...
        assert sink.calls[0] == ("emit_float", 3.5)
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def emit_bang(self) -> None:
        self.calls.append(("emit_bang", None))

    def emit_float(self, value: float) -> None:
        self.calls.append(("emit_float", value))

    def emit_symbol(self, text: str) -> None:
        self.calls.append(("emit_symbol", text))

    def emit_list(self, args: Sequence[Atom]) -> None:
        self.calls.append(("emit_list", list(args)))

    def log(self, text: str) -> None:
        self.calls.append(("log", text))

    def report_error(self, text: str) -> None:
        self.calls.append(("report_error", text))

    @property
    def errors(self) -> list[str]:
        """Texts passed to report_error."""
        return [value for name, value in self.calls if name == "report_error"]

    @property
    def logs(self) -> list[str]:
        """Texts passed to log."""
        return [value for name, value in self.calls if name == "log"]

    @property
    def outputs(self) -> list[tuple[str, Any]]:
        """Outlet emissions only."""
        return [call for call in self.calls if call[0].startswith("emit_")]

    def clear(self) -> None:
        self.calls.clear()
