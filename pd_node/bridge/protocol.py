"""
Line-delimited JSON message protocol.

Defines the envelopes exchanged with the runtime child process. Outbound
envelopes carry host messages to a script inlet; inbound envelopes signal
readiness, route values to outlets, or carry log and error text.

Wire format (one compact JSON object per line):

    host -> child  {"type":"message","inlet":0,"selector":"float","args":[3.5]}
    child -> host  {"type":"ready"}
                   {"type":"outlet","outlet":0,"selector":"list","args":[1,"a"]}
                   {"type":"log","message":"..."}
                   {"type":"error","message":"..."}
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional, Sequence, Union

Atom = Union[float, int, str]


class MessageType:
    """Values of the envelope ``type`` field."""

    MESSAGE = "message"
    READY = "ready"
    OUTLET = "outlet"
    LOG = "log"
    ERROR = "error"


class Selector:
    """Selectors understood for outlet events."""

    BANG = "bang"
    FLOAT = "float"
    SYMBOL = "symbol"
    LIST = "list"


class ProtocolErrorCode(IntEnum):
    """Reasons a frame or an outbound message was rejected."""

    MALFORMED_PAYLOAD = 1
    INVALID_FIELD = 2
    INVALID_ARGUMENT = 3


class ProtocolError(Exception):
    """Protocol error with code and optional offending data."""

    def __init__(
        self,
        code: Union[ProtocolErrorCode, int],
        message: str,
        data: Optional[Any] = None
    ):
        super().__init__(message)
        self.code = ProtocolErrorCode(code)
        self.message = message
        self.data = data

    def __str__(self) -> str:
        return self.message

    @classmethod
    def malformed_payload(cls, reason: str, data: Optional[Any] = None) -> "ProtocolError":
        """Create an error for a frame that is not a recognised envelope."""
        return cls(ProtocolErrorCode.MALFORMED_PAYLOAD, f"Malformed payload: {reason}", data)

    @classmethod
    def invalid_field(cls, field: str, reason: str, data: Optional[Any] = None) -> "ProtocolError":
        """Create an error for a known envelope with a bad field."""
        return cls(ProtocolErrorCode.INVALID_FIELD, f"Invalid field '{field}': {reason}", data)

    @classmethod
    def invalid_argument(cls, reason: str, data: Optional[Any] = None) -> "ProtocolError":
        """Create an error for an outbound message that cannot be encoded."""
        return cls(ProtocolErrorCode.INVALID_ARGUMENT, f"Invalid argument: {reason}", data)


@dataclass(frozen=True)
class OutboundMessage:
    """Host message addressed to a script inlet."""

    inlet: int
    selector: str
    args: tuple[Atom, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": MessageType.MESSAGE,
            "inlet": self.inlet,
            "selector": self.selector,
            "args": list(self.args),
        }


@dataclass(frozen=True)
class ReadyEvent:
    """The child finished initializing and accepts messages."""


@dataclass(frozen=True)
class OutletEvent:
    """Value the script sends out of one of its outlets."""

    outlet: int
    selector: str
    args: tuple[Atom, ...] = ()


@dataclass(frozen=True)
class LogEvent:
    """Text the script wants posted to the host console."""

    message: str


@dataclass(frozen=True)
class ErrorEvent:
    """Error text reported by the script."""

    message: str


InboundEvent = Union[ReadyEvent, OutletEvent, LogEvent, ErrorEvent]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_atom(value: Any) -> bool:
    return _is_number(value) or isinstance(value, str)


def encode_outbound(inlet_index: int, selector: str, args: Sequence[Atom] = ()) -> bytes:
    """
    Encode a host message as one frame.

    Args:
        inlet_index: Target inlet (0-based)
        selector: Message selector, e.g. "bang", "float" or any symbol
        args: Ordered numbers and strings

    Returns:
        UTF-8 JSON bytes without a trailing newline. The result never
        contains a raw newline byte.

    Raises:
        ProtocolError: If the inlet, selector or an argument is invalid
    """
    if not isinstance(inlet_index, int) or isinstance(inlet_index, bool) or inlet_index < 0:
        raise ProtocolError.invalid_argument(f"inlet must be a non-negative integer, got {inlet_index!r}")
    if not isinstance(selector, str) or not selector:
        raise ProtocolError.invalid_argument(f"selector must be a non-empty string, got {selector!r}")

    atoms = tuple(args)
    for position, value in enumerate(atoms):
        if not _is_atom(value):
            raise ProtocolError.invalid_argument(
                f"argument {position} must be a number or string, got {type(value).__name__}"
            )
        if isinstance(value, float) and not math.isfinite(value):
            raise ProtocolError.invalid_argument(f"argument {position} is not finite: {value}")

    message = OutboundMessage(inlet=inlet_index, selector=selector, args=atoms)
    return json.dumps(message.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_inbound(frame: Union[bytes, str]) -> InboundEvent:
    """
    Parse and validate one inbound frame.

    Args:
        frame: A single line from the child's stdout, without the newline

    Returns:
        The typed event

    Raises:
        ProtocolError: MALFORMED_PAYLOAD if the frame is not JSON or has a
            missing or unknown type, INVALID_FIELD if a known type has
            fields of the wrong shape
    """
    if isinstance(frame, bytes):
        try:
            text = frame.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError.malformed_payload(f"invalid UTF-8 ({e.reason})", frame)
    else:
        text = frame
    text = text.rstrip("\r")

    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise ProtocolError.malformed_payload(f"not JSON ({e.msg})", text)
    except (ValueError, RecursionError) as e:
        # Nesting too deep, integer literal too long, NaN or Infinity
        raise ProtocolError.malformed_payload(f"not JSON ({e})", text[:200])

    if not isinstance(data, dict):
        raise ProtocolError.malformed_payload("expected a JSON object", text)

    msg_type = data.get("type")
    if msg_type is None:
        raise ProtocolError.malformed_payload("missing 'type'", text)

    if msg_type == MessageType.READY:
        return ReadyEvent()
    if msg_type == MessageType.OUTLET:
        return _decode_outlet(data)
    if msg_type == MessageType.LOG:
        return LogEvent(message=_text_field(data, "message"))
    if msg_type == MessageType.ERROR:
        return ErrorEvent(message=_text_field(data, "message"))

    raise ProtocolError.malformed_payload(f"unknown type {msg_type!r}", text)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard constant {name}")


def _as_float(value: Any, data: dict[str, Any]) -> float:
    """Convert a decoded JSON number to a finite float."""
    try:
        number = float(value)
    except OverflowError:
        raise ProtocolError.invalid_field("args", "number out of range", data)
    if not math.isfinite(number):
        raise ProtocolError.invalid_field("args", "number out of range", data)
    return number


def _as_atom(value: Any, data: dict[str, Any]) -> Atom:
    if isinstance(value, str):
        return value
    return _as_float(value, data)


def _text_field(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str):
        raise ProtocolError.invalid_field(name, "expected a string", data)
    return value


def _decode_outlet(data: dict[str, Any]) -> OutletEvent:
    outlet = data.get("outlet")
    if not isinstance(outlet, int) or isinstance(outlet, bool) or outlet < 0:
        raise ProtocolError.invalid_field("outlet", "expected a non-negative integer", data)

    selector = data.get("selector")
    if not isinstance(selector, str):
        raise ProtocolError.invalid_field("selector", "expected a string", data)

    raw_args = data.get("args")
    if raw_args is None:
        raw_args = []
    if not isinstance(raw_args, list):
        raise ProtocolError.invalid_field("args", "expected an array", data)

    if selector == Selector.BANG:
        return OutletEvent(outlet=outlet, selector=selector)

    if selector == Selector.FLOAT:
        if len(raw_args) != 1 or not _is_number(raw_args[0]):
            raise ProtocolError.invalid_field("args", "float expects exactly one number", data)
        return OutletEvent(outlet=outlet, selector=selector, args=(_as_float(raw_args[0], data),))

    if selector == Selector.SYMBOL:
        if len(raw_args) != 1 or not isinstance(raw_args[0], str):
            raise ProtocolError.invalid_field("args", "symbol expects exactly one string", data)
        return OutletEvent(outlet=outlet, selector=selector, args=(raw_args[0],))

    if selector == Selector.LIST:
        for value in raw_args:
            if not _is_atom(value):
                raise ProtocolError.invalid_field("args", "list items must be numbers or strings", data)
        return OutletEvent(outlet=outlet, selector=selector, args=tuple(_as_atom(v, data) for v in raw_args))

    raise ProtocolError.invalid_field("selector", f"unsupported outlet selector {selector!r}", data)
