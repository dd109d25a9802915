"""Script runtime bridge for running JavaScript in a Bun/Node subprocess.

The bridge lets a host exchange Pure Data style messages with a script
running in a child process, using line-delimited JSON over stdio. All
host-facing calls are non-blocking so they can run from a cooperative
scheduler tick.
"""

from pd_node.bridge.bridge import Bridge, BridgeConfig, BridgeState, open_bridge
from pd_node.bridge.discovery import (
    RuntimeInfo,
    RuntimeType,
    ScriptType,
    detect_script_type,
    discover_runtime,
    discover_all_runtimes,
    check_runtime_available,
)
from pd_node.bridge.errors import (
    BridgeError,
    ExecFailed,
    ForkFailed,
    FrameTooLarge,
    PipeCreationFailed,
    ProcessFailure,
    RuntimeNotFoundError,
    ScriptNotFoundError,
    SpawnError,
    TransportError,
    WriteFailed,
)
from pd_node.bridge.host import HostEventSink, LoggingEventSink, RecordingEventSink
from pd_node.bridge.paths import default_wrapper_path, resolve_script_path
from pd_node.bridge.protocol import (
    ErrorEvent,
    InboundEvent,
    LogEvent,
    OutletEvent,
    ProtocolError,
    ProtocolErrorCode,
    ReadyEvent,
    decode_inbound,
    encode_outbound,
)
from pd_node.bridge.supervisor import ChildProcess, ProcessSupervisor
from pd_node.bridge.transport import LineBuffer, PipeEndpoint, TransportChannel

__all__ = [
    # Bridge
    "Bridge",
    "BridgeConfig",
    "BridgeState",
    "open_bridge",
    # Host
    "HostEventSink",
    "LoggingEventSink",
    "RecordingEventSink",
    # Protocol
    "ErrorEvent",
    "InboundEvent",
    "LogEvent",
    "OutletEvent",
    "ProtocolError",
    "ProtocolErrorCode",
    "ReadyEvent",
    "decode_inbound",
    "encode_outbound",
    # Supervisor / transport
    "ChildProcess",
    "ProcessSupervisor",
    "LineBuffer",
    "PipeEndpoint",
    "TransportChannel",
    # Discovery / paths
    "RuntimeInfo",
    "RuntimeType",
    "ScriptType",
    "detect_script_type",
    "discover_runtime",
    "discover_all_runtimes",
    "check_runtime_available",
    "default_wrapper_path",
    "resolve_script_path",
    # Errors
    "BridgeError",
    "ExecFailed",
    "ForkFailed",
    "FrameTooLarge",
    "PipeCreationFailed",
    "ProcessFailure",
    "RuntimeNotFoundError",
    "ScriptNotFoundError",
    "SpawnError",
    "TransportError",
    "WriteFailed",
]
