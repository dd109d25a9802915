"""
Script Runtime Bridge.

Combines the process supervisor, the transport channel and the message
protocol into one lifecycle-managed unit. The host sends events with
``send`` and calls ``pump`` from its scheduler tick; neither call blocks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

from .errors import BridgeError, FrameTooLarge, ProcessFailure, ScriptNotFoundError, SpawnError, TransportError
from .host import HostEventSink, LoggingEventSink
from .protocol import (
    Atom,
    ErrorEvent,
    InboundEvent,
    LogEvent,
    OutletEvent,
    ProtocolError,
    ReadyEvent,
    Selector,
    decode_inbound,
    encode_outbound,
)
from .supervisor import DEFAULT_GRACE_PERIOD, ChildProcess, ProcessHandle, ProcessSupervisor
from .transport import DEFAULT_MAX_FRAME_SIZE, DEFAULT_READ_CHUNK_SIZE, PipeEndpoint

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_INBOUND = (PipeEndpoint.STDOUT, PipeEndpoint.STDERR)


class BridgeState(Enum):
    """Lifecycle state of a bridge."""

    CREATED = auto()
    SPAWNING = auto()
    AWAITING_READY = auto()
    READY = auto()
    TERMINATING = auto()
    TERMINATED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        """FAILED and TERMINATED are final; nothing happens after them."""
        return self in (BridgeState.FAILED, BridgeState.TERMINATED)

    @property
    def is_running(self) -> bool:
        """States in which the child is expected to be alive."""
        return self in (BridgeState.AWAITING_READY, BridgeState.READY)


@dataclass
class BridgeConfig:
    """Configuration for a bridge instance."""

    # Interval between pumps when the bridge drives its own asyncio task (seconds)
    poll_interval: float = 0.001

    # Delay between SIGTERM and SIGKILL on shutdown (seconds)
    grace_period: float = DEFAULT_GRACE_PERIOD

    # Bytes requested per non-blocking read
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE

    # Longest accepted inbound line
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE

    # Frames handled per pipe in one pump (0 drains everything available)
    max_frames_per_pump: int = 0

    # Inlet used when send() is not given one
    inlet: int = 0


class Bridge:
    """
    Bridge to a script running in a JavaScript runtime subprocess.

    The child is started as ``executable wrapper script``. It announces
    readiness with a ``ready`` event; messages sent before that are dropped.

    Example:
        bridge = Bridge("/usr/local/bin/bun", wrapper, "patch/hello.js", sink)
        if bridge.start():
            ...
            bridge.pump()            # on every scheduler tick
            bridge.send_float(3.5)   # once bridge.is_ready
            ...
            bridge.shutdown()
    """

    def __init__(
        self,
        executable_path: PathLike,
        wrapper_path: PathLike,
        script_path: PathLike,
        sink: Optional[HostEventSink] = None,
        config: Optional[BridgeConfig] = None,
        supervisor: Optional[ProcessHandle] = None,
    ):
        self._config = config or BridgeConfig()
        self._executable_path = str(executable_path)
        self._wrapper_path = str(wrapper_path)
        self._script_path = str(script_path)
        self._sink: HostEventSink = sink or LoggingEventSink()
        self._supervisor: ProcessHandle = supervisor or ProcessSupervisor(
            grace_period=self._config.grace_period,
            read_chunk_size=self._config.read_chunk_size,
            max_frame_size=self._config.max_frame_size,
        )
        self._state = BridgeState.CREATED
        self._child: Optional[ChildProcess] = None
        self._failure: Optional[BridgeError] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._frames_read = 0

    @property
    def state(self) -> BridgeState:
        """Get the current bridge state."""
        return self._state

    @property
    def is_ready(self) -> bool:
        """Check if the script accepts messages."""
        return self._state == BridgeState.READY

    @property
    def pid(self) -> Optional[int]:
        """Process ID of the child, while it is supervised."""
        return self._child.pid if self._child else None

    @property
    def failure(self) -> Optional[BridgeError]:
        """The error that moved the bridge to FAILED, if any."""
        return self._failure

    @property
    def config(self) -> BridgeConfig:
        return self._config

    def is_alive(self) -> bool:
        """Non-blocking check whether the child process is running."""
        if self._child is None:
            return False
        return self._supervisor.is_alive(self._child)

    def start(self) -> bool:
        """
        Spawn the runtime process.

        On failure the bridge moves to FAILED and the error is reported to
        the sink once; nothing is raised.

        Returns:
            True if the process was spawned

        Raises:
            RuntimeError: If the bridge was already started
        """
        if self._state != BridgeState.CREATED:
            raise RuntimeError(f"Cannot start bridge in state: {self._state}")

        self._state = BridgeState.SPAWNING

        script = Path(self._script_path).expanduser()
        if not script.is_file():
            self._fail(ScriptNotFoundError(self._script_path))
            return False
        # The wrapper require()s the script; a bare relative name would be
        # looked up as a module
        self._script_path = str(script.resolve())

        try:
            self._child = self._supervisor.spawn(
                self._executable_path,
                [self._wrapper_path, self._script_path],
            )
        except SpawnError as e:
            self._fail(e)
            return False

        self._state = BridgeState.AWAITING_READY
        logger.info(f"Spawned {Path(self._executable_path).name} (pid={self._child.pid}) for {self._script_path}")
        return True

    def send(
        self,
        selector: str,
        args: Sequence[Atom] = (),
        inlet: Optional[int] = None,
    ) -> bool:
        """
        Send a message to the script.

        Messages are only written once the script is ready; before that
        they are dropped. Encoding and write failures are reported to the
        sink and never raised.

        Args:
            selector: Message selector ("bang", "float", "symbol", "list" or any symbol)
            args: Ordered numbers and strings
            inlet: Target inlet (defaults to the configured inlet)

        Returns:
            True if the message was written
        """
        if self._state == BridgeState.AWAITING_READY:
            logger.debug(f"Dropping '{selector}' sent before the script is ready")
            return False
        if self._state != BridgeState.READY or self._child is None:
            return False

        try:
            payload = encode_outbound(self._config.inlet if inlet is None else inlet, selector, args)
        except ProtocolError as e:
            logger.warning(f"Cannot encode '{selector}': {e}")
            self._notify(self._sink.report_error, str(e))
            return False

        try:
            self._child.channel.write_line(payload)
        except TransportError as e:
            logger.warning(f"Send failed: {e}")
            self._notify(self._sink.report_error, str(e))
            return False

        logger.debug(f"Sent {payload!r}")
        return True

    def send_bang(self, inlet: Optional[int] = None) -> bool:
        return self.send(Selector.BANG, (), inlet)

    def send_float(self, value: float, inlet: Optional[int] = None) -> bool:
        return self.send(Selector.FLOAT, (value,), inlet)

    def send_symbol(self, text: str, inlet: Optional[int] = None) -> bool:
        return self.send(Selector.SYMBOL, (text,), inlet)

    def send_list(self, args: Sequence[Atom], inlet: Optional[int] = None) -> bool:
        return self.send(Selector.LIST, args, inlet)

    def pump(self) -> int:
        """
        Drain and dispatch everything the child has written so far.

        Stdout frames are handled first, in arrival order, then stderr
        lines. Afterwards the child's liveness is checked; if it exited,
        remaining output is drained and the bridge moves to FAILED.

        Returns:
            Number of events dispatched to the sink
        """
        if not self._state.is_running:
            return 0

        dispatched = self._drain()

        if self._state.is_running and not self.is_alive():
            dispatched += self._drain_after_exit()
            if self._state.is_running:
                returncode = self._child.returncode if self._child else None
                self._fail(ProcessFailure(returncode))

        return dispatched

    def shutdown(self) -> None:
        """Terminate the child and release all resources. Idempotent."""
        if self._state == BridgeState.CREATED:
            self._state = BridgeState.TERMINATED
            return
        if self._state.is_terminal or self._state == BridgeState.TERMINATING:
            return

        self._state = BridgeState.TERMINATING
        self.stop_polling()
        try:
            self._release()
        finally:
            self._state = BridgeState.TERMINATED
            logger.info("Bridge terminated")

    # Alias for shutdown() for consistency with other closeable resources
    def close(self) -> None:
        """Alias for shutdown()."""
        self.shutdown()

    # Scheduler integration

    async def run(self, interval: Optional[float] = None) -> None:
        """Pump on the running event loop until the bridge stops."""
        interval = self._config.poll_interval if interval is None else interval
        while self._state.is_running:
            self.pump()
            await asyncio.sleep(interval)

    def start_polling(self, interval: Optional[float] = None) -> asyncio.Task:
        """
        Start a background task that pumps at a fixed interval.

        Must be called from a running event loop.
        """
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self.run(interval))
        return self._poll_task

    def stop_polling(self) -> None:
        """Cancel the background pump task, if any."""
        if self._poll_task is not None:
            # run() returns by itself once the state is terminal
            if not self._poll_task.done() and self._poll_task is not _current_task():
                self._poll_task.cancel()
            self._poll_task = None

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the script signals readiness.

        Pumps by itself when no polling task is running.

        Returns:
            True if the bridge is ready, False if it stopped first

        Raises:
            TimeoutError: If the script is not ready within the timeout
        """
        try:
            await asyncio.wait_for(self._until_ready(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Script was not ready within {timeout}s")
        return self.is_ready

    async def _until_ready(self) -> None:
        while self._state == BridgeState.AWAITING_READY:
            if self._poll_task is None or self._poll_task.done():
                self.pump()
            await asyncio.sleep(self._config.poll_interval)

    # Context manager support
    def __enter__(self) -> "Bridge":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"Bridge(script={self._script_path!r}, state={self._state.name}, pid={self.pid})"

    # Private methods

    def _drain(self) -> int:
        """Handle available stdout frames, then available stderr lines."""
        dispatched = 0

        for frame in self._frames(PipeEndpoint.STDOUT):
            if self._handle_frame(frame):
                dispatched += 1

        for line in self._frames(PipeEndpoint.STDERR):
            text = line.decode("utf-8", errors="replace").rstrip("\r")
            if text.strip():
                self._notify(self._sink.log, f"stderr: {text}")

        return dispatched

    def _drain_after_exit(self) -> int:
        """Drain an exited child until its pipes reach EOF or stop making progress."""
        dispatched = 0
        previous = None
        while self._state.is_running and self._child is not None:
            channel = self._child.channel
            if all(channel.at_eof(endpoint) for endpoint in _INBOUND):
                break
            # Pipes inherited by a grandchild may never reach EOF
            snapshot = (
                self._frames_read,
                tuple((channel.at_eof(e), channel.buffered(e)) for e in _INBOUND),
            )
            if snapshot == previous:
                break
            previous = snapshot
            dispatched += self._drain()
        return dispatched

    def _frames(self, endpoint: PipeEndpoint):
        """Yield frames currently available on an inbound pipe."""
        limit = self._config.max_frames_per_pump
        count = 0
        while self._state.is_running and self._child is not None:
            if limit and count >= limit:
                return
            channel = self._child.channel
            try:
                frame = channel.try_read_frame(endpoint)
            except FrameTooLarge as e:
                logger.warning(f"Discarding {endpoint.value} frame: {e}")
                self._notify(self._sink.report_error, str(e))
                continue
            if frame is None:
                # A last line without a newline is still delivered at EOF
                frame = channel.flush_remainder(endpoint)
                if frame is None:
                    return
            count += 1
            self._frames_read += 1
            yield frame

    def _handle_frame(self, frame: bytes) -> bool:
        """Decode one stdout frame and dispatch it. Returns True if dispatched."""
        if not frame.strip():
            return False

        try:
            event = decode_inbound(frame)
        except ProtocolError as e:
            logger.warning(f"{e}: {frame[:200]!r}")
            self._notify(self._sink.report_error, f"Protocol error: {e}")
            return False

        logger.debug(f"Received {event}")
        self._dispatch(event)
        return True

    def _dispatch(self, event: InboundEvent) -> None:
        """Route a decoded event to the sink or the state machine."""
        sink = self._sink

        if isinstance(event, ReadyEvent):
            if self._state == BridgeState.AWAITING_READY:
                self._state = BridgeState.READY
                logger.info("Script runtime ready")
            else:
                logger.debug("Ignoring repeated ready event")
        elif isinstance(event, OutletEvent):
            if event.selector == Selector.BANG:
                self._notify(sink.emit_bang)
            elif event.selector == Selector.FLOAT:
                self._notify(sink.emit_float, event.args[0])
            elif event.selector == Selector.SYMBOL:
                self._notify(sink.emit_symbol, event.args[0])
            elif event.selector == Selector.LIST:
                self._notify(sink.emit_list, list(event.args))
        elif isinstance(event, LogEvent):
            self._notify(sink.log, event.message)
        elif isinstance(event, ErrorEvent):
            self._notify(sink.report_error, event.message)

    def _notify(self, handler: Callable[..., Any], *args: Any) -> None:
        """Call a sink method; a failing host handler never breaks the bridge."""
        try:
            handler(*args)
        except Exception as e:
            logger.error(f"Host sink handler error in {getattr(handler, '__name__', handler)}: {e}")

    def _fail(self, error: BridgeError) -> None:
        """Move to FAILED, release resources and report the error once."""
        if self._state.is_terminal:
            return

        self._state = BridgeState.FAILED
        self._failure = error
        self.stop_polling()
        self._release()

        logger.error(str(error))
        self._notify(self._sink.report_error, str(error))

    def _release(self) -> None:
        """Terminate the child, if any, and close its pipes."""
        child, self._child = self._child, None
        if child is not None:
            self._supervisor.terminate(child)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def open_bridge(
    executable_path: PathLike,
    wrapper_path: PathLike,
    script_path: PathLike,
    sink: Optional[HostEventSink] = None,
    config: Optional[BridgeConfig] = None,
) -> Bridge:
    """
    Create and start a bridge.

    Spawn failures are reported to the sink; check ``bridge.state``.

    Returns:
        The started (or FAILED) bridge
    """
    bridge = Bridge(executable_path, wrapper_path, script_path, sink, config)
    bridge.start()
    return bridge
