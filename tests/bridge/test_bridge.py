"""Tests for the script runtime bridge."""

import asyncio
from unittest.mock import MagicMock

import pytest

from pd_node.bridge.bridge import Bridge, BridgeConfig, BridgeState, open_bridge
from pd_node.bridge.errors import ExecFailed, ProcessFailure, ScriptNotFoundError
from pd_node.bridge.host import RecordingEventSink


# Wrapper that sends one malformed frame, then a valid one, then behaves like a script
BROKEN_FRAMES_WRAPPER = """
    import sys
    sys.stdout.write('{"type":"ready"}\\n')
    sys.stdout.write('this is not json\\n')
    sys.stdout.write('{"type":"bogus"}\\n')
    sys.stdout.write('\\n')
    sys.stdout.write('{"type":"log","message":"still alive"}\\n')
    sys.stdout.flush()
    for line in sys.stdin:
        pass
"""

# Wrapper that sends frames the decoder must reject without stopping the pump
HOSTILE_FRAMES_WRAPPER = """
    import sys
    sys.stdout.write('{"type":"ready"}\\n')
    sys.stdout.write('{"type":"outlet","outlet":0,"selector":"float","args":[1' + '0' * 400 + ']}\\n')
    sys.stdout.write('[' * 100000 + '\\n')
    sys.stdout.write('{"type":"log","message":"n","n":' + '1' * 5000 + '}\\n')
    sys.stdout.write('{"type":"log","message":"after"}\\n')
    sys.stdout.flush()
    for line in sys.stdin:
        pass
"""

# Wrapper whose output arrives in arbitrary pieces
SPLIT_WRITES_WRAPPER = """
    import sys, time
    data = '{"type":"ready"}\\n{"type":"outlet","outlet":0,"selector":"list","args":[1,"two",3]}\\n'
    for ch in data:
        sys.stdout.write(ch)
        sys.stdout.flush()
    for line in sys.stdin:
        pass
"""

# Wrapper that never becomes ready
SILENT_WRAPPER = """
    import sys
    for line in sys.stdin:
        pass
"""

# Wrapper that prints to stderr and exits after its last frame
EXITING_WRAPPER = """
    import sys
    sys.stdout.write('{"type":"ready"}\\n')
    sys.stdout.write('{"type":"log","message":"goodbye"}\\n')
    sys.stdout.write('{"type":"outlet","outlet":0,"selector":"bang"}')
    sys.stdout.flush()
    sys.stderr.write('crashing now\\n')
    sys.stderr.flush()
    sys.exit(2)
"""


@pytest.fixture
def sink():
    return RecordingEventSink()


@pytest.fixture
def bridge(python_executable, echo_wrapper, script_path, sink):
    bridge = Bridge(python_executable, echo_wrapper, script_path, sink)
    yield bridge
    bridge.shutdown()


@pytest.fixture
def ready_bridge(bridge, sink, pump_until):
    assert bridge.start()
    assert pump_until(bridge, lambda: bridge.is_ready)
    sink.clear()
    return bridge


class TestBridgeState:
    """Tests for BridgeState."""

    def test_terminal_states(self):
        assert BridgeState.FAILED.is_terminal
        assert BridgeState.TERMINATED.is_terminal
        assert not BridgeState.READY.is_terminal

    def test_running_states(self):
        assert BridgeState.AWAITING_READY.is_running
        assert BridgeState.READY.is_running
        assert not BridgeState.CREATED.is_running
        assert not BridgeState.TERMINATING.is_running


class TestLifecycle:
    """State transitions from start to shutdown."""

    def test_initial_state(self, bridge):
        assert bridge.state == BridgeState.CREATED
        assert bridge.pid is None
        assert not bridge.is_alive()

    def test_start_then_ready(self, bridge, sink, pump_until):
        assert bridge.start()
        assert bridge.state == BridgeState.AWAITING_READY
        assert bridge.pid is not None

        assert pump_until(bridge, lambda: bridge.is_ready)
        assert bridge.state == BridgeState.READY
        assert sink.logs[0].startswith("loading ")
        assert sink.logs[0].endswith("hello.js")

    def test_cannot_start_twice(self, bridge):
        bridge.start()

        with pytest.raises(RuntimeError):
            bridge.start()

    def test_shutdown_terminates(self, ready_bridge, sink):
        ready_bridge.shutdown()

        assert ready_bridge.state == BridgeState.TERMINATED
        assert not ready_bridge.is_alive()
        assert ready_bridge.pid is None
        assert sink.errors == []

    def test_shutdown_is_idempotent(self, ready_bridge):
        ready_bridge.shutdown()
        ready_bridge.shutdown()

        assert ready_bridge.state == BridgeState.TERMINATED

    def test_shutdown_before_start(self, bridge):
        bridge.shutdown()

        assert bridge.state == BridgeState.TERMINATED
        with pytest.raises(RuntimeError):
            bridge.start()

    def test_shutdown_while_awaiting_ready(self, python_executable, make_wrapper, script_path, sink):
        bridge = Bridge(python_executable, make_wrapper(SILENT_WRAPPER), script_path, sink)
        bridge.start()

        bridge.shutdown()

        assert bridge.state == BridgeState.TERMINATED

    def test_pump_after_shutdown_is_noop(self, ready_bridge):
        ready_bridge.shutdown()

        assert ready_bridge.pump() == 0

    def test_send_after_shutdown_is_dropped(self, ready_bridge, sink):
        ready_bridge.shutdown()

        assert not ready_bridge.send_bang()
        assert sink.calls == []

    def test_context_manager(self, python_executable, echo_wrapper, script_path, sink, pump_until):
        with Bridge(python_executable, echo_wrapper, script_path, sink) as bridge:
            assert pump_until(bridge, lambda: bridge.is_ready)

        assert bridge.state == BridgeState.TERMINATED

    def test_relative_script_is_resolved(self, python_executable, echo_wrapper, script_path, sink, pump_until, monkeypatch):
        monkeypatch.chdir(script_path.parent)
        bridge = Bridge(python_executable, echo_wrapper, "hello.js", sink)
        try:
            assert bridge.start()
            assert pump_until(bridge, lambda: bridge.is_ready)
            assert sink.logs[0] == f"loading {script_path.resolve()}"
        finally:
            bridge.shutdown()

    def test_open_bridge(self, python_executable, echo_wrapper, script_path, sink):
        bridge = open_bridge(python_executable, echo_wrapper, script_path, sink)
        try:
            assert bridge.state == BridgeState.AWAITING_READY
        finally:
            bridge.close()


class TestMessaging:
    """Round trips through the echo wrapper."""

    def test_float_round_trip(self, ready_bridge, sink, pump_until):
        assert ready_bridge.send_float(3.5)

        assert pump_until(ready_bridge, lambda: sink.outputs)
        assert sink.outputs == [("emit_float", 7.0)]

    def test_integer_float_arrives_as_float(self, ready_bridge, sink, pump_until):
        ready_bridge.send_float(2)

        assert pump_until(ready_bridge, lambda: sink.outputs)
        value = sink.outputs[0][1]
        assert value == 4.0
        assert isinstance(value, float)

    def test_bang_symbol_list(self, ready_bridge, sink, pump_until):
        ready_bridge.send_bang()
        ready_bridge.send_symbol("hello world")
        ready_bridge.send_list([1, "two", 3.5])

        assert pump_until(ready_bridge, lambda: len(sink.outputs) == 3)
        assert sink.outputs == [
            ("emit_bang", None),
            ("emit_symbol", "hello world"),
            ("emit_list", [1, "two", 3.5]),
        ]

    def test_events_keep_order(self, ready_bridge, sink, pump_until):
        for i in range(20):
            ready_bridge.send_float(i)

        assert pump_until(ready_bridge, lambda: len(sink.outputs) == 20)
        assert [value for _, value in sink.outputs] == [float(i * 2) for i in range(20)]

    def test_log_and_error_events(self, ready_bridge, sink, pump_until):
        ready_bridge.send("mystery")
        ready_bridge.send("fail")

        assert pump_until(ready_bridge, lambda: sink.errors)
        assert sink.logs == ["unhandled mystery"]
        assert sink.errors == ["asked to fail"]
        assert ready_bridge.state == BridgeState.READY

    def test_send_before_ready_is_dropped(self, python_executable, make_wrapper, script_path, sink, pump_until):
        bridge = Bridge(python_executable, make_wrapper(SILENT_WRAPPER), script_path, sink)
        bridge.start()
        try:
            assert not bridge.send_float(1.0)
            bridge.pump()
            assert sink.calls == []
            assert bridge.state == BridgeState.AWAITING_READY
        finally:
            bridge.shutdown()

    def test_send_before_start_is_dropped(self, bridge):
        assert not bridge.send_bang()

    def test_invalid_argument_is_reported(self, ready_bridge, sink):
        assert not ready_bridge.send("list", [None])

        assert len(sink.errors) == 1
        assert "Invalid argument" in sink.errors[0]
        assert ready_bridge.state == BridgeState.READY

    def test_send_to_other_inlet(self, ready_bridge, sink, pump_until):
        assert ready_bridge.send_float(1.0, inlet=1)

        assert pump_until(ready_bridge, lambda: sink.outputs)


class TestInboundFraming:
    """Frames that are broken or arrive in pieces."""

    def test_malformed_frames_reported_once_each(self, python_executable, make_wrapper, script_path, sink, pump_until):
        bridge = Bridge(python_executable, make_wrapper(BROKEN_FRAMES_WRAPPER), script_path, sink)
        bridge.start()
        try:
            assert pump_until(bridge, lambda: "still alive" in sink.logs)

            assert len(sink.errors) == 2
            assert all(error.startswith("Protocol error:") for error in sink.errors)
            assert bridge.state == BridgeState.READY
        finally:
            bridge.shutdown()

    def test_undecodable_frames_do_not_stop_pump(self, python_executable, make_wrapper, script_path, sink, pump_until):
        config = BridgeConfig(read_chunk_size=65536)
        bridge = Bridge(python_executable, make_wrapper(HOSTILE_FRAMES_WRAPPER), script_path, sink, config)
        bridge.start()
        try:
            assert pump_until(bridge, lambda: "after" in sink.logs)

            assert len(sink.errors) == 3
            assert all(error.startswith("Protocol error:") for error in sink.errors)
            assert sink.outputs == []
            assert bridge.state == BridgeState.READY
        finally:
            bridge.shutdown()

    def test_split_writes(self, python_executable, make_wrapper, script_path, sink, pump_until):
        bridge = Bridge(python_executable, make_wrapper(SPLIT_WRITES_WRAPPER), script_path, sink)
        bridge.start()
        try:
            assert pump_until(bridge, lambda: sink.outputs)
            assert sink.outputs == [("emit_list", [1, "two", 3])]
        finally:
            bridge.shutdown()

    def test_max_frames_per_pump(self, python_executable, echo_wrapper, script_path, sink, pump_until):
        config = BridgeConfig(max_frames_per_pump=1)
        bridge = Bridge(python_executable, echo_wrapper, script_path, sink, config)
        bridge.start()
        try:
            assert pump_until(bridge, lambda: bridge.is_ready)
            sink.clear()
            for i in range(3):
                bridge.send_float(i)

            assert pump_until(bridge, lambda: len(sink.outputs) == 3)
            assert [value for _, value in sink.outputs] == [0.0, 2.0, 4.0]
        finally:
            bridge.shutdown()


class TestFailure:
    """The bridge moves to FAILED and reports exactly once."""

    def test_child_exit_fails_bridge(self, ready_bridge, sink, pump_until):
        ready_bridge.send("exit", [3])

        assert pump_until(ready_bridge, lambda: ready_bridge.state == BridgeState.FAILED)
        assert len(sink.errors) == 1
        assert "exit status 3" in sink.errors[0]
        assert isinstance(ready_bridge.failure, ProcessFailure)
        assert ready_bridge.failure.returncode == 3
        assert ready_bridge.pid is None

        # Further pumps and sends do nothing
        assert ready_bridge.pump() == 0
        assert not ready_bridge.send_bang()
        assert len(sink.errors) == 1

    def test_output_before_exit_is_delivered(self, python_executable, make_wrapper, script_path, sink, pump_until):
        bridge = Bridge(python_executable, make_wrapper(EXITING_WRAPPER), script_path, sink)
        bridge.start()
        try:
            assert pump_until(bridge, lambda: bridge.state == BridgeState.FAILED)

            assert "goodbye" in sink.logs
            assert "stderr: crashing now" in sink.logs
            assert ("emit_bang", None) in sink.outputs
            assert sink.errors == ["Process terminated unexpectedly (exit status 2)"]
        finally:
            bridge.shutdown()

        assert bridge.state == BridgeState.FAILED

    def test_missing_executable(self, tmp_path, echo_wrapper, script_path, sink, fd_count):
        before = fd_count()
        bridge = Bridge(tmp_path / "no-such-runtime", echo_wrapper, script_path, sink)

        assert not bridge.start()

        assert bridge.state == BridgeState.FAILED
        assert isinstance(bridge.failure, ExecFailed)
        assert len(sink.errors) == 1
        assert fd_count() == before

    def test_missing_script(self, python_executable, echo_wrapper, tmp_path, sink):
        bridge = Bridge(python_executable, echo_wrapper, tmp_path / "missing.js", sink)

        assert not bridge.start()

        assert bridge.state == BridgeState.FAILED
        assert isinstance(bridge.failure, ScriptNotFoundError)
        assert sink.errors == [f"Script not found: {tmp_path / 'missing.js'} (path={tmp_path / 'missing.js'})"]

    def test_shutdown_after_failure_keeps_failed(self, tmp_path, echo_wrapper, script_path, sink):
        bridge = Bridge(tmp_path / "no-such-runtime", echo_wrapper, script_path, sink)
        bridge.start()

        bridge.shutdown()

        assert bridge.state == BridgeState.FAILED
        assert len(sink.errors) == 1

    def test_no_descriptor_leak(self, python_executable, echo_wrapper, script_path, sink, fd_count, pump_until):
        before = fd_count()

        for _ in range(3):
            bridge = Bridge(python_executable, echo_wrapper, script_path, sink)
            bridge.start()
            pump_until(bridge, lambda: bridge.is_ready)
            bridge.shutdown()

        assert fd_count() == before


class TestHostSink:
    """The bridge survives host handler failures."""

    def test_failing_handler_does_not_break_bridge(self, python_executable, echo_wrapper, script_path, pump_until):
        sink = MagicMock()
        sink.emit_float.side_effect = [ValueError("host is busy"), None]
        bridge = Bridge(python_executable, echo_wrapper, script_path, sink)
        bridge.start()
        try:
            assert pump_until(bridge, lambda: bridge.is_ready)
            bridge.send_float(1.0)
            bridge.send_float(2.0)

            assert pump_until(bridge, lambda: sink.emit_float.call_count == 2)
            sink.emit_float.assert_called_with(4.0)
            assert bridge.state == BridgeState.READY
        finally:
            bridge.shutdown()

    def test_default_sink_logs(self, python_executable, echo_wrapper, script_path, pump_until, caplog):
        bridge = Bridge(python_executable, echo_wrapper, script_path)
        bridge.start()
        try:
            with caplog.at_level("INFO", logger="pd_node.bridge.host"):
                assert pump_until(bridge, lambda: bridge.is_ready)
            assert any("loading" in record.getMessage() for record in caplog.records)
        finally:
            bridge.shutdown()


class TestAsyncIntegration:
    """Tests for the asyncio helpers."""

    @pytest.mark.asyncio
    async def test_wait_ready(self, bridge):
        bridge.start()

        assert await bridge.wait_ready(timeout=5.0)
        assert bridge.is_ready

    @pytest.mark.asyncio
    async def test_wait_ready_timeout(self, python_executable, make_wrapper, script_path, sink):
        bridge = Bridge(python_executable, make_wrapper(SILENT_WRAPPER), script_path, sink)
        bridge.start()
        try:
            with pytest.raises(TimeoutError):
                await bridge.wait_ready(timeout=0.2)
        finally:
            bridge.shutdown()

    @pytest.mark.asyncio
    async def test_wait_ready_after_failure(self, tmp_path, echo_wrapper, script_path, sink):
        bridge = Bridge(tmp_path / "no-such-runtime", echo_wrapper, script_path, sink)
        bridge.start()

        assert not await bridge.wait_ready(timeout=1.0)

    @pytest.mark.asyncio
    async def test_polling_task(self, bridge, sink):
        bridge.start()
        await bridge.wait_ready(timeout=5.0)
        sink.clear()

        task = bridge.start_polling()
        assert bridge.start_polling() is task

        bridge.send_float(5.0)
        for _ in range(500):
            if sink.outputs:
                break
            await asyncio.sleep(0.01)

        assert sink.outputs == [("emit_float", 10.0)]

        bridge.shutdown()
        await asyncio.wait({task}, timeout=1.0)
        assert task.done()

    @pytest.mark.asyncio
    async def test_awaiting_polling_task_returns_after_failure(self, bridge, sink):
        bridge.start()
        await bridge.wait_ready(timeout=5.0)

        task = bridge.start_polling()
        bridge.send("exit", [1])

        assert await asyncio.wait_for(task, timeout=5.0) is None
        assert bridge.state == BridgeState.FAILED
        assert len(sink.errors) == 1

    @pytest.mark.asyncio
    async def test_polling_stops_on_failure(self, bridge, sink):
        bridge.start()
        await bridge.wait_ready(timeout=5.0)

        task = bridge.start_polling()
        bridge.send("exit", [1])
        await asyncio.wait({task}, timeout=5.0)

        assert task.done()
        assert not task.cancelled()
        assert bridge.state == BridgeState.FAILED
