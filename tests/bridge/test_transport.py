"""Tests for the newline-framed transport channel."""

import os

import pytest

from pd_node.bridge.errors import FrameTooLarge, WriteFailed
from pd_node.bridge.protocol import encode_outbound
from pd_node.bridge.transport import LineBuffer, PipeEndpoint, TransportChannel


@pytest.fixture
def pipes():
    """A channel whose three pipes loop back to the test.

    Returns (channel, stdin_reader, stdout_writer, stderr_writer).
    """
    stdin_r, stdin_w = os.pipe()
    stdout_r, stdout_w = os.pipe()
    stderr_r, stderr_w = os.pipe()
    for fd in (stdin_w, stdout_r, stderr_r):
        os.set_blocking(fd, False)

    channel = TransportChannel(stdin_w, stdout_r, stderr_r, read_chunk_size=16)
    yield channel, stdin_r, stdout_w, stderr_w

    channel.close()
    for fd in (stdin_r, stdout_w, stderr_w):
        try:
            os.close(fd)
        except OSError:
            pass


def drain(channel, endpoint=PipeEndpoint.STDOUT, attempts=100):
    """Call try_read_frame until it stops yielding frames."""
    frames = []
    misses = 0
    while misses < 3 and attempts > 0:
        attempts -= 1
        frame = channel.try_read_frame(endpoint)
        if frame is None:
            misses += 1
        else:
            misses = 0
            frames.append(frame)
    return frames


class TestLineBuffer:
    """Tests for LineBuffer."""

    def test_no_frame_without_newline(self):
        buffer = LineBuffer()
        buffer.feed(b'{"type":')

        assert buffer.next_frame() is None
        assert buffer.pending == 8

    def test_frame_completed_by_later_chunk(self):
        buffer = LineBuffer()
        buffer.feed(b'{"type":')
        assert buffer.next_frame() is None

        buffer.feed(b'"ready"}\n')

        assert buffer.next_frame() == b'{"type":"ready"}'
        assert buffer.pending == 0

    def test_yields_one_frame_at_a_time(self):
        buffer = LineBuffer()
        buffer.feed(b"a\nb\nc")

        assert buffer.next_frame() == b"a"
        assert buffer.next_frame() == b"b"
        assert buffer.next_frame() is None
        assert buffer.pending == 1

    def test_empty_frame(self):
        buffer = LineBuffer()
        buffer.feed(b"\n")

        assert buffer.next_frame() == b""

    def test_flush_remainder(self):
        buffer = LineBuffer()
        buffer.feed(b"done\npartial")
        buffer.next_frame()

        assert buffer.flush_remainder() == b"partial"
        assert buffer.flush_remainder() is None
        assert len(buffer) == 0


class TestFraming:
    """Frames come out intact regardless of how the bytes were chunked."""

    FRAMES = [
        b'{"type":"ready"}',
        b'{"type":"outlet","outlet":0,"selector":"float","args":[3.5]}',
        b'{"type":"log","message":"h\\u00e9llo"}',
        b'{"type":"outlet","outlet":0,"selector":"list","args":[1,"two",3]}',
    ]

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 16, 64, 4096])
    def test_arbitrary_chunk_boundaries(self, pipes, chunk_size):
        channel, _, stdout_w, _ = pipes
        stream = b"".join(frame + b"\n" for frame in self.FRAMES)

        received = []
        for start in range(0, len(stream), chunk_size):
            os.write(stdout_w, stream[start:start + chunk_size])
            received.extend(drain(channel))
        received.extend(drain(channel))

        assert received == self.FRAMES

    def test_split_in_middle_of_frame(self, pipes):
        channel, _, stdout_w, _ = pipes

        os.write(stdout_w, b'{"type":"rea')
        assert channel.try_read_frame(PipeEndpoint.STDOUT) is None
        assert channel.buffered(PipeEndpoint.STDOUT) == 12

        os.write(stdout_w, b'dy"}\n')
        assert drain(channel) == [b'{"type":"ready"}']

    def test_several_frames_in_one_read(self, pipes):
        channel, _, stdout_w, _ = pipes
        os.write(stdout_w, b"a\nb\nc\n")

        # One frame per call; buffered frames are returned without new data
        assert channel.try_read_frame(PipeEndpoint.STDOUT) == b"a"
        assert channel.try_read_frame(PipeEndpoint.STDOUT) == b"b"
        assert channel.try_read_frame(PipeEndpoint.STDOUT) == b"c"
        assert channel.try_read_frame(PipeEndpoint.STDOUT) is None

    def test_no_data_returns_none(self, pipes):
        channel, _, _, _ = pipes

        assert channel.try_read_frame(PipeEndpoint.STDOUT) is None
        assert channel.try_read_frame(PipeEndpoint.STDERR) is None

    def test_stdout_and_stderr_are_independent(self, pipes):
        channel, _, stdout_w, stderr_w = pipes
        os.write(stdout_w, b"out-1\nout")
        os.write(stderr_w, b"err-1\n")

        assert drain(channel, PipeEndpoint.STDERR) == [b"err-1"]
        assert drain(channel, PipeEndpoint.STDOUT) == [b"out-1"]
        assert channel.buffered(PipeEndpoint.STDOUT) == 3

    def test_cannot_read_stdin(self, pipes):
        channel, _, _, _ = pipes

        with pytest.raises(ValueError):
            channel.try_read_frame(PipeEndpoint.STDIN)


class TestEndOfFile:
    """Behaviour once the child closes its end of a pipe."""

    def test_eof_keeps_buffered_frames(self):
        stdout_r, stdout_w = os.pipe()
        os.set_blocking(stdout_r, False)
        channel = TransportChannel(None, stdout_r, None)
        try:
            os.write(stdout_w, b"one\ntwo\nlast")
            os.close(stdout_w)

            assert drain(channel) == [b"one", b"two"]
            assert channel.at_eof(PipeEndpoint.STDOUT)
            assert channel.flush_remainder(PipeEndpoint.STDOUT) == b"last"
            assert channel.flush_remainder(PipeEndpoint.STDOUT) is None
        finally:
            channel.close()

    def test_flush_remainder_before_eof_is_none(self, pipes):
        channel, _, stdout_w, _ = pipes
        os.write(stdout_w, b"partial")
        channel.try_read_frame(PipeEndpoint.STDOUT)

        assert not channel.at_eof(PipeEndpoint.STDOUT)
        assert channel.flush_remainder(PipeEndpoint.STDOUT) is None


class TestFrameLimit:
    """Oversized lines are discarded instead of growing the buffer forever."""

    def test_frame_too_large(self):
        stdout_r, stdout_w = os.pipe()
        os.set_blocking(stdout_r, False)
        channel = TransportChannel(None, stdout_r, None, read_chunk_size=64, max_frame_size=32)
        try:
            os.write(stdout_w, b"x" * 64)

            with pytest.raises(FrameTooLarge) as exc_info:
                channel.try_read_frame(PipeEndpoint.STDOUT)

            assert exc_info.value.size == 64
            assert channel.buffered(PipeEndpoint.STDOUT) == 0

            os.write(stdout_w, b"ok\n")
            assert channel.try_read_frame(PipeEndpoint.STDOUT) == b"ok"
        finally:
            channel.close()
            os.close(stdout_w)


class TestWriteLine:
    """Tests for write_line."""

    def test_loopback_appends_one_newline(self, pipes):
        channel, stdin_r, _, _ = pipes
        payload = encode_outbound(0, "symbol", ["two\nlines"])

        channel.write_line(payload)

        data = os.read(stdin_r, 4096)
        assert data == payload + b"\n"
        assert data.count(b"\n") == 1

    def test_writes_preserve_order(self, pipes):
        channel, stdin_r, _, _ = pipes

        for i in range(5):
            channel.write_line(encode_outbound(0, "float", [i]))

        lines = os.read(stdin_r, 4096).split(b"\n")
        assert lines[-1] == b""
        assert [line[-3:-2] for line in lines[:-1]] == [b"0", b"1", b"2", b"3", b"4"]

    def test_write_after_close_fails(self, pipes):
        channel, _, _, _ = pipes
        channel.close()

        with pytest.raises(WriteFailed):
            channel.write_line(b"{}")

    def test_write_to_closed_reader_fails(self):
        stdin_r, stdin_w = os.pipe()
        os.set_blocking(stdin_w, False)
        channel = TransportChannel(stdin_w, None, None)
        os.close(stdin_r)
        try:
            with pytest.raises(WriteFailed):
                channel.write_line(b"{}")
        finally:
            channel.close()

    def test_write_to_full_pipe_fails_without_blocking(self, pipes):
        channel, _, _, _ = pipes
        chunk = b"x" * 65536

        with pytest.raises(WriteFailed):
            for _ in range(1024):
                channel.write_line(chunk)

    def test_partial_write_does_not_corrupt_next_line(self, pipes):
        channel, stdin_r, _, _ = pipes
        os.set_blocking(stdin_r, False)

        channel.write_line(b"x" * 1_000_000)
        received = b""
        while True:
            try:
                chunk = os.read(stdin_r, 65536)
            except BlockingIOError:
                break
            received += chunk
        assert 0 < len(received) < 1_000_001
        assert b"\n" not in received

        channel.write_line(b'{"a":1}')

        assert os.read(stdin_r, 4096) == b'\n{"a":1}\n'
        lines = (received + b'\n{"a":1}\n').split(b"\n")
        assert lines[1:] == [b'{"a":1}', b""]

    def test_complete_write_adds_no_separator(self, pipes):
        channel, stdin_r, _, _ = pipes

        channel.write_line(b"{}")
        channel.write_line(b"[]")

        assert os.read(stdin_r, 4096) == b"{}\n[]\n"


class TestClose:
    """Tests for close."""

    def test_close_is_idempotent(self, pipes):
        channel, _, _, _ = pipes

        channel.close()
        channel.close()

        assert channel.closed
        assert channel.fileno(PipeEndpoint.STDOUT) is None
