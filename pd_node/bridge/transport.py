"""
Transport Channel.

Non-blocking byte transport over the child's standard streams with
newline-delimited framing. Inbound bytes may arrive in arbitrary chunks;
each read end keeps its own buffer and yields complete lines one at a time.
"""

from __future__ import annotations

import errno
import logging
import os
from enum import Enum
from typing import Optional

from .errors import FrameTooLarge, WriteFailed

logger = logging.getLogger(__name__)

NEWLINE = b"\n"

DEFAULT_READ_CHUNK_SIZE = 4096
DEFAULT_MAX_FRAME_SIZE = 1_048_576  # 1 MiB


class PipeEndpoint(Enum):
    """One of the three standard stream pipes, seen from the host."""

    STDIN = "stdin"    # host writes, child reads
    STDOUT = "stdout"  # child writes, host reads
    STDERR = "stderr"  # child writes, host reads


class LineBuffer:
    """Ordered byte accumulator that yields newline-terminated frames.

    Example:
        buffer = LineBuffer()
        buffer.feed(b'{"type":"re')
        buffer.next_frame()  # None
        buffer.feed(b'ady"}\\n')
        buffer.next_frame()  # b'{"type":"ready"}'
    """

    def __init__(self) -> None:
        self._data = bytearray()
        # Bytes already known not to contain a newline
        self._scanned = 0

    def feed(self, data: bytes) -> None:
        """Append received bytes."""
        self._data.extend(data)

    def next_frame(self) -> Optional[bytes]:
        """Pop the bytes before the first newline, or None if there is no full line."""
        index = self._data.find(NEWLINE, self._scanned)
        if index < 0:
            self._scanned = len(self._data)
            return None

        frame = bytes(self._data[:index])
        del self._data[:index + 1]
        self._scanned = 0
        return frame

    def has_frame(self) -> bool:
        """Check whether a complete frame is buffered."""
        return self._data.find(NEWLINE, self._scanned) >= 0

    def flush_remainder(self) -> Optional[bytes]:
        """Return and drop a trailing unterminated line, if any."""
        if not self._data:
            return None
        remainder = bytes(self._data)
        self.clear()
        return remainder

    def clear(self) -> None:
        self._data.clear()
        self._scanned = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet returned as frames."""
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)


class TransportChannel:
    """
    Framed, non-blocking transport over the child's standard streams.

    The channel owns the host-side ends of the three pipes: the write end of
    the child's stdin and the read ends of its stdout and stderr. Read ends
    are expected to be in non-blocking mode.

    Example:
        channel = TransportChannel(stdin_fd, stdout_fd, stderr_fd)
        channel.write_line(b'{"type":"message",...}')
        while (frame := channel.try_read_frame(PipeEndpoint.STDOUT)) is not None:
            handle(frame)
    """

    def __init__(
        self,
        stdin_fd: Optional[int],
        stdout_fd: Optional[int],
        stderr_fd: Optional[int],
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    ):
        self._fds: dict[PipeEndpoint, Optional[int]] = {
            PipeEndpoint.STDIN: stdin_fd,
            PipeEndpoint.STDOUT: stdout_fd,
            PipeEndpoint.STDERR: stderr_fd,
        }
        self._buffers = {
            PipeEndpoint.STDOUT: LineBuffer(),
            PipeEndpoint.STDERR: LineBuffer(),
        }
        self._eof: set[PipeEndpoint] = set()
        # The last write stopped mid-line; the child still waits for its newline
        self._broken_line = False
        self._read_chunk_size = read_chunk_size
        self._max_frame_size = max_frame_size

    @property
    def closed(self) -> bool:
        """True once every pipe end has been closed."""
        return all(fd is None for fd in self._fds.values())

    def fileno(self, endpoint: PipeEndpoint) -> Optional[int]:
        """Get the descriptor for an endpoint, or None if it is closed."""
        return self._fds[endpoint]

    def at_eof(self, endpoint: PipeEndpoint) -> bool:
        """Check whether the child closed its end of an inbound pipe."""
        return endpoint in self._eof

    def buffered(self, endpoint: PipeEndpoint) -> int:
        """Number of un-framed bytes held for an inbound pipe."""
        return self._buffers[endpoint].pending

    def write_line(self, payload: bytes) -> None:
        """
        Write one frame to the child's standard input.

        Args:
            payload: Frame bytes, without the trailing newline

        Raises:
            WriteFailed: If the pipe is closed or the write fails
        """
        fd = self._fds[PipeEndpoint.STDIN]
        if fd is None:
            raise WriteFailed("Cannot write: stdin pipe is closed")

        data = payload + NEWLINE
        if self._broken_line:
            # Terminate the truncated line so only that message is lost
            data = NEWLINE + data
        try:
            written = os.write(fd, data)
        except BlockingIOError:
            raise WriteFailed("Cannot write: child input buffer is full")
        except OSError as e:
            raise WriteFailed(f"Cannot write to child: {e.strerror or e}", {"errno": e.errno})

        self._broken_line = written < len(data)
        if self._broken_line:
            # No outbound backpressure; the rest of this line is dropped
            logger.warning(f"Partial write to child: {written} of {len(data)} bytes")

    def try_read_frame(self, endpoint: PipeEndpoint = PipeEndpoint.STDOUT) -> Optional[bytes]:
        """
        Read once without blocking and return at most one complete frame.

        Frames already buffered by an earlier read are returned even when
        no new bytes are available.

        Args:
            endpoint: The inbound pipe to read (STDOUT or STDERR)

        Returns:
            The frame bytes without the newline, or None if no complete
            frame is available yet

        Raises:
            FrameTooLarge: If the pending line exceeds the maximum frame
                size; the oversized bytes are discarded
        """
        if endpoint not in self._buffers:
            raise ValueError(f"Cannot read from {endpoint.value}")

        buffer = self._buffers[endpoint]
        if not buffer.has_frame():
            self._read_once(endpoint, buffer)

        frame = buffer.next_frame()
        if frame is None and buffer.pending > self._max_frame_size:
            size = buffer.pending
            buffer.clear()
            raise FrameTooLarge(size, self._max_frame_size)
        return frame

    def flush_remainder(self, endpoint: PipeEndpoint) -> Optional[bytes]:
        """Return an unterminated trailing line once the endpoint reached EOF."""
        if endpoint not in self._eof:
            return None
        return self._buffers[endpoint].flush_remainder()

    def close(self) -> None:
        """Close every host-side pipe end. Safe to call more than once."""
        for endpoint, fd in self._fds.items():
            if fd is None:
                continue
            self._fds[endpoint] = None
            try:
                os.close(fd)
            except OSError as e:
                logger.debug(f"Error closing {endpoint.value} pipe: {e}")

    def _read_once(self, endpoint: PipeEndpoint, buffer: LineBuffer) -> None:
        """Perform a single non-blocking read into the endpoint's buffer."""
        fd = self._fds[endpoint]
        if fd is None or endpoint in self._eof:
            return

        try:
            chunk = os.read(fd, self._read_chunk_size)
        except BlockingIOError:
            return
        except OSError as e:
            if e.errno in (errno.EAGAIN, errno.EWOULDBLOCK, errno.EINTR):
                return
            logger.debug(f"Read error on {endpoint.value} pipe: {e}")
            self._eof.add(endpoint)
            return

        if not chunk:
            logger.debug(f"EOF on {endpoint.value} pipe")
            self._eof.add(endpoint)
            return

        buffer.feed(chunk)
