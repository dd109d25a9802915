"""
Process Supervisor.

Owns the lifecycle of the runtime child process: spawn with redirected
standard streams, non-blocking liveness checks, and two-phase termination
(SIGTERM, grace period, SIGKILL) that always reaps the child and closes
every pipe.
"""

from __future__ import annotations

import errno
import logging
import os
import subprocess
from typing import Optional, Protocol, Sequence

from .errors import ExecFailed, ForkFailed, PipeCreationFailed
from .transport import (
    DEFAULT_MAX_FRAME_SIZE,
    DEFAULT_READ_CHUNK_SIZE,
    PipeEndpoint,
    TransportChannel,
)

logger = logging.getLogger(__name__)

# Time to wait after SIGTERM before escalating to SIGKILL
DEFAULT_GRACE_PERIOD = 0.1  # seconds

_EXEC_ERRNOS = {errno.ENOENT, errno.EACCES, errno.ENOEXEC, errno.ENOTDIR, errno.EISDIR}


class ChildProcess:
    """
    Handle to a spawned child process and its host-side pipe ends.

    A live handle always has all three pipes open. Once terminated the
    handle is invalid and cannot be reused; a new spawn is required.
    """

    def __init__(self, popen: subprocess.Popen, channel: TransportChannel, argv: list[str]):
        self._popen: Optional[subprocess.Popen] = popen
        self.channel = channel
        self.argv = argv
        self.pid = popen.pid
        self.returncode: Optional[int] = None

    @property
    def valid(self) -> bool:
        """True until the handle is terminated."""
        return self._popen is not None

    def poll(self) -> Optional[int]:
        """Non-blocking exit status check; reaps the child once it exited."""
        if self._popen is None:
            return self.returncode
        returncode = self._popen.poll()
        if returncode is not None:
            self.returncode = returncode
        return returncode

    def __repr__(self) -> str:
        state = "valid" if self.valid else "invalid"
        return f"ChildProcess(pid={self.pid}, returncode={self.returncode}, {state})"


class ProcessHandle(Protocol):
    """Capability set the bridge needs from a process supervisor."""

    def spawn(self, executable_path: str, args: Sequence[str]) -> ChildProcess: ...

    def is_alive(self, child: ChildProcess) -> bool: ...

    def terminate(self, child: ChildProcess) -> Optional[int]: ...


class ProcessSupervisor:
    """
    Spawns, polls and terminates a child process.

    Example:
        supervisor = ProcessSupervisor()
        child = supervisor.spawn("/usr/local/bin/bun", ["wrapper.js", "script.js"])
        if supervisor.is_alive(child):
            child.channel.write_line(b'{"type":"message",...}')
        supervisor.terminate(child)
    """

    def __init__(
        self,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    ):
        self.grace_period = grace_period
        self._read_chunk_size = read_chunk_size
        self._max_frame_size = max_frame_size

    def spawn(self, executable_path: str, args: Sequence[str]) -> ChildProcess:
        """
        Start the child with its standard streams redirected to new pipes.

        Args:
            executable_path: Path to the program to run
            args: Arguments passed after the program path

        Returns:
            A live child process handle

        Raises:
            PipeCreationFailed: If a pipe pair cannot be created
            ExecFailed: If the executable cannot be run
            ForkFailed: If the process cannot be created
        """
        argv = [str(executable_path), *[str(arg) for arg in args]]
        pipes = self._create_pipes()
        (stdin_read, stdin_write), (stdout_read, stdout_write), (stderr_read, stderr_write) = pipes

        try:
            popen = subprocess.Popen(
                argv,
                stdin=stdin_read,
                stdout=stdout_write,
                stderr=stderr_write,
                close_fds=True,
            )
        except OSError as e:
            _close_all(fd for pair in pipes for fd in pair)
            if e.errno in _EXEC_ERRNOS:
                raise ExecFailed(
                    f"Cannot execute {executable_path}: {e.strerror or e}",
                    executable=str(executable_path),
                    errno=e.errno,
                ) from e
            raise ForkFailed(f"Failed to create process: {e}", {"executable": str(executable_path)}) from e
        except BaseException:
            _close_all(fd for pair in pipes for fd in pair)
            raise

        # Close the ends the child uses
        _close_all((stdin_read, stdout_write, stderr_write))

        for fd in (stdin_write, stdout_read, stderr_read):
            os.set_blocking(fd, False)

        channel = TransportChannel(
            stdin_write,
            stdout_read,
            stderr_read,
            read_chunk_size=self._read_chunk_size,
            max_frame_size=self._max_frame_size,
        )
        child = ChildProcess(popen, channel, argv)
        logger.debug(f"Spawned pid={child.pid}: {' '.join(argv)}")
        return child

    def is_alive(self, child: ChildProcess) -> bool:
        """
        Check whether the child is still running. Never waits.

        The exit status is collected as soon as the child has exited so no
        zombie entry is left behind.
        """
        if not child.valid:
            return False
        return child.poll() is None

    def terminate(self, child: ChildProcess) -> Optional[int]:
        """
        Stop the child and release all of its resources.

        Sends SIGTERM, waits up to the grace period, sends SIGKILL if the
        child is still running, then waits for it to exit. All pipes are
        closed afterwards. Calling this on an already terminated handle is
        a no-op.

        Returns:
            The exit status, or None if the handle was already invalid
        """
        popen = child._popen
        if popen is None:
            return None

        try:
            if popen.poll() is None:
                logger.debug(f"Sending SIGTERM to pid={child.pid}")
                popen.terminate()
                try:
                    popen.wait(timeout=self.grace_period)
                except subprocess.TimeoutExpired:
                    logger.debug(
                        f"pid={child.pid} still running after {self.grace_period}s, sending SIGKILL"
                    )
                    popen.kill()
            child.returncode = popen.wait()
        finally:
            child._popen = None
            child.channel.close()

        logger.debug(f"pid={child.pid} exited with status {child.returncode}")
        return child.returncode

    def _create_pipes(self) -> list[tuple[int, int]]:
        """Create the stdin, stdout and stderr pipe pairs, leaking nothing on failure."""
        pipes: list[tuple[int, int]] = []
        for endpoint in PipeEndpoint:
            try:
                pipes.append(os.pipe())
            except OSError as e:
                _close_all(fd for pair in pipes for fd in pair)
                raise PipeCreationFailed(
                    f"Failed to create {endpoint.value} pipe: {e.strerror or e}",
                    {"errno": e.errno},
                ) from e
        return pipes


def _close_all(fds) -> None:
    for fd in fds:
        try:
            os.close(fd)
        except OSError:
            pass
