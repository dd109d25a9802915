"""Exceptions raised by the script runtime bridge."""

from __future__ import annotations

from typing import Any, Optional


class BridgeError(Exception):
    """Base exception for bridge errors."""
    
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class SpawnError(BridgeError):
    """Raised when the child process could not be started."""
    pass


class PipeCreationFailed(SpawnError):
    """Raised when one of the three standard stream pipes cannot be created."""
    pass


class ForkFailed(SpawnError):
    """Raised when the operating system refuses to create the child process."""
    pass


class ExecFailed(SpawnError):
    """Raised when the runtime executable cannot be run."""
    
    def __init__(self, message: str, executable: str, errno: Optional[int] = None) -> None:
        super().__init__(message, {"executable": executable})
        self.executable = executable
        self.errno = errno


class ScriptNotFoundError(SpawnError):
    """Raised when the script path does not point to an existing file."""
    
    def __init__(self, path: str) -> None:
        super().__init__(f"Script not found: {path}", {"path": path})
        self.path = path


class TransportError(BridgeError):
    """Raised when the byte transport to or from the child fails."""
    pass


class WriteFailed(TransportError):
    """Raised when a line cannot be written to the child's input."""
    pass


class FrameTooLarge(TransportError):
    """Raised when an inbound line exceeds the configured maximum size."""
    
    def __init__(self, size: int, max_size: int) -> None:
        super().__init__(
            f"Inbound frame of {size} bytes exceeds maximum {max_size} bytes",
            {"size": size, "max_size": max_size},
        )
        self.size = size
        self.max_size = max_size


class ProcessFailure(BridgeError):
    """Raised when the child exits while the bridge expects it alive."""
    
    def __init__(self, returncode: Optional[int]) -> None:
        if returncode is None:
            message = "Process terminated unexpectedly"
        elif returncode < 0:
            message = f"Process terminated unexpectedly (signal {-returncode})"
        else:
            message = f"Process terminated unexpectedly (exit status {returncode})"
        super().__init__(message)
        self.returncode = returncode


class RuntimeNotFoundError(BridgeError):
    """Raised when no suitable JavaScript runtime is installed."""
    pass
