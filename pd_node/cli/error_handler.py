"""Global exception handling for the pd-node CLI.

This module provides centralized error handling through custom exception
classes and a decorator that ensures consistent error reporting and
exit codes across all CLI commands.
"""

from functools import wraps
from typing import Callable, TypeVar, Any
import logging

import typer
from rich.console import Console

from pd_node.bridge.errors import (
    BridgeError,
    RuntimeNotFoundError,
    ScriptNotFoundError,
    SpawnError,
)
from pd_node.cli.exit_codes import ExitCode

# Console for error output (stderr)
console = Console(stderr=True)

# Logger for error logging
logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class PdNodeError(Exception):
    """Base exception for the pd-node CLI.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(PdNodeError):
    """Invalid configuration file, environment variable or setting."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class RuntimeUnavailableError(PdNodeError):
    """No installed JavaScript runtime can run the script."""

    exit_code = ExitCode.RUNTIME_NOT_FOUND


class ScriptError(PdNodeError):
    """The script is missing or failed to load."""

    exit_code = ExitCode.SCRIPT_ERROR


class BridgeFailedError(PdNodeError):
    """The runtime process could not be started or exited unexpectedly."""

    exit_code = ExitCode.BRIDGE_ERROR


class ValidationError(PdNodeError):
    """Invalid user input, such as a malformed --send message."""

    exit_code = ExitCode.INVALID_ARGUMENT


def from_bridge_error(error: BridgeError) -> PdNodeError:
    """Map a library error to the CLI error carrying the right exit code."""
    if isinstance(error, ScriptNotFoundError):
        return ScriptError(error.message, details=error.details)
    if isinstance(error, RuntimeNotFoundError):
        return RuntimeUnavailableError(error.message)
    if isinstance(error, SpawnError):
        return BridgeFailedError(f"Failed to start runtime: {error.message}", details=error.details)
    return BridgeFailedError(error.message, details=error.details)


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    - PdNodeError subclasses: display the message, exit with its code
    - BridgeError: mapped to the matching PdNodeError first
    - KeyboardInterrupt: show cancellation message with exit code 130
    - Other exceptions: show generic error

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise ConfigurationError("Invalid config")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except BridgeError as e:
            _report(from_bridge_error(e))
        except PdNodeError as e:
            _report(e)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except typer.Exit:
            # Re-raise typer.Exit as-is
            raise

        except Exception as e:
            # Log full exception for debugging
            logger.exception("Unexpected error occurred")

            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --debug for more details[/dim]")

            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]


def _report(error: PdNodeError) -> None:
    """Print a CLI error and exit with its code."""
    logger.error(
        f"{type(error).__name__}: {error.message}",
        extra={"exit_code": error.exit_code, "details": error.details},
    )

    console.print(f"[red]Error:[/red] {error.message}")

    if error.details:
        for key, value in error.details.items():
            console.print(f"  [dim]{key}:[/dim] {value}")

    raise typer.Exit(code=error.exit_code)
