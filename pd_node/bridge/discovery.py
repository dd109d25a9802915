"""
JS Runtime Discovery.

Auto-detects available JavaScript runtimes (Bun, Node.js) and selects
the one to use for a given script. TypeScript scripts require Bun;
JavaScript scripts prefer Bun and fall back to Node.js.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Optional, Union

from .errors import RuntimeNotFoundError

logger = logging.getLogger(__name__)


class RuntimeType(Enum):
    """Supported JavaScript runtime types."""

    BUN = auto()
    NODE = auto()


class ScriptType(Enum):
    """Script languages distinguished by file extension."""

    JAVASCRIPT = auto()
    TYPESCRIPT = auto()


@dataclass
class RuntimeInfo:
    """Information about a discovered runtime."""

    type: RuntimeType
    executable: str
    version: Optional[str] = None

    @property
    def name(self) -> str:
        """Human-readable runtime name."""
        return RUNTIME_NAMES[self.type]

    @property
    def display_name(self) -> str:
        """Get a display name for the runtime."""
        version_str = f" v{self.version}" if self.version else ""
        return f"{self.name}{version_str}"

    def supports(self, script_type: ScriptType) -> bool:
        """Check whether this runtime can run the script type."""
        return script_type in SUPPORTED_SCRIPTS[self.type]


# Runtime detection order (preferred first)
RUNTIME_PREFERENCE = [
    RuntimeType.BUN,
    RuntimeType.NODE,
]

# Executable names for each runtime
RUNTIME_EXECUTABLES = {
    RuntimeType.BUN: ["bun"],
    RuntimeType.NODE: ["node", "nodejs"],
}

RUNTIME_NAMES = {
    RuntimeType.BUN: "Bun",
    RuntimeType.NODE: "Node.js",
}

SUPPORTED_SCRIPTS = {
    RuntimeType.BUN: {ScriptType.JAVASCRIPT, ScriptType.TYPESCRIPT},
    RuntimeType.NODE: {ScriptType.JAVASCRIPT},
}

TYPESCRIPT_SUFFIXES = {".ts", ".tsx"}

VERSION_TIMEOUT = 5.0  # seconds


def detect_script_type(path: Union[str, Path]) -> ScriptType:
    """Classify a script by its file extension."""
    if Path(path).suffix.lower() in TYPESCRIPT_SUFFIXES:
        return ScriptType.TYPESCRIPT
    return ScriptType.JAVASCRIPT


def select_runtime(
    script_type: ScriptType,
    runtimes: list[RuntimeInfo],
    preferred: Optional[RuntimeType] = None,
) -> Optional[RuntimeInfo]:
    """
    Pick the runtime for a script type from the discovered runtimes.

    Args:
        script_type: Type of the script to run
        runtimes: Discovered runtimes
        preferred: Runtime to use first if it supports the script

    Returns:
        The selected runtime, or None if none can run the script
    """
    # Build search order
    search_order = list(RUNTIME_PREFERENCE)
    if preferred and preferred in search_order:
        search_order.remove(preferred)
        search_order.insert(0, preferred)

    by_type = {info.type: info for info in runtimes}
    for runtime_type in search_order:
        info = by_type.get(runtime_type)
        if info and info.supports(script_type):
            return info

    return None


def runtime_error_message(script_type: ScriptType) -> str:
    """Explain how to install a runtime for the script type."""
    if script_type == ScriptType.TYPESCRIPT:
        return (
            "TypeScript files require the Bun runtime.\n"
            "Install Bun: https://bun.sh\n"
            "  curl -fsSL https://bun.sh/install | bash\n"
            "Alternatively, transpile the script to JavaScript first."
        )
    return (
        "No JavaScript runtime found. Install one of the following:\n"
        "  Bun (recommended, TypeScript support): https://bun.sh\n"
        "  Node.js: https://nodejs.org"
    )


async def discover_runtime(
    script_path: Union[str, Path],
    preferred: Optional[RuntimeType] = None,
) -> RuntimeInfo:
    """
    Discover the runtime to use for a script.

    Args:
        script_path: The script that will run
        preferred: Preferred runtime type (if available)

    Returns:
        Information about the selected runtime

    Raises:
        RuntimeNotFoundError: If no installed runtime can run the script
    """
    script_type = detect_script_type(script_path)
    runtimes = await discover_all_runtimes()

    info = select_runtime(script_type, runtimes, preferred)
    if info is None:
        raise RuntimeNotFoundError(runtime_error_message(script_type))

    logger.info(f"Selected runtime: {info.display_name} ({info.executable})")
    return info


async def discover_all_runtimes() -> list[RuntimeInfo]:
    """
    Discover all available JavaScript runtimes.

    Returns:
        List of discovered runtime information, in preference order
    """
    runtimes = []

    for runtime_type in RUNTIME_PREFERENCE:
        info = await _detect_runtime(runtime_type)
        if info:
            runtimes.append(info)

    return runtimes


async def runtime_from_executable(executable: str) -> RuntimeInfo:
    """
    Describe an explicitly configured runtime executable.

    Raises:
        RuntimeNotFoundError: If the executable cannot be found
    """
    path = shutil.which(executable)
    if path is None:
        raise RuntimeNotFoundError(f"Runtime executable not found: {executable}")

    runtime_type = RuntimeType.BUN if "bun" in Path(path).name.lower() else RuntimeType.NODE
    version = await _get_version(path, runtime_type)
    return RuntimeInfo(type=runtime_type, executable=path, version=version)


async def _detect_runtime(runtime_type: RuntimeType) -> Optional[RuntimeInfo]:
    """Detect a specific runtime type."""
    executables = RUNTIME_EXECUTABLES.get(runtime_type, [])

    for executable in executables:
        path = shutil.which(executable)
        if path:
            version = await _get_version(path, runtime_type)
            return RuntimeInfo(
                type=runtime_type,
                executable=path,
                version=version,
            )

    return None


async def _get_version(executable: str, runtime_type: RuntimeType) -> Optional[str]:
    """Get the version of a runtime."""
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=VERSION_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise

        output = stdout.decode().strip()
        if not output:
            return None

        if runtime_type == RuntimeType.NODE:
            # Output: "v20.x.x"
            return output.lstrip("v").split()[0]
        # Bun output: "1.x.x"
        return output.split()[0]

    except Exception as e:
        logger.debug(f"Failed to get version for {executable}: {e}")
        return None


# Synchronous wrappers for simple use cases

def discover_runtime_sync(
    script_path: Union[str, Path],
    preferred: Optional[RuntimeType] = None,
) -> RuntimeInfo:
    """
    Synchronous wrapper for discover_runtime.

    Returns:
        Information about the selected runtime
    """
    return asyncio.run(discover_runtime(script_path, preferred))


def check_runtime_available(script_path: Union[str, Path] = "script.js") -> bool:
    """
    Check if a runtime able to run the script is available.

    Returns:
        True if a runtime is available
    """
    try:
        discover_runtime_sync(script_path)
        return True
    except RuntimeNotFoundError:
        return False
