"""Shared fixtures for bridge tests.

The child runtime is the current Python interpreter: the "wrapper" is a
small Python script written to tmp_path, so no JavaScript runtime is needed.
"""

import os
import sys
import textwrap
import time
from pathlib import Path
from typing import Callable

import pytest


# Speaks the wrapper protocol: ready, then echo messages back to outlet 0.
ECHO_WRAPPER = textwrap.dedent(
    """
    import json
    import sys

    def send(msg):
        sys.stdout.write(json.dumps(msg) + "\\n")
        sys.stdout.flush()

    send({"type": "log", "message": "loading " + sys.argv[1]})
    send({"type": "ready"})

    for line in sys.stdin:
        msg = json.loads(line)
        selector, args = msg["selector"], msg["args"]
        if selector == "float":
            send({"type": "outlet", "outlet": 0, "selector": "float", "args": [args[0] * 2]})
        elif selector == "bang":
            send({"type": "outlet", "outlet": 0, "selector": "bang", "args": []})
        elif selector == "symbol":
            send({"type": "outlet", "outlet": 0, "selector": "symbol", "args": args})
        elif selector == "list":
            send({"type": "outlet", "outlet": 0, "selector": "list", "args": args})
        elif selector == "fail":
            send({"type": "error", "message": "asked to fail"})
        elif selector == "exit":
            sys.exit(int(args[0]) if args else 0)
        else:
            send({"type": "log", "message": "unhandled " + selector})
    """
)


def _pump_until(bridge, predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Pump a bridge until predicate() holds or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        bridge.pump()
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def python_executable() -> str:
    return sys.executable


@pytest.fixture
def script_path(tmp_path: Path) -> Path:
    path = tmp_path / "patch" / "hello.js"
    path.parent.mkdir()
    path.write_text("// user script\n")
    return path


@pytest.fixture
def make_wrapper(tmp_path: Path) -> Callable[[str], Path]:
    """Write a Python wrapper script and return its path."""
    def _make(source: str, name: str = "wrapper.py") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(source))
        return path
    return _make


@pytest.fixture
def echo_wrapper(make_wrapper) -> Path:
    return make_wrapper(ECHO_WRAPPER, "echo_wrapper.py")


@pytest.fixture
def pump_until() -> Callable:
    return _pump_until


@pytest.fixture
def fd_count() -> Callable[[], int]:
    """Count the descriptors open in this process."""
    if not os.path.isdir("/proc/self/fd"):
        pytest.skip("needs /proc/self/fd to count descriptors")
    return lambda: len(os.listdir("/proc/self/fd"))
