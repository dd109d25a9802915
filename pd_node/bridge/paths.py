"""Resolution of script and wrapper paths."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from .errors import ScriptNotFoundError

WRAPPER_FILENAME = "wrapper.js"


def resolve_script_path(
    script: Union[str, Path],
    base_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """
    Resolve a script path the way a patch refers to it.

    ``~`` is expanded and relative paths are taken relative to the patch
    directory (or the current directory when none is given).

    Args:
        script: Script path as written in the patch
        base_dir: Directory of the patch

    Returns:
        Absolute path to the script

    Raises:
        ScriptNotFoundError: If the path is not an existing file
    """
    path = Path(script).expanduser()
    if not path.is_absolute():
        base = Path(base_dir).expanduser() if base_dir is not None else Path.cwd()
        path = base / path

    path = path.resolve()
    if not path.is_file():
        raise ScriptNotFoundError(str(path))
    return path


def default_wrapper_path() -> Path:
    """Path to the wrapper script bundled with the package."""
    return Path(__file__).parent / WRAPPER_FILENAME
