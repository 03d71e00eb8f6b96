"""Path and state-file utilities.

State files are overwritten wholesale: content is serialized to a temporary
file in the target directory and renamed into place, so readers never see a
partially written document.
"""

import os
import tempfile
from pathlib import Path
from typing import Any

import orjson

from ralph_loop.utils.exceptions import StateFileError


def ensure_parent_directory(path: str | Path) -> Path:
    """Ensure parent directory of a path exists.

    Args:
        path: Path whose parent directory should be created

    Returns:
        The path with ensured parent directory
    """
    path_obj = Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    return path_obj


def resolve_against(base: str | Path, path: str | Path) -> Path:
    """Resolve ``path`` relative to ``base`` unless it is already absolute."""
    target = Path(path).expanduser()
    if target.is_absolute():
        return target
    return Path(base) / target


def atomic_write_json(path: str | Path, payload: dict[str, Any]) -> Path:
    """Serialize ``payload`` and atomically replace ``path`` with it.

    Args:
        path: Destination file
        payload: JSON-serializable mapping

    Returns:
        The destination path

    Raises:
        StateFileError: If the temporary file cannot be written or renamed
    """
    path_obj = ensure_parent_directory(path)
    content = orjson.dumps(payload, option=orjson.OPT_INDENT_2) + b"\n"

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path_obj.parent,
            prefix=f".{path_obj.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp_file:
            tmp_path = Path(tmp_file.name)
            tmp_file.write(content)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())

        # Same directory, so the rename stays on one filesystem
        os.replace(tmp_path, path_obj)
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise StateFileError(f"Failed to write {path_obj}", path=str(path_obj), cause=e) from e

    return path_obj


def read_json(path: str | Path) -> dict[str, Any] | None:
    """Read a JSON object from ``path``.

    Returns:
        The decoded mapping, or None if the file does not exist

    Raises:
        StateFileError: If the file exists but is unreadable or not a JSON object
    """
    path_obj = Path(path)
    if not path_obj.exists():
        return None

    try:
        data = orjson.loads(path_obj.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise StateFileError(f"Failed to read {path_obj}", path=str(path_obj), cause=e) from e

    if not isinstance(data, dict):
        raise StateFileError(f"Expected a JSON object in {path_obj}", path=str(path_obj))
    return data


def display_path_rel_to_cwd(path: str | Path, cwd: str | Path | None = None) -> Path:
    """Display path relative to current working directory.

    Args:
        path: Path to display
        cwd: Current working directory (defaults to os.getcwd())

    Returns:
        Path relative to cwd if possible, otherwise absolute path
    """
    path_obj = Path(path)
    if cwd is None:
        cwd = Path.cwd()
    else:
        cwd = Path(cwd)

    try:
        return path_obj.relative_to(cwd)
    except ValueError:
        # Path is not relative to cwd, return as-is
        return path_obj
