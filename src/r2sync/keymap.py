# src/r2sync/keymap.py
"""
Translation between local filesystem paths and remote object keys.

Keys always use forward slashes. Local paths use host-native separators.
When a remote prefix is active it scopes both sides: the local subtree
`local_dir/<prefix>` mirrors the keys under `<prefix>/`.
"""

import os
from pathlib import Path, PurePosixPath
from typing import List, Union

from r2sync.exceptions import InvalidPathError

_FORBIDDEN_SEGMENTS = frozenset({".", ".."})

PathLike = Union[str, "os.PathLike[str]"]


def _check_segments(parts: List[str], original: str) -> None:
    """
    Rejects traversal, empty and NUL-carrying segments.

    Args:
        parts (List[str]): Path segments to validate.
        original (str): The value being validated, for the error message.
    """
    for part in parts:
        if not part or part in _FORBIDDEN_SEGMENTS or "\x00" in part:
            raise InvalidPathError(f"Refusing unsafe path segment in '{original}'")


def normalize_prefix(prefix: str) -> str:
    """
    Normalizes a remote folder given on the command line.

    Surrounding whitespace and slashes are stripped, so `/images/` and
    `images` select the same scope. An empty result means no scope.

    Args:
        prefix (str): The raw prefix.

    Returns:
        str: The normalized prefix.
    """
    cleaned: str = (prefix or "").strip().strip("/")
    if cleaned:
        _check_segments(cleaned.split("/"), prefix)
    return cleaned


def to_remote_key(local_dir: PathLike, remote_prefix: str, file_path: PathLike) -> str:
    """
    Maps a local file to the object key it is uploaded to.

    Args:
        local_dir (PathLike): The local root directory.
        remote_prefix (str): The remote scope, possibly empty.
        file_path (PathLike): A file inside the scoped local directory.

    Returns:
        str: The forward-slash object key.

    Raises:
        InvalidPathError: If the file lies outside the scoped directory.
    """
    prefix: str = normalize_prefix(remote_prefix)
    if ".." in Path(file_path).parts:
        raise InvalidPathError(f"Refusing path with '..' segment: '{file_path}'")

    scoped_root: Path = Path(os.path.abspath(local_dir))
    if prefix:
        scoped_root = scoped_root.joinpath(*prefix.split("/"))
    absolute: Path = Path(os.path.abspath(file_path))
    try:
        relative: Path = absolute.relative_to(scoped_root)
    except ValueError as e:
        raise InvalidPathError(
            f"'{file_path}' is outside the sync root '{scoped_root}'"
        ) from e

    parts: List[str] = list(relative.parts)
    if not parts:
        raise InvalidPathError(f"'{file_path}' is the sync root, not a file")
    _check_segments(parts, str(file_path))
    return "/".join(([prefix] if prefix else []) + parts)


def to_local_path(local_dir: PathLike, remote_prefix: str, key: str) -> Path:
    """
    Maps an object key to the local file it is downloaded to.

    Args:
        local_dir (PathLike): The local root directory.
        remote_prefix (str): The remote scope, possibly empty.
        key (str): The object key.

    Returns:
        Path: The absolute local destination path.

    Raises:
        InvalidPathError: If the key is outside the scope or would escape
            the local root.
    """
    prefix: str = normalize_prefix(remote_prefix)
    if PurePosixPath(key).is_absolute():
        raise InvalidPathError(f"Refusing absolute key '{key}'")

    remainder: str = key
    if prefix:
        scope: str = f"{prefix}/"
        if not key.startswith(scope):
            raise InvalidPathError(f"Key '{key}' is outside the prefix '{prefix}'")
        remainder = key[len(scope):]
    if not remainder:
        raise InvalidPathError(f"Key '{key}' does not name a file")

    parts: List[str] = remainder.split("/")
    _check_segments(parts, key)

    root: Path = Path(os.path.abspath(local_dir))
    scoped_root: Path = root.joinpath(*prefix.split("/")) if prefix else root
    destination: Path = scoped_root.joinpath(*parts)
    # Catches drive letters and separators a host treats specially.
    normalized: Path = Path(os.path.abspath(destination))
    if normalized == root or root not in normalized.parents:
        raise InvalidPathError(f"Key '{key}' would escape '{root}'")
    return normalized
