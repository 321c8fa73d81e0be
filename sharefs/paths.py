"""Path normalisation and manipulation for remote library paths.

Remote paths are always relative to the library root and use forward
slashes, whatever separator the caller used:

    >>> normalize_path("\\\\Projects\\\\2024\\\\report.pdf")
    'Projects/2024/report.pdf'
    >>> combine("Projects", "2024/", "report.pdf")
    'Projects/2024/report.pdf'

Key utilities:
- Validation and normalisation (empty paths and ``..`` segments rejected)
- ``System.IO.Path`` style helpers for names and extensions
- Case-insensitive wildcard matching for directory listings
"""

from __future__ import annotations

import fnmatch
from typing import Any

from .interfaces import InvalidOperationError


def normalize_windows_path(path_str: str) -> str:
    """Normalize Windows backslashes to forward slashes.

    Example:

        >>> normalize_windows_path("dir\\\\subdir\\\\file.txt")
        'dir/subdir/file.txt'

    """
    return path_str.replace("\\", "/")


def detect_path_traversal(parts: list[str] | tuple[str, ...]) -> bool:
    """Return True when any path component is ``..``."""
    return any(part == ".." for part in parts)


def normalize_path(path: Any, *, allow_root: bool = False) -> str:
    """Return the canonical remote form of ``path``.

    Backslashes become slashes, surrounding whitespace and slashes are
    stripped, and empty or ``.`` segments are dropped.

    Args:
        path: Path to normalise (any object with a string form).
        allow_root: Accept an empty result, meaning the library root.

    Raises:
        InvalidOperationError: If the path is empty (and ``allow_root`` is
            False) or contains ``..`` segments.

    """
    path_str = "" if path is None else str(path)
    parts = [
        part
        for part in normalize_windows_path(path_str.strip()).split("/")
        if part and part != "."
    ]
    if detect_path_traversal(parts):
        raise InvalidOperationError.path_traversal_not_allowed(path_str)
    normalized = "/".join(parts)
    if not normalized and not allow_root:
        raise InvalidOperationError.empty_path_not_allowed(path_str)
    return normalized


def combine(*paths: str | None) -> str:
    """Join path segments with forward slashes, skipping blank ones.

    Raises:
        ValueError: If no non-blank segment is given.

    """
    valid = [p for p in paths if p is not None and p.strip()]
    if not valid:
        message = "At least one non-empty path must be provided"
        raise ValueError(message)
    combined = "/".join(normalize_windows_path(p).strip("/") for p in valid)
    while "//" in combined:
        combined = combined.replace("//", "/")
    return combined


def _trimmed(path: str) -> str:
    return normalize_windows_path(path).strip("/")


def get_directory_name(path: str | None) -> str | None:
    """Return the parent path, ``""`` for root-level items, None for blank input."""
    if path is None or not path.strip():
        return None
    directory, _, _ = _trimmed(path).rpartition("/")
    return directory


def get_file_name(path: str | None) -> str | None:
    """Return the last path segment, or None for blank input."""
    if path is None or not path.strip():
        return None
    return _trimmed(path).rpartition("/")[2]


def get_extension(path: str | None) -> str:
    """Return the extension including its dot, or ``""``."""
    file_name = get_file_name(path)
    if not file_name or "." not in file_name:
        return ""
    return file_name[file_name.rindex(".") :]


def get_file_name_without_extension(path: str | None) -> str:
    """Return the file name with its extension removed."""
    file_name = get_file_name(path)
    if not file_name:
        return ""
    stem, dot, _ = file_name.rpartition(".")
    return stem if dot else file_name


def has_extension(path: str | None) -> bool:
    """Return True when the file name has an extension."""
    return bool(get_extension(path).strip())


def change_extension(path: str | None, extension: str | None) -> str | None:
    """Return ``path`` with its extension replaced (or removed when blank)."""
    if path is None or not path.strip():
        return path
    directory = get_directory_name(path)
    stem = get_file_name_without_extension(path)
    if not extension or not extension.strip():
        return combine(directory, stem)
    if not extension.startswith("."):
        extension = "." + extension
    return combine(directory, stem + extension)


def matches_pattern(name: str, pattern: str | None) -> bool:
    """Case-insensitive wildcard match (``*`` and ``?``) of a file name.

    Example:

        >>> matches_pattern("Report.PDF", "*.pdf")
        True

    """
    if not pattern or pattern in ("*", "*.*"):
        return True
    return fnmatch.fnmatchcase(name.lower(), pattern.lower())
