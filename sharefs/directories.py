"""Folder operations on a remote site with local-filesystem ergonomics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .compat import translate_method
from .interfaces import InvalidOperationError
from .paths import matches_pattern, normalize_path

if TYPE_CHECKING:
    from .interfaces import RemoteEntry
    from .registry import Site


class RemoteDirectory:
    """Blocking folder operations bound to one site.

    Listing methods accept ``""`` for the library root and return names
    relative to the listed folder.
    """

    def __init__(self, site: Site) -> None:
        """Bind the facade to ``site``."""
        self.site = site

    @translate_method
    def create_directory(self, path: str) -> None:
        """Create ``path`` and any missing parent folders."""
        path = normalize_path(path)
        with self.site.audit("CreateDirectory", path):
            self.site.run(self.site.store.create_folder(path))

    @translate_method
    def exists(self, path: str) -> bool:
        """Return True when a folder exists at ``path``."""
        path = normalize_path(path, allow_root=True)
        return self.site.run(self.site.store.directory_exists(path))

    @translate_method
    def get_file_system_entries(self, path: str = "") -> list[str]:
        """Return the names of files and folders directly inside ``path``."""
        path = normalize_path(path, allow_root=True)
        return self.site.run(self.site.store.list_directory(path))

    def get_files(self, path: str = "", pattern: str | None = None) -> list[str]:
        """Return file names inside ``path`` matching a ``*``/``?`` pattern."""
        return [entry.name for entry in self.get_files_with_info(path, pattern)]

    @translate_method
    def get_files_with_info(
        self, path: str = "", pattern: str | None = None
    ) -> list[RemoteEntry]:
        """Return metadata of the files inside ``path`` matching ``pattern``.

        Example:

            >>> newest = sorted(
            ...     directory.get_files_with_info("ClientA/Job001"),
            ...     key=lambda e: e.last_modified,
            ...     reverse=True,
            ... )

        """
        path = normalize_path(path, allow_root=True)
        entries = self.site.run(self.site.store.list_directory_info(path))
        return [
            entry
            for entry in entries
            if not entry.is_folder and matches_pattern(entry.name, pattern)
        ]

    @translate_method
    def get_directories(self, path: str = "") -> list[str]:
        """Return the names of the folders directly inside ``path``."""
        path = normalize_path(path, allow_root=True)
        entries = self.site.run(self.site.store.list_directory_info(path))
        return [entry.name for entry in entries if entry.is_folder]

    @translate_method
    def delete(self, path: str, *, recursive: bool = False) -> None:
        """Delete the folder at ``path``.

        Raises:
            OSError: If the folder is not empty and ``recursive`` is False.

        """
        path = normalize_path(path)
        with self.site.audit("DeleteDirectory", path):
            if not recursive and self.site.run(self.site.store.list_directory(path)):
                message = "Directory is not empty"
                raise InvalidOperationError(message, path=path)
            self.site.run(self.site.store.delete_folder(path))

    @translate_method
    def move(self, source: str, dest: str, *, overwrite: bool = False) -> None:
        """Move or rename a folder.

        Raises:
            FileExistsError: If ``dest`` exists and ``overwrite`` is False.
            FileNotFoundError: If ``source`` or the destination parent is missing.

        """
        source = normalize_path(source)
        dest = normalize_path(dest)
        with self.site.audit("MoveDirectory", source, destination_path=dest):
            self.site.run(self.site.store.move_folder(source, dest, overwrite=overwrite))

    @translate_method
    def get_folder_url(self, path: str = "") -> str:
        """Return the browser URL of ``path`` (the library root when empty)."""
        path = normalize_path(path, allow_root=True)
        return self.site.run(self.site.store.get_folder_url(path))

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"RemoteDirectory(site={self.site.name!r})"
