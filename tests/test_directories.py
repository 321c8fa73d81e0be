"""Tests for the RemoteDirectory facade."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from sharefs.directories import RemoteDirectory
from sharefs.registry import Site

from tests.fakes import FakeRemoteStore, RecordingAuditLogger, make_site_config

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def store() -> FakeRemoteStore:
    """Library with a small job folder tree."""
    store = FakeRemoteStore()
    store.folders.update({"ClientA", "ClientA/Job001", "ClientA/Job001/Drawings"})
    store.files.update(
        {
            "ClientA/Job001/estimate.xlsx": b"12345",
            "ClientA/Job001/notes.txt": b"abc",
            "ClientA/Job001/Notes-old.TXT": b"ab",
        }
    )
    return store


@pytest.fixture
def audit() -> RecordingAuditLogger:
    """Audit destination for the site."""
    return RecordingAuditLogger()


@pytest.fixture
def directory(
    store: FakeRemoteStore, audit: RecordingAuditLogger
) -> Iterator[RemoteDirectory]:
    """Blocking directory facade over the fake library."""
    site = Site(make_site_config(), store=store, audit_logger=audit)
    yield RemoteDirectory(site)
    site.close()


class TestListing:
    """Existence checks and listings."""

    def test_exists(self, directory: RemoteDirectory) -> None:
        """Folders exist; files and missing paths do not."""
        assert directory.exists("ClientA/Job001")  # noqa: S101
        assert directory.exists("")  # noqa: S101
        assert not directory.exists("ClientA/Job001/notes.txt")  # noqa: S101
        assert not directory.exists("ClientB")  # noqa: S101

    def test_entries(self, directory: RemoteDirectory) -> None:
        """Entries list folders and files by name."""
        entries = directory.get_file_system_entries("ClientA\\Job001")

        assert entries == [  # noqa: S101
            "Drawings",
            "Notes-old.TXT",
            "estimate.xlsx",
            "notes.txt",
        ]

    def test_root_listing(self, directory: RemoteDirectory) -> None:
        """The root is listed with an empty path."""
        assert directory.get_file_system_entries() == ["ClientA"]  # noqa: S101

    def test_get_files_with_pattern(self, directory: RemoteDirectory) -> None:
        """Patterns match case-insensitively and folders are excluded."""
        assert directory.get_files("ClientA/Job001", "*.txt") == [  # noqa: S101
            "Notes-old.TXT",
            "notes.txt",
        ]
        assert directory.get_files("ClientA/Job001", "estimate.xls?") == [  # noqa: S101
            "estimate.xlsx"
        ]
        assert len(directory.get_files("ClientA/Job001")) == 3  # noqa: S101

    def test_get_files_with_info(self, directory: RemoteDirectory) -> None:
        """Entries carry size and full path."""
        (entry,) = directory.get_files_with_info("ClientA/Job001", "*.xlsx")

        assert entry.full_path == "ClientA/Job001/estimate.xlsx"  # noqa: S101
        assert entry.size == 5  # noqa: S101
        assert not entry.is_folder  # noqa: S101

    def test_get_directories(self, directory: RemoteDirectory) -> None:
        """Only folders are returned."""
        assert directory.get_directories("ClientA/Job001") == ["Drawings"]  # noqa: S101

    def test_missing_directory(self, directory: RemoteDirectory) -> None:
        """Listing a missing folder raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Directory not found"):
            directory.get_files("ClientB")


class TestChanges:
    """Creating, deleting and moving folders."""

    def test_create_directory(
        self,
        directory: RemoteDirectory,
        store: FakeRemoteStore,
        audit: RecordingAuditLogger,
    ) -> None:
        """Creation includes missing parents and is audited."""
        directory.create_directory("ClientB/Job002")

        assert {"ClientB", "ClientB/Job002"} <= store.folders  # noqa: S101
        assert audit.operations() == ["CreateDirectory"]  # noqa: S101

    def test_delete_refuses_non_empty(
        self, directory: RemoteDirectory, store: FakeRemoteStore
    ) -> None:
        """A non-empty folder needs recursive=True."""
        with pytest.raises(OSError, match="not empty"):
            directory.delete("ClientA/Job001")

        assert "ClientA/Job001" in store.folders  # noqa: S101
        assert store.calls["delete_folder"] == 0  # noqa: S101

    def test_delete_empty(
        self, directory: RemoteDirectory, store: FakeRemoteStore
    ) -> None:
        """Empty folders are deleted without recursive."""
        directory.delete("ClientA/Job001/Drawings")

        assert "ClientA/Job001/Drawings" not in store.folders  # noqa: S101

    def test_delete_recursive(
        self, directory: RemoteDirectory, store: FakeRemoteStore
    ) -> None:
        """Recursive deletion removes the whole tree."""
        directory.delete("ClientA", recursive=True)

        assert store.folders == set()  # noqa: S101
        assert store.files == {}  # noqa: S101

    def test_move(self, directory: RemoteDirectory, store: FakeRemoteStore) -> None:
        """Moving a folder carries its contents."""
        directory.move("ClientA/Job001", "ClientA/Job001-archived")

        assert "ClientA/Job001-archived/notes.txt" in store.files  # noqa: S101
        assert "ClientA/Job001" not in store.folders  # noqa: S101

    def test_move_conflict(self, directory: RemoteDirectory) -> None:
        """Moving onto an existing folder needs overwrite=True."""
        with pytest.raises(FileExistsError):
            directory.move("ClientA/Job001/Drawings", "ClientA/Job001")

    def test_move_missing(self, directory: RemoteDirectory) -> None:
        """Moving a missing folder raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            directory.move("ClientB", "ClientC")

    def test_folder_url(self, directory: RemoteDirectory) -> None:
        """Folder URLs come from the store; the root is allowed."""
        assert directory.get_folder_url("ClientA") == (  # noqa: S101
            "https://example.test/lib/ClientA"
        )
        assert directory.get_folder_url() == "https://example.test/lib"  # noqa: S101

    def test_repr(self, directory: RemoteDirectory) -> None:
        """The representation names the site."""
        assert repr(directory) == "RemoteDirectory(site='siteA')"  # noqa: S101
