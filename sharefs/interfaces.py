"""Core interfaces and data structures shared by the storage layers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class StorageError(RuntimeError):
    """Base exception for remote storage operations."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
    ) -> None:
        """Initialise the base error with an optional remote path context."""
        detail = message if path is None else ": ".join((message, path))
        super().__init__(detail)
        self.message = message
        self.path = path


class NotFoundError(StorageError):
    """Raised when an expected remote file or folder is missing."""

    def __init__(self, path: str, *, reason: str | None = None) -> None:
        """Create a not-found error for the provided path."""
        super().__init__(reason or "Path not found", path=path)


class AlreadyExistsError(StorageError):
    """Raised when a move or create would replace an existing item."""

    def __init__(self, path: str, *, reason: str | None = None) -> None:
        """Create an already-exists error with an optional reason."""
        super().__init__(reason or "Path already exists", path=path)


class InvalidOperationError(StorageError):
    """Raised when an operation is not allowed for the given path."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        """Initialise an invalid operation error scoped to a path."""
        super().__init__(message, path=path)

    @classmethod
    def empty_path_not_allowed(cls, path: str) -> InvalidOperationError:
        """Return an error when an operation targets an empty path."""
        return cls("Path cannot be empty", path=path)

    @classmethod
    def path_traversal_not_allowed(cls, path: str) -> InvalidOperationError:
        """Return an error when a path tries to climb out of the library."""
        return cls("Path cannot contain '..' segments", path=path)

    @classmethod
    def cannot_read_directory(cls, path: str) -> InvalidOperationError:
        """Return an error indicating folders cannot be read as files."""
        return cls("Cannot read directory", path=path)


class RemoteStoreError(StorageError):
    """Raised when the remote service answers with an unexpected status.

    The status code is part of the message so that the retry classifier can
    recognise throttling and server-side failures from the text alone.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        """Initialise the error with the HTTP status and response body."""
        detail = message
        if status_code is not None:
            detail = f"{message} ({status_code})"
        if body:
            detail = f"{detail} - {body}"
        super().__init__(detail, path=path)
        self.status_code = status_code
        self.body = body


class AuthenticationError(StorageError):
    """Raised when an access token cannot be acquired."""


class ConfigurationError(StorageError):
    """Raised when a site configuration is incomplete."""

    @classmethod
    def missing_field(cls, field_name: str) -> ConfigurationError:
        """Return an error naming the missing configuration value."""
        return cls(f"{field_name} is required")


class OperationFailedError(StorageError):
    """Raised when a retried operation fails permanently or runs out of retries."""

    def __init__(
        self,
        operation_name: str,
        attempts: int,
        last_error: BaseException,
    ) -> None:
        """Describe the failed operation, its attempt count and the last error."""
        inner = last_error.__cause__
        inner_detail = (
            f" | Inner: {type(inner).__name__}: {inner}" if inner is not None else ""
        )
        message = (
            f"{operation_name} failed after {attempts} attempt(s). "
            f"Last error: {type(last_error).__name__}: {last_error}{inner_detail}"
        )
        super().__init__(message, path=getattr(last_error, "path", None))
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error


class QueueDisabledError(StorageError):
    """Raised when work is submitted to a queue with background work disabled."""

    def __init__(self) -> None:
        """Create the error with a fixed explanation."""
        super().__init__("Background operations are disabled for this queue")


class QueueShutdownError(StorageError):
    """Raised for work that was still queued when its queue shut down."""

    def __init__(self, path: str | None = None) -> None:
        """Create the error for the abandoned item's path."""
        super().__init__("Queue shut down before the operation ran", path=path)


class QueueTimeoutError(StorageError, TimeoutError):
    """Raised when queued work does not drain within the caller's timeout."""

    def __init__(self, timeout: float, remaining: int) -> None:
        """Record the timeout and how many items were still outstanding."""
        super().__init__(
            f"Operation queue did not complete within {timeout} seconds. "
            f"Remaining items: {remaining}",
        )
        self.timeout = timeout
        self.remaining = remaining


@dataclass(frozen=True)
class RemoteEntry:
    """Snapshot of a remote file or folder returned by directory listings."""

    name: str
    full_path: str
    is_folder: bool
    size: int | None
    last_modified: datetime | None

    def as_dict(self) -> dict:
        """Return a JSON-serialisable representation."""
        return {
            "name": self.name,
            "full_path": self.full_path,
            "is_folder": self.is_folder,
            "size": self.size,
            "last_modified": self.last_modified.isoformat()
            if self.last_modified
            else None,
        }


class RemoteStore(ABC):
    """Asynchronous interface to a remote document library.

    Paths are normalised, slash-separated and relative to the library root.
    Every method is a single remote round trip (or a short sequence of them)
    that either returns a result or raises.
    """

    @abstractmethod
    async def upload(self, path: str, data: bytes) -> None:
        """Create or replace the file at ``path`` with ``data``."""

    @abstractmethod
    async def download(self, path: str) -> bytes:
        """Return the contents of the file at ``path``.

        Raises:
            NotFoundError: If the file does not exist.

        """

    @abstractmethod
    async def file_exists(self, path: str) -> bool:
        """Return True when an item exists at ``path``."""

    @abstractmethod
    async def directory_exists(self, path: str) -> bool:
        """Return True when a folder exists at ``path``."""

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        """Delete the file at ``path``; missing files are not an error."""

    @abstractmethod
    async def delete_folder(self, path: str) -> None:
        """Delete the folder at ``path`` and its contents."""

    @abstractmethod
    async def create_folder(self, path: str) -> None:
        """Create ``path`` and any missing parent folders."""

    @abstractmethod
    async def list_directory(self, path: str) -> list[str]:
        """Return the names of the items directly inside ``path``."""

    @abstractmethod
    async def list_directory_info(self, path: str) -> list[RemoteEntry]:
        """Return metadata for the items directly inside ``path``."""

    @abstractmethod
    async def move_file(
        self,
        source: str,
        destination: str,
        *,
        overwrite: bool = False,
    ) -> None:
        """Move or rename a file."""

    @abstractmethod
    async def move_folder(
        self,
        source: str,
        destination: str,
        *,
        overwrite: bool = False,
    ) -> None:
        """Move or rename a folder."""

    @abstractmethod
    async def get_file_url(self, path: str) -> str:
        """Return the browser URL of a file."""

    @abstractmethod
    async def get_folder_url(self, path: str) -> str:
        """Return the browser URL of a folder."""

    async def aclose(self) -> None:
        """Release network resources held by the store."""
