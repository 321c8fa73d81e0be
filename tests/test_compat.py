"""Tests for exception translation to standard OSError subclasses."""

from __future__ import annotations

import pytest

from sharefs.compat import (
    root_cause,
    translate_async_method,
    translate_exceptions,
    translate_method,
    translate_storage_exception,
)
from sharefs.interfaces import (
    AlreadyExistsError,
    AuthenticationError,
    InvalidOperationError,
    NotFoundError,
    OperationFailedError,
    QueueTimeoutError,
    RemoteStoreError,
)


class TestTranslateStorageException:
    """Mapping of storage errors onto OSError subclasses."""

    def test_not_found(self) -> None:
        """NotFoundError becomes FileNotFoundError."""
        result = translate_storage_exception(NotFoundError("docs/missing.txt"))
        assert isinstance(result, FileNotFoundError)  # noqa: S101
        assert "docs/missing.txt" in str(result)  # noqa: S101

    def test_already_exists(self) -> None:
        """AlreadyExistsError becomes FileExistsError."""
        result = translate_storage_exception(AlreadyExistsError("docs/a.txt"))
        assert isinstance(result, FileExistsError)  # noqa: S101

    def test_cannot_read_directory(self) -> None:
        """Reading a folder becomes IsADirectoryError."""
        exc = InvalidOperationError.cannot_read_directory("docs")
        assert isinstance(translate_storage_exception(exc), IsADirectoryError)  # noqa: S101

    def test_other_invalid_operation(self) -> None:
        """Other invalid operations become a plain OSError."""
        exc = InvalidOperationError.path_traversal_not_allowed("../x")
        result = translate_storage_exception(exc)
        assert type(result) is OSError  # noqa: S101

    def test_authentication(self) -> None:
        """Authentication failures become PermissionError."""
        exc = AuthenticationError("Failed to acquire access token: 401 - nope")
        assert isinstance(translate_storage_exception(exc), PermissionError)  # noqa: S101

    def test_queue_timeout(self) -> None:
        """Queue drain timeouts become TimeoutError."""
        result = translate_storage_exception(QueueTimeoutError(5, 2))
        assert isinstance(result, TimeoutError)  # noqa: S101
        assert "Remaining items: 2" in str(result)  # noqa: S101

    def test_wrapped_error_classified_by_cause(self) -> None:
        """A retry wrapper is translated according to the error it wraps."""
        exc = OperationFailedError(
            "Download file 'a.txt'", 1, NotFoundError("a.txt")
        )
        result = translate_storage_exception(exc)
        assert isinstance(result, FileNotFoundError)  # noqa: S101
        assert "Download file 'a.txt' failed after 1 attempt(s)" in str(result)  # noqa: S101

    def test_wrapped_os_error_keeps_type(self) -> None:
        """Exhausted retries of a timeout surface as TimeoutError."""
        exc = OperationFailedError("Upload", 4, TimeoutError("read timed out"))
        assert isinstance(translate_storage_exception(exc), TimeoutError)  # noqa: S101

    def test_unknown_becomes_os_error(self) -> None:
        """Anything else is a generic OSError."""
        exc = RemoteStoreError("Failed", status_code=403, body="denied")
        result = translate_storage_exception(exc)
        assert type(result) is OSError  # noqa: S101
        assert "(403)" in str(result)  # noqa: S101

    def test_root_cause_unwraps_nesting(self) -> None:
        """Nested retry wrappers unwrap to the innermost error."""
        inner = NotFoundError("x")
        exc = OperationFailedError("outer", 1, OperationFailedError("inner", 1, inner))
        assert root_cause(exc) is inner  # noqa: S101


class TestTranslationHelpers:
    """Context manager and decorators."""

    def test_context_manager_chains_original(self) -> None:
        """The original error is kept as the cause."""
        original = NotFoundError("a.txt")
        with pytest.raises(FileNotFoundError) as excinfo:
            with translate_exceptions():
                raise original
        assert excinfo.value.__cause__ is original  # noqa: S101

    def test_context_manager_leaves_other_errors(self) -> None:
        """Non-storage errors pass through untouched."""
        with pytest.raises(KeyError):
            with translate_exceptions():
                raise KeyError("x")

    def test_translate_method(self) -> None:
        """Synchronous methods are wrapped."""

        class Facade:
            @translate_method
            def read(self) -> bytes:
                raise AlreadyExistsError("a.txt")

        with pytest.raises(FileExistsError):
            Facade().read()

    @pytest.mark.asyncio
    async def test_translate_async_method(self) -> None:
        """Coroutine methods are wrapped."""

        class Facade:
            @translate_async_method
            async def read(self) -> bytes:
                raise NotFoundError("a.txt")

        with pytest.raises(FileNotFoundError):
            await Facade().read()
