"""Exception translation for drop-in compatibility with local file calls.

The file facades stand in for ``open()``/``os``/``shutil`` calls in existing
desktop code, which expects ``OSError`` subclasses. This module maps the
storage error family onto them.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from .interfaces import (
    AlreadyExistsError,
    AuthenticationError,
    InvalidOperationError,
    NotFoundError,
    OperationFailedError,
    QueueTimeoutError,
    StorageError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

T = TypeVar("T")


def root_cause(exc: StorageError) -> BaseException:
    """Return the error an ``OperationFailedError`` chain ultimately wraps."""
    while isinstance(exc, OperationFailedError):
        exc = exc.last_error
    return exc


def translate_storage_exception(exc: StorageError) -> OSError:
    """Convert a StorageError to a standard Python OSError.

    Maps:
    - NotFoundError → FileNotFoundError
    - AlreadyExistsError → FileExistsError
    - InvalidOperationError (cannot read directory) → IsADirectoryError
    - AuthenticationError → PermissionError
    - QueueTimeoutError → TimeoutError
    - StorageError (other) → OSError

    An ``OperationFailedError`` is classified by the error it wraps, while
    the translated message keeps the full retry summary.

    Args:
        exc: The StorageError to translate.

    Returns:
        A standard Python OSError or subclass.

    """
    message = str(exc)
    cause = root_cause(exc)

    if isinstance(cause, NotFoundError):
        return FileNotFoundError(message)

    if isinstance(cause, AlreadyExistsError):
        return FileExistsError(message)

    if isinstance(cause, InvalidOperationError):
        if "Cannot read directory" in cause.message:
            return IsADirectoryError(message)
        return OSError(message)

    if isinstance(cause, AuthenticationError):
        return PermissionError(message)

    if isinstance(cause, QueueTimeoutError):
        return TimeoutError(message)

    if isinstance(cause, OSError):
        return type(cause)(message)

    return OSError(message)


@contextmanager
def translate_exceptions() -> Iterator[None]:
    """Context manager for exception translation.

    Example:
        ```python
        with translate_exceptions():
            site.run(site.store.download("missing.txt"))  # FileNotFoundError
        ```

    Raises:
        OSError: Any StorageError wrapped as the matching OSError subclass.

    """
    try:
        yield
    except StorageError as exc:
        raise translate_storage_exception(exc) from exc


def translate_method(method: Callable[..., T]) -> Callable[..., T]:
    """Decorator translating StorageError raised by a synchronous method."""

    @functools.wraps(method)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        with translate_exceptions():
            return method(*args, **kwargs)

    return wrapper


def translate_async_method(
    method: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Decorator translating StorageError raised by a coroutine method."""

    @functools.wraps(method)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        with translate_exceptions():
            return await method(*args, **kwargs)

    return wrapper
