"""Retry with exponential backoff and jitter for remote operations.

Every remote call made by this package goes through a ``RetryExecutor``.
Failures are classified as transient (network hiccups, throttling, server
errors, timeouts) or permanent. Transient failures are retried with an
exponentially growing, jittered delay; permanent failures and exhausted
retries surface as a single ``OperationFailedError``.

Example:

    >>> executor = RetryExecutor(max_retries=3, initial_delay=2.0)
    >>> data = await executor.execute(
    ...     lambda: store.download("docs/readme.txt"),
    ...     "Download file 'docs/readme.txt'",
    ... )

"""

from __future__ import annotations

import asyncio
import logging
import random
import socket
import time
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from .interfaces import OperationFailedError

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 2.0
DEFAULT_MAX_DELAY = 60.0
JITTER_FLOOR = 0.8

TRANSIENT_STATUS_MARKERS = ("429", "503", "504", "408", "500", "502")

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    ConnectionError,
    socket.gaierror,
    TimeoutError,
    asyncio.TimeoutError,
)


def is_transient_error(exc: BaseException) -> bool:
    """Return True when ``exc`` is likely to succeed on a later attempt.

    Transport failures and timeouts are always transient. Anything else is
    transient only when its text mentions one of the retryable HTTP status
    codes (plain substring match).
    """
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    text = str(exc)
    return any(marker in text for marker in TRANSIENT_STATUS_MARKERS)


class wait_jittered_backoff(wait_base):  # noqa: N801
    """Exponential backoff capped at a maximum, jittered into ``[0.8d, d)``."""

    def __init__(
        self,
        initial: float,
        maximum: float,
        *,
        rng: random.Random | None = None,
    ) -> None:
        """Store the backoff bounds and the random source used for jitter."""
        self.initial = initial
        self.maximum = maximum
        self._rng = rng or random.Random()

    def ceiling(self, attempt: int) -> float:
        """Return the un-jittered delay before retry number ``attempt``."""
        return min(self.initial * 2 ** (attempt - 1), self.maximum)

    def compute(self, attempt: int) -> float:
        """Return the jittered delay before retry number ``attempt``."""
        delay = self.ceiling(attempt)
        floor = delay * JITTER_FLOOR
        return floor + (delay - floor) * self._rng.random()

    def __call__(self, retry_state: RetryCallState) -> float:
        """Return the sleep for the retry that follows ``retry_state``."""
        return self.compute(retry_state.attempt_number)


class RetryExecutor:
    """Run operations with retry, exponential backoff and jitter.

    Delays are expressed in seconds. Attempt ``n`` (the ``n``-th retry, so
    the first retry is attempt 1) sleeps a random value in
    ``[0.8 * d, d)`` where ``d = min(initial_delay * 2 ** (n - 1), max_delay)``.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        *,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Configure the retry bounds.

        Args:
            max_retries: Retries after the first attempt; 0 disables retrying.
            initial_delay: Ceiling of the first backoff delay, in seconds.
            max_delay: Upper bound for any single backoff delay, in seconds.
            logger: Destination for retry traces.
            sleep: Coroutine used to wait between attempts.
            rng: Random source for jitter.

        """
        if max_retries < 0:
            message = "max_retries must be zero or greater"
            raise ValueError(message)
        if initial_delay < 0 or max_delay < 0:
            message = "retry delays must be zero or greater"
            raise ValueError(message)
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._sleep = sleep or asyncio.sleep
        self._wait = wait_jittered_backoff(initial_delay, max_delay, rng=rng)
        self._background: set[asyncio.Task[Any]] = set()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "Operation",
    ) -> T:
        """Await ``operation`` until it succeeds or fails for good.

        Raises:
            OperationFailedError: For a permanent failure, or once
                ``max_retries`` retries of a transient failure are used up.

        """
        attempts = 0
        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(is_transient_error),
            before_sleep=self._make_trace(operation_name),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    return await operation()
        except Exception as exc:
            raise OperationFailedError(operation_name, attempts, exc) from exc

    def execute_sync(
        self,
        operation: Callable[[], T],
        operation_name: str = "Operation",
    ) -> T:
        """Blocking counterpart of :meth:`execute` for plain callables."""
        attempts = 0
        retrying = Retrying(
            sleep=time.sleep,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(is_transient_error),
            before_sleep=self._make_trace(operation_name),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    attempts += 1
                    return operation()
        except Exception as exc:
            raise OperationFailedError(operation_name, attempts, exc) from exc

    def execute_in_background(
        self,
        operation: Callable[[], Awaitable[Any]],
        operation_name: str = "Operation",
    ) -> asyncio.Task[Any]:
        """Schedule :meth:`execute` on the running loop and return its task.

        Failures of fire-and-forget work are logged when the task settles.
        Must be called from inside a running event loop.
        """
        task = asyncio.get_running_loop().create_task(
            self.execute(operation, operation_name),
            name=f"retry:{operation_name}",
        )
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Background operation failed: %s", exc)

    def _make_trace(self, operation_name: str) -> Callable[[RetryCallState], None]:
        def trace(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            try:
                self._logger.debug(
                    "%s failed (attempt %d/%d). Error: %s: %s. Retrying in %.0fms",
                    operation_name,
                    retry_state.attempt_number,
                    self.max_retries,
                    type(exc).__name__,
                    exc,
                    delay * 1000,
                    extra={
                        "operation": operation_name,
                        "attempt": retry_state.attempt_number,
                        "delay_ms": round(delay * 1000),
                    },
                )
            except Exception:  # noqa: BLE001
                # Trace sink failures never interrupt the retry loop.
                pass

        return trace
