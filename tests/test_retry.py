"""Tests for RetryExecutor and the transient-error classifier.

Covers attempt counting on exhaustion, the non-transient short-circuit,
jittered exponential delays, the blocking and background variants and
cancellation.

Requires pytest and pytest-asyncio.
"""

from __future__ import annotations

import asyncio
import logging
import random

import httpx
import pytest

from sharefs.interfaces import NotFoundError, OperationFailedError, RemoteStoreError
from sharefs.retry import RetryExecutor, is_transient_error, wait_jittered_backoff


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        """Initialise with no recorded delays."""
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        """Record ``delay`` without waiting."""
        self.delays.append(delay)


class FailingOperation:
    """Callable that raises ``error`` for its first ``failures`` calls."""

    def __init__(self, error: Exception, failures: int = 10**6, result: object = "ok") -> None:
        """Initialise the scripted operation."""
        self.error = error
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self) -> object:
        """Fail until the scripted failures are used up."""
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class BrokenLogger(logging.Logger):
    """Logger whose debug sink always raises."""

    def debug(self, *args: object, **kwargs: object) -> None:  # noqa: ARG002
        """Fail like a handler whose destination went away."""
        message = "log sink unavailable"
        raise OSError(message)


class TestIsTransientError:
    """Classification of failures as retryable or permanent."""

    @pytest.mark.parametrize(
        "exc",
        [
            httpx.ConnectError("connection refused"),
            httpx.ReadTimeout("read timed out"),
            ConnectionResetError("reset by peer"),
            TimeoutError("timed out"),
            asyncio.TimeoutError(),
            RemoteStoreError("Failed to get file", status_code=503),
            RemoteStoreError("Failed to get file", status_code=429),
            RuntimeError("gateway said 504"),
        ],
    )
    def test_transient(self, exc: BaseException) -> None:
        """Transport failures, timeouts and retryable status codes are transient."""
        assert is_transient_error(exc)  # noqa: S101

    @pytest.mark.parametrize(
        "exc",
        [
            NotFoundError("docs/missing.txt"),
            RemoteStoreError("Forbidden", status_code=403),
            ValueError("bad input"),
        ],
    )
    def test_permanent(self, exc: BaseException) -> None:
        """Everything else is permanent."""
        assert not is_transient_error(exc)  # noqa: S101


class TestWaitJitteredBackoff:
    """Delay computation."""

    def test_delays_stay_within_jitter_band(self) -> None:
        """Each delay lies in [0.8 * d, d) where d doubles per attempt."""
        wait = wait_jittered_backoff(1.0, 60.0, rng=random.Random(7))
        for attempt, ceiling in ((1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0)):
            for _ in range(50):
                delay = wait.compute(attempt)
                assert 0.8 * ceiling <= delay < ceiling  # noqa: S101

    def test_delay_is_capped(self) -> None:
        """Delays never exceed the configured maximum."""
        wait = wait_jittered_backoff(2.0, 5.0, rng=random.Random(1))
        assert wait.ceiling(10) == 5.0  # noqa: S101
        assert wait.compute(10) < 5.0  # noqa: S101


class TestRetryExecutor:
    """Async execution with retries."""

    @pytest.mark.asyncio
    async def test_success_returns_result(self) -> None:
        """A succeeding operation runs once and its value is returned."""
        operation = FailingOperation(RuntimeError("unused"), failures=0, result=42)
        executor = RetryExecutor(max_retries=3, sleep=RecordingSleep())

        assert await executor.execute(operation, "Compute") == 42  # noqa: S101
        assert operation.calls == 1  # noqa: S101

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self) -> None:
        """Transient failures are retried until the operation succeeds."""
        sleep = RecordingSleep()
        operation = FailingOperation(httpx.ConnectError("down"), failures=2)
        executor = RetryExecutor(max_retries=3, initial_delay=1.0, sleep=sleep)

        assert await executor.execute(operation, "Download") == "ok"  # noqa: S101
        assert operation.calls == 3  # noqa: S101
        assert len(sleep.delays) == 2  # noqa: S101

    @pytest.mark.asyncio
    async def test_failing_log_sink_does_not_break_retries(self) -> None:
        """A logger that raises while tracing leaves the retry loop intact."""
        operation = FailingOperation(httpx.ConnectError("down"), failures=2)
        executor = RetryExecutor(
            max_retries=3,
            sleep=RecordingSleep(),
            logger=BrokenLogger("sharefs.tests.broken"),
        )

        assert await executor.execute(operation, "Download") == "ok"  # noqa: S101
        assert operation.calls == 3  # noqa: S101

    @pytest.mark.asyncio
    async def test_exhaustion_attempts_max_retries_plus_one(self) -> None:
        """An always-transient failure is attempted max_retries + 1 times."""
        operation = FailingOperation(RemoteStoreError("busy", status_code=503))
        executor = RetryExecutor(max_retries=4, initial_delay=0.0, sleep=RecordingSleep())

        with pytest.raises(OperationFailedError) as excinfo:
            await executor.execute(operation, "Upload file 'a.txt'")

        assert operation.calls == 5  # noqa: S101
        assert excinfo.value.attempts == 5  # noqa: S101
        assert "Upload file 'a.txt'" in str(excinfo.value)  # noqa: S101
        assert "5 attempt(s)" in str(excinfo.value)  # noqa: S101
        assert isinstance(excinfo.value.last_error, RemoteStoreError)  # noqa: S101

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self) -> None:
        """A non-transient failure is attempted exactly once."""
        sleep = RecordingSleep()
        operation = FailingOperation(NotFoundError("docs/a.txt"))
        executor = RetryExecutor(max_retries=5, sleep=sleep)

        with pytest.raises(OperationFailedError) as excinfo:
            await executor.execute(operation, "Download file 'docs/a.txt'")

        assert operation.calls == 1  # noqa: S101
        assert sleep.delays == []  # noqa: S101
        assert isinstance(excinfo.value.last_error, NotFoundError)  # noqa: S101
        assert excinfo.value.path == "docs/a.txt"  # noqa: S101

    @pytest.mark.asyncio
    async def test_backoff_delays_double_within_jitter(self) -> None:
        """Two retries of a 503 sleep in [8ms, 10ms) and then [16ms, 20ms)."""
        sleep = RecordingSleep()
        operation = FailingOperation(RuntimeError("Service returned 503"))
        executor = RetryExecutor(max_retries=2, initial_delay=0.010, sleep=sleep)

        with pytest.raises(OperationFailedError):
            await executor.execute(operation, "Flaky")

        assert operation.calls == 3  # noqa: S101
        first, second = sleep.delays
        assert 0.008 <= first < 0.010  # noqa: S101
        assert 0.016 <= second < 0.020  # noqa: S101

    @pytest.mark.asyncio
    async def test_zero_retries_runs_once(self) -> None:
        """max_retries=0 disables retrying."""
        operation = FailingOperation(httpx.ConnectError("down"))
        executor = RetryExecutor(max_retries=0, sleep=RecordingSleep())

        with pytest.raises(OperationFailedError) as excinfo:
            await executor.execute(operation)

        assert operation.calls == 1  # noqa: S101
        assert excinfo.value.attempts == 1  # noqa: S101

    @pytest.mark.asyncio
    async def test_inner_error_appears_in_message(self) -> None:
        """The wrapped error's own cause is summarised in the message."""

        async def operation() -> None:
            try:
                raise ConnectionResetError("socket closed")
            except ConnectionResetError as e:
                message = "Failed to upload"
                raise ValueError(message) from e

        executor = RetryExecutor(max_retries=1, sleep=RecordingSleep())
        with pytest.raises(OperationFailedError) as excinfo:
            await executor.execute(operation, "Upload")

        assert "Inner: ConnectionResetError: socket closed" in str(excinfo.value)  # noqa: S101

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self) -> None:
        """Cancelling the caller stops the retry loop immediately."""
        started = asyncio.Event()
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1
            started.set()
            await asyncio.sleep(10)

        executor = RetryExecutor(max_retries=3, sleep=RecordingSleep())
        task = asyncio.create_task(executor.execute(operation, "Slow"))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert calls == 1  # noqa: S101

    def test_negative_retries_rejected(self) -> None:
        """Configuration errors are reported up front."""
        with pytest.raises(ValueError, match="max_retries"):
            RetryExecutor(max_retries=-1)


class TestRetryExecutorVariants:
    """Blocking and fire-and-forget variants."""

    def test_execute_sync_retries(self) -> None:
        """The blocking variant applies the same retry policy."""
        calls = 0

        def operation() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("flaky")
            return "done"

        executor = RetryExecutor(max_retries=3, initial_delay=0.0)
        assert executor.execute_sync(operation, "Sync op") == "done"  # noqa: S101
        assert calls == 3  # noqa: S101

    def test_execute_sync_permanent_failure(self) -> None:
        """Permanent failures are wrapped without retrying."""
        calls = 0

        def operation() -> None:
            nonlocal calls
            calls += 1
            message = "bad"
            raise ValueError(message)

        executor = RetryExecutor(max_retries=3, initial_delay=0.0)
        with pytest.raises(OperationFailedError):
            executor.execute_sync(operation, "Sync op")
        assert calls == 1  # noqa: S101

    @pytest.mark.asyncio
    async def test_execute_in_background_returns_task(self) -> None:
        """Background execution yields a task resolving to the result."""
        operation = FailingOperation(httpx.ConnectError("down"), failures=1, result="bg")
        executor = RetryExecutor(max_retries=2, sleep=RecordingSleep())

        task = executor.execute_in_background(operation, "Background")

        assert await task == "bg"  # noqa: S101
        assert operation.calls == 2  # noqa: S101

    @pytest.mark.asyncio
    async def test_execute_in_background_logs_failures(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failed background task is logged when it settles."""
        operation = FailingOperation(ValueError("broken"))
        executor = RetryExecutor(max_retries=0, sleep=RecordingSleep())

        with caplog.at_level("ERROR", logger="sharefs.retry"):
            task = executor.execute_in_background(operation, "Background")
            with pytest.raises(OperationFailedError):
                await task
            await asyncio.sleep(0)

        assert "Background operation failed" in caplog.text  # noqa: S101
