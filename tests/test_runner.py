"""Tests for EventLoopThread."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING

import pytest

from sharefs.runner import EventLoopThread

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def runner() -> Iterator[EventLoopThread]:
    """Provide a started runner that is stopped after the test."""
    loop_thread = EventLoopThread(name="test-loop")
    loop_thread.start()
    yield loop_thread
    loop_thread.stop()


class TestEventLoopThread:
    """Driving coroutines on a background loop."""

    def test_run_returns_result_from_loop_thread(self, runner: EventLoopThread) -> None:
        """Coroutines run on the runner's own thread."""

        async def which_thread() -> str:
            return threading.current_thread().name

        assert runner.run(which_thread()) == "test-loop"  # noqa: S101

    def test_run_propagates_exceptions(self, runner: EventLoopThread) -> None:
        """Errors raised by the coroutine reach the caller."""

        async def boom() -> None:
            message = "boom"
            raise ValueError(message)

        with pytest.raises(ValueError, match="boom"):
            runner.run(boom())

    def test_run_timeout_cancels(self, runner: EventLoopThread) -> None:
        """A coroutine exceeding the timeout is cancelled."""
        cancelled = threading.Event()

        async def slow() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(TimeoutError):
            runner.run(slow(), timeout=0.05)
        assert cancelled.wait(2)  # noqa: S101

    def test_run_from_loop_thread_is_refused(self, runner: EventLoopThread) -> None:
        """Blocking on the loop from the loop itself would deadlock."""

        async def nested() -> None:
            async def inner() -> None:
                return None

            runner.run(inner())

        with pytest.raises(RuntimeError, match="own loop"):
            runner.run(nested())

    @pytest.mark.asyncio
    async def test_wrap_bridges_event_loops(self, runner: EventLoopThread) -> None:
        """Coroutines can be awaited on the runner from another loop."""

        async def on_runner() -> bool:
            return runner.in_loop_thread()

        assert await runner.wrap(on_runner()) is True  # noqa: S101
        assert not runner.in_loop_thread()  # noqa: S101

    def test_stop_cancels_pending_work(self) -> None:
        """Stopping cancels long-running tasks and joins the thread."""
        loop_thread = EventLoopThread(name="stop-loop")
        future = loop_thread.submit(asyncio.sleep(10))

        loop_thread.stop(timeout=2)

        assert not loop_thread.is_running  # noqa: S101
        assert future.cancelled()  # noqa: S101

    def test_start_is_idempotent(self) -> None:
        """Starting twice keeps a single loop."""
        loop_thread = EventLoopThread(name="twice")
        loop_thread.start()
        first = loop_thread.loop
        loop_thread.start()

        assert loop_thread.loop is first  # noqa: S101
        loop_thread.stop()
