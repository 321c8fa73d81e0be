"""A private asyncio event loop running in a daemon thread.

Synchronous callers (the file facades, desktop UI threads) need to drive
asynchronous code without owning an event loop. ``EventLoopThread`` starts
one loop per owner and hands coroutines to it:

    >>> runner = EventLoopThread(name="sharefs-siteA")
    >>> runner.start()
    >>> data = runner.run(store.download("docs/readme.txt"), timeout=30)
    >>> runner.stop()

Long-lived work such as queue workers is scheduled with :meth:`submit` and
keeps running between calls.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Coroutine

T = TypeVar("T")

DEFAULT_STOP_TIMEOUT = 5.0


class EventLoopThread:
    """Own an asyncio loop that runs forever in a background thread."""

    def __init__(
        self,
        name: str = "sharefs-loop",
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialise the runner without starting it.

        Args:
            name: Thread name, visible in debuggers and log records.
            logger: Destination for lifecycle diagnostics.

        """
        self.name = name
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """The running loop, starting the thread if needed."""
        self.start()
        assert self._loop is not None
        return self._loop

    @property
    def is_running(self) -> bool:
        """Return True while the loop thread is alive."""
        thread = self._thread
        return thread is not None and thread.is_alive()

    def in_loop_thread(self) -> bool:
        """Return True when called from the loop's own thread."""
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self) -> None:
        """Start the loop thread; calling it again is a no-op."""
        with self._lock:
            if self.is_running:
                return
            loop = asyncio.new_event_loop()
            started = threading.Event()
            thread = threading.Thread(
                target=self._run_loop,
                args=(loop, started),
                name=self.name,
                daemon=True,
            )
            thread.start()
            started.wait()
            self._loop = loop
            self._thread = thread
        self._logger.debug("Started event loop thread %s", self.name)

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule ``coro`` on the loop and return a thread-safe future."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run ``coro`` on the loop and block until it finishes.

        Raises:
            RuntimeError: If called from the loop thread, which would deadlock.
            TimeoutError: If ``timeout`` seconds pass first; the coroutine is
                cancelled.

        """
        if self.in_loop_thread():
            coro.close()
            message = "EventLoopThread.run() cannot be called from its own loop"
            raise RuntimeError(message)
        future = self.submit(coro)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            message = f"Operation did not complete within {timeout} seconds"
            raise TimeoutError(message) from None

    async def wrap(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await ``coro`` on this runner's loop from another event loop."""
        if self.in_loop_thread():
            return await coro
        return await asyncio.wrap_future(self.submit(coro))

    def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Cancel outstanding tasks, stop the loop and join the thread."""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None or thread is None:
            return

        if thread.is_alive():
            future = asyncio.run_coroutine_threadsafe(_cancel_pending(), loop)
            try:
                future.result(timeout)
            except (concurrent.futures.TimeoutError, concurrent.futures.CancelledError):
                self._logger.warning(
                    "Tasks on %s did not finish cancelling within %.1fs",
                    self.name,
                    timeout,
                )
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout)

        if thread.is_alive():
            self._logger.warning("Event loop thread %s did not stop", self.name)
        else:
            self._logger.debug("Stopped event loop thread %s", self.name)

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop, started: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(started.set)
        try:
            loop.run_forever()
        finally:
            try:
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                loop.close()


async def _cancel_pending() -> None:
    current = asyncio.current_task()
    tasks = [task for task in asyncio.all_tasks() if task is not current]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
