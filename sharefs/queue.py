"""Bounded background queue for uploads and other remote operations.

An ``OperationQueue`` accepts work items (a path, an optional payload and an
async action), runs them on a fixed number of worker coroutines and lets
callers follow each item through the ``Handle`` returned by :meth:`submit`:

    >>> queue = OperationQueue("siteA", worker_count=3)
    >>> handle = queue.submit(
    ...     "docs/report.pdf",
    ...     data,
    ...     lambda: store.upload("docs/report.pdf", data),
    ...     on_error=lambda path, exc: print(path, exc),
    ... )
    >>> handle.get_status()
    <OperationStatus.QUEUED: 'queued'>
    >>> queue.wait_for_all(timeout_seconds=60)
    >>> queue.shutdown()

Workers live on the queue's ``EventLoopThread`` and poll a shared FIFO,
sleeping briefly when it is empty. Items move ``QUEUED -> RUNNING ->
COMPLETED | FAILED``; settled items stay queryable for a retention window
and are then forgotten (``NOT_FOUND``). Items still queued when the queue
shuts down fail with ``QueueShutdownError``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from .interfaces import QueueDisabledError, QueueShutdownError, QueueTimeoutError
from .runner import EventLoopThread

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from .retry import RetryExecutor

DEFAULT_WORKER_COUNT = 3
DEFAULT_RETENTION_SECONDS = 300.0
DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_SHUTDOWN_TIMEOUT = 5.0

Action = Callable[[], "Awaitable[Any]"]
SuccessCallback = Callable[[str], Any]
ErrorCallback = Callable[[str, BaseException], Any]


class OperationStatus(str, Enum):
    """Lifecycle state of a queued operation."""

    NOT_FOUND = "not_found"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return True for COMPLETED and FAILED."""
        return self in (OperationStatus.COMPLETED, OperationStatus.FAILED)


@dataclass
class WorkItem:
    """One unit of queued work. Owned by the queue; callers get a ``Handle``."""

    path: str
    action: Action | None
    payload: bytes | None = None
    on_success: SuccessCallback | None = None
    on_error: ErrorCallback | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: OperationStatus = OperationStatus.QUEUED
    enqueued_at: float = 0.0
    started_at: float | None = None
    completed_at: float | None = None
    error: BaseException | None = None
    future: concurrent.futures.Future[Any] = field(
        default_factory=concurrent.futures.Future,
        repr=False,
    )

    @property
    def size(self) -> int:
        """Payload length in bytes, 0 when there is none."""
        return len(self.payload) if self.payload is not None else 0


class Handle:
    """Caller-facing reference to a submitted operation."""

    def __init__(
        self,
        operation_id: str,
        queue: OperationQueue,
        future: concurrent.futures.Future[Any],
    ) -> None:
        """Bind the identifier to its queue and result future."""
        self.id = operation_id
        self._queue = queue
        self._future = future

    @property
    def future(self) -> concurrent.futures.Future[Any]:
        """Future resolved with the action's result or exception."""
        return self._future

    def get_status(self) -> OperationStatus:
        """Return the operation's current status."""
        return self._queue.get_status(self.id)

    def is_complete(self) -> bool:
        """Return True once the operation has completed or failed."""
        return self.get_status().is_terminal

    def result(self, timeout: float | None = None) -> Any:
        """Block until the operation settles and return its result.

        Raises:
            TimeoutError: If it has not settled within ``timeout`` seconds.
            Exception: Whatever the action (or the queue shutdown) failed with.

        """
        return self._future.result(timeout)

    async def wait(self) -> Any:
        """Await the operation from any event loop and return its result."""
        return await asyncio.wrap_future(self._future)

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"Handle(id={self.id!r})"


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time counters for one queue."""

    queued_count: int = 0
    completed_count: int = 0
    worker_count: int = 0
    running_count: int = 0

    def __str__(self) -> str:
        """Return a short human-readable summary."""
        return (
            f"Queued: {self.queued_count}, Running: {self.running_count}, "
            f"Completed: {self.completed_count}, Workers: {self.worker_count}"
        )


class OperationQueue:
    """Fixed-size pool of async workers draining a shared FIFO."""

    def __init__(
        self,
        name: str = "default",
        worker_count: int = DEFAULT_WORKER_COUNT,
        *,
        enabled: bool = True,
        retry: RetryExecutor | None = None,
        runner: EventLoopThread | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] | None = None,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        """Initialise the queue and, when enabled, start its workers.

        Args:
            name: Label used in log records, usually the site name.
            worker_count: Number of worker coroutines.
            enabled: When False no workers start and :meth:`submit` raises
                ``QueueDisabledError``.
            retry: Optional executor wrapped around every action. Actions
                normally retry their own remote calls, so this is off by
                default.
            runner: Event loop thread hosting the workers. A private one is
                created (and stopped on shutdown) when omitted.
            logger: Destination for queue diagnostics.
            clock: Monotonic time source in seconds, used for retention.
            retention_seconds: How long settled items remain queryable.
            poll_interval: Idle sleep of a worker that found no work.

        """
        if worker_count < 1:
            message = "worker_count must be at least 1"
            raise ValueError(message)
        self.name = name
        self.worker_count = worker_count
        self.enabled = enabled
        self.retention_seconds = retention_seconds
        self.poll_interval = poll_interval
        self._retry = retry
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._clock = clock or time.monotonic
        self._owns_runner = runner is None
        self._runner = runner or EventLoopThread(name=f"sharefs-queue-{name}")

        self._lock = threading.Lock()
        self._pending: deque[WorkItem] = deque()
        self._live: dict[str, WorkItem] = {}
        self._retained: dict[str, WorkItem] = {}
        self._stopping = threading.Event()
        self._shut_down = False
        self._workers: list[concurrent.futures.Future[None]] = []

        if self.enabled:
            self._runner.start()
            self._workers = [
                self._runner.submit(self._worker(index))
                for index in range(worker_count)
            ]
            self._logger.info(
                "Operation queue %s started with %d workers", name, worker_count
            )

    @property
    def runner(self) -> EventLoopThread:
        """Event loop thread hosting the workers."""
        return self._runner

    @property
    def is_shut_down(self) -> bool:
        """Return True after :meth:`shutdown`."""
        return self._shut_down

    def submit(
        self,
        path: str,
        payload: bytes | None,
        action: Action,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Handle:
        """Enqueue ``action`` and return immediately.

        Args:
            path: Remote path the operation concerns; passed to callbacks.
            payload: Bytes being written, if any.
            action: Zero-argument callable returning the awaitable to run.
            on_success: Called with ``path`` after the action succeeds.
            on_error: Called with ``path`` and the error after it fails.

        Raises:
            QueueDisabledError: If background operations are disabled.
            QueueShutdownError: If the queue has been shut down.

        """
        if not self.enabled:
            raise QueueDisabledError()
        item = WorkItem(
            path=path,
            action=action,
            payload=payload,
            on_success=on_success,
            on_error=on_error,
            enqueued_at=self._clock(),
        )
        with self._lock:
            if self._shut_down:
                raise QueueShutdownError(path)
            self._pending.append(item)
            self._live[item.id] = item

        self._logger.debug(
            "Queued operation %s for %s (%d bytes)", item.id, path, item.size
        )
        return Handle(item.id, self, item.future)

    def get_status(self, operation_id: str) -> OperationStatus:
        """Return the status of ``operation_id``, or NOT_FOUND once forgotten."""
        self._sweep()
        with self._lock:
            item = self._retained.get(operation_id) or self._live.get(operation_id)
            return item.status if item is not None else OperationStatus.NOT_FOUND

    def get_error(self, operation_id: str) -> BaseException | None:
        """Return the error a failed, still retained operation ended with."""
        with self._lock:
            item = self._retained.get(operation_id)
            return item.error if item is not None else None

    def get_stats(self) -> QueueStats:
        """Return a snapshot of the queue's counters."""
        with self._lock:
            running = sum(
                1 for item in self._live.values()
                if item.status is OperationStatus.RUNNING
            )
            return QueueStats(
                queued_count=len(self._pending),
                completed_count=len(self._retained),
                worker_count=sum(1 for worker in self._workers if not worker.done()),
                running_count=running,
            )

    def outstanding(self) -> int:
        """Return how many items are queued or running."""
        with self._lock:
            return len(self._live)

    def wait_for_all(self, timeout_seconds: float) -> None:
        """Block until every queued and running item has settled.

        Raises:
            QueueTimeoutError: If work is still outstanding after
                ``timeout_seconds``.
            RuntimeError: If called from the queue's own loop thread.

        """
        if self._runner.in_loop_thread():
            message = "wait_for_all() would block the queue's own workers"
            raise RuntimeError(message)
        deadline = time.monotonic() + timeout_seconds
        while True:
            remaining = self.outstanding()
            if remaining == 0:
                return
            if time.monotonic() >= deadline:
                raise QueueTimeoutError(timeout_seconds, remaining)
            time.sleep(self.poll_interval)

    async def wait_for_all_async(self, timeout_seconds: float) -> None:
        """Awaitable counterpart of :meth:`wait_for_all`."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        while True:
            remaining = self.outstanding()
            if remaining == 0:
                return
            if loop.time() >= deadline:
                raise QueueTimeoutError(timeout_seconds, remaining)
            await asyncio.sleep(self.poll_interval)

    def shutdown(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        """Stop the workers and fail anything that never started.

        Running items get up to ``timeout`` seconds to finish before their
        workers are cancelled. Items still queued are failed with
        ``QueueShutdownError`` and remain queryable like any failed item.
        Called from the queue's own loop thread, for example inside a
        callback, it returns at once and the waiting happens on a helper
        thread.
        """
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
            abandoned = list(self._pending)
            self._pending.clear()
        self._stopping.set()

        for item in abandoned:
            error = QueueShutdownError(item.path)
            self._settle(item, error=error)
            self._notify(item, item.on_error, item.path, error)
        if abandoned:
            self._logger.warning(
                "Operation queue %s shut down with %d queued item(s) failed",
                self.name,
                len(abandoned),
            )

        if self._runner.in_loop_thread():
            threading.Thread(
                target=self._stop_workers,
                args=(timeout,),
                name=f"{self.name}-shutdown",
                daemon=True,
            ).start()
            return
        self._stop_workers(timeout)

    def _stop_workers(self, timeout: float) -> None:
        if self._workers:
            _, not_done = concurrent.futures.wait(self._workers, timeout=timeout)
            for worker in not_done:
                worker.cancel()
            if not_done:
                concurrent.futures.wait(not_done, timeout=timeout)

        if self._owns_runner:
            self._runner.stop(timeout)
        self._logger.info("Operation queue %s shut down", self.name)

    def __enter__(self) -> OperationQueue:
        """Return the queue for use in a ``with`` block."""
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Shut the queue down when leaving a ``with`` block."""
        self.shutdown()

    async def _worker(self, index: int) -> None:
        self._logger.debug("Worker %d of queue %s started", index, self.name)
        while not self._stopping.is_set():
            item = self._dequeue()
            if item is None:
                await asyncio.sleep(self.poll_interval)
                continue
            await self._run_item(item)
        self._logger.debug("Worker %d of queue %s stopped", index, self.name)

    def _dequeue(self) -> WorkItem | None:
        with self._lock:
            if not self._pending:
                return None
            item = self._pending.popleft()
            item.status = OperationStatus.RUNNING
            item.started_at = self._clock()
            return item

    async def _run_item(self, item: WorkItem) -> None:
        action = item.action
        if action is None:
            return
        try:
            if self._retry is not None:
                result = await self._retry.execute(
                    action, f"Background operation '{item.path}'"
                )
            else:
                result = await action()
        except asyncio.CancelledError:
            error = QueueShutdownError(item.path)
            self._settle(item, error=error)
            self._notify(item, item.on_error, item.path, error)
            raise
        except Exception as exc:
            self._settle(item, error=exc)
            self._logger.error(
                "Background operation failed for %s: %s",
                item.path,
                exc,
                extra={"operation_id": item.id, "path": item.path},
            )
            self._notify(item, item.on_error, item.path, exc)
        else:
            self._settle(item, result=result)
            self._logger.debug(
                "Background operation completed for %s", item.path,
                extra={"operation_id": item.id, "path": item.path},
            )
            self._notify(item, item.on_success, item.path)
        self._sweep()

    def _settle(
        self,
        item: WorkItem,
        *,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        with self._lock:
            item.status = (
                OperationStatus.FAILED if error is not None else OperationStatus.COMPLETED
            )
            item.error = error
            item.completed_at = self._clock()
            item.payload = None
            item.action = None
            self._retained[item.id] = item
        if item.future.done():
            return
        if error is not None:
            item.future.set_exception(error)
        else:
            item.future.set_result(result)

    def _notify(
        self,
        item: WorkItem,
        callback: Callable[..., Any] | None,
        *args: Any,
    ) -> None:
        """Run the item's callback, then stop counting it as outstanding."""
        try:
            if callback is not None:
                callback(*args)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("Queue callback raised for %s: %s", item.path, e)
        finally:
            with self._lock:
                self._live.pop(item.id, None)

    def _sweep(self) -> None:
        """Forget settled items older than the retention window."""
        now = self._clock()
        with self._lock:
            expired = [
                operation_id
                for operation_id, item in self._retained.items()
                if item.completed_at is not None
                and now - item.completed_at >= self.retention_seconds
            ]
            for operation_id in expired:
                del self._retained[operation_id]
        if expired:
            self._logger.debug(
                "Purged %d settled operation(s) from queue %s", len(expired), self.name
            )
