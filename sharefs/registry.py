"""Named remote sites and the registry that owns them.

A ``Site`` bundles everything needed to talk to one document library: its
configuration, the ``RemoteStore``, the local cache, the background queue
(created on first use), the audit logger and the event loop thread that
hosts the store's HTTP client and the queue's workers.

The application creates one ``SiteRegistry`` at start-up, registers its
sites and shuts the registry down on exit:

    >>> with SiteRegistry() as sites:
    ...     sites.register(SiteConfig.from_env("Commercial"))
    ...     files = RemoteFile(sites.get("Commercial"))
    ...     files.write_all_text("Projects/notes.txt", "hello")

"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from .audit import AuditLogger, LoggingAuditLogger, audited
from .cache import LocalFileCache
from .graph import GraphRemoteStore
from .queue import OperationQueue
from .runner import DEFAULT_STOP_TIMEOUT, EventLoopThread

if TYPE_CHECKING:
    from collections.abc import Coroutine, Iterator
    from contextlib import AbstractContextManager

    from .audit import AuditEntry
    from .config import SiteConfig
    from .interfaces import RemoteStore

T = TypeVar("T")

StoreFactory = Callable[["SiteConfig"], "RemoteStore"]


class Site:
    """One configured document library and its local resources."""

    def __init__(
        self,
        config: SiteConfig,
        *,
        store: RemoteStore | None = None,
        cache: LocalFileCache | None = None,
        audit_logger: AuditLogger | None = None,
        runner: EventLoopThread | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialise the site.

        Args:
            config: Validated site settings.
            store: Remote store; a ``GraphRemoteStore`` when omitted.
            cache: Local cache; built from ``config.cache`` when omitted.
            audit_logger: Audit destination; a ``LoggingAuditLogger`` when
                omitted.
            runner: Event loop thread for the store and queue.
            logger: Destination for site diagnostics.

        Raises:
            ConfigurationError: If ``config`` is incomplete.

        """
        config.validate()
        self.config = config
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self.runner = runner or EventLoopThread(name=f"sharefs-{config.name}")
        self.store = store or GraphRemoteStore(config, logger=self._logger)
        self.cache = cache or LocalFileCache(config.cache, logger=self._logger)
        self.audit_logger = audit_logger or LoggingAuditLogger()
        self._queue: OperationQueue | None = None
        self._queue_lock = threading.Lock()
        self._closed = False

    @property
    def name(self) -> str:
        """Registry name of the site; also its cache namespace."""
        return self.config.name

    @property
    def closed(self) -> bool:
        """Return True after :meth:`close`."""
        return self._closed

    @property
    def queue(self) -> OperationQueue:
        """Background queue for this site, created on first access."""
        with self._queue_lock:
            if self._queue is None:
                self._queue = OperationQueue(
                    self.name,
                    worker_count=self.config.cache.max_concurrent_uploads,
                    enabled=self.config.cache.background_upload,
                    runner=self.runner,
                    logger=self._logger,
                )
            return self._queue

    @property
    def has_queue(self) -> bool:
        """Return True once the queue has been created."""
        return self._queue is not None

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run ``coro`` on the site's loop and block for its result."""
        return self.runner.run(coro, timeout)

    async def call(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await ``coro`` on the site's loop from any other loop."""
        return await self.runner.wrap(coro)

    def audit(
        self,
        operation: str,
        path: str,
        **details: Any,
    ) -> AbstractContextManager[AuditEntry]:
        """Return a context manager auditing one operation on this site."""
        return audited(
            self.audit_logger,
            operation,
            site_name=self.name,
            path=path,
            user_id=self.config.user_id,
            user_name=self.config.user_name,
            application_name=self.config.application_name,
            **details,
        )

    def close(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Stop the queue, close the store and stop the loop thread."""
        if self._closed:
            return
        self._closed = True
        if self._queue is not None:
            self._queue.shutdown(timeout)
        try:
            self.runner.run(self.store.aclose(), timeout)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("Failed to close store for %s: %s", self.name, e)
        self.runner.stop(timeout)
        self._logger.info("Closed site %s", self.name)

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"Site(name={self.name!r}, library={self.config.library_name!r})"


class SiteRegistry:
    """Registry for managing named sites.

    Provides methods to register, look up and shut down sites. The registry
    is an ordinary object owned by the application; there is no global
    instance.
    """

    def __init__(
        self,
        *,
        store_factory: StoreFactory | None = None,
        audit_logger: AuditLogger | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            store_factory: Builds the remote store for configs registered
                without one; ``GraphRemoteStore`` by default.
            audit_logger: Audit destination shared by the sites it creates.
            logger: Destination for registry and site diagnostics.

        """
        self._sites: dict[str, Site] = {}
        self._lock = threading.RLock()
        self._store_factory = store_factory
        self._audit_logger = audit_logger
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def register(self, site: Site | SiteConfig) -> Site:
        """Register a site, building it from a config when needed.

        Raises:
            ValueError: If a site with this name already exists.
            ConfigurationError: If the config is incomplete.

        """
        with self._lock:
            name = site.name
            if name in self._sites:
                msg = f"Site '{name}' already registered"
                raise ValueError(msg)
            if not isinstance(site, Site):
                site = self._build(site)
            self._sites[name] = site
        self._logger.info("Registered site %s", name)
        return site

    def get(self, name: str) -> Site:
        """Retrieve a registered site by name.

        Raises:
            KeyError: If no site with this name exists.

        """
        with self._lock:
            if name not in self._sites:
                msg = f"Site '{name}' not found"
                raise KeyError(msg)
            return self._sites[name]

    def get_or_create(self, config: SiteConfig) -> Site:
        """Return the site named ``config.name``, registering it if missing."""
        with self._lock:
            existing = self._sites.get(config.name)
            if existing is not None:
                return existing
            return self.register(config)

    def exists(self, name: str) -> bool:
        """Return True when a site with this name is registered."""
        with self._lock:
            return name in self._sites

    def list(self) -> list[str]:
        """List registered site names in registration order."""
        with self._lock:
            return list(self._sites)

    def unregister(self, name: str, *, close: bool = True) -> Site:
        """Remove a site, closing it unless ``close`` is False.

        Raises:
            KeyError: If no site with this name exists.

        """
        with self._lock:
            if name not in self._sites:
                msg = f"Site '{name}' not found"
                raise KeyError(msg)
            site = self._sites.pop(name)
        if close:
            site.close()
        return site

    def shutdown_all(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Close every site and empty the registry."""
        with self._lock:
            sites = list(self._sites.values())
            self._sites.clear()
        for site in sites:
            try:
                site.close(timeout)
            except Exception:
                self._logger.exception("Failed to close site %s", site.name)

    def __contains__(self, name: object) -> bool:
        """Support ``name in registry``."""
        with self._lock:
            return name in self._sites

    def __len__(self) -> int:
        """Return the number of registered sites."""
        with self._lock:
            return len(self._sites)

    def __iter__(self) -> Iterator[Site]:
        """Iterate over a snapshot of the registered sites."""
        with self._lock:
            return iter(list(self._sites.values()))

    def __enter__(self) -> SiteRegistry:
        """Return the registry for use in a ``with`` block."""
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Shut every site down when leaving a ``with`` block."""
        self.shutdown_all()

    def _build(self, config: SiteConfig) -> Site:
        store = self._store_factory(config) if self._store_factory else None
        return Site(
            config,
            store=store,
            audit_logger=self._audit_logger,
            logger=self._logger,
        )
