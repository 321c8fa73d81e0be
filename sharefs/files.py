"""File operations on a remote site with local-filesystem ergonomics.

``RemoteFile`` is the synchronous facade meant to replace ``open()`` and
``shutil`` calls in existing code: it blocks once per call and raises
standard ``OSError`` subclasses. ``AsyncRemoteFile`` offers the same
operations as coroutines for callers that run their own event loop.

Example:

    >>> files = RemoteFile(sites.get("Commercial"))
    >>> files.write_all_text("ClientA/Job001/notes.txt", "draft")
    >>> files.read_all_text_cached("ClientA/Job001/notes.txt")
    'draft'
    >>> handle = files.write_all_bytes_background("ClientA/big.bin", payload)
    >>> files.wait_for_uploads()

Every operation that changes or reads content is recorded in the site's
audit trail.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .compat import translate_async_method, translate_exceptions, translate_method
from .paths import get_directory_name, normalize_path

if TYPE_CHECKING:
    from .cache import CacheStats
    from .queue import ErrorCallback, Handle, QueueStats, SuccessCallback
    from .registry import Site

logger = logging.getLogger(__name__)


async def _upload(site: Site, path: str, data: bytes) -> None:
    """Create the parent folder, upload, then refresh the cached copy."""
    directory = get_directory_name(path)
    if directory:
        await site.call(site.store.create_folder(directory))
    await site.call(site.store.upload(path, data))
    site.cache.store(path, site.name, data)


async def _download(site: Site, path: str) -> bytes:
    return await site.call(site.store.download(path))


async def _download_cached(site: Site, path: str, *, bypass_cache: bool) -> bytes:
    if not bypass_cache:
        hit, data = site.cache.try_get(path, site.name)
        if hit and data is not None:
            logger.debug("Cache hit: %s (%d bytes)", path, len(data))
            return data
    logger.debug("Cache miss: %s, downloading", path)
    data = await _download(site, path)
    site.cache.store(path, site.name, data)
    return data


async def _delete(site: Site, path: str) -> None:
    await site.call(site.store.delete_file(path))
    site.cache.invalidate(path, site.name)


async def _copy(source_site: Site, source: str, dest_site: Site, dest: str) -> int:
    data = await _download(source_site, source)
    await _upload(dest_site, dest, data)
    return len(data)


class AsyncRemoteFile:
    """Coroutine file operations bound to one site.

    Calls may be awaited from any event loop; store calls are dispatched onto
    the site's own loop.
    """

    def __init__(self, site: Site) -> None:
        """Bind the facade to ``site``."""
        self.site = site

    @translate_async_method
    async def write_all_bytes(self, path: str, data: bytes) -> None:
        """Create or replace ``path`` with ``data``, creating parent folders."""
        path = normalize_path(path)
        with self.site.audit("WriteFile", path, file_size_bytes=len(data)):
            await _upload(self.site, path, data)

    async def write_all_text(
        self, path: str, contents: str, encoding: str = "utf-8"
    ) -> None:
        """Write ``contents`` encoded with ``encoding``."""
        await self.write_all_bytes(path, contents.encode(encoding))

    @translate_async_method
    async def read_all_bytes(self, path: str) -> bytes:
        """Download ``path``, bypassing the cache."""
        path = normalize_path(path)
        with self.site.audit("ReadFile", path) as entry:
            data = await _download(self.site, path)
            entry.file_size_bytes = len(data)
        return data

    async def read_all_text(self, path: str, encoding: str = "utf-8") -> str:
        """Download ``path`` and decode it."""
        return (await self.read_all_bytes(path)).decode(encoding)

    @translate_async_method
    async def read_all_bytes_cached(
        self, path: str, *, bypass_cache: bool = False
    ) -> bytes:
        """Return ``path`` from the local cache, downloading it on a miss."""
        path = normalize_path(path)
        with self.site.audit("ReadFile", path) as entry:
            data = await _download_cached(self.site, path, bypass_cache=bypass_cache)
            entry.file_size_bytes = len(data)
        return data

    async def read_all_text_cached(
        self,
        path: str,
        encoding: str = "utf-8",
        *,
        bypass_cache: bool = False,
    ) -> str:
        """Cached counterpart of :meth:`read_all_text`."""
        data = await self.read_all_bytes_cached(path, bypass_cache=bypass_cache)
        return data.decode(encoding)

    @translate_async_method
    async def exists(self, path: str) -> bool:
        """Return True when an item exists at ``path``."""
        path = normalize_path(path)
        return await self.site.call(self.site.store.file_exists(path))

    @translate_async_method
    async def delete(self, path: str) -> None:
        """Delete ``path``; deleting a missing file is not an error."""
        path = normalize_path(path)
        with self.site.audit("DeleteFile", path):
            await _delete(self.site, path)

    @translate_async_method
    async def copy(self, source: str, dest: str, dest_site: Site | None = None) -> None:
        """Copy ``source`` to ``dest``, optionally into another site."""
        source = normalize_path(source)
        dest = normalize_path(dest)
        target = dest_site or self.site
        with self.site.audit("CopyFile", source, destination_path=dest) as entry:
            entry.file_size_bytes = await _copy(self.site, source, target, dest)

    @translate_async_method
    async def move(self, source: str, dest: str, *, overwrite: bool = False) -> None:
        """Move or rename a file within the site.

        Raises:
            FileExistsError: If ``dest`` exists and ``overwrite`` is False.
            FileNotFoundError: If ``source`` or the destination folder is missing.

        """
        source = normalize_path(source)
        dest = normalize_path(dest)
        with self.site.audit("MoveFile", source, destination_path=dest):
            await self.site.call(
                self.site.store.move_file(source, dest, overwrite=overwrite)
            )
            self.site.cache.invalidate(source, self.site.name)
            self.site.cache.invalidate(dest, self.site.name)

    @translate_async_method
    async def get_file_url(self, path: str) -> str:
        """Return the browser URL of ``path``."""
        path = normalize_path(path)
        return await self.site.call(self.site.store.get_file_url(path))

    async def wait_for_uploads(self, timeout_seconds: float | None = None) -> None:
        """Wait until the site's background queue has drained."""
        if timeout_seconds is None:
            timeout_seconds = self.site.config.cache.upload_queue_timeout
        await self.site.queue.wait_for_all_async(timeout_seconds)


class RemoteFile:
    """Blocking file operations bound to one site."""

    def __init__(self, site: Site) -> None:
        """Bind the facade to ``site``."""
        self.site = site
        self._async = AsyncRemoteFile(site)

    def write_all_bytes(self, path: str, data: bytes) -> None:
        """Create or replace ``path`` with ``data``, creating parent folders."""
        self.site.run(self._async.write_all_bytes(path, data))

    def write_all_text(self, path: str, contents: str, encoding: str = "utf-8") -> None:
        """Write ``contents`` encoded with ``encoding``."""
        self.write_all_bytes(path, contents.encode(encoding))

    def read_all_bytes(self, path: str) -> bytes:
        """Download ``path``, bypassing the cache."""
        return self.site.run(self._async.read_all_bytes(path))

    def read_all_text(self, path: str, encoding: str = "utf-8") -> str:
        """Download ``path`` and decode it."""
        return self.read_all_bytes(path).decode(encoding)

    def read_all_bytes_cached(self, path: str, *, bypass_cache: bool = False) -> bytes:
        """Return ``path`` from the local cache, downloading it on a miss."""
        return self.site.run(
            self._async.read_all_bytes_cached(path, bypass_cache=bypass_cache)
        )

    def read_all_text_cached(
        self,
        path: str,
        encoding: str = "utf-8",
        *,
        bypass_cache: bool = False,
    ) -> str:
        """Cached counterpart of :meth:`read_all_text`."""
        return self.read_all_bytes_cached(path, bypass_cache=bypass_cache).decode(
            encoding
        )

    def exists(self, path: str) -> bool:
        """Return True when an item exists at ``path``."""
        return self.site.run(self._async.exists(path))

    def delete(self, path: str) -> None:
        """Delete ``path``; deleting a missing file is not an error."""
        self.site.run(self._async.delete(path))

    def copy(self, source: str, dest: str, dest_site: Site | None = None) -> None:
        """Copy ``source`` to ``dest``, optionally into another site."""
        self.site.run(self._async.copy(source, dest, dest_site))

    def move(self, source: str, dest: str, *, overwrite: bool = False) -> None:
        """Move or rename a file within the site."""
        self.site.run(self._async.move(source, dest, overwrite=overwrite))

    def get_file_url(self, path: str) -> str:
        """Return the browser URL of ``path``."""
        return self.site.run(self._async.get_file_url(path))

    def write_all_bytes_background(
        self,
        path: str,
        data: bytes,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Handle:
        """Queue an upload of ``data`` to ``path`` and return immediately.

        Raises:
            QueueDisabledError: If background uploads are disabled for the site.

        """
        with translate_exceptions():
            path = normalize_path(path)
        site = self.site

        async def action() -> None:
            with site.audit("WriteFile", path, file_size_bytes=len(data)):
                await _upload(site, path, data)

        handle = site.queue.submit(path, data, action, on_success, on_error)
        logger.debug(
            "Queued upload: %s (%.2f MB), id %s", path, len(data) / 1024 / 1024, handle.id
        )
        return handle

    def write_all_text_background(
        self,
        path: str,
        contents: str,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
        encoding: str = "utf-8",
    ) -> Handle:
        """Queue a text upload; see :meth:`write_all_bytes_background`."""
        return self.write_all_bytes_background(
            path, contents.encode(encoding), on_success, on_error
        )

    def write_all_bytes_auto(self, path: str, data: bytes) -> Handle | None:
        """Upload inline, or in the background when ``data`` is large.

        Payloads above the site's ``auto_async_threshold_mb`` are queued when
        background uploads are enabled.

        Returns:
            The queue handle for a background upload, None for an inline one.

        """
        threshold = int(self.site.config.auto_async_threshold_mb * 1024 * 1024)
        if len(data) > threshold and self.site.config.cache.background_upload:
            return self.write_all_bytes_background(path, data)
        self.write_all_bytes(path, data)
        return None

    def delete_background(
        self,
        path: str,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Handle:
        """Queue the deletion of ``path`` and return immediately."""
        with translate_exceptions():
            path = normalize_path(path)
        site = self.site

        async def action() -> None:
            with site.audit("DeleteFile", path):
                await _delete(site, path)

        handle = site.queue.submit(path, None, action, on_success, on_error)
        logger.debug("Queued deletion: %s, id %s", path, handle.id)
        return handle

    def copy_background(
        self,
        source: str,
        dest: str,
        dest_site: Site | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Handle:
        """Queue a copy on the destination site's queue and return immediately.

        Callbacks receive the destination path.
        """
        with translate_exceptions():
            source = normalize_path(source)
            dest = normalize_path(dest)
        source_site = self.site
        target = dest_site or self.site

        async def action() -> None:
            with source_site.audit(
                "CopyFile", source, destination_path=dest
            ) as entry:
                entry.file_size_bytes = await _copy(source_site, source, target, dest)

        handle = target.queue.submit(dest, None, action, on_success, on_error)
        logger.debug(
            "Queued copy: %s (%s) -> %s (%s), id %s",
            source,
            source_site.name,
            dest,
            target.name,
            handle.id,
        )
        return handle

    @translate_method
    def wait_for_uploads(self, timeout_seconds: float | None = None) -> None:
        """Block until the site's background queue has drained.

        Raises:
            TimeoutError: If work is still outstanding after the timeout
                (``upload_queue_timeout`` from the site's cache settings by
                default).

        """
        if timeout_seconds is None:
            timeout_seconds = self.site.config.cache.upload_queue_timeout
        self.site.queue.wait_for_all(timeout_seconds)

    def get_upload_stats(self) -> QueueStats:
        """Return the site's background queue counters."""
        return self.site.queue.get_stats()

    def get_cache_stats(self) -> CacheStats:
        """Return the site's cache counters."""
        return self.site.cache.get_stats()

    def clear_cache(self) -> None:
        """Empty the site's local cache."""
        self.site.cache.clear()

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"RemoteFile(site={self.site.name!r})"