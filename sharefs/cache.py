"""Local file cache for downloaded remote files.

The cache keeps one payload file and one JSON sidecar per entry inside a
single directory:

    <cache dir>/<key>.cache   raw bytes exactly as downloaded
    <cache dir>/<key>.meta    {"path", "site_id", "cached_at", "size", "last_accessed"}

``key`` is the SHA-256 hex digest of ``"{site_id}:{path}"`` lowercased, so
the same logical file maps to the same entry regardless of the caller's
casing. Both files are written and removed together.

Entries go stale after ``expiration_hours`` (checked when they are looked
up) and the directory is kept under ``max_size_mb`` by evicting the least
recently accessed entries before each store. The cache never raises to its
callers: disk errors, corrupt sidecars and lock timeouts are logged and turn
into a miss or a no-op, leaving the remote store as the source of truth.

Example:

    >>> cache = LocalFileCache(CacheConfig(directory=Path("/tmp/cache")))
    >>> cache.store("docs/readme.txt", "siteA", b"hello")
    True
    >>> cache.try_get("DOCS/README.TXT", "siteA")
    (True, b'hello')

"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from .locking import DirectoryLock

if TYPE_CHECKING:
    from .config import CacheConfig

PAYLOAD_SUFFIX = ".cache"
META_SUFFIX = ".meta"
TEMP_SUFFIX = ".tmp"
DEFAULT_LOCK_TIMEOUT = 30.0

_MB = 1024 * 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_cache_key(path: str, site_id: str) -> str:
    """Return the cache key for ``path`` within ``site_id``.

    Example:

        >>> make_cache_key("A/B", "Site") == make_cache_key("a/b", "site")
        True

    """
    combined = f"{site_id}:{path}".lower()
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """Sidecar metadata stored next to each cached payload."""

    path: str
    site_id: str
    cached_at: datetime
    size: int
    last_accessed: datetime | None = None

    def is_expired(self, expiration_hours: float, now: datetime) -> bool:
        """Return True when the entry is older than ``expiration_hours``."""
        return now - self.cached_at > timedelta(hours=expiration_hours)

    @property
    def access_time(self) -> datetime:
        """Most recent use of the entry, falling back to its store time."""
        return self.last_accessed or self.cached_at

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation."""
        return {
            "path": self.path,
            "site_id": self.site_id,
            "cached_at": self.cached_at.isoformat(),
            "size": self.size,
            "last_accessed": self.last_accessed.isoformat()
            if self.last_accessed
            else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        """Rebuild an entry from :meth:`as_dict` output.

        Raises:
            KeyError, TypeError, ValueError: If the record is incomplete or
                malformed.

        """
        last_accessed = data.get("last_accessed")
        return cls(
            path=str(data["path"]),
            site_id=str(data["site_id"]),
            cached_at=_parse_timestamp(data["cached_at"]),
            size=int(data["size"]),
            last_accessed=_parse_timestamp(last_accessed) if last_accessed else None,
        )


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of the cache directory's contents."""

    file_count: int = 0
    total_size_bytes: int = 0

    @property
    def total_size_mb(self) -> float:
        """Total payload size in megabytes."""
        return self.total_size_bytes / _MB

    def __str__(self) -> str:
        """Return a short human-readable summary."""
        return f"{self.file_count} files, {self.total_size_mb:.2f} MB"


class LocalFileCache:
    """Size- and age-bounded cache of downloaded files for one directory.

    All operations on the directory run inside one exclusive
    :class:`DirectoryLock`, which is never held across a network call.
    """

    def __init__(
        self,
        config: CacheConfig,
        *,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        """Initialise the cache.

        Args:
            config: Cache settings; ``directory``, ``max_size_mb`` and
                ``expiration_hours`` are read from it.
            logger: Destination for cache diagnostics.
            clock: Returns the current UTC time; used for ages.
            lock_timeout: Seconds to wait for the directory lock before an
                operation degrades to a miss or a no-op.

        """
        self.config = config
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._clock = clock or _utcnow
        self._lock_timeout = lock_timeout
        self._lock = DirectoryLock(config.directory)

        if self.enabled:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                self._logger.warning(
                    "Cannot create cache directory %s: %s", self.directory, e
                )

    @property
    def enabled(self) -> bool:
        """Whether the cache stores and serves entries."""
        return self.config.enabled

    @property
    def directory(self) -> Path:
        """Directory holding payloads and sidecars."""
        return self.config.directory

    @property
    def max_size_bytes(self) -> int:
        """Ceiling for the total payload size, and for any single payload."""
        return self.config.max_size_bytes

    def try_get(self, path: str, site_id: str) -> tuple[bool, bytes | None]:
        """Look up a cached file.

        Returns:
            ``(True, data)`` on a hit, ``(False, None)`` otherwise. Expired
            and corrupt entries are deleted before the miss is reported.

        """
        if not self.enabled:
            return False, None

        key = make_cache_key(path, site_id)
        try:
            with self._lock.acquire(timeout=self._lock_timeout):
                return self._try_get_locked(key, path)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("Failed to read cache for %s: %s", path, e)
            return False, None

    def get(self, path: str, site_id: str) -> bytes | None:
        """Return cached bytes for ``path`` or None on a miss."""
        _, data = self.try_get(path, site_id)
        return data

    def store(self, path: str, site_id: str, data: bytes) -> bool:
        """Cache ``data`` for ``path`` within ``site_id``.

        Payloads larger than the cache ceiling are never cached. Older
        entries are evicted first when the new payload would not fit.

        Returns:
            True when the entry was written.

        """
        if not self.enabled:
            return False

        size = len(data)
        if size > self.max_size_bytes:
            self._logger.debug(
                "Cache skip, file too large: %s (%.2f MB, max %.2f MB)",
                path,
                size / _MB,
                self.max_size_bytes / _MB,
            )
            return False

        key = make_cache_key(path, site_id)
        try:
            with self._lock.acquire(timeout=self._lock_timeout):
                self.directory.mkdir(parents=True, exist_ok=True)
                self._sweep_orphans()
                self._evict_if_needed(size, replacing=key)
                self._write_entry(key, path, site_id, data)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("Failed to store %s in cache: %s", path, e)
            return False

        self._logger.debug("Cache store %s (%.2f MB)", path, size / _MB)
        return True

    def invalidate(self, path: str, site_id: str) -> None:
        """Drop the entry for ``path`` if one exists."""
        if not self.enabled:
            return
        key = make_cache_key(path, site_id)
        try:
            with self._lock.acquire(timeout=self._lock_timeout):
                self._delete_entry(key)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("Failed to invalidate cache for %s: %s", path, e)

    def clear(self) -> None:
        """Delete the whole cache directory and recreate it empty."""
        try:
            with self._lock.acquire(timeout=self._lock_timeout):
                if self.directory.exists():
                    shutil.rmtree(self.directory)
                if self.enabled:
                    self.directory.mkdir(parents=True, exist_ok=True)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("Failed to clear cache %s: %s", self.directory, e)
            return
        self._logger.info("Cleared cache %s", self.directory)

    def get_stats(self) -> CacheStats:
        """Count cached payloads and their total size.

        Best effort: filesystem errors are logged and a partial report is
        returned.
        """
        file_count = 0
        total_size = 0
        if not self.enabled:
            return CacheStats()
        try:
            if not self.directory.exists():
                return CacheStats()
            with self._lock.acquire(timeout=self._lock_timeout):
                for payload in self.directory.glob(f"*{PAYLOAD_SUFFIX}"):
                    total_size += payload.stat().st_size
                    file_count += 1
        except Exception as e:  # noqa: BLE001
            self._logger.warning("Failed to collect cache stats: %s", e)
        return CacheStats(file_count=file_count, total_size_bytes=total_size)

    def _payload_path(self, key: str) -> Path:
        return self.directory / f"{key}{PAYLOAD_SUFFIX}"

    def _meta_path(self, key: str) -> Path:
        return self.directory / f"{key}{META_SUFFIX}"

    def _try_get_locked(self, key: str, path: str) -> tuple[bool, bytes | None]:
        payload_path = self._payload_path(key)
        meta_path = self._meta_path(key)
        if not payload_path.exists() or not meta_path.exists():
            return False, None

        try:
            entry = self._read_entry(meta_path)
        except (OSError, ValueError, KeyError, TypeError) as e:
            self._logger.warning("Discarding corrupt cache entry for %s: %s", path, e)
            self._delete_entry(key)
            return False, None

        now = self._clock()
        if entry.is_expired(self.config.expiration_hours, now):
            self._logger.debug("Cache entry expired for %s", path)
            self._delete_entry(key)
            return False, None

        data = payload_path.read_bytes()
        if len(data) != entry.size:
            self._logger.warning(
                "Discarding cache entry for %s: expected %d bytes, found %d",
                path,
                entry.size,
                len(data),
            )
            self._delete_entry(key)
            return False, None

        entry.last_accessed = now
        try:
            self._atomic_write(meta_path, json.dumps(entry.as_dict()).encode("utf-8"))
        except OSError as e:
            self._logger.debug("Could not record access time for %s: %s", path, e)

        self._logger.debug(
            "Cache hit %s (%.2f MB), age %.1f minutes",
            path,
            len(data) / _MB,
            (now - entry.cached_at).total_seconds() / 60,
        )
        return True, data

    @staticmethod
    def _read_entry(meta_path: Path) -> CacheEntry:
        with open(meta_path, encoding="utf-8") as fh:
            record = json.load(fh)
        if not isinstance(record, dict):
            message = "metadata record is not an object"
            raise ValueError(message)
        return CacheEntry.from_dict(record)

    def _write_entry(self, key: str, path: str, site_id: str, data: bytes) -> None:
        """Write payload and sidecar; on failure neither is left behind."""
        payload_path = self._payload_path(key)
        meta_path = self._meta_path(key)
        now = self._clock()
        entry = CacheEntry(
            path=path,
            site_id=site_id,
            cached_at=now,
            size=len(data),
            last_accessed=now,
        )
        try:
            self._atomic_write(payload_path, data)
            self._atomic_write(meta_path, json.dumps(entry.as_dict()).encode("utf-8"))
        except OSError:
            self._delete_entry(key)
            raise

    @staticmethod
    def _atomic_write(target: Path, data: bytes) -> None:
        temp_path = target.with_name(target.name + TEMP_SUFFIX)
        try:
            with open(temp_path, "wb") as fh:
                fh.write(data)
            os.replace(temp_path, target)
        except OSError:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise

    def _delete_entry(self, key: str) -> bool:
        """Remove both files of an entry.

        Returns True when the payload is gone afterwards. A sidecar left
        behind is picked up later by :meth:`_sweep_orphans`.
        """
        removed = True
        for target in (self._payload_path(key), self._meta_path(key)):
            try:
                target.unlink(missing_ok=True)
            except OSError as e:
                self._logger.warning("Failed to delete cache file %s: %s", target, e)
                if target.suffix == PAYLOAD_SUFFIX:
                    removed = False
        return removed

    def _sweep_orphans(self) -> None:
        """Remove sidecars without a payload and leftover temporary files."""
        for path in self.directory.iterdir():
            if path.suffix == TEMP_SUFFIX:
                orphan = True
            elif path.suffix == META_SUFFIX:
                orphan = not self._payload_path(path.stem).exists()
            else:
                continue
            if not orphan:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                self._logger.warning("Failed to delete cache file %s: %s", path, e)
            else:
                self._logger.debug("Removed orphaned cache file %s", path.name)

    def _current_size(self, *, excluding: str | None = None) -> int:
        total = 0
        for payload in self.directory.glob(f"*{PAYLOAD_SUFFIX}"):
            if payload.stem == excluding:
                continue
            try:
                total += payload.stat().st_size
            except OSError:
                continue
        return total

    def _access_time(self, key: str, payload: Path) -> datetime:
        try:
            return self._read_entry(self._meta_path(key)).access_time
        except (OSError, ValueError, KeyError, TypeError):
            return datetime.fromtimestamp(payload.stat().st_atime, tz=timezone.utc)

    def _evict_if_needed(self, new_size: int, *, replacing: str | None = None) -> None:
        """Evict least recently accessed entries until ``new_size`` fits.

        ``replacing`` names the key about to be overwritten; its current
        payload neither counts toward the total nor is evicted.
        """
        current = self._current_size(excluding=replacing)
        if current + new_size <= self.max_size_bytes:
            return

        candidates: list[tuple[datetime, str, int]] = []
        for payload in self.directory.glob(f"*{PAYLOAD_SUFFIX}"):
            key = payload.stem
            if key == replacing:
                continue
            try:
                candidates.append(
                    (self._access_time(key, payload), key, payload.stat().st_size)
                )
            except OSError as e:
                self._logger.warning("Skipping cache file %s during eviction: %s", payload, e)
        candidates.sort()

        target = self.max_size_bytes - new_size
        freed = 0
        for _, key, size in candidates:
            if current - freed <= target:
                break
            if self._delete_entry(key):
                freed += size
                self._logger.debug(
                    "Cache evict %s (%.2f MB)", key, size / _MB
                )
