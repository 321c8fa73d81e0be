"""Local-filesystem style access to remote document libraries.

This package lets desktop applications that used to read and write local
files work against cloud document libraries reached through the Graph API,
with retries, a local download cache and background upload queues.

Core Components:
    - SiteRegistry / Site: Named libraries and their local resources
    - RemoteFile / AsyncRemoteFile: File reads, writes, copies and moves
    - RemoteDirectory: Folder creation, listing, deletion and moves
    - RetryExecutor: Exponential backoff with jitter for remote calls
    - LocalFileCache: Size- and age-bounded cache of downloaded files
    - OperationQueue: Bounded background worker pool with status handles

Quick Start:

    >>> from sharefs import RemoteFile, SiteConfig, SiteRegistry
    >>> with SiteRegistry() as sites:
    ...     site = sites.register(SiteConfig.from_env("Commercial"))
    ...     files = RemoteFile(site)
    ...     files.write_all_text("ClientA/Job001/notes.txt", "Hello")
    ...     files.read_all_text_cached("ClientA/Job001/notes.txt")
    'Hello'

Exception Handling:

    The facades raise standard ``OSError`` subclasses:

    >>> try:
    ...     files.read_all_bytes("missing.txt")
    ... except FileNotFoundError:
    ...     print("File not found")

"""

from .audit import (
    AuditEntry,
    AuditLevel,
    AuditLogger,
    FileAuditLogger,
    LoggingAuditLogger,
    audited,
)
from .cache import CacheStats, LocalFileCache, make_cache_key
from .config import CacheConfig, CloudEnvironment, SiteConfig
from .directories import RemoteDirectory
from .files import AsyncRemoteFile, RemoteFile
from .graph import GraphRemoteStore
from .interfaces import (
    AlreadyExistsError,
    AuthenticationError,
    ConfigurationError,
    InvalidOperationError,
    NotFoundError,
    OperationFailedError,
    QueueDisabledError,
    QueueShutdownError,
    QueueTimeoutError,
    RemoteEntry,
    RemoteStore,
    RemoteStoreError,
    StorageError,
)
from .log import configure_logging
from .queue import Handle, OperationQueue, OperationStatus, QueueStats
from .registry import Site, SiteRegistry
from .retry import RetryExecutor, is_transient_error
from .runner import EventLoopThread

__all__ = [
    "AlreadyExistsError",
    "AsyncRemoteFile",
    "AuditEntry",
    "AuditLevel",
    "AuditLogger",
    "AuthenticationError",
    "CacheConfig",
    "CacheStats",
    "CloudEnvironment",
    "ConfigurationError",
    "EventLoopThread",
    "FileAuditLogger",
    "GraphRemoteStore",
    "Handle",
    "InvalidOperationError",
    "LocalFileCache",
    "LoggingAuditLogger",
    "NotFoundError",
    "OperationFailedError",
    "OperationQueue",
    "OperationStatus",
    "QueueDisabledError",
    "QueueShutdownError",
    "QueueStats",
    "QueueTimeoutError",
    "RemoteDirectory",
    "RemoteEntry",
    "RemoteFile",
    "RemoteStore",
    "RemoteStoreError",
    "RetryExecutor",
    "Site",
    "SiteConfig",
    "SiteRegistry",
    "StorageError",
    "audited",
    "configure_logging",
    "is_transient_error",
    "make_cache_key",
]
