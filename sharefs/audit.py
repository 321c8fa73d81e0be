"""Audit trail of file operations.

Every facade operation produces one ``AuditEntry`` describing who did what,
where, how long it took and whether it worked. Entries go to an
``AuditLogger``; two are provided:

    - ``LoggingAuditLogger`` forwards entries to a standard library logger
    - ``FileAuditLogger`` appends one JSON object per line to a file

Example:

    >>> audit = FileAuditLogger(Path("/var/log/sharefs-audit.jsonl"))
    >>> with audited(audit, "ReadFile", site_name="siteA", path="a.txt") as entry:
    ...     data = read()
    ...     entry.file_size_bytes = len(data)

"""

from __future__ import annotations

import json
import logging
import platform
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterator

SLOW_OPERATION_MS = 30_000


class AuditLevel(str, Enum):
    """Severity of an audited operation."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class AuditEntry:
    """One audited operation."""

    operation: str
    site_name: str
    path: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    level: AuditLevel = AuditLevel.INFO
    user_id: str | None = None
    user_name: str | None = None
    destination_path: str | None = None
    file_size_bytes: int | None = None
    duration_ms: int = 0
    success: bool = True
    error_message: str | None = None
    machine_name: str = field(default_factory=platform.node)
    application_name: str | None = None

    @property
    def file_size_mb(self) -> float:
        """File size in megabytes, 0 when unknown."""
        return (self.file_size_bytes or 0) / 1024 / 1024

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["level"] = self.level.value
        return data

    def to_line(self) -> str:
        """Render the entry as one human-readable line."""
        size = f", Size: {self.file_size_mb:.2f} MB" if self.file_size_bytes else ""
        dest = f" -> {self.destination_path}" if self.destination_path else ""
        error = f", Error: {self.error_message}" if self.error_message else ""
        user = self.user_name or self.user_id or "unknown"
        return (
            f"[{self.timestamp:%Y-%m-%d %H:%M:%S}] {self.level.value.upper()} "
            f"{self.operation} | User: {user} | Site: {self.site_name} | "
            f"Path: {self.path}{dest}{size} | Duration: {self.duration_ms}ms{error}"
        )


class AuditLogger(Protocol):
    """Destination for audit entries. Implementations must not raise."""

    def log(self, entry: AuditEntry) -> None:
        """Record ``entry``."""


_LEVELS = {
    AuditLevel.INFO: logging.INFO,
    AuditLevel.WARNING: logging.WARNING,
    AuditLevel.ERROR: logging.ERROR,
}


class LoggingAuditLogger:
    """Forward audit entries to a standard library logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        """Initialise with the target logger (``sharefs.audit`` by default)."""
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def log(self, entry: AuditEntry) -> None:
        """Emit ``entry`` at the matching log level."""
        self._logger.log(
            _LEVELS[entry.level],
            entry.to_line(),
            extra={"audit": entry.as_dict()},
        )


class FileAuditLogger:
    """Append audit entries to a JSON-lines file."""

    def __init__(
        self,
        file_path: Path,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialise the logger.

        Args:
            file_path: File receiving one JSON object per entry.
            logger: Where write failures are reported.

        """
        self.file_path = Path(file_path)
        self._lock = threading.Lock()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def log(self, entry: AuditEntry) -> None:
        """Append ``entry``; write failures are logged, never raised."""
        line = json.dumps(entry.as_dict(), sort_keys=True)
        with self._lock:
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.file_path, "a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            except OSError as e:
                self._logger.warning(
                    "Failed to write audit entry to %s: %s", self.file_path, e
                )

    def read_entries(self) -> list[dict[str, Any]]:
        """Return every entry written so far, oldest first."""
        if not self.file_path.exists():
            return []
        with open(self.file_path, encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]


@contextmanager
def audited(
    audit_logger: AuditLogger | None,
    operation: str,
    *,
    site_name: str,
    path: str,
    destination_path: str | None = None,
    file_size_bytes: int | None = None,
    user_id: str | None = None,
    user_name: str | None = None,
    application_name: str | None = None,
) -> Iterator[AuditEntry]:
    """Time the enclosed block and record it as one audit entry.

    The block may fill in details (such as ``file_size_bytes``) on the
    yielded entry. Blocks slower than 30 seconds are recorded as WARNING and
    failures as ERROR; failures are re-raised unchanged.
    """
    entry = AuditEntry(
        operation=operation,
        site_name=site_name,
        path=path,
        destination_path=destination_path,
        file_size_bytes=file_size_bytes,
        user_id=user_id,
        user_name=user_name,
        application_name=application_name,
    )
    started = time.perf_counter()
    try:
        yield entry
    except Exception as exc:
        entry.duration_ms = int((time.perf_counter() - started) * 1000)
        entry.success = False
        entry.level = AuditLevel.ERROR
        entry.error_message = str(exc)
        if audit_logger is not None:
            audit_logger.log(entry)
        raise

    entry.duration_ms = int((time.perf_counter() - started) * 1000)
    if entry.duration_ms > SLOW_OPERATION_MS:
        entry.level = AuditLevel.WARNING
    if audit_logger is not None:
        audit_logger.log(entry)
