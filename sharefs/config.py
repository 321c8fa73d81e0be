"""Site and cache configuration."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .interfaces import ConfigurationError

ENV_PREFIX = "SHAREFS"


class CloudEnvironment(str, Enum):
    """National cloud hosting the document library."""

    COMMERCIAL = "commercial"
    GCC_HIGH = "gcchigh"
    DOD = "dod"

    @classmethod
    def parse(cls, value: str | None) -> CloudEnvironment:
        """Parse a setting value, falling back to COMMERCIAL when unknown."""
        if not value:
            return cls.COMMERCIAL
        normalized = value.strip().lower().replace("_", "").replace("-", "")
        for member in cls:
            if member.value == normalized:
                return member
        return cls.COMMERCIAL

    @property
    def graph_base_url(self) -> str:
        """Base URL of the Graph API for this cloud."""
        if self is CloudEnvironment.GCC_HIGH:
            return "https://graph.microsoft.us"
        if self is CloudEnvironment.DOD:
            return "https://dod-graph.microsoft.us"
        return "https://graph.microsoft.com"

    @property
    def login_base_url(self) -> str:
        """Base URL of the identity endpoint for this cloud."""
        if self in (CloudEnvironment.GCC_HIGH, CloudEnvironment.DOD):
            return "https://login.microsoftonline.us"
        return "https://login.microsoftonline.com"

    @property
    def graph_scope(self) -> str:
        """OAuth2 scope requested for client-credential tokens."""
        return f"{self.graph_base_url}/.default"


def _default_cache_dir() -> Path:
    return Path(tempfile.gettempdir()) / "sharefs-cache"


@dataclass
class CacheConfig:
    """Configuration for local caching and background operations.

    Attributes:
        enabled: Whether downloaded files are cached locally
        directory: Cache root directory
        max_size_mb: Ceiling for the total cache size, in megabytes
        expiration_hours: Age after which a cached entry is stale
        background_upload: Whether background operations may be queued
        max_concurrent_uploads: Number of background workers per site
        upload_queue_timeout: Default wait for the queue to drain, in seconds
    """

    enabled: bool = True
    directory: Path = field(default_factory=_default_cache_dir)
    max_size_mb: float = 1000
    expiration_hours: float = 24
    background_upload: bool = True
    max_concurrent_uploads: int = 3
    upload_queue_timeout: float = 1800

    def __post_init__(self) -> None:
        """Ensure directory is an expanded Path object."""
        self.directory = Path(self.directory).expanduser()

    @property
    def max_size_bytes(self) -> int:
        """Cache ceiling in bytes."""
        return int(self.max_size_mb * 1024 * 1024)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> CacheConfig:
        """Create configuration from environment variables.

        Environment variables:
            SHAREFS_CACHE_ENABLED: Enable caching (true/false)
            SHAREFS_CACHE_DIR: Cache directory path
            SHAREFS_CACHE_MAX_SIZE_MB: Cache ceiling in megabytes
            SHAREFS_CACHE_EXPIRATION_HOURS: Entry lifetime in hours
            SHAREFS_BACKGROUND_UPLOAD: Enable background operations (true/false)
            SHAREFS_MAX_CONCURRENT_UPLOADS: Number of background workers

        Returns:
            CacheConfig instance
        """
        config = cls()

        if os.getenv(f"{prefix}_CACHE_ENABLED"):
            config.enabled = _parse_bool(os.getenv(f"{prefix}_CACHE_ENABLED"))

        if os.getenv(f"{prefix}_CACHE_DIR"):
            config.directory = Path(os.getenv(f"{prefix}_CACHE_DIR")).expanduser()

        if os.getenv(f"{prefix}_CACHE_MAX_SIZE_MB"):
            config.max_size_mb = float(os.getenv(f"{prefix}_CACHE_MAX_SIZE_MB"))

        if os.getenv(f"{prefix}_CACHE_EXPIRATION_HOURS"):
            config.expiration_hours = float(
                os.getenv(f"{prefix}_CACHE_EXPIRATION_HOURS")
            )

        if os.getenv(f"{prefix}_BACKGROUND_UPLOAD"):
            config.background_upload = _parse_bool(
                os.getenv(f"{prefix}_BACKGROUND_UPLOAD")
            )

        if os.getenv(f"{prefix}_MAX_CONCURRENT_UPLOADS"):
            config.max_concurrent_uploads = int(
                os.getenv(f"{prefix}_MAX_CONCURRENT_UPLOADS")
            )

        return config


@dataclass
class SiteConfig:
    """Connection and identity settings for one remote document library.

    Each application creates one ``SiteConfig`` per library it talks to and
    registers it with a ``SiteRegistry`` under ``name``.
    """

    name: str
    tenant_id: str
    client_id: str
    client_secret: str
    site_url: str
    library_name: str
    timeout_seconds: float = 30
    retry_attempts: int = 3
    environment: CloudEnvironment = CloudEnvironment.COMMERCIAL
    user_id: str | None = None
    user_name: str | None = None
    application_name: str | None = None
    cache: CacheConfig = field(default_factory=CacheConfig)
    auto_async_threshold_mb: float = 50

    def validate(self) -> None:
        """Raise ``ConfigurationError`` naming the first missing value."""
        required = (
            ("name", self.name),
            ("tenant_id", self.tenant_id),
            ("client_id", self.client_id),
            ("client_secret", self.client_secret),
            ("site_url", self.site_url),
            ("library_name", self.library_name),
        )
        for field_name, value in required:
            if not value or not str(value).strip():
                raise ConfigurationError.missing_field(field_name)
        if self.retry_attempts < 0:
            message = "retry_attempts must be zero or greater"
            raise ConfigurationError(message)
        if self.timeout_seconds <= 0:
            message = "timeout_seconds must be positive"
            raise ConfigurationError(message)

    @classmethod
    def from_settings(
        cls,
        name: str,
        settings: Mapping[str, Any],
        prefix: str,
        **overrides: Any,
    ) -> SiteConfig:
        """Build a site from ``"{prefix}.Key"`` style application settings.

        Recognised keys: TenantId, ClientId, ClientSecret, SiteUrl,
        LibraryName, TimeoutSeconds, RetryAttempts and Environment.

        Args:
            name: Registry name of the site.
            settings: Key/value settings, e.g. parsed from an INI or JSON file.
            prefix: Key prefix such as ``"Storage.Commercial"``.
            overrides: Extra ``SiteConfig`` fields (user_id, cache, ...).

        Returns:
            SiteConfig instance
        """

        def setting(key: str) -> Any:
            return settings.get(f"{prefix}.{key}")

        values: dict[str, Any] = {
            "name": name,
            "tenant_id": setting("TenantId") or "",
            "client_id": setting("ClientId") or "",
            "client_secret": setting("ClientSecret") or "",
            "site_url": setting("SiteUrl") or "",
            "library_name": setting("LibraryName") or "",
            "environment": CloudEnvironment.parse(setting("Environment")),
        }
        timeout = _parse_number(setting("TimeoutSeconds"), float)
        if timeout is not None:
            values["timeout_seconds"] = timeout
        retries = _parse_number(setting("RetryAttempts"), int)
        if retries is not None:
            values["retry_attempts"] = retries
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_env(
        cls,
        name: str,
        prefix: str = ENV_PREFIX,
        **overrides: Any,
    ) -> SiteConfig:
        """Build a site from environment variables.

        Environment variables:
            SHAREFS_TENANT_ID, SHAREFS_CLIENT_ID, SHAREFS_CLIENT_SECRET,
            SHAREFS_SITE_URL, SHAREFS_LIBRARY_NAME, SHAREFS_TIMEOUT_SECONDS,
            SHAREFS_RETRY_ATTEMPTS, SHAREFS_ENVIRONMENT, SHAREFS_USER_ID,
            SHAREFS_USER_NAME, SHAREFS_APPLICATION_NAME and the
            ``CacheConfig.from_env`` variables.

        Returns:
            SiteConfig instance
        """
        settings = {
            f"{prefix}.TenantId": os.getenv(f"{prefix}_TENANT_ID"),
            f"{prefix}.ClientId": os.getenv(f"{prefix}_CLIENT_ID"),
            f"{prefix}.ClientSecret": os.getenv(f"{prefix}_CLIENT_SECRET"),
            f"{prefix}.SiteUrl": os.getenv(f"{prefix}_SITE_URL"),
            f"{prefix}.LibraryName": os.getenv(f"{prefix}_LIBRARY_NAME"),
            f"{prefix}.TimeoutSeconds": os.getenv(f"{prefix}_TIMEOUT_SECONDS"),
            f"{prefix}.RetryAttempts": os.getenv(f"{prefix}_RETRY_ATTEMPTS"),
            f"{prefix}.Environment": os.getenv(f"{prefix}_ENVIRONMENT"),
        }
        identity = {
            "user_id": os.getenv(f"{prefix}_USER_ID"),
            "user_name": os.getenv(f"{prefix}_USER_NAME"),
            "application_name": os.getenv(f"{prefix}_APPLICATION_NAME"),
        }
        values: dict[str, Any] = {k: v for k, v in identity.items() if v}
        values["cache"] = CacheConfig.from_env(prefix)
        values.update(overrides)
        return cls.from_settings(name, settings, prefix, **values)


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _parse_number(value: Any, kind: type) -> Any:
    if value is None or str(value).strip() == "":
        return None
    try:
        return kind(value)
    except (TypeError, ValueError):
        return None
