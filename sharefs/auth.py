"""OAuth2 client-credentials tokens for the Graph API."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import httpx

from .interfaces import AuthenticationError

if TYPE_CHECKING:
    from .config import SiteConfig

REFRESH_BUFFER_SECONDS = 300.0


@dataclass(frozen=True)
class AccessToken:
    """Bearer token and the monotonic time at which it expires."""

    value: str
    expires_at: float

    def is_fresh(self, now: float, buffer: float = REFRESH_BUFFER_SECONDS) -> bool:
        """Return True while the token is valid for at least ``buffer`` more seconds."""
        return now < self.expires_at - buffer


class TokenProvider:
    """Acquire and cache app-only access tokens for one site.

    Tokens are reused until five minutes before they expire. Concurrent
    callers share a single refresh.
    """

    def __init__(
        self,
        config: SiteConfig,
        client: httpx.AsyncClient,
        *,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialise the provider.

        Args:
            config: Site whose tenant, client id and secret are used.
            client: HTTP client for the token endpoint.
            logger: Destination for token diagnostics.
            clock: Monotonic time source in seconds.

        """
        self._config = config
        self._client = client
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._clock = clock or time.monotonic
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()

    @property
    def token_endpoint(self) -> str:
        """Token URL for the configured tenant and cloud."""
        base = self._config.environment.login_base_url
        return f"{base}/{self._config.tenant_id}/oauth2/v2.0/token"

    def invalidate(self) -> None:
        """Forget the cached token so the next call fetches a new one."""
        self._token = None

    async def get_token(self) -> str:
        """Return a valid bearer token, refreshing it when needed.

        Raises:
            AuthenticationError: If the identity endpoint rejects the request.

        """
        token = self._token
        if token is not None and token.is_fresh(self._clock()):
            return token.value

        async with self._lock:
            token = self._token
            if token is not None and token.is_fresh(self._clock()):
                return token.value
            self._token = await self._acquire()
            return self._token.value

    async def _acquire(self) -> AccessToken:
        form = {
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            "scope": self._config.environment.graph_scope,
            "grant_type": "client_credentials",
        }
        response = await self._client.post(
            self.token_endpoint,
            data=form,
            timeout=self._config.timeout_seconds,
        )
        if response.status_code != httpx.codes.OK:
            message = (
                f"Failed to acquire access token: {response.status_code} - "
                f"{response.text}"
            )
            raise AuthenticationError(message)

        try:
            payload = response.json()
            value = str(payload["access_token"])
            expires_in = float(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            message = f"Malformed token response: {e}"
            raise AuthenticationError(message) from e

        self._logger.debug(
            "Acquired access token for %s, expires in %.0fs",
            self._config.name,
            expires_in,
        )
        return AccessToken(value=value, expires_at=self._clock() + expires_in)
