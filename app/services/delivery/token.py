"""
Provider OAuth token management.

Uber Direct uses the client-credentials grant. A single token is cached
process-wide and reused until 30 seconds before it expires.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from app.core.cache import BaseCache
from app.core.exceptions import CredentialsMissing, ProviderAuthError

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "uber:access_token"

# A cached token is not handed out during its last 30 seconds
REFRESH_MARGIN_MS = 30_000


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ProviderToken:
    """Bearer credential with its absolute expiry (epoch milliseconds)."""
    access_token: str
    expires_at_ms: int

    def is_fresh(self, at_ms: int) -> bool:
        return at_ms < self.expires_at_ms - REFRESH_MARGIN_MS


class ProviderTokenManager:
    """
    Fetches and caches the provider bearer token.

    Concurrent callers that all find the token stale each fetch their own;
    the provider accepts several live tokens, so no request coalescing is
    done.

    Example:
        >>> manager = ProviderTokenManager(client, cache, "id", "secret")
        >>> token = await manager.get_token()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: BaseCache,
        client_id: Optional[str],
        client_secret: Optional[str],
        token_url: str = "https://login.uber.com/oauth/v2/token",
        scope: str = "eats.deliveries",
        timeout: float = 10.0,
        clock: Callable[[], int] = now_ms,
    ):
        self._client = client
        self._cache = cache
        self._client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self.scope = scope
        self._timeout = timeout
        self._clock = clock

    async def _cached_token(self) -> Optional[ProviderToken]:
        data = await self._cache.get(TOKEN_CACHE_KEY)
        if not data:
            return None
        try:
            return ProviderToken(
                access_token=data["access_token"],
                expires_at_ms=int(data["expires_at_ms"]),
            )
        except (KeyError, TypeError, ValueError):
            return None

    async def get_token(self) -> str:
        """
        Return a usable bearer token, fetching a new one if needed.

        Raises:
            CredentialsMissing: client id or secret not configured
            ProviderAuthError: token endpoint failed
        """
        started_ms = self._clock()
        cached = await self._cached_token()
        if cached is not None and cached.is_fresh(started_ms):
            return cached.access_token

        if not self._client_id or not self._client_secret:
            raise CredentialsMissing()

        token = await self._fetch_token(started_ms)
        ttl_seconds = max(1, (token.expires_at_ms - started_ms) // 1000)
        await self._cache.set(
            TOKEN_CACHE_KEY,
            {"access_token": token.access_token, "expires_at_ms": token.expires_at_ms},
            ttl_seconds,
        )
        return token.access_token

    async def _fetch_token(self, started_ms: int) -> ProviderToken:
        logger.info("Uber: requesting access token")

        try:
            response = await self._client.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "scope": self.scope,
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderAuthError("Uber token request timed out") from e
        except httpx.HTTPError as e:
            raise ProviderAuthError(f"Uber token request failed: {e}") from e

        if not response.is_success:
            logger.error(f"Uber: token endpoint returned {response.status_code}")
            raise ProviderAuthError(
                f"Uber token error {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            access_token = data["access_token"]
            expires_in = float(data["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderAuthError("Uber token response malformed") from e

        if not access_token:
            raise ProviderAuthError("Uber token response malformed")

        expires_at_ms = started_ms + int(expires_in * 1000)
        logger.debug(f"Uber: token valid for {expires_in:.0f}s")
        return ProviderToken(access_token=access_token, expires_at_ms=expires_at_ms)

    async def invalidate(self) -> None:
        """Forget the cached token so the next call fetches a new one."""
        await self._cache.delete(TOKEN_CACHE_KEY)
