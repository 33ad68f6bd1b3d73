# services/api/core/token_provider.py
"""
Access-token lifecycle for Drive accounts.

Refresh tokens are long-lived and stored with the account record; access
tokens are short-lived and only ever held in process memory, one cache entry
per account id. A cached token is reused while its expiry watermark is still
strictly in the future. After that the next call does a fresh
refresh-token exchange against the OAuth token endpoint.

Concurrent misses for the same account may each do their own exchange;
the endpoint tolerates that and no single-flight is attempted.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import httpx
from cachetools import TLRUCache
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import UpstreamAuthError, ValidationError
from schemas.account import Account

logger = logging.getLogger(__name__)

# Used when the token endpoint does not say how long the token lives
DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class TokenEntry:
    token: str
    expires_at: float


def _time_to_use(_account_id: str, entry: TokenEntry, _now: float) -> float:
    return entry.expires_at


# ========== Retry decorator for token endpoint calls ==========
def retry_token_endpoint(func):
    """Retry token requests that never reached the endpoint (connect/read errors)."""
    return retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )(func)


class TokenProvider:
    """
    Exchange refresh tokens for access tokens and cache them per account.

    One instance per process; the FastAPI dependency layer hands the same
    object to every request.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        token_url: str = "https://oauth2.googleapis.com/token",
        default_client_id: str = "",
        default_client_secret: str = "",
        expiry_margin_seconds: float = 60,
        maxsize: int = 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self._token_url = token_url
        self._default_client_id = default_client_id
        self._default_client_secret = default_client_secret
        self._margin = expiry_margin_seconds
        self._clock = clock
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=clock)

    @classmethod
    def from_settings(cls, http: httpx.AsyncClient, settings) -> "TokenProvider":
        return cls(
            http,
            token_url=settings.token_url,
            default_client_id=settings.google_client_id,
            default_client_secret=settings.google_client_secret,
            expiry_margin_seconds=settings.token_expiry_margin_seconds,
            maxsize=settings.token_cache_maxsize,
        )

    # ========== Cache ==========

    def cached(self, account_id: str) -> Optional[TokenEntry]:
        """The unexpired cache entry for `account_id`, if any."""
        return self._cache.get(account_id)

    def invalidate(self, account_id: str) -> None:
        """Forget the cached token (e.g. Drive rejected it with 401)."""
        self._cache.pop(account_id, None)

    # ========== Exchange ==========

    def resolve_credentials(self, account: Account) -> Tuple[str, str]:
        """Account-scoped client credentials, falling back to the process-wide pair."""
        client_id = account.client_id or self._default_client_id
        client_secret = account.client_secret or self._default_client_secret
        if not client_id or not client_secret or not account.refresh_token:
            raise ValidationError(
                f"Account {account.id} has no usable OAuth client credentials or refresh token"
            )
        return client_id, client_secret

    async def get_access_token(self, account: Account) -> str:
        """
        Return a valid access token for `account`.

        Raises:
            ValidationError: credentials are incomplete.
            UpstreamAuthError: the exchange failed; the cache is left untouched.
        """
        entry = self._cache.get(account.id)
        if entry is not None:
            return entry.token

        client_id, client_secret = self.resolve_credentials(account)
        token, expires_in = await self._exchange(account.id, client_id, client_secret, account.refresh_token)

        expires_at = self._clock() + max(expires_in - self._margin, 0)
        self._cache[account.id] = TokenEntry(token=token, expires_at=expires_at)
        logger.info("Refreshed access token for account %s (valid %ss)", account.id, expires_in)
        return token

    @retry_token_endpoint
    async def _post(self, data: dict) -> httpx.Response:
        return await self._http.post(
            self._token_url,
            data=data,
            headers={"Accept": "application/json"},
        )

    async def _exchange(
        self,
        account_id: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
    ) -> Tuple[str, int]:
        data = {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = await self._post(data)
        except httpx.TimeoutException as e:
            logger.error("Timeout exchanging refresh token for account %s", account_id)
            raise UpstreamAuthError(
                "Failed to get access token: timeout", upstream_status=504, upstream_body=str(e)
            ) from e
        except httpx.RequestError as e:
            logger.error("Error exchanging refresh token for account %s: %s", account_id, e)
            raise UpstreamAuthError(
                "Failed to get access token: upstream unreachable", upstream_status=502, upstream_body=str(e)
            ) from e

        if not response.is_success:
            logger.error(
                "Failed to get access token for account %s: %s %s",
                account_id, response.status_code, response.text,
            )
            raise UpstreamAuthError(
                f"Failed to get access token: {response.status_code}",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamAuthError(
                "Failed to get access token: malformed response",
                upstream_status=response.status_code,
                upstream_body=response.text,
            ) from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise UpstreamAuthError(
                "Failed to get access token: no access_token in response",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )

        try:
            expires_in = int(payload.get("expires_in", DEFAULT_EXPIRES_IN))
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        return token, expires_in
