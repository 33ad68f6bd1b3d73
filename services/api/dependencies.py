# services/api/dependencies.py
"""
Process-wide collaborators, handed to routers through FastAPI Depends.

Everything here is built lazily once per process; tests replace them via
app.dependency_overrides.
"""
from __future__ import annotations

import logging
import secrets
from typing import Optional

import httpx
from fastapi import Depends, Request

from adapters.base import KeyValueAdapter
from core.account_store import AccountStore
from core.errors import AuthError
from core.token_provider import TokenProvider
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

_http_client: Optional[httpx.AsyncClient] = None
_account_store: Optional[AccountStore] = None
_token_provider: Optional[TokenProvider] = None


def build_storage_adapter(settings: Settings) -> KeyValueAdapter:
    """Select the key-value backend from STORAGE_BACKEND."""
    backend = settings.storage_backend.lower()
    if backend == "json":
        from adapters.json import JsonAdapter
        logger.info("Using JSON storage under %s", settings.data_dir)
        return JsonAdapter(data_dir=settings.data_dir)
    if backend == "memory":
        from adapters.memory import MemoryAdapter
        logger.info("Using in-memory storage (accounts are lost on restart)")
        return MemoryAdapter()
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.storage_backend}")


def get_http_client() -> httpx.AsyncClient:
    """Shared upstream client; closed by the app shutdown hook."""
    global _http_client
    if _http_client is None:
        settings = get_settings()
        _http_client = httpx.AsyncClient(timeout=settings.upstream_timeout_seconds)
    return _http_client


async def close_http_client() -> None:
    """Close the shared client and drop the token provider bound to it."""
    global _http_client, _token_provider
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
    # The provider holds a reference to the closed client
    _token_provider = None


def get_account_store() -> AccountStore:
    global _account_store
    if _account_store is None:
        _account_store = AccountStore(build_storage_adapter(get_settings()))
    return _account_store


def get_token_provider() -> TokenProvider:
    """The single token cache for this process."""
    global _token_provider
    if _token_provider is None:
        _token_provider = TokenProvider.from_settings(get_http_client(), get_settings())
    return _token_provider


def require_admin(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Bearer check for /api/settings/*. An unset ADMIN_TOKEN rejects everyone."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if (
        scheme != "Bearer"
        or not token
        or not settings.admin_token
        or not secrets.compare_digest(token.strip().encode(), settings.admin_token.encode())
    ):
        raise AuthError("Unauthorized")
