# services/api/core/oauth_flow.py
"""
Google consent flow used by the admin UI to obtain a refresh token for a new
account. The resulting token is handed back to the browser; storing it is a
separate /api/settings/add call.
"""
from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

import httpx
from fastapi.concurrency import run_in_threadpool
from google_auth_oauthlib.flow import Flow

from core.errors import UpstreamAuthError, ValidationError

logger = logging.getLogger(__name__)

# Google adds "openid" to the granted scopes; don't treat that as an error
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/drive.readonly",
]

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"


def _build_flow(settings, redirect_uri: str) -> Flow:
    if not settings.google_client_id or not settings.google_client_secret:
        raise ValidationError("Google OAuth not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET")

    return Flow.from_client_config(
        {
            "web": {
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": settings.token_url,
            }
        },
        scopes=SCOPES,
        redirect_uri=redirect_uri,
        # The callback builds a fresh Flow, so there is no verifier to carry over
        autogenerate_code_verifier=False,
    )


def authorization_url(settings, redirect_uri: str, state: Optional[str] = None) -> str:
    """Consent URL asking for offline access, so Google returns a refresh token."""
    flow = _build_flow(settings, redirect_uri)
    url, _ = flow.authorization_url(
        access_type="offline",
        include_granted_scopes="true",
        prompt="consent",
        state=state,
    )
    return url


async def exchange_code(settings, http: httpx.AsyncClient, code: str, redirect_uri: str) -> Tuple[str, str]:
    """
    Exchange an authorization code for (refresh_token, user_email).

    Raises:
        ValidationError: OAuth client not configured.
        UpstreamAuthError: Google refused the code or returned no refresh token.
    """
    flow = _build_flow(settings, redirect_uri)
    try:
        # oauthlib is synchronous; keep it off the event loop
        await run_in_threadpool(flow.fetch_token, code=code)
    except Exception as e:
        logger.error("Authorization code exchange failed: %s", e)
        raise UpstreamAuthError(
            "Failed to get refresh token", upstream_status=400, upstream_body=str(e)
        ) from e

    creds = flow.credentials
    if not creds.refresh_token:
        raise UpstreamAuthError(
            "Failed to get refresh token",
            upstream_status=400,
            upstream_body="No refresh_token in response (was consent already granted?)",
        )

    email = ""
    try:
        response = await http.get(
            settings.userinfo_url,
            params={"alt": "json"},
            headers={"Authorization": f"Bearer {creds.token}"},
        )
        if response.is_success:
            email = response.json().get("email", "") or ""
        else:
            logger.warning("userinfo lookup failed: %s", response.status_code)
    except (httpx.RequestError, ValueError) as e:
        # Email is informational only
        logger.warning("userinfo lookup failed: %s", e)

    logger.info("Obtained refresh token via consent flow for %s", email or "<unknown user>")
    return creds.refresh_token, email
