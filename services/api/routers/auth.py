# services/api/routers/auth.py
from __future__ import annotations

import json
import logging
import secrets
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from core import oauth_flow
from core.errors import AuthError, ProxyError
from dependencies import get_http_client
from schemas import LoginRequest, LoginResponse
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _matches(given: str, expected: str) -> bool:
    return bool(expected) and secrets.compare_digest(given.encode(), expected.encode())


def _redirect_uri(request: Request, settings: Settings) -> str:
    if settings.oauth_redirect_uri:
        return settings.oauth_redirect_uri
    return str(request.url_for("oauth_callback"))


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, settings: Settings = Depends(get_settings)):
    """Static credential check; returns the static admin bearer token."""
    if (
        _matches(payload.username, settings.admin_username)
        and _matches(payload.password, settings.admin_password)
        and settings.admin_token
    ):
        return {"token": settings.admin_token}
    logger.warning("Failed admin login for user %r", payload.username)
    raise AuthError("Invalid credentials")


@router.get("/google")
async def start_consent(
    request: Request,
    state: Optional[str] = Query(None, description="Opaque value echoed back to the callback"),
    settings: Settings = Depends(get_settings),
):
    """Redirect the admin's browser to Google's consent screen."""
    url = oauth_flow.authorization_url(settings, _redirect_uri(request, settings), state=state)
    return RedirectResponse(url)


@router.get("/callback", name="oauth_callback", response_class=HTMLResponse)
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http_client),
):
    """
    OAuth redirect target.

    Exchanges the code for a refresh token and hands it to the admin page
    that opened the popup via window.opener.postMessage.
    """
    if not code:
        return HTMLResponse("Error: Authorization code not found.", status_code=400)

    try:
        refresh_token, email = await oauth_flow.exchange_code(
            settings, http, code, _redirect_uri(request, settings)
        )
    except ProxyError as e:
        return HTMLResponse(f"Authentication Error: {e.message}", status_code=e.status_code)

    origin = f"{request.url.scheme}://{request.url.netloc}"
    message = json.dumps({"refreshToken": refresh_token, "userEmail": email})
    # json.dumps output is valid JS; escape "</" so it cannot close the script tag
    message = message.replace("</", "<\\/")
    html = f"""<!DOCTYPE html><html><head><title>Auth Success</title></head><body>
<script>
    window.opener.postMessage({message}, {json.dumps(origin)});
    window.close();
</script>
<p>Success! You can close this window.</p>
</body></html>"""
    return HTMLResponse(html, headers={"Cache-Control": "no-store"})
