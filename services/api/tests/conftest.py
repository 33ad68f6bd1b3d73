"""
Shared fixtures: a fake Google (token endpoint + Drive v3) behind
httpx.MockTransport, and a TestClient wired to it.

Run with: pytest services/api/tests -v
"""
import os
import re
import sys
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.memory import MemoryAdapter
from core.account_store import AccountStore
from core.token_provider import TokenProvider
from schemas.account import Account
from settings import Settings

TOKEN_URL = "https://oauth2.googleapis.com/token"
FOLDER = "application/vnd.google-apps.folder"

PROJECTION = ("id", "name", "mimeType", "size", "modifiedTime", "parents")


class FakeClock:
    """Manually advanced clock for the token cache."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ChunkedBody(httpx.AsyncByteStream):
    """Response body delivered in small pieces, like a real network read."""

    def __init__(self, data: bytes, chunk_size: int = 10):
        self.data = data
        self.chunk_size = chunk_size
        self.chunks_sent = 0
        self.closed = False

    async def __aiter__(self):
        for i in range(0, len(self.data), self.chunk_size):
            self.chunks_sent += 1
            yield self.data[i:i + self.chunk_size]

    async def aclose(self) -> None:
        self.closed = True


def _parse_quoted(text: str):
    """
    Parse a single-quoted Drive query literal at the start of `text`.
    Returns (value, rest) or None when the quoting is broken.
    """
    if not text.startswith("'"):
        return None
    out = []
    i = 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            if i + 1 >= len(text):
                return None
            out.append(text[i + 1])
            i += 2
            continue
        if ch == "'":
            return "".join(out), text[i + 1:]
        out.append(ch)
        i += 1
    return None


class FakeGoogle:
    """
    Minimal stand-in for oauth2.googleapis.com and the Drive v3 files API.

    Only the query shapes the proxy sends are understood; anything else is a
    400 "Invalid Value", like the real query grammar rejecting bad syntax.
    """

    def __init__(self):
        self.files: List[Dict[str, Any]] = []
        self.contents: Dict[str, bytes] = {}
        self.media_types: Dict[str, str] = {}
        self.media_bodies: List[ChunkedBody] = []
        self.token_calls = 0
        self.token_requests: List[Dict[str, str]] = []
        self.token_status = 200
        self.token_payload: Optional[Any] = None
        self.token_expires_in = 3600
        self.issued: List[str] = []
        self.revoked: set = set()
        self.drive_requests: List[httpx.Request] = []
        self.fail_drive_status: Optional[int] = None

    # ---------- fixtures helpers ----------

    def add(self, file_id: str, name: str, parent: str = "root", *, folder: bool = False,
            trashed: bool = False, content: bytes = b"", media_type: str = "video/mp4") -> Dict[str, Any]:
        item = {
            "id": file_id,
            "name": name,
            "mimeType": FOLDER if folder else "application/octet-stream",
            "modifiedTime": "2024-01-01T00:00:00.000Z",
            "parents": [parent],
            "trashed": trashed,
        }
        if not folder:
            item["size"] = str(len(content))
            self.contents[file_id] = content
            self.media_types[file_id] = media_type
        self.files.append(item)
        return item

    @property
    def last_token(self) -> str:
        return self.issued[-1]

    # ---------- transport ----------

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(TOKEN_URL):
            return self._token(request)
        return self._drive(request)

    def _token(self, request: httpx.Request) -> httpx.Response:
        self.token_calls += 1
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.token_requests.append(form)
        if self.token_status != 200:
            return httpx.Response(
                self.token_status,
                json={"error": "invalid_grant", "error_description": "Token has been expired or revoked."},
            )
        if self.token_payload is not None:
            if isinstance(self.token_payload, str):
                return httpx.Response(200, text=self.token_payload)
            return httpx.Response(200, json=self.token_payload)
        token = f"access-{self.token_calls}"
        self.issued.append(token)
        return httpx.Response(
            200,
            json={"access_token": token, "expires_in": self.token_expires_in, "token_type": "Bearer"},
        )

    def _drive(self, request: httpx.Request) -> httpx.Response:
        self.drive_requests.append(request)
        auth = request.headers.get("Authorization", "")
        token = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
        if token not in self.issued or token in self.revoked:
            return httpx.Response(401, json={"error": {"code": 401, "message": "Invalid Credentials"}})
        if self.fail_drive_status:
            return httpx.Response(self.fail_drive_status, text="backend error")

        path = request.url.path
        prefix = "/drive/v3/files"
        if path == prefix:
            return self._list(request)
        file_id = path[len(prefix) + 1:]
        item = next((f for f in self.files if f["id"] == file_id), None)
        if item is None:
            return httpx.Response(404, json={"error": {"code": 404, "message": f"File not found: {file_id}."}})
        if request.url.params.get("alt") == "media":
            return self._media(request, file_id)
        return httpx.Response(200, json={k: item[k] for k in PROJECTION if k in item})

    def _list(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        q = params.get("q", "")
        if q.startswith("name contains "):
            parsed = _parse_quoted(q[len("name contains "):])
            if parsed is None or parsed[1] != " and trashed = false":
                return httpx.Response(400, json={"error": {"code": 400, "message": "Invalid Value"}})
            term = parsed[0]
            items = [f for f in self.files if term in f["name"]]
        else:
            parsed = _parse_quoted(q)
            if parsed is None or parsed[1] != " in parents and trashed = false":
                return httpx.Response(400, json={"error": {"code": 400, "message": "Invalid Value"}})
            items = [f for f in self.files if parsed[0] in f["parents"]]

        items = [f for f in items if not f["trashed"]]
        items.sort(key=lambda f: (f["mimeType"] != FOLDER, f["name"]))

        size = int(params.get("pageSize", 100))
        start = int(params.get("pageToken", "0"))
        page = items[start:start + size]
        body: Dict[str, Any] = {"files": [{k: f[k] for k in PROJECTION if k in f} for f in page]}
        if start + size < len(items):
            body["nextPageToken"] = str(start + size)
        return httpx.Response(200, json=body)

    def _media(self, request: httpx.Request, file_id: str) -> httpx.Response:
        data = self.contents[file_id]
        total = len(data)
        headers = {"Content-Type": self.media_types[file_id], "Accept-Ranges": "bytes"}
        status = 200
        m = re.match(r"bytes=(\d+)-(\d*)$", request.headers.get("Range", ""))
        if m:
            start = int(m.group(1))
            end = int(m.group(2)) if m.group(2) else total - 1
            data = data[start:end + 1]
            status = 206
            headers["Content-Range"] = f"bytes {start}-{end}/{total}"
        headers["Content-Length"] = str(len(data))
        body = ChunkedBody(data)
        self.media_bodies.append(body)
        return httpx.Response(status, stream=body, headers=headers)


# ============ Fixtures ============


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        admin_username="admin",
        admin_password="hunter2",
        admin_token="admin-token",
        google_client_id="default-client",
        google_client_secret="default-secret",
        storage_backend="memory",
        allowed_origins="http://ui.test",
        token_expiry_margin_seconds=60,
    )


@pytest.fixture
def google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def http(google) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(google.handler))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokens(http, settings, clock) -> TokenProvider:
    return TokenProvider(
        http,
        token_url=settings.token_url,
        default_client_id=settings.google_client_id,
        default_client_secret=settings.google_client_secret,
        expiry_margin_seconds=settings.token_expiry_margin_seconds,
        clock=clock,
    )


@pytest.fixture
def account() -> Account:
    return Account(id="work", name="Work Drive", refresh_token="refresh-work")


@pytest.fixture
def store(account) -> AccountStore:
    store = AccountStore(MemoryAdapter())
    store.add_account(account.model_dump())
    return store


@pytest.fixture
def client(settings, store, tokens, http):
    from fastapi.testclient import TestClient

    from dependencies import get_account_store, get_http_client, get_token_provider
    from main import app
    from settings import get_settings

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_account_store] = lambda: store
    app.dependency_overrides[get_token_provider] = lambda: tokens
    app.dependency_overrides[get_http_client] = lambda: http
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(settings) -> Dict[str, str]:
    return {"Authorization": f"Bearer {settings.admin_token}"}


