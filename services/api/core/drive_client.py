# services/api/core/drive_client.py
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Mapping, Optional

import httpx

from core.errors import NotFoundError, UpstreamFetchError, ValidationError
from core.token_provider import TokenProvider
from schemas.account import Account

logger = logging.getLogger(__name__)

ROOT_FOLDER = "root"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# Fixed projection relayed for every Drive item
FILE_FIELDS = "id,name,mimeType,size,modifiedTime,parents"
LIST_FIELDS = f"nextPageToken, files({FILE_FIELDS})"

# Folders first, then by name
LIST_ORDER = "folder,name"

# Inbound request headers forwarded to the media download
FORWARDED_REQUEST_HEADERS = ("range", "if-range")

# Upstream response headers relayed on a media download
RELAYED_RESPONSE_HEADERS = (
    "content-type",
    "content-length",
    "content-range",
    "accept-ranges",
    "content-disposition",
    "etag",
    "last-modified",
)


def escape_query_value(value: str) -> str:
    """
    Escape a value for use inside a single-quoted Drive query string.
    Backslashes first, then quotes, so the quote escapes are not doubled.
    """
    return value.replace("\\", "\\\\").replace("'", "\\'")


class UpstreamStream:
    """
    An open upstream media response.

    Bytes are pulled from Drive only as the caller consumes `iter_bytes()`;
    the upstream connection is released when the iterator is exhausted,
    abandoned, or `aclose()` is called.
    """

    def __init__(self, response: httpx.Response, chunk_size: int = 64 * 1024):
        self._response = response
        self._chunk_size = chunk_size
        self.status_code = response.status_code
        self.headers: Dict[str, str] = {
            name: response.headers[name]
            for name in RELAYED_RESPONSE_HEADERS
            if name in response.headers
        }

    @property
    def media_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_raw(self._chunk_size):
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._response.is_closed:
            await self._response.aclose()


class DriveClient:
    """
    Drive v3 REST calls on behalf of one account.

    Built per request; the token provider (and its cache) is shared.
    """

    def __init__(
        self,
        account: Account,
        token_provider: TokenProvider,
        http: httpx.AsyncClient,
        settings,
    ):
        self.account = account
        self.token_provider = token_provider
        self.http = http
        self.settings = settings
        self.files_url = f"{settings.drive_api_base.rstrip('/')}/files"

    # ========== Transport helpers ==========

    async def _send(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        stream: bool = False,
    ) -> httpx.Response:
        token = await self.token_provider.get_access_token(self.account)
        request = self.http.build_request(
            "GET",
            url,
            params=params,
            headers={**(headers or {}), "Authorization": f"Bearer {token}"},
        )
        try:
            return await self.http.send(request, stream=stream)
        except httpx.TimeoutException as e:
            logger.error("Timeout calling Drive for account %s: %s", self.account.id, url)
            raise UpstreamFetchError("Drive request timed out", upstream_status=504, upstream_body=str(e)) from e
        except httpx.RequestError as e:
            logger.error("Error calling Drive for account %s: %s", self.account.id, e)
            raise UpstreamFetchError("Drive request failed", upstream_status=502, upstream_body=str(e)) from e

    async def _send_authorized(self, url: str, **kwargs) -> httpx.Response:
        """Send once; on 401 drop the cached token and retry with a fresh one."""
        response = await self._send(url, **kwargs)
        if response.status_code != 401:
            return response

        logger.info("Drive rejected cached token for account %s, refreshing", self.account.id)
        await response.aclose()
        self.token_provider.invalidate(self.account.id)
        return await self._send(url, **kwargs)

    async def _get_json(self, url: str, params: Dict[str, Any], *, what: str, not_found: bool = False) -> Dict[str, Any]:
        response = await self._send_authorized(url, params=params)
        if response.status_code == 404 and not_found:
            raise NotFoundError(f"{what} not found")
        if not response.is_success:
            logger.warning(
                "Drive %s failed for account %s: %s %s",
                what, self.account.id, response.status_code, response.text,
            )
            raise UpstreamFetchError(
                f"Drive API error: {response.status_code}",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(
                "Drive API returned malformed JSON",
                upstream_status=response.status_code,
                upstream_body=response.text,
            ) from e

    def _list_params(self, q: str, page_token: Optional[str], page_size: Optional[int]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "q": q,
            "orderBy": LIST_ORDER,
            "fields": LIST_FIELDS,
            "pageSize": self.settings.clamp_page_size(page_size),
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
            "corpora": "allDrives",
        }
        if page_token:
            params["pageToken"] = page_token
        return params

    # ========== Operations ==========

    async def list_children(
        self,
        folder_id: str = ROOT_FOLDER,
        page_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Immediate, non-trashed children of `folder_id`, folders first.
        Returns the upstream page ({"files": [...], "nextPageToken"?}).
        """
        folder_id = (folder_id or ROOT_FOLDER).strip() or ROOT_FOLDER
        q = f"'{escape_query_value(folder_id)}' in parents and trashed = false"
        return await self._get_json(
            self.files_url,
            self._list_params(q, page_token, page_size),
            what="list",
        )

    async def search(
        self,
        term: str,
        page_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Non-trashed items whose name contains `term`, across all drives."""
        if not term or not term.strip():
            raise ValidationError("Missing search query")
        q = f"name contains '{escape_query_value(term)}' and trashed = false"
        return await self._get_json(
            self.files_url,
            self._list_params(q, page_token, page_size),
            what="search",
        )

    async def get_metadata(self, file_id: str) -> Dict[str, Any]:
        """Fixed field projection for one item. Raises NotFoundError on 404."""
        return await self._get_json(
            f"{self.files_url}/{file_id}",
            {"fields": FILE_FIELDS, "supportsAllDrives": "true"},
            what="File",
            not_found=True,
        )

    async def stream_content(self, file_id: str, inbound_headers: Mapping[str, str]) -> UpstreamStream:
        """
        Open the media body of `file_id` for streaming.

        Range/If-Range are forwarded so players can seek. Errors are raised
        here, before any byte reaches the caller; once the returned stream is
        being relayed, an upstream failure can only end the stream early.
        """
        headers = {"Accept-Encoding": "identity"}
        for name in FORWARDED_REQUEST_HEADERS:
            value = inbound_headers.get(name)
            if value:
                headers[name.title()] = value

        response = await self._send_authorized(
            f"{self.files_url}/{file_id}",
            params={"alt": "media", "supportsAllDrives": "true"},
            headers=headers,
            stream=True,
        )
        if not response.is_success:
            try:
                await response.aread()
                body = response.text
            finally:
                await response.aclose()
            logger.warning(
                "Drive download failed for account %s file %s: %s %s",
                self.account.id, file_id, response.status_code, body,
            )
            raise UpstreamFetchError(
                f"Failed to fetch file: {response.status_code}",
                upstream_status=response.status_code,
                upstream_body=body,
            )

        logger.info(
            "Streaming file %s for account %s (status=%s, range=%s)",
            file_id, self.account.id, response.status_code, headers.get("Range"),
        )
        return UpstreamStream(response, chunk_size=self.settings.stream_chunk_size)
