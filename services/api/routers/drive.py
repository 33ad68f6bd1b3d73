# services/api/routers/drive.py
from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from core.account_store import AccountStore
from core.drive_client import ROOT_FOLDER, DriveClient
from core.errors import ValidationError
from core.token_provider import TokenProvider
from dependencies import get_account_store, get_http_client, get_token_provider
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/drive", tags=["drive"])


def get_drive_client(
    account_id: str,
    store: AccountStore = Depends(get_account_store),
    tokens: TokenProvider = Depends(get_token_provider),
    http: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> DriveClient:
    """
    Resolve the account (404 "Account Not Found" if missing) and bind a
    per-request Drive client to the shared token provider.
    """
    account = store.load(account_id)
    return DriveClient(account, tokens, http, settings)


Drive = Annotated[DriveClient, Depends(get_drive_client)]


def _allow_origin(origin: Optional[str], settings: Settings) -> Optional[str]:
    """Access-Control-Allow-Origin value for a streamed response, if any."""
    allowed = settings.get_origins_list()
    if "*" in allowed:
        return "*"
    if origin and origin in allowed:
        return origin
    return None

PageSize = Annotated[Optional[int], Query(alias="pageSize", ge=1, description="Items per page")]
PageToken = Annotated[Optional[str], Query(alias="pageToken", description="Continuation token")]


@router.get("/list/{account_id}")
@router.get("/list/{account_id}/{folder_id}")
async def list_folder(
    drive: Drive,
    folder_id: str = ROOT_FOLDER,
    page_size: PageSize = None,
    page_token: PageToken = None,
) -> Dict[str, Any]:
    """Children of a folder (default: the account's root), folders first."""
    return await drive.list_children(folder_id, page_token=page_token, page_size=page_size)


@router.get("/search/{account_id}")
async def search(
    drive: Drive,
    q: Optional[str] = Query(None, description="Substring of the item name"),
    page_size: PageSize = None,
    page_token: PageToken = None,
) -> Dict[str, Any]:
    if not q or not q.strip():
        raise ValidationError("Missing search query parameter 'q'")
    return await drive.search(q, page_token=page_token, page_size=page_size)


@router.get("/file/{account_id}/{file_id}")
@router.get("/get/{account_id}/{file_id}", include_in_schema=False)
async def file_metadata(drive: Drive, file_id: str) -> Dict[str, Any]:
    return await drive.get_metadata(file_id)


@router.get("/download/{account_id}/{file_id}")
async def download(
    drive: Drive,
    file_id: str,
    request: Request,
    settings: Settings = Depends(get_settings),
):
    """
    Stream the file body straight from Drive.

    A Range header is forwarded, and the upstream status (200/206) and
    range headers are relayed, so media players can seek.
    """
    upstream = await drive.stream_content(file_id, request.headers)

    # Relayed as-is; a media_type would get "; charset=utf-8" appended for text/*
    headers = dict(upstream.headers)
    headers.setdefault("content-type", "application/octet-stream")
    allow_origin = _allow_origin(request.headers.get("origin"), settings)
    if allow_origin:
        headers["Access-Control-Allow-Origin"] = allow_origin
        headers["Vary"] = "Origin"

    return StreamingResponse(
        upstream.iter_bytes(),
        status_code=upstream.status_code,
        media_type=None,
        headers=headers,
        # Runs after the body is sent or the caller disconnects
        background=BackgroundTask(upstream.aclose),
    )
