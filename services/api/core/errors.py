# services/api/core/errors.py
"""
Error taxonomy for the Drive proxy.

Components raise these; the FastAPI exception handler in main.py is the single
place that turns them into the JSON error envelope {"error": <message>}.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

# Upstream bodies are echoed back to the caller, but only a bounded prefix
MAX_UPSTREAM_BODY_CHARS = 2000


class ProxyError(Exception):
    """
    Base exception for the proxy.

    Attributes:
        status_code: HTTP status to answer the caller with.
        details: Optional structured information included in the error body.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class AuthError(ProxyError):
    """Bad admin credentials or missing/invalid bearer token."""

    status_code = 401


class ValidationError(ProxyError):
    """Missing required field, parameter or path segment."""

    status_code = 400


class NotFoundError(ProxyError):
    """Unknown account, or the upstream reported 404."""

    status_code = 404


class InternalError(ProxyError):
    """Anything that was not classified closer to its source."""

    status_code = 500


class _UpstreamError(ProxyError):
    """Failure reported by a Google endpoint; carries its status and body."""

    def __init__(self, message: str, *, upstream_status: int, upstream_body: str = "") -> None:
        body = (upstream_body or "")[:MAX_UPSTREAM_BODY_CHARS]
        # Relay the upstream error status; anything else is a bad gateway
        status = upstream_status if upstream_status >= 400 else 502
        super().__init__(
            message,
            status_code=status,
            details={"upstream_status": upstream_status, "upstream_body": body},
        )
        self.upstream_status = upstream_status
        self.upstream_body = body


class UpstreamAuthError(_UpstreamError):
    """The refresh-token (or authorization-code) exchange failed."""


class UpstreamFetchError(_UpstreamError):
    """A Drive API call failed."""
