"""
Pydantic schemas for API request/response validation.
"""
from typing import Optional

from pydantic import BaseModel, Field

from .account import Account, AccountCreate, AccountOut, AccountUpdate

# ============ Auth Schemas ============


class LoginRequest(BaseModel):
    """Admin login body."""
    username: str = Field("", description="Admin username")
    password: str = Field("", description="Admin password")


class LoginResponse(BaseModel):
    """Static admin bearer token."""
    token: str


# ============ Health Check ============


class HealthCheck(BaseModel):
    """Health check response."""
    status: str = "ok"
    backend: Optional[str] = None
    version: Optional[str] = None


# Re-export all
__all__ = [
    "Account",
    "AccountCreate",
    "AccountOut",
    "AccountUpdate",
    "LoginRequest",
    "LoginResponse",
    "HealthCheck",
]
