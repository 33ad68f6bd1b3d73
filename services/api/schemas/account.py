"""
Pydantic schemas for Drive account records.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class Account(BaseModel):
    """Stored account record, secrets included. Never returned to callers."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    refresh_token: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    email: Optional[str] = None


class AccountCreate(BaseModel):
    """
    Request body for /api/settings/add.

    Required fields are typed Optional so a missing one surfaces as our own
    400 "Missing fields" instead of a schema error.
    """
    id: Optional[str] = Field(None, description="Unique account identifier (URL-safe)")
    name: Optional[str] = Field(None, description="Display label")
    refresh_token: Optional[str] = Field(None, description="Long-lived OAuth refresh token")
    client_id: Optional[str] = Field(None, description="Per-account OAuth client id")
    client_secret: Optional[str] = Field(None, description="Per-account OAuth client secret")
    email: Optional[str] = Field(None, description="Google user the token belongs to")


class AccountUpdate(BaseModel):
    """Request body for /api/settings/update/{id}. Only sent fields are applied."""
    id: Optional[str] = None
    name: Optional[str] = None
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    email: Optional[str] = None


class AccountOut(BaseModel):
    """Redacted account as returned by list/get."""
    id: str
    name: str
    client_id: Optional[str] = None
    email: Optional[str] = None
