from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AvailablePagesRequest(BaseModel):
    access_token: str = Field(min_length=1)


class ConnectPageRequest(BaseModel):
    access_token: str = Field(min_length=1)
    page_id: str = Field(min_length=1, max_length=64)


class AvailablePage(BaseModel):
    id: str
    name: str
    category: str | None = None
    picture_url: str | None = None
    tasks: list[str] = Field(default_factory=list)


class PageRead(BaseModel):
    """Connected page as returned to the owning account. Never exposes the token."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    page_id: str
    page_name: str
    picture_url: str | None = None
    category: str | None = None
    about: str | None = None
    website: str | None = None
    phone: str | None = None
    email: str | None = None
    webhook_verified: bool
    is_active: bool
    last_sync_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
