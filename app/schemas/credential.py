"""Pydantic schemas for credentials."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CredentialField(BaseModel):
    """Field definition for a credential type."""

    name: str
    label: str
    type: str = "string"
    input_type: str = "text"
    help: str = ""
    required: bool = True


class CredentialTypeInfo(BaseModel):
    """Metadata for a credential type."""

    type_name: str
    display_name: str
    fields: list[CredentialField]


class LineMessagingApiModel(BaseModel):
    """LINE Messaging API channel fields."""

    channel_access_token: str = Field(..., min_length=1)
    channel_secret: str = Field(..., min_length=1)
    channel_id: Optional[str] = None


class CredentialCreate(BaseModel):
    """Request schema for creating a credential."""

    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(
        ...,
        description="Credential type (line_messaging_api)",
    )
    fields: dict[str, Any] = Field(default_factory=dict)


class CredentialUpdate(BaseModel):
    """Request schema for updating a credential."""

    name: str | None = Field(None, min_length=1, max_length=100)
    fields: dict[str, Any] | None = None


class CredentialRead(BaseModel):
    """Response schema for a credential (no decrypted fields)."""

    id: UUID
    name: str
    type: str
    created_by_id: UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
