"""Pydantic schemas for accounts."""

from __future__ import annotations

import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _normalize_bot_id(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not re.match(r"^@?[A-Za-z0-9._-]{1,63}$", v):
        raise ValueError("line_bot_id must look like @abc1234")
    return v if v.startswith("@") else f"@{v}"


class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    line_bot_id: str | None = None
    credential_id: UUID | None = None

    @field_validator("line_bot_id")
    @classmethod
    def validate_line_bot_id(cls, v: str | None) -> str | None:
        return _normalize_bot_id(v)


class AccountUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=256)
    line_bot_id: str | None = None
    credential_id: UUID | None = None

    @field_validator("line_bot_id")
    @classmethod
    def validate_line_bot_id(cls, v: str | None) -> str | None:
        return _normalize_bot_id(v)


class AccountChannelCredentials(BaseModel):
    """Plain channel credentials; stored encrypted, never returned."""

    channel_access_token: str = Field(..., min_length=1)
    channel_secret: str = Field(..., min_length=1)
    channel_id: str | None = None


class AccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    line_bot_id: str | None
    credential_id: UUID | None
    created_at: datetime
    updated_at: datetime
