"""Pydantic schemas for invite codes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.constants.enrollment import EnrollmentSource

INVITE_CODE_PATTERN = re.compile(r"^[A-Za-z0-9]{8,32}$")


class InviteCodeCreate(BaseModel):
    """code is generated when omitted."""

    code: str | None = None
    max_usage: int | None = Field(None, ge=1)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str | None) -> str | None:
        if v is not None and not INVITE_CODE_PATTERN.match(v):
            raise ValueError("code must be 8-32 alphanumeric characters")
        return v


class InviteCodeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    scenario_id: UUID
    code: str
    is_active: bool
    usage_count: int
    max_usage: int | None
    created_at: datetime


class InviteRedeemRequest(BaseModel):
    """Posted by the LIFF page after the friend opened an invite link."""

    line_user_id: str = Field(..., min_length=1, max_length=64)
    display_name: str | None = Field(None, max_length=256)


class InviteRedeemResponse(BaseModel):
    enrollment_id: UUID
    friend_id: UUID
    scenario_id: UUID
    status: str


@dataclass(frozen=True)
class InviteResolution:
    scenario_id: UUID
    account_id: UUID


@dataclass(frozen=True)
class EnrollmentRequest:
    """What a successful redemption asks the enrollment manager to do."""

    friend_id: UUID
    scenario_id: UUID
    source: EnrollmentSource
    invite_code: str | None = None
