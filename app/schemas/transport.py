"""
Normalized transport contract between the delivery engine and messaging
platforms. Adapters translate to and from the platform SDK types.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class InboundEventType(str, Enum):
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"


class InboundEvent(BaseModel):
    """Contact lifecycle event parsed from a platform webhook."""

    event_type: InboundEventType
    external_user_id: str
    timestamp: Optional[datetime] = None
    # LINE passes the friend-add URL ?state= back on follow when available
    referral: Optional[str] = None


class OutboundPush(BaseModel):
    recipient: str
    messages: list[dict[str, Any]] = Field(default_factory=list)
    retry_key: Optional[str] = None


class SendResult(BaseModel):
    """Outcome of one push. retryable is only meaningful when success is False."""

    success: bool
    retryable: bool = False
    error: Optional[str] = None
    status_code: Optional[int] = None
    request_id: Optional[str] = None


class ContactProfile(BaseModel):
    external_user_id: str
    display_name: Optional[str] = None
    picture_url: Optional[str] = None
