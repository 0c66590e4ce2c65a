"""Pydantic schemas for enrollments, attempts and ticks."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class EnrollmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    friend_id: UUID
    scenario_id: UUID
    status: str
    source: str
    invite_code: str | None
    enrolled_at: datetime
    next_step_order: int
    exited_at: datetime | None
    exit_reason: str | None
    last_error: str | None


class DeliveryAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    enrollment_id: UUID
    step_id: UUID
    step_order: int
    due_at: datetime
    sent_at: datetime | None
    outcome: str
    retry_count: int
    next_retry_at: datetime | None
    last_error: str | None


class EnrollmentEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    enrollment_id: UUID
    friend_id: UUID
    scenario_id: UUID
    event_type: str
    reason: str | None
    source: str | None
    detail: str | None
    created_at: datetime


class TickSummary(BaseModel):
    """What one scheduler/executor tick did."""

    cancelled: int = 0
    scheduled: int = 0
    executed: int = 0
    outcomes: dict[str, int] = Field(default_factory=dict)
    errors: list[dict[str, Any]] = Field(default_factory=list)
