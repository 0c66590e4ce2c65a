"""Pydantic schemas for scenarios, steps and step messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.constants.enrollment import MAX_MESSAGES_PER_STEP, MessageType


class ScenarioBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    description: str | None = None
    is_active: bool = True
    prevent_auto_exit: bool = False
    prevent_re_registration: bool = False


class ScenarioCreate(ScenarioBase):
    pass


class ScenarioUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=256)
    description: str | None = None
    is_active: bool | None = None
    prevent_auto_exit: bool | None = None
    prevent_re_registration: bool | None = None


class ScenarioRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    name: str
    description: str | None
    is_active: bool
    prevent_auto_exit: bool
    prevent_re_registration: bool
    created_at: datetime
    updated_at: datetime


class StepMessageIn(BaseModel):
    """One message of a step. Required fields depend on message_type."""

    message_type: MessageType
    content: str | None = None
    media_url: str | None = Field(None, max_length=1024)
    flex_content: dict[str, Any] | None = None
    alt_text: str | None = Field(None, max_length=400)

    @model_validator(mode="after")
    def check_payload(self) -> "StepMessageIn":
        if self.message_type == MessageType.TEXT and not self.content:
            raise ValueError("text messages require content")
        if self.message_type == MessageType.IMAGE:
            if not self.media_url or not self.media_url.startswith("https://"):
                raise ValueError("image messages require an https media_url")
        if self.message_type == MessageType.FLEX and not self.flex_content:
            raise ValueError("flex messages require flex_content")
        return self


class StepMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    message_order: int
    message_type: str
    content: str | None
    media_url: str | None
    flex_content: dict[str, Any] | None
    alt_text: str | None


class StepCreate(BaseModel):
    """step_order defaults to the next free order when omitted."""

    step_order: int | None = Field(None, ge=0)
    name: str | None = Field(None, max_length=256)
    delay_seconds: int = Field(0, ge=0)
    transition_scenario_id: UUID | None = None
    messages: list[StepMessageIn] = Field(
        default_factory=list, max_length=MAX_MESSAGES_PER_STEP
    )


class StepUpdate(BaseModel):
    name: str | None = Field(None, max_length=256)
    delay_seconds: int | None = Field(None, ge=0)
    transition_scenario_id: UUID | None = None
    messages: list[StepMessageIn] | None = Field(
        None, max_length=MAX_MESSAGES_PER_STEP
    )


class StepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    scenario_id: UUID
    step_order: int
    name: str | None
    delay_seconds: int
    transition_scenario_id: UUID | None
    messages: list[StepMessageRead] = Field(default_factory=list)


class ScenarioDetail(ScenarioRead):
    steps: list[StepRead] = Field(default_factory=list)


class ScenarioStats(BaseModel):
    """Enrollment counts for a scenario, by status and by source."""

    scenario_id: UUID
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_source: dict[str, int] = Field(default_factory=dict)
    by_invite_code: dict[str, int] = Field(default_factory=dict)
    attempts_by_outcome: dict[str, int] = Field(default_factory=dict)


class TransitionApplyRequest(BaseModel):
    to_scenario_id: UUID


class TransitionApplyResult(BaseModel):
    moved: int
    skipped: int
