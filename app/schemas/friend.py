"""Pydantic schemas for friends."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class FriendRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    line_user_id: str
    display_name: str | None
    picture_url: str | None
    short_uid: str
    is_following: bool
    followed_at: datetime | None
    unfollowed_at: datetime | None
    created_at: datetime


class FriendScenarioAssign(BaseModel):
    """Operator manual trigger: put a friend into a scenario."""

    scenario_id: UUID
    reset: bool = Field(
        False,
        description="Restart from step 0 if the friend is already active in the scenario",
    )


class FriendRestore(BaseModel):
    scenario_id: UUID
