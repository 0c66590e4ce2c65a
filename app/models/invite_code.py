"""Invite codes redeemable into a scenario, plus click log."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import TimestampMixin, utcnow


class InviteCode(Base, TimestampMixin):
    """usage_count is only ever changed through a guarded UPDATE (see InviteService.redeem)."""

    __tablename__ = "invite_codes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    scenario_id = Column(
        UUID(as_uuid=True),
        ForeignKey("scenarios.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code = Column(String(32), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    usage_count = Column(Integer, nullable=False, default=0)
    max_usage = Column(Integer, nullable=True)

    scenario = relationship("Scenario", backref="invite_codes")


class InviteClick(Base):
    """One row per visit of the public invite link."""

    __tablename__ = "invite_clicks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invite_code_id = Column(
        UUID(as_uuid=True),
        ForeignKey("invite_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ip = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    referer = Column(String(1024), nullable=True)
    created_at = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
