"""
EnrollmentEvent model: immutable log of enrollment status changes.

Insert only. Consumed by analytics (friend-add counters, scenario funnels)
and shown to operators as the per-friend history.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Column, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from app.db import Base, JSONType
from app.models.mixins import TimestampMixin


class EnrollmentEvent(Base, TimestampMixin):
    __tablename__ = "enrollment_events"

    __table_args__ = (
        Index(
            "ix_enrollment_events_scenario_created",
            "scenario_id",
            "created_at",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    friend_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    scenario_id = Column(UUID(as_uuid=True), nullable=False)
    event_type = Column(String(32), nullable=False)
    reason = Column(String(32), nullable=True)
    source = Column(String(32), nullable=True)
    detail = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSONType, nullable=True, default=dict)
