"""Enrollment and delivery attempt models (the mutable core of step delivery)."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import TimestampMixin, utcnow


class Enrollment(Base, TimestampMixin):
    """A friend's membership in one scenario's delivery timeline.

    At most one row per (friend_id, scenario_id) may have status 'active';
    the partial unique index is what makes concurrent enrolls safe.
    """

    __tablename__ = "enrollments"

    __table_args__ = (
        Index(
            "uq_enrollments_active_friend_scenario",
            "friend_id",
            "scenario_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_enrollments_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    friend_id = Column(
        UUID(as_uuid=True),
        ForeignKey("friends.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scenario_id = Column(
        UUID(as_uuid=True),
        ForeignKey("scenarios.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(String(16), nullable=False, default="active")
    source = Column(String(32), nullable=False)
    invite_code = Column(String(32), nullable=True)
    enrolled_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    next_step_order = Column(Integer, nullable=False, default=0)
    exited_at = Column(DateTime(timezone=True), nullable=True)
    exit_reason = Column(String(16), nullable=True)
    last_error = Column(Text, nullable=True)

    friend = relationship("Friend", back_populates="enrollments")
    scenario = relationship("Scenario", backref="enrollments")
    attempts = relationship(
        "DeliveryAttempt",
        back_populates="enrollment",
        cascade="all, delete-orphan",
        order_by="DeliveryAttempt.step_order",
    )


class DeliveryAttempt(Base, TimestampMixin):
    """One send of one step for one enrollment.

    At most one non-skipped attempt per (enrollment_id, step_id).
    lease_expires_at marks an attempt claimed by an executor.
    """

    __tablename__ = "delivery_attempts"

    __table_args__ = (
        Index(
            "uq_delivery_attempts_enrollment_step",
            "enrollment_id",
            "step_id",
            unique=True,
            postgresql_where=text("outcome != 'skipped'"),
            sqlite_where=text("outcome != 'skipped'"),
        ),
        Index("ix_delivery_attempts_outcome_due", "outcome", "due_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id = Column(
        UUID(as_uuid=True),
        ForeignKey("scenario_steps.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_order = Column(Integer, nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    outcome = Column(String(16), nullable=False, default="pending")
    retry_count = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    enrollment = relationship("Enrollment", back_populates="attempts")
    step = relationship("ScenarioStep")
