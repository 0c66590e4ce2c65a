"""Step scenario definition: scenario, ordered steps, per-step messages."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db import Base, JSONType
from app.models.mixins import SoftDeleteMixin, TimestampMixin


class Scenario(Base, TimestampMixin, SoftDeleteMixin):
    """Named drip sequence owned by an account."""

    __tablename__ = "scenarios"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # Not exited automatically when the friend enters another scenario
    prevent_auto_exit = Column(Boolean, nullable=False, default=False)
    # A friend with any past enrollment here cannot be enrolled again
    prevent_re_registration = Column(Boolean, nullable=False, default=False)

    account = relationship("Account", backref="scenarios")
    steps = relationship(
        "ScenarioStep",
        back_populates="scenario",
        cascade="all, delete-orphan",
        order_by="ScenarioStep.step_order",
        foreign_keys="ScenarioStep.scenario_id",
    )


class ScenarioStep(Base, TimestampMixin):
    """One timed step; due at enrolled_at + delay_seconds."""

    __tablename__ = "scenario_steps"

    __table_args__ = (
        UniqueConstraint("scenario_id", "step_order", name="uq_scenario_steps_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    scenario_id = Column(
        UUID(as_uuid=True),
        ForeignKey("scenarios.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order = Column(Integer, nullable=False)
    name = Column(String(256), nullable=True)
    delay_seconds = Column(Integer, nullable=False, default=0)
    transition_scenario_id = Column(
        UUID(as_uuid=True),
        ForeignKey("scenarios.id", ondelete="SET NULL"),
        nullable=True,
    )

    scenario = relationship(
        "Scenario", back_populates="steps", foreign_keys=[scenario_id]
    )
    transition_scenario = relationship(
        "Scenario", foreign_keys=[transition_scenario_id]
    )
    messages = relationship(
        "StepMessage",
        back_populates="step",
        cascade="all, delete-orphan",
        order_by="StepMessage.message_order",
    )


class StepMessage(Base):
    """A message bubble sent as part of a step (text, image or flex)."""

    __tablename__ = "step_messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    step_id = Column(
        UUID(as_uuid=True),
        ForeignKey("scenario_steps.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    message_order = Column(Integer, nullable=False, default=0)
    message_type = Column(String(16), nullable=False)  # 'text' | 'image' | 'flex'
    content = Column(Text, nullable=True)
    media_url = Column(String(1024), nullable=True)
    flex_content = Column(JSONType, nullable=True)
    alt_text = Column(String(400), nullable=True)

    step = relationship("ScenarioStep", back_populates="messages")
