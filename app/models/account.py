"""Account model: one LINE official account owned by an operator."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import SoftDeleteMixin, TimestampMixin


class Account(Base, TimestampMixin, SoftDeleteMixin):
    """Owner of friends, scenarios and invite codes.

    Channel credentials (access token + channel secret) live encrypted in the
    linked Credential; an account without one cannot send.
    """

    __tablename__ = "accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(256), nullable=False)
    line_bot_id = Column(String(64), nullable=True)  # basic id, e.g. @abc1234
    credential_id = Column(
        UUID(as_uuid=True),
        ForeignKey("credentials.id", ondelete="SET NULL"),
        nullable=True,
    )

    credential = relationship("Credential", backref="accounts")
