"""Friend model: a LINE user who added an account."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import SoftDeleteMixin, TimestampMixin


class Friend(Base, TimestampMixin, SoftDeleteMixin):
    """Canonical contact identity per account.

    short_uid is stored upper-case so lookups are case-insensitive.
    """

    __tablename__ = "friends"

    __table_args__ = (
        UniqueConstraint(
            "account_id", "line_user_id", name="uq_friends_account_line_user"
        ),
        UniqueConstraint("account_id", "short_uid", name="uq_friends_account_short_uid"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_user_id = Column(String(64), nullable=False)
    display_name = Column(String(256), nullable=True)
    picture_url = Column(String(1024), nullable=True)
    short_uid = Column(String(16), nullable=False)
    is_following = Column(Boolean, nullable=False, default=True)
    followed_at = Column(DateTime(timezone=True), nullable=True)
    unfollowed_at = Column(DateTime(timezone=True), nullable=True)

    account = relationship("Account", backref="friends")
    enrollments = relationship("Enrollment", back_populates="friend")
