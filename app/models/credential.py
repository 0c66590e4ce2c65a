"""Credential model for storing encrypted LINE channel credentials."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, LargeBinary, String
from sqlalchemy.dialects.postgresql import UUID

from app.db import Base
from app.models.mixins import SoftDeleteMixin, TimestampMixin


class Credential(Base, TimestampMixin, SoftDeleteMixin):
    """Credential model for storing encrypted credentials.

    Used by accounts to reach the LINE Messaging API and to verify webhook
    signatures. Secrets are encrypted using Fernet before storage.
    """

    __tablename__ = "credentials"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    type = Column(String(50), nullable=False, index=True)
    encrypted_data = Column(LargeBinary, nullable=False)
    created_by_id = Column(UUID(as_uuid=True), nullable=True)
