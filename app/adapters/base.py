"""
Message transport interface.

Transports encapsulate platform-specific logic and expose the normalized
push/webhook contract in app.schemas.transport to the delivery engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from app.schemas.transport import (
    ContactProfile,
    InboundEvent,
    OutboundPush,
    SendResult,
)


class BaseTransport(ABC):
    """Contract for message transports. New platforms implement this interface."""

    @abstractmethod
    async def send(self, push: OutboundPush) -> SendResult:
        """
        Push messages to one recipient.

        Failures come back as SendResult(success=False, retryable=...); a
        transport may raise TransportTransientFailure or
        TransportPermanentFailure instead. Raise ConfigurationMissing when the
        platform rejects the credentials.
        """
        ...

    @abstractmethod
    def parse_webhook(self, body: str, signature: Optional[str]) -> list[InboundEvent]:
        """Verify and parse a webhook body. Raise InvalidWebhookSignature if verification fails."""
        ...

    async def get_profile(self, external_user_id: str) -> Optional[ContactProfile]:
        """Fetch the contact's public profile. None when unsupported or unavailable."""
        return None
