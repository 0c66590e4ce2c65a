"""
Command to handle LINE webhook deliveries for one account.

Verifies X-Line-Signature with the account's channel secret, then applies
follow/unfollow events to the friend registry and enrollments.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.adapters.base import BaseTransport
from app.commands.base_line import BaseLineCommand
from app.exceptions import ConfigurationMissing, InvalidWebhookSignature
from app.schemas.transport import InboundEvent, InboundEventType
from app.services.delivery_executor import TransportFactory
from app.services.enrollment_manager import EnrollmentManager
from app.services.friend_service import FriendService

UNFOLLOW_REASON = "unfollowed"


class LineWebhookCommand(BaseLineCommand):
    def __init__(
        self, db: Session, transport_factory: TransportFactory | None = None
    ) -> None:
        super().__init__(db, transport_factory)
        self.friend_service = FriendService(db)
        self.enrollment_manager = EnrollmentManager(db)
        self.logger = logging.getLogger(__name__)

    async def execute(
        self, account_id: UUID, body: str, signature: str | None
    ) -> dict[str, str]:
        """
        Raises:
            HTTPException: 404 unknown account, 503 account without LINE
                credentials, 403 on invalid signature.
        """
        account = self.account_service.get_account(account_id)
        if account is None:
            raise HTTPException(status_code=404, detail="Account not found")
        try:
            adapter = self.get_line_adapter(account)
        except ConfigurationMissing as e:
            raise HTTPException(status_code=503, detail=e.message) from e
        try:
            events = adapter.parse_webhook(body, signature)
        except InvalidWebhookSignature as e:
            raise HTTPException(status_code=403, detail="Invalid webhook signature") from e

        for event in events:
            if event.event_type == InboundEventType.FOLLOW:
                await self._on_follow(account_id, adapter, event)
            elif event.event_type == InboundEventType.UNFOLLOW:
                self._on_unfollow(account_id, event)
        return {"status": "ok"}

    async def _on_follow(
        self, account_id: UUID, adapter: BaseTransport, event: InboundEvent
    ) -> None:
        profile = await adapter.get_profile(event.external_user_id)
        friend, created = self.friend_service.get_or_create_friend(
            account_id,
            event.external_user_id,
            display_name=profile.display_name if profile else None,
            picture_url=profile.picture_url if profile else None,
        )
        if not created:
            self.friend_service.mark_followed(friend)
        self.logger.info(
            "LINE follow account_id=%s friend_id=%s created=%s",
            account_id,
            friend.id,
            created,
        )

    def _on_unfollow(self, account_id: UUID, event: InboundEvent) -> None:
        friend = self.friend_service.get_friend_by_line_user_id(
            account_id, event.external_user_id
        )
        if friend is None:
            return
        self.friend_service.mark_unfollowed(friend)
        blocked = self.enrollment_manager.block_friend(friend.id, reason=UNFOLLOW_REASON)
        self.logger.info(
            "LINE unfollow account_id=%s friend_id=%s blocked_enrollments=%d",
            account_id,
            friend.id,
            blocked,
        )
