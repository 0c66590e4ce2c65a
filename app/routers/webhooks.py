"""
Webhook routes for inbound LINE platform events.

LINE POSTs signed event batches here, one URL per account. Signature
verification needs the exact raw body, so it is read before any parsing.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from app.commands.webhooks.line_command import LineWebhookCommand
from app.db import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/line/{account_id}")
async def line_webhook(
    account_id: UUID,
    request: Request,
    x_line_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    """Apply follow/unfollow events for the account; 403 on a bad signature."""
    body = (await request.body()).decode("utf-8")
    command = LineWebhookCommand(db)
    return await command.execute(account_id, body, x_line_signature)
