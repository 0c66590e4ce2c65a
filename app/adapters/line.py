"""
LINE Messaging API transport.

Uses line-bot-sdk v3: AsyncMessagingApi for push/profile and WebhookParser
for X-Line-Signature verification.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import aiohttp
from linebot.v3 import WebhookParser
from linebot.v3.exceptions import InvalidSignatureError
from linebot.v3.messaging import (
    ApiException,
    AsyncApiClient,
    AsyncMessagingApi,
    Configuration,
    PushMessageRequest,
)
from linebot.v3.webhooks import FollowEvent, UnfollowEvent
from pydantic import ValidationError

from app.adapters.base import BaseTransport
from app.exceptions import ConfigurationMissing, InvalidWebhookSignature
from app.schemas.transport import (
    ContactProfile,
    InboundEvent,
    InboundEventType,
    OutboundPush,
    SendResult,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-line-request-id"
# Statuses worth retrying; everything else in 4xx is final
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
AUTH_FAILURE_STATUSES = frozenset({401, 403})


def classify_status(status: Optional[int]) -> bool:
    """True if a failed push with this HTTP status should be retried."""
    if status is None:
        return True
    return status in RETRYABLE_STATUSES or status >= 500


class LineAdapter(BaseTransport):
    """LINE adapter: push messages and parse follow/unfollow webhooks."""

    SIGNATURE_HEADER = "X-Line-Signature"

    def __init__(
        self,
        channel_access_token: str,
        channel_secret: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._channel_access_token = channel_access_token
        self._channel_secret = channel_secret
        self._timeout_seconds = timeout_seconds
        self._configuration = Configuration(access_token=channel_access_token)

    def parse_webhook(self, body: str, signature: Optional[str]) -> list[InboundEvent]:
        """Verify the signature, then keep follow/unfollow events from users."""
        parser = WebhookParser(self._channel_secret)
        try:
            events = parser.parse(body, signature or "")
        except InvalidSignatureError as e:
            raise InvalidWebhookSignature() from e

        parsed: list[InboundEvent] = []
        for event in events:
            if isinstance(event, FollowEvent):
                event_type = InboundEventType.FOLLOW
            elif isinstance(event, UnfollowEvent):
                event_type = InboundEventType.UNFOLLOW
            else:
                continue
            user_id = getattr(event.source, "user_id", None)
            if not user_id:
                continue
            timestamp = (
                datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc)
                if event.timestamp
                else None
            )
            parsed.append(
                InboundEvent(
                    event_type=event_type,
                    external_user_id=user_id,
                    timestamp=timestamp,
                )
            )
        return parsed

    async def send(self, push: OutboundPush) -> SendResult:
        """Push up to five messages. The retry key makes LINE drop duplicate pushes."""
        try:
            request = PushMessageRequest.from_dict(
                {"to": push.recipient, "messages": push.messages}
            )
        except (ValidationError, ValueError) as e:
            return SendResult(
                success=False, retryable=False, error=f"Invalid message payload: {e}"
            )

        try:
            async with AsyncApiClient(self._configuration) as api_client:
                api = AsyncMessagingApi(api_client)
                response = await api.push_message_with_http_info(
                    request,
                    x_line_retry_key=push.retry_key,
                    _request_timeout=self._timeout_seconds,
                )
        except ApiException as e:
            return self._result_from_api_error(e, push)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.warning("LINE push to %s failed: %s", push.recipient, e)
            return SendResult(success=False, retryable=True, error=f"Network error: {e}")

        headers = response.headers or {}
        return SendResult(
            success=True,
            status_code=response.status_code,
            request_id=headers.get(REQUEST_ID_HEADER),
        )

    def _result_from_api_error(self, e: ApiException, push: OutboundPush) -> SendResult:
        status = e.status
        request_id = (e.headers or {}).get(REQUEST_ID_HEADER)
        if status in AUTH_FAILURE_STATUSES:
            raise ConfigurationMissing(
                f"LINE rejected the channel access token ({status})"
            ) from e
        if status == 409 and push.retry_key:
            # Same retry key already accepted: the earlier push went through
            return SendResult(success=True, status_code=status, request_id=request_id)
        retryable = classify_status(status)
        logger.warning(
            "LINE push to %s failed status=%s retryable=%s", push.recipient, status, retryable
        )
        return SendResult(
            success=False,
            retryable=retryable,
            error=f"LINE API error {status}: {e.body or e.reason}",
            status_code=status,
            request_id=request_id,
        )

    async def get_profile(self, external_user_id: str) -> Optional[ContactProfile]:
        try:
            async with AsyncApiClient(self._configuration) as api_client:
                api = AsyncMessagingApi(api_client)
                profile = await api.get_profile(
                    external_user_id, _request_timeout=self._timeout_seconds
                )
        except (ApiException, asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.info("LINE profile for %s unavailable: %s", external_user_id, e)
            return None
        return ContactProfile(
            external_user_id=external_user_id,
            display_name=profile.display_name,
            picture_url=profile.picture_url,
        )
