"""
Delivery executor: sends one due attempt and records its outcome.

Each attempt runs in its own session so attempts of different enrollments
can be in flight concurrently. No transaction is held open across the
network call: the claim commits first and the outcome is written after.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Callable, Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session, sessionmaker

from app.adapters.base import BaseTransport
from app.adapters.line import LineAdapter
from app.config import Settings, get_settings
from app.constants.enrollment import AttemptOutcome, EnrollmentStatus
from app.core.templating import RenderContext, render
from app.exceptions import (
    ConfigurationMissing,
    TransportError,
    TransportPermanentFailure,
)
from app.infra.logging_config import get_logger
from app.models.account import Account
from app.models.enrollment import DeliveryAttempt, Enrollment
from app.models.friend import Friend
from app.models.mixins import utcnow
from app.schemas.credential import LineMessagingApiModel
from app.schemas.transport import OutboundPush, SendResult
from app.services.account_service import AccountService
from app.services.enrollment_manager import EnrollmentManager
from app.utils.rate_limit import check_push_rate_limit, get_redis_client

logger = get_logger("delivery")

TransportFactory = Callable[[Account, LineMessagingApiModel], BaseTransport]
ContextFactory = Callable[[DeliveryAttempt, Friend], RenderContext]


def line_transport_factory(
    account: Account, channel: LineMessagingApiModel
) -> BaseTransport:
    return LineAdapter(
        channel_access_token=channel.channel_access_token,
        channel_secret=channel.channel_secret,
        timeout_seconds=get_settings().line_api_timeout_seconds,
    )


def friend_render_context(attempt: DeliveryAttempt, friend: Friend) -> RenderContext:
    """
    Step pushes carry friend tokens only. Product tokens stay unreplaced unless
    a context_factory supplies a ProductContext.
    """
    return RenderContext(short_uid=friend.short_uid, display_name=friend.display_name)


def retry_delay_seconds(retry_count: int, base: int, cap: int) -> int:
    """Exponential backoff: base * 2**(retry_count-1), capped."""
    return min(base * (2 ** max(retry_count - 1, 0)), cap)


class DeliveryExecutor:
    def __init__(
        self,
        session_factory: sessionmaker,
        transport_factory: Optional[TransportFactory] = None,
        settings: Optional[Settings] = None,
        redis_client: Optional[object] = None,
        context_factory: Optional[ContextFactory] = None,
    ) -> None:
        self.session_factory = session_factory
        self.transport_factory = transport_factory or line_transport_factory
        self.settings = settings or get_settings()
        self.redis_client = redis_client if redis_client is not None else get_redis_client()
        self.context_factory = context_factory or friend_render_context

    async def execute_many(
        self, attempt_ids: Iterable[UUID]
    ) -> Dict[UUID, Optional[AttemptOutcome]]:
        """
        Execute attempts concurrently, bounded by delivery_concurrency.
        An error in one attempt never aborts the others; its outcome is None.
        """
        semaphore = asyncio.Semaphore(self.settings.delivery_concurrency)
        ids = list(attempt_ids)

        async def _run(attempt_id: UUID) -> AttemptOutcome:
            async with semaphore:
                return await self.execute(attempt_id)

        results = await asyncio.gather(
            *(_run(attempt_id) for attempt_id in ids), return_exceptions=True
        )
        outcomes: Dict[UUID, Optional[AttemptOutcome]] = {}
        for attempt_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Attempt %s crashed: %r",
                    attempt_id,
                    result,
                    exc_info=result,
                    extra={"attempt_id": str(attempt_id)},
                )
                outcomes[attempt_id] = None
            else:
                outcomes[attempt_id] = result
        return outcomes

    async def execute(self, attempt_id: UUID) -> AttemptOutcome:
        db = self.session_factory()
        try:
            return await self._execute(db, attempt_id)
        except Exception as e:
            db.rollback()
            logger.exception(
                "Attempt %s crashed", attempt_id, extra={"attempt_id": str(attempt_id)}
            )
            return self._record_crash(db, attempt_id, e)
        finally:
            db.close()

    async def _execute(self, db: Session, attempt_id: UUID) -> AttemptOutcome:
        if not self._claim(db, attempt_id):
            attempt = db.get(DeliveryAttempt, attempt_id)
            return AttemptOutcome(attempt.outcome) if attempt else AttemptOutcome.SKIPPED

        attempt = db.get(DeliveryAttempt, attempt_id)
        enrollment: Enrollment = attempt.enrollment
        log_extra = {
            "attempt_id": str(attempt.id),
            "enrollment_id": str(enrollment.id),
            "scenario_id": str(enrollment.scenario_id),
        }

        if enrollment.status != EnrollmentStatus.ACTIVE:
            self._finish(db, attempt, AttemptOutcome.SKIPPED)
            logger.info("Attempt skipped: enrollment not active", extra=log_extra)
            return AttemptOutcome.SKIPPED

        friend: Friend = enrollment.friend
        if friend is None or friend.deleted_at is not None or not friend.is_following:
            return self._fail_permanently(
                db, attempt, "Friend is no longer reachable", log_extra
            )

        account = friend.account
        try:
            channel = AccountService(db).get_line_channel(account)
            transport = self.transport_factory(account, channel)
        except ConfigurationMissing as e:
            return self._fail_for_configuration(db, attempt, account, e, log_extra)

        if not check_push_rate_limit(
            str(account.id),
            self.redis_client,
            self.settings.line_push_rate_limit_per_minute,
        ):
            return self._fail_transiently(
                db, attempt, "Push rate limit exceeded for account", log_extra
            )

        messages = render(attempt.step.messages, self.context_factory(attempt, friend))
        step_id = attempt.step_id
        enrollment_id = enrollment.id

        if messages:
            push = OutboundPush(
                recipient=friend.line_user_id,
                messages=messages,
                retry_key=str(attempt.id),
            )
            # nothing may stay open in this session while the push is in flight
            db.commit()
            try:
                result = await transport.send(push)
            except ConfigurationMissing as e:
                attempt = db.get(DeliveryAttempt, attempt_id)
                return self._fail_for_configuration(db, attempt, account, e, log_extra)
            except TransportError as e:
                result = SendResult(
                    success=False,
                    retryable=not isinstance(e, TransportPermanentFailure),
                    error=f"{e.code}: {e.message}",
                    status_code=e.status,
                )
            except Exception as e:
                logger.exception("Transport raised for attempt %s", attempt_id, extra=log_extra)
                result = SendResult(success=False, retryable=True, error=repr(e))
            attempt = db.get(DeliveryAttempt, attempt_id)
            if attempt is None:
                # deleted by a manual_reassign reset while the push was in flight
                logger.info("Attempt superseded during send", extra=log_extra)
                return AttemptOutcome.SKIPPED
        else:
            logger.info("Step has no renderable messages; recording as sent", extra=log_extra)
            result = SendResult(success=True)

        if not result.success:
            if result.retryable:
                return self._fail_transiently(db, attempt, result.error, log_extra)
            return self._fail_permanently(db, attempt, result.error, log_extra)

        self._finish(db, attempt, AttemptOutcome.SENT, sent=True)
        logger.info(
            "Attempt sent request_id=%s", result.request_id, extra=log_extra
        )
        EnrollmentManager(db).advance(enrollment_id, step_id)
        return AttemptOutcome.SENT

    def _record_crash(
        self, db: Session, attempt_id: UUID, error: Exception
    ) -> AttemptOutcome:
        """Count an unexpected error as a transient failure so the retry bound applies."""
        attempt = db.get(DeliveryAttempt, attempt_id)
        if attempt is None:
            return AttemptOutcome.SKIPPED
        if attempt.outcome != AttemptOutcome.PENDING:
            return AttemptOutcome(attempt.outcome)
        return self._fail_transiently(
            db, attempt, f"executor_error: {error!r}", {"attempt_id": str(attempt_id)}
        )

    def _claim(self, db: Session, attempt_id: UUID) -> bool:
        """Lease a pending, unleased attempt. Only one executor wins."""
        now = utcnow()
        claimed = (
            db.query(DeliveryAttempt)
            .filter(
                DeliveryAttempt.id == attempt_id,
                DeliveryAttempt.outcome == AttemptOutcome.PENDING,
                or_(
                    DeliveryAttempt.lease_expires_at.is_(None),
                    DeliveryAttempt.lease_expires_at < now,
                ),
            )
            .update(
                {
                    DeliveryAttempt.lease_expires_at: now
                    + timedelta(seconds=self.settings.delivery_lease_seconds)
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return bool(claimed)

    def _finish(
        self,
        db: Session,
        attempt: DeliveryAttempt,
        outcome: AttemptOutcome,
        error: Optional[str] = None,
        sent: bool = False,
    ) -> None:
        attempt.outcome = outcome
        attempt.lease_expires_at = None
        attempt.next_retry_at = None
        if error is not None:
            attempt.last_error = error
        if sent:
            attempt.sent_at = utcnow()
        db.commit()

    def _fail_permanently(
        self, db: Session, attempt: DeliveryAttempt, error: Optional[str], log_extra: dict
    ) -> AttemptOutcome:
        error = error or "Permanent delivery failure"
        enrollment_id = attempt.enrollment_id
        self._finish(db, attempt, AttemptOutcome.FAILED, error=error)
        logger.warning("Attempt failed permanently: %s", error, extra=log_extra)
        EnrollmentManager(db).mark_blocked(enrollment_id, reason=error)
        return AttemptOutcome.FAILED

    def _fail_transiently(
        self, db: Session, attempt: DeliveryAttempt, error: Optional[str], log_extra: dict
    ) -> AttemptOutcome:
        error = error or "Transient delivery failure"
        attempt.retry_count = (attempt.retry_count or 0) + 1
        if attempt.retry_count > self.settings.delivery_max_retries:
            enrollment = attempt.enrollment
            enrollment.last_error = f"Step {attempt.step_order} failed after retries: {error}"
            self._finish(db, attempt, AttemptOutcome.FAILED, error=error)
            logger.error(
                "Attempt failed after %d tries: %s",
                attempt.retry_count,
                error,
                extra=log_extra,
            )
            return AttemptOutcome.FAILED

        delay = retry_delay_seconds(
            attempt.retry_count,
            self.settings.delivery_retry_base_seconds,
            self.settings.delivery_retry_max_seconds,
        )
        attempt.next_retry_at = utcnow() + timedelta(seconds=delay)
        attempt.lease_expires_at = None
        attempt.last_error = error
        db.commit()
        logger.warning(
            "Attempt will retry in %ss (retry %d): %s",
            delay,
            attempt.retry_count,
            error,
            extra=log_extra,
        )
        return AttemptOutcome.PENDING

    def _fail_for_configuration(
        self,
        db: Session,
        attempt: DeliveryAttempt,
        account: Account,
        error: ConfigurationMissing,
        log_extra: dict,
    ) -> AttemptOutcome:
        """Fail this and every other pending attempt of the account; enrollments stay active."""
        message = f"{error.code}: {error.message}"
        self._finish(db, attempt, AttemptOutcome.FAILED, error=message)
        failed = fail_pending_for_account(db, account.id, message)
        logger.error(
            "Account %s cannot send (%s); failed %d more pending attempts",
            account.id,
            error.message,
            failed,
            extra={**log_extra, "account_id": str(account.id)},
        )
        return AttemptOutcome.FAILED


def fail_pending_for_account(db: Session, account_id: UUID, message: str) -> int:
    enrollment_ids = [
        row.id
        for row in db.query(Enrollment.id)
        .join(Friend, Enrollment.friend_id == Friend.id)
        .filter(
            Friend.account_id == account_id,
            Enrollment.status == EnrollmentStatus.ACTIVE,
        )
        .all()
    ]
    if not enrollment_ids:
        return 0
    now = utcnow()
    failed = (
        db.query(DeliveryAttempt)
        .filter(
            DeliveryAttempt.enrollment_id.in_(enrollment_ids),
            DeliveryAttempt.outcome == AttemptOutcome.PENDING,
        )
        .update(
            {
                DeliveryAttempt.outcome: AttemptOutcome.FAILED,
                DeliveryAttempt.last_error: message,
                DeliveryAttempt.lease_expires_at: None,
                DeliveryAttempt.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.query(Enrollment).filter(Enrollment.id.in_(enrollment_ids)).update(
        {Enrollment.last_error: message, Enrollment.updated_at: now},
        synchronize_session=False,
    )
    db.commit()
    return failed
