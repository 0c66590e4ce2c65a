"""
Delivery scheduler: keeps one pending attempt per active enrollment.

Only the attempt for the enrollment's current step is ever materialized;
the attempt for step N+1 is created by EnrollmentManager.advance after step
N was sent, which keeps catch-up delivery strictly ordered.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from app.constants.enrollment import AttemptOutcome, EnrollmentStatus
from app.models.enrollment import DeliveryAttempt, Enrollment
from app.models.mixins import as_utc, utcnow
from app.services.scenario_service import ScenarioService

logger = logging.getLogger(__name__)


class DeliveryScheduler:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.scenarios = ScenarioService(db)

    def get_pending_attempt(self, enrollment_id: UUID) -> Optional[DeliveryAttempt]:
        return (
            self.db.query(DeliveryAttempt)
            .filter(
                DeliveryAttempt.enrollment_id == enrollment_id,
                DeliveryAttempt.outcome == AttemptOutcome.PENDING,
            )
            .order_by(DeliveryAttempt.step_order.asc())
            .first()
        )

    def get_attempts_query(self, enrollment_id: UUID) -> Query[DeliveryAttempt]:
        return (
            self.db.query(DeliveryAttempt)
            .filter(DeliveryAttempt.enrollment_id == enrollment_id)
            .order_by(DeliveryAttempt.step_order.asc(), DeliveryAttempt.created_at.asc())
        )

    def _get_live_attempt(
        self, enrollment_id: UUID, step_id: UUID
    ) -> Optional[DeliveryAttempt]:
        return (
            self.db.query(DeliveryAttempt)
            .filter(
                DeliveryAttempt.enrollment_id == enrollment_id,
                DeliveryAttempt.step_id == step_id,
                DeliveryAttempt.outcome != AttemptOutcome.SKIPPED,
            )
            .first()
        )

    def schedule_step(self, enrollment: Enrollment) -> Optional[DeliveryAttempt]:
        """
        Ensure the attempt for the enrollment's current step exists.

        Returns the pending or existing attempt, or None when the enrollment is
        not active or has no step left. Commits its own insert, so callers
        must commit their pending work first.
        """
        if enrollment.status != EnrollmentStatus.ACTIVE:
            return None
        pending = self.get_pending_attempt(enrollment.id)
        if pending is not None:
            if pending.step_order >= enrollment.next_step_order:
                return pending
            # left over from a step the enrollment already moved past
            self.skip_passed(enrollment.id, enrollment.next_step_order)
            self.db.commit()

        step = self.scenarios.get_step_at_or_after(
            enrollment.scenario_id, enrollment.next_step_order
        )
        if step is None:
            return None
        existing = self._get_live_attempt(enrollment.id, step.id)
        if existing is not None:
            return existing

        enrolled_at = as_utc(enrollment.enrolled_at)
        attempt = DeliveryAttempt(
            enrollment_id=enrollment.id,
            step_id=step.id,
            step_order=step.step_order,
            due_at=enrolled_at + timedelta(seconds=step.delay_seconds),
            outcome=AttemptOutcome.PENDING,
            retry_count=0,
        )
        self.db.add(attempt)
        try:
            self.db.commit()
        except IntegrityError:
            # a concurrent scheduler inserted the same (enrollment, step)
            self.db.rollback()
            return self._get_live_attempt(enrollment.id, step.id)
        self.db.refresh(attempt)
        logger.debug(
            "Scheduled step %s for enrollment %s due %s",
            step.step_order,
            enrollment.id,
            attempt.due_at,
        )
        return attempt

    def schedule_missing(self, limit: int = 500) -> int:
        """Safety net: schedule the current step of active enrollments without a pending attempt."""
        pending_exists = (
            self.db.query(DeliveryAttempt.id)
            .filter(
                DeliveryAttempt.enrollment_id == Enrollment.id,
                DeliveryAttempt.outcome == AttemptOutcome.PENDING,
            )
            .exists()
        )
        candidates = (
            self.db.query(Enrollment)
            .filter(Enrollment.status == EnrollmentStatus.ACTIVE, ~pending_exists)
            .order_by(Enrollment.enrolled_at.asc())
            .limit(limit)
            .all()
        )
        scheduled = 0
        for enrollment in candidates:
            step = self.scenarios.get_step_at_or_after(
                enrollment.scenario_id, enrollment.next_step_order
            )
            if step is None or self._get_live_attempt(enrollment.id, step.id):
                continue
            attempt = self.schedule_step(enrollment)
            if attempt is not None and attempt.outcome == AttemptOutcome.PENDING:
                scheduled += 1
        if scheduled:
            logger.info("Scheduled %d missing attempts", scheduled)
        return scheduled

    def due_attempts(
        self, now: Optional[datetime] = None, limit: int = 100
    ) -> List[DeliveryAttempt]:
        """
        Pending, due, unleased attempts of active enrollments, oldest first.
        At most one attempt per enrollment (the lowest step_order).
        """
        now = now or utcnow()
        rows = (
            self.db.query(DeliveryAttempt)
            .join(Enrollment, DeliveryAttempt.enrollment_id == Enrollment.id)
            .filter(
                DeliveryAttempt.outcome == AttemptOutcome.PENDING,
                DeliveryAttempt.due_at <= now,
                or_(
                    DeliveryAttempt.next_retry_at.is_(None),
                    DeliveryAttempt.next_retry_at <= now,
                ),
                or_(
                    DeliveryAttempt.lease_expires_at.is_(None),
                    DeliveryAttempt.lease_expires_at < now,
                ),
                Enrollment.status == EnrollmentStatus.ACTIVE,
            )
            .order_by(DeliveryAttempt.due_at.asc(), DeliveryAttempt.step_order.asc())
            .limit(limit)
            .all()
        )
        picked: dict[UUID, DeliveryAttempt] = {}
        for attempt in rows:
            current = picked.get(attempt.enrollment_id)
            if current is None or attempt.step_order < current.step_order:
                picked[attempt.enrollment_id] = attempt
        return sorted(picked.values(), key=lambda a: (as_utc(a.due_at), a.step_order))

    def skip_passed(self, enrollment_id: UUID, next_step_order: int) -> int:
        """Skip pending attempts for steps before next_step_order. Does not commit."""
        return (
            self.db.query(DeliveryAttempt)
            .filter(
                DeliveryAttempt.enrollment_id == enrollment_id,
                DeliveryAttempt.outcome == AttemptOutcome.PENDING,
                DeliveryAttempt.step_order < next_step_order,
            )
            .update(
                {
                    DeliveryAttempt.outcome: AttemptOutcome.SKIPPED,
                    DeliveryAttempt.lease_expires_at: None,
                    DeliveryAttempt.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )

    def skip_pending(self, enrollment_id: UUID) -> int:
        """Mark the enrollment's pending attempts skipped. Does not commit."""
        return (
            self.db.query(DeliveryAttempt)
            .filter(
                DeliveryAttempt.enrollment_id == enrollment_id,
                DeliveryAttempt.outcome == AttemptOutcome.PENDING,
            )
            .update(
                {
                    DeliveryAttempt.outcome: AttemptOutcome.SKIPPED,
                    DeliveryAttempt.lease_expires_at: None,
                    DeliveryAttempt.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )

    def cancel_stale(self, limit: int = 500) -> int:
        """Skip pending attempts whose enrollment is no longer active."""
        stale_ids = [
            row.id
            for row in self.db.query(DeliveryAttempt.id)
            .join(Enrollment, DeliveryAttempt.enrollment_id == Enrollment.id)
            .filter(
                DeliveryAttempt.outcome == AttemptOutcome.PENDING,
                Enrollment.status != EnrollmentStatus.ACTIVE,
            )
            .limit(limit)
            .all()
        ]
        if not stale_ids:
            return 0
        count = (
            self.db.query(DeliveryAttempt)
            .filter(
                and_(
                    DeliveryAttempt.id.in_(stale_ids),
                    DeliveryAttempt.outcome == AttemptOutcome.PENDING,
                )
            )
            .update(
                {
                    DeliveryAttempt.outcome: AttemptOutcome.SKIPPED,
                    DeliveryAttempt.lease_expires_at: None,
                    DeliveryAttempt.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        logger.info("Skipped %d stale attempts", count)
        return count
