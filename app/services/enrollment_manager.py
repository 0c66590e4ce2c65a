"""
Enrollment manager: the per-(friend, scenario) state machine.

    none -> active -> {exited | completed | blocked}

Terminal rows are never reactivated; re-entering a scenario creates a new
row. Every status change goes through a guarded UPDATE on status='active'
so concurrent exits, completions and blocks cannot overwrite each other,
and the partial unique index on active (friend_id, scenario_id) makes
concurrent enrolls converge on one row.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.enrollment import (
    AttemptOutcome,
    EnrollmentEventType,
    EnrollmentSource,
    EnrollmentStatus,
    ExitReason,
)
from app.exceptions import (
    DuplicateEnrollment,
    EnrollmentNotFound,
    FriendNotFound,
    ReRegistrationNotAllowed,
    ScenarioInactive,
    ScenarioNotFound,
    StepDeliveryError,
)
from app.models.enrollment import DeliveryAttempt, Enrollment
from app.models.friend import Friend
from app.models.mixins import utcnow
from app.models.scenario import Scenario
from app.services.delivery_scheduler import DeliveryScheduler
from app.services.enrollment_event_service import EnrollmentEventService
from app.services.friend_service import FriendService
from app.services.scenario_service import ScenarioService

logger = logging.getLogger(__name__)

# Sources that restart an enrollment that is already active
RESETTING_SOURCES = frozenset({EnrollmentSource.MANUAL_REASSIGN, EnrollmentSource.RESTORE})


class EnrollmentManager:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.friends = FriendService(db)
        self.scenarios = ScenarioService(db)
        self.scheduler = DeliveryScheduler(db)
        self.events = EnrollmentEventService(db)

    # Lookups

    def get_enrollment(self, enrollment_id: UUID) -> Optional[Enrollment]:
        return self.db.query(Enrollment).filter(Enrollment.id == enrollment_id).first()

    def require_enrollment(self, enrollment_id: UUID) -> Enrollment:
        enrollment = self.get_enrollment(enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFound(f"Enrollment {enrollment_id} not found")
        return enrollment

    def get_active_enrollment(
        self, friend_id: UUID, scenario_id: UUID
    ) -> Optional[Enrollment]:
        return (
            self.db.query(Enrollment)
            .filter(
                Enrollment.friend_id == friend_id,
                Enrollment.scenario_id == scenario_id,
                Enrollment.status == EnrollmentStatus.ACTIVE,
            )
            .first()
        )

    def get_active_enrollments(self, friend_id: UUID) -> List[Enrollment]:
        return (
            self.db.query(Enrollment)
            .filter(
                Enrollment.friend_id == friend_id,
                Enrollment.status == EnrollmentStatus.ACTIVE,
            )
            .order_by(Enrollment.enrolled_at.asc())
            .all()
        )

    def get_friend_enrollments(self, friend_id: UUID) -> List[Enrollment]:
        return (
            self.db.query(Enrollment)
            .filter(Enrollment.friend_id == friend_id)
            .order_by(Enrollment.enrolled_at.desc())
            .all()
        )

    def _has_history(self, friend_id: UUID, scenario_id: UUID) -> bool:
        return (
            self.db.query(Enrollment.id)
            .filter(
                Enrollment.friend_id == friend_id,
                Enrollment.scenario_id == scenario_id,
            )
            .first()
            is not None
        )

    def _require_friend(self, friend_id: UUID) -> Friend:
        friend = self.friends.get_friend(friend_id)
        if friend is None:
            raise FriendNotFound(f"Friend {friend_id} not found")
        return friend

    def _require_enrollable_scenario(self, scenario_id: UUID) -> Scenario:
        scenario = self.scenarios.get_scenario(scenario_id)
        if scenario is None:
            if self.scenarios.get_deleted(scenario_id) is not None:
                raise ScenarioInactive(f"Scenario {scenario_id} has been deleted")
            raise ScenarioNotFound(f"Scenario {scenario_id} not found")
        if not scenario.is_active:
            raise ScenarioInactive(f"Scenario {scenario_id} is not active")
        return scenario

    # Status transitions

    def _close(
        self,
        enrollment: Enrollment,
        status: EnrollmentStatus,
        reason: ExitReason,
        event_type: EnrollmentEventType,
        detail: Optional[str] = None,
    ) -> bool:
        """
        Move an active enrollment to a terminal status and skip its pending
        attempts. Returns False (and changes nothing) if it was not active.
        Does not commit.
        """
        values = {
            Enrollment.status: status,
            Enrollment.exit_reason: reason,
            Enrollment.exited_at: utcnow(),
            Enrollment.updated_at: utcnow(),
        }
        if detail and status == EnrollmentStatus.BLOCKED:
            values[Enrollment.last_error] = detail
        updated = (
            self.db.query(Enrollment)
            .filter(
                Enrollment.id == enrollment.id,
                Enrollment.status == EnrollmentStatus.ACTIVE,
            )
            .update(values, synchronize_session=False)
        )
        if not updated:
            return False
        self.scheduler.skip_pending(enrollment.id)
        self.db.expire(enrollment)
        self.events.record(enrollment, event_type, reason=reason, detail=detail)
        return True

    def _supersede_others(
        self, friend_id: UUID, scenario_id: UUID, respect_protection: bool = True
    ) -> List[Enrollment]:
        exited = []
        for other in self.get_active_enrollments(friend_id):
            if other.scenario_id == scenario_id:
                continue
            if respect_protection and other.scenario.prevent_auto_exit:
                logger.info(
                    "Enrollment %s kept active: scenario %s prevents auto exit",
                    other.id,
                    other.scenario_id,
                )
                continue
            if self._close(
                other,
                EnrollmentStatus.EXITED,
                ExitReason.SUPERSEDED,
                EnrollmentEventType.EXITED,
                detail=f"superseded by scenario {scenario_id}",
            ):
                exited.append(other)
        return exited

    def _reset(self, enrollment: Enrollment, source: EnrollmentSource) -> Enrollment:
        """Restart an active enrollment from its first step."""
        self.db.query(DeliveryAttempt).filter(
            DeliveryAttempt.enrollment_id == enrollment.id
        ).delete(synchronize_session=False)
        enrollment.next_step_order = 0
        enrollment.enrolled_at = utcnow()
        enrollment.source = source
        enrollment.last_error = None
        self.events.record(enrollment, EnrollmentEventType.RESET, source=source)
        self.db.commit()
        self.db.refresh(enrollment)
        self._schedule_or_complete(enrollment)
        return enrollment

    def _schedule_or_complete(self, enrollment: Enrollment) -> None:
        """Schedule the current step, or complete the enrollment when none is left."""
        if self.scheduler.schedule_step(enrollment) is not None:
            return
        self.db.refresh(enrollment)
        if enrollment.status != EnrollmentStatus.ACTIVE:
            return
        if self.scenarios.get_step_at_or_after(
            enrollment.scenario_id, enrollment.next_step_order
        ) is None and self._close(
            enrollment,
            EnrollmentStatus.COMPLETED,
            ExitReason.COMPLETED,
            EnrollmentEventType.COMPLETED,
        ):
            self.db.commit()

    # Operations

    def enroll(
        self,
        friend_id: UUID,
        scenario_id: UUID,
        source: EnrollmentSource,
        invite_code: Optional[str] = None,
    ) -> Enrollment:
        """
        Put a friend into a scenario and schedule its first step.

        Idempotent for an active (friend, scenario) pair unless the source is
        manual_reassign or restore, which restart it from step 0.
        """
        source = EnrollmentSource(source)
        friend = self._require_friend(friend_id)
        scenario = self._require_enrollable_scenario(scenario_id)
        if scenario.account_id != friend.account_id:
            raise ScenarioNotFound(f"Scenario {scenario_id} not found for this account")

        existing = self.get_active_enrollment(friend.id, scenario.id)
        if existing is not None:
            if source in RESETTING_SOURCES:
                return self._reset(existing, source)
            return existing

        if (
            scenario.prevent_re_registration
            and source not in RESETTING_SOURCES
            and self._has_history(friend.id, scenario.id)
        ):
            raise ReRegistrationNotAllowed(
                f"Friend {friend.id} was already enrolled in scenario {scenario.id}"
            )

        try:
            enrollment = self._insert_active(friend.id, scenario.id, source, invite_code)
        except DuplicateEnrollment:
            winner = self.get_active_enrollment(friend_id, scenario_id)
            if winner is None:
                raise
            logger.info(
                "Concurrent enroll for friend %s scenario %s resolved to %s",
                friend_id,
                scenario_id,
                winner.id,
            )
            return winner

        self._supersede_others(friend.id, scenario.id)
        self.events.record(
            enrollment,
            EnrollmentEventType.ENROLLED,
            source=source,
            metadata={"invite_code": invite_code} if invite_code else None,
        )
        self.db.commit()
        self.db.refresh(enrollment)
        self._schedule_or_complete(enrollment)
        return enrollment

    def _insert_active(
        self,
        friend_id: UUID,
        scenario_id: UUID,
        source: EnrollmentSource,
        invite_code: Optional[str],
    ) -> Enrollment:
        enrollment = Enrollment(
            friend_id=friend_id,
            scenario_id=scenario_id,
            status=EnrollmentStatus.ACTIVE,
            source=source,
            invite_code=invite_code,
            enrolled_at=utcnow(),
            next_step_order=0,
        )
        self.db.add(enrollment)
        try:
            self.db.flush()
        except IntegrityError as e:
            # lost the race on the active (friend, scenario) index
            self.db.rollback()
            raise DuplicateEnrollment(
                f"Friend {friend_id} is already active in scenario {scenario_id}"
            ) from e
        return enrollment

    def enroll_line_user(
        self,
        account_id: UUID,
        line_user_id: str,
        scenario_id: UUID,
        source: EnrollmentSource = EnrollmentSource.MANUAL,
        display_name: Optional[str] = None,
    ) -> Enrollment:
        """Manual trigger by LINE user id: resolve or create the friend, then enroll."""
        friend, _ = self.friends.get_or_create_friend(
            account_id, line_user_id, display_name=display_name
        )
        return self.enroll(friend.id, scenario_id, source)

    def manual_exit(self, enrollment_id: UUID) -> Enrollment:
        """Operator removal; applies even to protected scenarios."""
        enrollment = self.require_enrollment(enrollment_id)
        if self._close(
            enrollment,
            EnrollmentStatus.EXITED,
            ExitReason.MANUAL,
            EnrollmentEventType.EXITED,
        ):
            self.db.commit()
        self.db.refresh(enrollment)
        return enrollment

    def mark_blocked(
        self, enrollment_id: UUID, reason: Optional[str] = None
    ) -> Enrollment:
        enrollment = self.require_enrollment(enrollment_id)
        if self._close(
            enrollment,
            EnrollmentStatus.BLOCKED,
            ExitReason.BLOCKED,
            EnrollmentEventType.BLOCKED,
            detail=reason,
        ):
            self.db.commit()
        self.db.refresh(enrollment)
        return enrollment

    def block_friend(self, friend_id: UUID, reason: Optional[str] = None) -> int:
        """Block every active enrollment of the friend (e.g. after unfollow)."""
        blocked = 0
        for enrollment in self.get_active_enrollments(friend_id):
            if self._close(
                enrollment,
                EnrollmentStatus.BLOCKED,
                ExitReason.BLOCKED,
                EnrollmentEventType.BLOCKED,
                detail=reason,
            ):
                blocked += 1
        self.db.commit()
        return blocked

    def _terminate(self, enrollments: List[Enrollment], detail: str) -> int:
        terminated = 0
        for enrollment in enrollments:
            if self._close(
                enrollment,
                EnrollmentStatus.EXITED,
                ExitReason.CASCADED,
                EnrollmentEventType.EXITED,
                detail=detail,
            ):
                terminated += 1
        self.db.commit()
        return terminated

    def terminate_for_friend(self, friend_id: UUID) -> int:
        return self._terminate(self.get_active_enrollments(friend_id), "friend deleted")

    def terminate_for_scenario(self, scenario_id: UUID) -> int:
        active = (
            self.db.query(Enrollment)
            .filter(
                Enrollment.scenario_id == scenario_id,
                Enrollment.status == EnrollmentStatus.ACTIVE,
            )
            .all()
        )
        return self._terminate(active, "scenario deleted")

    def advance(self, enrollment_id: UUID, delivered_step_id: UUID) -> Enrollment:
        """
        Record that a step was delivered and move on: complete, transition
        and/or schedule the next step. A no-op on non-active enrollments and
        on steps the enrollment already moved past.
        """
        enrollment = self.require_enrollment(enrollment_id)
        step = self.scenarios.get_step(delivered_step_id)
        if step is None or enrollment.status != EnrollmentStatus.ACTIVE:
            return enrollment

        updated = (
            self.db.query(Enrollment)
            .filter(
                Enrollment.id == enrollment.id,
                Enrollment.status == EnrollmentStatus.ACTIVE,
                Enrollment.next_step_order <= step.step_order,
            )
            .update(
                {
                    Enrollment.next_step_order: step.step_order + 1,
                    Enrollment.last_error: None,
                    Enrollment.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            self.db.rollback()
            self.db.refresh(enrollment)
            return enrollment
        self.db.expire(enrollment)
        self.scheduler.skip_passed(enrollment.id, step.step_order + 1)
        self.events.record(
            enrollment,
            EnrollmentEventType.ADVANCED,
            metadata={"step_order": step.step_order},
        )
        self.db.commit()

        next_step = self.scenarios.get_step_at_or_after(
            enrollment.scenario_id, step.step_order + 1
        )
        if next_step is None and self._close(
            enrollment,
            EnrollmentStatus.COMPLETED,
            ExitReason.COMPLETED,
            EnrollmentEventType.COMPLETED,
        ):
            self.db.commit()

        if step.transition_scenario_id is not None:
            self._transition(enrollment, step.transition_scenario_id)

        self.db.refresh(enrollment)
        if enrollment.status == EnrollmentStatus.ACTIVE:
            self._schedule_or_complete(enrollment)
        return enrollment

    def _transition(self, enrollment: Enrollment, target_scenario_id: UUID) -> None:
        try:
            target = self.enroll(
                enrollment.friend_id, target_scenario_id, EnrollmentSource.TRANSITION
            )
        except StepDeliveryError as e:
            logger.warning(
                "Transition from enrollment %s to scenario %s failed: %s",
                enrollment.id,
                target_scenario_id,
                e.message,
            )
            self.events.record(
                enrollment,
                EnrollmentEventType.TRANSITIONED,
                detail=f"{e.code}: {e.message}",
                metadata={"to_scenario_id": str(target_scenario_id), "ok": False},
            )
            self.db.commit()
            return
        self.events.record(
            enrollment,
            EnrollmentEventType.TRANSITIONED,
            metadata={
                "to_scenario_id": str(target_scenario_id),
                "to_enrollment_id": str(target.id),
                "ok": True,
            },
        )
        self.db.commit()

    def retry_current_step(self, enrollment_id: UUID) -> Optional[DeliveryAttempt]:
        """Give an active enrollment stuck on a failed attempt a fresh attempt."""
        enrollment = self.require_enrollment(enrollment_id)
        if enrollment.status != EnrollmentStatus.ACTIVE:
            return None
        self.db.query(DeliveryAttempt).filter(
            DeliveryAttempt.enrollment_id == enrollment.id,
            DeliveryAttempt.step_order >= enrollment.next_step_order,
            DeliveryAttempt.outcome == AttemptOutcome.FAILED,
        ).update(
            {
                DeliveryAttempt.outcome: AttemptOutcome.SKIPPED,
                DeliveryAttempt.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
        enrollment.last_error = None
        self.db.commit()
        self.db.refresh(enrollment)
        return self.scheduler.schedule_step(enrollment)

    def restore(self, friend_id: UUID, scenario_id: UUID) -> Enrollment:
        """
        Restart the friend in one scenario: every other active enrollment is
        exited as superseded, protected or not.
        """
        self._require_friend(friend_id)
        self._require_enrollable_scenario(scenario_id)
        self._supersede_others(friend_id, scenario_id, respect_protection=False)
        self.db.commit()
        return self.enroll(friend_id, scenario_id, EnrollmentSource.RESTORE)

    def apply_transition_to_completed(
        self, from_scenario_id: UUID, to_scenario_id: UUID
    ) -> Tuple[int, int]:
        """
        Enroll friends who completed `from` into `to`, skipping those with any
        enrollment in `to`. Returns (moved, skipped).
        """
        source_scenario = self.scenarios.require_scenario(from_scenario_id)
        target = self._require_enrollable_scenario(to_scenario_id)
        if target.account_id != source_scenario.account_id:
            raise ScenarioNotFound(f"Scenario {to_scenario_id} not found for this account")

        completed_friend_ids = [
            row.friend_id
            for row in self.db.query(Enrollment.friend_id)
            .filter(
                Enrollment.scenario_id == from_scenario_id,
                Enrollment.status == EnrollmentStatus.COMPLETED,
            )
            .distinct()
            .all()
        ]
        moved = skipped = 0
        for friend_id in completed_friend_ids:
            if self._has_history(friend_id, to_scenario_id):
                skipped += 1
                continue
            try:
                self.enroll(friend_id, to_scenario_id, EnrollmentSource.TRANSITION)
            except StepDeliveryError as e:
                logger.warning(
                    "Bulk transition of friend %s to %s skipped: %s",
                    friend_id,
                    to_scenario_id,
                    e.message,
                )
                skipped += 1
                continue
            moved += 1
        logger.info(
            "Applied transition %s -> %s: moved=%d skipped=%d",
            from_scenario_id,
            to_scenario_id,
            moved,
            skipped,
        )
        return moved, skipped
