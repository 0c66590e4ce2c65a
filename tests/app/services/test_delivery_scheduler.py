"""Tests for DeliveryScheduler."""

from datetime import timedelta

from app.constants.enrollment import AttemptOutcome, EnrollmentSource, EnrollmentStatus
from app.models.enrollment import DeliveryAttempt, Enrollment
from app.models.mixins import utcnow
from app.services.delivery_scheduler import DeliveryScheduler
from app.services.enrollment_manager import EnrollmentManager


def test_schedule_step_is_idempotent(db, setup_friend, welcome_scenario):
    enrollment = EnrollmentManager(db).enroll(
        setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL
    )
    scheduler = DeliveryScheduler(db)
    first = scheduler.get_pending_attempt(enrollment.id)
    again = scheduler.schedule_step(enrollment)

    assert again.id == first.id
    assert db.query(DeliveryAttempt).filter_by(enrollment_id=enrollment.id).count() == 1


def test_due_attempts_respects_due_time(db, setup_friend, welcome_scenario):
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)
    manager.advance(enrollment.id, welcome_scenario.steps[0].id)
    scheduler = DeliveryScheduler(db)

    assert scheduler.due_attempts() == []
    later = utcnow() + timedelta(days=1, seconds=1)
    due = scheduler.due_attempts(now=later)
    assert [a.step_order for a in due] == [1]


def test_due_attempts_skips_leased_and_backing_off(db, setup_friend, welcome_scenario):
    enrollment = EnrollmentManager(db).enroll(
        setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL
    )
    scheduler = DeliveryScheduler(db)
    attempt = scheduler.get_pending_attempt(enrollment.id)

    attempt.lease_expires_at = utcnow() + timedelta(minutes=2)
    db.commit()
    assert scheduler.due_attempts() == []

    attempt.lease_expires_at = None
    attempt.next_retry_at = utcnow() + timedelta(minutes=5)
    db.commit()
    assert scheduler.due_attempts() == []
    assert len(scheduler.due_attempts(now=utcnow() + timedelta(minutes=6))) == 1


def test_schedule_missing_repairs_enrollment(db, setup_friend, welcome_scenario):
    enrollment = EnrollmentManager(db).enroll(
        setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL
    )
    db.query(DeliveryAttempt).filter_by(enrollment_id=enrollment.id).delete()
    db.commit()

    scheduled = DeliveryScheduler(db).schedule_missing()

    assert scheduled == 1
    assert DeliveryScheduler(db).get_pending_attempt(enrollment.id).step_order == 0


def test_cancel_stale_skips_attempts_of_inactive_enrollments(
    db, setup_friend, welcome_scenario
):
    enrollment = EnrollmentManager(db).enroll(
        setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL
    )
    # status changed behind the manager's back
    db.query(Enrollment).filter_by(id=enrollment.id).update(
        {Enrollment.status: EnrollmentStatus.EXITED}
    )
    db.commit()

    cancelled = DeliveryScheduler(db).cancel_stale()

    assert cancelled == 1
    outcomes = {a.outcome for a in db.query(DeliveryAttempt).filter_by(enrollment_id=enrollment.id)}
    assert outcomes == {AttemptOutcome.SKIPPED}


def test_schedule_step_skips_attempt_behind_progress(db, setup_friend, welcome_scenario):
    enrollment = EnrollmentManager(db).enroll(
        setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL
    )
    scheduler = DeliveryScheduler(db)
    stale = scheduler.get_pending_attempt(enrollment.id)
    enrollment.next_step_order = 1
    db.commit()

    attempt = scheduler.schedule_step(enrollment)

    assert attempt.step_order == 1
    db.refresh(stale)
    assert stale.outcome == AttemptOutcome.SKIPPED
    later = utcnow() + timedelta(days=1, seconds=1)
    assert [a.id for a in scheduler.due_attempts(now=later)] == [attempt.id]
