"""Tests for EnrollmentManager."""

from datetime import timedelta
from uuid import uuid4

import pytest

from app.constants.enrollment import (
    AttemptOutcome,
    EnrollmentEventType,
    EnrollmentSource,
    EnrollmentStatus,
    ExitReason,
)
from app.exceptions import (
    EnrollmentNotFound,
    FriendNotFound,
    ReRegistrationNotAllowed,
    ScenarioInactive,
    ScenarioNotFound,
)
from app.models.enrollment import DeliveryAttempt
from app.models.enrollment_event import EnrollmentEvent
from app.models.mixins import as_utc
from app.services.enrollment_manager import EnrollmentManager
from app.services.scenario_service import ScenarioService


def _events(db, enrollment_id):
    return [
        e.event_type
        for e in db.query(EnrollmentEvent)
        .filter(EnrollmentEvent.enrollment_id == enrollment_id)
        .order_by(EnrollmentEvent.created_at.asc())
        .all()
    ]


def test_enroll_schedules_first_step(db, setup_friend, welcome_scenario):
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)

    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.next_step_order == 0
    attempts = db.query(DeliveryAttempt).filter_by(enrollment_id=enrollment.id).all()
    assert len(attempts) == 1
    assert attempts[0].step_order == 0
    assert attempts[0].outcome == AttemptOutcome.PENDING
    assert as_utc(attempts[0].due_at) == as_utc(enrollment.enrolled_at)
    assert _events(db, enrollment.id) == [EnrollmentEventType.ENROLLED]


def test_enroll_is_idempotent_for_active_pair(db, setup_friend, welcome_scenario):
    manager = EnrollmentManager(db)
    first = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.INVITE)
    second = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.INVITE)

    assert first.id == second.id
    assert len(manager.get_friend_enrollments(setup_friend.id)) == 1
    assert db.query(DeliveryAttempt).filter_by(enrollment_id=first.id).count() == 1


def test_enroll_unknown_friend(db, welcome_scenario):
    with pytest.raises(FriendNotFound):
        EnrollmentManager(db).enroll(uuid4(), welcome_scenario.id, EnrollmentSource.MANUAL)


def test_enroll_unknown_scenario(db, setup_friend):
    with pytest.raises(ScenarioNotFound):
        EnrollmentManager(db).enroll(setup_friend.id, uuid4(), EnrollmentSource.MANUAL)


def test_enroll_inactive_scenario(db, setup_friend, setup_account, scenario_factory):
    paused = scenario_factory(setup_account, "Paused", is_active=False)
    with pytest.raises(ScenarioInactive):
        EnrollmentManager(db).enroll(setup_friend.id, paused.id, EnrollmentSource.MANUAL)


def test_enroll_deleted_scenario(db, setup_friend, welcome_scenario):
    ScenarioService(db).delete_scenario(welcome_scenario.id)
    with pytest.raises(ScenarioInactive):
        EnrollmentManager(db).enroll(
            setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL
        )


def test_enroll_scenario_of_other_account(
    db, setup_friend, setup_account_without_credential, scenario_factory
):
    foreign = scenario_factory(setup_account_without_credential, "Foreign")
    with pytest.raises(ScenarioNotFound):
        EnrollmentManager(db).enroll(setup_friend.id, foreign.id, EnrollmentSource.MANUAL)


def test_enroll_supersedes_other_active_enrollment(
    db, setup_friend, setup_account, welcome_scenario, scenario_factory
):
    campaign = scenario_factory(setup_account, "Campaign")
    manager = EnrollmentManager(db)
    welcome = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)
    manager.enroll(setup_friend.id, campaign.id, EnrollmentSource.MANUAL)

    db.refresh(welcome)
    assert welcome.status == EnrollmentStatus.EXITED
    assert welcome.exit_reason == ExitReason.SUPERSEDED
    pending = (
        db.query(DeliveryAttempt)
        .filter_by(enrollment_id=welcome.id, outcome=AttemptOutcome.PENDING)
        .count()
    )
    assert pending == 0


def test_prevent_auto_exit_keeps_enrollment(
    db, setup_friend, setup_account, scenario_factory
):
    course = scenario_factory(setup_account, "Course", delays=(0, 3600), prevent_auto_exit=True)
    campaign = scenario_factory(setup_account, "Campaign")
    manager = EnrollmentManager(db)
    protected = manager.enroll(setup_friend.id, course.id, EnrollmentSource.MANUAL)
    manager.enroll(setup_friend.id, campaign.id, EnrollmentSource.MANUAL)

    db.refresh(protected)
    assert protected.status == EnrollmentStatus.ACTIVE
    assert len(manager.get_active_enrollments(setup_friend.id)) == 2


def test_manual_exit_applies_to_protected_scenario(
    db, setup_friend, setup_account, scenario_factory
):
    course = scenario_factory(setup_account, "Course", prevent_auto_exit=True, delays=(60,))
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, course.id, EnrollmentSource.MANUAL)

    exited = manager.manual_exit(enrollment.id)

    assert exited.status == EnrollmentStatus.EXITED
    assert exited.exit_reason == ExitReason.MANUAL
    assert exited.exited_at is not None
    # terminal rows do not change again
    assert manager.manual_exit(enrollment.id).exit_reason == ExitReason.MANUAL


def test_manual_exit_unknown_enrollment(db):
    with pytest.raises(EnrollmentNotFound):
        EnrollmentManager(db).manual_exit(uuid4())


def test_prevent_re_registration(db, setup_friend, setup_account, scenario_factory):
    once = scenario_factory(setup_account, "Once", delays=(60,), prevent_re_registration=True)
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, once.id, EnrollmentSource.INVITE)
    manager.manual_exit(enrollment.id)

    with pytest.raises(ReRegistrationNotAllowed):
        manager.enroll(setup_friend.id, once.id, EnrollmentSource.INVITE)

    restored = manager.enroll(setup_friend.id, once.id, EnrollmentSource.MANUAL_REASSIGN)
    assert restored.status == EnrollmentStatus.ACTIVE
    assert restored.id != enrollment.id


def test_re_enroll_after_exit_creates_new_row(db, setup_friend, welcome_scenario):
    manager = EnrollmentManager(db)
    first = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)
    manager.manual_exit(first.id)
    second = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)

    assert second.id != first.id
    db.refresh(first)
    assert first.status == EnrollmentStatus.EXITED


def test_manual_reassign_restarts_active_enrollment(db, setup_friend, welcome_scenario):
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)
    first_step = welcome_scenario.steps[0]
    manager.advance(enrollment.id, first_step.id)
    db.refresh(enrollment)
    assert enrollment.next_step_order == 1

    reset = manager.enroll(
        setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL_REASSIGN
    )

    assert reset.id == enrollment.id
    assert reset.next_step_order == 0
    assert reset.source == EnrollmentSource.MANUAL_REASSIGN
    attempts = db.query(DeliveryAttempt).filter_by(enrollment_id=reset.id).all()
    assert [a.step_order for a in attempts] == [0]
    assert EnrollmentEventType.RESET in _events(db, reset.id)


def test_advance_schedules_next_step_relative_to_enrollment(
    db, setup_friend, welcome_scenario
):
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)

    manager.advance(enrollment.id, welcome_scenario.steps[0].id)

    pending = manager.scheduler.get_pending_attempt(enrollment.id)
    assert pending.step_order == 1
    assert as_utc(pending.due_at) == as_utc(enrollment.enrolled_at) + timedelta(days=1)


def test_advance_is_noop_for_step_already_passed(db, setup_friend, welcome_scenario):
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)
    step0 = welcome_scenario.steps[0]
    manager.advance(enrollment.id, step0.id)
    manager.advance(enrollment.id, step0.id)

    db.refresh(enrollment)
    assert enrollment.next_step_order == 1
    assert _events(db, enrollment.id).count(EnrollmentEventType.ADVANCED) == 1


def test_advance_last_step_completes(db, setup_friend, welcome_scenario):
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)
    for step in welcome_scenario.steps:
        manager.advance(enrollment.id, step.id)

    db.refresh(enrollment)
    assert enrollment.status == EnrollmentStatus.COMPLETED
    assert enrollment.exit_reason == ExitReason.COMPLETED
    assert manager.scheduler.get_pending_attempt(enrollment.id) is None


def test_transition_on_last_step(db, setup_friend, setup_account, scenario_factory):
    followup = scenario_factory(setup_account, "Followup")
    welcome = scenario_factory(
        setup_account, "Welcome", delays=(0, 86400), transitions={1: followup.id}
    )
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome.id, EnrollmentSource.INVITE)
    for step in welcome.steps:
        manager.advance(enrollment.id, step.id)

    db.refresh(enrollment)
    assert enrollment.status == EnrollmentStatus.COMPLETED
    target = manager.get_active_enrollment(setup_friend.id, followup.id)
    assert target is not None
    assert target.source == EnrollmentSource.TRANSITION
    assert EnrollmentEventType.TRANSITIONED in _events(db, enrollment.id)


def test_transition_to_inactive_scenario_is_recorded(
    db, setup_friend, setup_account, scenario_factory
):
    followup = scenario_factory(setup_account, "Followup")
    welcome = scenario_factory(setup_account, "Welcome", transitions={0: followup.id})
    followup.is_active = False
    db.commit()

    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome.id, EnrollmentSource.MANUAL)
    manager.advance(enrollment.id, welcome.steps[0].id)

    db.refresh(enrollment)
    assert enrollment.status == EnrollmentStatus.COMPLETED
    event = (
        db.query(EnrollmentEvent)
        .filter_by(enrollment_id=enrollment.id, event_type=EnrollmentEventType.TRANSITIONED)
        .one()
    )
    assert event.metadata_["ok"] is False
    assert manager.get_active_enrollment(setup_friend.id, followup.id) is None


def test_block_friend(db, setup_friend, setup_account, scenario_factory):
    course = scenario_factory(setup_account, "Course", prevent_auto_exit=True, delays=(60,))
    other = scenario_factory(setup_account, "Other", delays=(60,))
    manager = EnrollmentManager(db)
    manager.enroll(setup_friend.id, course.id, EnrollmentSource.MANUAL)
    manager.enroll(setup_friend.id, other.id, EnrollmentSource.MANUAL)

    blocked = manager.block_friend(setup_friend.id, reason="unfollowed")

    assert blocked == 2
    statuses = {e.status for e in manager.get_friend_enrollments(setup_friend.id)}
    assert statuses == {EnrollmentStatus.BLOCKED}


def test_restore_ignores_protection(db, setup_friend, setup_account, scenario_factory):
    course = scenario_factory(setup_account, "Course", prevent_auto_exit=True, delays=(60,))
    welcome = scenario_factory(setup_account, "Welcome", delays=(60,))
    manager = EnrollmentManager(db)
    first = manager.enroll(setup_friend.id, welcome.id, EnrollmentSource.MANUAL)
    course_enrollment = manager.enroll(setup_friend.id, course.id, EnrollmentSource.MANUAL)
    manager.manual_exit(first.id)

    restored = manager.restore(setup_friend.id, welcome.id)

    assert restored.status == EnrollmentStatus.ACTIVE
    assert restored.source == EnrollmentSource.RESTORE
    db.refresh(course_enrollment)
    assert course_enrollment.status == EnrollmentStatus.EXITED
    assert [e.scenario_id for e in manager.get_active_enrollments(setup_friend.id)] == [
        welcome.id
    ]


def test_scenario_without_steps_completes_immediately(
    db, setup_friend, setup_account, scenario_factory
):
    empty = scenario_factory(setup_account, "Empty", delays=())
    enrollment = EnrollmentManager(db).enroll(
        setup_friend.id, empty.id, EnrollmentSource.MANUAL
    )
    db.refresh(enrollment)
    assert enrollment.status == EnrollmentStatus.COMPLETED


def test_apply_transition_to_completed(
    db, setup_account, friend_factory, scenario_factory
):
    welcome = scenario_factory(setup_account, "Welcome")
    followup = scenario_factory(setup_account, "Followup", delays=(60,))
    manager = EnrollmentManager(db)
    finished, already, running = (friend_factory(setup_account) for _ in range(3))
    for friend in (finished, already):
        enrollment = manager.enroll(friend.id, welcome.id, EnrollmentSource.MANUAL)
        manager.advance(enrollment.id, welcome.steps[0].id)
    manager.enroll(already.id, followup.id, EnrollmentSource.MANUAL)
    manager.enroll(running.id, welcome.id, EnrollmentSource.MANUAL)

    moved, skipped = manager.apply_transition_to_completed(welcome.id, followup.id)

    assert (moved, skipped) == (1, 1)
    assert manager.get_active_enrollment(finished.id, followup.id) is not None
    assert manager.get_active_enrollment(running.id, followup.id) is None


def test_delete_friend_cascades(db, setup_friend, welcome_scenario):
    from app.services.friend_service import FriendService

    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)

    assert FriendService(db).delete_friend(setup_friend.id) is True

    db.refresh(enrollment)
    assert enrollment.status == EnrollmentStatus.EXITED
    assert enrollment.exit_reason == ExitReason.CASCADED


def test_advance_closes_delivered_step_attempt(db, setup_friend, welcome_scenario):
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL)
    step0_attempt = manager.scheduler.get_pending_attempt(enrollment.id)

    manager.advance(enrollment.id, welcome_scenario.steps[0].id)

    db.refresh(step0_attempt)
    assert step0_attempt.outcome == AttemptOutcome.SKIPPED
    assert manager.scheduler.due_attempts() == []


def test_concurrent_enroll_keeps_one_active_row(
    db, session_factory, setup_friend, welcome_scenario
):
    first = EnrollmentManager(db)
    other_session = session_factory()
    try:
        second = EnrollmentManager(other_session)
        real_lookup = second.get_active_enrollment
        lookups = []

        def stale_lookup(friend_id, scenario_id):
            # the first read happens before the other enroll committed
            lookups.append(friend_id)
            if len(lookups) == 1:
                return None
            return real_lookup(friend_id, scenario_id)

        second.get_active_enrollment = stale_lookup

        winner = first.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.INVITE)
        loser = second.enroll(setup_friend.id, welcome_scenario.id, EnrollmentSource.INVITE)

        assert loser.id == winner.id
    finally:
        other_session.close()

    db.expire_all()
    enrollments = first.get_friend_enrollments(setup_friend.id)
    assert [e.status for e in enrollments] == [EnrollmentStatus.ACTIVE]
    attempts = db.query(DeliveryAttempt).filter_by(enrollment_id=winner.id).all()
    assert [(a.step_order, a.outcome) for a in attempts] == [(0, AttemptOutcome.PENDING)]


def test_transition_on_intermediate_step_supersedes(
    db, setup_friend, setup_account, scenario_factory
):
    followup = scenario_factory(setup_account, "Followup")
    welcome = scenario_factory(
        setup_account, "Welcome", delays=(0, 86400), transitions={0: followup.id}
    )
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, welcome.id, EnrollmentSource.INVITE)

    manager.advance(enrollment.id, welcome.steps[0].id)

    db.refresh(enrollment)
    assert enrollment.status == EnrollmentStatus.EXITED
    assert enrollment.exit_reason == ExitReason.SUPERSEDED
    assert manager.scheduler.get_pending_attempt(enrollment.id) is None
    target = manager.get_active_enrollment(setup_friend.id, followup.id)
    assert target.source == EnrollmentSource.TRANSITION
    assert manager.scheduler.get_pending_attempt(target.id).step_order == 0


def test_transition_on_intermediate_step_keeps_protected_scenario(
    db, setup_friend, setup_account, scenario_factory
):
    followup = scenario_factory(setup_account, "Followup")
    course = scenario_factory(
        setup_account,
        "Course",
        delays=(0, 86400),
        transitions={0: followup.id},
        prevent_auto_exit=True,
    )
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, course.id, EnrollmentSource.INVITE)

    manager.advance(enrollment.id, course.steps[0].id)

    db.refresh(enrollment)
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.next_step_order == 1
    pending = manager.scheduler.get_pending_attempt(enrollment.id)
    assert pending.step_order == 1
    assert as_utc(pending.due_at) == as_utc(enrollment.enrolled_at) + timedelta(days=1)
    assert manager.get_active_enrollment(setup_friend.id, followup.id) is not None
