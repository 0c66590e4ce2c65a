"""Tests for RunDeliveryTickCommand."""

from datetime import timedelta

from app.commands.run_delivery_tick_command import RunDeliveryTickCommand
from app.constants.enrollment import EnrollmentSource, EnrollmentStatus
from app.models.enrollment import Enrollment
from app.models.mixins import utcnow
from app.services.enrollment_manager import EnrollmentManager


async def test_tick_walks_enrollment_through_scenario(
    db, session_factory, transport_factory, fake_transport, setup_friend, welcome_scenario
):
    enrollment = EnrollmentManager(db).enroll(
        setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL
    )
    command = RunDeliveryTickCommand(session_factory, transport_factory=transport_factory)

    first = await command.execute()
    assert first.executed == 1
    assert first.outcomes == {"sent": 1}

    idle = await command.execute()
    assert idle.executed == 0

    second = await command.execute(now=utcnow() + timedelta(days=1, seconds=1))
    assert second.outcomes == {"sent": 1}
    assert fake_transport.texts() == [
        "Welcome step 0 for Taroさん",
        "Welcome step 1 for Taroさん",
    ]

    db.expire_all()
    assert db.get(Enrollment, enrollment.id).status == EnrollmentStatus.COMPLETED


async def test_tick_sends_each_friend_in_parallel(
    db, session_factory, transport_factory, fake_transport, setup_account, friend_factory, welcome_scenario
):
    manager = EnrollmentManager(db)
    for _ in range(4):
        manager.enroll(friend_factory(setup_account).id, welcome_scenario.id, EnrollmentSource.MANUAL)

    summary = await RunDeliveryTickCommand(
        session_factory, transport_factory=transport_factory
    ).execute()

    assert summary.executed == 4
    assert summary.outcomes == {"sent": 4}
    assert summary.errors == []
    assert len({push.recipient for push in fake_transport.sent}) == 4


async def test_tick_reports_stale_and_missing(
    db, session_factory, transport_factory, setup_friend, welcome_scenario
):
    from app.models.enrollment import DeliveryAttempt

    enrollment = EnrollmentManager(db).enroll(
        setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL
    )
    db.query(DeliveryAttempt).filter_by(enrollment_id=enrollment.id).delete()
    db.commit()

    summary = await RunDeliveryTickCommand(
        session_factory, transport_factory=transport_factory
    ).execute()

    assert summary.scheduled == 1
    assert summary.outcomes == {"sent": 1}
