"""Tests for DeliveryExecutor."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from app.config import get_settings
from app.constants.enrollment import (
    AttemptOutcome,
    EnrollmentSource,
    EnrollmentStatus,
    ExitReason,
    MessageType,
)
from app.core.templating import ProductContext, RenderContext
from app.exceptions import (
    ConfigurationMissing,
    TransportPermanentFailure,
    TransportTransientFailure,
)
from app.models.enrollment import DeliveryAttempt, Enrollment
from app.models.mixins import as_utc, utcnow
from app.schemas.scenario import ScenarioCreate, StepCreate, StepMessageIn
from app.schemas.transport import SendResult
from app.services.delivery_executor import DeliveryExecutor, retry_delay_seconds
from app.services.enrollment_manager import EnrollmentManager
from app.services.scenario_service import ScenarioService


@pytest.fixture
def executor(session_factory, transport_factory):
    return DeliveryExecutor(session_factory, transport_factory=transport_factory)


def _enroll(db, friend, scenario):
    enrollment = EnrollmentManager(db).enroll(friend.id, scenario.id, EnrollmentSource.INVITE)
    attempt = EnrollmentManager(db).scheduler.get_pending_attempt(enrollment.id)
    return enrollment, attempt


def test_retry_delay_seconds():
    assert retry_delay_seconds(1, 30, 3600) == 30
    assert retry_delay_seconds(2, 30, 3600) == 60
    assert retry_delay_seconds(3, 30, 3600) == 120
    assert retry_delay_seconds(20, 30, 3600) == 3600


async def test_send_renders_and_advances(db, executor, fake_transport, setup_friend, welcome_scenario):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.SENT
    assert fake_transport.texts() == ["Welcome step 0 for Taroさん"]
    push = fake_transport.sent[0]
    assert push.recipient == setup_friend.line_user_id
    assert push.retry_key == str(attempt.id)

    db.expire_all()
    sent = db.get(DeliveryAttempt, attempt.id)
    assert sent.outcome == AttemptOutcome.SENT
    assert sent.sent_at is not None
    enrollment = db.get(Enrollment, enrollment.id)
    assert enrollment.next_step_order == 1
    pending = EnrollmentManager(db).scheduler.get_pending_attempt(enrollment.id)
    assert pending.step_order == 1
    assert as_utc(pending.due_at) == as_utc(enrollment.enrolled_at) + timedelta(days=1)


async def test_claimed_attempt_is_not_sent_twice(db, executor, fake_transport, setup_friend, welcome_scenario):
    _, attempt = _enroll(db, setup_friend, welcome_scenario)

    await executor.execute(attempt.id)
    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.SENT
    assert len(fake_transport.sent) == 1


async def test_execute_many_sends_once_per_attempt(
    db, executor, fake_transport, setup_account, friend_factory, welcome_scenario
):
    attempt_ids = []
    for _ in range(3):
        _, attempt = _enroll(db, friend_factory(setup_account), welcome_scenario)
        attempt_ids.append(attempt.id)

    outcomes = await executor.execute_many(attempt_ids + attempt_ids)

    assert set(outcomes.values()) == {AttemptOutcome.SENT}
    assert len(fake_transport.sent) == 3


async def test_transient_failure_backs_off(db, executor, fake_transport, setup_friend, welcome_scenario):
    _, attempt = _enroll(db, setup_friend, welcome_scenario)
    fake_transport.results.append(
        SendResult(success=False, retryable=True, error="LINE API error 500", status_code=500)
    )

    before = utcnow()
    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.PENDING
    db.expire_all()
    retried = db.get(DeliveryAttempt, attempt.id)
    assert retried.retry_count == 1
    assert retried.lease_expires_at is None
    assert as_utc(retried.next_retry_at) >= before + timedelta(
        seconds=get_settings().delivery_retry_base_seconds
    )
    assert retried.last_error == "LINE API error 500"


async def test_transport_exception_is_transient(db, executor, fake_transport, setup_friend, welcome_scenario):
    _, attempt = _enroll(db, setup_friend, welcome_scenario)
    fake_transport.raise_on_send = RuntimeError("connection reset")

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.PENDING
    db.expire_all()
    assert db.get(DeliveryAttempt, attempt.id).retry_count == 1


async def test_retries_exhausted_fails_attempt(db, executor, fake_transport, setup_friend, welcome_scenario):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)
    attempt.retry_count = get_settings().delivery_max_retries
    db.commit()
    fake_transport.results.append(SendResult(success=False, retryable=True, error="timeout"))

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.FAILED
    db.expire_all()
    enrollment = db.get(Enrollment, enrollment.id)
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert "timeout" in enrollment.last_error
    assert enrollment.next_step_order == 0

    # operator retry gives the step a fresh attempt
    fresh = EnrollmentManager(db).retry_current_step(enrollment.id)
    assert fresh.id != attempt.id
    assert fresh.outcome == AttemptOutcome.PENDING


async def test_permanent_failure_blocks_enrollment(db, executor, fake_transport, setup_friend, welcome_scenario):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)
    fake_transport.results.append(
        SendResult(success=False, retryable=False, error="LINE API error 400", status_code=400)
    )

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.FAILED
    db.expire_all()
    enrollment = db.get(Enrollment, enrollment.id)
    assert enrollment.status == EnrollmentStatus.BLOCKED
    assert enrollment.exit_reason == ExitReason.BLOCKED


async def test_unfollowed_friend_is_not_sent(db, executor, fake_transport, setup_friend, welcome_scenario):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)
    setup_friend.is_following = False
    db.commit()

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.FAILED
    assert fake_transport.sent == []
    db.expire_all()
    assert db.get(Enrollment, enrollment.id).status == EnrollmentStatus.BLOCKED


async def test_exited_enrollment_attempt_is_skipped(db, executor, fake_transport, setup_friend, welcome_scenario):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)
    # exit that did not go through the manager, so the attempt is still pending
    db.query(Enrollment).filter_by(id=enrollment.id).update(
        {Enrollment.status: EnrollmentStatus.EXITED}
    )
    db.commit()

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.SKIPPED
    assert fake_transport.sent == []


async def test_missing_credentials_fail_account_attempts(
    db, executor, fake_transport, setup_account_without_credential, friend_factory, scenario_factory
):
    account = setup_account_without_credential
    scenario = scenario_factory(account, "NoCreds")
    first, attempt = _enroll(db, friend_factory(account), scenario)
    second, other_attempt = _enroll(db, friend_factory(account), scenario)

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.FAILED
    assert fake_transport.sent == []
    db.expire_all()
    assert db.get(DeliveryAttempt, other_attempt.id).outcome == AttemptOutcome.FAILED
    for enrollment_id in (first.id, second.id):
        enrollment = db.get(Enrollment, enrollment_id)
        assert enrollment.status == EnrollmentStatus.ACTIVE
        assert enrollment.last_error.startswith("configuration_missing")


async def test_rejected_token_fails_for_configuration(
    db, executor, fake_transport, setup_friend, welcome_scenario
):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)
    fake_transport.raise_on_send = ConfigurationMissing("LINE rejected the channel access token (401)")

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.FAILED
    db.expire_all()
    enrollment = db.get(Enrollment, enrollment.id)
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert "401" in enrollment.last_error


async def test_rate_limited_push_is_retried(db, executor, fake_transport, setup_friend, welcome_scenario):
    _, attempt = _enroll(db, setup_friend, welcome_scenario)

    with patch(
        "app.services.delivery_executor.check_push_rate_limit", return_value=False
    ):
        outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.PENDING
    assert fake_transport.sent == []


async def test_exit_during_send_is_not_undone(
    db, session_factory, fake_transport, setup_friend, welcome_scenario
):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)

    class ExitingTransport(type(fake_transport)):
        async def send(self, push):
            other = session_factory()
            try:
                EnrollmentManager(other).manual_exit(enrollment.id)
            finally:
                other.close()
            return await super().send(push)

    transport = ExitingTransport()
    executor = DeliveryExecutor(session_factory, transport_factory=lambda a, c: transport)

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.SENT
    db.expire_all()
    enrollment = db.get(Enrollment, enrollment.id)
    assert enrollment.status == EnrollmentStatus.EXITED
    assert enrollment.exit_reason == ExitReason.MANUAL
    assert enrollment.next_step_order == 0


async def test_raised_permanent_failure_blocks(db, executor, fake_transport, setup_friend, welcome_scenario):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)
    fake_transport.raise_on_send = TransportPermanentFailure("user blocked the account", status=400)

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.FAILED
    db.expire_all()
    assert db.get(Enrollment, enrollment.id).status == EnrollmentStatus.BLOCKED
    assert db.get(DeliveryAttempt, attempt.id).last_error.startswith("transport_permanent_failure")


async def test_raised_transient_failure_retries(db, executor, fake_transport, setup_friend, welcome_scenario):
    _, attempt = _enroll(db, setup_friend, welcome_scenario)
    fake_transport.raise_on_send = TransportTransientFailure("gateway timeout", status=504)

    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.PENDING
    db.expire_all()
    assert db.get(DeliveryAttempt, attempt.id).retry_count == 1


async def test_reassign_during_send_supersedes_attempt(
    db, session_factory, fake_transport, setup_friend, welcome_scenario
):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)

    class ReassigningTransport(type(fake_transport)):
        async def send(self, push):
            other = session_factory()
            try:
                EnrollmentManager(other).enroll(
                    setup_friend.id, welcome_scenario.id, EnrollmentSource.MANUAL_REASSIGN
                )
            finally:
                other.close()
            return await super().send(push)

    transport = ReassigningTransport()
    executor = DeliveryExecutor(session_factory, transport_factory=lambda a, c: transport)

    outcomes = await executor.execute_many([attempt.id])

    assert outcomes == {attempt.id: AttemptOutcome.SKIPPED}
    db.expire_all()
    assert db.get(DeliveryAttempt, attempt.id) is None
    restarted = db.get(Enrollment, enrollment.id)
    assert restarted.status == EnrollmentStatus.ACTIVE
    assert restarted.next_step_order == 0
    pending = EnrollmentManager(db).scheduler.get_pending_attempt(enrollment.id)
    assert pending.step_order == 0
    assert pending.id != attempt.id


async def test_unexpected_error_is_recorded_and_retried(
    db, executor, fake_transport, setup_friend, welcome_scenario
):
    _, attempt = _enroll(db, setup_friend, welcome_scenario)

    with patch(
        "app.services.delivery_executor.render", side_effect=RuntimeError("bad payload")
    ):
        outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.PENDING
    assert fake_transport.sent == []
    db.expire_all()
    crashed = db.get(DeliveryAttempt, attempt.id)
    assert crashed.retry_count == 1
    assert crashed.lease_expires_at is None
    assert crashed.next_retry_at is not None
    assert crashed.last_error.startswith("executor_error")


async def test_unexpected_errors_respect_retry_limit(
    db, executor, fake_transport, setup_friend, welcome_scenario
):
    enrollment, attempt = _enroll(db, setup_friend, welcome_scenario)
    attempt.retry_count = get_settings().delivery_max_retries
    db.commit()

    with patch(
        "app.services.delivery_executor.render", side_effect=RuntimeError("bad payload")
    ):
        outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.FAILED
    db.expire_all()
    assert db.get(DeliveryAttempt, attempt.id).outcome == AttemptOutcome.FAILED
    assert "bad payload" in db.get(Enrollment, enrollment.id).last_error


async def test_context_factory_supplies_product(
    db, session_factory, transport_factory, fake_transport, setup_friend, setup_account
):
    svc = ScenarioService(db)
    scenario = svc.create_scenario(setup_account.id, ScenarioCreate(name="Offer"))
    svc.create_step(
        scenario.id,
        StepCreate(
            step_order=0,
            delay_seconds=0,
            messages=[
                StepMessageIn(
                    message_type=MessageType.TEXT,
                    content="[LINE_NAME_SAN]: {product_name_price}",
                )
            ],
        ),
    )
    _, attempt = _enroll(db, setup_friend, scenario)

    def with_product(attempt, friend):
        return RenderContext(
            display_name=friend.display_name,
            product=ProductContext(name="Course", price=10000),
        )

    executor = DeliveryExecutor(
        session_factory, transport_factory=transport_factory, context_factory=with_product
    )
    outcome = await executor.execute(attempt.id)

    assert outcome == AttemptOutcome.SENT
    assert fake_transport.texts() == ["Taroさん: Course - 10,000円"]
