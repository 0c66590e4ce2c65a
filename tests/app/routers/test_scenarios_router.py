"""Tests for the scenarios router."""

from uuid import uuid4

TEXT_STEP = {"message_type": "text", "content": "Hello [LINE_NAME_SAN]"}


def _create_scenario(client, account_id, name="Onboarding", **flags):
    r = client.post(f"/accounts/{account_id}/scenarios", json={"name": name, **flags})
    assert r.status_code == 201
    return r.json()


def test_create_scenario_with_steps(client, setup_account):
    scenario = _create_scenario(client, setup_account.id, prevent_auto_exit=True)
    assert scenario["prevent_auto_exit"] is True

    r = client.post(
        f"/scenarios/{scenario['id']}/steps",
        json={"delay_seconds": 0, "messages": [TEXT_STEP]},
    )
    assert r.status_code == 201
    assert r.json()["step_order"] == 0

    r = client.post(
        f"/scenarios/{scenario['id']}/steps",
        json={"delay_seconds": 3600, "messages": [TEXT_STEP, TEXT_STEP]},
    )
    assert r.json()["step_order"] == 1

    detail = client.get(f"/scenarios/{scenario['id']}").json()
    assert [s["delay_seconds"] for s in detail["steps"]] == [0, 3600]
    assert len(detail["steps"][1]["messages"]) == 2


def test_duplicate_scenario_name_conflicts(client, setup_account):
    _create_scenario(client, setup_account.id)
    r = client.post(f"/accounts/{setup_account.id}/scenarios", json={"name": "Onboarding"})
    assert r.status_code == 409


def test_list_scenarios(client, setup_account, welcome_scenario):
    r = client.get(f"/accounts/{setup_account.id}/scenarios")
    assert r.status_code == 200
    assert [s["name"] for s in r.json()["items"]] == ["Welcome"]


def test_step_with_decreasing_delay_is_rejected(client, welcome_scenario):
    r = client.post(
        f"/scenarios/{welcome_scenario.id}/steps",
        json={"delay_seconds": 10, "messages": [TEXT_STEP]},
    )
    assert r.status_code == 422
    assert r.json()["code"] == "invalid_scenario_definition"


def test_image_message_requires_https(client, welcome_scenario):
    r = client.post(
        f"/scenarios/{welcome_scenario.id}/steps",
        json={
            "delay_seconds": 172800,
            "messages": [{"message_type": "image", "media_url": "http://x/a.png"}],
        },
    )
    assert r.status_code == 422


def test_update_and_delete_step(client, welcome_scenario):
    step_id = welcome_scenario.steps[1].id
    r = client.patch(f"/steps/{step_id}", json={"name": "Day 2"})
    assert r.status_code == 200
    assert r.json()["name"] == "Day 2"

    assert client.delete(f"/steps/{step_id}").status_code == 204
    steps = client.get(f"/scenarios/{welcome_scenario.id}/steps").json()
    assert [s["step_order"] for s in steps] == [0]


def test_deactivate_and_delete_scenario(client, welcome_scenario):
    r = client.patch(f"/scenarios/{welcome_scenario.id}", json={"is_active": False})
    assert r.json()["is_active"] is False

    assert client.delete(f"/scenarios/{welcome_scenario.id}").status_code == 204
    assert client.get(f"/scenarios/{welcome_scenario.id}").status_code == 404


def test_unknown_scenario(client):
    assert client.get(f"/scenarios/{uuid4()}").status_code == 404


def test_invite_codes(client, welcome_scenario):
    r = client.post(
        f"/scenarios/{welcome_scenario.id}/invite-codes",
        json={"code": "SPRING2026", "max_usage": 10},
    )
    assert r.status_code == 201
    assert r.json()["usage_count"] == 0

    again = client.post(
        f"/scenarios/{welcome_scenario.id}/invite-codes", json={"code": "SPRING2026"}
    )
    assert again.status_code == 409

    generated = client.post(f"/scenarios/{welcome_scenario.id}/invite-codes", json={})
    assert generated.status_code == 201

    listed = client.get(f"/scenarios/{welcome_scenario.id}/invite-codes").json()
    assert listed["total"] == 2


def test_stats_and_transition(client, db, setup_friend, scenario_factory, setup_account):
    from app.constants.enrollment import EnrollmentSource
    from app.services.enrollment_manager import EnrollmentManager

    source = scenario_factory(setup_account, "Trial")
    target = scenario_factory(setup_account, "Followup")
    manager = EnrollmentManager(db)
    enrollment = manager.enroll(setup_friend.id, source.id, EnrollmentSource.MANUAL)
    manager.advance(enrollment.id, source.steps[0].id)

    stats = client.get(f"/scenarios/{source.id}/stats").json()
    assert stats["by_status"] == {"completed": 1}

    r = client.post(
        f"/scenarios/{source.id}/transitions/apply-to-completed",
        json={"to_scenario_id": str(target.id)},
    )
    assert r.status_code == 200
    assert r.json() == {"moved": 1, "skipped": 0}
