"""Scenario definition store: scenarios, ordered steps and their messages."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from app.exceptions import InvalidScenarioDefinition, ScenarioNotFound
from app.models.enrollment import DeliveryAttempt, Enrollment
from app.models.scenario import Scenario, ScenarioStep, StepMessage
from app.schemas.scenario import (
    ScenarioCreate,
    ScenarioStats,
    ScenarioUpdate,
    StepCreate,
    StepMessageIn,
    StepUpdate,
)
from app.services.soft_delete_service import SoftDeleteService

logger = logging.getLogger(__name__)


def validate_step_delays(steps: Sequence[tuple[int, int]]) -> None:
    """steps is (step_order, delay_seconds); delays must not decrease with order."""
    previous: Optional[tuple[int, int]] = None
    for order, delay in sorted(steps):
        if delay < 0:
            raise InvalidScenarioDefinition(f"Step {order} has a negative delay")
        if previous is not None and delay < previous[1]:
            raise InvalidScenarioDefinition(
                f"Step {order} delay {delay}s is earlier than step {previous[0]} "
                f"delay {previous[1]}s"
            )
        previous = (order, delay)


class ScenarioService(SoftDeleteService[Scenario]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Scenario)

    # Scenarios

    def get_scenario(self, scenario_id: UUID) -> Optional[Scenario]:
        return self.db.query(Scenario).filter(Scenario.id == scenario_id).first()

    def require_scenario(self, scenario_id: UUID) -> Scenario:
        scenario = self.get_scenario(scenario_id)
        if scenario is None:
            raise ScenarioNotFound(f"Scenario {scenario_id} not found")
        return scenario

    def get_scenarios_query(self, account_id: UUID) -> Query[Scenario]:
        return (
            self.db.query(Scenario)
            .filter(Scenario.account_id == account_id)
            .order_by(Scenario.created_at.desc())
        )

    def get_scenarios(
        self, account_id: UUID, skip: int = 0, limit: int = 100
    ) -> List[Scenario]:
        return self.get_scenarios_query(account_id).offset(skip).limit(limit).all()

    def _ensure_unique_name(
        self, account_id: UUID, name: str, exclude_id: Optional[UUID] = None
    ) -> None:
        query = self.db.query(Scenario).filter(
            Scenario.account_id == account_id, Scenario.name == name
        )
        if exclude_id is not None:
            query = query.filter(Scenario.id != exclude_id)
        if query.first() is not None:
            raise ValueError(f"Scenario named '{name}' already exists")

    def create_scenario(self, account_id: UUID, data: ScenarioCreate) -> Scenario:
        self._ensure_unique_name(account_id, data.name)
        scenario = Scenario(account_id=account_id, **data.model_dump())
        self.db.add(scenario)
        self.db.commit()
        self.db.refresh(scenario)
        return scenario

    def update_scenario(
        self, scenario_id: UUID, data: ScenarioUpdate
    ) -> Optional[Scenario]:
        scenario = self.get_scenario(scenario_id)
        if scenario is None:
            return None
        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("name"):
            self._ensure_unique_name(
                scenario.account_id, update_data["name"], exclude_id=scenario.id
            )
        for key, value in update_data.items():
            setattr(scenario, key, value)
        self.db.commit()
        self.db.refresh(scenario)
        return scenario

    def delete_scenario(self, scenario_id: UUID) -> bool:
        """Soft delete the scenario and terminate its active enrollments."""
        from app.services.enrollment_manager import EnrollmentManager

        if self.get_scenario(scenario_id) is None:
            return False
        EnrollmentManager(self.db).terminate_for_scenario(scenario_id)
        return self.delete_record(scenario_id)

    # Steps

    def get_steps(self, scenario_id: UUID) -> List[ScenarioStep]:
        """Steps ordered by step_order."""
        return (
            self.db.query(ScenarioStep)
            .filter(ScenarioStep.scenario_id == scenario_id)
            .order_by(ScenarioStep.step_order.asc())
            .all()
        )

    def get_step(self, step_id: UUID) -> Optional[ScenarioStep]:
        return self.db.query(ScenarioStep).filter(ScenarioStep.id == step_id).first()

    def get_step_at_or_after(
        self, scenario_id: UUID, step_order: int
    ) -> Optional[ScenarioStep]:
        """First step whose order is >= step_order (orders may have gaps)."""
        return (
            self.db.query(ScenarioStep)
            .filter(
                ScenarioStep.scenario_id == scenario_id,
                ScenarioStep.step_order >= step_order,
            )
            .order_by(ScenarioStep.step_order.asc())
            .first()
        )

    def _validate_transition(
        self, scenario: Scenario, transition_scenario_id: Optional[UUID]
    ) -> None:
        if transition_scenario_id is None:
            return
        if transition_scenario_id == scenario.id:
            raise InvalidScenarioDefinition("A step cannot transition to its own scenario")
        target = self.get_scenario(transition_scenario_id)
        if target is None or target.account_id != scenario.account_id:
            raise InvalidScenarioDefinition(
                f"Transition scenario {transition_scenario_id} not found for this account"
            )

    def _build_messages(self, messages: List[StepMessageIn]) -> List[StepMessage]:
        return [
            StepMessage(
                message_order=index,
                message_type=str(message.message_type),
                content=message.content,
                media_url=message.media_url,
                flex_content=message.flex_content,
                alt_text=message.alt_text,
            )
            for index, message in enumerate(messages)
        ]

    def create_step(self, scenario_id: UUID, data: StepCreate) -> ScenarioStep:
        scenario = self.require_scenario(scenario_id)
        existing = self.get_steps(scenario_id)
        step_order = data.step_order
        if step_order is None:
            step_order = existing[-1].step_order + 1 if existing else 0
        if any(s.step_order == step_order for s in existing):
            raise InvalidScenarioDefinition(f"Step order {step_order} already exists")
        validate_step_delays(
            [(s.step_order, s.delay_seconds) for s in existing]
            + [(step_order, data.delay_seconds)]
        )
        self._validate_transition(scenario, data.transition_scenario_id)

        step = ScenarioStep(
            scenario_id=scenario.id,
            step_order=step_order,
            name=data.name,
            delay_seconds=data.delay_seconds,
            transition_scenario_id=data.transition_scenario_id,
        )
        step.messages = self._build_messages(data.messages)
        self.db.add(step)
        self.db.commit()
        self.db.refresh(step)
        return step

    def update_step(self, step_id: UUID, data: StepUpdate) -> Optional[ScenarioStep]:
        step = self.get_step(step_id)
        if step is None:
            return None
        update_data = data.model_dump(exclude_unset=True, exclude={"messages"})
        if "delay_seconds" in update_data and update_data["delay_seconds"] is not None:
            siblings = [
                (s.step_order, s.delay_seconds)
                for s in self.get_steps(step.scenario_id)
                if s.id != step.id
            ]
            validate_step_delays(
                siblings + [(step.step_order, update_data["delay_seconds"])]
            )
        if "transition_scenario_id" in update_data:
            self._validate_transition(
                step.scenario, update_data["transition_scenario_id"]
            )
        for key, value in update_data.items():
            if key == "delay_seconds" and value is None:
                continue
            setattr(step, key, value)
        if data.messages is not None:
            step.messages = self._build_messages(data.messages)
        self.db.commit()
        self.db.refresh(step)
        return step

    def delete_step(self, step_id: UUID) -> bool:
        step = self.get_step(step_id)
        if step is None:
            return False
        self.db.delete(step)
        self.db.commit()
        return True

    # Stats

    def get_stats(self, scenario_id: UUID) -> ScenarioStats:
        """Enrollment totals by status, source and invite code, plus attempt outcomes."""
        self.require_scenario(scenario_id)

        def _grouped(column) -> Dict[str, int]:
            rows = (
                self.db.query(column, func.count(Enrollment.id))
                .filter(Enrollment.scenario_id == scenario_id)
                .group_by(column)
                .all()
            )
            return {str(key): count for key, count in rows if key is not None}

        by_status = _grouped(Enrollment.status)
        attempt_rows = (
            self.db.query(DeliveryAttempt.outcome, func.count(DeliveryAttempt.id))
            .join(Enrollment, DeliveryAttempt.enrollment_id == Enrollment.id)
            .filter(Enrollment.scenario_id == scenario_id)
            .group_by(DeliveryAttempt.outcome)
            .all()
        )
        return ScenarioStats(
            scenario_id=scenario_id,
            total=sum(by_status.values()),
            by_status=by_status,
            by_source=_grouped(Enrollment.source),
            by_invite_code=_grouped(Enrollment.invite_code),
            attempts_by_outcome={outcome: count for outcome, count in attempt_rows},
        )
