"""Scenarios API: scenario definitions, their steps, stats and invite codes."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.account import Account
from app.models.scenario import Scenario, ScenarioStep
from app.routers.utils.dependencies import (
    get_account_by_id,
    get_scenario_by_id,
    get_step_by_id,
)
from app.schemas.invite import InviteCodeCreate, InviteCodeRead
from app.schemas.scenario import (
    ScenarioCreate,
    ScenarioDetail,
    ScenarioRead,
    ScenarioStats,
    ScenarioUpdate,
    StepCreate,
    StepRead,
    StepUpdate,
    TransitionApplyRequest,
    TransitionApplyResult,
)
from app.services.enrollment_manager import EnrollmentManager
from app.services.invite_service import InviteService
from app.services.scenario_service import ScenarioService

router = APIRouter(
    prefix="",
    tags=["scenarios"],
    responses={404: {"description": "Not found"}},
)


@router.get("/accounts/{account_id}/scenarios", response_model=Page[ScenarioRead])
def list_scenarios(
    account: Account = Depends(get_account_by_id),
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[ScenarioRead]:
    return paginate(ScenarioService(db).get_scenarios_query(account.id), params=params)


@router.post(
    "/accounts/{account_id}/scenarios", response_model=ScenarioRead, status_code=201
)
def create_scenario(
    data: ScenarioCreate,
    account: Account = Depends(get_account_by_id),
    db: Session = Depends(get_db),
) -> ScenarioRead:
    try:
        return ScenarioService(db).create_scenario(account.id, data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.get("/scenarios/{scenario_id}", response_model=ScenarioDetail)
def get_scenario(scenario: Scenario = Depends(get_scenario_by_id)) -> ScenarioDetail:
    """Scenario with its ordered steps and their messages."""
    return scenario


@router.patch("/scenarios/{scenario_id}", response_model=ScenarioRead)
def update_scenario(
    scenario_id: UUID,
    data: ScenarioUpdate,
    db: Session = Depends(get_db),
) -> ScenarioRead:
    try:
        scenario = ScenarioService(db).update_scenario(scenario_id, data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    if scenario is None:
        raise HTTPException(status_code=404, detail="Scenario not found")
    return scenario


@router.delete("/scenarios/{scenario_id}", status_code=204)
def delete_scenario(
    scenario_id: UUID,
    db: Session = Depends(get_db),
) -> None:
    """Soft delete; active enrollments in the scenario are terminated."""
    if not ScenarioService(db).delete_scenario(scenario_id):
        raise HTTPException(status_code=404, detail="Scenario not found")


@router.get("/scenarios/{scenario_id}/steps", response_model=List[StepRead])
def list_steps(
    scenario: Scenario = Depends(get_scenario_by_id),
    db: Session = Depends(get_db),
) -> List[StepRead]:
    return ScenarioService(db).get_steps(scenario.id)


@router.post(
    "/scenarios/{scenario_id}/steps", response_model=StepRead, status_code=201
)
def create_step(
    data: StepCreate,
    scenario: Scenario = Depends(get_scenario_by_id),
    db: Session = Depends(get_db),
) -> StepRead:
    return ScenarioService(db).create_step(scenario.id, data)


@router.patch("/steps/{step_id}", response_model=StepRead)
def update_step(
    data: StepUpdate,
    step: ScenarioStep = Depends(get_step_by_id),
    db: Session = Depends(get_db),
) -> StepRead:
    return ScenarioService(db).update_step(step.id, data)


@router.delete("/steps/{step_id}", status_code=204)
def delete_step(
    step: ScenarioStep = Depends(get_step_by_id),
    db: Session = Depends(get_db),
) -> None:
    ScenarioService(db).delete_step(step.id)


@router.get("/scenarios/{scenario_id}/stats", response_model=ScenarioStats)
def get_scenario_stats(
    scenario: Scenario = Depends(get_scenario_by_id),
    db: Session = Depends(get_db),
) -> ScenarioStats:
    return ScenarioService(db).get_stats(scenario.id)


@router.post(
    "/scenarios/{scenario_id}/transitions/apply-to-completed",
    response_model=TransitionApplyResult,
)
def apply_transition_to_completed(
    data: TransitionApplyRequest,
    scenario: Scenario = Depends(get_scenario_by_id),
    db: Session = Depends(get_db),
) -> TransitionApplyResult:
    """Move friends who already completed this scenario into another one."""
    moved, skipped = EnrollmentManager(db).apply_transition_to_completed(
        scenario.id, data.to_scenario_id
    )
    return TransitionApplyResult(moved=moved, skipped=skipped)


@router.get(
    "/scenarios/{scenario_id}/invite-codes", response_model=Page[InviteCodeRead]
)
def list_invite_codes(
    scenario: Scenario = Depends(get_scenario_by_id),
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[InviteCodeRead]:
    return paginate(InviteService(db).get_invite_codes_query(scenario.id), params=params)


@router.post(
    "/scenarios/{scenario_id}/invite-codes",
    response_model=InviteCodeRead,
    status_code=201,
)
def create_invite_code(
    data: InviteCodeCreate,
    scenario: Scenario = Depends(get_scenario_by_id),
    db: Session = Depends(get_db),
) -> InviteCodeRead:
    try:
        return InviteService(db).create_invite_code(scenario.id, data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
