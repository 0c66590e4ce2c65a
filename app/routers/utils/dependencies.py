from uuid import UUID

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.account import Account
from app.models.enrollment import Enrollment
from app.models.friend import Friend
from app.models.invite_code import InviteCode
from app.models.scenario import Scenario, ScenarioStep
from app.services.account_service import AccountService
from app.services.enrollment_manager import EnrollmentManager
from app.services.friend_service import FriendService
from app.services.invite_service import InviteService
from app.services.scenario_service import ScenarioService


def get_account_by_id(
    account_id: UUID,
    db: Session = Depends(get_db),
) -> Account:
    """FastAPI dependency to get an account by ID."""
    account = AccountService(db).get_account(account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


def get_scenario_by_id(
    scenario_id: UUID,
    db: Session = Depends(get_db),
) -> Scenario:
    scenario = ScenarioService(db).get_scenario(scenario_id)
    if scenario is None:
        raise HTTPException(status_code=404, detail="Scenario not found")
    return scenario


def get_step_by_id(
    step_id: UUID,
    db: Session = Depends(get_db),
) -> ScenarioStep:
    step = ScenarioService(db).get_step(step_id)
    if step is None:
        raise HTTPException(status_code=404, detail="Step not found")
    return step


def get_friend_by_id(
    friend_id: UUID,
    db: Session = Depends(get_db),
) -> Friend:
    friend = FriendService(db).get_friend(friend_id)
    if friend is None:
        raise HTTPException(status_code=404, detail="Friend not found")
    return friend


def get_enrollment_by_id(
    enrollment_id: UUID,
    db: Session = Depends(get_db),
) -> Enrollment:
    enrollment = EnrollmentManager(db).get_enrollment(enrollment_id)
    if enrollment is None:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    return enrollment


def get_invite_code_by_id(
    invite_code_id: UUID,
    db: Session = Depends(get_db),
) -> InviteCode:
    invite = InviteService(db).get_invite_code(invite_code_id)
    if invite is None:
        raise HTTPException(status_code=404, detail="Invite code not found")
    return invite
