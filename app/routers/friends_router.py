"""Friends API: the per-account friend registry and operator triggers."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.constants.enrollment import EnrollmentSource
from app.db import get_db
from app.models.account import Account
from app.models.friend import Friend
from app.routers.utils.dependencies import get_account_by_id, get_friend_by_id
from app.schemas.enrollment import EnrollmentRead
from app.schemas.friend import FriendRead, FriendRestore, FriendScenarioAssign
from app.services.enrollment_manager import EnrollmentManager
from app.services.friend_service import FriendService

router = APIRouter(
    prefix="",
    tags=["friends"],
    responses={404: {"description": "Not found"}},
)


@router.get("/accounts/{account_id}/friends", response_model=Page[FriendRead])
def list_friends(
    is_following: Optional[bool] = None,
    account: Account = Depends(get_account_by_id),
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[FriendRead]:
    filters = {"is_following": is_following} if is_following is not None else None
    query = FriendService(db).get_friends_query(account.id, filters)
    return paginate(query, params=params)


@router.get("/accounts/{account_id}/friends/by-uid/{short_uid}", response_model=FriendRead)
def get_friend_by_short_uid(
    short_uid: str,
    account: Account = Depends(get_account_by_id),
    db: Session = Depends(get_db),
) -> FriendRead:
    """Look a friend up by the short UID carried in form links."""
    friend = FriendService(db).get_friend_by_short_uid(account.id, short_uid)
    if friend is None:
        raise HTTPException(status_code=404, detail="Friend not found")
    return friend


@router.get("/friends/{friend_id}", response_model=FriendRead)
def get_friend(friend: Friend = Depends(get_friend_by_id)) -> FriendRead:
    return friend


@router.delete("/friends/{friend_id}", status_code=204)
def delete_friend(
    friend_id: UUID,
    db: Session = Depends(get_db),
) -> None:
    """Soft delete the friend; their active enrollments end as cascaded."""
    if not FriendService(db).delete_friend(friend_id):
        raise HTTPException(status_code=404, detail="Friend not found")


@router.get("/friends/{friend_id}/enrollments", response_model=List[EnrollmentRead])
def list_friend_enrollments(
    friend: Friend = Depends(get_friend_by_id),
    db: Session = Depends(get_db),
) -> List[EnrollmentRead]:
    return EnrollmentManager(db).get_friend_enrollments(friend.id)


@router.post(
    "/friends/{friend_id}/enrollments", response_model=EnrollmentRead, status_code=201
)
def assign_scenario(
    data: FriendScenarioAssign,
    friend: Friend = Depends(get_friend_by_id),
    db: Session = Depends(get_db),
) -> EnrollmentRead:
    """Manually put a friend into a scenario; reset=true restarts an active run."""
    source = EnrollmentSource.MANUAL_REASSIGN if data.reset else EnrollmentSource.MANUAL
    return EnrollmentManager(db).enroll(friend.id, data.scenario_id, source)


@router.post("/friends/{friend_id}/restore", response_model=EnrollmentRead)
def restore_scenario(
    data: FriendRestore,
    friend: Friend = Depends(get_friend_by_id),
    db: Session = Depends(get_db),
) -> EnrollmentRead:
    """Return a friend to a scenario they left, ending whatever they are in now."""
    return EnrollmentManager(db).restore(friend.id, data.scenario_id)
