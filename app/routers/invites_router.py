"""
Invite routes.

GET /invite/{code} is the public link handed out to prospects: it records
the click and redirects to the LINE friend-add URL. The LIFF page opened
after adding the friend then POSTs /invite/{code}/redeem.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.invite_code import InviteCode
from app.routers.utils.dependencies import get_invite_code_by_id
from app.schemas.invite import (
    InviteCodeRead,
    InviteRedeemRequest,
    InviteRedeemResponse,
)
from app.services.invite_service import InviteService

router = APIRouter(
    prefix="",
    tags=["invites"],
    responses={404: {"description": "Not found"}},
)


@router.post("/invite-codes/{invite_code_id}/deactivate", response_model=InviteCodeRead)
def deactivate_invite_code(
    invite: InviteCode = Depends(get_invite_code_by_id),
    db: Session = Depends(get_db),
) -> InviteCodeRead:
    return InviteService(db).deactivate_invite_code(invite.id)


@router.get("/invite/{code}", status_code=302)
def follow_invite_link(
    code: str,
    request: Request,
    db: Session = Depends(get_db),
) -> RedirectResponse:
    svc = InviteService(db)
    url = svc.build_friend_add_url(code)
    svc.record_click(
        code,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    )
    return RedirectResponse(url=url, status_code=302)


@router.post("/invite/{code}/redeem", response_model=InviteRedeemResponse)
def redeem_invite(
    code: str,
    data: InviteRedeemRequest,
    db: Session = Depends(get_db),
) -> InviteRedeemResponse:
    enrollment = InviteService(db).redeem_and_enroll(
        code, data.line_user_id, display_name=data.display_name
    )
    return InviteRedeemResponse(
        enrollment_id=enrollment.id,
        friend_id=enrollment.friend_id,
        scenario_id=enrollment.scenario_id,
        status=enrollment.status,
    )
