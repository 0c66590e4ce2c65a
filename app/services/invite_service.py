"""Invite resolver: invite codes that map a friend-add link to a scenario."""

from __future__ import annotations

import logging
import secrets
import string
from typing import List, Optional
from urllib.parse import quote
from uuid import UUID

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from app.constants.enrollment import EnrollmentSource
from app.exceptions import CodeExhausted, InvalidCode
from app.models.enrollment import Enrollment
from app.models.invite_code import InviteClick, InviteCode
from app.models.mixins import utcnow
from app.models.scenario import Scenario
from app.schemas.invite import EnrollmentRequest, InviteCodeCreate, InviteResolution
from app.services.enrollment_manager import EnrollmentManager
from app.services.friend_service import FriendService
from app.services.scenario_service import ScenarioService

logger = logging.getLogger(__name__)

GENERATED_CODE_LENGTH = 12
CODE_ALPHABET = string.ascii_letters + string.digits
LINE_FRIEND_ADD_URL = "https://line.me/R/ti/p/{bot_id}"


def generate_invite_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(GENERATED_CODE_LENGTH))


def _is_exhausted(invite: InviteCode) -> bool:
    return invite.max_usage is not None and invite.usage_count >= invite.max_usage


class InviteService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.scenarios = ScenarioService(db)

    def get_invite_code(self, invite_code_id: UUID) -> Optional[InviteCode]:
        return self.db.query(InviteCode).filter(InviteCode.id == invite_code_id).first()

    def get_by_code(self, code: str) -> Optional[InviteCode]:
        return self.db.query(InviteCode).filter(InviteCode.code == code).first()

    def get_invite_codes_query(self, scenario_id: UUID) -> Query[InviteCode]:
        return (
            self.db.query(InviteCode)
            .filter(InviteCode.scenario_id == scenario_id)
            .order_by(InviteCode.created_at.desc())
        )

    def list_invite_codes(self, scenario_id: UUID) -> List[InviteCode]:
        return self.get_invite_codes_query(scenario_id).all()

    def create_invite_code(self, scenario_id: UUID, data: InviteCodeCreate) -> InviteCode:
        self.scenarios.require_scenario(scenario_id)
        invite = InviteCode(
            scenario_id=scenario_id,
            code=data.code or generate_invite_code(),
            max_usage=data.max_usage,
            is_active=True,
            usage_count=0,
        )
        self.db.add(invite)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ValueError(f"Invite code '{invite.code}' already exists") from e
        self.db.refresh(invite)
        return invite

    def deactivate_invite_code(self, invite_code_id: UUID) -> Optional[InviteCode]:
        invite = self.get_invite_code(invite_code_id)
        if invite is None:
            return None
        invite.is_active = False
        self.db.commit()
        self.db.refresh(invite)
        return invite

    def resolve(self, code: str) -> InviteResolution:
        """
        Active code whose scenario still exists -> (scenario_id, account_id).
        A code switched off by reaching max_usage raises CodeExhausted; an
        unknown or manually deactivated one raises InvalidCode.
        """
        row = (
            self.db.query(InviteCode, Scenario)
            .join(Scenario, InviteCode.scenario_id == Scenario.id)
            .filter(InviteCode.code == code)
            .first()
        )
        if row is None:
            raise InvalidCode(f"Invite code '{code}' is invalid")
        invite, scenario = row
        if not invite.is_active:
            if _is_exhausted(invite):
                raise CodeExhausted(f"Invite code '{code}' has reached its usage limit")
            raise InvalidCode(f"Invite code '{code}' is invalid")
        return InviteResolution(scenario_id=scenario.id, account_id=scenario.account_id)

    def redeem(self, code: str, friend_id: UUID, commit: bool = True) -> EnrollmentRequest:
        """
        Consume one use of the code with a single guarded UPDATE, so the
        usage count can never exceed max_usage under concurrency. The use
        that reaches max_usage also deactivates the code.
        """
        resolution = self.resolve(code)
        updated = (
            self.db.query(InviteCode)
            .filter(
                InviteCode.code == code,
                InviteCode.is_active.is_(True),
                (InviteCode.max_usage.is_(None))
                | (InviteCode.usage_count < InviteCode.max_usage),
            )
            .update(
                {
                    InviteCode.usage_count: InviteCode.usage_count + 1,
                    InviteCode.is_active: case(
                        (InviteCode.max_usage.is_(None), True),
                        else_=InviteCode.usage_count + 1 < InviteCode.max_usage,
                    ),
                    InviteCode.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            self.db.rollback()
            invite = self.get_by_code(code)
            if invite is not None and _is_exhausted(invite):
                raise CodeExhausted(f"Invite code '{code}' has reached its usage limit")
            raise InvalidCode(f"Invite code '{code}' is invalid")
        if commit:
            self.db.commit()
        logger.info("Invite code %s redeemed by friend %s", code, friend_id)
        return EnrollmentRequest(
            friend_id=friend_id,
            scenario_id=resolution.scenario_id,
            source=EnrollmentSource.INVITE,
            invite_code=code,
        )

    def redeem_and_enroll(
        self,
        code: str,
        line_user_id: str,
        display_name: Optional[str] = None,
    ) -> Enrollment:
        """
        Public redeem flow: resolve the code's account, get or create the
        friend, consume a use and enroll, in one transaction so a rejected
        enrollment does not use up the code. A friend already active in the
        scenario gets the existing enrollment back without consuming a use.
        """
        resolution = self.resolve(code)
        friend, _ = FriendService(self.db).get_or_create_friend(
            resolution.account_id, line_user_id, display_name=display_name
        )
        manager = EnrollmentManager(self.db)
        existing = manager.get_active_enrollment(friend.id, resolution.scenario_id)
        if existing is not None:
            return existing

        request = self.redeem(code, friend.id, commit=False)
        try:
            return manager.enroll(
                request.friend_id,
                request.scenario_id,
                request.source,
                invite_code=request.invite_code,
            )
        except Exception:
            self.db.rollback()
            raise

    def record_click(
        self,
        code: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        referer: Optional[str] = None,
    ) -> Optional[InviteClick]:
        invite = self.get_by_code(code)
        if invite is None:
            return None
        click = InviteClick(
            invite_code_id=invite.id,
            ip=ip,
            user_agent=(user_agent or "")[:512] or None,
            referer=(referer or "")[:1024] or None,
        )
        self.db.add(click)
        self.db.commit()
        return click

    def count_clicks(self, invite_code_id: UUID) -> int:
        return (
            self.db.query(InviteClick)
            .filter(InviteClick.invite_code_id == invite_code_id)
            .count()
        )

    def build_friend_add_url(self, code: str) -> str:
        """LINE friend-add URL carrying the code as ?state=."""
        resolution = self.resolve(code)
        scenario = self.scenarios.require_scenario(resolution.scenario_id)
        bot_id = scenario.account.line_bot_id
        if not bot_id:
            raise InvalidCode(f"Invite code '{code}' belongs to an account without a LINE bot id")
        return f"{LINE_FRIEND_ADD_URL.format(bot_id=bot_id)}?state={quote(code)}"
