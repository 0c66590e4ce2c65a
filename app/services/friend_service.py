"""Friend registry: canonical LINE contact identity per account."""

from __future__ import annotations

import logging
import secrets
import string
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from app.models.friend import Friend
from app.models.mixins import utcnow
from app.services.soft_delete_service import SoftDeleteService
from app.utils.db.filtering import apply_filters

logger = logging.getLogger(__name__)

SHORT_UID_LENGTH = 6
SHORT_UID_ALPHABET = string.ascii_uppercase + string.digits
_MAX_CREATE_ATTEMPTS = 5


def generate_short_uid() -> str:
    return "".join(secrets.choice(SHORT_UID_ALPHABET) for _ in range(SHORT_UID_LENGTH))


class FriendService(SoftDeleteService[Friend]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Friend)

    def get_friend(self, friend_id: UUID) -> Optional[Friend]:
        return self.db.query(Friend).filter(Friend.id == friend_id).first()

    def get_friend_by_line_user_id(
        self, account_id: UUID, line_user_id: str, include_deleted: bool = False
    ) -> Optional[Friend]:
        query = self.db.query(Friend)
        if include_deleted:
            query = query.execution_options(include_deleted=True)
        return query.filter(
            Friend.account_id == account_id,
            Friend.line_user_id == line_user_id,
        ).first()

    def get_friend_by_short_uid(
        self, account_id: UUID, short_uid: str
    ) -> Optional[Friend]:
        """Case-insensitive lookup of the 6-char alias."""
        if not short_uid:
            return None
        return (
            self.db.query(Friend)
            .filter(
                Friend.account_id == account_id,
                Friend.short_uid == short_uid.strip().upper(),
            )
            .first()
        )

    def get_friends_query(
        self, account_id: UUID, filters: Optional[Dict[str, Any]] = None
    ) -> Query[Friend]:
        query = self.db.query(Friend).filter(Friend.account_id == account_id)
        if filters:
            query = apply_filters(query, Friend, filters)
        return query.order_by(Friend.created_at.desc())

    def get_friends(
        self, account_id: UUID, skip: int = 0, limit: int = 100
    ) -> List[Friend]:
        return self.get_friends_query(account_id).offset(skip).limit(limit).all()

    def get_or_create_friend(
        self,
        account_id: UUID,
        line_user_id: str,
        display_name: Optional[str] = None,
        picture_url: Optional[str] = None,
    ) -> Tuple[Friend, bool]:
        """
        Return (friend, created) for the LINE user, creating it on first contact.

        A soft-deleted friend is revived rather than duplicated. A concurrent
        creator losing the unique race re-reads the winner's row.
        """
        for _ in range(_MAX_CREATE_ATTEMPTS):
            friend = self.get_friend_by_line_user_id(
                account_id, line_user_id, include_deleted=True
            )
            if friend is not None:
                changed = self._refresh_profile(friend, display_name, picture_url)
                if friend.deleted_at is not None:
                    friend.deleted_at = None
                    friend.is_following = True
                    friend.followed_at = utcnow()
                    friend.unfollowed_at = None
                    changed = True
                if changed:
                    self.db.commit()
                    self.db.refresh(friend)
                return friend, False

            friend = Friend(
                account_id=account_id,
                line_user_id=line_user_id,
                display_name=display_name,
                picture_url=picture_url,
                short_uid=generate_short_uid(),
                is_following=True,
                followed_at=utcnow(),
            )
            self.db.add(friend)
            try:
                self.db.commit()
            except IntegrityError:
                # lost a race on line_user_id, or short_uid collided; re-read or retry
                self.db.rollback()
                continue
            self.db.refresh(friend)
            logger.info(
                "Friend created account_id=%s friend_id=%s", account_id, friend.id
            )
            return friend, True
        raise RuntimeError(
            f"Could not create friend for {line_user_id} after {_MAX_CREATE_ATTEMPTS} attempts"
        )

    def _refresh_profile(
        self,
        friend: Friend,
        display_name: Optional[str],
        picture_url: Optional[str],
    ) -> bool:
        changed = False
        if display_name and display_name != friend.display_name:
            friend.display_name = display_name
            changed = True
        if picture_url and picture_url != friend.picture_url:
            friend.picture_url = picture_url
            changed = True
        return changed

    def update_profile(
        self,
        friend_id: UUID,
        display_name: Optional[str] = None,
        picture_url: Optional[str] = None,
    ) -> Optional[Friend]:
        friend = self.get_friend(friend_id)
        if friend is None:
            return None
        if self._refresh_profile(friend, display_name, picture_url):
            self.db.commit()
            self.db.refresh(friend)
        return friend

    def mark_followed(self, friend: Friend) -> Friend:
        friend.is_following = True
        friend.followed_at = utcnow()
        friend.unfollowed_at = None
        self.db.commit()
        self.db.refresh(friend)
        return friend

    def mark_unfollowed(self, friend: Friend) -> Friend:
        friend.is_following = False
        friend.unfollowed_at = utcnow()
        self.db.commit()
        self.db.refresh(friend)
        return friend

    def delete_friend(self, friend_id: UUID) -> bool:
        """Soft delete the friend and terminate its active enrollments."""
        from app.services.enrollment_manager import EnrollmentManager

        if self.get_friend(friend_id) is None:
            return False
        EnrollmentManager(self.db).terminate_for_friend(friend_id)
        return self.delete_record(friend_id)
