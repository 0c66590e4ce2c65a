"""Generic base for services whose models carry SoftDeleteMixin."""

from __future__ import annotations

from typing import Generic, List, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.mixins import SoftDeleteMixin

T = TypeVar("T", bound=SoftDeleteMixin)


class SoftDeleteService(Generic[T]):
    """delete_record / restore_record / get_deleted for one model class."""

    def __init__(self, db: Session, model_class: Type[T]) -> None:
        self.db = db
        self.model_class = model_class

    def _query_including_deleted(self):
        return self.db.query(self.model_class).execution_options(include_deleted=True)

    def delete_record(self, record_id: UUID) -> bool:
        """Soft delete a record. Returns False if it does not exist."""
        record = (
            self.db.query(self.model_class)
            .filter(self.model_class.id == record_id)
            .first()
        )
        if record is None:
            return False
        record.soft_delete()
        self.db.commit()
        return True

    def restore_record(self, record_id: UUID) -> bool:
        record = (
            self._query_including_deleted()
            .filter(self.model_class.id == record_id)
            .first()
        )
        if record is None or record.deleted_at is None:
            return False
        record.deleted_at = None
        self.db.commit()
        return True

    def get_deleted(self, record_id: UUID) -> Optional[T]:
        return (
            self._query_including_deleted()
            .filter(
                self.model_class.id == record_id,
                self.model_class.deleted_at.isnot(None),
            )
            .first()
        )

    def list_deleted(self, skip: int = 0, limit: int = 100) -> List[T]:
        return (
            self._query_including_deleted()
            .filter(self.model_class.deleted_at.isnot(None))
            .offset(skip)
            .limit(limit)
            .all()
        )
