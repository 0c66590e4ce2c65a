"""
Service for the enrollment status change log.

Events are immutable; only insert. Each record is also emitted as a
structured log line so downstream consumers can tail either source.
"""

from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy.orm import Query, Session

from app.infra.logging_config import get_logger
from app.models.enrollment import Enrollment
from app.models.enrollment_event import EnrollmentEvent

logger = get_logger("enrollment_events")


class EnrollmentEventService:
    """Create and read enrollment events. No update/delete (immutable)."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        enrollment: Enrollment,
        event_type: str,
        reason: Optional[str] = None,
        source: Optional[str] = None,
        detail: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> EnrollmentEvent:
        """Add an event to the current transaction; the caller commits."""
        event = EnrollmentEvent(
            enrollment_id=enrollment.id,
            friend_id=enrollment.friend_id,
            scenario_id=enrollment.scenario_id,
            event_type=str(event_type),
            reason=str(reason) if reason else None,
            source=str(source) if source else None,
            detail=detail,
            metadata_=metadata or {},
        )
        self.db.add(event)
        logger.info(
            "enrollment %s",
            event_type,
            extra={
                "enrollment_id": str(enrollment.id),
                "friend_id": str(enrollment.friend_id),
                "scenario_id": str(enrollment.scenario_id),
                "event_type": str(event_type),
                "reason": str(reason) if reason else None,
                "source": str(source) if source else None,
            },
        )
        return event

    def get_events_query(
        self,
        enrollment_id: Optional[UUID] = None,
        friend_id: Optional[UUID] = None,
        scenario_id: Optional[UUID] = None,
    ) -> Query[EnrollmentEvent]:
        q = self.db.query(EnrollmentEvent)
        if enrollment_id is not None:
            q = q.filter(EnrollmentEvent.enrollment_id == enrollment_id)
        if friend_id is not None:
            q = q.filter(EnrollmentEvent.friend_id == friend_id)
        if scenario_id is not None:
            q = q.filter(EnrollmentEvent.scenario_id == scenario_id)
        return q.order_by(EnrollmentEvent.created_at.asc())

    def get_events(
        self,
        enrollment_id: Optional[UUID] = None,
        friend_id: Optional[UUID] = None,
        scenario_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[EnrollmentEvent]:
        return (
            self.get_events_query(enrollment_id, friend_id, scenario_id)
            .offset(skip)
            .limit(limit)
            .all()
        )
