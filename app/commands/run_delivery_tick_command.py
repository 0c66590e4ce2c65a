"""
Command running one scheduler/executor tick.

Used by the Celery beat task and by the operator trigger endpoint.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings
from app.infra.logging_config import get_logger
from app.schemas.enrollment import TickSummary
from app.services.delivery_executor import DeliveryExecutor, TransportFactory
from app.services.delivery_scheduler import DeliveryScheduler

logger = get_logger("delivery_tick")


class RunDeliveryTickCommand:
    """cancel_stale -> schedule_missing -> execute due attempts."""

    def __init__(
        self,
        session_factory: sessionmaker,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = get_settings()
        self.executor = DeliveryExecutor(
            session_factory,
            transport_factory=transport_factory,
            settings=self.settings,
        )

    async def execute(self, now: Optional[datetime] = None) -> TickSummary:
        summary = TickSummary()
        batch_size = self.settings.delivery_batch_size

        db = self.session_factory()
        try:
            scheduler = DeliveryScheduler(db)
            summary.cancelled = self._guarded(
                db, summary, "cancel_stale", scheduler.cancel_stale
            )
            summary.scheduled = self._guarded(
                db, summary, "schedule_missing", scheduler.schedule_missing
            )
            due_ids = [a.id for a in scheduler.due_attempts(now=now, limit=batch_size)]
            db.commit()
        finally:
            db.close()

        if due_ids:
            outcomes = await self.executor.execute_many(due_ids)
            summary.executed = len(outcomes)
            counts = Counter(str(o) if o is not None else "error" for o in outcomes.values())
            summary.outcomes = dict(counts)
            for attempt_id, outcome in outcomes.items():
                if outcome is None:
                    summary.errors.append({"attempt_id": str(attempt_id), "stage": "execute"})

        logger.info(
            "Delivery tick: cancelled=%d scheduled=%d executed=%d outcomes=%s",
            summary.cancelled,
            summary.scheduled,
            summary.executed,
            summary.outcomes,
        )
        return summary

    def _guarded(self, db: Session, summary: TickSummary, stage: str, fn) -> int:
        # one failing stage must not stop the rest of the tick
        try:
            return fn()
        except Exception as e:
            db.rollback()
            logger.exception("Delivery tick stage %s failed", stage)
            summary.errors.append({"stage": stage, "error": repr(e)})
            return 0
