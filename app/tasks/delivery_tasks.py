"""Celery tasks driving step delivery."""

from __future__ import annotations

import asyncio
from typing import Any, Optional
from uuid import UUID

from app.commands.run_delivery_tick_command import RunDeliveryTickCommand
from app.db import db_manager
from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.services.delivery_executor import DeliveryExecutor

logger = get_logger("delivery_tasks")


@celery_app.task(name="app.tasks.delivery_tasks.run_delivery_tick_task")
def run_delivery_tick_task() -> dict[str, Any]:
    """
    One scheduler tick: skip stale attempts, schedule missing ones and send
    everything due. Scheduled by beat every DELIVERY_TICK_INTERVAL_SECONDS.
    """
    command = RunDeliveryTickCommand(db_manager.session_factory)
    summary = asyncio.run(command.execute())
    return summary.model_dump()


@celery_app.task(name="app.tasks.delivery_tasks.execute_delivery_attempt_task")
def execute_delivery_attempt_task(attempt_id_str: str) -> Optional[str]:
    """Execute a single attempt out of band (e.g. an operator retry)."""
    try:
        attempt_id = UUID(attempt_id_str)
    except ValueError:
        logger.warning("Invalid attempt_id for delivery: %s", attempt_id_str)
        return None
    executor = DeliveryExecutor(db_manager.session_factory)
    outcome = asyncio.run(executor.execute(attempt_id))
    return str(outcome)
