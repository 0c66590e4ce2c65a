"""Delivery API: run a scheduler tick on demand."""

from fastapi import APIRouter

from app.commands.run_delivery_tick_command import RunDeliveryTickCommand
from app.db import db_manager
from app.schemas.enrollment import TickSummary

router = APIRouter(prefix="/delivery", tags=["delivery"])


@router.post("/tick", response_model=TickSummary)
async def run_delivery_tick() -> TickSummary:
    """Same work as the beat-scheduled task, run inline."""
    command = RunDeliveryTickCommand(db_manager.session_factory)
    return await command.execute()
