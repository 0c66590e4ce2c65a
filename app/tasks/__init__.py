# Import celery app first
from app.infra.celery_app import celery_app

# Initialize logging configuration for Celery workers
from app.infra.logging_config import LoggingConfig
from app.tasks.delivery_tasks import (
    execute_delivery_attempt_task,
    run_delivery_tick_task,
)

LoggingConfig()  # Initialize logging

__all__ = [
    "celery_app",
    "execute_delivery_attempt_task",
    "run_delivery_tick_task",
]
