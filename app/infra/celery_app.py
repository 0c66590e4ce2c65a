from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "linestep",
    broker=settings.broker_url,
    backend=settings.result_backend_url,
    include=["app.tasks.delivery_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=1800,  # 30 minutes
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_always_eager=settings.is_test,
)

celery_app.conf.beat_schedule = {
    "run-delivery-tick": {
        "task": "app.tasks.delivery_tasks.run_delivery_tick_task",
        "schedule": float(settings.delivery_tick_interval_seconds),
    },
}
