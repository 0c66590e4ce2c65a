from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import get_db
from app.infra.logging_config import get_logger
from app.schemas.system import (
    AppGroup,
    DatabaseGroup,
    DeliveryGroup,
    HealthRead,
    RedisGroup,
    SystemSettingsGrouped,
)

logger = get_logger("system")

router = APIRouter(
    prefix="/system",
    tags=["system"],
    responses={404: {"description": "Not found"}},
)


@router.get("/health", response_model=HealthRead)
def health(db: Session = Depends(get_db)) -> HealthRead:
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning("Health check database error: %s", e)
        database = "unavailable"
    return HealthRead(status="ok" if database == "ok" else "degraded", database=database)


@router.get("/settings", response_model=SystemSettingsGrouped)
def get_system_settings() -> SystemSettingsGrouped:
    """Return grouped, non-sensitive system configuration settings for troubleshooting."""
    s = get_settings()

    # Extract safe database info only (no credentials)
    url_obj = s.database_url_obj
    database_group = DatabaseGroup(
        database_host=url_obj.host,
        database_driver=url_obj.get_backend_name(),
        pool_size=s.database_pool_size,
        max_overflow=s.database_max_overflow,
    )

    return SystemSettingsGrouped(
        app=AppGroup(
            name=s.app_name,
            environment=s.environment,
            log_level=s.log_level,
            port=s.port,
            public_base_url=s.public_base_url,
        ),
        database=database_group,
        redis=RedisGroup(enabled=s.redis_enabled, host=s.redis_host, port=s.redis_port),
        delivery=DeliveryGroup(
            tick_interval_seconds=s.delivery_tick_interval_seconds,
            batch_size=s.delivery_batch_size,
            concurrency=s.delivery_concurrency,
            max_retries=s.delivery_max_retries,
            retry_base_seconds=s.delivery_retry_base_seconds,
            retry_max_seconds=s.delivery_retry_max_seconds,
            lease_seconds=s.delivery_lease_seconds,
            line_api_timeout_seconds=s.line_api_timeout_seconds,
            line_push_rate_limit_per_minute=s.line_push_rate_limit_per_minute,
        ),
    )
