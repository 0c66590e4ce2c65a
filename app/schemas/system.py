from typing import Optional

from pydantic import BaseModel


class AppGroup(BaseModel):
    name: str
    environment: str
    log_level: str
    port: int
    public_base_url: str


class DatabaseGroup(BaseModel):
    database_host: Optional[str] = None
    database_driver: Optional[str] = None
    pool_size: int
    max_overflow: int


class RedisGroup(BaseModel):
    enabled: bool
    host: str
    port: int


class DeliveryGroup(BaseModel):
    tick_interval_seconds: int
    batch_size: int
    concurrency: int
    max_retries: int
    retry_base_seconds: int
    retry_max_seconds: int
    lease_seconds: int
    line_api_timeout_seconds: float
    line_push_rate_limit_per_minute: Optional[int] = None


class SystemSettingsGrouped(BaseModel):
    app: AppGroup
    database: DatabaseGroup
    redis: RedisGroup
    delivery: DeliveryGroup


class HealthRead(BaseModel):
    status: str
    database: str
