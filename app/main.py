"""FastAPI application entry point."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi_pagination import add_pagination

from app.config import get_settings
from app.exceptions import StepDeliveryError
from app.infra.logging_config import LoggingConfig, get_logger
from app.routers import (
    accounts_router,
    credentials_router,
    delivery_router,
    enrollments_router,
    friends_router,
    invites_router,
    scenarios_router,
    system,
    webhooks,
)

logger = get_logger("main")


async def step_delivery_error_handler(
    request: Request, exc: StepDeliveryError
) -> JSONResponse:
    logger.info(
        "%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app(testing: bool = False) -> FastAPI:
    LoggingConfig()
    settings = get_settings()

    app = FastAPI(
        title="LINE Step Delivery API",
        description="Step-scenario delivery for LINE official accounts",
        docs_url=None if settings.is_production and not testing else "/docs",
    )

    app.add_exception_handler(StepDeliveryError, step_delivery_error_handler)

    app.include_router(accounts_router.router)
    app.include_router(credentials_router.router)
    app.include_router(scenarios_router.router)
    app.include_router(friends_router.router)
    app.include_router(enrollments_router.router)
    app.include_router(invites_router.router)
    app.include_router(delivery_router.router)
    app.include_router(webhooks.router)
    app.include_router(system.router)

    add_pagination(app)
    return app


app = create_app()
