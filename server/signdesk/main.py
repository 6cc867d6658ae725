from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signdesk.api.dependencies.services import close_integrations, get_notifier
from signdesk.api.routes import auth, contracts, health, signatures, webhooks
from signdesk.core.config import get_settings
from signdesk.core.errors import SigningError
from signdesk.core.logging import configure_logging, get_logger
from signdesk.db.session import async_session_factory, init_models
from signdesk.services.background import PeriodicJob
from signdesk.services.expiration_sweeper import ExpirationSweeper
from signdesk.services.notification_service import NotificationRelay


configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:  # pragma: no cover - side effect
    settings = get_settings()
    await init_models()
    jobs: list[PeriodicJob] = []
    if settings.expiration_sweep_enabled:
        jobs.append(
            ExpirationSweeper(
                async_session_factory,
                interval_seconds=settings.expiration_sweep_interval_seconds,
                include_in_progress=settings.expire_in_progress_requests,
            )
        )
    if settings.notification_dispatch_enabled:
        jobs.append(
            NotificationRelay(
                async_session_factory,
                get_notifier(),
                interval_seconds=settings.notification_dispatch_interval_seconds,
                max_attempts=settings.notification_max_attempts,
                retry_delay_seconds=settings.notification_retry_delay_seconds,
            )
        )
    for job in jobs:
        job.start()
    logger.info("application.startup", environment=settings.environment)
    try:
        yield
    finally:
        for job in jobs:
            await job.stop()
        await close_integrations()
        logger.info("application.shutdown")


async def signing_error_handler(request: Request, exc: SigningError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request.failed",
        path=request.url.path,
        error=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_application() -> FastAPI:
    settings = get_settings()
    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    application.include_router(health.router)
    application.include_router(auth.router)
    application.include_router(contracts.router)
    application.include_router(signatures.router)
    application.include_router(webhooks.router)
    application.add_exception_handler(SigningError, signing_error_handler)

    if settings.allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.allowed_origins],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    return application


app = create_application()
