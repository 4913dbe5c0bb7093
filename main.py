#main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.gateway.base import PaymentGateway
from app.gateway.factory import close_gateways, get_gateway
from app.notify.pool import NotificationPool
from app.notify.webhook import BatchNotifier, WebhookNotifier
from app.payouts.engine import PayoutOrchestrator
from app.payouts.errors import NotFoundError, StorageError
from app.payouts.repository import PayoutRepository, PostgresPayoutRepository
from app.workers.batch_runner import BatchRunner
from db import close_pool
from middleware import RequestContextMiddleware
from routes.fx import router as fx_router
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.payouts import router as payouts_router
from services.observability import configure_logging
from settings import settings, validate_env_settings

logger = logging.getLogger("waya")


def create_app(
    *,
    repo: Optional[PayoutRepository] = None,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[BatchNotifier] = None,
    recover_on_startup: bool = True,
) -> FastAPI:
    """
    Wires the orchestration engine behind FastAPI. Collaborators default to
    Postgres, the gateway selected by GATEWAY_MODE and the BetaWorkOS webhook.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL)
        validate_env_settings()

        owns_db = repo is None
        owns_gateway = gateway is None
        payout_repo = repo if repo is not None else PostgresPayoutRepository()

        notifications = NotificationPool(
            notifier if notifier is not None else WebhookNotifier(),
            max_in_flight=settings.NOTIFY_MAX_IN_FLIGHT,
            logger=logging.getLogger("waya.notify"),
        )
        orchestrator = PayoutOrchestrator(
            payout_repo,
            gateway if gateway is not None else get_gateway(),
            notifications,
            logger=logging.getLogger("waya.payouts"),
            concurrency=settings.PAYOUT_CONCURRENCY,
            source_currency=settings.SOURCE_CURRENCY,
        )
        runner = BatchRunner(
            orchestrator,
            max_workers=settings.BATCH_RUNNER_WORKERS,
            logger=logging.getLogger("waya.worker"),
        )

        app.state.orchestrator = orchestrator
        app.state.batch_runner = runner
        app.state.notifications = notifications

        if recover_on_startup:
            try:
                resumed = runner.recover()
                if resumed:
                    logger.info("resumed %s unfinished batch(es)", resumed)
            except StorageError:
                logger.exception("startup recovery failed; unfinished batches stay queued in storage")

        logger.info("Waya API started gateway_mode=%s concurrency=%s", settings.GATEWAY_MODE, settings.PAYOUT_CONCURRENCY)
        try:
            yield
        finally:
            runner.shutdown(timeout=settings.SHUTDOWN_DRAIN_TIMEOUT_S)
            notifications.shutdown(timeout=settings.SHUTDOWN_DRAIN_TIMEOUT_S)
            if owns_gateway:
                close_gateways()
            if owns_db:
                close_pool()
            logger.info("Waya API stopped")

    app = FastAPI(title="Waya API (Afriex Orchestrator)", version="1.0.0", lifespan=lifespan)

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------

    app.include_router(health_router)
    app.include_router(payouts_router)
    app.include_router(fx_router)
    app.include_router(metrics_router)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": "Not found"})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("storage error path=%s err=%s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Storage error"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
