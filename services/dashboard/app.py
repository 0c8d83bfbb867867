"""
FastAPI application for the payment monitoring dashboard.

This module creates and configures the FastAPI application with:
- CORS configuration for cross-origin requests
- Router registration for API endpoints
- Lifespan events for datastore and event feed connections
- Error mapping from monitoring failures to HTTP status codes

The dashboard runs on port 8050 by default and provides:
- REST API: /api/events, /api/health, /api/metrics, /api/dashboard,
  /api/status and /api/detection/run

The wired components live on ``app.state.services``. Tests pass their own
MonitoringServices to ``create_app`` and no connections are opened.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.client.monitoring_client import EventNotFoundError, MonitoringReadError
from src.config.loader import ConfigLoader
from src.scheduler.circuit_breaker import CircuitBreakerError
from src.services.container import MonitoringServices, build_services
from src.storage.postgres_client import PostgresClient, PostgresClientError
from src.storage.redis_client import RedisClient, RedisClientError

logger = structlog.get_logger(__name__)


async def _connect_services(config_path: str) -> Optional[MonitoringServices]:
    """Connect both stores and wire the services; None without a datastore."""
    config = ConfigLoader(config_path).load()

    postgres_client = PostgresClient(config.postgres)
    try:
        await postgres_client.connect()
    except PostgresClientError as e:
        logger.warning(
            "postgres_connection_failed",
            error=str(e),
            message="Dashboard will run without monitoring data",
        )
        return None

    redis_client: Optional[RedisClient] = RedisClient(
        config.redis,
        channel=config.features.subscriptions.channel,
    )
    try:
        await redis_client.connect()
    except RedisClientError as e:
        logger.warning(
            "redis_connection_failed",
            error=str(e),
            message="Dashboard subscriptions will poll the datastore",
        )
        await redis_client.disconnect()
        redis_client = None

    services = build_services(config, postgres_client, redis_client)
    if config.features.api.run_scheduler:
        await services.scheduler.start()
    return services


async def _close_services(services: MonitoringServices) -> None:
    await services.shutdown()

    for store in (services.feed, services.datastore):
        disconnect = getattr(store, "disconnect", None)
        if disconnect is None:
            continue
        try:
            await disconnect()
        except Exception as e:
            logger.error("store_disconnect_error", error=str(e))


def create_app(services: Optional[MonitoringServices] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Pre-wired services. When omitted, the lifespan loads the
            configuration from CONFIG_PATH and connects the stores.

    Returns:
        FastAPI: Configured FastAPI application instance.

    Example:
        >>> app = create_app()
        >>> import uvicorn
        >>> uvicorn.run(app, host="0.0.0.0", port=8050)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("dashboard_starting")

        owned = services is None
        if owned:
            app.state.services = await _connect_services(os.getenv("CONFIG_PATH", "config"))
        else:
            app.state.services = services

        logger.info("dashboard_ready", services_ready=app.state.services is not None)

        yield

        logger.info("dashboard_shutting_down")
        if app.state.services is not None:
            if owned:
                await _close_services(app.state.services)
            else:
                await app.state.services.shutdown()
        logger.info("dashboard_shutdown_complete")

    app = FastAPI(
        title="Payment Monitoring Dashboard",
        description="Anomaly detection and health monitoring for NFC cashless payments",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services

    cors_origins = ["*"]
    if services is not None:
        cors_origins = services.config.features.api.cors_origins

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EventNotFoundError)
    async def handle_not_found(request: Request, exc: EventNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(MonitoringReadError)
    async def handle_read_error(request: Request, exc: MonitoringReadError) -> JSONResponse:
        logger.error("api_read_error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(CircuitBreakerError)
    async def handle_breaker_error(request: Request, exc: CircuitBreakerError) -> JSONResponse:
        logger.warning(
            "api_detection_rejected",
            path=request.url.path,
            breaker=exc.name,
            state=exc.state.value,
        )
        return JSONResponse(
            status_code=503,
            content={"detail": str(exc), "circuit_breaker_state": exc.state.value},
        )

    # Register API routers
    from services.dashboard.api.dashboard import router as dashboard_router
    from services.dashboard.api.events import router as events_router
    from services.dashboard.api.health import router as health_router
    from services.dashboard.api.metrics import router as metrics_router
    from services.dashboard.api.status import router as status_router

    app.include_router(events_router, prefix="/api", tags=["Events"])
    app.include_router(health_router, prefix="/api", tags=["Health"])
    app.include_router(metrics_router, prefix="/api", tags=["Metrics"])
    app.include_router(dashboard_router, prefix="/api", tags=["Dashboard"])
    app.include_router(status_router, prefix="/api", tags=["Status"])

    logger.info("fastapi_app_created")

    return app
