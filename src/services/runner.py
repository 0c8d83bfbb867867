"""
Base class for long-running service entry points.

A ServiceRunner loads configuration, configures logging, connects the
PostgreSQL datastore and the Redis event feed, wires the monitoring
components and then hands control to the subclass:

    _initialize -> _run -> _cleanup

SIGINT and SIGTERM set ``shutdown_event``; subclasses watch it in their
loops. Redis is optional: if it cannot be reached the service runs without
push delivery and subscriptions poll the datastore instead.

Example:
    >>> class MonitoringService(ServiceRunner):
    ...     @property
    ...     def service_name(self) -> str:
    ...         return "monitoring"
    ...
    ...     async def _run(self) -> None:
    ...         await self.shutdown_event.wait()
"""

import asyncio
import signal
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from src.config.loader import ConfigLoader
from src.config.models import AppConfig
from src.services.container import MonitoringServices, build_services
from src.services.logging import setup_logging
from src.storage.postgres_client import PostgresClient
from src.storage.redis_client import RedisClient, RedisClientError


class ServiceRunner(ABC):
    """
    Lifecycle skeleton shared by the service entry points.

    Attributes:
        config_path: Directory holding the YAML configuration.
        config: Loaded configuration, set by ``run``.
        postgres_client: Connected datastore.
        redis_client: Connected event feed, None if Redis is unavailable.
        services: Wired monitoring components.
        shutdown_event: Set when the service should stop.
    """

    def __init__(self, config_path: str = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.postgres_client: Optional[PostgresClient] = None
        self.redis_client: Optional[RedisClient] = None
        self.services: Optional[MonitoringServices] = None
        self.shutdown_event = asyncio.Event()
        self.logger = structlog.get_logger(self.service_name)

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Name used in logs."""

    async def _initialize(self) -> None:
        """Service-specific setup after the components are wired."""

    @abstractmethod
    async def _run(self) -> None:
        """Main service body; return to shut down."""

    async def _cleanup(self) -> None:
        """Service-specific teardown before the stores are closed."""

    def request_shutdown(self) -> None:
        """Ask the service to stop."""
        if not self.shutdown_event.is_set():
            self.logger.info("shutdown_requested", service=self.service_name)
            self.shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                self.logger.debug("signal_handler_unavailable", signal=sig.name)

    async def _connect_stores(self) -> None:
        if self.config is None:
            raise RuntimeError("Configuration not loaded")

        self.postgres_client = PostgresClient(self.config.postgres)
        await self.postgres_client.connect()

        redis_client = RedisClient(
            self.config.redis,
            channel=self.config.features.subscriptions.channel,
        )
        try:
            await redis_client.connect()
            self.redis_client = redis_client
        except RedisClientError as e:
            self.logger.warning(
                "event_feed_unavailable",
                error=str(e),
                fallback="polling",
            )
            await redis_client.disconnect()

    async def _close_stores(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.disconnect()
        if self.postgres_client is not None:
            await self.postgres_client.disconnect()

    async def run(self) -> None:
        """
        Run the service until ``_run`` returns or a shutdown is requested.

        Raises:
            ConfigLoadError: If the configuration is invalid.
            PostgresConnectionException: If the datastore is unreachable.
        """
        self.config = ConfigLoader(self.config_path).load()
        setup_logging(self.config.log_level, self.config.features.logging.format)
        self._install_signal_handlers()

        self.logger.info("service_starting", service=self.service_name)

        try:
            await self._connect_stores()
            self.services = build_services(
                self.config,
                self.postgres_client,
                self.redis_client,
            )
            await self._initialize()
            await self._run()

        finally:
            try:
                await self._cleanup()
            except Exception as e:
                self.logger.error("service_cleanup_error", error=str(e))

            if self.services is not None:
                await self.services.shutdown()
            await self._close_stores()

            self.logger.info("service_stopped", service=self.service_name)
