"""
Async Redis client for live monitoring event delivery.

This module provides the production EventFeed. Newly persisted monitoring
events are published on a pub/sub channel so dashboards and monitoring
clients can react without polling the database.

Channels:
    - updates:monitoring_events: One JSON message per new MonitoringEvent

Note:
    Delivery is at-least-once and best effort. Redis is not the system of
    record; consumers fall back to polling PostgreSQL when the channel is
    unavailable.

Example:
    >>> from src.config.models import RedisConnectionConfig
    >>> from src.storage.redis_client import RedisClient
    >>>
    >>> client = RedisClient(RedisConnectionConfig(url="redis://localhost:6379"))
    >>> await client.connect()
    >>> await client.publish_event(event)
    >>>
    >>> async with client.subscribe_events() as events:
    ...     async for event in events:
    ...         print(event.event_type, event.card_id)
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from pydantic import ValidationError
from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from src.config.models import RedisConnectionConfig
from src.interfaces.datastore import EventFeed
from src.models.events import MonitoringEvent

logger = structlog.get_logger(__name__)


class RedisClientError(Exception):
    """Base exception for Redis client errors."""

    pass


class RedisConnectionException(RedisClientError):
    """Raised when Redis connection fails."""

    pass


class RedisOperationError(RedisClientError):
    """Raised when a Redis operation fails."""

    pass


class RedisClient(EventFeed):
    """
    Async Redis client publishing and consuming monitoring events.

    Attributes:
        config: Redis connection configuration.
        channel: Pub/sub channel carrying monitoring events.
        _pool: Connection pool for efficient connection reuse.
        _client: Redis client instance.
        _connected: Whether the client is connected.

    Example:
        >>> client = RedisClient(config)
        >>> await client.connect()
        >>> try:
        ...     await client.publish_event(event)
        ... finally:
        ...     await client.disconnect()
    """

    # Pub/sub channels
    CHANNEL_MONITORING_EVENTS = "updates:monitoring_events"

    def __init__(
        self,
        config: RedisConnectionConfig,
        channel: Optional[str] = None,
    ) -> None:
        """
        Initialize the Redis client.

        Args:
            config: Redis connection configuration containing URL, db, and pool settings.
            channel: Event channel name. Defaults to CHANNEL_MONITORING_EVENTS.
        """
        self.config = config
        self.channel = channel or self.CHANNEL_MONITORING_EVENTS
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None  # type: ignore[type-arg]
        self._connected: bool = False

        logger.info(
            "redis_client_initialized",
            url=config.url,
            db=config.db,
            channel=self.channel,
        )

    @property
    def is_connected(self) -> bool:
        """
        Check if the client is connected to Redis.

        Returns:
            bool: True if connected, False otherwise.
        """
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            RedisConnectionException: If connection fails.
        """
        if self._connected:
            logger.warning("redis_already_connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.config.url,
                db=self.config.db,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_timeout,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._connected = True

            logger.info(
                "redis_connected",
                url=self.config.url,
                db=self.config.db,
            )

        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            self._connected = False
            logger.error(
                "redis_connection_failed",
                url=self.config.url,
                error=str(e),
            )
            raise RedisConnectionException(
                f"Failed to connect to Redis at {self.config.url}: {e}"
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis connection and release resources.

        Safe to call multiple times.
        """
        if self._client is not None:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.warning("redis_close_error", error=str(e))
            finally:
                self._client = None

        if self._pool is not None:
            try:
                await self._pool.aclose()
            except Exception as e:
                logger.warning("redis_pool_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("redis_disconnected")

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            bool: True if Redis responds to PING, False otherwise.
        """
        if not self._client:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    def _require_connection(self) -> Redis:  # type: ignore[type-arg]
        """
        Ensure client is connected and return the Redis instance.

        Raises:
            RedisConnectionException: If not connected.
        """
        if not self._connected or self._client is None:
            raise RedisConnectionException("Redis client is not connected")
        return self._client

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish_event(self, event: MonitoringEvent) -> int:
        """
        Publish a monitoring event to subscribers.

        Args:
            event: The persisted MonitoringEvent to publish.

        Returns:
            int: Number of subscribers that received the message.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            count = await client.publish(self.channel, event.model_dump_json())

            logger.debug(
                "monitoring_event_published",
                event_id=event.event_id,
                event_type=event.event_type.value,
                subscribers=count,
            )

            return int(count)

        except RedisError as e:
            logger.error(
                "monitoring_event_publish_failed",
                event_id=event.event_id,
                error=str(e),
            )
            raise RedisOperationError(
                f"Failed to publish monitoring event: {e}"
            ) from e

    @asynccontextmanager
    async def subscribe(
        self, channels: List[str]
    ) -> AsyncIterator[AsyncIterator[Dict[str, Any]]]:
        """
        Subscribe to Redis pub/sub channels.

        Context manager that yields an async iterator of parsed JSON messages.

        Args:
            channels: List of channel names to subscribe to.

        Yields:
            AsyncIterator[Dict[str, Any]]: Async iterator of parsed messages.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If subscription fails.

        Example:
            >>> async with client.subscribe(["updates:monitoring_events"]) as messages:
            ...     async for message in messages:
            ...         print(f"Received: {message}")
        """
        client = self._require_connection()
        pubsub: PubSub = client.pubsub()

        try:
            await pubsub.subscribe(*channels)
        except RedisError as e:
            await pubsub.aclose()
            logger.error("pubsub_subscribe_failed", channels=channels, error=str(e))
            raise RedisOperationError(f"Failed to subscribe to {channels}: {e}") from e

        logger.info(
            "pubsub_subscribed",
            channels=channels,
        )

        async def message_iterator() -> AsyncIterator[Dict[str, Any]]:
            """Iterate over messages from subscribed channels."""
            async for message in pubsub.listen():
                if message["type"] == "message":
                    try:
                        data = json.loads(message["data"])
                        yield {
                            "channel": message["channel"],
                            "data": data,
                        }
                    except json.JSONDecodeError as e:
                        logger.warning(
                            "pubsub_message_parse_failed",
                            channel=message["channel"],
                            error=str(e),
                        )

        try:
            yield message_iterator()
        finally:
            try:
                await pubsub.unsubscribe(*channels)
                await pubsub.aclose()
            except RedisError as e:
                logger.warning("pubsub_close_error", error=str(e))

            logger.info(
                "pubsub_unsubscribed",
                channels=channels,
            )

    @asynccontextmanager
    async def subscribe_events(self) -> AsyncIterator[AsyncIterator[MonitoringEvent]]:
        """
        Subscribe to new monitoring events.

        Messages that do not validate as a MonitoringEvent are logged and
        skipped.

        Yields:
            AsyncIterator[MonitoringEvent]: Async iterator of events.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If subscription fails.
        """
        async with self.subscribe([self.channel]) as messages:

            async def event_iterator() -> AsyncIterator[MonitoringEvent]:
                async for message in messages:
                    try:
                        yield MonitoringEvent.model_validate(message["data"])
                    except ValidationError as e:
                        logger.warning(
                            "monitoring_event_message_invalid",
                            channel=message["channel"],
                            error=str(e),
                        )

            yield event_iterator()
