"""
Storage clients for the monitoring system.

This module provides the PostgreSQL datastore (payment activity and
monitoring records) and the Redis event feed (live event delivery).

Components:
    postgres_client: Async PostgreSQL client implementing MonitoringDatastore
    redis_client: Async Redis client implementing EventFeed
"""

from src.storage.redis_client import (
    RedisClient,
    RedisClientError,
    RedisConnectionException,
    RedisOperationError,
)
from src.storage.postgres_client import (
    PostgresClient,
    PostgresClientError,
    PostgresConnectionException,
    PostgresOperationError,
)

__all__: list[str] = [
    # Redis
    "RedisClient",
    "RedisClientError",
    "RedisConnectionException",
    "RedisOperationError",
    # PostgreSQL
    "PostgresClient",
    "PostgresClientError",
    "PostgresConnectionException",
    "PostgresOperationError",
]
