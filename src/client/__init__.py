"""
Read-side access to monitoring data.

Components:
    cache: TTLCache with LRU eviction and single-flight loads
    subscriptions: Live event subscriptions with a polling fallback
    monitoring_client: MonitoringClient for events, health, metrics and dashboards

Example:
    >>> from src.client import MonitoringClient
    >>>
    >>> client = MonitoringClient(datastore, feed, config.features)
    >>> dashboard = await client.get_dashboard()
"""

from src.client.cache import CacheEntry, TTLCache
from src.client.monitoring_client import (
    EventNotFoundError,
    MonitoringClient,
    MonitoringClientError,
    MonitoringReadError,
    financial_integrity_score,
)
from src.client.subscriptions import PollingCursor, Subscription

__all__ = [
    # Cache
    "CacheEntry",
    "TTLCache",
    # Client
    "MonitoringClient",
    "MonitoringClientError",
    "MonitoringReadError",
    "EventNotFoundError",
    "financial_integrity_score",
    # Subscriptions
    "Subscription",
    "PollingCursor",
]
