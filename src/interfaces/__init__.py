"""
Abstract interfaces for the monitoring system.

This module defines the abstract base classes the monitoring core depends
on, so that storage backends can be swapped without touching detection or
client logic.

Example:
    >>> from src.interfaces import MonitoringDatastore, EventFeed
    >>> class InMemoryDatastore(MonitoringDatastore):
    ...     ...

Modules:
    datastore: MonitoringDatastore and EventFeed ABCs
"""

from src.interfaces.datastore import EventFeed, MonitoringDatastore

__all__: list[str] = [
    "EventFeed",
    "MonitoringDatastore",
]
