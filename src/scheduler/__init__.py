"""
Background scheduling for the monitoring system.

Components:
    circuit_breaker: Three-state CircuitBreaker guarding detection cycles
    scheduler: BackgroundScheduler running detection and maintenance jobs

Example:
    >>> from src.scheduler import BackgroundScheduler, CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker(config=config.monitoring.circuit_breaker)
    >>> scheduler = BackgroundScheduler(aggregator, breaker, config.monitoring, cleaner)
    >>> await scheduler.start()
"""

from src.scheduler.circuit_breaker import (
    DEFAULT_BREAKER_NAME,
    CircuitBreaker,
    CircuitBreakerError,
    CircuitOpenError,
    CircuitTimeoutError,
)
from src.scheduler.scheduler import BackgroundScheduler, ScheduledJob

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitTimeoutError",
    "DEFAULT_BREAKER_NAME",
    # Scheduler
    "BackgroundScheduler",
    "ScheduledJob",
]
