"""
NFC Payment Monitoring System.

Background anomaly detection and health monitoring for an NFC cashless
payment platform.

This package provides:
- Data models for transactions, cards, monitoring events and health snapshots
- Four detectors and the detection cycle aggregator
- The background scheduler and its circuit breaker
- The cached monitoring client with live event subscriptions
- Configuration management
- Storage clients for Redis and PostgreSQL
"""

__version__ = "0.1.0"
