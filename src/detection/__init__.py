"""
Anomaly detection for the payment monitoring system.

This module contains the four detection algorithms, event persistence,
health snapshot construction, cycle aggregation and retention cleanup.

Components:
    base: Detector base class and clustering helpers
    transaction_failures: Failed deductions, consecutive failures, spikes
    balance_discrepancies: Ledger mismatches and negative balances
    duplicate_nfc: Temporal duplicate NFC scans
    race_conditions: Concurrent transactions on one card
    storage: EventStorage for events, alerts and publication
    health: HealthSnapshotBuilder for per-cycle health rollups
    aggregator: DetectionCycleAggregator running one full cycle
    retention: RetentionCleaner for expired monitoring data

Example:
    >>> from src.detection import create_aggregator
    >>>
    >>> aggregator = create_aggregator(datastore, feed, config.monitoring)
    >>> result = await aggregator.run_detection_cycle()
"""

from src.detection.aggregator import DetectionCycleAggregator, create_aggregator
from src.detection.balance_discrepancies import (
    ALGORITHM_BALANCE_MISMATCH,
    ALGORITHM_NEGATIVE_BALANCE,
    BalanceDiscrepancyDetector,
)
from src.detection.base import Detector, cluster_by_gap, cluster_by_span
from src.detection.duplicate_nfc import ALGORITHM_TEMPORAL_DUPLICATE, DuplicateNFCDetector
from src.detection.health import HealthSnapshotBuilder, classify_health
from src.detection.race_conditions import (
    ALGORITHM_CONCURRENT_TRANSACTIONS,
    RaceConditionDetector,
)
from src.detection.retention import RetentionCleaner
from src.detection.storage import EventStorage
from src.detection.transaction_failures import (
    ALGORITHM_BALANCE_DEDUCTION,
    ALGORITHM_CONSECUTIVE_FAILURES,
    ALGORITHM_FAILURE_SPIKE,
    TransactionFailureDetector,
)

__all__ = [
    # Detectors
    "Detector",
    "TransactionFailureDetector",
    "BalanceDiscrepancyDetector",
    "DuplicateNFCDetector",
    "RaceConditionDetector",
    "cluster_by_gap",
    "cluster_by_span",
    # Algorithm names
    "ALGORITHM_BALANCE_DEDUCTION",
    "ALGORITHM_CONSECUTIVE_FAILURES",
    "ALGORITHM_FAILURE_SPIKE",
    "ALGORITHM_BALANCE_MISMATCH",
    "ALGORITHM_NEGATIVE_BALANCE",
    "ALGORITHM_TEMPORAL_DUPLICATE",
    "ALGORITHM_CONCURRENT_TRANSACTIONS",
    # Persistence and health
    "EventStorage",
    "HealthSnapshotBuilder",
    "classify_health",
    # Cycle
    "DetectionCycleAggregator",
    "create_aggregator",
    # Maintenance
    "RetentionCleaner",
]
