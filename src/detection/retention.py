"""
Retention cleanup for monitoring data.

Deletes monitoring events, health snapshots and alert history rows that
are older than their configured retention windows.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

import structlog

from src.config.models import RetentionConfig
from src.detection.base import utc_now
from src.interfaces.datastore import MonitoringDatastore

logger = structlog.get_logger(__name__)


class RetentionCleaner:
    """
    Applies the retention policy to the monitoring tables.

    Example:
        >>> cleaner = RetentionCleaner(datastore, RetentionConfig(events_days=7))
        >>> await cleaner.run()
        {'alert_history': 0, 'monitoring_events': 12, 'system_health_snapshots': 2016}
    """

    def __init__(
        self,
        datastore: MonitoringDatastore,
        retention: Optional[RetentionConfig] = None,
    ) -> None:
        self.datastore = datastore
        self.retention = retention or RetentionConfig()

    async def run(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Delete expired rows.

        Args:
            now: Reference time, defaults to the current UTC time.

        Returns:
            Dict[str, int]: Rows deleted per table.
        """
        now = now or utc_now()
        r = self.retention

        deleted = await self.datastore.delete_expired(
            events_before=now - timedelta(days=r.events_days),
            snapshots_before=now - timedelta(days=r.snapshots_days),
            alerts_before=now - timedelta(days=r.alerts_days),
        )

        logger.info(
            "retention_cleanup_completed",
            total_deleted=sum(deleted.values()),
            **deleted,
        )
        return deleted
