"""
Alert Deduplication — Prevent alert storms across evaluation runs.

A candidate is suppressed when an alert with the same type and the same
set of affected projects is still active, either already stored or
earlier in the same batch. Acknowledged, resolved and expired alerts do
not block a new one.
"""

from typing import Iterable, Sequence

import structlog

from miyar.alerting.schemas import AlertStatus, PlatformAlert

logger = structlog.get_logger(__name__)

DedupKey = tuple[str, frozenset[int]]


class AlertDeduplicator:
    """
    Filters alert candidates against currently active alerts.

    Holds no state between calls; the store of active alerts is the
    source of truth.
    """

    def filter_new(
        self,
        candidates: Sequence[PlatformAlert],
        active_alerts: Iterable[PlatformAlert] = (),
    ) -> list[PlatformAlert]:
        """
        Drop candidates that duplicate an active alert.

        Args:
            candidates: Freshly evaluated alerts
            active_alerts: Alerts already stored (any status; only active count)

        Returns:
            Candidates that should be persisted, in input order
        """
        seen: set[DedupKey] = {
            a.dedup_key for a in active_alerts if a.status == AlertStatus.ACTIVE
        }
        fresh: list[PlatformAlert] = []
        suppressed = 0

        for alert in candidates:
            key = alert.dedup_key
            if key in seen:
                suppressed += 1
                logger.debug(
                    "alert_suppressed_duplicate",
                    alert_type=alert.alert_type.value,
                    project_ids=sorted(key[1]),
                )
                continue
            seen.add(key)
            fresh.append(alert)

        if suppressed:
            logger.info("alerts_deduplicated", kept=len(fresh), suppressed=suppressed)
        return fresh
