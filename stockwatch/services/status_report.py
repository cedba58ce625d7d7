# stockwatch/services/status_report.py

"""Monitoring status summary built from the audit trail."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from stockwatch.config.settings import Settings
from stockwatch.models.snapshot import VariantOverview
from stockwatch.storage.base_store import MonitorStore

logger = logging.getLogger("stockwatch.status")


@dataclass
class StatusReport:
    """Point-in-time view of how fresh the monitored data is."""

    total_targets: int = 0
    total_variants: int = 0
    variants_with_data: int = 0
    recent_updates: int = 0
    total_snapshots: int = 0
    total_events: int = 0
    orphan_snapshots: int = 0
    orphan_events: int = 0
    orphan_availabilities: int = 0
    recent: list[VariantOverview] = field(
        default_factory=lambda: list[VariantOverview]()
    )
    stale: list[VariantOverview] = field(
        default_factory=lambda: list[VariantOverview]()
    )

    @property
    def orphan_rows(self) -> int:
        return (
            self.orphan_snapshots
            + self.orphan_events
            + self.orphan_availabilities
        )


class StatusReporter:
    """Classify variants as recently observed or stale."""

    def __init__(
        self, store: MonitorStore, settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or Settings()

    def build(self, now: datetime | None = None) -> StatusReport:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=self.settings.STATUS_RECENT_HOURS)
        counts = self.store.counts()
        integrity = self.store.integrity_counts()
        overviews = self.store.variant_overviews()

        report = StatusReport(
            total_targets=counts.get("products", 0),
            total_variants=len(overviews),
            total_snapshots=counts.get("inventory_snapshots", 0),
            total_events=counts.get("stock_events", 0),
            orphan_snapshots=integrity.get("orphan_snapshots", 0),
            orphan_events=integrity.get("orphan_events", 0),
            orphan_availabilities=integrity.get("orphan_availabilities", 0),
        )
        for ov in overviews:
            snap = ov.latest_snapshot
            if snap is None:
                report.stale.append(ov)
                continue
            report.variants_with_data += 1
            if snap.observed_at >= cutoff:
                report.recent_updates += 1
                report.recent.append(ov)
            else:
                report.stale.append(ov)

        # Most recently changed first
        report.recent.sort(
            key=lambda ov: ov.latest_snapshot.observed_at
            if ov.latest_snapshot else cutoff,
            reverse=True,
        )
        limit = self.settings.STATUS_LIST_LIMIT
        report.recent = report.recent[:limit]
        report.stale = report.stale[:limit]

        if report.orphan_rows:
            logger.warning(
                "Orphaned rows: %d snapshots, %d events, %d availabilities",
                report.orphan_snapshots,
                report.orphan_events,
                report.orphan_availabilities,
            )
        logger.debug(
            "Status: %d/%d variants with data, %d recent",
            report.variants_with_data,
            report.total_variants,
            report.recent_updates,
        )
        return report
