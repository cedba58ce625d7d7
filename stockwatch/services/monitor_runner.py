# stockwatch/services/monitor_runner.py

"""Runs every monitored target through throttle, adapter and normalizer."""

import asyncio
import logging
from dataclasses import dataclass, field

from stockwatch.config.settings import Settings
from stockwatch.models.product import MonitoredTarget, NormalizedProduct
from stockwatch.scrapers.base_scraper import ScrapeError
from stockwatch.scrapers.registry import AdapterRegistry
from stockwatch.services.normalizer import ChangeDetector
from stockwatch.services.throttle import ThrottleLock
from stockwatch.storage.base_store import MonitorStore, TargetFilter

logger = logging.getLogger("stockwatch.runner")


@dataclass
class RunSummary:
    """Aggregate outcome of one "run all monitors" pass."""

    processed: int = 0
    errors: int = 0
    skipped: int = 0
    total: int = 0
    events: int = 0
    error_messages: list[str] = field(
        default_factory=lambda: list[str]()
    )

    @property
    def message(self) -> str:
        text = (
            f"Processed {self.processed}/{self.total} targets"
            f" ({self.events} changes)"
        )
        if self.skipped:
            text += f", {self.skipped} skipped"
        if self.errors:
            text += f", {self.errors} errors"
        return text


class MonitorRunner:
    """Bounded-parallelism worker pool, one task per monitored target.

    Targets are independent; a failure in one is counted and never
    stops the others.
    """

    def __init__(
        self,
        store: MonitorStore,
        registry: AdapterRegistry,
        throttle: ThrottleLock,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.store = store
        self.registry = registry
        self.throttle = throttle
        self.detector = ChangeDetector(store)

    # ── Private helpers ──────────────────────────────────

    def _select_targets(
        self, target_filter: TargetFilter | None,
    ) -> list[MonitoredTarget]:
        targets = self.store.list_targets(target_filter)
        excluded = set(self.settings.EXCLUDED_PLATFORMS)
        if excluded:
            targets = [
                t for t in targets if t.retailer_platform not in excluded
            ]
        return targets

    async def _process(
        self, target: MonitoredTarget, summary: RunSummary,
    ) -> None:
        """Adapt and record one target; raises on failure."""
        product = await self.registry.adapt(
            target, self.settings.DEFAULT_POSTCODE,
        )
        if product.error:
            raise ScrapeError(product.error)

        variant_id = await asyncio.to_thread(
            self.store.get_or_create_variant, target.id,
        )
        event = await asyncio.to_thread(
            self.detector.apply_result,
            target.id,
            variant_id,
            product.primary_variant,
        )
        if event is not None:
            summary.events += 1
        logger.info(
            "Target %d (%s): %s",
            target.id,
            target.retailer_platform,
            product.primary_variant.status_label,
        )

    async def _run_one(
        self,
        target: MonitoredTarget,
        semaphore: asyncio.Semaphore,
        summary: RunSummary,
    ) -> None:
        async with semaphore:
            ran = await self.throttle.with_throttle(
                f"product:{target.id}",
                self.settings.LOCK_TTL_SECONDS,
                lambda: self._process(target, summary),
            )
        if ran:
            summary.processed += 1
        else:
            summary.skipped += 1

    # ── Public API ───────────────────────────────────────

    async def run_all(
        self, target_filter: TargetFilter | None = None,
    ) -> RunSummary:
        """Monitor every selected target once and return the counts."""
        targets = await asyncio.to_thread(self._select_targets, target_filter)
        summary = RunSummary(total=len(targets))
        if not targets:
            logger.info("No monitored targets to run")
            return summary

        semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENCY)
        outcomes = await asyncio.gather(
            *(self._run_one(t, semaphore, summary) for t in targets),
            return_exceptions=True,
        )
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                summary.errors += 1
                summary.error_messages.append(
                    f"target {target.id}: {outcome}"
                )
                logger.error(
                    "Target %d (%s) failed: %s",
                    target.id,
                    target.url,
                    outcome,
                    exc_info=not isinstance(outcome, ScrapeError),
                )

        if summary.errors:
            logger.warning(summary.message)
        else:
            logger.info(summary.message)
        return summary

    async def check(
        self, url: str, platform: str | None = None,
    ) -> NormalizedProduct:
        """Run one adapter against *url* without persisting anything."""
        target = MonitoredTarget(
            id=0,
            url=url,
            retailer_platform=platform or self.registry.default_platform,
            retailer_id=0,
        )
        return await self.registry.adapt(
            target, self.settings.DEFAULT_POSTCODE,
        )
