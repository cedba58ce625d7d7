# tests/test_monitor_runner.py

"""Tests for the monitor run orchestrator."""

import asyncio
import sqlite3
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

from stockwatch.config.settings import Settings
from stockwatch.models.product import NormalizedProduct, NormalizedVariant
from stockwatch.models.verdict import StockStatus
from stockwatch.scrapers.registry import AdapterRegistry
from stockwatch.services.monitor_runner import MonitorRunner, RunSummary
from stockwatch.services.throttle import MemoryLockBackend, ThrottleLock
from stockwatch.storage.base_store import TargetFilter
from stockwatch.storage.monitor_db import SQLiteMonitorStore


class _RunSettings(Settings):
    MAX_CONCURRENCY = 2
    EXCLUDED_PLATFORMS: list[str] = []
    DEFAULT_POSTCODE = "2000"


class _ScriptedAdapter:
    """Adapter double with a scripted stock state and call tracking."""

    active = 0
    peak = 0

    def __init__(
        self,
        platform: str,
        in_stock: bool = True,
        error: str | None = None,
        delay: float = 0.0,
    ) -> None:
        self.platform = platform
        self.in_stock = in_stock
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str | None]] = []

    async def adapt(
        self, url: str, postcode: str | None = None,
    ) -> NormalizedProduct:
        self.calls.append((url, postcode))
        _ScriptedAdapter.active += 1
        _ScriptedAdapter.peak = max(
            _ScriptedAdapter.peak, _ScriptedAdapter.active,
        )
        try:
            await asyncio.sleep(self.delay)
        finally:
            _ScriptedAdapter.active -= 1
        if self.error is not None:
            return NormalizedProduct.failed(self.platform, url, self.error)
        status = (
            StockStatus.IN_STOCK if self.in_stock
            else StockStatus.OUT_OF_STOCK
        )
        return NormalizedProduct(
            retailer=self.platform,
            url=url,
            title="Scripted",
            variants=(NormalizedVariant(
                price=Decimal("10.00"),
                in_stock=self.in_stock,
                status=status,
            ),),
        )


class TestMonitorRunner(unittest.IsolatedAsyncioTestCase):
    """Counting, isolation and throttling of monitor runs."""

    def setUp(self) -> None:
        """Temp store with kmart and bigw targets."""
        _ScriptedAdapter.active = 0
        _ScriptedAdapter.peak = 0
        self.tmp_dir = tempfile.mkdtemp()
        self.db = SQLiteMonitorStore(db_path=Path(self.tmp_dir) / "test.db")
        self.kmart_target = self.db.add_target("https://kmart.test/p/1", "kmart")
        self.bigw_target = self.db.add_target("https://bigw.test/p/1", "bigw")
        self.kmart = _ScriptedAdapter("kmart")
        self.bigw = _ScriptedAdapter("bigw", in_stock=False)
        self.generic = _ScriptedAdapter("genericDom")

    def tearDown(self) -> None:
        """Close the database."""
        self.db.close()

    def _runner(
        self,
        throttle: ThrottleLock | None = None,
        settings: Settings | None = None,
    ) -> MonitorRunner:
        registry = AdapterRegistry({
            "kmart": self.kmart,
            "bigw": self.bigw,
            "genericDom": self.generic,
        })
        return MonitorRunner(
            self.db,
            registry,
            throttle or ThrottleLock(None, fail_open=True),
            settings or _RunSettings(),
        )

    async def test_run_records_changes(self) -> None:
        """Each target is processed once and its first state recorded."""
        summary = await self._runner().run_all()
        self.assertEqual(summary.total, 2)
        self.assertEqual(summary.processed, 2)
        self.assertEqual(summary.events, 2)
        self.assertEqual(summary.errors, 0)
        self.assertEqual(self.db.counts()["inventory_snapshots"], 2)
        self.assertEqual(
            self.kmart.calls, [("https://kmart.test/p/1", "2000")],
        )

    async def test_second_run_is_idempotent(self) -> None:
        """An unchanged second run writes no new snapshots or events."""
        runner = self._runner()
        await runner.run_all()
        summary = await runner.run_all()
        self.assertEqual(summary.processed, 2)
        self.assertEqual(summary.events, 0)
        counts = self.db.counts()
        self.assertEqual(counts["inventory_snapshots"], 2)
        self.assertEqual(counts["stock_events"], 2)

    async def test_state_change_is_recorded(self) -> None:
        """A restock between runs yields an IN_STOCK event."""
        runner = self._runner()
        await runner.run_all()
        self.bigw.in_stock = True
        summary = await runner.run_all()
        self.assertEqual(summary.events, 1)
        variant_id = self.db.get_or_create_variant(self.bigw_target.id)
        latest = self.db.list_events(variant_id)[0]
        self.assertEqual(latest.event_type.value, "IN_STOCK")

    async def test_failed_adapter_counts_error(self) -> None:
        """Error placeholders are counted and never persisted."""
        self.bigw.error = "HTTP 503"
        summary = await self._runner().run_all()
        self.assertEqual(summary.errors, 1)
        self.assertEqual(summary.processed, 1)
        self.assertEqual(
            summary.error_messages, [f"target {self.bigw_target.id}: HTTP 503"],
        )
        self.assertIn("1 errors", summary.message)
        self.assertEqual(self.db.counts()["inventory_snapshots"], 1)

    async def test_persistence_failure_is_isolated(self) -> None:
        """A storage error fails that target only."""
        runner = self._runner()
        original = runner.detector.apply_result

        def flaky(target_id: int, *args: object, **kwargs: object) -> object:
            if target_id == self.kmart_target.id:
                raise sqlite3.OperationalError("database is locked")
            return original(target_id, *args, **kwargs)  # type: ignore[arg-type]

        with patch.object(runner.detector, "apply_result", side_effect=flaky):
            summary = await runner.run_all()
        self.assertEqual(summary.errors, 1)
        self.assertEqual(summary.processed, 1)
        self.assertIn("database is locked", summary.error_messages[0])

    async def test_excluded_platforms(self) -> None:
        """EXCLUDED_PLATFORMS removes targets before the run."""

        class _Excluding(_RunSettings):
            EXCLUDED_PLATFORMS = ["bigw"]

        summary = await self._runner(settings=_Excluding()).run_all()
        self.assertEqual(summary.total, 1)
        self.assertEqual(self.bigw.calls, [])

    async def test_target_filter(self) -> None:
        """A filter narrows the run to matching targets."""
        summary = await self._runner().run_all(
            TargetFilter(target_ids=(self.bigw_target.id,)),
        )
        self.assertEqual(summary.total, 1)
        self.assertEqual(self.kmart.calls, [])

    async def test_empty_selection(self) -> None:
        """No matching targets gives an all-zero summary."""
        summary = await self._runner().run_all(
            TargetFilter(platforms=("ebgames",)),
        )
        self.assertEqual(summary, RunSummary())

    async def test_held_lock_skips_target(self) -> None:
        """A target whose lock is held elsewhere is skipped, not scraped."""
        backend = MemoryLockBackend()
        await backend.try_set_if_absent(f"product:{self.kmart_target.id}", 60)
        summary = await self._runner(ThrottleLock(backend)).run_all()
        self.assertEqual(summary.skipped, 1)
        self.assertEqual(summary.processed, 1)
        self.assertEqual(self.kmart.calls, [])
        self.assertIn("1 skipped", summary.message)

    async def test_concurrency_is_bounded(self) -> None:
        """No more than MAX_CONCURRENCY adapters run at once."""
        for i in range(2, 7):
            self.db.add_target(f"https://kmart.test/p/{i}", "kmart")
        self.kmart.delay = 0.02
        summary = await self._runner().run_all()
        self.assertEqual(summary.processed, 7)
        self.assertLessEqual(
            _ScriptedAdapter.peak, _RunSettings.MAX_CONCURRENCY,
        )

    async def test_check_does_not_persist(self) -> None:
        """check() adapts a URL without touching the store."""
        product = await self._runner().check(
            "https://bigw.test/p/99", "bigw",
        )
        self.assertFalse(product.primary_variant.in_stock)
        self.assertEqual(self.bigw.calls, [("https://bigw.test/p/99", "2000")])
        counts = self.db.counts()
        self.assertEqual(counts["products"], 2)
        self.assertEqual(counts["inventory_snapshots"], 0)

    async def test_check_defaults_to_generic(self) -> None:
        """Without a platform, check() uses the generic adapter."""
        await self._runner().check("https://toyworld.test/p/1")
        self.assertEqual(len(self.generic.calls), 1)


if __name__ == "__main__":
    unittest.main()
