# stockwatch/storage/base_store.py

"""Persistence interface consumed by the normalizer and run orchestrator."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from stockwatch.models.product import MonitoredTarget
from stockwatch.models.snapshot import (
    Snapshot,
    StockEvent,
    Store,
    VariantOverview,
)


@dataclass(frozen=True)
class TargetFilter:
    """Optional narrowing of a monitor run."""

    target_ids: tuple[int, ...] = ()
    platforms: tuple[str, ...] = ()
    exclude_platforms: tuple[str, ...] = ()

    def matches(self, target: MonitoredTarget) -> bool:
        if self.target_ids and target.id not in self.target_ids:
            return False
        if self.platforms and target.retailer_platform not in self.platforms:
            return False
        return target.retailer_platform not in self.exclude_platforms


class MonitorStore(ABC):
    """Any backend that can serialise a read-compare-write per variant.

    ``transaction()`` must make everything executed inside it atomic
    with respect to other transactions on the same store.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        ...

    # ── Targets ──────────────────────────────────────────

    @abstractmethod
    def get_target(self, target_id: int) -> MonitoredTarget | None:
        ...

    @abstractmethod
    def list_targets(
        self, target_filter: TargetFilter | None = None,
    ) -> list[MonitoredTarget]:
        ...

    @abstractmethod
    def add_target(
        self,
        url: str,
        retailer_platform: str,
        title: str = "",
        retailer_name: str = "",
    ) -> MonitoredTarget:
        """Register a product page; re-adding a URL returns the existing row."""
        ...

    @abstractmethod
    def get_or_create_variant(self, target_id: int) -> int:
        ...

    # ── Stores ───────────────────────────────────────────

    @abstractmethod
    def upsert_store(
        self, retailer_id: int, store_code: str, name: str = "",
    ) -> Store:
        ...

    @abstractmethod
    def upsert_store_availability(
        self,
        variant_id: int,
        store_id: int,
        in_stock: bool,
        price: Decimal | None,
        observed_at: datetime,
    ) -> None:
        ...

    # ── Audit trail ──────────────────────────────────────

    @abstractmethod
    def get_latest_snapshot(self, variant_id: int) -> Snapshot | None:
        ...

    @abstractmethod
    def create_snapshot(self, snapshot: Snapshot) -> Snapshot:
        ...

    @abstractmethod
    def create_event(self, event: StockEvent) -> StockEvent:
        ...

    @abstractmethod
    def list_events(
        self, variant_id: int | None = None, limit: int = 50,
    ) -> list[StockEvent]:
        """Most recent events first."""
        ...

    # ── Reporting ────────────────────────────────────────

    @abstractmethod
    def variant_overviews(self) -> list[VariantOverview]:
        ...

    @abstractmethod
    def counts(self) -> dict[str, int]:
        """Row counts per table, for health and status output."""
        ...

    @abstractmethod
    def integrity_counts(self) -> dict[str, int]:
        """Snapshots, events and store rows whose variant is gone."""
        ...
