# stockwatch/models/snapshot.py

"""Append-only audit trail records: snapshots, events and stores."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from stockwatch.models.verdict import StockStatus


class EventType(str, Enum):
    """Classification of a state transition between two snapshots."""

    STATUS_FLIP = "STATUS_FLIP"
    IN_STOCK = "IN_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PRICE_DROP = "PRICE_DROP"


@dataclass(frozen=True)
class Snapshot:
    """Last-known observed state for a variant, stored only on change."""

    variant_id: int
    in_stock: bool
    price: Decimal | None
    fingerprint: str
    observed_at: datetime
    status: StockStatus = StockStatus.UNKNOWN
    id: int | None = None


@dataclass(frozen=True)
class StockEvent:
    """A typed, timestamped transition record."""

    variant_id: int
    event_type: EventType
    details: dict[str, Any]
    occurred_at: datetime
    id: int | None = None


@dataclass(frozen=True)
class Store:
    """A physical store of a retailer."""

    id: int
    retailer_id: int
    store_code: str
    name: str = ""


@dataclass
class VariantOverview:
    """Latest known state of one variant, used by the status report."""

    target_id: int
    target_title: str
    retailer_name: str
    variant_id: int
    latest_snapshot: Snapshot | None = None
    latest_event_type: str | None = None
    snapshot_count: int = 0
    store_count: int = 0
