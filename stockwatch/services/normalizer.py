# stockwatch/services/normalizer.py

"""Fingerprint-based change detection over the snapshot audit trail."""

import hashlib
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

from stockwatch.models.product import NormalizedVariant
from stockwatch.models.snapshot import EventType, Snapshot, StockEvent
from stockwatch.storage.base_store import MonitorStore

logger = logging.getLogger("stockwatch.normalizer")

_CENT = Decimal("0.01")


def _price_key(price: Decimal | None) -> str | None:
    """Canonical price text so 80, 80.0 and 80.00 hash alike."""
    if price is None:
        return None
    return str(price.quantize(_CENT))


def compute_fingerprint(variant: NormalizedVariant) -> str:
    """Stable hash of the observable state of *variant*.

    Store entries are sorted before hashing, so the order in which a
    retailer lists its stores never changes the result.
    """
    stores = sorted(
        f"{s.store_code}:{str(s.in_stock).lower()}"
        for s in variant.store_availabilities
    )
    payload = json.dumps(
        {
            "inStock": variant.in_stock,
            "price": _price_key(variant.price),
            "stores": stores,
            "status": variant.status.value,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def classify_event(
    previous: Snapshot | None,
    in_stock: bool,
    price: Decimal | None,
) -> EventType:
    """Type of the transition from *previous* to the new observation."""
    if previous is None:
        return EventType.STATUS_FLIP
    if not previous.in_stock and in_stock:
        return EventType.IN_STOCK
    if previous.in_stock and not in_stock:
        return EventType.OUT_OF_STOCK
    if (
        price is not None
        and previous.price is not None
        and price < previous.price
    ):
        return EventType.PRICE_DROP
    return EventType.STATUS_FLIP


def _state(
    in_stock: bool, price: Decimal | None, status: str,
) -> dict[str, object]:
    return {
        "inStock": in_stock,
        "price": _price_key(price),
        "status": status,
    }


class ChangeDetector:
    """Persist a snapshot and an event only when the observed state changes."""

    def __init__(self, store: MonitorStore) -> None:
        self.store = store

    def apply_result(
        self,
        target_id: int,
        variant_id: int,
        result: NormalizedVariant,
        observed_at: datetime | None = None,
    ) -> StockEvent | None:
        """Record *result* for *variant_id*.

        Returns the new event, or ``None`` when the fingerprint matches
        the latest snapshot.  Runs inside one store transaction so a
        concurrent call for the same variant cannot double-record.
        """
        now = observed_at or datetime.now(timezone.utc)
        with self.store.transaction():
            target = self.store.get_target(target_id)
            if target is None:
                raise LookupError(f"Unknown target id {target_id}")

            for avail in result.store_availabilities:
                store = self.store.upsert_store(
                    target.retailer_id, avail.store_code, avail.store_name,
                )
                self.store.upsert_store_availability(
                    variant_id, store.id, avail.in_stock, avail.price, now,
                )

            fingerprint = compute_fingerprint(result)
            previous = self.store.get_latest_snapshot(variant_id)
            if previous is not None and previous.fingerprint == fingerprint:
                logger.debug(
                    "Variant %d unchanged (%s)", variant_id, fingerprint,
                )
                return None

            event_type = classify_event(previous, result.in_stock, result.price)
            details: dict[str, object] = {
                "previous": (
                    _state(
                        previous.in_stock,
                        previous.price,
                        previous.status.value,
                    )
                    if previous is not None
                    else None
                ),
                "current": _state(
                    result.in_stock, result.price, result.status.value,
                ),
            }
            event = self.store.create_event(StockEvent(
                variant_id=variant_id,
                event_type=event_type,
                details=details,
                occurred_at=now,
            ))
            self.store.create_snapshot(Snapshot(
                variant_id=variant_id,
                in_stock=result.in_stock,
                price=result.price,
                status=result.status,
                fingerprint=fingerprint,
                observed_at=now,
            ))

        logger.info(
            "Variant %d: %s (%s)",
            variant_id,
            event_type.value,
            result.status_label,
        )
        return event
