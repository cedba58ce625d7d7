# stockwatch/storage/monitor_db.py

"""SQLite-backed monitor store: targets, stores and the audit trail."""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from stockwatch.config.settings import Settings
from stockwatch.models.product import MonitoredTarget
from stockwatch.models.snapshot import (
    EventType,
    Snapshot,
    StockEvent,
    Store,
    VariantOverview,
)
from stockwatch.models.verdict import StockStatus
from stockwatch.storage.base_store import MonitorStore, TargetFilter

logger = logging.getLogger("stockwatch.storage")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS retailers (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    platform TEXT    NOT NULL UNIQUE,
    name     TEXT    NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS products (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    retailer_id INTEGER NOT NULL
                REFERENCES retailers(id) ON DELETE CASCADE,
    url         TEXT    NOT NULL UNIQUE,
    title       TEXT    NOT NULL DEFAULT '',
    created_at  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS product_variants (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL
               REFERENCES products(id) ON DELETE CASCADE,
    label      TEXT    NOT NULL DEFAULT 'default',
    UNIQUE (product_id, label)
);

CREATE TABLE IF NOT EXISTS stores (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    retailer_id INTEGER NOT NULL
                REFERENCES retailers(id) ON DELETE CASCADE,
    store_code  TEXT    NOT NULL,
    name        TEXT    NOT NULL DEFAULT '',
    UNIQUE (retailer_id, store_code)
);

CREATE TABLE IF NOT EXISTS store_availability (
    variant_id  INTEGER NOT NULL
                REFERENCES product_variants(id) ON DELETE CASCADE,
    store_id    INTEGER NOT NULL
                REFERENCES stores(id) ON DELETE CASCADE,
    in_stock    INTEGER NOT NULL,
    price       TEXT,
    observed_at TEXT    NOT NULL,
    PRIMARY KEY (variant_id, store_id)
);

CREATE TABLE IF NOT EXISTS inventory_snapshots (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    variant_id  INTEGER NOT NULL
                REFERENCES product_variants(id) ON DELETE CASCADE,
    in_stock    INTEGER NOT NULL,
    price       TEXT,
    status      TEXT    NOT NULL,
    fingerprint TEXT    NOT NULL,
    observed_at TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS stock_events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    variant_id  INTEGER NOT NULL
                REFERENCES product_variants(id) ON DELETE CASCADE,
    event_type  TEXT    NOT NULL,
    details     TEXT    NOT NULL,
    occurred_at TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_variant_id
    ON inventory_snapshots(variant_id, id);
CREATE INDEX IF NOT EXISTS idx_events_variant_id
    ON stock_events(variant_id, id);
"""

_TARGET_SELECT = (
    "SELECT p.id, p.url, r.platform, r.id, p.title, r.name "
    "FROM products p JOIN retailers r ON r.id = p.retailer_id "
)

_COUNTED_TABLES = (
    "retailers", "products", "product_variants", "stores",
    "inventory_snapshots", "stock_events",
)

# Child tables keyed by variant_id, reported under these names
_ORPHAN_TABLES = {
    "orphan_snapshots": "inventory_snapshots",
    "orphan_events": "stock_events",
    "orphan_availabilities": "store_availability",
}


def _price_to_db(price: Decimal | None) -> str | None:
    return None if price is None else str(price)


def _price_from_db(raw: str | None) -> Decimal | None:
    return None if raw is None else Decimal(raw)


def _row_to_target(r: tuple[Any, ...]) -> MonitoredTarget:
    return MonitoredTarget(
        id=r[0],
        url=r[1],
        retailer_platform=r[2],
        retailer_id=r[3],
        title=r[4],
        retailer_name=r[5],
    )


def _row_to_snapshot(r: tuple[Any, ...]) -> Snapshot:
    return Snapshot(
        id=r[0],
        variant_id=r[1],
        in_stock=bool(r[2]),
        price=_price_from_db(r[3]),
        status=StockStatus(r[4]),
        fingerprint=r[5],
        observed_at=datetime.fromisoformat(r[6]),
    )


class SQLiteMonitorStore(MonitorStore):
    """SQLite implementation of :class:`MonitorStore`.

    One connection shared across worker threads; an ``RLock`` guards
    it so a :meth:`transaction` block is never interleaved with writes
    from another thread.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        self._lock = threading.RLock()
        self._tx_depth = 0
        logger.debug("SQLiteMonitorStore opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Atomic block; nested blocks join the outermost one."""
        with self._lock:
            self._tx_depth += 1
            try:
                yield
            except BaseException:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self._conn.rollback()
                raise
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.commit()

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self._conn.commit()

    # ── Targets ──────────────────────────────────────────

    def get_target(self, target_id: int) -> MonitoredTarget | None:
        with self._lock:
            row = self._conn.execute(
                _TARGET_SELECT + "WHERE p.id = ?", (target_id,),
            ).fetchone()
        return _row_to_target(row) if row else None

    def list_targets(
        self, target_filter: TargetFilter | None = None,
    ) -> list[MonitoredTarget]:
        with self._lock:
            rows = self._conn.execute(
                _TARGET_SELECT + "ORDER BY p.id"
            ).fetchall()
        targets = [_row_to_target(r) for r in rows]
        if target_filter is None:
            return targets
        return [t for t in targets if target_filter.matches(t)]

    def _upsert_retailer(self, platform: str, name: str) -> int:
        self._conn.execute(
            "INSERT INTO retailers (platform, name) VALUES (?, ?) "
            "ON CONFLICT(platform) DO UPDATE SET name = "
            "CASE WHEN excluded.name != '' THEN excluded.name "
            "ELSE retailers.name END",
            (platform, name),
        )
        retailer_id: int = self._conn.execute(
            "SELECT id FROM retailers WHERE platform = ?", (platform,),
        ).fetchone()[0]
        return retailer_id

    def add_target(
        self,
        url: str,
        retailer_platform: str,
        title: str = "",
        retailer_name: str = "",
    ) -> MonitoredTarget:
        with self._lock:
            retailer_id = self._upsert_retailer(
                retailer_platform, retailer_name,
            )
            self._conn.execute(
                "INSERT INTO products (retailer_id, url, title, created_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(url) DO NOTHING",
                (retailer_id, url, title, datetime.now(timezone.utc).isoformat()),
            )
            row = self._conn.execute(
                _TARGET_SELECT + "WHERE p.url = ?", (url,),
            ).fetchone()
            self._commit()
        return _row_to_target(row)

    def get_or_create_variant(self, target_id: int) -> int:
        with self._lock:
            self._conn.execute(
                "INSERT INTO product_variants (product_id) VALUES (?) "
                "ON CONFLICT(product_id, label) DO NOTHING",
                (target_id,),
            )
            variant_id: int = self._conn.execute(
                "SELECT id FROM product_variants "
                "WHERE product_id = ? ORDER BY id LIMIT 1",
                (target_id,),
            ).fetchone()[0]
            self._commit()
        return variant_id

    # ── Stores ───────────────────────────────────────────

    def upsert_store(
        self, retailer_id: int, store_code: str, name: str = "",
    ) -> Store:
        with self._lock:
            self._conn.execute(
                "INSERT INTO stores (retailer_id, store_code, name) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(retailer_id, store_code) DO UPDATE SET name = "
                "CASE WHEN excluded.name != '' THEN excluded.name "
                "ELSE stores.name END",
                (retailer_id, store_code, name),
            )
            row = self._conn.execute(
                "SELECT id, retailer_id, store_code, name FROM stores "
                "WHERE retailer_id = ? AND store_code = ?",
                (retailer_id, store_code),
            ).fetchone()
            self._commit()
        return Store(id=row[0], retailer_id=row[1], store_code=row[2], name=row[3])

    def upsert_store_availability(
        self,
        variant_id: int,
        store_id: int,
        in_stock: bool,
        price: Decimal | None,
        observed_at: datetime,
    ) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO store_availability "
                "(variant_id, store_id, in_stock, price, observed_at) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(variant_id, store_id) DO UPDATE SET "
                "in_stock = excluded.in_stock, price = excluded.price, "
                "observed_at = excluded.observed_at",
                (
                    variant_id,
                    store_id,
                    int(in_stock),
                    _price_to_db(price),
                    observed_at.isoformat(),
                ),
            )
            self._commit()

    # ── Audit trail ──────────────────────────────────────

    def get_latest_snapshot(self, variant_id: int) -> Snapshot | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, variant_id, in_stock, price, status, "
                "       fingerprint, observed_at "
                "FROM inventory_snapshots WHERE variant_id = ? "
                "ORDER BY id DESC LIMIT 1",
                (variant_id,),
            ).fetchone()
        return _row_to_snapshot(row) if row else None

    def create_snapshot(self, snapshot: Snapshot) -> Snapshot:
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO inventory_snapshots "
                "(variant_id, in_stock, price, status, fingerprint, "
                " observed_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    snapshot.variant_id,
                    int(snapshot.in_stock),
                    _price_to_db(snapshot.price),
                    snapshot.status.value,
                    snapshot.fingerprint,
                    snapshot.observed_at.isoformat(),
                ),
            )
            self._commit()
        return Snapshot(
            id=cur.lastrowid,
            variant_id=snapshot.variant_id,
            in_stock=snapshot.in_stock,
            price=snapshot.price,
            status=snapshot.status,
            fingerprint=snapshot.fingerprint,
            observed_at=snapshot.observed_at,
        )

    def create_event(self, event: StockEvent) -> StockEvent:
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO stock_events "
                "(variant_id, event_type, details, occurred_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    event.variant_id,
                    event.event_type.value,
                    json.dumps(event.details, sort_keys=True),
                    event.occurred_at.isoformat(),
                ),
            )
            self._commit()
        return StockEvent(
            id=cur.lastrowid,
            variant_id=event.variant_id,
            event_type=event.event_type,
            details=event.details,
            occurred_at=event.occurred_at,
        )

    def list_events(
        self, variant_id: int | None = None, limit: int = 50,
    ) -> list[StockEvent]:
        sql = (
            "SELECT id, variant_id, event_type, details, occurred_at "
            "FROM stock_events "
        )
        params: tuple[Any, ...] = ()
        if variant_id is not None:
            sql += "WHERE variant_id = ? "
            params = (variant_id,)
        sql += "ORDER BY id DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(sql, (*params, limit)).fetchall()
        return [
            StockEvent(
                id=r[0],
                variant_id=r[1],
                event_type=EventType(r[2]),
                details=json.loads(r[3]),
                occurred_at=datetime.fromisoformat(r[4]),
            )
            for r in rows
        ]

    # ── Reporting ────────────────────────────────────────

    def variant_overviews(self) -> list[VariantOverview]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT p.id, p.title, r.name, r.platform, v.id, "
                "  (SELECT COUNT(*) FROM inventory_snapshots s "
                "   WHERE s.variant_id = v.id), "
                "  (SELECT COUNT(*) FROM store_availability a "
                "   WHERE a.variant_id = v.id), "
                "  (SELECT e.event_type FROM stock_events e "
                "   WHERE e.variant_id = v.id ORDER BY e.id DESC LIMIT 1) "
                "FROM product_variants v "
                "JOIN products p ON p.id = v.product_id "
                "JOIN retailers r ON r.id = p.retailer_id "
                "ORDER BY p.id, v.id"
            ).fetchall()
        overviews: list[VariantOverview] = []
        for r in rows:
            overviews.append(VariantOverview(
                target_id=r[0],
                target_title=r[1],
                retailer_name=r[2] or r[3],
                variant_id=r[4],
                latest_snapshot=self.get_latest_snapshot(r[4]),
                snapshot_count=r[5],
                store_count=r[6],
                latest_event_type=r[7],
            ))
        return overviews

    def counts(self) -> dict[str, int]:
        result: dict[str, int] = {}
        with self._lock:
            for table in _COUNTED_TABLES:
                result[table] = self._conn.execute(
                    f"SELECT COUNT(*) FROM {table}"
                ).fetchone()[0]
        return result

    def integrity_counts(self) -> dict[str, int]:
        result: dict[str, int] = {}
        with self._lock:
            for label, table in _ORPHAN_TABLES.items():
                result[label] = self._conn.execute(
                    f"SELECT COUNT(*) FROM {table} t "
                    "LEFT JOIN product_variants v ON v.id = t.variant_id "
                    "WHERE v.id IS NULL"
                ).fetchone()[0]
        return result
