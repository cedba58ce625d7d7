# stockwatch/extractors/inline_state.py

"""Inlined inventory state discovery in embedded script payloads.

Product pages frequently ship server-computed inventory inside
``__NEXT_DATA__`` blobs, ``application/json`` scripts or
``window.__STATE__ = {...}`` assignments.  The visitor below walks
those trees depth-first, looking for inventory booleans on nodes that
also carry product-context keys (sku, price, title, ...) so that
unrelated flags such as ``available`` on a store-locator widget are
ignored.
"""

import json
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, cast

from bs4 import BeautifulSoup

logger = logging.getLogger("stockwatch.extractors")

# ``window.x =``, ``var x =``, ``const x =``, ``let x =``
_ASSIGNMENT_RE = re.compile(
    r"(?:window\.|var\s+|const\s+|let\s+)[\w$.]+\s*=\s*(?=[{\[])"
)

_DECODER = json.JSONDecoder()

DEFAULT_MAX_DEPTH = 40
DEFAULT_MAX_NODES = 50_000


def iter_script_payloads(soup: BeautifulSoup) -> Iterator[object]:
    """Yield every JSON value that can be decoded from a <script>.

    Malformed fragments are skipped silently; a single bad payload
    never aborts extraction.
    """
    for script in soup.find_all("script"):
        content = (script.string or script.get_text() or "").strip()
        if not content:
            continue

        candidates: list[str] = []
        is_json_script = (
            script.get("id") == "__NEXT_DATA__"
            or script.get("type") == "application/json"
        )
        if is_json_script or content.startswith(("{", "[")):
            candidates.append(content)

        for payload in candidates:
            try:
                yield json.loads(payload)
            except (json.JSONDecodeError, ValueError):
                logger.debug("Skipping malformed inline JSON payload")

        if is_json_script:
            continue
        for match in _ASSIGNMENT_RE.finditer(content):
            try:
                value, _end = _DECODER.raw_decode(content, match.end())
            except (json.JSONDecodeError, ValueError):
                continue
            yield value


@dataclass
class InventoryScan:
    """Findings of one :class:`InventoryVisitor` pass.

    ``first_values`` keeps the first observation per inventory key;
    ``hits`` keeps every first observation in discovery order so
    callers can apply either a key-priority or a first-seen policy.
    """

    first_values: dict[str, bool] = field(
        default_factory=lambda: dict[str, bool]()
    )
    hits: list[tuple[str, bool]] = field(
        default_factory=lambda: list[tuple[str, bool]]()
    )
    preorder: bool | None = None
    price: Decimal | None = None
    currency: str | None = None
    truncated: bool = False

    @property
    def first_hit(self) -> bool | None:
        """Value of the earliest inventory boolean discovered."""
        return self.hits[0][1] if self.hits else None

    def first_of(self, *keys: str) -> bool | None:
        """Value of the first key (by priority) that was observed."""
        for key in keys:
            if key in self.first_values:
                return self.first_values[key]
        return None


@dataclass(frozen=True)
class VisitorConfig:
    """Key tables steering an :class:`InventoryVisitor`."""

    inventory_keys: tuple[str, ...]
    context_keys: tuple[str, ...] = (
        "sku", "id", "price", "title", "name",
        "offers", "amount", "priceRange",
    )
    # Nodes carrying any of these keys are walked but never inspected
    exclude_keys: tuple[str, ...] = ()
    preorder_keys: tuple[str, ...] = ()
    quantity_keys: tuple[str, ...] = ()
    extract_price: bool = False
    default_currency: str = "AUD"


class InventoryVisitor:
    """Bounded-depth depth-first visitor over a generic JSON tree.

    Guards against pathological payloads with an explicit depth limit,
    a node budget and an identity set for cyclic containers.
    """

    def __init__(
        self,
        config: VisitorConfig,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_nodes: int = DEFAULT_MAX_NODES,
    ) -> None:
        self.config = config
        self.max_depth = max_depth
        self.max_nodes = max_nodes

    def scan(self, payloads: list[object]) -> InventoryScan:
        """Walk every payload, accumulating into one scan result."""
        result = InventoryScan()
        budget = [self.max_nodes]
        seen: set[int] = set()
        for payload in payloads:
            self._walk(payload, 0, result, budget, seen)
        return result

    # ── Internals ────────────────────────────────────────

    def _walk(
        self,
        node: object,
        depth: int,
        result: InventoryScan,
        budget: list[int],
        seen: set[int],
    ) -> None:
        if not isinstance(node, (dict, list)):
            return
        if depth > self.max_depth or budget[0] <= 0:
            result.truncated = True
            return
        if id(node) in seen:
            return
        seen.add(id(node))
        budget[0] -= 1

        if isinstance(node, dict):
            obj = cast(dict[str, Any], node)
            if self._has_product_context(obj) and not self._is_excluded(obj):
                self._inspect(obj, result)
            children: list[object] = list(obj.values())
        else:
            children = cast(list[object], node)

        for child in children:
            self._walk(child, depth + 1, result, budget, seen)

    def _has_product_context(self, obj: dict[str, Any]) -> bool:
        return any(key in obj for key in self.config.context_keys)

    def _is_excluded(self, obj: dict[str, Any]) -> bool:
        return any(key in obj for key in self.config.exclude_keys)

    def _inspect(self, obj: dict[str, Any], result: InventoryScan) -> None:
        for key in self.config.inventory_keys:
            value = obj.get(key)
            if isinstance(value, bool):
                self._record(result, key, value)
            elif (
                key in self.config.quantity_keys
                and isinstance(value, (int, float))
            ):
                self._record(result, key, value > 0)

        if result.preorder is None:
            for key in self.config.preorder_keys:
                value = obj.get(key)
                if isinstance(value, bool):
                    result.preorder = value
                    break

        if self.config.extract_price and result.price is None:
            self._record_price(obj, result)

    @staticmethod
    def _record(result: InventoryScan, key: str, value: bool) -> None:
        if key in result.first_values:
            return
        result.first_values[key] = value
        result.hits.append((key, value))

    def _record_price(
        self, obj: dict[str, Any], result: InventoryScan,
    ) -> None:
        price = obj.get("price")
        amount = obj.get("amount")
        price_range: object = obj.get("priceRange")
        if _is_number(price) and price > 0:
            result.price = Decimal(str(price))
            currency = obj.get("currency")
            result.currency = (
                currency if isinstance(currency, str)
                else self.config.default_currency
            )
        elif _is_number(amount) and amount > 0:
            # amounts are minor units (cents)
            result.price = Decimal(str(amount)) / 100
            result.currency = self.config.default_currency
        elif isinstance(price_range, dict):
            low: object = cast(dict[str, Any], price_range).get("min")
            if isinstance(low, dict):
                min_amount = cast(dict[str, Any], low).get("amount")
                if _is_number(min_amount) and min_amount > 0:
                    result.price = Decimal(str(min_amount)) / 100
                    result.currency = self.config.default_currency


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def iter_objects(
    payload: object,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_nodes: int = DEFAULT_MAX_NODES,
) -> Iterator[dict[str, Any]]:
    """Depth-first, bounded iteration over every dict inside a payload."""
    stack: list[tuple[object, int]] = [(payload, 0)]
    seen: set[int] = set()
    visited = 0
    while stack and visited < max_nodes:
        node, depth = stack.pop()
        if not isinstance(node, (dict, list)) or depth > max_depth:
            continue
        if id(node) in seen:
            continue
        seen.add(id(node))
        visited += 1
        if isinstance(node, dict):
            obj = cast(dict[str, Any], node)
            yield obj
            children: list[object] = list(obj.values())
        else:
            children = list(cast(list[object], node))
        stack.extend((child, depth + 1) for child in reversed(children))


def scan_inventory(
    soup: BeautifulSoup,
    config: VisitorConfig,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> InventoryScan:
    """Decode all script payloads of a page and scan them."""
    payloads = list(iter_script_payloads(soup))
    return InventoryVisitor(config, max_depth=max_depth).scan(payloads)
