# stockwatch/models/signals.py

"""Extracted page evidence consumed by the decision engines."""

from dataclasses import dataclass, field
from typing import Any

from stockwatch.models.verdict import Availability, SignalSource


@dataclass(frozen=True)
class StockSignals:
    """Boolean and enum evidence derived from one product document.

    Each retailer extractor fills the subset of fields its pages
    expose; the rest keep their neutral defaults so an engine never
    reads a signal that was not observed.
    """

    page_removed: bool = False
    api_in_stock: bool | None = None
    api_preorder: bool | None = None
    jsonld: Availability = Availability.UNKNOWN
    explicit_preorder: bool = False
    oos_strong: bool = False
    oos_weak: bool = False
    in_store_only: bool = False
    stock_line_in_stock: bool = False
    stock_line_enquire: bool = False
    notify_me: bool = False
    wishlist: bool = False
    add_to_cart: bool | None = None
    button_source: SignalSource = SignalSource.STATIC
    evidence: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any](),
        compare=False,
    )

    @property
    def hydrated(self) -> bool:
        return self.button_source is SignalSource.HYDRATED
