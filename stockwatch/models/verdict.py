# stockwatch/models/verdict.py

"""Status verdicts produced by the decision engines."""

from dataclasses import dataclass
from enum import Enum


class StockStatus(str, Enum):
    """Single-valued classification of one observation."""

    IN_STOCK = "IN_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PREORDER = "PREORDER"
    REMOVED = "REMOVED"
    UNKNOWN = "UNKNOWN"


class Reason(str, Enum):
    """Which signal decided the verdict."""

    PAGE_NOT_FOUND = "PAGE_NOT_FOUND"
    API_IN_STOCK = "API_IN_STOCK"
    API_OUT_OF_STOCK = "API_OUT_OF_STOCK"
    API_PREORDER = "API_PREORDER"
    JSONLD_PREORDER = "JSONLD_PREORDER"
    EXPLICIT_PREORDER = "EXPLICIT_PREORDER"
    EXPLICIT_OOS = "EXPLICIT_OOS"
    JSONLD_IN_STOCK = "JSONLD_IN_STOCK"
    JSONLD_OUT_OF_STOCK = "JSONLD_OUT_OF_STOCK"
    WEAK_OOS = "WEAK_OOS"
    IN_STORE_ONLY = "IN_STORE_ONLY"
    STOCK_LINE_IN_STOCK = "STOCK_LINE_IN_STOCK"
    ENQUIRE_ONLY = "ENQUIRE_ONLY"
    NOTIFY_ME = "NOTIFY_ME"
    ADD_TO_CART_AVAILABLE = "ADD_TO_CART_AVAILABLE"
    WISHLIST_ONLY = "WISHLIST_ONLY"
    UNKNOWN = "UNKNOWN"


class Availability(str, Enum):
    """schema.org offer availability, reduced to what the engines use."""

    IN_STOCK = "InStock"
    OUT_OF_STOCK = "OutOfStock"
    PRE_ORDER = "PreOrder"
    UNKNOWN = "Unknown"


class SignalSource(str, Enum):
    """Where DOM-derived signals were read from."""

    STATIC = "static"
    HYDRATED = "hydrated"


@dataclass(frozen=True)
class Verdict:
    """Decision engine output for one set of signals."""

    status: StockStatus
    reason: Reason
    rule: str = "default"
    in_store_only: bool = False

    @property
    def in_stock(self) -> bool:
        """Only an IN_STOCK verdict counts as purchasable."""
        return self.status is StockStatus.IN_STOCK

    @property
    def is_unknown(self) -> bool:
        return self.status is StockStatus.UNKNOWN


UNKNOWN_VERDICT = Verdict(StockStatus.UNKNOWN, Reason.UNKNOWN)
