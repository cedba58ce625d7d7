# stockwatch/decision/retailer_rules.py

"""Per-retailer decision tables.

Every table starts with page removal so a removed page is REMOVED
regardless of any other signal.  Preorder evidence is ranked above
out-of-stock *text* because preorder pages legitimately carry
"not yet available" wording.  Add-to-cart controls are ranked last and,
in the standard ladder, only trusted when read from a hydrated DOM.
"""

from stockwatch.decision.engine import DecisionEngine, Predicate, Rule
from stockwatch.models.signals import StockSignals
from stockwatch.models.verdict import Availability, Reason, StockStatus

IN = StockStatus.IN_STOCK
OOS = StockStatus.OUT_OF_STOCK
PRE = StockStatus.PREORDER


def _removed(s: StockSignals) -> bool:
    return s.page_removed


def _jsonld_is(availability: Availability) -> Predicate:
    def check(s: StockSignals) -> bool:
        return s.jsonld is availability
    return check


PAGE_REMOVED = Rule(
    "page_removed", _removed, StockStatus.REMOVED, Reason.PAGE_NOT_FOUND,
)
JSONLD_PREORDER = Rule(
    "jsonld_preorder", _jsonld_is(Availability.PRE_ORDER),
    PRE, Reason.JSONLD_PREORDER,
)
JSONLD_IN_STOCK = Rule(
    "jsonld_in_stock", _jsonld_is(Availability.IN_STOCK),
    IN, Reason.JSONLD_IN_STOCK,
)
JSONLD_OUT_OF_STOCK = Rule(
    "jsonld_out_of_stock", _jsonld_is(Availability.OUT_OF_STOCK),
    OOS, Reason.JSONLD_OUT_OF_STOCK,
)
EXPLICIT_PREORDER = Rule(
    "explicit_preorder", lambda s: s.explicit_preorder,
    PRE, Reason.EXPLICIT_PREORDER,
)
STRONG_OOS = Rule(
    "strong_oos_text", lambda s: s.oos_strong, OOS, Reason.EXPLICIT_OOS,
)
WEAK_OOS = Rule(
    "weak_oos_text", lambda s: s.oos_weak, OOS, Reason.WEAK_OOS,
)
API_IN_STOCK = Rule(
    "api_in_stock", lambda s: s.api_in_stock is True,
    IN, Reason.API_IN_STOCK,
)
API_OUT_OF_STOCK = Rule(
    "api_out_of_stock", lambda s: s.api_in_stock is False,
    OOS, Reason.API_OUT_OF_STOCK,
)
HYDRATED_ADD_TO_CART = Rule(
    "hydrated_add_to_cart",
    lambda s: s.add_to_cart is True and s.hydrated,
    IN, Reason.ADD_TO_CART_AVAILABLE,
)
# Retailers whose cart control is server-rendered
SERVER_ADD_TO_CART = Rule(
    "add_to_cart", lambda s: s.add_to_cart is True,
    IN, Reason.ADD_TO_CART_AVAILABLE,
)


# Reference ladder (EB Games family)
STANDARD_ENGINE = DecisionEngine("standard", [
    PAGE_REMOVED,
    API_IN_STOCK,
    JSONLD_PREORDER,
    EXPLICIT_PREORDER,
    API_OUT_OF_STOCK,
    STRONG_OOS,
    JSONLD_IN_STOCK,
    JSONLD_OUT_OF_STOCK,
    WEAK_OOS,
    HYDRATED_ADD_TO_CART,
])

EBGAMES_ENGINE = STANDARD_ENGINE

BIGW_ENGINE = DecisionEngine("bigw", [
    PAGE_REMOVED,
    Rule(
        "api_preorder",
        lambda s: s.api_in_stock is True and s.api_preorder is True,
        PRE, Reason.API_PREORDER,
    ),
    API_IN_STOCK,
    API_OUT_OF_STOCK,
    JSONLD_PREORDER,
    STRONG_OOS,
    JSONLD_IN_STOCK,
    JSONLD_OUT_OF_STOCK,
    HYDRATED_ADD_TO_CART,
    # SSR wishlist without a cart button is not decisive: the cart
    # button is rendered client-side.
    Rule(
        "hydrated_wishlist_only",
        lambda s: s.hydrated and s.wishlist and s.add_to_cart is not True,
        OOS, Reason.WISHLIST_ONLY,
    ),
])

COLLECTIBLE_MADNESS_ENGINE = DecisionEngine("collectiblemadness", [
    PAGE_REMOVED,
    JSONLD_PREORDER,
    JSONLD_IN_STOCK,
    JSONLD_OUT_OF_STOCK,
    EXPLICIT_PREORDER,
    Rule(
        "stock_line_in_stock", lambda s: s.stock_line_in_stock,
        IN, Reason.STOCK_LINE_IN_STOCK,
    ),
    SERVER_ADD_TO_CART,
    Rule(
        "stock_line_enquire", lambda s: s.stock_line_enquire,
        OOS, Reason.ENQUIRE_ONLY,
    ),
    Rule(
        "notify_me", lambda s: s.notify_me, OOS, Reason.NOTIFY_ME,
    ),
])

KMART_ENGINE = DecisionEngine("kmart", [
    PAGE_REMOVED,
    Rule(
        "in_store_only", lambda s: s.in_store_only,
        IN, Reason.IN_STORE_ONLY, in_store_only=True,
    ),
    SERVER_ADD_TO_CART,
    JSONLD_PREORDER,
    STRONG_OOS,
    JSONLD_IN_STOCK,
    JSONLD_OUT_OF_STOCK,
    WEAK_OOS,
])

GENERIC_ENGINE = DecisionEngine("generic", [
    PAGE_REMOVED,
    JSONLD_PREORDER,
    STRONG_OOS,
    JSONLD_IN_STOCK,
    JSONLD_OUT_OF_STOCK,
    SERVER_ADD_TO_CART,
])
