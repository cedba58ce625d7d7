# stockwatch/scrapers/bigw_scraper.py

"""BIG W adapter.

Server-first: inventory booleans inlined in the Next.js payload are the
strongest signal, then JSON-LD, then explicit wording.  The cart button
is rendered client-side, so button evidence only counts after hydration.
"""

import re
from decimal import Decimal
from typing import Any

from stockwatch.decision.retailer_rules import BIGW_ENGINE
from stockwatch.extractors.document import ProductDocument, collapse_ws
from stockwatch.extractors.inline_state import (
    InventoryScan,
    VisitorConfig,
    iter_objects,
    iter_script_payloads,
    scan_inventory,
)
from stockwatch.extractors.phrases import (
    ADD_TO_CART_RE,
    OOS_ANY_RE,
    WISHLIST_RE,
    has_soft_404,
)
from stockwatch.extractors.structured_data import first_offer
from stockwatch.hydration.escalator import (
    HydrationEscalator,
    HydrationProfile,
)
from stockwatch.models.product import (
    NormalizedProduct,
    NormalizedVariant,
    StoreAvail,
)
from stockwatch.models.signals import StockSignals
from stockwatch.models.verdict import Verdict
from stockwatch.scrapers.base_scraper import BaseAdapter, Fetcher

_STORE_CODE_KEYS = ("storeCode", "storeId", "locationId")

# Store rows share inventory keys with the product node
INVENTORY_CONFIG = VisitorConfig(
    inventory_keys=(
        "inStock", "purchasable", "availableOnline",
        "availableToSell", "isAvailable", "available",
    ),
    exclude_keys=_STORE_CODE_KEYS,
    preorder_keys=("isPreOrder", "preorder", "preOrder"),
    extract_price=True,
)

_SKU_RE = re.compile(r"/p/(\w+)/?$")
_STORE_NAME_KEYS = ("storeName", "name", "displayName")
_STORE_STOCK_KEYS = ("inStock", "available", "isAvailable")


def extract_store_availabilities(
    doc: ProductDocument, postcode: str | None = None,
) -> tuple[StoreAvail, ...]:
    """Per-store stock rows inlined for the shopper's nearby stores.

    When ``postcode`` is given, rows carrying a different postcode
    are dropped.
    """
    found: dict[str, StoreAvail] = {}
    for payload in iter_script_payloads(doc.soup):
        for obj in iter_objects(payload):
            store = _store_row(obj, postcode)
            if store is not None and store.store_code not in found:
                found[store.store_code] = store
    return tuple(found.values())


def _store_row(obj: dict[str, Any], postcode: str | None) -> StoreAvail | None:
    code = next(
        (obj[k] for k in _STORE_CODE_KEYS if isinstance(obj.get(k), (str, int))),
        None,
    )
    stock = next(
        (obj[k] for k in _STORE_STOCK_KEYS if isinstance(obj.get(k), bool)),
        None,
    )
    if code is None or stock is None:
        return None
    row_postcode = obj.get("postcode")
    if postcode and row_postcode is not None and str(row_postcode) != postcode:
        return None
    name = next(
        (str(obj[k]) for k in _STORE_NAME_KEYS if isinstance(obj.get(k), str)),
        "",
    )
    price = obj.get("price")
    return StoreAvail(
        store_code=str(code),
        store_name=name,
        in_stock=stock,
        price=(
            Decimal(str(price))
            if isinstance(price, (int, float)) and not isinstance(price, bool)
            and price > 0
            else None
        ),
    )


class BigWAdapter(BaseAdapter):
    """BIG W product pages (``/product/<slug>/p/<id>``)."""

    engine = BIGW_ENGINE
    hydration_profile = HydrationProfile(
        container_selector="main, #main, [class*=\"ProductDetail\"]",
    )

    def __init__(
        self,
        homepage: str = "https://www.bigw.com.au/",
        fetcher: Fetcher | None = None,
        escalator: HydrationEscalator | None = None,
    ) -> None:
        super().__init__("bigw", homepage, fetcher, escalator)

    def scan(self, doc: ProductDocument) -> InventoryScan:
        return scan_inventory(doc.soup, INVENTORY_CONFIG)

    def extract_signals(self, doc: ProductDocument) -> StockSignals:
        inventory = self.scan(doc)
        offer = first_offer(doc.soup)
        text = doc.region_text(self.selectors.get("content", "main"))

        has_cart = has_wishlist = False
        for el in doc.soup.select(self.selectors.get("buttons", "button")):
            label = collapse_ws(
                str(el.get("aria-label") or "") or el.get_text(" ")
            )
            has_cart = has_cart or bool(ADD_TO_CART_RE.search(label))
            has_wishlist = has_wishlist or bool(WISHLIST_RE.search(label))

        return StockSignals(
            page_removed=doc.status_code in (404, 410) or has_soft_404(text),
            api_in_stock=inventory.first_hit,
            api_preorder=inventory.preorder,
            jsonld=offer.availability,
            oos_strong=bool(OOS_ANY_RE.search(text)),
            add_to_cart=has_cart,
            wishlist=has_wishlist,
            button_source=doc.source,
            evidence={
                "inventory": dict(inventory.first_values),
                "inventory_truncated": inventory.truncated,
                "inventory_price": inventory.price,
                "jsonld_price": offer.price,
            },
        )

    def extract_title(self, doc: ProductDocument) -> str:
        return (
            doc.meta_content("og:title")
            or doc.page_title()
            or "Unknown Product"
        )

    def extract_price(
        self, doc: ProductDocument, signals: StockSignals,
    ) -> Decimal | None:
        """Inlined inventory price first, then the JSON-LD offer."""
        return (
            signals.evidence.get("inventory_price")
            or signals.evidence.get("jsonld_price")
        )

    def extract_sku(self, doc: ProductDocument) -> str | None:
        match = _SKU_RE.search(doc.url)
        return match.group(1) if match else None

    def build_product(
        self,
        doc: ProductDocument,
        signals: StockSignals,
        verdict: Verdict,
        postcode: str | None,
    ) -> NormalizedProduct:
        variant = NormalizedVariant.from_verdict(
            verdict,
            self.extract_price(doc, signals),
            extract_store_availabilities(doc, postcode),
        )
        return NormalizedProduct(
            retailer=self.platform,
            url=doc.url,
            title=self.extract_title(doc),
            sku=self.extract_sku(doc),
            variants=(variant,),
        )
