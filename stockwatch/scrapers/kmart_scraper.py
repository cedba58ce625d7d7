# stockwatch/scrapers/kmart_scraper.py

"""Kmart Australia adapter (server-rendered product pages)."""

import re

from stockwatch.decision.retailer_rules import KMART_ENGINE
from stockwatch.extractors.document import ProductDocument
from stockwatch.extractors.phrases import (
    ADD_TO_CART_RE,
    IN_STORE_ONLY_RE,
    OOS_STRONG_RE,
    OOS_WEAK_RE,
    has_soft_404,
)
from stockwatch.extractors.structured_data import first_offer
from stockwatch.hydration.escalator import HydrationEscalator
from stockwatch.models.signals import StockSignals
from stockwatch.scrapers.base_scraper import BaseAdapter, Fetcher

# Kmart shows "Notify me" on items that cannot be bought online
_KMART_WEAK_OOS_RE = re.compile(r"\bnotify me\b|\bunavailable\b")


class KmartAdapter(BaseAdapter):
    """In-store-only listings count as in stock; otherwise the cart
    button decides, with out-of-stock wording as the fallback."""

    engine = KMART_ENGINE

    def __init__(
        self,
        homepage: str = "https://www.kmart.com.au/",
        fetcher: Fetcher | None = None,
        escalator: HydrationEscalator | None = None,
    ) -> None:
        super().__init__("kmart", homepage, fetcher, escalator)

    def extract_signals(self, doc: ProductDocument) -> StockSignals:
        text = doc.region_text(self.selectors.get("content", "main"))
        in_store_only = bool(IN_STORE_ONLY_RE.search(text)) or (
            doc.select_first(self.selectors.get("store_only", "")) is not None
        )
        add_to_cart = doc.has_enabled_control(
            self.selectors.get("add_to_cart", ""),
        ) or doc.has_enabled_control(
            self.selectors.get("buttons", "button"), ADD_TO_CART_RE,
        )
        return StockSignals(
            page_removed=doc.status_code in (404, 410) or has_soft_404(text),
            jsonld=first_offer(doc.soup).availability,
            in_store_only=in_store_only,
            add_to_cart=add_to_cart,
            oos_strong=bool(OOS_STRONG_RE.search(text)),
            oos_weak=bool(
                OOS_WEAK_RE.search(text) or _KMART_WEAK_OOS_RE.search(text)
            ),
            button_source=doc.source,
            evidence={"region_chars": len(text)},
        )
