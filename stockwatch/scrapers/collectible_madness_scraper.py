# stockwatch/scrapers/collectible_madness_scraper.py

"""Collectible Madness adapter (Shopify / BigCommerce themed store)."""

import re
from decimal import Decimal

from bs4 import Tag

from stockwatch.decision.retailer_rules import COLLECTIBLE_MADNESS_ENGINE
from stockwatch.extractors.document import (
    ProductDocument,
    collapse_ws,
    parse_price,
)
from stockwatch.extractors.phrases import (
    ADD_TO_CART_RE,
    ENQUIRE_RE,
    NOTIFY_ME_RE,
    STOCK_IN_STOCK_RE,
    has_soft_404,
)
from stockwatch.extractors.structured_data import aggregate_availability
from stockwatch.hydration.escalator import (
    HydrationEscalator,
    HydrationProfile,
)
from stockwatch.models.signals import StockSignals
from stockwatch.models.verdict import StockStatus, Verdict
from stockwatch.scrapers.base_scraper import BaseAdapter, Fetcher

_PREORDER_WORD_RE = re.compile(r"\bpre[-\s]?order\b")


class CollectibleMadnessAdapter(BaseAdapter):
    """Stock line ("Stock: In stock" / "Stock: Enquire Below") and the
    product-form controls decide; enquire/notify-only verdicts are weak
    and get a hydrated second opinion."""

    engine = COLLECTIBLE_MADNESS_ENGINE
    hydration_profile = HydrationProfile(
        container_selector=(
            "main, #MainContent, .product, .productView, "
            ".product-single, .product-page"
        ),
        skeleton_selectors=(),
        status_anchors=(
            re.compile(r"\bstock:\s*(?:in stock|enquire)\b", re.I),
            re.compile(r"notify me when available", re.I),
            re.compile(r"\benquire\b", re.I),
            re.compile(r"\bpre[-\s]?order\b", re.I),
        ),
    )

    def __init__(
        self,
        homepage: str = "https://collectiblemadness.com.au/",
        fetcher: Fetcher | None = None,
        escalator: HydrationEscalator | None = None,
    ) -> None:
        super().__init__("collectiblemadness", homepage, fetcher, escalator)

    def _region(self, doc: ProductDocument) -> Tag:
        region = doc.content_region(
            self.selectors.get("content", "main"), strip_chrome=False,
        )
        return region if region is not None else doc.body()

    def _stock_line(self, region: Tag) -> str:
        node = region.select_one(self.selectors.get("stock_node", ""))
        if node is None:
            node = region.select_one(
                self.selectors.get("stock_node_fallback", "")
            )
        return collapse_ws(node.get_text(" ")) if node is not None else ""

    def _has_notify(self, region: Tag) -> bool:
        """Notify control inside the product form, ignoring overlays."""
        overlay = self.selectors.get("overlay", "")
        for area in region.select(self.selectors.get("product_form", "")):
            for el in area.select("button, a"):
                if overlay and el.css.closest(overlay) is not None:
                    continue
                if NOTIFY_ME_RE.search(collapse_ws(el.get_text(" "))):
                    return True
        return False

    def extract_signals(self, doc: ProductDocument) -> StockSignals:
        region = self._region(doc)
        stock_line = self._stock_line(region)
        badge = region.select_one(self.selectors.get("inventory_badge", ""))

        header = " ".join(
            collapse_ws(el.get_text(" "))
            for el in region.select(self.selectors.get("badges", "h1"))
        )
        description = " ".join(
            collapse_ws(el.get_text(" "))
            for el in region.select(self.selectors.get("description", ""))
        )

        return StockSignals(
            page_removed=(
                doc.status_code in (404, 410)
                or has_soft_404(collapse_ws(region.get_text(" ")))
            ),
            jsonld=aggregate_availability(doc.soup),
            explicit_preorder=bool(
                _PREORDER_WORD_RE.search(header)
                or _PREORDER_WORD_RE.search(description)
            ),
            stock_line_in_stock=(
                badge is not None or bool(STOCK_IN_STOCK_RE.search(stock_line))
            ),
            stock_line_enquire=bool(ENQUIRE_RE.search(stock_line)),
            notify_me=self._has_notify(region),
            add_to_cart=doc.has_enabled_control(
                self.selectors.get("cart_button", ""),
                ADD_TO_CART_RE,
                region=region,
            ),
            button_source=doc.source,
            evidence={"stock_line": stock_line},
        )

    def _needs_hydration(
        self, signals: StockSignals, verdict: Verdict,
    ) -> bool:
        if not self._can_hydrate():
            return False
        weak_oos_only = (
            verdict.status is StockStatus.OUT_OF_STOCK
            and not signals.stock_line_in_stock
            and signals.add_to_cart is not True
            and not signals.explicit_preorder
            and (signals.stock_line_enquire or signals.notify_me)
        )
        no_decisive_signal = not (
            signals.stock_line_in_stock
            or signals.stock_line_enquire
            or signals.add_to_cart
            or signals.explicit_preorder
        )
        return verdict.is_unknown or weak_oos_only or no_decisive_signal

    def extract_title(self, doc: ProductDocument) -> str:
        return (
            doc.first_text(self._selector_list("title"))
            or doc.meta_content("og:title")
            or doc.page_title()
            or "Unknown Product"
        )

    def extract_price(
        self, doc: ProductDocument, signals: StockSignals,
    ) -> Decimal | None:
        region = self._region(doc)
        text_selector, attr_selector = (self._selector_list("price") + ["", ""])[:2]
        el = region.select_one(text_selector) if text_selector else None
        if el is not None:
            price = parse_price(el.get_text(" ", strip=True))
            if price is not None:
                return price
        el = region.select_one(attr_selector) if attr_selector else None
        if el is not None:
            return parse_price(str(el.get("content") or ""))
        return None
