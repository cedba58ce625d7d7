# stockwatch/scrapers/ebgames_scraper.py

"""EB Games Australia adapter.

EB product pages sit behind Cloudflare and render most of the buy box
client-side.  The static pass reads inlined state, Product JSON-LD and
scoped wording; challenge pages and UNKNOWN verdicts escalate to a
hydrated pass that also captures the product JSON the app fetches.
"""

import re
from dataclasses import replace

from stockwatch.decision.retailer_rules import EBGAMES_ENGINE
from stockwatch.extractors.document import ProductDocument
from stockwatch.extractors.inline_state import (
    InventoryVisitor,
    VisitorConfig,
    scan_inventory,
)
from stockwatch.extractors.phrases import (
    has_preorder_language,
    has_soft_404,
    oos_flags,
)
from stockwatch.extractors.structured_data import first_offer
from stockwatch.hydration.escalator import (
    HydrationEscalator,
    HydrationProfile,
    RenderedPage,
)
from stockwatch.models.signals import StockSignals
from stockwatch.scrapers.base_scraper import BaseAdapter, Fetcher

# availableOnline is the primary online-stock flag on EB payloads
API_PRIORITY = ("availableOnline", "inStock", "availableToSell", "purchasable")

INLINE_CONFIG = VisitorConfig(
    inventory_keys=API_PRIORITY,
    context_keys=(
        "sku", "id", "price", "title", "name",
        "offers", "amount", "priceRange", "product",
    ),
    quantity_keys=("availableToSell",),
)

CAPTURED_API_CONFIG = VisitorConfig(
    inventory_keys=("inStock", "availableOnline", "purchasable", "availableToSell"),
    context_keys=(
        "sku", "id", "price", "title", "name", "offers", "product", "gtin",
    ),
    quantity_keys=("availableToSell",),
)

# Soft-404 check never falls back to the whole body
REMOVAL_REGION = "main, .content, .product-container"


class EBGamesAdapter(BaseAdapter):
    """Reference ladder: API boolean, preorder, strong OOS, JSON-LD,
    weak OOS, then a hydrated enabled Add to Cart."""

    engine = EBGAMES_ENGINE
    hydration_profile = HydrationProfile(
        container_selector="main, #main, .content, .product-container",
        cta_pattern=re.compile(r"add to cart", re.I),
        api_url_pattern=re.compile(r"product|pdp|graphql|inventory", re.I),
    )

    def __init__(
        self,
        homepage: str = "https://www.ebgames.com.au/",
        fetcher: Fetcher | None = None,
        escalator: HydrationEscalator | None = None,
    ) -> None:
        super().__init__("ebgames", homepage, fetcher, escalator)

    def extract_signals(self, doc: ProductDocument) -> StockSignals:
        removal_text = doc.region_text(REMOVAL_REGION, strip_chrome=False)
        text = doc.region_text(
            self.selectors.get("content", "main"),
            self.selectors.get("content_fallback", ""),
        )
        inventory = scan_inventory(doc.soup, INLINE_CONFIG)
        strong, weak = oos_flags(text)
        return StockSignals(
            page_removed=(
                doc.status_code in (404, 410) or has_soft_404(removal_text)
            ),
            api_in_stock=inventory.first_of(*API_PRIORITY),
            jsonld=first_offer(doc.soup, product_only=True).availability,
            explicit_preorder=has_preorder_language(text),
            oos_strong=strong,
            oos_weak=weak,
            button_source=doc.source,
            evidence={"inventory": dict(inventory.first_values)},
        )

    def rendered_signals(
        self, doc: ProductDocument, page: RenderedPage,
    ) -> StockSignals:
        signals = super().rendered_signals(doc, page)
        captured = InventoryVisitor(CAPTURED_API_CONFIG).scan(
            page.api_payloads
        ).first_hit
        if captured is None:
            return signals
        return replace(signals, api_in_stock=captured)

