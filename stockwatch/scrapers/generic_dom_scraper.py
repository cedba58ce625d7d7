# stockwatch/scrapers/generic_dom_scraper.py

"""Fallback adapter for retailers without a dedicated pipeline."""

from dataclasses import replace
from urllib.parse import urlparse

from stockwatch.decision.retailer_rules import GENERIC_ENGINE
from stockwatch.extractors.document import ProductDocument
from stockwatch.extractors.phrases import (
    ADD_TO_CART_RE,
    OOS_STRONG_RE,
    has_soft_404,
)
from stockwatch.extractors.structured_data import first_offer
from stockwatch.hydration.escalator import HydrationEscalator
from stockwatch.models.product import NormalizedProduct
from stockwatch.models.signals import StockSignals
from stockwatch.models.verdict import Verdict
from stockwatch.scrapers.base_scraper import BaseAdapter, Fetcher


class GenericDomAdapter(BaseAdapter):
    """Enabled purchase control means in stock unless the page says
    it is sold out; JSON-LD is honoured when the site publishes it."""

    engine = GENERIC_ENGINE

    def __init__(
        self,
        homepage: str = "",
        fetcher: Fetcher | None = None,
        escalator: HydrationEscalator | None = None,
    ) -> None:
        super().__init__("genericDom", homepage, fetcher, escalator)

    def extract_signals(self, doc: ProductDocument) -> StockSignals:
        text = doc.region_text("main, #main, [role=\"main\"]")
        return StockSignals(
            page_removed=doc.status_code in (404, 410) or has_soft_404(text),
            jsonld=first_offer(doc.soup).availability,
            oos_strong=bool(OOS_STRONG_RE.search(text)),
            add_to_cart=doc.has_enabled_control(
                "button, input[type=\"submit\"]", ADD_TO_CART_RE,
            ),
            button_source=doc.source,
        )

    def extract_title(self, doc: ProductDocument) -> str:
        return doc.title()

    def build_product(
        self,
        doc: ProductDocument,
        signals: StockSignals,
        verdict: Verdict,
        postcode: str | None,
    ) -> NormalizedProduct:
        product = super().build_product(doc, signals, verdict, postcode)
        host = urlparse(doc.url).hostname or self.platform
        return replace(product, retailer=host.removeprefix("www."))
