# stockwatch/extractors/structured_data.py

"""schema.org JSON-LD offer parsing."""

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, cast

from bs4 import BeautifulSoup

from stockwatch.extractors.document import parse_price
from stockwatch.models.verdict import Availability

logger = logging.getLogger("stockwatch.extractors")


@dataclass(frozen=True)
class OfferInfo:
    """Availability and price read from one JSON-LD offer."""

    availability: Availability
    price: Decimal | None = None
    currency: str | None = None


def _as_list(value: object) -> list[Any]:
    if isinstance(value, list):
        return cast(list[Any], value)
    if value is None:
        return []
    return [value]


def _is_product(node: dict[str, Any]) -> bool:
    types = [str(t) for t in _as_list(node.get("@type"))]
    return "Product" in types


def _iter_nodes(data: object) -> Iterator[dict[str, Any]]:
    """Top-level JSON-LD nodes, flattening arrays and ``@graph``."""
    for item in _as_list(data):
        if not isinstance(item, dict):
            continue
        node = cast(dict[str, Any], item)
        yield node
        for child in _as_list(node.get("@graph")):
            if isinstance(child, dict):
                yield cast(dict[str, Any], child)


def iter_jsonld_offers(
    soup: BeautifulSoup, product_only: bool = False,
) -> Iterator[dict[str, Any]]:
    """Yield offer dicts from every ``application/ld+json`` script.

    Malformed scripts are skipped; extraction never aborts on a single
    bad fragment.
    """
    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.debug("Skipping malformed JSON-LD fragment")
            continue
        for node in _iter_nodes(data):
            if product_only and not _is_product(node):
                continue
            offers = (
                node.get("offers")
                or node.get("offer")
                or node.get("Offers")
            )
            for offer in _as_list(offers):
                if isinstance(offer, dict):
                    yield cast(dict[str, Any], offer)


def availability_of(offer: dict[str, Any]) -> Availability:
    """Map a schema.org availability URL/token to :class:`Availability`."""
    raw = str(offer.get("availability") or "").lower()
    if "instock" in raw:
        return Availability.IN_STOCK
    if "outofstock" in raw:
        return Availability.OUT_OF_STOCK
    if "preorder" in raw:
        return Availability.PRE_ORDER
    return Availability.UNKNOWN


def _offer_price(offer: dict[str, Any]) -> tuple[Decimal | None, str | None]:
    spec: object = offer.get("priceSpecification")
    spec_dict = cast(dict[str, Any], spec) if isinstance(spec, dict) else {}
    raw_price = offer.get("price", spec_dict.get("price"))
    raw_currency = offer.get("priceCurrency", spec_dict.get("priceCurrency"))
    price = (
        parse_price(str(raw_price))
        if isinstance(raw_price, (str, int, float))
        else None
    )
    currency = raw_currency if isinstance(raw_currency, str) else None
    return price, currency


def first_offer(
    soup: BeautifulSoup, product_only: bool = False,
) -> OfferInfo:
    """The first offer with a recognised availability token."""
    for offer in iter_jsonld_offers(soup, product_only=product_only):
        availability = availability_of(offer)
        if availability is Availability.UNKNOWN:
            continue
        price, currency = _offer_price(offer)
        return OfferInfo(availability, price, currency)
    return OfferInfo(Availability.UNKNOWN)


def aggregate_availability(soup: BeautifulSoup) -> Availability:
    """Combine every offer: any InStock wins, then PreOrder, then OutOfStock."""
    seen = {
        availability_of(offer) for offer in iter_jsonld_offers(soup)
    }
    for candidate in (
        Availability.IN_STOCK,
        Availability.PRE_ORDER,
        Availability.OUT_OF_STOCK,
    ):
        if candidate in seen:
            return candidate
    return Availability.UNKNOWN
