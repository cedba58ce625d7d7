# tests/test_kmart_scraper.py

"""Tests for the Kmart adapter using canned product pages."""

import unittest
from decimal import Decimal
from pathlib import Path

from stockwatch.models.product import NormalizedProduct
from stockwatch.models.verdict import Reason, StockStatus
from stockwatch.scrapers.kmart_scraper import KmartAdapter
from fakes import FakeFetcher

FIXTURES_DIR = Path(__file__).parent / "fixtures"
PRODUCT_URL = "https://www.kmart.com.au/product/rattan-table-lamp-43178154/"


def _load(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


class TestKmartAdapter(unittest.IsolatedAsyncioTestCase):
    """Kmart server-rendered pages decide without a browser."""

    async def _adapt(
        self, html: str, status_code: int = 200,
    ) -> NormalizedProduct:
        adapter = KmartAdapter(fetcher=FakeFetcher(html, status_code))
        return await adapter.adapt(PRODUCT_URL)

    async def test_in_store_only_counts_as_in_stock(self) -> None:
        """In-store-only listings are IN_STOCK with the in-store flag."""
        product = await self._adapt(_load("kmart_in_store_only.html"))
        variant = product.primary_variant
        self.assertIs(variant.status, StockStatus.IN_STOCK)
        self.assertTrue(variant.in_stock)
        self.assertTrue(variant.is_in_store_only)
        self.assertEqual(variant.reason, Reason.IN_STORE_ONLY.value)
        self.assertEqual(variant.status_label, "In Store Only")

    async def test_title_and_price(self) -> None:
        """Title and price come from the data-automation hooks."""
        product = await self._adapt(_load("kmart_in_store_only.html"))
        self.assertEqual(product.title, "Rattan Table Lamp")
        self.assertEqual(product.primary_variant.price, Decimal("25.00"))
        self.assertEqual(product.retailer, "kmart")

    async def test_add_to_cart_is_in_stock(self) -> None:
        """An enabled server-rendered cart button means in stock."""
        product = await self._adapt(_load("kmart_add_to_cart.html"))
        variant = product.primary_variant
        self.assertIs(variant.status, StockStatus.IN_STOCK)
        self.assertEqual(variant.reason, Reason.ADD_TO_CART_AVAILABLE.value)
        self.assertFalse(variant.is_in_store_only)

    async def test_footer_wording_is_ignored(self) -> None:
        """Out-of-stock text outside the product region does not count."""
        product = await self._adapt(_load("kmart_add_to_cart.html"))
        self.assertTrue(product.primary_variant.in_stock)

    async def test_disabled_button_and_sold_out(self) -> None:
        """A disabled cart button plus sold-out wording is OUT_OF_STOCK."""
        product = await self._adapt(_load("kmart_sold_out.html"))
        variant = product.primary_variant
        self.assertIs(variant.status, StockStatus.OUT_OF_STOCK)
        self.assertFalse(variant.in_stock)
        self.assertEqual(variant.reason, Reason.EXPLICIT_OOS.value)
        self.assertEqual(variant.price, Decimal("59"))

    async def test_http_404_is_removed(self) -> None:
        """A 404 response is REMOVED."""
        product = await self._adapt("<html><main>gone</main></html>", 404)
        variant = product.primary_variant
        self.assertIs(variant.status, StockStatus.REMOVED)
        self.assertTrue(variant.is_unavailable)
        self.assertIsNone(product.error)

    async def test_soft_404_is_removed(self) -> None:
        """Not-found wording served with 200 is REMOVED as well."""
        product = await self._adapt(
            "<html><body><main><h1>Sorry, page not found</h1>"
            "<button data-automation=\"add-to-cart\">Add to cart</button>"
            "</main></body></html>"
        )
        self.assertIs(product.primary_variant.status, StockStatus.REMOVED)


if __name__ == "__main__":
    unittest.main()
