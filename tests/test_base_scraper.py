# tests/test_base_scraper.py

"""Tests for Fetcher resilience features and the BaseAdapter contract."""

import time
import unittest
from unittest.mock import MagicMock, patch

from stockwatch.decision.retailer_rules import STANDARD_ENGINE
from stockwatch.extractors.document import ProductDocument
from stockwatch.extractors.structured_data import first_offer
from stockwatch.hydration.escalator import HydrationError, HydrationProfile
from stockwatch.models.signals import StockSignals
from stockwatch.models.verdict import StockStatus
from stockwatch.scrapers.base_scraper import (
    BaseAdapter,
    Fetcher,
    FetchResult,
)
from fakes import FakeFetcher, StubEscalator

_PRODUCT_PAGE = (
    "<html><body><main><h1>Product</h1>"
    + "<p>Plenty of product copy.</p>" * 300
    + "</main></body></html>"
)


def _response(status: int, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    return resp


def _fetcher(*responses: MagicMock) -> tuple[Fetcher, MagicMock]:
    session = MagicMock()
    session.get.side_effect = list(responses)
    return Fetcher("test", "https://example.com/", session=session), session


@patch("stockwatch.scrapers.base_scraper.cloudscraper")
class TestFetcher(unittest.TestCase):
    """Retries, challenge detection and the circuit breaker."""

    def test_success_returns_markup(self, mock_cs: MagicMock) -> None:
        """A clean 200 is returned without touching the fallback."""
        fetcher, session = _fetcher(_response(200, _PRODUCT_PAGE))
        result = fetcher.fetch("https://example.com/p/1")
        self.assertTrue(result.ok)
        self.assertEqual(result.text, _PRODUCT_PAGE)
        self.assertEqual(session.get.call_count, 1)
        mock_cs.create_scraper.assert_not_called()

    def test_referer_header_sent(self, mock_cs: MagicMock) -> None:
        """The retailer homepage is sent as Referer."""
        fetcher, session = _fetcher(_response(200, _PRODUCT_PAGE))
        fetcher.fetch("https://example.com/p/1")
        headers = session.get.call_args.kwargs["headers"]
        self.assertEqual(headers["Referer"], "https://example.com/")
        self.assertIn("Accept-Language", headers)

    def test_not_found_passes_through(self, mock_cs: MagicMock) -> None:
        """404 is an answer: no retries, no failure recorded."""
        fetcher, session = _fetcher(_response(404, "gone"))
        result = fetcher.fetch("https://example.com/p/1")
        self.assertTrue(result.removed)
        self.assertFalse(result.ok)
        self.assertEqual(session.get.call_count, 1)
        self.assertFalse(fetcher.circuit_open)

    def test_challenge_falls_back_to_cloudscraper(
        self, mock_cs: MagicMock,
    ) -> None:
        """A Cloudflare interstitial triggers the cloudscraper fallback."""
        challenge = _response(200, "<html><title>Just a moment...</title>")
        fetcher, session = _fetcher(challenge, challenge, challenge)
        mock_cs.create_scraper.return_value.get.return_value = _response(
            200, _PRODUCT_PAGE,
        )
        result = fetcher.fetch("https://example.com/p/1")
        self.assertTrue(result.ok)
        self.assertEqual(session.get.call_count, 3)

    def test_challenge_everywhere_is_blocked(
        self, mock_cs: MagicMock,
    ) -> None:
        """When the fallback is also challenged the result is blocked."""
        challenge = _response(200, "<html>cf-turnstile</html>")
        fetcher, _session = _fetcher(challenge, challenge, challenge)
        mock_cs.create_scraper.return_value.get.return_value = challenge
        result = fetcher.fetch("https://example.com/p/1")
        self.assertTrue(result.blocked)
        self.assertFalse(result.ok)

    def test_json_body_is_never_a_challenge(
        self, mock_cs: MagicMock,
    ) -> None:
        """JSON mentioning captcha is not an interstitial."""
        fetcher, _session = _fetcher(_response(200, '{"captcha": false}'))
        self.assertTrue(fetcher.fetch("https://example.com/api").ok)

    def test_rate_limit_escalates_delay(self, mock_cs: MagicMock) -> None:
        """429 doubles the delay up to the configured cap."""
        fetcher, _session = _fetcher(
            _response(429), _response(429), _response(429),
        )
        mock_cs.create_scraper.side_effect = RuntimeError("no fallback")
        result = fetcher.fetch("https://example.com/p/1")
        self.assertTrue(result.blocked)
        cap = (
            fetcher.settings.REQUEST_DELAY
            * fetcher.settings.MAX_DELAY_MULTIPLIER
        )
        self.assertEqual(fetcher._current_delay, cap)

    def test_circuit_opens_after_threshold(
        self, mock_cs: MagicMock,
    ) -> None:
        """Consecutive failed fetches open the breaker."""
        mock_cs.create_scraper.return_value.get.return_value = _response(500)
        session = MagicMock()
        session.get.return_value = _response(500)
        fetcher = Fetcher("test", session=session)

        threshold = fetcher.settings.CIRCUIT_BREAKER_THRESHOLD
        for _ in range(threshold):
            result = fetcher.fetch("https://example.com/p/1")
            self.assertEqual(result.error, "HTTP 500")
        self.assertTrue(fetcher.circuit_open)

        calls = session.get.call_count
        result = fetcher.fetch("https://example.com/p/1")
        self.assertEqual(result.error, "circuit breaker open")
        self.assertEqual(session.get.call_count, calls)

    def test_circuit_half_opens_after_cooldown(
        self, mock_cs: MagicMock,
    ) -> None:
        """After the cooldown one probe request is let through."""
        fetcher, session = _fetcher(_response(200, _PRODUCT_PAGE))
        fetcher._circuit_open = True
        fetcher._circuit_opened_at = (
            time.time() - fetcher.settings.CIRCUIT_BREAKER_COOLDOWN - 1
        )
        self.assertTrue(fetcher.fetch("https://example.com/p/1").ok)
        self.assertFalse(fetcher.circuit_open)

    def test_request_exception_becomes_error(
        self, mock_cs: MagicMock,
    ) -> None:
        """Transport exceptions are retried then reported."""
        mock_cs.create_scraper.side_effect = RuntimeError("fallback down")
        session = MagicMock()
        session.get.side_effect = ConnectionError("dns failure")
        fetcher = Fetcher("test", session=session)
        result = fetcher.fetch("https://example.com/p/1")
        self.assertEqual(result.error, "dns failure")
        self.assertEqual(
            session.get.call_count, fetcher.settings.MAX_RETRIES,
        )


class _JsonLdAdapter(BaseAdapter):
    """Minimal adapter over the standard ladder."""

    engine = STANDARD_ENGINE
    hydration_profile = HydrationProfile(container_selector="main")

    def __init__(self, fetcher: object, escalator: object = None) -> None:
        super().__init__(
            "genericDom", "", fetcher, escalator,  # type: ignore[arg-type]
        )

    def extract_signals(self, doc: ProductDocument) -> StockSignals:
        return StockSignals(
            page_removed=doc.status_code in (404, 410),
            jsonld=first_offer(doc.soup).availability,
            button_source=doc.source,
        )


_IN_STOCK_PAGE = (
    '<html><head><script type="application/ld+json">'
    '{"@type": "Product", "offers": {"availability": '
    '"https://schema.org/InStock", "price": "9.99"}}</script></head>'
    "<body><main><h1>Widget</h1></main></body></html>"
)
_EMPTY_PAGE = "<html><body><main><h1>Widget</h1></main></body></html>"


class TestBaseAdapter(unittest.IsolatedAsyncioTestCase):
    """Pipeline composition and the never-raise contract."""

    async def test_static_verdict(self) -> None:
        """A decisive static page is returned without hydration."""
        escalator = StubEscalator()
        adapter = _JsonLdAdapter(FakeFetcher(_IN_STOCK_PAGE), escalator)
        product = await adapter.adapt("https://shop.test/p/1")
        variant = product.primary_variant
        self.assertIs(variant.status, StockStatus.IN_STOCK)
        self.assertTrue(variant.in_stock)
        self.assertEqual(product.title, "Widget")
        self.assertEqual(escalator.calls, [])

    async def test_unknown_escalates_exactly_once(self) -> None:
        """An UNKNOWN static verdict triggers one hydration pass."""
        escalator = StubEscalator(html=_EMPTY_PAGE)
        adapter = _JsonLdAdapter(FakeFetcher(_EMPTY_PAGE), escalator)
        product = await adapter.adapt("https://shop.test/p/1")
        self.assertEqual(escalator.calls, ["https://shop.test/p/1"])
        self.assertIs(product.primary_variant.status, StockStatus.UNKNOWN)
        self.assertIsNone(product.error)

    async def test_unknown_without_escalator_stays_unknown(self) -> None:
        """Hydration is opt-in; without it UNKNOWN is final."""
        adapter = _JsonLdAdapter(FakeFetcher(_EMPTY_PAGE))
        product = await adapter.adapt("https://shop.test/p/1")
        self.assertIs(product.primary_variant.status, StockStatus.UNKNOWN)

    async def test_hydration_failure_keeps_static(self) -> None:
        """A failed escalation falls back to the static reading."""
        escalator = StubEscalator(error=HydrationError("browser died"))
        adapter = _JsonLdAdapter(FakeFetcher(_EMPTY_PAGE), escalator)
        product = await adapter.adapt("https://shop.test/p/1")
        self.assertIs(product.primary_variant.status, StockStatus.UNKNOWN)
        self.assertIsNone(product.error)

    async def test_removed_page(self) -> None:
        """404 is decided as REMOVED without escalation."""
        escalator = StubEscalator()
        adapter = _JsonLdAdapter(
            FakeFetcher(_EMPTY_PAGE, status_code=404), escalator,
        )
        product = await adapter.adapt("https://shop.test/p/1")
        variant = product.primary_variant
        self.assertIs(variant.status, StockStatus.REMOVED)
        self.assertTrue(variant.is_unavailable)
        self.assertEqual(escalator.calls, [])

    async def test_blocked_escalates(self) -> None:
        """An anti-bot interception goes straight to hydration."""
        escalator = StubEscalator(html=_IN_STOCK_PAGE)
        adapter = _JsonLdAdapter(FakeFetcher(blocked=True), escalator)
        product = await adapter.adapt("https://shop.test/p/1")
        self.assertEqual(len(escalator.calls), 1)
        self.assertIs(product.primary_variant.status, StockStatus.IN_STOCK)

    async def test_blocked_without_escalator_is_placeholder(self) -> None:
        """Blocked with no browser becomes an error placeholder."""
        adapter = _JsonLdAdapter(FakeFetcher(blocked=True))
        product = await adapter.adapt("https://shop.test/p/1")
        variant = product.primary_variant
        self.assertFalse(variant.in_stock)
        self.assertIsNone(variant.price)
        self.assertIn("anti-bot", product.error or "")

    async def test_transport_error_is_placeholder(self) -> None:
        """Transport errors never raise out of adapt()."""
        adapter = _JsonLdAdapter(FakeFetcher(error="timed out"))
        product = await adapter.adapt("https://shop.test/p/1")
        self.assertEqual(product.error, "timed out")
        self.assertEqual(product.title, "Error loading product")

    async def test_extractor_bug_is_placeholder(self) -> None:
        """Unexpected exceptions are converted too."""
        adapter = _JsonLdAdapter(FakeFetcher(_IN_STOCK_PAGE))
        with patch.object(
            adapter, "extract_signals", side_effect=KeyError("boom"),
        ):
            product = await adapter.adapt("https://shop.test/p/1")
        self.assertIsNotNone(product.error)

    def test_fetch_result_flags(self) -> None:
        """ok requires 2xx without error or block."""
        self.assertTrue(FetchResult("u", 200).ok)
        self.assertFalse(FetchResult("u", 200, blocked=True).ok)
        self.assertTrue(FetchResult("u", 410).removed)


if __name__ == "__main__":
    unittest.main()
