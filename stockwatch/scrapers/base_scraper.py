# stockwatch/scrapers/base_scraper.py

"""Fetcher and abstract base class for all retailer adapters."""

import asyncio
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from functools import partial
from decimal import Decimal
from typing import Any

import cloudscraper  # type: ignore[import-untyped]
from curl_cffi import requests as curl_requests

from stockwatch.config.settings import Settings
from stockwatch.decision.engine import DecisionEngine
from stockwatch.extractors.document import ProductDocument
from stockwatch.hydration.escalator import (
    HydrationError,
    HydrationEscalator,
    HydrationProfile,
    RenderedPage,
)
from stockwatch.models.product import NormalizedProduct, NormalizedVariant
from stockwatch.models.signals import StockSignals
from stockwatch.models.verdict import SignalSource, Verdict


class FetchError(Exception):
    """Transport failure after retries, fallback and circuit breaker."""


class ScrapeError(Exception):
    """An adapter produced an error placeholder instead of a reading."""


@dataclass(frozen=True)
class FetchResult:
    """Raw markup plus transport status of one GET."""

    url: str
    status_code: int = 0
    text: str = ""
    blocked: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and not self.blocked
            and 200 <= self.status_code < 300
        )

    @property
    def removed(self) -> bool:
        """404/410 are answers, not failures."""
        return self.status_code in (404, 410)


class Fetcher:
    """GET with browser impersonation, retries, adaptive delay and
    a circuit breaker, falling back to cloudscraper when blocked.

    One fetcher is shared by every target of a retailer; requests are
    serialised so the politeness delay holds across worker threads.
    """

    # Cloudflare challenge page markers (checked before keyword scan)
    _CF_CHALLENGE_MARKERS: list[str] = [
        "challenges.cloudflare.com",
        "cdn-cgi/challenge-platform",
        "just a moment",
        "attention required",
        "cf-turnstile",
        "cf_chl_opt",
    ]

    def __init__(
        self,
        source_name: str,
        homepage: str = "",
        session: Any = None,
    ) -> None:
        self.source_name = source_name
        self.homepage = homepage
        self.logger = logging.getLogger(f"stockwatch.{source_name}")
        self.settings = Settings()
        self.session = session or curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self._lock = threading.Lock()
        self._current_delay: float = self.settings.REQUEST_DELAY
        self._consecutive_failures: int = 0
        self._circuit_open: bool = False
        self._circuit_opened_at: float = 0.0
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    @property
    def circuit_open(self) -> bool:
        return self._circuit_open

    def fetch(self, url: str) -> FetchResult:
        """Blocking fetch; run through ``asyncio.to_thread`` from async code."""
        with self._lock:
            return self._fetch(url)

    # ── Response validation ──────────────────────────────

    def _is_challenge(self, text: str) -> bool:
        """Check for Cloudflare challenge pages and CAPTCHA indicators."""
        if text.lstrip().startswith(("{", "[")):
            return False
        lower = text.lower()

        for marker in self._CF_CHALLENGE_MARKERS:
            if marker in lower:
                self.logger.warning(
                    "[%s] Cloudflare challenge detected (marker: '%s')",
                    self.source_name,
                    marker,
                )
                return True

        # Real product pages mention "captcha" in vendor scripts
        has_body_content = "<body" in lower and len(text) > 5000
        if not has_body_content:
            for keyword in self.settings.CAPTCHA_KEYWORDS:
                if keyword in lower:
                    self.logger.warning(
                        "[%s] CAPTCHA keyword '%s' detected",
                        self.source_name,
                        keyword,
                    )
                    return True
        return False

    # ── Circuit breaker ──────────────────────────────────

    def _check_circuit(self) -> bool:
        """Return True if the circuit breaker blocks this request.

        After CIRCUIT_BREAKER_COOLDOWN seconds the breaker enters
        a half-open state, allowing a single probe request through.
        """
        if not self._circuit_open:
            return False
        elapsed = time.time() - self._circuit_opened_at
        if elapsed >= self.settings.CIRCUIT_BREAKER_COOLDOWN:
            self.logger.info(
                "[%s] Circuit breaker half-open after %.0fs",
                self.source_name,
                elapsed,
            )
            self._circuit_open = False
            return False
        return True

    def _record_success(self) -> None:
        self._consecutive_failures = 0
        self._circuit_open = False
        self._circuit_opened_at = 0.0
        self._current_delay = self.settings.REQUEST_DELAY

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.settings.CIRCUIT_BREAKER_THRESHOLD:
            self._circuit_open = True
            self._circuit_opened_at = time.time()
            self.logger.error(
                "[%s] Circuit breaker opened after %d consecutive failures",
                self.source_name,
                self._consecutive_failures,
            )

    def _escalate_delay(self) -> None:
        """Double the current delay up to the configured max."""
        max_delay = (
            self.settings.REQUEST_DELAY * self.settings.MAX_DELAY_MULTIPLIER
        )
        self._current_delay = min(self._current_delay * 2, max_delay)
        self.logger.warning(
            "[%s] Rate-limited, delay escalated to %.1fs",
            self.source_name,
            self._current_delay,
        )

    # ── Fetch ────────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        headers = dict(self.settings.DEFAULT_HEADERS)
        if self.homepage:
            headers["Referer"] = self.homepage
        return headers

    def _fetch(self, url: str) -> FetchResult:
        if self._check_circuit():
            return FetchResult(url, error="circuit breaker open")

        headers = self._headers()
        time.sleep(self._current_delay)

        blocked = False
        last_status = 0
        last_error: str | None = None
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.get(
                    url, headers=headers, timeout=self._request_timeout,
                )
            except Exception as exc:
                last_error = str(exc)
                self.logger.warning(
                    "[%s] Request error on attempt %d: %s",
                    self.source_name,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(self._current_delay * (attempt + 1))
                continue

            last_status = resp.status_code
            if resp.status_code == 200:
                if self._is_challenge(resp.text):
                    blocked = True
                    self._escalate_delay()
                    time.sleep(self._current_delay)
                    continue
                self._record_success()
                return FetchResult(url, 200, resp.text)
            if FetchResult(url, resp.status_code).removed:
                self._record_success()
                return FetchResult(url, resp.status_code, resp.text)

            self.logger.warning(
                "[%s] HTTP %d on attempt %d",
                self.source_name,
                resp.status_code,
                attempt + 1,
            )
            if resp.status_code in (429, 403):
                blocked = True
                self._escalate_delay()
                time.sleep(self._current_delay)

        fallback = self._fetch_cloudscraper(url, headers)
        if fallback is not None:
            self._record_success()
            return fallback

        self._record_failure()
        if blocked:
            return FetchResult(url, last_status, blocked=True)
        return FetchResult(
            url,
            last_status,
            error=last_error or f"HTTP {last_status}",
        )

    def _fetch_cloudscraper(
        self, url: str, headers: dict[str, str],
    ) -> FetchResult | None:
        """JS-challenge solving fallback once curl_cffi is exhausted."""
        self.logger.info(
            "[%s] curl_cffi exhausted, falling back to cloudscraper",
            self.source_name,
        )
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            resp: Any = scraper.get(
                url, headers=headers, timeout=self._request_timeout,
            )
        except Exception as e:
            self.logger.error(
                "[%s] cloudscraper fallback also failed: %s",
                self.source_name,
                e,
                exc_info=True,
            )
            return None
        text = str(resp.text)
        if resp.status_code == 200 and not self._is_challenge(text):
            return FetchResult(url, 200, text)
        return None


class BaseAdapter(ABC):
    """Fetcher -> extractor -> decision engine [-> hydration] pipeline.

    Subclasses supply signal extraction, a decision engine and the
    product fields; this class owns transport, escalation and the
    never-raise contract of :meth:`adapt`.
    """

    engine: DecisionEngine
    hydration_profile: HydrationProfile | None = None

    def __init__(
        self,
        platform: str,
        homepage: str = "",
        fetcher: Fetcher | None = None,
        escalator: HydrationEscalator | None = None,
    ) -> None:
        self.platform = platform
        self.homepage = homepage
        self.logger = logging.getLogger(f"stockwatch.{platform}")
        self.settings = Settings()
        self.selectors: dict[str, Any] = self._load_selectors()
        self.fetcher = fetcher or Fetcher(platform, homepage)
        self.escalator = escalator

    def _load_selectors(self) -> dict[str, Any]:
        """Load CSS selectors for this platform from selectors.json."""
        with open(self.settings.SELECTORS_PATH) as f:
            all_selectors: dict[str, Any] = json.load(f)
        result: dict[str, Any] = all_selectors.get(self.platform, {})
        return result

    def _selector_list(self, key: str) -> list[str]:
        value = self.selectors.get(key, [])
        return [value] if isinstance(value, str) else list(value)

    # ── Public contract ──────────────────────────────────

    async def adapt(
        self, url: str, postcode: str | None = None,
    ) -> NormalizedProduct:
        """Scrape one product page; never raises for a single target."""
        try:
            return await self._adapt(url, postcode)
        except Exception as exc:
            self.logger.error(
                "[%s] Adapter failed for %s: %s",
                self.platform,
                url,
                exc,
                exc_info=True,
            )
            return NormalizedProduct.failed(self.platform, url, str(exc))

    def evaluate(
        self, doc: ProductDocument,
    ) -> tuple[StockSignals, Verdict]:
        """Extract signals from a document and decide on them."""
        signals = self.extract_signals(doc)
        return signals, self.decide(signals, doc.url)

    def decide(self, signals: StockSignals, url: str) -> Verdict:
        decision = self.engine.explain(signals)
        self.logger.debug(
            "[%s] %s -> %s (%s) via %s",
            self.platform,
            url,
            decision.verdict.status.value,
            decision.verdict.reason.value,
            " > ".join(decision.path),
        )
        return decision.verdict

    # ── Pipeline ─────────────────────────────────────────

    async def _adapt(
        self, url: str, postcode: str | None,
    ) -> NormalizedProduct:
        result = await asyncio.to_thread(self.fetcher.fetch, url)

        if result.ok or result.removed:
            doc = ProductDocument(result.text, url, result.status_code)
            signals, verdict = self.evaluate(doc)
            product = self.build_product(doc, signals, verdict, postcode)
            if result.ok and self._needs_hydration(signals, verdict):
                return await self._escalate(url, product, postcode)
            return product

        if result.blocked and self._can_hydrate():
            self.logger.info(
                "[%s] Anti-bot interception on %s, escalating",
                self.platform,
                url,
            )
            return await self._escalate(url, None, postcode)

        raise FetchError(
            "blocked by anti-bot challenge"
            if result.blocked
            else result.error or f"HTTP {result.status_code}"
        )

    def _can_hydrate(self) -> bool:
        return (
            self.escalator is not None
            and self.hydration_profile is not None
        )

    def _needs_hydration(
        self, signals: StockSignals, verdict: Verdict,
    ) -> bool:
        """Static verdicts that should be re-read from a rendered DOM."""
        return self._can_hydrate() and verdict.is_unknown

    async def _escalate(
        self,
        url: str,
        static: NormalizedProduct | None,
        postcode: str | None,
    ) -> NormalizedProduct:
        """Run the hydration pass once; its verdict is final."""
        assert self.escalator is not None
        assert self.hydration_profile is not None
        try:
            return await self.escalator.hydrate(
                url,
                self.hydration_profile,
                partial(self._evaluate_rendered, postcode=postcode),
            )
        except HydrationError as exc:
            if static is None:
                raise
            self.logger.warning(
                "[%s] Hydration failed for %s, keeping static result: %s",
                self.platform,
                url,
                exc,
            )
            return static

    def _evaluate_rendered(
        self, page: RenderedPage, postcode: str | None,
    ) -> NormalizedProduct:
        doc = ProductDocument(
            page.html, page.url, page.status_code, SignalSource.HYDRATED,
        )
        signals = self.rendered_signals(doc, page)
        verdict = self.decide(signals, page.url)
        return self.build_product(doc, signals, verdict, postcode)

    def rendered_signals(
        self, doc: ProductDocument, page: RenderedPage,
    ) -> StockSignals:
        """Static extraction over the rendered DOM plus live CTA state."""
        return replace(
            self.extract_signals(doc),
            add_to_cart=page.cta_visible and page.cta_enabled,
            button_source=SignalSource.HYDRATED,
        )

    def build_product(
        self,
        doc: ProductDocument,
        signals: StockSignals,
        verdict: Verdict,
        postcode: str | None,
    ) -> NormalizedProduct:
        variant = NormalizedVariant.from_verdict(
            verdict, self.extract_price(doc, signals),
        )
        return NormalizedProduct(
            retailer=self.platform,
            url=doc.url,
            title=self.extract_title(doc),
            sku=self.extract_sku(doc),
            variants=(variant,),
        )

    # ── Per-retailer hooks ───────────────────────────────

    @abstractmethod
    def extract_signals(self, doc: ProductDocument) -> StockSignals:
        """Pure function of the document."""
        ...

    def extract_title(self, doc: ProductDocument) -> str:
        return doc.title(self._selector_list("title"))

    def extract_price(
        self, doc: ProductDocument, signals: StockSignals,
    ) -> Decimal | None:
        return doc.price(self._selector_list("price"))

    def extract_sku(self, doc: ProductDocument) -> str | None:
        return None

