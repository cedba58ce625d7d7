# stockwatch/hydration/escalator.py

"""Headless-browser re-rendering for ambiguous or blocked product pages.

The escalator is opt-in (``STOCKWATCH_USE_BROWSER``) because a browser
pass costs orders of magnitude more than a static fetch.  Every pass
runs inside a scoped browser session whose page, context and browser
are closed on every exit path, including timeout and cancellation.
"""

import asyncio
import logging
import random
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Response, Route, async_playwright

from stockwatch.config.settings import Settings
from stockwatch.models.product import NormalizedProduct
from stockwatch.models.verdict import StockStatus

logger = logging.getLogger("stockwatch.hydration")

# Loading placeholders seen across common frontend frameworks
SKELETON_SELECTORS: tuple[str, ...] = (
    ".MuiSkeleton-root",
    "[class*=\"skeleton\"]",
    "[data-testid*=\"skeleton\"]",
    "[aria-busy=\"true\"]",
)

# Text that only appears once product status has rendered
STATUS_ANCHORS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(?:out of stock|sold out|no longer available)\b", re.I),
    re.compile(r"\bpre[\s-]?order\b", re.I),
)

ADD_TO_CART_CTA = re.compile(r"add to (?:cart|bag|trolley)|buy now", re.I)


class HydrationError(Exception):
    """Browser launch, navigation or total-timeout failure."""


@dataclass(frozen=True)
class HydrationProfile:
    """Where and what to wait for on one retailer's rendered page."""

    container_selector: str
    cta_pattern: re.Pattern[str] = ADD_TO_CART_CTA
    skeleton_selectors: tuple[str, ...] = SKELETON_SELECTORS
    status_anchors: tuple[re.Pattern[str], ...] = STATUS_ANCHORS
    # Capture JSON responses whose URL matches (app inventory calls)
    api_url_pattern: re.Pattern[str] | None = None


@dataclass(frozen=True)
class SettleState:
    """One poll of the rendered product region."""

    has_skeleton: bool = False
    has_anchor: bool = False
    cta_visible: bool = False
    cta_enabled: bool = False

    @property
    def settled(self) -> bool:
        return not self.has_skeleton and (self.has_anchor or self.cta_visible)


@dataclass
class RenderedPage:
    """Rendered DOM plus live control state handed back to an adapter."""

    url: str
    html: str
    status_code: int
    cta_visible: bool = False
    cta_enabled: bool = False
    api_payloads: list[object] = field(
        default_factory=lambda: list[object]()
    )


class PageProbe(ABC):
    """Minimal view of a browser page used by the escalator."""

    api_payloads: list[object]

    @abstractmethod
    async def goto(self, url: str) -> int:
        """Navigate and return the HTTP status of the document."""
        ...

    @abstractmethod
    async def settle_state(self) -> SettleState:
        ...

    @abstractmethod
    async def content(self) -> str:
        ...


SessionFactory = Callable[
    [HydrationProfile], AbstractAsyncContextManager[PageProbe]
]


class PlaywrightProbe(PageProbe):
    """:class:`PageProbe` over a Playwright page."""

    def __init__(
        self, page: Page, profile: HydrationProfile, nav_timeout: float,
    ) -> None:
        self.page = page
        self.profile = profile
        self.nav_timeout = nav_timeout
        self.api_payloads = []
        if profile.api_url_pattern is not None:
            page.on("response", self._capture_json)

    async def _capture_json(self, response: Response) -> None:
        pattern = self.profile.api_url_pattern
        if pattern is None or not pattern.search(response.url):
            return
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type.lower():
            return
        try:
            self.api_payloads.append(await response.json())
        except (PlaywrightError, ValueError):
            logger.debug("Unreadable JSON response from %s", response.url)

    async def goto(self, url: str) -> int:
        response = await self.page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=self.nav_timeout * 1000,
        )
        container = self.page.locator(self.profile.container_selector).first
        try:
            await container.wait_for(state="visible", timeout=2000)
        except PlaywrightError:
            logger.debug("Product container not visible on %s", url)
        return response.status if response is not None else 0

    async def settle_state(self) -> SettleState:
        region = self.page.locator(self.profile.container_selector).first
        cta = region.get_by_role("button", name=self.profile.cta_pattern).first
        try:
            has_skeleton = False
            if self.profile.skeleton_selectors:
                skeleton = region.locator(
                    ", ".join(self.profile.skeleton_selectors)
                ).first
                has_skeleton = await skeleton.is_visible()
            text = (await region.inner_text(timeout=1000)).lower()
            cta_visible = await cta.is_visible()
            cta_enabled = cta_visible and await cta.is_enabled()
        except PlaywrightError:
            return SettleState()
        return SettleState(
            has_skeleton=has_skeleton,
            has_anchor=any(
                anchor.search(text) for anchor in self.profile.status_anchors
            ),
            cta_visible=cta_visible,
            cta_enabled=cta_enabled,
        )

    async def content(self) -> str:
        return await self.page.content()


async def _block_static_assets(route: Route) -> None:
    if route.request.resource_type in ("image", "font", "media"):
        await route.abort()
    else:
        await route.continue_()


def playwright_session(
    settings: Settings | None = None,
) -> SessionFactory:
    """Factory of scoped Chromium sessions, one per hydration pass."""
    cfg = settings or Settings()

    @asynccontextmanager
    async def session(profile: HydrationProfile) -> AsyncIterator[PageProbe]:
        async with async_playwright() as pw:
            browser = await pw.chromium.launch(
                headless=True,
                args=["--disable-blink-features=AutomationControlled"],
            )
            try:
                context = await browser.new_context(
                    user_agent=cfg.USER_AGENT,
                    viewport={"width": 1440, "height": 900},
                    locale=cfg.BROWSER_LOCALE,
                    timezone_id=cfg.BROWSER_TIMEZONE,
                )
                try:
                    await context.route("**/*", _block_static_assets)
                    page = await context.new_page()
                    try:
                        yield PlaywrightProbe(
                            page, profile, cfg.HYDRATION_NAV_TIMEOUT,
                        )
                    finally:
                        await page.close()
                finally:
                    await context.close()
            finally:
                await browser.close()

    return session


class HydrationEscalator:
    """Render, wait for the product region to settle, then re-decide.

    ``hydrate`` re-reads the rendered page up to
    ``HYDRATION_MAX_RETRIES`` times while the verdict is UNKNOWN, and
    returns whatever the last read decided; it never upgrades an
    UNKNOWN to a definite status on its own.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._session_factory = (
            session_factory or playwright_session(self.settings)
        )
        self._semaphore = asyncio.Semaphore(
            self.settings.HYDRATION_CONCURRENCY
        )
        self.passes = 0

    async def hydrate(
        self,
        url: str,
        profile: HydrationProfile,
        evaluate: Callable[[RenderedPage], NormalizedProduct],
    ) -> NormalizedProduct:
        async with self._semaphore:
            self.passes += 1
            logger.info("Hydrating %s", url)
            try:
                return await asyncio.wait_for(
                    self._hydrate(url, profile, evaluate),
                    timeout=self.settings.HYDRATION_TOTAL_TIMEOUT,
                )
            except asyncio.TimeoutError as exc:
                raise HydrationError(
                    f"hydration exceeded "
                    f"{self.settings.HYDRATION_TOTAL_TIMEOUT:.0f}s"
                ) from exc
            except PlaywrightError as exc:
                raise HydrationError(str(exc)) from exc

    async def _hydrate(
        self,
        url: str,
        profile: HydrationProfile,
        evaluate: Callable[[RenderedPage], NormalizedProduct],
    ) -> NormalizedProduct:
        async with self._session_factory(profile) as probe:
            status_code = await probe.goto(url)
            state = await self.wait_until_settled(probe)
            product = evaluate(await self._render(probe, url, status_code, state))

            retries = 0
            while (
                _is_unknown(product)
                and retries < self.settings.HYDRATION_MAX_RETRIES
            ):
                await asyncio.sleep(self.settings.HYDRATION_RETRY_DELAY)
                state = await probe.settle_state()
                product = evaluate(
                    await self._render(probe, url, status_code, state)
                )
                retries += 1

            logger.info(
                "Hydrated %s -> %s after %d retries",
                url,
                product.primary_variant.status.value,
                retries,
            )
            return product

    async def wait_until_settled(self, probe: PageProbe) -> SettleState:
        """Poll with 250-450ms jitter until the region settles or time runs out."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.HYDRATION_WAIT_TIMEOUT
        while loop.time() < deadline:
            state = await probe.settle_state()
            if state.settled:
                return state
            await asyncio.sleep(0.25 + random.random() * 0.2)
        logger.debug("Render did not settle within %.0fs",
                     self.settings.HYDRATION_WAIT_TIMEOUT)
        return await probe.settle_state()

    @staticmethod
    async def _render(
        probe: PageProbe, url: str, status_code: int, state: SettleState,
    ) -> RenderedPage:
        payloads: list[Any] = list(probe.api_payloads)
        return RenderedPage(
            url=url,
            html=await probe.content(),
            status_code=status_code,
            cta_visible=state.cta_visible,
            cta_enabled=state.cta_enabled,
            api_payloads=payloads,
        )


def _is_unknown(product: NormalizedProduct) -> bool:
    return product.primary_variant.status is StockStatus.UNKNOWN
