# stockwatch/extractors/document.py

"""Structured-document view over fetched or rendered product markup."""

import re
from copy import copy
from decimal import Decimal, InvalidOperation

from bs4 import BeautifulSoup, Tag

from stockwatch.models.verdict import SignalSource

_WS_RE = re.compile(r"\s+")
_PRICE_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")

# Page chrome removed when no product container can be found
_CHROME_SELECTOR = (
    "header, [class*=\"header\"], [class*=\"Header\"], nav, "
    "footer, [class*=\"footer\"], [class*=\"Footer\"]"
)


def collapse_ws(text: str | None) -> str:
    """Lowercase and collapse runs of whitespace."""
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip().lower()


def parse_price(text: str | None) -> Decimal | None:
    """Extract a positive price from a string like '$1,299.00'."""
    if not text:
        return None
    match = _PRICE_RE.search(text)
    if not match:
        return None
    try:
        value = Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        return None
    return value if value > 0 else None


def is_disabled(el: Tag) -> bool:
    if el.has_attr("disabled"):
        return True
    if str(el.get("aria-disabled", "")).lower() == "true":
        return True
    classes = el.get("class") or []
    return any("disabled" in str(c).lower() for c in classes)


class ProductDocument:
    """Parsed product page plus the transport facts it came with."""

    def __init__(
        self,
        html: str,
        url: str = "",
        status_code: int = 200,
        source: SignalSource = SignalSource.STATIC,
    ) -> None:
        self.html = html or ""
        self.url = url
        self.status_code = status_code
        self.source = source
        self.soup = BeautifulSoup(self.html, "lxml")

    # ── Regions ──────────────────────────────────────────

    def select_first(self, selector: str) -> Tag | None:
        """First element matching a CSS selector list, in document order."""
        if not selector:
            return None
        return self.soup.select_one(selector)

    def body(self) -> Tag:
        """The <body> element, or the whole soup for fragments."""
        found = self.soup.body
        return found if found is not None else self.soup

    def content_region(
        self,
        selector: str,
        fallback_selector: str = "",
        strip_chrome: bool = True,
    ) -> Tag | None:
        """Locate the main product region.

        Tries ``selector`` then ``fallback_selector``; when neither
        matches and ``strip_chrome`` is set, returns a copy of the body
        with header, navigation and footer removed.
        """
        region = self.select_first(selector)
        if region is None and fallback_selector:
            region = self.select_first(fallback_selector)
        if region is not None:
            return region
        if not strip_chrome:
            return None
        body = copy(self.body())
        for chrome in body.select(_CHROME_SELECTOR):
            chrome.decompose()
        return body

    def region_text(
        self,
        selector: str,
        fallback_selector: str = "",
        strip_chrome: bool = True,
    ) -> str:
        """Normalised text of the main product region ("" when absent)."""
        region = self.content_region(
            selector, fallback_selector, strip_chrome
        )
        if region is None:
            return ""
        return collapse_ws(region.get_text(" "))

    def body_text(self) -> str:
        """Normalised text of the whole body."""
        return collapse_ws(self.body().get_text(" "))

    # ── Field helpers ────────────────────────────────────

    def meta_content(self, prop: str) -> str:
        """Content of a ``<meta property=...>`` or ``<meta name=...>`` tag."""
        tag = self.soup.find("meta", attrs={"property": prop})
        if tag is None:
            tag = self.soup.find("meta", attrs={"name": prop})
        if tag is None:
            return ""
        return str(tag.get("content", "") or "").strip()

    def page_title(self) -> str:
        """Text of the <title> element."""
        if self.soup.title is None:
            return ""
        return self.soup.title.get_text(strip=True)

    def first_text(self, selectors: list[str]) -> str:
        """Stripped text of the first selector that yields non-empty text."""
        for selector in selectors:
            el = self.select_first(selector)
            if el is None:
                continue
            text = el.get_text(strip=True)
            if text:
                return text
        return ""

    def title(self, selectors: list[str] | None = None) -> str:
        """Product title via retailer selectors, og:title, h1 then <title>."""
        return (
            self.first_text(selectors or [])
            or self.meta_content("og:title")
            or self.first_text(["h1"])
            or self.page_title()
            or "Unknown Product"
        )

    def has_enabled_control(
        self,
        selector: str,
        pattern: re.Pattern[str] | None = None,
        region: Tag | None = None,
    ) -> bool:
        """Whether an enabled element matches ``selector`` (and ``pattern``).

        ``disabled``, ``aria-disabled="true"`` and a ``disabled`` class
        all count as disabled.
        """
        if not selector:
            return False
        root = region if region is not None else self.soup
        for el in root.select(selector):
            if is_disabled(el):
                continue
            if pattern is None:
                return True
            label = collapse_ws(
                el.get_text(" ") or str(el.get("value") or "")
            )
            if pattern.search(label):
                return True
        return False

    def price(self, selectors: list[str]) -> Decimal | None:
        """First positive price found under the given selectors.

        ``content`` and ``value`` attributes take precedence over the
        element text, matching microdata price markup.
        """
        for selector in selectors:
            el = self.select_first(selector)
            if el is None:
                continue
            raw = (
                el.get("content")
                or el.get("value")
                or el.get_text(" ", strip=True)
            )
            value = parse_price(str(raw) if raw else "")
            if value is not None:
                return value
        return None
