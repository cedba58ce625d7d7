# stockwatch/extractors/phrases.py

"""Free-text phrase tables shared by the retailer extractors.

All patterns run against lowercased, whitespace-collapsed text of a
scoped page region (see :meth:`ProductDocument.region_text`).
"""

import re

# Soft-404 wording rendered with HTTP 200
SOFT_404_RE = re.compile(
    r"our princess is in another castle"
    r"|we couldn.?t find the page"
    r"|page not found"
    r"|page may have been moved or deleted"
)

OOS_STRONG_RE = re.compile(r"sold out|out of stock|no longer available")
OOS_WEAK_RE = re.compile(
    r"unavailable online|currently unavailable"
    r"|not available online|not available"
)
# Single-pattern OOS used by retailers without a strong/weak split
OOS_ANY_RE = re.compile(r"out of stock|sold out|unavailable")

PREORDER_RE = re.compile(r"\bpre[\s-]?order")
RELEASE_RE = re.compile(r"\b(?:release|releases|releasing|release date)\b")
RELEASE_CHIP_RE = re.compile(
    r"\b(?:mon|tue|wed|thu|fri|sat|sun),?\s+\d{1,2}\s+\w+\s+\d{4}\b"
)
DEPOSIT_RE = re.compile(r"\bdeposit\b")

IN_STORE_ONLY_RE = re.compile(
    r"in[\s-]store only|available in store|check stock at"
)
ADD_TO_CART_RE = re.compile(r"add to (?:cart|bag|trolley)|buy now")
WISHLIST_RE = re.compile(r"wishlist")
NOTIFY_ME_RE = re.compile(r"notify me when available")
ENQUIRE_RE = re.compile(r"\benquire\b")
STOCK_IN_STOCK_RE = re.compile(r"\bin stock\b")


def has_soft_404(text: str) -> bool:
    return bool(SOFT_404_RE.search(text))


def oos_flags(text: str) -> tuple[bool, bool]:
    """Return ``(strong, weak)`` out-of-stock phrase matches."""
    return bool(OOS_STRONG_RE.search(text)), bool(OOS_WEAK_RE.search(text))


def has_preorder_language(text: str) -> bool:
    """Preorder badge/CTA wording, release-date chips or deposit hints."""
    if PREORDER_RE.search(text):
        return True
    has_release = bool(
        RELEASE_RE.search(text) or RELEASE_CHIP_RE.search(text)
    )
    return has_release or bool(DEPOSIT_RE.search(text))
