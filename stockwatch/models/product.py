# stockwatch/models/product.py

"""Normalized adapter output and monitored-target models."""

from dataclasses import dataclass, field
from decimal import Decimal

from stockwatch.models.verdict import StockStatus, Verdict


@dataclass(frozen=True)
class MonitoredTarget:
    """A product page registered for monitoring (read-only to the core)."""

    id: int
    url: str
    retailer_platform: str
    retailer_id: int
    title: str = ""
    retailer_name: str = ""


@dataclass(frozen=True)
class StoreAvail:
    """Per-physical-store availability signal."""

    store_code: str
    store_name: str
    in_stock: bool
    price: Decimal | None = None


@dataclass(frozen=True)
class NormalizedVariant:
    """One observation of a variant, produced fresh by every adapter call."""

    price: Decimal | None
    in_stock: bool
    is_preorder: bool = False
    is_in_store_only: bool = False
    is_unavailable: bool = False
    status: StockStatus = StockStatus.UNKNOWN
    reason: str = "UNKNOWN"
    store_availabilities: tuple[StoreAvail, ...] = ()
    error: str | None = None

    @classmethod
    def from_verdict(
        cls,
        verdict: Verdict,
        price: Decimal | None,
        store_availabilities: tuple[StoreAvail, ...] = (),
    ) -> "NormalizedVariant":
        """Build a variant whose flags are derived from a single verdict."""
        return cls(
            price=price,
            in_stock=verdict.in_stock,
            is_preorder=verdict.status is StockStatus.PREORDER,
            is_in_store_only=verdict.in_store_only,
            is_unavailable=verdict.status is StockStatus.REMOVED,
            status=verdict.status,
            reason=verdict.reason.value,
            store_availabilities=store_availabilities,
        )

    @classmethod
    def placeholder(cls, error: str) -> "NormalizedVariant":
        """Unavailable stand-in returned when an adapter fails."""
        return cls(
            price=None,
            in_stock=False,
            status=StockStatus.UNKNOWN,
            reason="ERROR",
            error=error,
        )

    @property
    def status_label(self) -> str:
        """Human-readable status used in logs and CLI output."""
        if self.error:
            return "Error"
        if self.is_preorder:
            return "Preorder"
        if self.is_in_store_only:
            return "In Store Only"
        if self.is_unavailable:
            return "Removed"
        if self.status is StockStatus.UNKNOWN:
            return "Unknown"
        return "In Stock" if self.in_stock else "Out of Stock"


@dataclass(frozen=True)
class NormalizedProduct:
    """Adapter result for one product page."""

    retailer: str
    url: str
    title: str
    sku: str | None = None
    variants: tuple[NormalizedVariant, ...] = field(
        default_factory=tuple
    )

    @classmethod
    def failed(
        cls, retailer: str, url: str, error: str,
    ) -> "NormalizedProduct":
        """Best-effort result carrying a single error placeholder variant."""
        return cls(
            retailer=retailer,
            url=url,
            title="Error loading product",
            variants=(NormalizedVariant.placeholder(error),),
        )

    @property
    def primary_variant(self) -> NormalizedVariant:
        """First variant, or a placeholder when the adapter produced none."""
        if self.variants:
            return self.variants[0]
        return NormalizedVariant.placeholder("adapter returned no variants")

    @property
    def error(self) -> str | None:
        """Error marker of the primary variant, if any."""
        return self.primary_variant.error
