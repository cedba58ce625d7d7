# stockwatch/scrapers/registry.py

"""Platform-key -> adapter table, injected into the run orchestrator."""

import importlib
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from stockwatch.config.settings import Settings
from stockwatch.hydration.escalator import HydrationEscalator
from stockwatch.models.product import MonitoredTarget, NormalizedProduct

logger = logging.getLogger("stockwatch.registry")


class Adapter(Protocol):
    """What the orchestrator needs from a retailer pipeline."""

    platform: str

    async def adapt(
        self, url: str, postcode: str | None = None,
    ) -> NormalizedProduct:
        ...


def _load_adapter_class(dotted_path: str) -> type[Any]:
    """Dynamically import an adapter class from its dotted module path."""
    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    cls: type[Any] = getattr(module, class_name)
    return cls


class AdapterRegistry:
    """Explicit adapter table with a generic fallback.

    Unregistered platforms resolve to ``default_platform``.
    """

    def __init__(
        self,
        adapters: Mapping[str, Adapter],
        default_platform: str = Settings.GENERIC_PLATFORM,
    ) -> None:
        if default_platform not in adapters:
            raise ValueError(
                f"Default platform '{default_platform}' is not registered"
            )
        self._adapters = dict(adapters)
        self.default_platform = default_platform

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        escalator: HydrationEscalator | None = None,
    ) -> "AdapterRegistry":
        """Build every adapter listed in ``RETAILER_ADAPTERS``.

        A shared escalator is created when hydration is enabled and
        none is passed in.
        """
        cfg = settings or Settings()
        if escalator is None and cfg.HYDRATION_ENABLED:
            escalator = HydrationEscalator(cfg)

        adapters: dict[str, Adapter] = {}
        for entry in cfg.RETAILER_ADAPTERS:
            adapter_cls = _load_adapter_class(entry["adapter"])
            adapters[entry["platform"]] = adapter_cls(
                homepage=entry.get("homepage", ""),
                escalator=escalator,
            )
        return cls(adapters, cfg.GENERIC_PLATFORM)

    def platforms(self) -> list[str]:
        return list(self._adapters)

    def is_registered(self, platform: str) -> bool:
        return platform in self._adapters

    def resolve(self, platform: str) -> Adapter:
        adapter = self._adapters.get(platform)
        if adapter is None:
            logger.debug(
                "No adapter for '%s', using %s",
                platform,
                self.default_platform,
            )
            return self._adapters[self.default_platform]
        return adapter

    async def adapt(
        self, target: MonitoredTarget, postcode: str | None = None,
    ) -> NormalizedProduct:
        """Run the target's pipeline; failures become an error placeholder."""
        adapter = self.resolve(target.retailer_platform)
        try:
            return await adapter.adapt(target.url, postcode)
        except Exception as exc:
            logger.error(
                "Adapter '%s' raised for target %d: %s",
                adapter.platform,
                target.id,
                exc,
                exc_info=True,
            )
            return NormalizedProduct.failed(
                adapter.platform, target.url, str(exc),
            )
