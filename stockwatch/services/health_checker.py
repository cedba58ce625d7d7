# stockwatch/services/health_checker.py

"""Retailer connectivity and lock backend health checker."""

import asyncio
import logging
import time
from dataclasses import dataclass

from curl_cffi import requests as curl_requests

from stockwatch.config.settings import Settings
from stockwatch.services.throttle import LockBackend

logger = logging.getLogger("stockwatch.health")

_HEALTH_TIMEOUT = 10  # seconds per retailer


@dataclass
class HealthResult:
    """Result of a single health probe."""

    source_id: str
    status: str  # "ok", "slow", "down", "skipped"
    latency_ms: float
    message: str


def probe_retailer(
    entry: dict[str, str],
    session: curl_requests.Session | None = None,
) -> HealthResult:
    """Fetch a retailer homepage the way the adapters do."""
    source_id = entry["platform"]
    homepage = entry.get("homepage", "")
    if not homepage:
        return HealthResult(
            source_id=source_id,
            status="skipped",
            latency_ms=0.0,
            message="No homepage configured",
        )

    client = session or curl_requests.Session(
        impersonate=Settings.IMPERSONATE_BROWSER,
    )
    start = time.monotonic()
    try:
        resp = client.get(
            homepage,
            headers=Settings.DEFAULT_HEADERS,
            timeout=_HEALTH_TIMEOUT,
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        if resp.status_code != 200:
            return HealthResult(
                source_id=source_id,
                status="down",
                latency_ms=elapsed_ms,
                message=f"HTTP {resp.status_code}",
            )

        if elapsed_ms > 5000:
            return HealthResult(
                source_id=source_id,
                status="slow",
                latency_ms=elapsed_ms,
                message="High latency",
            )

        return HealthResult(
            source_id=source_id,
            status="ok",
            latency_ms=elapsed_ms,
            message="",
        )

    except Exception as exc:
        elapsed_ms = (time.monotonic() - start) * 1000
        return HealthResult(
            source_id=source_id,
            status="down",
            latency_ms=elapsed_ms,
            message=str(exc)[:80],
        )


class HealthChecker:
    """Runs concurrent probes against every retailer and the lock backend."""

    def __init__(
        self,
        lock_backend: LockBackend | None = None,
        retailers: list[dict[str, str]] | None = None,
    ) -> None:
        self.retailers = (
            retailers if retailers is not None else Settings.RETAILER_ADAPTERS
        )
        self.lock_backend = lock_backend

    async def _probe_lock(self) -> HealthResult:
        if self.lock_backend is None:
            return HealthResult(
                source_id="lock",
                status="skipped",
                latency_ms=0.0,
                message="No lock backend (runs unguarded)",
            )
        start = time.monotonic()
        reachable = await self.lock_backend.ping()
        elapsed_ms = (time.monotonic() - start) * 1000
        return HealthResult(
            source_id=f"lock:{self.lock_backend.name}",
            status="ok" if reachable else "down",
            latency_ms=elapsed_ms,
            message="" if reachable else "Unreachable",
        )

    async def check_all(self) -> list[HealthResult]:
        """Probe every registered retailer concurrently."""
        tasks = [
            asyncio.to_thread(probe_retailer, entry)
            for entry in self.retailers
        ]
        results: list[HealthResult] = list(
            await asyncio.gather(*tasks, self._probe_lock())
        )
        for r in results:
            logger.info(
                "Health check %s: %s (%.0fms) %s",
                r.source_id,
                r.status,
                r.latency_ms,
                r.message,
            )
        return results
