# stockwatch/cli/runner.py

"""Headless CLI commands: run, check, status, import-targets, health."""

import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from stockwatch.config.settings import Settings
from stockwatch.models.product import NormalizedProduct
from stockwatch.scrapers.registry import AdapterRegistry
from stockwatch.services.monitor_runner import MonitorRunner
from stockwatch.services.throttle import ThrottleLock, build_lock_backend
from stockwatch.storage.base_store import MonitorStore, TargetFilter
from stockwatch.storage.monitor_db import SQLiteMonitorStore

logger = logging.getLogger("stockwatch.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

_STATUS_STYLES = {
    "In Stock": "green",
    "Out of Stock": "red",
    "Preorder": "cyan",
    "In Store Only": "yellow",
    "Removed": "dim",
    "Unknown": "magenta",
    "Error": "bold red",
}


def _csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(p.strip() for p in value.split(",") if p.strip())


def build_target_filter(
    target_csv: str | None, platform_csv: str | None,
) -> TargetFilter | None:
    """Map ``--targets``/``--platforms`` options to a filter.

    Raises ``SystemExit`` on a non-numeric target id.
    """
    if not target_csv and not platform_csv:
        return None
    try:
        target_ids = tuple(int(t) for t in _csv(target_csv))
    except ValueError:
        _err.print(f"[red]Invalid target id list: {target_csv}[/red]")
        raise SystemExit(1)
    return TargetFilter(target_ids=target_ids, platforms=_csv(platform_csv))


def build_runner(store: MonitorStore) -> MonitorRunner:
    """Wire the registry and throttle lock from settings."""
    settings = Settings()
    return MonitorRunner(
        store=store,
        registry=AdapterRegistry.from_settings(settings),
        throttle=ThrottleLock(
            build_lock_backend(settings), settings.THROTTLE_FAIL_OPEN,
        ),
        settings=settings,
    )


def _product_to_dict(product: NormalizedProduct) -> dict[str, object]:
    """Serialise an adapter result to plain JSON types."""
    return {
        "retailer": product.retailer,
        "title": product.title,
        "url": product.url,
        "sku": product.sku,
        "variants": [
            {
                "status": v.status.value,
                "reason": v.reason,
                "inStock": v.in_stock,
                "isPreorder": v.is_preorder,
                "isInStoreOnly": v.is_in_store_only,
                "isUnavailable": v.is_unavailable,
                "price": str(v.price) if v.price is not None else None,
                "error": v.error,
                "stores": [
                    {
                        "storeCode": s.store_code,
                        "storeName": s.store_name,
                        "inStock": s.in_stock,
                    }
                    for s in v.store_availabilities
                ],
            }
            for v in product.variants
        ],
    }


def _styled(label: str) -> str:
    style = _STATUS_STYLES.get(label, "white")
    return f"[{style}]{label}[/{style}]"


# ── Commands ─────────────────────────────────────────────


async def cli_run(
    target_csv: str | None = None,
    platform_csv: str | None = None,
    store: MonitorStore | None = None,
) -> int:
    """Run every monitor once; exit code 1 when any target failed."""
    target_filter = build_target_filter(target_csv, platform_csv)
    db = store or SQLiteMonitorStore()
    try:
        runner = build_runner(db)
        _err.print("[bold]Running monitors...[/bold]")
        summary = await runner.run_all(target_filter)
    finally:
        if store is None:
            db.close()

    for msg in summary.error_messages:
        _err.print(f"[red]Error: {msg}[/red]")

    colour = "yellow" if summary.errors else "green"
    _err.print(f"[{colour}]{summary.message}[/{colour}]")
    json.dump(
        {
            "processed": summary.processed,
            "errors": summary.errors,
            "skipped": summary.skipped,
            "total": summary.total,
            "events": summary.events,
            "message": summary.message,
        },
        sys.stdout,
        indent=2,
    )
    sys.stdout.write("\n")
    return 1 if summary.errors else 0


async def cli_check(
    url: str,
    platform: str | None,
    output_format: str = "table",
) -> int:
    """Run one adapter against a URL without recording anything."""
    settings = Settings()
    registry = AdapterRegistry.from_settings(settings)
    if platform is not None and not registry.is_registered(platform):
        valid = ", ".join(sorted(registry.platforms()))
        _err.print(f"[red]Unknown platform: {platform}[/red]")
        _err.print(f"[dim]Available: {valid}[/dim]")
        return 1

    db = SQLiteMonitorStore()
    try:
        runner = MonitorRunner(
            store=db,
            registry=registry,
            throttle=ThrottleLock(None),
            settings=settings,
        )
        _err.print(f"[bold]Checking:[/bold] {url}")
        product = await runner.check(url, platform)
    finally:
        db.close()

    if output_format == "json":
        json.dump(_product_to_dict(product), sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        table = Table(
            title=product.title or url,
            show_lines=True,
            title_style="bold cyan",
        )
        table.add_column("Status", justify="center")
        table.add_column("Reason", style="dim")
        table.add_column("Price", justify="right", style="green")
        table.add_column("Stores", justify="right")
        for v in product.variants:
            table.add_row(
                _styled(v.status_label),
                v.error or v.reason,
                f"${v.price:,.2f}" if v.price is not None else "N/A",
                str(len(v.store_availabilities)),
            )
        Console().print(table)

    return 1 if product.error else 0


def run_status(store: MonitorStore | None = None) -> int:
    """Print the monitoring status report."""
    from stockwatch.services.status_report import StatusReporter

    db = store or SQLiteMonitorStore()
    try:
        report = StatusReporter(db).build()
    finally:
        if store is None:
            db.close()

    _err.print(
        f"[bold]{report.total_targets} targets[/bold], "
        f"{report.variants_with_data}/{report.total_variants} variants "
        f"with data, {report.recent_updates} updated in the last "
        f"{Settings.STATUS_RECENT_HOURS}h, "
        f"{report.total_events} events"
    )
    if report.orphan_rows:
        _err.print(
            f"[yellow]Data integrity: {report.orphan_snapshots} orphan "
            f"snapshots, {report.orphan_events} orphan events, "
            f"{report.orphan_availabilities} orphan availabilities[/yellow]"
        )

    for title, rows in (
        ("Recently Updated", report.recent),
        ("Stale", report.stale),
    ):
        if not rows:
            continue
        table = Table(title=title, show_lines=True, title_style="bold cyan")
        table.add_column("Target", style="dim", width=6)
        table.add_column("Title", max_width=50)
        table.add_column("Retailer", style="magenta")
        table.add_column("Status", justify="center")
        table.add_column("Price", justify="right", style="green")
        table.add_column("Observed", style="dim")
        table.add_column("Last event")
        for ov in rows:
            snap = ov.latest_snapshot
            table.add_row(
                str(ov.target_id),
                ov.target_title[:50] or "—",
                ov.retailer_name,
                snap.status.value if snap else "—",
                f"${snap.price:,.2f}" if snap and snap.price is not None
                else "N/A",
                snap.observed_at.strftime("%Y-%m-%d %H:%M") if snap else "—",
                ov.latest_event_type or "—",
            )
        Console().print(table)
    return 0


def run_import_targets(
    path: Path, store: MonitorStore | None = None,
) -> int:
    """Register monitored targets from a JSON file.

    The file holds a list of ``{"url", "platform", "title"?,
    "retailer"?}`` objects; already-registered URLs are left alone.
    """
    if not path.exists():
        _err.print(f"[red]File not found: {path}[/red]")
        return 1
    try:
        entries = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _err.print(f"[red]Cannot read {path}: {exc}[/red]")
        return 1
    if not isinstance(entries, list):
        _err.print("[red]Expected a JSON list of targets.[/red]")
        return 1

    labels = {e["platform"]: e["label"] for e in Settings.RETAILER_ADAPTERS}
    db = store or SQLiteMonitorStore()
    imported = 0
    invalid = 0
    try:
        with Progress(console=_err) as progress:
            task = progress.add_task("Importing...", total=len(entries))
            for entry in entries:
                progress.advance(task)
                if not isinstance(entry, dict) or not entry.get("url"):
                    invalid += 1
                    continue
                platform = str(
                    entry.get("platform") or Settings.GENERIC_PLATFORM
                )
                db.add_target(
                    url=str(entry["url"]),
                    retailer_platform=platform,
                    title=str(entry.get("title", "")),
                    retailer_name=str(
                        entry.get("retailer") or labels.get(platform, "")
                    ),
                )
                imported += 1
    finally:
        if store is None:
            db.close()

    _err.print(f"[green]✓ Imported {imported} targets[/green]")
    if invalid:
        _err.print(f"[yellow]Skipped {invalid} invalid entries[/yellow]")
    return 0


async def run_health_check() -> int:
    """Run connectivity health check on all retailers."""
    from stockwatch.services.health_checker import HealthChecker

    _err.print("[bold]Running retailer health check...[/bold]")
    checker = HealthChecker(build_lock_backend())
    results = await checker.check_all()

    table = Table(
        title="Retailer Health Check",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Source", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    table.add_column("Notes", style="dim")

    any_down = False
    for r in results:
        if r.status == "ok":
            status = "[green]✅ OK[/green]"
        elif r.status == "slow":
            status = "[yellow]⚠️  SLOW[/yellow]"
        elif r.status == "skipped":
            status = "[dim]SKIPPED[/dim]"
        else:
            status = "[red]❌ DOWN[/red]"
            any_down = True

        latency = (
            f"{r.latency_ms:.0f}ms"
            if r.latency_ms > 0
            else "—"
        )
        table.add_row(
            r.source_id, status, latency, r.message,
        )

    Console().print(table)
    return 1 if any_down else 0
