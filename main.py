# main.py

"""Entry point for the stockwatch monitor CLI."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from stockwatch.config.logging_config import setup_logging
from stockwatch.config.settings import Settings

logger = logging.getLogger("stockwatch.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    platforms = ", ".join(e["platform"] for e in Settings.RETAILER_ADAPTERS)

    parser = argparse.ArgumentParser(
        prog="stockwatch",
        description="Retail product stock and price monitor.",
        epilog=f"Registered platforms: {platforms}",
    )
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run every monitor once (default).")
    run.add_argument(
        "-t",
        "--targets",
        default=None,
        help="Comma-separated target IDs to run (default: all).",
    )
    run.add_argument(
        "-p",
        "--platforms",
        default=None,
        help="Comma-separated platforms to run (default: all).",
    )

    check = sub.add_parser(
        "check", help="Check one product URL without recording it.",
    )
    check.add_argument("url", help="Product page URL.")
    check.add_argument(
        "-p",
        "--platform",
        default=None,
        help="Adapter platform (default: generic).",
    )
    check.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="table",
        dest="output_format",
        help="Output format (default: table).",
    )

    sub.add_parser("status", help="Show the monitoring status report.")

    imp = sub.add_parser(
        "import-targets", help="Register monitored targets from JSON.",
    )
    imp.add_argument("path", type=Path, help="JSON file of targets.")

    sub.add_parser(
        "health", help="Check retailer connectivity and the lock backend.",
    )
    return parser


def _run_monitors(args: argparse.Namespace) -> None:
    """Run every monitor once and exit."""
    from stockwatch.cli.runner import cli_run

    exit_code = asyncio.run(
        cli_run(
            target_csv=getattr(args, "targets", None),
            platform_csv=getattr(args, "platforms", None),
        )
    )
    sys.exit(exit_code)


def _run_check(args: argparse.Namespace) -> None:
    """Run a single adapter against a URL."""
    from stockwatch.cli.runner import cli_check

    exit_code = asyncio.run(
        cli_check(args.url, args.platform, args.output_format)
    )
    sys.exit(exit_code)


def _run_status() -> None:
    from stockwatch.cli.runner import run_status

    sys.exit(run_status())


def _run_import_targets(args: argparse.Namespace) -> None:
    from stockwatch.cli.runner import run_import_targets

    sys.exit(run_import_targets(args.path))


def _run_health_check() -> None:
    """Run retailer connectivity health check."""
    from stockwatch.cli.runner import run_health_check

    exit_code = asyncio.run(run_health_check())
    sys.exit(exit_code)


def main() -> None:
    """Route to the requested subcommand (``run`` when none is given)."""
    log_file = setup_logging()
    logger.info("stockwatch starting, log file: %s", log_file)

    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "check":
        _run_check(args)
    elif args.command == "status":
        _run_status()
    elif args.command == "import-targets":
        _run_import_targets(args)
    elif args.command == "health":
        _run_health_check()
    else:
        _run_monitors(args)


if __name__ == "__main__":
    main()
