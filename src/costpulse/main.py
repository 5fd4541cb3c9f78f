"""Main entry point for Costpulse."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import asyncpg  # type: ignore[import-not-found,import-untyped]

from costpulse.config import get_settings
from costpulse.costs.analysis import CostAnalysisService
from costpulse.costs.aws import CostExplorerFetcher
from costpulse.costs.errors import CostPulseError
from costpulse.costs.models import GroupBy, SyncResult
from costpulse.costs.scheduler import RefreshScheduler
from costpulse.costs.storage import CostStorage
from costpulse.costs.sync import CostSyncService
from costpulse.logging import get_logger, setup_logging

TOP_GROUPS = 20


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="costpulse",
        description="Sync daily cloud billing into a local ledger and report comparisons.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("-r", "--refresh", action="store_true", help="incremental sync, then exit")
    mode.add_argument("--full-sync", action="store_true", help="re-fetch the full horizon, then exit")

    credit_mode = parser.add_mutually_exclusive_group()
    credit_mode.add_argument(
        "-nc", "--no-credits", dest="credits", action="store_false", help="report gross cost"
    )
    credit_mode.add_argument("--credits", dest="credits", action="store_true", help="report net cost")
    parser.set_defaults(credits=None)

    parser.add_argument(
        "--group-by",
        choices=[g.value for g in GroupBy],
        default=GroupBy.SERVICE.value,
        help="dimension for the grouped comparison",
    )
    return parser.parse_args(argv)


async def report(
    analysis: CostAnalysisService,
    include_credits: bool,
    group_by: GroupBy,
) -> None:
    """Log the headline comparisons and the top grouped rows."""
    log = get_logger("costpulse.main")

    mtd, full_month, rolling = await asyncio.gather(
        analysis.month_to_date_comparison(include_credits),
        analysis.full_month_comparison(include_credits),
        analysis.rolling_comparison(include_credits),
    )
    for comparison in (mtd, full_month, rolling):
        log.info("cost_comparison", **comparison.to_dict())

    if not include_credits:
        summary = await analysis.credits_summary()
        if summary.has_credits:
            log.info(
                "credits_excluded",
                mtd_credits=str(summary.mtd_credits),
                last_month_credits=str(summary.last_month_credits),
            )

    if group_by is GroupBy.SERVICE:
        rows = await analysis.service_comparison(include_credits)
    else:
        rows = await analysis.account_comparison(include_credits)
    for row in rows[:TOP_GROUPS]:
        log.info("grouped_comparison", group_by=group_by.value, **row.to_dict())


async def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = parse_args(argv)
    setup_logging()
    log = get_logger("costpulse.main")

    settings = get_settings()
    include_credits = settings.show_credits_by_default if args.credits is None else args.credits
    group_by = GroupBy(args.group_by)
    log.info(
        "starting_costpulse",
        environment=settings.environment,
        include_credits=include_credits,
        full_sync_days=settings.full_sync_days,
    )

    dsn = settings.database_dsn.get_secret_value()
    try:
        pool = await asyncpg.create_pool(dsn=dsn)
        log.info("postgres_pool_created", dsn=dsn.split("@")[-1])
    except (asyncpg.PostgresError, OSError) as exc:
        log.error("postgres_pool_creation_failed", error=str(exc))
        return 1

    try:
        storage = CostStorage()
        await storage.initialize(pool)

        fetcher = CostExplorerFetcher.from_settings(settings.aws_profile, settings.aws_region)
        sync = CostSyncService(storage, fetcher, full_sync_days=settings.full_sync_days)
        analysis = CostAnalysisService(storage)

        if args.refresh or args.full_sync:
            try:
                await sync.refresh(full_sync=args.full_sync)
            except CostPulseError as exc:
                log.error("refresh_failed", error=str(exc))
                return 1
            try:
                await report(analysis, include_credits, group_by)
            except CostPulseError as exc:
                log.error("report_failed", error=str(exc))
                return 1
            return 0

        if settings.refresh_on_startup:
            try:
                await sync.refresh()
            except CostPulseError as exc:
                log.warning("startup_refresh_failed", error=str(exc))
        try:
            await report(analysis, include_credits, group_by)
        except CostPulseError as exc:
            log.warning("startup_report_failed", error=str(exc))

        async def on_refresh(_: SyncResult) -> None:
            await report(analysis, include_credits, group_by)

        scheduler = RefreshScheduler(
            sync, settings.refresh_interval_minutes, on_refresh=on_refresh
        )
        if not scheduler.start():
            return 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        try:
            await stop.wait()
            log.info("shutdown_requested")
        finally:
            await scheduler.stop()
        return 0
    finally:
        await pool.close()
        log.info("costpulse_stopped")


def run() -> None:
    """Run the application."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
