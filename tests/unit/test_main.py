"""Unit tests for the command line entry point."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from costpulse.costs.errors import FetchError, StorageError
from costpulse.costs.models import ComparisonResult, CreditsSummary, GroupBy, GroupedComparison
from costpulse.main import main, parse_args, report


def _comparison(label: str) -> ComparisonResult:
    return ComparisonResult(label, Decimal("10"), Decimal("5"), Decimal("5"), Decimal("100"))


def _row(name: str) -> GroupedComparison:
    zero = Decimal("0")
    return GroupedComparison(name, zero, zero, zero, True, zero, zero, zero, True)


@pytest.fixture
def analysis() -> MagicMock:
    analysis = MagicMock()
    analysis.month_to_date_comparison = AsyncMock(return_value=_comparison("Month-to-Date"))
    analysis.full_month_comparison = AsyncMock(return_value=_comparison("April vs March"))
    analysis.rolling_comparison = AsyncMock(return_value=_comparison("Last 30 Days"))
    analysis.credits_summary = AsyncMock(return_value=CreditsSummary(mtd_credits=Decimal("20")))
    analysis.service_comparison = AsyncMock(return_value=[_row(f"svc{i}") for i in range(25)])
    analysis.account_comparison = AsyncMock(return_value=[_row("Prod")])
    return analysis


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert not args.refresh
        assert not args.full_sync
        assert args.credits is None
        assert args.group_by == "service"

    def test_short_flags(self):
        args = parse_args(["-r", "-nc"])
        assert args.refresh
        assert args.credits is False

    def test_credits_flag(self):
        assert parse_args(["--credits"]).credits is True

    def test_refresh_modes_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["--refresh", "--full-sync"])

    def test_credit_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["--credits", "--no-credits"])

    def test_group_by_account(self):
        assert GroupBy(parse_args(["--group-by", "account"]).group_by) is GroupBy.ACCOUNT


class TestReport:
    @pytest.mark.asyncio
    async def test_net_report_skips_credits_summary(self, analysis):
        await report(analysis, include_credits=True, group_by=GroupBy.SERVICE)

        analysis.month_to_date_comparison.assert_awaited_once_with(True)
        analysis.credits_summary.assert_not_awaited()
        analysis.service_comparison.assert_awaited_once_with(True)

    @pytest.mark.asyncio
    async def test_gross_report_mentions_hidden_credits(self, analysis):
        log = MagicMock()
        with patch("costpulse.main.get_logger", return_value=log):
            await report(analysis, include_credits=False, group_by=GroupBy.SERVICE)

        events = [c.args[0] for c in log.info.call_args_list]
        assert "credits_excluded" in events
        assert events.count("cost_comparison") == 3
        assert events.count("grouped_comparison") == 20

    @pytest.mark.asyncio
    async def test_account_grouping(self, analysis):
        await report(analysis, include_credits=True, group_by=GroupBy.ACCOUNT)

        analysis.account_comparison.assert_awaited_once_with(True)
        analysis.service_comparison.assert_not_awaited()


class TestMain:
    @pytest.mark.asyncio
    async def test_pool_failure_exits_non_zero(self):
        with (
            patch("costpulse.main.setup_logging"),
            patch("costpulse.main.asyncpg.create_pool", AsyncMock(side_effect=OSError("refused"))),
        ):
            assert await main([]) == 1

    @pytest.mark.asyncio
    async def test_refresh_failure_exits_non_zero(self):
        pool = MagicMock()
        pool.close = AsyncMock()
        sync = MagicMock()
        sync.refresh = AsyncMock(side_effect=FetchError("AccessDeniedException"))

        with (
            patch("costpulse.main.setup_logging"),
            patch("costpulse.main.asyncpg.create_pool", AsyncMock(return_value=pool)),
            patch("costpulse.main.CostStorage") as storage_cls,
            patch("costpulse.main.CostExplorerFetcher"),
            patch("costpulse.main.CostSyncService", return_value=sync),
        ):
            storage_cls.return_value.initialize = AsyncMock()
            assert await main(["--refresh"]) == 1

        sync.refresh.assert_awaited_once_with(full_sync=False)
        pool.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_report_failure_after_refresh_exits_non_zero(self, analysis):
        pool = MagicMock()
        pool.close = AsyncMock()
        sync = MagicMock()
        sync.refresh = AsyncMock()
        analysis.month_to_date_comparison.side_effect = StorageError("total_for_range failed")

        with (
            patch("costpulse.main.setup_logging"),
            patch("costpulse.main.asyncpg.create_pool", AsyncMock(return_value=pool)),
            patch("costpulse.main.CostStorage") as storage_cls,
            patch("costpulse.main.CostExplorerFetcher"),
            patch("costpulse.main.CostSyncService", return_value=sync),
            patch("costpulse.main.CostAnalysisService", return_value=analysis),
        ):
            storage_cls.return_value.initialize = AsyncMock()
            assert await main(["--refresh"]) == 1

        sync.refresh.assert_awaited_once_with(full_sync=False)
        pool.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_startup_report_failure_is_logged_not_raised(self, analysis):
        pool = MagicMock()
        pool.close = AsyncMock()
        sync = MagicMock()
        sync.refresh = AsyncMock()
        analysis.month_to_date_comparison.side_effect = StorageError("total_for_range failed")
        settings = MagicMock()
        settings.show_credits_by_default = False
        settings.refresh_on_startup = True
        settings.refresh_interval_minutes = 0
        settings.database_dsn.get_secret_value.return_value = "postgresql://u:p@db/costpulse"

        with (
            patch("costpulse.main.setup_logging"),
            patch("costpulse.main.get_settings", return_value=settings),
            patch("costpulse.main.asyncpg.create_pool", AsyncMock(return_value=pool)),
            patch("costpulse.main.CostStorage") as storage_cls,
            patch("costpulse.main.CostExplorerFetcher"),
            patch("costpulse.main.CostSyncService", return_value=sync),
            patch("costpulse.main.CostAnalysisService", return_value=analysis),
        ):
            storage_cls.return_value.initialize = AsyncMock()
            # Interval 0 disables the scheduler, so main returns after reporting.
            assert await main([]) == 0

        sync.refresh.assert_awaited_once_with()
        pool.close.assert_awaited_once()
