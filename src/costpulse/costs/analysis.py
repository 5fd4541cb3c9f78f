"""Period-over-period cost comparisons.

Read-only computations over ``CostStorage``. Every query takes
``include_credits`` explicitly: ``True`` gives net cost (credits
subtracted), ``False`` gives gross cost (credit rows left out).

Windows, relative to ``today``:

- month-to-date: 1st of this month .. today, against 1st of last month ..
  the same day of last month (clamped to last month's length)
- full month: the last complete calendar month against the one before it
- rolling: the 30 days ending yesterday against the 30 days before those
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from costpulse.constants import PERCENT_WHEN_NO_BASELINE, ROLLING_WINDOW_DAYS
from costpulse.costs.models import (
    ZERO,
    AccountSummary,
    ComparisonResult,
    CreditsSummary,
    DayComparison,
    GroupBy,
    GroupedComparison,
)
from costpulse.logging import get_logger
from costpulse.utils import first_of_month, same_day_in_month, shift_months, utc_today

if TYPE_CHECKING:
    from costpulse.costs.storage import CostStorage

log = get_logger("costpulse.costs.analysis")


def percent_change(current: Decimal, previous: Decimal) -> Decimal:
    """Relative change in percent.

    With no baseline (``previous == 0``) the change is 100 when anything was
    spent and 0 otherwise; it is never a division error.
    """
    if previous != 0:
        return (current - previous) / previous * 100
    return Decimal(PERCENT_WHEN_NO_BASELINE) if current != 0 else ZERO


def compare(label: str, current: Decimal, previous: Decimal) -> ComparisonResult:
    return ComparisonResult(
        label=label,
        current_value=current,
        previous_value=previous,
        difference=current - previous,
        percent_change=percent_change(current, previous),
    )


class CostAnalysisService:
    """Derives comparisons for the presentation layer from the ledger."""

    def __init__(
        self,
        storage: CostStorage,
        *,
        clock: Callable[[], date] = utc_today,
    ) -> None:
        self._storage = storage
        self._clock = clock

    # ------------------------------------------------------------------
    # Window helpers
    # ------------------------------------------------------------------

    def _month_windows(self) -> tuple[date, date, date, date]:
        """(this month start, today, last month start, last month same day)."""
        today = self._clock()
        this_month_start = first_of_month(today)
        last_month_start = shift_months(this_month_start, -1)
        return (
            this_month_start,
            today,
            last_month_start,
            same_day_in_month(last_month_start, today.day),
        )

    def _rolling_windows(self, days: int) -> tuple[date, date, date, date]:
        """(current start, current end, previous start, previous end)."""
        current_end = self._clock() - timedelta(days=1)
        current_start = current_end - timedelta(days=days - 1)
        previous_end = current_start - timedelta(days=1)
        previous_start = current_start - timedelta(days=days)
        return current_start, current_end, previous_start, previous_end

    # ------------------------------------------------------------------
    # Headline comparisons
    # ------------------------------------------------------------------

    async def month_to_date_comparison(self, include_credits: bool) -> ComparisonResult:
        this_start, today, last_start, last_same_day = self._month_windows()
        current, previous = await asyncio.gather(
            self._storage.total_for_range(this_start, today, include_credits),
            self._storage.total_for_range(last_start, last_same_day, include_credits),
        )
        return compare("Month-to-Date", current, previous)

    async def full_month_comparison(self, include_credits: bool) -> ComparisonResult:
        """Last complete calendar month against the month before it."""
        this_month_start = first_of_month(self._clock())
        last_start = shift_months(this_month_start, -1)
        previous_start = shift_months(this_month_start, -2)

        current, previous = await asyncio.gather(
            self._storage.total_for_range(
                last_start, this_month_start - timedelta(days=1), include_credits
            ),
            self._storage.total_for_range(
                previous_start, last_start - timedelta(days=1), include_credits
            ),
        )
        label = f"{last_start:%B} vs {previous_start:%B}"
        return compare(label, current, previous)

    async def rolling_comparison(
        self, include_credits: bool, days: int = ROLLING_WINDOW_DAYS
    ) -> ComparisonResult:
        current_start, current_end, previous_start, previous_end = self._rolling_windows(days)
        current, previous = await asyncio.gather(
            self._storage.total_for_range(current_start, current_end, include_credits),
            self._storage.total_for_range(previous_start, previous_end, include_credits),
        )
        return compare(f"Last {days} Days", current, previous)

    async def day_by_day_comparison(self, include_credits: bool) -> list[DayComparison]:
        """Day ``n`` of this month against day ``n`` of last month.

        Covers day 1 through the last day with data in either month; days
        with no data count as zero.
        """
        today = self._clock()
        this_month_start = first_of_month(today)
        last_month_start = shift_months(this_month_start, -1)

        this_rows, last_rows = await asyncio.gather(
            self._storage.daily_totals(this_month_start, today, include_credits),
            self._storage.daily_totals(
                last_month_start, this_month_start - timedelta(days=1), include_credits
            ),
        )
        this_month = {row.date.day: row.total for row in this_rows}
        last_month = {row.date.day: row.total for row in last_rows}
        max_day = max([*this_month, *last_month], default=0)

        comparisons: list[DayComparison] = []
        for day in range(1, max_day + 1):
            current = this_month.get(day, ZERO)
            previous = last_month.get(day, ZERO)
            comparisons.append(
                DayComparison(
                    day_of_month=day,
                    this_month=current,
                    last_month=previous,
                    difference=current - previous,
                    percent_change=percent_change(current, previous),
                )
            )
        return comparisons

    # ------------------------------------------------------------------
    # Account summaries
    # ------------------------------------------------------------------

    async def account_summaries_this_month(self, include_credits: bool) -> list[AccountSummary]:
        today = self._clock()
        return await self._storage.account_summaries(
            first_of_month(today), today, include_credits
        )

    async def account_summaries_last_month(self, include_credits: bool) -> list[AccountSummary]:
        this_month_start = first_of_month(self._clock())
        return await self._storage.account_summaries(
            shift_months(this_month_start, -1),
            this_month_start - timedelta(days=1),
            include_credits,
        )

    # ------------------------------------------------------------------
    # Grouped comparisons
    # ------------------------------------------------------------------

    async def service_account_comparison(
        self,
        include_credits: bool,
        group_by: GroupBy = GroupBy.SERVICE,
    ) -> list[GroupedComparison]:
        """MTD and rolling-30 comparisons per service or account, by name.

        A name seen in any of the four windows gets a row, with zero for the
        windows where it has no cost.
        """
        this_start, today, last_start, last_same_day = self._month_windows()
        rolling_start, rolling_end, previous_start, previous_end = self._rolling_windows(
            ROLLING_WINDOW_DAYS
        )

        mtd, last_same, rolling, previous_rolling = await asyncio.gather(
            self._storage.grouped_totals(this_start, today, include_credits, group_by),
            self._storage.grouped_totals(last_start, last_same_day, include_credits, group_by),
            self._storage.grouped_totals(rolling_start, rolling_end, include_credits, group_by),
            self._storage.grouped_totals(previous_start, previous_end, include_credits, group_by),
        )

        names = sorted(set(mtd) | set(last_same) | set(rolling) | set(previous_rolling))
        rows: list[GroupedComparison] = []
        for name in names:
            mtd_cost = mtd.get(name, ZERO)
            last_same_cost = last_same.get(name, ZERO)
            full_cost = rolling.get(name, ZERO)
            previous_full_cost = previous_rolling.get(name, ZERO)
            rows.append(
                GroupedComparison(
                    name=name,
                    mtd_cost=mtd_cost,
                    last_month_same_day_cost=last_same_cost,
                    mtd_percent_change=percent_change(mtd_cost, last_same_cost),
                    mtd_is_up=mtd_cost >= last_same_cost,
                    last_full_month_cost=full_cost,
                    previous_full_month_cost=previous_full_cost,
                    full_month_percent_change=percent_change(full_cost, previous_full_cost),
                    full_month_is_up=full_cost >= previous_full_cost,
                )
            )

        log.debug("grouped_comparison_built", group_by=group_by.value, rows=len(rows))
        return rows

    async def service_comparison(self, include_credits: bool) -> list[GroupedComparison]:
        """Per-service comparison, highest MTD cost first."""
        rows = await self.service_account_comparison(include_credits, GroupBy.SERVICE)
        return sorted(rows, key=lambda row: row.mtd_cost, reverse=True)

    async def account_comparison(self, include_credits: bool) -> list[GroupedComparison]:
        """Per-account comparison, highest MTD cost first."""
        rows = await self.service_account_comparison(include_credits, GroupBy.ACCOUNT)
        return sorted(rows, key=lambda row: row.mtd_cost, reverse=True)

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    async def credits_summary(self) -> CreditsSummary:
        """Credits applied this month so far and over all of last month."""
        today = self._clock()
        this_month_start = first_of_month(today)
        mtd, last_month = await asyncio.gather(
            self._storage.credits_for_range(this_month_start, today),
            self._storage.credits_for_range(
                shift_months(this_month_start, -1), this_month_start - timedelta(days=1)
            ),
        )
        return CreditsSummary(mtd_credits=mtd, last_month_credits=last_month)
