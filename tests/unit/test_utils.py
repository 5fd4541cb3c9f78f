"""Unit tests for the utils module.

Covers the timed_operation async context manager and the calendar helpers
the comparison windows are built from.
"""

import asyncio
from datetime import date
from unittest.mock import MagicMock

import pytest

from costpulse.utils import (
    days_in_month,
    first_of_month,
    iter_dates,
    same_day_in_month,
    shift_months,
    timed_operation,
)


class TestTimedOperation:
    """Tests for the timed_operation async context manager."""

    @pytest.mark.asyncio
    async def test_yields_dict_with_elapsed_ms(self) -> None:
        """timed_operation should yield a dict that gets populated with elapsed_ms."""
        async with timed_operation("test_op") as timing:
            await asyncio.sleep(0.01)

        assert isinstance(timing["elapsed_ms"], float)
        assert timing["elapsed_ms"] > 0

    @pytest.mark.asyncio
    async def test_dict_is_empty_inside_context(self) -> None:
        async with timed_operation("test_op") as timing:
            assert "elapsed_ms" not in timing

    @pytest.mark.asyncio
    async def test_extra_kwargs_forwarded_to_log(self) -> None:
        """Extra keyword arguments should be forwarded to the log.info call."""
        mock_log = MagicMock()

        async with timed_operation(
            "cost_sync_fetch", log=mock_log, start="2024-05-12", end="2024-05-14"
        ) as timing:
            pass

        mock_log.info.assert_called_once()
        assert mock_log.info.call_args[0][0] == "cost_sync_fetch"
        call_kwargs = mock_log.info.call_args[1]
        assert call_kwargs["start"] == "2024-05-12"
        assert call_kwargs["end"] == "2024-05-14"
        assert call_kwargs["duration_ms"] == timing["elapsed_ms"]

    @pytest.mark.asyncio
    async def test_log_called_on_exception(self) -> None:
        """log.info should still be called when the block raises an exception."""
        mock_log = MagicMock()

        with pytest.raises(RuntimeError):
            async with timed_operation("failing_op", log=mock_log):
                raise RuntimeError("boom")

        mock_log.info.assert_called_once()
        assert "duration_ms" in mock_log.info.call_args[1]


class TestMonthHelpers:
    """Tests for month arithmetic."""

    def test_first_of_month(self) -> None:
        assert first_of_month(date(2024, 5, 31)) == date(2024, 5, 1)

    @pytest.mark.parametrize(
        ("start", "months", "expected"),
        [
            (date(2024, 5, 1), -1, date(2024, 4, 1)),
            (date(2024, 1, 1), -1, date(2023, 12, 1)),
            (date(2024, 2, 1), -2, date(2023, 12, 1)),
            (date(2024, 12, 1), 1, date(2025, 1, 1)),
        ],
    )
    def test_shift_months_crosses_year_boundaries(self, start, months, expected) -> None:
        assert shift_months(start, months) == expected

    def test_days_in_month_handles_leap_years(self) -> None:
        assert days_in_month(date(2024, 2, 10)) == 29
        assert days_in_month(date(2023, 2, 10)) == 28
        assert days_in_month(date(2024, 4, 1)) == 30

    def test_same_day_in_month_clamps_to_month_length(self) -> None:
        """Day 31 against a 30-day month lands on the 30th."""
        assert same_day_in_month(date(2024, 4, 1), 31) == date(2024, 4, 30)
        assert same_day_in_month(date(2024, 2, 1), 30) == date(2024, 2, 29)
        assert same_day_in_month(date(2024, 4, 1), 15) == date(2024, 4, 15)


class TestIterDates:
    """Tests for iter_dates."""

    def test_inclusive_range(self) -> None:
        assert list(iter_dates(date(2024, 2, 28), date(2024, 3, 1))) == [
            date(2024, 2, 28),
            date(2024, 2, 29),
            date(2024, 3, 1),
        ]

    def test_single_day(self) -> None:
        assert list(iter_dates(date(2024, 5, 1), date(2024, 5, 1))) == [date(2024, 5, 1)]

    def test_reversed_range_is_empty(self) -> None:
        assert list(iter_dates(date(2024, 5, 2), date(2024, 5, 1))) == []
