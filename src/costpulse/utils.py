"""Shared utilities for Costpulse."""

import calendar
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from typing import Any

import structlog


@asynccontextmanager
async def timed_operation(
    name: str,
    log: structlog.stdlib.BoundLogger | None = None,
    **extra: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Context manager that measures elapsed time for an async operation.

    Usage::

        async with timed_operation("cost_fetch", log=log) as timing:
            await do_something()
        print(timing["elapsed_ms"])

    Args:
        name: A label for the operation (used in log messages).
        log: Optional structlog logger; if provided, an info-level message
             is emitted on exit.
        **extra: Additional key-value pairs forwarded to the log call.

    Yields:
        A mutable dict that will contain ``elapsed_ms`` after the block exits.
    """
    start = time.perf_counter()
    result: dict[str, Any] = {}
    try:
        yield result
    finally:
        result["elapsed_ms"] = round((time.perf_counter() - start) * 1000, 2)
        if log:
            log.info(name, duration_ms=result["elapsed_ms"], **extra)


def utc_today() -> date:
    """Today's calendar date in UTC; billing days are UTC days."""
    return datetime.now(UTC).date()


def first_of_month(day: date) -> date:
    return day.replace(day=1)


def shift_months(month_start: date, months: int) -> date:
    """Return the first day of the month ``months`` away from ``month_start``."""
    index = month_start.year * 12 + (month_start.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def same_day_in_month(month_start: date, day_of_month: int) -> date:
    """Clamp ``day_of_month`` into the month starting at ``month_start``.

    Day 31 in a 30-day month becomes day 30, never the 1st of the next month.
    """
    return month_start.replace(day=min(day_of_month, days_in_month(month_start)))


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date in ``[start, end]``; nothing when ``start > end``."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
