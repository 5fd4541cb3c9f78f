"""PostgreSQL storage for daily billing line items.

Follows the asyncpg.Pool lifecycle used across the project::

    storage = CostStorage()
    await storage.initialize(pool)
    await storage.upsert(records)

One row per natural key ``(usage_date, account_id, service)``. Writes are
last-write-wins upserts; nothing is ever deleted.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any

import asyncpg  # type: ignore[import-not-found,import-untyped]

from costpulse.costs.errors import StorageError
from costpulse.costs.models import (
    ZERO,
    AccountSummary,
    CostRecord,
    DailyTotal,
    GroupBy,
)
from costpulse.logging import get_logger
from costpulse.utils import iter_dates

log = get_logger("costpulse.costs.storage")

# ------------------------------------------------------------------
# SQL schema
# ------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cost_records (
    usage_date   DATE           NOT NULL,
    account_id   TEXT           NOT NULL,
    account_name TEXT           NOT NULL,
    service      TEXT           NOT NULL,
    cost         NUMERIC(20, 10) NOT NULL,
    currency     TEXT           NOT NULL DEFAULT 'USD',
    updated_at   TIMESTAMPTZ    NOT NULL DEFAULT NOW(),
    PRIMARY KEY (usage_date, account_id, service)
);

CREATE INDEX IF NOT EXISTS idx_cost_records_date
    ON cost_records (usage_date);
"""

_UPSERT = """
INSERT INTO cost_records
    (usage_date, account_id, account_name, service, cost, currency)
VALUES ($1, $2, $3, $4, $5, $6)
ON CONFLICT (usage_date, account_id, service) DO UPDATE SET
    account_name = EXCLUDED.account_name,
    cost = EXCLUDED.cost,
    currency = EXCLUDED.currency,
    updated_at = NOW()
"""

_RANGE = "usage_date >= $1 AND usage_date <= $2"

_GROUP_COLUMNS: dict[GroupBy, str] = {
    GroupBy.SERVICE: "service",
    GroupBy.ACCOUNT: "account_name",
}


def _credit_filter(include_credits: bool) -> str:
    """Extra WHERE clause that drops credit rows for gross-cost queries."""
    return "" if include_credits else " AND cost >= 0"


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class CostStorage:
    """PostgreSQL ledger of ``CostRecord`` rows."""

    def __init__(self) -> None:
        self._pool: asyncpg.Pool | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self, pool: asyncpg.Pool) -> None:
        """Create tables and store the connection pool reference."""
        self._pool = pool
        async with self._connection("initialize") as conn:
            await conn.execute(_SCHEMA)
        log.info("cost_storage_initialized")

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[Any]:
        """Acquire a pooled connection, translating driver failures."""
        if self._pool is None:
            raise StorageError(f"{operation}: storage is not initialized")
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, OSError) as exc:
            log.error("cost_storage_error", operation=operation, error=str(exc))
            raise StorageError(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, records: Iterable[CostRecord]) -> int:
        """Write or replace records by natural key. Returns rows written.

        Duplicate keys within one batch collapse to the last occurrence, so
        a batch never conflicts with itself inside the transaction.
        """
        latest: dict[tuple[date, str, str], CostRecord] = {}
        for record in records:
            latest[record.natural_key] = record
        if not latest:
            return 0

        rows = [
            (r.date, r.account_id, r.account_name, r.service, r.cost, r.currency)
            for r in latest.values()
        ]
        async with self._write_lock:
            async with self._connection("upsert") as conn, conn.transaction():
                await conn.executemany(_UPSERT, rows)

        log.info("cost_records_upserted", count=len(rows))
        return len(rows)

    # ------------------------------------------------------------------
    # Range queries
    # ------------------------------------------------------------------

    async def total_for_range(self, start: date, end: date, include_credits: bool) -> Decimal:
        """Sum of cost for ``[start, end]``."""
        query = (
            f"SELECT COALESCE(SUM(cost), 0) FROM cost_records "  # nosec B608
            f"WHERE {_RANGE}{_credit_filter(include_credits)}"
        )
        async with self._connection("total_for_range") as conn:
            value = await conn.fetchval(query, start, end)
        return _to_decimal(value)

    async def daily_totals(
        self, start: date, end: date, include_credits: bool
    ) -> list[DailyTotal]:
        """Per-day totals; dates without records are absent."""
        query = (
            f"SELECT usage_date, SUM(cost) AS total FROM cost_records "  # nosec B608
            f"WHERE {_RANGE}{_credit_filter(include_credits)} "
            f"GROUP BY usage_date ORDER BY usage_date"
        )
        async with self._connection("daily_totals") as conn:
            rows = await conn.fetch(query, start, end)
        return [DailyTotal(date=row["usage_date"], total=_to_decimal(row["total"])) for row in rows]

    async def grouped_totals(
        self,
        start: date,
        end: date,
        include_credits: bool,
        group_by: GroupBy = GroupBy.SERVICE,
    ) -> dict[str, Decimal]:
        """Totals bucketed by service name or account name."""
        column = _GROUP_COLUMNS[group_by]
        query = (
            f"SELECT {column} AS name, SUM(cost) AS total FROM cost_records "  # nosec B608
            f"WHERE {_RANGE}{_credit_filter(include_credits)} "
            f"GROUP BY {column}"
        )
        async with self._connection("grouped_totals") as conn:
            rows = await conn.fetch(query, start, end)
        return {row["name"]: _to_decimal(row["total"]) for row in rows}

    async def account_summaries(
        self, start: date, end: date, include_credits: bool
    ) -> list[AccountSummary]:
        """One summary per account with data in range, largest total first."""
        query = (
            f"SELECT account_id, MAX(account_name) AS account_name, service, "  # nosec B608
            f"SUM(cost) AS total FROM cost_records "
            f"WHERE {_RANGE}{_credit_filter(include_credits)} "
            f"GROUP BY account_id, service"
        )
        async with self._connection("account_summaries") as conn:
            rows = await conn.fetch(query, start, end)

        summaries: dict[str, AccountSummary] = {}
        for row in rows:
            summary = summaries.get(row["account_id"])
            if summary is None:
                summary = AccountSummary(
                    account_id=row["account_id"],
                    account_name=row["account_name"] or row["account_id"],
                    total_cost=ZERO,
                )
                summaries[row["account_id"]] = summary
            amount = _to_decimal(row["total"])
            summary.cost_by_service[row["service"]] = amount
            summary.total_cost += amount

        return sorted(summaries.values(), key=lambda s: (-s.total_cost, s.account_name))

    async def costs_for_range(
        self, start: date, end: date, include_credits: bool
    ) -> list[CostRecord]:
        """Raw records in range, ordered by date, account and service."""
        query = (
            f"SELECT usage_date, account_id, account_name, service, cost, currency "  # nosec B608
            f"FROM cost_records WHERE {_RANGE}{_credit_filter(include_credits)} "
            f"ORDER BY usage_date, account_id, service"
        )
        async with self._connection("costs_for_range") as conn:
            rows = await conn.fetch(query, start, end)
        return [
            CostRecord(
                date=row["usage_date"],
                account_id=row["account_id"],
                account_name=row["account_name"],
                service=row["service"],
                cost=_to_decimal(row["cost"]),
                currency=row["currency"],
            )
            for row in rows
        ]

    async def credits_for_range(self, start: date, end: date) -> Decimal:
        """Magnitude of credits in range, as a positive number."""
        async with self._connection("credits_for_range") as conn:
            value = await conn.fetchval(
                f"SELECT COALESCE(-SUM(cost), 0) FROM cost_records "  # nosec B608
                f"WHERE {_RANGE} AND cost < 0",
                start,
                end,
            )
        return _to_decimal(value)

    # ------------------------------------------------------------------
    # Coverage
    # ------------------------------------------------------------------

    async def latest_date(self) -> date | None:
        """Most recent usage date stored, or None when the ledger is empty."""
        async with self._connection("latest_date") as conn:
            value = await conn.fetchval("SELECT MAX(usage_date) FROM cost_records")
        return value  # type: ignore[no-any-return]

    async def missing_dates(self, start: date, end: date) -> list[date]:
        """Dates in ``[start, end]`` with no record of any account or service."""
        if start > end:
            return []
        async with self._connection("missing_dates") as conn:
            rows = await conn.fetch(
                f"SELECT DISTINCT usage_date FROM cost_records WHERE {_RANGE}",  # nosec B608
                start,
                end,
            )
        present = {row["usage_date"] for row in rows}
        return [day for day in iter_dates(start, end) if day not in present]

    async def record_count(self) -> int:
        async with self._connection("record_count") as conn:
            value = await conn.fetchval("SELECT COUNT(*) FROM cost_records")
        return int(value or 0)
