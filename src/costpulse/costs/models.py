"""Data models for the cost ledger.

``CostRecord`` is the only persisted fact. Everything else here is derived
from store queries and never written back. Money is always ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from costpulse.constants import DEFAULT_CURRENCY

ZERO = Decimal("0")

# ------------------------------------------------------------------
# Persisted fact
# ------------------------------------------------------------------


@dataclass
class CostRecord:
    """One (date, account, service) cost observation.

    Natural key is ``(date, account_id, service)``. A negative ``cost`` is a
    credit or refund.
    """

    date: date
    account_id: str
    account_name: str
    service: str
    cost: Decimal
    currency: str = DEFAULT_CURRENCY

    @property
    def natural_key(self) -> tuple[date, str, str]:
        return (self.date, self.account_id, self.service)

    @property
    def is_credit(self) -> bool:
        return self.cost < 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "account_id": self.account_id,
            "account_name": self.account_name,
            "service": self.service,
            "cost": str(self.cost),
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CostRecord:
        raw_date = data["date"]
        return cls(
            date=date.fromisoformat(raw_date) if isinstance(raw_date, str) else raw_date,
            account_id=data["account_id"],
            account_name=data.get("account_name") or data["account_id"],
            service=data["service"],
            cost=Decimal(str(data["cost"])),
            currency=data.get("currency", DEFAULT_CURRENCY),
        )


# ------------------------------------------------------------------
# Derived aggregates
# ------------------------------------------------------------------


class GroupBy(Enum):
    """Dimension used to bucket grouped totals."""

    SERVICE = "service"
    ACCOUNT = "account"


@dataclass
class DailyTotal:
    """Sum of cost for one calendar day."""

    date: date
    total: Decimal


@dataclass
class AccountSummary:
    """Per-account total plus a service breakdown for one period."""

    account_id: str
    account_name: str
    total_cost: Decimal
    cost_by_service: dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "total_cost": str(self.total_cost),
            "cost_by_service": {k: str(v) for k, v in self.cost_by_service.items()},
        }


@dataclass
class ComparisonResult:
    """Current vs previous period."""

    label: str
    current_value: Decimal
    previous_value: Decimal
    difference: Decimal
    percent_change: Decimal

    @property
    def is_up(self) -> bool:
        # Ties count as up.
        return self.current_value >= self.previous_value

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "current_value": str(self.current_value),
            "previous_value": str(self.previous_value),
            "difference": str(self.difference),
            "percent_change": str(self.percent_change),
            "is_up": self.is_up,
        }


@dataclass
class DayComparison:
    """Day ``n`` of this month against day ``n`` of last month."""

    day_of_month: int
    this_month: Decimal
    last_month: Decimal
    difference: Decimal
    percent_change: Decimal


@dataclass
class GroupedComparison:
    """MTD and rolling-window comparison for one service or account name."""

    name: str
    mtd_cost: Decimal
    last_month_same_day_cost: Decimal
    mtd_percent_change: Decimal
    mtd_is_up: bool
    last_full_month_cost: Decimal
    previous_full_month_cost: Decimal
    full_month_percent_change: Decimal
    full_month_is_up: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mtd_cost": str(self.mtd_cost),
            "last_month_same_day_cost": str(self.last_month_same_day_cost),
            "mtd_percent_change": str(self.mtd_percent_change),
            "mtd_is_up": self.mtd_is_up,
            "last_full_month_cost": str(self.last_full_month_cost),
            "previous_full_month_cost": str(self.previous_full_month_cost),
            "full_month_percent_change": str(self.full_month_percent_change),
            "full_month_is_up": self.full_month_is_up,
        }


@dataclass
class CreditsSummary:
    """Credit magnitudes (positive numbers) hidden when viewing gross cost."""

    mtd_credits: Decimal = ZERO
    last_month_credits: Decimal = ZERO

    @property
    def has_credits(self) -> bool:
        return self.mtd_credits > 0 or self.last_month_credits > 0


# ------------------------------------------------------------------
# Sync bookkeeping
# ------------------------------------------------------------------


@dataclass
class SyncWindow:
    """Inclusive date window chosen for one sync attempt."""

    start: date
    end: date
    full_sync: bool = False
    missing_dates: list[date] = field(default_factory=list)

    @property
    def days(self) -> int:
        return max((self.end - self.start).days + 1, 0)


@dataclass
class SyncResult:
    """Outcome of a completed sync."""

    window: SyncWindow
    fetched_count: int
    stored_count: int
    dropped_count: int
    coverage_date: date
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.window.start.isoformat(),
            "end": self.window.end.isoformat(),
            "full_sync": self.window.full_sync,
            "missing_dates": len(self.window.missing_dates),
            "fetched_count": self.fetched_count,
            "stored_count": self.stored_count,
            "dropped_count": self.dropped_count,
            "coverage_date": self.coverage_date.isoformat(),
            "duration_ms": self.duration_ms,
        }
