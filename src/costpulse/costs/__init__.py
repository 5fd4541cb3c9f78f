"""Billing ledger: storage, incremental sync, and period comparisons."""

from costpulse.costs.analysis import CostAnalysisService, percent_change
from costpulse.costs.errors import (
    CostPulseError,
    FetchError,
    StorageError,
    SyncCancelledError,
    SyncInProgressError,
)
from costpulse.costs.models import (
    AccountSummary,
    ComparisonResult,
    CostRecord,
    CreditsSummary,
    DailyTotal,
    DayComparison,
    GroupBy,
    GroupedComparison,
    SyncResult,
    SyncWindow,
)
from costpulse.costs.scheduler import RefreshScheduler
from costpulse.costs.storage import CostStorage
from costpulse.costs.sync import CostFetcher, CostSyncService

__all__ = [
    "AccountSummary",
    "ComparisonResult",
    "CostAnalysisService",
    "CostFetcher",
    "CostPulseError",
    "CostRecord",
    "CostStorage",
    "CostSyncService",
    "CreditsSummary",
    "DailyTotal",
    "DayComparison",
    "FetchError",
    "GroupBy",
    "GroupedComparison",
    "RefreshScheduler",
    "StorageError",
    "SyncCancelledError",
    "SyncInProgressError",
    "SyncResult",
    "SyncWindow",
    "percent_change",
]
