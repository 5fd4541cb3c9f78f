"""Centralized constants for Costpulse."""

# Sync
CATCH_UP_DAYS = 3  # trailing days always re-fetched to absorb late corrections
DEFAULT_FULL_SYNC_DAYS = 90

# Aggregation
ROLLING_WINDOW_DAYS = 30
PERCENT_WHEN_NO_BASELINE = 100

# Cost Explorer
COST_METRIC = "UnblendedCost"
DEFAULT_CURRENCY = "USD"
ACCOUNT_NAME_LOOKBACK_DAYS = 30
THROTTLING_ERROR_CODES = frozenset(
    {"ThrottlingException", "LimitExceededException", "RequestLimitExceeded"}
)
