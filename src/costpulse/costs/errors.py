"""Exceptions raised by the cost ledger."""


class CostPulseError(Exception):
    """Base class for all ledger errors."""


class FetchError(CostPulseError):
    """Raised when the billing source fails to return a complete window.

    ``transient`` marks network and rate-limit failures that a later sync
    may succeed on.
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class StorageError(CostPulseError):
    """Raised when the ledger database cannot be read or written."""


class SyncInProgressError(CostPulseError):
    """Raised when a sync is requested while another is still running."""


class SyncCancelledError(CostPulseError):
    """Raised when a sync is cancelled between fetch pages."""
