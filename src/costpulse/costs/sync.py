"""Incremental synchronization of the cost ledger.

Each refresh is one linear flow:

1. Plan the window: end is yesterday (today's billing is never complete);
   start depends on the mode and on what the ledger already holds.
2. Drain every page the billing source returns for the window.
3. Drop zero-cost rows, then upsert the rest in one batch.

Nothing is merged until the whole window has been fetched, so a failed or
cancelled attempt leaves the ledger exactly as it was.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from contextlib import aclosing
from datetime import date, timedelta
from typing import TYPE_CHECKING, Protocol

from costpulse.constants import CATCH_UP_DAYS, DEFAULT_FULL_SYNC_DAYS
from costpulse.costs.errors import (
    CostPulseError,
    FetchError,
    SyncCancelledError,
    SyncInProgressError,
)
from costpulse.costs.models import CostRecord, SyncResult, SyncWindow
from costpulse.logging import get_logger
from costpulse.utils import timed_operation, utc_today

if TYPE_CHECKING:
    from costpulse.costs.storage import CostStorage

log = get_logger("costpulse.costs.sync")


class CostFetcher(Protocol):
    """Billing source capability consumed by the sync engine."""

    def fetch_pages(self, start: date, end: date) -> AsyncGenerator[list[CostRecord], None]:
        """Yield pages of daily records for ``[start, end]`` inclusive."""
        ...


class CostSyncService:
    """Decides what to fetch, fetches it, and merges it into the ledger.

    At most one refresh runs at a time; a concurrent request is rejected
    with ``SyncInProgressError`` rather than queued.
    """

    def __init__(
        self,
        storage: CostStorage,
        fetcher: CostFetcher,
        *,
        full_sync_days: int = DEFAULT_FULL_SYNC_DAYS,
        clock: Callable[[], date] = utc_today,
    ) -> None:
        self._storage = storage
        self._fetcher = fetcher
        self._full_sync_days = full_sync_days
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Window planning
    # ------------------------------------------------------------------

    async def plan_window(self, full_sync: bool = False) -> SyncWindow:
        """Compute the inclusive window the next refresh should fetch."""
        today = self._clock()
        end = today - timedelta(days=1)
        catch_up_from = today - timedelta(days=CATCH_UP_DAYS)
        horizon_start = today - timedelta(days=self._full_sync_days)

        if full_sync:
            start = horizon_start
        else:
            latest = await self._storage.latest_date()
            if latest is None:
                # Empty ledger: incremental behaves as a full sync.
                full_sync = True
                start = horizon_start
            else:
                start = min(latest + timedelta(days=1), catch_up_from)

        missing = await self._storage.missing_dates(start, end)
        if not missing and not full_sync:
            # No gap: still re-fetch the trailing days for late corrections.
            start = catch_up_from

        window = SyncWindow(start=start, end=end, full_sync=full_sync, missing_dates=missing)
        log.info(
            "cost_sync_window_planned",
            start=start.isoformat(),
            end=end.isoformat(),
            full_sync=full_sync,
            missing_dates=len(missing),
        )
        return window

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(
        self,
        full_sync: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncResult:
        """Run one fetch-and-merge cycle.

        Args:
            full_sync: Fetch the whole configured horizon instead of the
                incremental window.
            cancel_event: Checked before the first page and between pages;
                when set the attempt is abandoned with nothing merged.

        Raises:
            SyncInProgressError: Another refresh holds the lock.
            SyncCancelledError: ``cancel_event`` was set mid-fetch.
            FetchError: The billing source failed; the ledger is unchanged.
            StorageError: The ledger could not be read or written.
        """
        if self._lock.locked():
            raise SyncInProgressError("a cost sync is already running")

        async with self._lock:
            window = await self.plan_window(full_sync=full_sync)
            async with timed_operation(
                "cost_sync_fetch",
                log=log,
                start=window.start.isoformat(),
                end=window.end.isoformat(),
            ) as timing:
                fetched, retained = await self._fetch_window(window, cancel_event)

            stored = await self._storage.upsert(retained)

        result = SyncResult(
            window=window,
            fetched_count=fetched,
            stored_count=stored,
            dropped_count=fetched - len(retained),
            coverage_date=window.end,
            duration_ms=timing["elapsed_ms"],
        )
        log.info("cost_sync_complete", **result.to_dict())
        return result

    async def _fetch_window(
        self,
        window: SyncWindow,
        cancel_event: asyncio.Event | None,
    ) -> tuple[int, list[CostRecord]]:
        """Drain all pages for the window. Returns (fetched, non-zero records)."""
        fetched = 0
        retained: list[CostRecord] = []
        pages_read = 0

        self._raise_if_cancelled(cancel_event, pages_read)
        try:
            async with aclosing(self._fetcher.fetch_pages(window.start, window.end)) as pages:
                async for page in pages:
                    pages_read += 1
                    fetched += len(page)
                    # Zero rows are no-activity noise; credits are kept.
                    retained.extend(record for record in page if record.cost != 0)
                    log.debug("cost_page_fetched", page=pages_read, records=len(page))
                    self._raise_if_cancelled(cancel_event, pages_read)
        except CostPulseError:
            raise
        except Exception as exc:
            log.error("cost_fetch_failed", pages_read=pages_read, error=str(exc))
            raise FetchError(f"billing fetch failed: {exc}") from exc

        return fetched, retained

    @staticmethod
    def _raise_if_cancelled(cancel_event: asyncio.Event | None, pages_read: int) -> None:
        if cancel_event is not None and cancel_event.is_set():
            log.info("cost_sync_cancelled", pages_read=pages_read)
            raise SyncCancelledError(f"sync cancelled after {pages_read} page(s)")
