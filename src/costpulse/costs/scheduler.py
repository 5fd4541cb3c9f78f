"""Periodic incremental refresh of the cost ledger."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from costpulse.costs.errors import CostPulseError, FetchError, SyncInProgressError
from costpulse.costs.models import SyncResult
from costpulse.logging import get_logger

if TYPE_CHECKING:
    from costpulse.costs.sync import CostSyncService

log = get_logger("costpulse.costs.scheduler")

RefreshCallback = Callable[[SyncResult], Awaitable[None]]


class RefreshScheduler:
    """Runs an incremental sync every ``interval_minutes`` on a background task.

    A failing tick is logged and the loop carries on; the next tick retries
    naturally because the ledger's latest date did not advance.
    """

    def __init__(
        self,
        sync: CostSyncService,
        interval_minutes: int,
        *,
        on_refresh: RefreshCallback | None = None,
    ) -> None:
        self._sync = sync
        self._interval_seconds = interval_minutes * 60
        self._on_refresh = on_refresh
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the loop. Returns False when scheduling is disabled."""
        if self._interval_seconds <= 0:
            log.info("refresh_scheduler_disabled")
            return False
        if self.is_running:
            return True
        self._task = asyncio.create_task(self._run(), name="costpulse-refresh")
        log.info("refresh_scheduler_started", interval_seconds=self._interval_seconds)
        return True

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log.info("refresh_scheduler_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.run_now()

    async def run_now(self) -> SyncResult | None:
        """Refresh immediately. Returns None when the attempt failed or was skipped."""
        try:
            result = await self._sync.refresh()
        except SyncInProgressError:
            log.info("scheduled_refresh_skipped", reason="sync_in_progress")
            return None
        except FetchError as exc:
            log.warning("scheduled_refresh_failed", error=str(exc), transient=exc.transient)
            return None
        except CostPulseError as exc:
            log.warning("scheduled_refresh_failed", error=str(exc))
            return None
        except Exception:
            log.exception("scheduled_refresh_crashed")
            return None

        if self._on_refresh is not None:
            try:
                await self._on_refresh(result)
            except Exception:
                # Sync already committed.
                log.exception("refresh_callback_failed")
        return result
