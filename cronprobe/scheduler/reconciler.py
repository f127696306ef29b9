"""Reconciler: keeps the timer set in step with the store's enabled jobs.

Each tick diffs the scheduled job ids against the enabled job ids,
removes timers that are no longer wanted, then adds missing ones.
Failures are logged and the next tick is the retry.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List

from cronprobe.cli.error_handler import InvalidScheduleError
from cronprobe.scheduler.models import Job
from cronprobe.scheduler.timer_set import TimerSet

if TYPE_CHECKING:
    from cronprobe.database.store import JobStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """What one reconcile tick changed."""

    added: List[int] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)
    refreshed: List[int] = field(default_factory=list)
    invalid: List[int] = field(default_factory=list)
    failed: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.refreshed)


class Reconciler:
    """Diffs the enabled job list against the timer set.

    Ticks are serialized by a lock, so a tick always starts from the
    state the previous tick left. With ``refresh_on_change`` the diff
    also recreates timers whose job schedule or URL was edited;
    otherwise only presence of a job id matters.

    Example:
        reconciler = Reconciler(store, timer_set)
        result = await reconciler.reconcile()
    """

    def __init__(
        self,
        store: "JobStore",
        timers: TimerSet,
        refresh_on_change: bool = False,
    ) -> None:
        self._store = store
        self._timers = timers
        self._refresh_on_change = refresh_on_change
        self._lock = asyncio.Lock()
        self._closed = False

    def close(self) -> None:
        """Stop applying ticks; a read already in progress is discarded."""
        self._closed = True

    async def reconcile(self) -> ReconcileResult:
        """Run one tick. Never raises for store or schedule errors."""
        async with self._lock:
            if self._closed:
                return ReconcileResult()
            try:
                jobs = await asyncio.to_thread(self._store.list_enabled_jobs)
            except Exception as e:
                logger.error(f"❌ Error reading enabled jobs, retrying next tick: {e}")
                return ReconcileResult(failed=True)

            if self._closed:
                return ReconcileResult()
            return self._apply(jobs)

    def _apply(self, jobs: List[Job]) -> ReconcileResult:
        result = ReconcileResult()
        enabled: Dict[int, Job] = {job.id: job for job in jobs}
        scheduled = self._timers.keys()

        # Removals first, to bound the number of live timers
        for job_id in sorted(scheduled - enabled.keys()):
            self._timers.remove(job_id)
            result.removed.append(job_id)

        if self._refresh_on_change:
            for job_id in sorted(scheduled & enabled.keys()):
                timer = self._timers.get(job_id)
                if timer is None or timer.fingerprint == enabled[job_id].fingerprint:
                    continue
                try:
                    self._timers.replace(enabled[job_id])
                except InvalidScheduleError as e:
                    # The previous timer stays live until the schedule is fixed
                    logger.error(f"❌ Error rescheduling job {job_id}, keeping old schedule: {e}")
                    result.invalid.append(job_id)
                    continue
                result.refreshed.append(job_id)

        for job_id in sorted(enabled.keys() - self._timers.keys()):
            job = enabled[job_id]
            try:
                self._timers.add(job)
            except InvalidScheduleError as e:
                logger.error(f"❌ Error scheduling job {job_id}: {e}")
                result.invalid.append(job_id)
                continue
            result.added.append(job_id)

        if result.changed:
            logger.info(
                f"Reconciled {len(jobs)} enabled jobs: "
                f"+{len(result.added)} -{len(result.removed)} ~{len(result.refreshed)}"
            )
        else:
            logger.debug(f"Reconciled {len(jobs)} enabled jobs: no changes")
        return result
