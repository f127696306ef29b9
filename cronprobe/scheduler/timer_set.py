"""Timer set: one live APScheduler cron trigger per scheduled job.

The TimerSet owns the AsyncIOScheduler and every trigger registered on
it. Each fire calls the supplied callback with the job snapshot the
timer was created from. A timer's schedule is fixed at creation.
"""

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from cronprobe.cli.error_handler import InvalidScheduleError
from cronprobe.scheduler.models import Job

logger = logging.getLogger(__name__)

FireCallback = Callable[[Job], Any]

_WEEKDAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]


def _weekday_number(token: str) -> int:
    token = token.strip().lower()
    if token in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES.index(token)
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"day of week out of range: {value}")
    return value


def _translate_day_of_week(field: str) -> str:
    """Rewrite a crontab day-of-week field with weekday names.

    Crontab counts Sunday as 0 (or 7) while APScheduler counts Monday
    as 0, so numeric fields are expanded to explicit names.
    """
    if field in ("*", "?"):
        return "*"

    days = set()
    for part in field.split(","):
        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            step = int(step_str)
            if step < 1:
                raise ValueError(f"invalid step: {step}")
        if part in ("*", "?"):
            first, last = 0, 6
        elif "-" in part:
            start, end = part.split("-", 1)
            first, last = _weekday_number(start), _weekday_number(end)
            if last < first:
                raise ValueError(f"invalid range: {part}")
        else:
            first = _weekday_number(part)
            last = first if step == 1 else 6
        days.update(day % 7 for day in range(first, last + 1, step))

    return ",".join(_WEEKDAY_NAMES[d] for d in sorted(days))


def parse_schedule(schedule: str, timezone: str = "UTC") -> CronTrigger:
    """Parse a 5-field crontab expression into a CronTrigger.

    Args:
        schedule: "minute hour day month weekday"
        timezone: Zone the trigger fires in

    Returns:
        CronTrigger instance

    Raises:
        InvalidScheduleError: If the expression does not parse
    """
    parts = (schedule or "").split()
    if len(parts) != 5:
        raise InvalidScheduleError(
            schedule,
            f"expected 5 fields (minute hour day month weekday), got {len(parts)}",
        )

    minute, hour, day, month, weekday = parts
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(weekday),
            timezone=timezone,
        )
    except (ValueError, TypeError) as e:
        raise InvalidScheduleError(schedule, str(e)) from e


@dataclass
class Timer:
    """A live trigger bound to one job snapshot."""

    job: Job
    token: int
    aps_job_id: str

    @property
    def job_id(self) -> int:
        return self.job.id

    @property
    def schedule(self) -> str:
        return self.job.schedule

    @property
    def fingerprint(self) -> str:
        return self.job.fingerprint


class TimerSet:
    """In-memory mapping from job id to its running trigger.

    Only the Reconciler mutates the set while the worker runs; reads of
    ``keys()`` return a frozen snapshot.

    Example:
        timers = TimerSet(on_fire=handle_fire)
        timers.start()
        timers.add(job)
        timers.remove(job.id)
        timers.shutdown()
    """

    def __init__(
        self,
        on_fire: FireCallback,
        timezone: str = "UTC",
        misfire_grace_time: int = 30,
    ) -> None:
        """Initialize the timer set.

        Args:
            on_fire: Called with the job snapshot on every fire
            timezone: Zone every cron trigger fires in
            misfire_grace_time: Seconds a late fire is still run
        """
        self._on_fire = on_fire
        self._timezone = timezone
        self._timers: Dict[int, Timer] = {}
        self._tokens = itertools.count(1)
        self._shut_down = False
        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,  # Combine missed runs
                "max_instances": 1,  # Fires return immediately, probes run as tasks
                "misfire_grace_time": misfire_grace_time,
            },
            timezone=timezone,
        )
        self._setup_listeners()

    @property
    def is_running(self) -> bool:
        return self._scheduler.running and not self._shut_down

    def __len__(self) -> int:
        return len(self._timers)

    def __contains__(self, job_id: int) -> bool:
        return job_id in self._timers

    def has(self, job_id: int) -> bool:
        return job_id in self._timers

    def keys(self) -> FrozenSet[int]:
        """Snapshot of the scheduled job ids."""
        return frozenset(self._timers)

    def get(self, job_id: int) -> Optional[Timer]:
        return self._timers.get(job_id)

    def start(self) -> None:
        """Start the underlying scheduler. Must run inside the event loop."""
        if self._shut_down or self._scheduler.running:
            return
        self._scheduler.start()
        logger.debug("Timer set started")

    def shutdown(self) -> None:
        """Remove every timer and stop the scheduler. Idempotent.

        The asyncio scheduler may finish stopping on the next loop pass,
        so callers inside the loop should yield once before relying on
        the scheduler being stopped. A shut down set cannot be restarted.
        """
        for job_id in list(self._timers):
            self.remove(job_id)
        if self._shut_down:
            return
        self._shut_down = True
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.debug("Timer set stopped")

    def add(self, job: Job) -> Timer:
        """Create and start a timer for ``job``.

        Returns:
            The new timer, or the existing one if the job is already scheduled

        Raises:
            InvalidScheduleError: If the schedule does not parse; the set
                is left unchanged
        """
        existing = self._timers.get(job.id)
        if existing is not None:
            return existing

        return self._register(job, self._parse(job))

    def replace(self, job: Job) -> Timer:
        """Swap the timer for ``job.id`` for one built from ``job``.

        The new schedule is parsed before the old timer is touched, so an
        invalid schedule keeps the old timer running.

        Raises:
            InvalidScheduleError: If the new schedule does not parse
        """
        trigger = self._parse(job)
        self.remove(job.id)
        return self._register(job, trigger)

    def _parse(self, job: Job) -> CronTrigger:
        try:
            return parse_schedule(job.schedule, self._timezone)
        except InvalidScheduleError as e:
            e.job_id = job.id
            e.details["job_id"] = job.id
            raise

    def _register(self, job: Job, trigger: CronTrigger) -> Timer:
        token = next(self._tokens)
        aps_job_id = f"job-{job.id}-{token}"
        aps_job = self._scheduler.add_job(
            func=self._fire,
            trigger=trigger,
            id=aps_job_id,
            name=job.name or f"Job {job.id}",
            args=[job.id, token],
        )
        timer = Timer(job=job, token=token, aps_job_id=aps_job_id)
        self._timers[job.id] = timer

        if self._scheduler.running and getattr(aps_job, "next_run_time", None) is None:
            logger.warning(f"Schedule '{job.schedule}' of job {job.id} never fires")

        logger.info(f"✅ Scheduled {job.describe()}")
        return timer

    def remove(self, job_id: int) -> bool:
        """Stop and discard the timer for ``job_id``.

        Returns:
            True if a timer was removed, False if none existed
        """
        timer = self._timers.pop(job_id, None)
        if timer is None:
            return False

        if self._scheduler.get_job(timer.aps_job_id) is not None:
            self._scheduler.remove_job(timer.aps_job_id)
        logger.info(f"🗑️  Removed timer for job {job_id}")
        return True

    def next_run_time(self, job_id: int) -> Optional[datetime]:
        timer = self._timers.get(job_id)
        if timer is None:
            return None
        aps_job = self._scheduler.get_job(timer.aps_job_id)
        if aps_job is None:
            return None
        return getattr(aps_job, "next_run_time", None)

    def describe(self) -> List[Dict[str, Any]]:
        """Summaries of live timers for status output."""
        result = []
        for job_id, timer in sorted(self._timers.items()):
            next_run = self.next_run_time(job_id)
            result.append({
                "job_id": job_id,
                "name": timer.job.name,
                "schedule": timer.schedule,
                "next_run": next_run.isoformat() if next_run else None,
            })
        return result

    async def _fire(self, job_id: int, token: int) -> None:
        """APScheduler entry point for one fire."""
        timer = self._timers.get(job_id)
        if timer is None or timer.token != token:
            # Already queued when its timer was removed or replaced
            logger.debug(f"Dropping fire for stale timer of job {job_id}")
            return

        try:
            self._on_fire(timer.job)
        except Exception:
            logger.exception(f"Fire callback failed for job {job_id}")

    def _setup_listeners(self) -> None:
        """Set up APScheduler event listeners."""

        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Timer {event.job_id} failed: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Timer {event.job_id} missed scheduled run")

        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)
