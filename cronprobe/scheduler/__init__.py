"""Scheduling engine for health-check jobs.

The timer set keeps one cron trigger per enabled job, the reconciler
keeps it in step with the store, and the probe executor runs each fire.
"""

from cronprobe.scheduler.models import ExecutionOutcome, Job, WorkerState
from cronprobe.scheduler.probe import ProbeExecutor, ProbeFailure
from cronprobe.scheduler.reconciler import ReconcileResult, Reconciler
from cronprobe.scheduler.timer_set import Timer, TimerSet, parse_schedule

__all__ = [
    "ExecutionOutcome",
    "Job",
    "ProbeExecutor",
    "ProbeFailure",
    "ReconcileResult",
    "Reconciler",
    "Timer",
    "TimerSet",
    "WorkerState",
    "parse_schedule",
]
