"""Worker service for cronprobe.

This module provides the long-running worker:
- Worker lifecycle (created -> running -> stopped)
- Reconcile cadence keeping timers in step with the job store
- Fire handling: probe, then append the outcome to the store
- Signal handling for graceful shutdown
- Background daemon mode with process forking
"""

import asyncio
import json
import logging
import os
import signal
import sys
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

from cronprobe.config import CronprobeConfig
from cronprobe.database.store import JobStore, SQLJobStore
from cronprobe.scheduler.models import ExecutionOutcome, Job, WorkerState
from cronprobe.scheduler.probe import ProbeExecutor
from cronprobe.scheduler.reconciler import Reconciler
from cronprobe.scheduler.timer_set import TimerSet

logger = logging.getLogger(__name__)

STATUS_FILE_NAME = "worker-status.json"


class Worker:
    """Composition root of the scheduling engine.

    The Worker owns the timer set, drives the reconciler on a fixed
    cadence and turns every timer fire into a probe whose outcome is
    appended to the store. Fires are fire-and-forget: the reconcile
    loop never waits on a probe, and a slow probe does not delay other
    jobs. Two fires of the same job may overlap unless
    ``worker.single_flight`` is set.

    Attributes:
        _config: cronprobe configuration
        _store: Job store read by the reconciler and written by probes
        _probe: Probe executor
        _timers: Timer set owned by this worker
        _reconciler: Reconciler bound to the store and timer set
        _state: Lifecycle state
        _in_flight: Probe tasks not yet finished
        _status_file: Where status() is published after every tick, if set

    Example:
        worker = Worker(store, config)
        await worker.start()
        await worker.run_until_shutdown()
        await worker.stop()
    """

    def __init__(
        self,
        store: JobStore,
        config: Optional[CronprobeConfig] = None,
        probe: Optional[ProbeExecutor] = None,
        status_file: Optional[Path] = None,
    ):
        """Initialize the worker.

        Args:
            store: Job store to reconcile against and record outcomes in
            config: cronprobe configuration (defaults if not provided)
            probe: Probe executor (built from config if not provided)
            status_file: File to publish status() to for `cronprobe run status`
        """
        self._config = config or CronprobeConfig()
        self._store = store
        self._probe = probe or ProbeExecutor.from_config(self._config.probe)
        self._timers = TimerSet(
            on_fire=self._handle_fire,
            timezone=self._config.worker.timezone,
            misfire_grace_time=self._config.worker.misfire_grace_time,
        )
        self._reconciler = Reconciler(
            store,
            self._timers,
            refresh_on_change=self._config.worker.refresh_on_change,
        )
        self._state = WorkerState.CREATED
        self._reconcile_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._in_flight_jobs: Counter = Counter()
        self._shutdown_event = asyncio.Event()
        self._status_file = status_file

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is WorkerState.RUNNING

    @property
    def timers(self) -> TimerSet:
        return self._timers

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    @property
    def in_flight(self) -> int:
        """Number of probes currently executing."""
        return len(self._in_flight)

    async def start(self) -> None:
        """Schedule every enabled job, then start the reconcile cadence.

        The initial reconcile completes before this returns, so enabled
        jobs are live before the first tick.
        """
        if self._state is not WorkerState.CREATED:
            logger.warning(f"Worker already {self._state.value}, ignoring start()")
            return

        logger.info("⚡ Cron worker starting")
        self._timers.start()
        self._state = WorkerState.RUNNING

        await self._reconciler.reconcile()
        if self._state is not WorkerState.RUNNING:
            # stop() ran while the first reconcile was in progress
            return

        logger.info(f"📋 Scheduled {len(self._timers)} active jobs")
        self._write_status()
        self._reconcile_task = asyncio.create_task(
            self._reconcile_loop(), name="cronprobe-reconcile"
        )
        logger.info("Cron worker started")

    async def stop(self) -> None:
        """Stop scheduling and drain in-flight probes.

        Idempotent, and safe before start(). No fire starts a probe once
        this returns; probes already running may finish and record their
        outcome within the drain timeout.
        """
        if self._state is WorkerState.STOPPED:
            return

        previous = self._state
        self._state = WorkerState.STOPPED
        self._shutdown_event.set()

        try:
            self._reconciler.close()
            if previous is WorkerState.CREATED:
                logger.debug("Worker stopped before start")
                return

            logger.info("🛑 Stopping cron worker...")
            if self._reconcile_task is not None:
                self._reconcile_task.cancel()
                await asyncio.gather(self._reconcile_task, return_exceptions=True)
                self._reconcile_task = None

            self._timers.shutdown()
            # The asyncio scheduler may complete its shutdown on the next loop pass
            await asyncio.sleep(0)
            await self._drain()
            self._remove_status()
            logger.info("🛑 Cron worker stopped")
        except Exception:
            logger.exception("Error while stopping worker")

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request worker shutdown; safe to call from a signal handler."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def status(self) -> Dict[str, Any]:
        """Get worker status.

        Returns:
            Dictionary with the state, counts and per-timer next runs
        """
        return {
            "state": self._state.value,
            "timers": len(self._timers),
            "in_flight": len(self._in_flight),
            "single_flight": self._config.worker.single_flight,
            "refresh_on_change": self._config.worker.refresh_on_change,
            "jobs": self._timers.describe(),
        }

    async def _reconcile_loop(self) -> None:
        """Run a reconcile tick every ``reconcile_interval`` seconds."""
        loop = asyncio.get_running_loop()
        interval = self._config.worker.reconcile_interval
        next_tick = loop.time() + interval

        while self._state is WorkerState.RUNNING:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            try:
                await self._reconciler.reconcile()
            except Exception:
                logger.exception("Reconcile tick failed")
            self._write_status()

            # Skip ticks a slow reconcile overran instead of bunching them
            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                next_tick = now + interval

    def _write_status(self) -> None:
        if self._status_file is None or self._state is not WorkerState.RUNNING:
            return

        status = self.status()
        status["pid"] = os.getpid()
        status["updated_at"] = datetime.now(timezone.utc).isoformat()
        tmp_path = self._status_file.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(status, indent=2))
            tmp_path.replace(self._status_file)
        except OSError as e:
            logger.warning(f"Could not write status file {self._status_file}: {e}")

    def _remove_status(self) -> None:
        if self._status_file is None:
            return
        try:
            self._status_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove status file {self._status_file}: {e}")

    def _handle_fire(self, job: Job) -> None:
        """Timer callback: start a probe task and return at once."""
        if self._state is not WorkerState.RUNNING:
            logger.debug(f"Ignoring fire for job {job.id}: worker {self._state.value}")
            return

        if self._config.worker.single_flight and self._in_flight_jobs[job.id]:
            logger.warning(f"Skipping fire for job {job.id}: previous execution still running")
            return

        task = asyncio.create_task(self._execute(job), name=f"cronprobe-job-{job.id}")
        self._in_flight.add(task)
        self._in_flight_jobs[job.id] += 1
        task.add_done_callback(lambda t, job_id=job.id: self._finish(t, job_id))

    def _finish(self, task: asyncio.Task, job_id: int) -> None:
        self._in_flight.discard(task)
        self._in_flight_jobs[job_id] -= 1
        if self._in_flight_jobs[job_id] <= 0:
            del self._in_flight_jobs[job_id]

        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Execution of job {job_id} failed: {task.exception()!r}")

    async def _execute(self, job: Job) -> Optional[ExecutionOutcome]:
        """Probe the job and append the outcome to the store."""
        outcome = await self._probe.execute(job)

        try:
            record_id = await asyncio.to_thread(self._store.record, outcome)
        except Exception as e:
            logger.error(f"Failed to record outcome of job {job.id}, dropping it: {e}")
            return None

        logger.debug(f"Recorded outcome {record_id} for job {job.id}")
        return outcome

    async def _drain(self) -> None:
        """Wait for in-flight probes, cancelling any past the drain timeout."""
        if not self._in_flight:
            return

        pending = set(self._in_flight)
        timeout = self._config.drain_timeout
        logger.info(f"Waiting up to {timeout:.0f}s for {len(pending)} in-flight executions")

        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(f"Cancelling {len(still_running)} executions still running after drain timeout")
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)


async def run_worker(config: CronprobeConfig, store: Optional[JobStore] = None) -> None:
    """Run the worker with signal handling.

    Sets up SIGTERM/SIGINT handlers that request shutdown, runs the
    worker until one arrives, then stops it.

    Args:
        config: cronprobe configuration
        store: Job store (SQL store from config if not provided)

    Example:
        asyncio.run(run_worker(load_config()))
    """
    if store is None:
        sql_store = SQLJobStore(config)
        sql_store.initialize()
        store = sql_store

    worker = Worker(store, config, status_file=config.data_dir / STATUS_FILE_NAME)
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"🔻 {sig.name} received. Shutting down gracefully...")
        worker.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(
                sig,
                lambda signum, frame: loop.call_soon_threadsafe(
                    handle_signal, signal.Signals(signum)
                ),
            )

    try:
        await worker.start()
        await worker.run_until_shutdown()
    finally:
        await worker.stop()


def daemonize(log_file: Optional[Path] = None) -> None:
    """Fork the process into the background.

    Standard double fork, new session, standard streams redirected to
    ``log_file`` (or /dev/null). Does nothing on Windows.
    """
    if sys.platform == "win32":
        logger.warning("Daemon mode not supported on Windows")
        return

    if os.fork() > 0:
        sys.exit(0)
    os.setsid()
    if os.fork() > 0:
        sys.exit(0)

    sys.stdout.flush()
    sys.stderr.flush()

    with open(os.devnull, "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())

    target = log_file if log_file else Path(os.devnull)
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "a+") as f:
        os.dup2(f.fileno(), sys.stdout.fileno())
        os.dup2(f.fileno(), sys.stderr.fileno())

    logger.info(f"Worker process started (PID: {os.getpid()})")
