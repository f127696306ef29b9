"""Tests for the reconciler."""

import asyncio
import dataclasses
import logging
from unittest.mock import Mock

import pytest

from cronprobe.scheduler.reconciler import ReconcileResult, Reconciler
from cronprobe.scheduler.timer_set import TimerSet


@pytest.fixture
def timers() -> TimerSet:
    timer_set = TimerSet(on_fire=Mock())
    yield timer_set
    timer_set.shutdown()


@pytest.fixture
def reconciler(memory_store, timers) -> Reconciler:
    return Reconciler(memory_store, timers)


class TestReconcileResult:
    """Tests for ReconcileResult."""

    def test_changed(self) -> None:
        assert not ReconcileResult().changed
        assert ReconcileResult(added=[1]).changed
        assert ReconcileResult(removed=[1]).changed
        assert not ReconcileResult(invalid=[1]).changed


class TestReconciler:
    """Tests for Reconciler.reconcile."""

    @pytest.mark.asyncio
    async def test_adds_enabled_jobs(self, reconciler, memory_store, timers, make_job) -> None:
        memory_store.put(make_job(1))
        memory_store.put(make_job(2))
        memory_store.put(make_job(3, enabled=False))

        result = await reconciler.reconcile()

        assert result.added == [1, 2]
        assert result.removed == []
        assert timers.keys() == frozenset({1, 2})

    @pytest.mark.asyncio
    async def test_is_idempotent(self, reconciler, memory_store, timers, make_job) -> None:
        memory_store.put(make_job(1))
        await reconciler.reconcile()
        first_timer = timers.get(1)

        result = await reconciler.reconcile()

        assert not result.changed
        assert timers.get(1) is first_timer

    @pytest.mark.asyncio
    async def test_removes_disabled_and_deleted_jobs(self, reconciler, memory_store, timers, make_job) -> None:
        memory_store.put(make_job(1))
        memory_store.put(make_job(2))
        await reconciler.reconcile()

        memory_store.put(make_job(1, enabled=False))
        memory_store.delete(2)
        result = await reconciler.reconcile()

        assert result.removed == [1, 2]
        assert len(timers) == 0

    @pytest.mark.asyncio
    async def test_reenabled_job_gets_new_timer(self, reconciler, memory_store, timers, make_job) -> None:
        memory_store.put(make_job(1))
        await reconciler.reconcile()
        old_token = timers.get(1).token

        memory_store.put(make_job(1, enabled=False))
        await reconciler.reconcile()
        memory_store.put(make_job(1))
        result = await reconciler.reconcile()

        assert result.added == [1]
        assert timers.get(1).token != old_token

    @pytest.mark.asyncio
    async def test_invalid_schedule_does_not_block_others(
        self, reconciler, memory_store, timers, make_job, caplog
    ) -> None:
        memory_store.put(make_job(1, schedule="every five minutes"))
        memory_store.put(make_job(2))

        with caplog.at_level(logging.ERROR):
            result = await reconciler.reconcile()

        assert result.invalid == [1]
        assert result.added == [2]
        assert timers.keys() == frozenset({2})
        assert "Error scheduling job 1" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_schedule_is_retried_each_tick(self, reconciler, memory_store, timers, make_job) -> None:
        memory_store.put(make_job(1, schedule="bad"))
        await reconciler.reconcile()

        result = await reconciler.reconcile()
        assert result.invalid == [1]

        memory_store.put(make_job(1))
        result = await reconciler.reconcile()
        assert result.added == [1]
        assert 1 in timers

    @pytest.mark.asyncio
    async def test_store_failure_leaves_timers_untouched(
        self, reconciler, memory_store, timers, make_job, caplog
    ) -> None:
        memory_store.put(make_job(1))
        await reconciler.reconcile()

        memory_store.fail_reads = True
        with caplog.at_level(logging.ERROR):
            result = await reconciler.reconcile()

        assert result.failed is True
        assert timers.keys() == frozenset({1})
        assert "retrying next tick" in caplog.text

    @pytest.mark.asyncio
    async def test_edited_schedule_keeps_existing_timer(self, reconciler, memory_store, timers, make_job) -> None:
        """Test that presence, not content, decides the diff by default."""
        memory_store.put(make_job(1))
        await reconciler.reconcile()

        memory_store.put(make_job(1, schedule="0 * * * *"))
        result = await reconciler.reconcile()

        assert not result.changed
        assert timers.get(1).schedule == "*/5 * * * *"

    @pytest.mark.asyncio
    async def test_refresh_on_change_recreates_timer(self, memory_store, timers, make_job) -> None:
        reconciler = Reconciler(memory_store, timers, refresh_on_change=True)
        memory_store.put(make_job(1))
        memory_store.put(make_job(2))
        await reconciler.reconcile()
        old_token = timers.get(1).token

        memory_store.put(make_job(1, schedule="0 * * * *"))
        memory_store.put(dataclasses.replace(memory_store.jobs[2], name="renamed"))
        result = await reconciler.reconcile()

        assert result.refreshed == [1]
        assert result.added == []
        assert timers.get(1).schedule == "0 * * * *"
        assert timers.get(1).token != old_token
        assert timers.get(2).job.name == "job-2"

    @pytest.mark.asyncio
    async def test_refresh_to_invalid_schedule_keeps_old_timer(
        self, memory_store, timers, make_job, caplog
    ) -> None:
        reconciler = Reconciler(memory_store, timers, refresh_on_change=True)
        memory_store.put(make_job(1))
        await reconciler.reconcile()
        old_token = timers.get(1).token

        memory_store.put(make_job(1, schedule="every minute"))
        with caplog.at_level(logging.ERROR):
            result = await reconciler.reconcile()

        assert result.refreshed == []
        assert result.invalid == [1]
        assert timers.get(1).token == old_token
        assert timers.get(1).schedule == "*/5 * * * *"
        assert "keeping old schedule" in caplog.text

    @pytest.mark.asyncio
    async def test_concurrent_ticks_are_serialized(self, reconciler, memory_store, timers, make_job) -> None:
        for job_id in range(1, 21):
            memory_store.put(make_job(job_id))

        results = await asyncio.gather(*(reconciler.reconcile() for _ in range(5)))

        added = [job_id for result in results for job_id in result.added]
        assert sorted(added) == list(range(1, 21))
        assert len(timers) == 20

    @pytest.mark.asyncio
    async def test_closed_reconciler_does_nothing(self, reconciler, memory_store, timers, make_job) -> None:
        memory_store.put(make_job(1))
        reconciler.close()

        result = await reconciler.reconcile()

        assert not result.changed
        assert len(timers) == 0
        assert memory_store.reads == 0
