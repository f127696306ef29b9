"""Tests for the SQL job store."""

from datetime import datetime, timedelta, timezone

import pytest

from cronprobe.cli.error_handler import NotFoundError, StorageError
from cronprobe.database.connection import get_db_session
from cronprobe.database.models import CronLog
from cronprobe.scheduler.models import ExecutionOutcome, Job


def _add_job(store, name="api", schedule="*/5 * * * *", enabled=True, user_id=1) -> Job:
    return store.create_job(
        user_id=user_id,
        name=name,
        url=f"https://example.com/{name}",
        schedule=schedule,
        enabled=enabled,
    )


class TestJobStoreContract:
    """Tests for the operations the worker relies on."""

    def test_list_enabled_jobs_returns_snapshots(self, sql_store) -> None:
        enabled = _add_job(sql_store, "api")
        _add_job(sql_store, "web", enabled=False)

        jobs = sql_store.list_enabled_jobs()

        assert jobs == [enabled]
        assert isinstance(jobs[0], Job)

    def test_list_enabled_jobs_empty(self, sql_store) -> None:
        assert sql_store.list_enabled_jobs() == []

    def test_append_outcome_returns_id(self, sql_store) -> None:
        job = _add_job(sql_store)

        first = sql_store.append_outcome(job.id, job.user_id, 200, 42)
        second = sql_store.append_outcome(job.id, job.user_id, 0, 30000, "TIMEOUT")

        assert second > first
        logs = sql_store.get_logs(job.id)
        assert [(e["status"], e["error_message"]) for e in logs] == [(0, "TIMEOUT"), (200, None)]

    def test_record_outcome(self, sql_store) -> None:
        job = _add_job(sql_store)
        outcome = ExecutionOutcome(job_id=job.id, user_id=job.user_id, status=503, response_time_ms=12)

        sql_store.record(outcome)

        entry = sql_store.get_logs(job.id)[0]
        assert entry["status"] == 503
        assert entry["response_time"] == 12
        assert entry["user_id"] == job.user_id

    def test_append_for_unknown_job_raises_storage_error(self, sql_store) -> None:
        with pytest.raises(StorageError):
            sql_store.append_outcome(999, 1, 200, 10)


class TestJobManagement:
    """Tests for the CLI-facing job operations."""

    def test_get_job(self, sql_store) -> None:
        job = _add_job(sql_store)

        assert sql_store.get_job(job.id) == job

    def test_get_job_for_other_user(self, sql_store) -> None:
        job = _add_job(sql_store, user_id=1)

        with pytest.raises(NotFoundError):
            sql_store.get_job(job.id, user_id=2)

    def test_get_missing_job(self, sql_store) -> None:
        with pytest.raises(NotFoundError):
            sql_store.get_job(42)

    def test_list_jobs_with_stats(self, sql_store) -> None:
        job = _add_job(sql_store, "api")
        idle = _add_job(sql_store, "idle")
        sql_store.append_outcome(job.id, job.user_id, 200, 5)
        sql_store.append_outcome(job.id, job.user_id, 500, 7)

        rows = {row["id"]: row for row in sql_store.list_jobs()}

        assert rows[job.id]["execution_count"] == 2
        assert rows[job.id]["last_status"] == 500
        assert rows[idle.id]["execution_count"] == 0
        assert rows[idle.id]["last_status"] is None

    def test_list_jobs_filters_by_user(self, sql_store) -> None:
        _add_job(sql_store, "mine", user_id=1)
        _add_job(sql_store, "theirs", user_id=2)

        rows = sql_store.list_jobs(user_id=2)

        assert [row["name"] for row in rows] == ["theirs"]

    def test_set_enabled_and_toggle(self, sql_store) -> None:
        job = _add_job(sql_store)

        assert sql_store.set_enabled(job.id, False).enabled is False
        assert sql_store.list_enabled_jobs() == []
        assert sql_store.set_enabled(job.id).enabled is True
        assert sql_store.set_enabled(job.id).enabled is False

    def test_set_enabled_missing_job(self, sql_store) -> None:
        with pytest.raises(NotFoundError):
            sql_store.set_enabled(42, True)

    def test_update_job(self, sql_store) -> None:
        job = _add_job(sql_store)

        updated = sql_store.update_job(job.id, schedule="0 * * * *")

        assert updated.schedule == "0 * * * *"
        assert updated.fingerprint != job.fingerprint

    def test_update_rejects_unknown_fields(self, sql_store) -> None:
        job = _add_job(sql_store)

        with pytest.raises(ValueError):
            sql_store.update_job(job.id, user_id_override=3)

    def test_delete_job_cascades_to_logs(self, sql_store, sqlite_config) -> None:
        job = _add_job(sql_store)
        sql_store.append_outcome(job.id, job.user_id, 200, 5)

        sql_store.delete_job(job.id)

        with pytest.raises(NotFoundError):
            sql_store.get_job(job.id)
        with get_db_session(sqlite_config) as session:
            assert session.query(CronLog).count() == 0

    def test_delete_missing_job(self, sql_store) -> None:
        with pytest.raises(NotFoundError):
            sql_store.delete_job(42)


class TestExecutionLog:
    """Tests for reading and pruning the execution log."""

    def test_get_logs_limit_and_order(self, sql_store) -> None:
        job = _add_job(sql_store)
        for status in (200, 201, 202):
            sql_store.append_outcome(job.id, job.user_id, status, 5)

        logs = sql_store.get_logs(job.id, limit=2)

        assert [e["status"] for e in logs] == [202, 201]

    def test_prune_logs(self, sql_store, sqlite_config) -> None:
        job = _add_job(sql_store)
        sql_store.append_outcome(job.id, job.user_id, 200, 5)
        sql_store.append_outcome(job.id, job.user_id, 200, 5)
        with get_db_session(sqlite_config) as session:
            oldest = session.query(CronLog).order_by(CronLog.id).first()
            oldest.created_at = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=40)

        deleted = sql_store.prune_logs(30)

        assert deleted == 1
        assert len(sql_store.get_logs(job.id)) == 1
