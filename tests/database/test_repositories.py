"""Tests for the job and execution log repositories."""

from datetime import datetime, timedelta, timezone

import pytest

from cronprobe.database.connection import get_db_session
from cronprobe.database.repositories import ExecutionLogRepository, JobRepository


@pytest.fixture
def session(sql_store, sqlite_config):
    with get_db_session(sqlite_config) as db_session:
        yield db_session


class TestJobRepository:
    """Tests for JobRepository."""

    def test_create_and_get(self, session) -> None:
        repo = JobRepository(session)

        job = repo.create(user_id=3, name="api", url="https://example.com", schedule="* * * * *")

        assert repo.get_by_id(job.id).name == "api"
        assert repo.get_by_id(job.id, user_id=3) is not None
        assert repo.get_by_id(job.id, user_id=4) is None

    def test_get_enabled_is_ordered_by_id(self, session) -> None:
        repo = JobRepository(session)
        first = repo.create(user_id=1, name="a", url="https://a.example.com", schedule="* * * * *")
        repo.create(user_id=1, name="b", url="https://b.example.com", schedule="* * * * *", enabled=False)
        third = repo.create(user_id=1, name="c", url="https://c.example.com", schedule="* * * * *")

        assert [job.id for job in repo.get_enabled()] == [first.id, third.id]

    def test_toggle(self, session) -> None:
        repo = JobRepository(session)
        job = repo.create(user_id=1, name="a", url="https://a.example.com", schedule="* * * * *")

        assert repo.toggle(job.id).enabled is False
        assert repo.toggle(job.id).enabled is True
        assert repo.toggle(999) is None

    def test_update_unknown_field(self, session) -> None:
        repo = JobRepository(session)
        job = repo.create(user_id=1, name="a", url="https://a.example.com", schedule="* * * * *")

        with pytest.raises(ValueError):
            repo.update(job.id, created_at=None)

    def test_delete(self, session) -> None:
        repo = JobRepository(session)
        job = repo.create(user_id=1, name="a", url="https://a.example.com", schedule="* * * * *")

        assert repo.delete(job.id, user_id=2) is False
        assert repo.delete(job.id) is True
        assert repo.get_by_id(job.id) is None


class TestExecutionLogRepository:
    """Tests for ExecutionLogRepository."""

    def test_count_and_filter_by_user(self, session) -> None:
        job = JobRepository(session).create(
            user_id=1, name="a", url="https://a.example.com", schedule="* * * * *"
        )
        logs = ExecutionLogRepository(session)
        logs.create(job.id, 1, 200, 10)
        logs.create(job.id, 1, 0, 30000, "TIMEOUT")

        assert logs.count_for_job(job.id) == 2
        assert len(logs.get_for_job(job.id, user_id=1)) == 2
        assert logs.get_for_job(job.id, user_id=2) == []

    def test_delete_older_than(self, session) -> None:
        job = JobRepository(session).create(
            user_id=1, name="a", url="https://a.example.com", schedule="* * * * *"
        )
        logs = ExecutionLogRepository(session)
        logs.create(job.id, 1, 200, 10)

        future = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(minutes=1)

        assert logs.delete_older_than(future) == 1
        assert logs.count_for_job(job.id) == 0
