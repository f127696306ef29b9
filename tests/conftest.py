"""Shared fixtures for cronprobe tests."""

import logging
import threading
from pathlib import Path
from typing import List, Optional

import pytest

from cronprobe.config import CronprobeConfig, clear_config_cache, set_config
from cronprobe.database.connection import dispose_engine
from cronprobe.database.store import JobStore, SQLJobStore
from cronprobe.scheduler.models import Job


class InMemoryJobStore(JobStore):
    """Job store kept in a dict, for exercising the engine without a database."""

    def __init__(self, jobs: Optional[List[Job]] = None) -> None:
        self._lock = threading.Lock()
        self.jobs = {job.id: job for job in jobs or []}
        self.records: List[dict] = []
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0

    def put(self, job: Job) -> None:
        with self._lock:
            self.jobs[job.id] = job

    def delete(self, job_id: int) -> None:
        with self._lock:
            self.jobs.pop(job_id, None)

    def list_enabled_jobs(self) -> List[Job]:
        with self._lock:
            self.reads += 1
            if self.fail_reads:
                raise ConnectionError("store unavailable")
            return [job for job in self.jobs.values() if job.enabled]

    def append_outcome(self, job_id, user_id, status, response_time_ms, error_message=None) -> int:
        with self._lock:
            if self.fail_writes:
                raise ConnectionError("store unavailable")
            self.records.append({
                "job_id": job_id,
                "user_id": user_id,
                "status": status,
                "response_time_ms": response_time_ms,
                "error_message": error_message,
            })
            return len(self.records)


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo root logger changes made by the CLI logging setup."""
    root = logging.getLogger()
    level = root.level
    aps_level = logging.getLogger("apscheduler").level
    yield
    # pytest's capture handlers are subclasses, so match exact types only
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    logging.getLogger("apscheduler").setLevel(aps_level)


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def make_job():
    """Factory for job snapshots with sensible defaults."""

    def _make(job_id: int = 1, schedule: str = "*/5 * * * *", **kwargs) -> Job:
        kwargs.setdefault("name", f"job-{job_id}")
        kwargs.setdefault("url", f"https://example.com/health/{job_id}")
        kwargs.setdefault("user_id", 7)
        return Job(id=job_id, schedule=schedule, **kwargs)

    return _make


@pytest.fixture
def sqlite_config(tmp_path: Path):
    """Configuration pointing at a throwaway SQLite database."""
    dispose_engine()
    clear_config_cache()
    config = CronprobeConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        database_url=f"sqlite:///{tmp_path}/cronprobe-test.db",
    )
    set_config(config)
    yield config
    dispose_engine()
    clear_config_cache()


@pytest.fixture
def sql_store(sqlite_config) -> SQLJobStore:
    store = SQLJobStore(sqlite_config)
    store.initialize()
    return store
