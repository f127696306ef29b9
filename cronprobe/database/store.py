"""Job store used by the worker.

The worker only needs two operations from persistence: list the enabled
jobs and append one execution record. ``JobStore`` names that contract;
``SQLJobStore`` implements it on the SQLAlchemy repositories.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from cronprobe.cli.error_handler import NotFoundError, StorageError
from cronprobe.config import CronprobeConfig
from cronprobe.database.connection import create_tables, get_db_session
from cronprobe.database.models import CronJob
from cronprobe.database.repositories import ExecutionLogRepository, JobRepository
from cronprobe.scheduler.models import ExecutionOutcome, Job

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Contract between the scheduling engine and job persistence.

    Implementations must tolerate concurrent calls from several
    threads or tasks.
    """

    @abstractmethod
    def list_enabled_jobs(self) -> List[Job]:
        """Return a snapshot of every enabled job."""

    @abstractmethod
    def append_outcome(
        self,
        job_id: int,
        user_id: int,
        status: int,
        response_time_ms: int,
        error_message: Optional[str] = None,
    ) -> int:
        """Append one execution record and return its id."""

    def record(self, outcome: ExecutionOutcome) -> int:
        """Append an ``ExecutionOutcome``."""
        return self.append_outcome(
            outcome.job_id,
            outcome.user_id,
            outcome.status,
            outcome.response_time_ms,
            outcome.error_message,
        )


def _to_job(db_job: CronJob) -> Job:
    return Job(
        id=db_job.id,
        name=db_job.name,
        url=db_job.url,
        schedule=db_job.schedule,
        enabled=bool(db_job.enabled),
        user_id=db_job.user_id,
    )


class SQLJobStore(JobStore):
    """Job store backed by the SQLAlchemy database.

    Every call opens its own short session, so the store can be used
    from ``asyncio.to_thread`` workers concurrently. Database failures
    are raised as ``StorageError``.

    Example:
        store = SQLJobStore(config)
        store.initialize()
        job = store.create_job(user_id=1, name="api", url="https://example.com",
                               schedule="*/5 * * * *")
    """

    def __init__(self, config: Optional[CronprobeConfig] = None) -> None:
        self._config = config

    def initialize(self) -> None:
        """Create missing tables."""
        try:
            create_tables(self._config)
        except SQLAlchemyError as e:
            raise StorageError("Failed to initialize database", details={"reason": str(e)}) from e

    def list_enabled_jobs(self) -> List[Job]:
        try:
            with get_db_session(self._config) as session:
                return [_to_job(j) for j in JobRepository(session).get_enabled()]
        except SQLAlchemyError as e:
            raise StorageError("Failed to list enabled jobs", details={"reason": str(e)}) from e

    def append_outcome(
        self,
        job_id: int,
        user_id: int,
        status: int,
        response_time_ms: int,
        error_message: Optional[str] = None,
    ) -> int:
        try:
            with get_db_session(self._config) as session:
                entry = ExecutionLogRepository(session).create(
                    job_id=job_id,
                    user_id=user_id,
                    status=status,
                    response_time=response_time_ms,
                    error_message=error_message,
                )
                return entry.id
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to append outcome for job {job_id}",
                details={"reason": str(e)},
            ) from e

    # Job management used by the CLI

    def create_job(
        self,
        user_id: int,
        name: str,
        url: str,
        schedule: str,
        enabled: bool = True,
    ) -> Job:
        try:
            with get_db_session(self._config) as session:
                db_job = JobRepository(session).create(
                    user_id=user_id, name=name, url=url, schedule=schedule, enabled=enabled
                )
                logger.info(f"Created job {db_job.id} ({schedule}) for user {user_id}")
                return _to_job(db_job)
        except SQLAlchemyError as e:
            raise StorageError("Failed to create job", details={"reason": str(e)}) from e

    def get_job(self, job_id: int, user_id: Optional[int] = None) -> Job:
        try:
            with get_db_session(self._config) as session:
                db_job = JobRepository(session).get_by_id(job_id, user_id)
                if db_job is None:
                    raise NotFoundError(f"Job not found: {job_id}")
                return _to_job(db_job)
        except SQLAlchemyError as e:
            raise StorageError("Failed to read job", details={"reason": str(e)}) from e

    def list_jobs(self, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        try:
            with get_db_session(self._config) as session:
                return JobRepository(session).get_for_user_with_stats(user_id)
        except SQLAlchemyError as e:
            raise StorageError("Failed to list jobs", details={"reason": str(e)}) from e

    def set_enabled(self, job_id: int, enabled: Optional[bool] = None, user_id: Optional[int] = None) -> Job:
        """Set a job's enabled flag, or flip it when ``enabled`` is None."""
        try:
            with get_db_session(self._config) as session:
                repo = JobRepository(session)
                if enabled is None:
                    db_job = repo.toggle(job_id, user_id)
                else:
                    db_job = repo.update(job_id, user_id, enabled=enabled)
                if db_job is None:
                    raise NotFoundError(f"Job not found: {job_id}")
                return _to_job(db_job)
        except SQLAlchemyError as e:
            raise StorageError("Failed to update job", details={"reason": str(e)}) from e

    def update_job(self, job_id: int, user_id: Optional[int] = None, **fields: Any) -> Job:
        try:
            with get_db_session(self._config) as session:
                db_job = JobRepository(session).update(job_id, user_id, **fields)
                if db_job is None:
                    raise NotFoundError(f"Job not found: {job_id}")
                return _to_job(db_job)
        except SQLAlchemyError as e:
            raise StorageError("Failed to update job", details={"reason": str(e)}) from e

    def delete_job(self, job_id: int, user_id: Optional[int] = None) -> None:
        try:
            with get_db_session(self._config) as session:
                if not JobRepository(session).delete(job_id, user_id):
                    raise NotFoundError(f"Job not found: {job_id}")
            logger.info(f"Deleted job {job_id}")
        except SQLAlchemyError as e:
            raise StorageError("Failed to delete job", details={"reason": str(e)}) from e

    def get_logs(self, job_id: int, user_id: Optional[int] = None, limit: int = 100) -> List[Dict[str, Any]]:
        try:
            with get_db_session(self._config) as session:
                entries = ExecutionLogRepository(session).get_for_job(job_id, user_id, limit)
                return [entry.to_dict() for entry in entries]
        except SQLAlchemyError as e:
            raise StorageError("Failed to read execution log", details={"reason": str(e)}) from e

    def count_logs(self, job_id: int) -> int:
        try:
            with get_db_session(self._config) as session:
                return ExecutionLogRepository(session).count_for_job(job_id)
        except SQLAlchemyError as e:
            raise StorageError("Failed to count execution log", details={"reason": str(e)}) from e

    def prune_logs(self, days: int) -> int:
        """Delete log entries older than ``days`` days."""
        cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=days)
        try:
            with get_db_session(self._config) as session:
                deleted = ExecutionLogRepository(session).delete_older_than(cutoff)
            logger.info(f"Pruned {deleted} execution records older than {days} days")
            return deleted
        except SQLAlchemyError as e:
            raise StorageError("Failed to prune execution log", details={"reason": str(e)}) from e
