"""Database repositories for cronprobe.

Provides data access for job definitions and the execution log.
Repositories work on a caller-owned session; they commit after writes
so the row id is available to the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from cronprobe.database.models import CronJob, CronLog


class JobRepository:
    """
    Repository for job definitions.

    Provides CRUD operations plus the enabled-job query the
    worker reconciles against.
    """

    # Columns a caller may change through update()
    UPDATABLE_FIELDS = ("name", "url", "schedule", "enabled")

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(
        self,
        user_id: int,
        name: str,
        url: str,
        schedule: str,
        enabled: bool = True,
    ) -> CronJob:
        """
        Create a new job.

        Args:
            user_id: Owner reference
            name: Human-readable job name
            url: URL to probe
            schedule: Cron expression for scheduling
            enabled: Whether the job starts enabled

        Returns:
            Created CronJob instance
        """
        db_job = CronJob(
            user_id=user_id,
            name=name,
            url=url,
            schedule=schedule,
            enabled=enabled,
        )
        self.session.add(db_job)
        self.session.commit()
        self.session.refresh(db_job)
        return db_job

    def get_by_id(self, job_id: int, user_id: Optional[int] = None) -> Optional[CronJob]:
        """
        Get a job by its id, optionally scoped to an owner.

        Returns:
            CronJob if found, None otherwise
        """
        query = self.session.query(CronJob).filter(CronJob.id == job_id)
        if user_id is not None:
            query = query.filter(CronJob.user_id == user_id)
        return query.first()

    def get_enabled(self) -> List[CronJob]:
        """
        Get all enabled jobs.

        Returns:
            List of enabled jobs ordered by id
        """
        return self.session.query(CronJob).filter(
            CronJob.enabled.is_(True)
        ).order_by(CronJob.id).all()

    def get_for_user_with_stats(self, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List jobs together with their execution count and last status.

        Args:
            user_id: Restrict to one owner (all jobs if None)

        Returns:
            Job dictionaries with ``execution_count`` and ``last_status`` keys
        """
        execution_count = (
            select(func.count(CronLog.id))
            .where(CronLog.job_id == CronJob.id)
            .correlate(CronJob)
            .scalar_subquery()
        )
        last_status = (
            select(CronLog.status)
            .where(CronLog.job_id == CronJob.id)
            .order_by(desc(CronLog.created_at), desc(CronLog.id))
            .limit(1)
            .correlate(CronJob)
            .scalar_subquery()
        )

        query = self.session.query(CronJob, execution_count, last_status)
        if user_id is not None:
            query = query.filter(CronJob.user_id == user_id)
        query = query.order_by(desc(CronJob.created_at), desc(CronJob.id))

        rows = []
        for db_job, count, status in query.all():
            row = db_job.to_dict()
            row["execution_count"] = count or 0
            row["last_status"] = status
            rows.append(row)
        return rows

    def update(self, job_id: int, user_id: Optional[int] = None, **kwargs: Any) -> Optional[CronJob]:
        """
        Update a job.

        Args:
            job_id: Id of the job to update
            user_id: Owner the job must belong to (optional)
            **kwargs: Attributes to update (see UPDATABLE_FIELDS)

        Returns:
            Updated CronJob or None if not found

        Raises:
            ValueError: If an unknown field is passed
        """
        unknown = set(kwargs) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        db_job = self.get_by_id(job_id, user_id)
        if not db_job:
            return None

        for key, value in kwargs.items():
            setattr(db_job, key, value)

        self.session.commit()
        self.session.refresh(db_job)
        return db_job

    def toggle(self, job_id: int, user_id: Optional[int] = None) -> Optional[CronJob]:
        """Flip a job's enabled flag."""
        db_job = self.get_by_id(job_id, user_id)
        if not db_job:
            return None
        return self.update(job_id, user_id, enabled=not db_job.enabled)

    def delete(self, job_id: int, user_id: Optional[int] = None) -> bool:
        """
        Delete a job and, through the cascade, its logs.

        Returns:
            True if deleted, False if not found
        """
        db_job = self.get_by_id(job_id, user_id)
        if not db_job:
            return False

        self.session.delete(db_job)
        self.session.commit()
        return True


class ExecutionLogRepository:
    """
    Repository for the append-only execution log.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(
        self,
        job_id: int,
        user_id: int,
        status: int,
        response_time: int,
        error_message: Optional[str] = None,
    ) -> CronLog:
        """
        Record one execution.

        Args:
            job_id: Id of the job
            user_id: Owner of the job
            status: HTTP status code or 0 for transport failure
            response_time: Elapsed milliseconds
            error_message: Failure code, if any

        Returns:
            Created CronLog instance
        """
        entry = CronLog(
            job_id=job_id,
            user_id=user_id,
            status=status,
            response_time=response_time,
            error_message=error_message,
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def get_for_job(
        self,
        job_id: int,
        user_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[CronLog]:
        """
        Get a job's execution log, newest first.

        Args:
            job_id: Id of the job
            user_id: Owner the log entries must belong to (optional)
            limit: Maximum number of results
        """
        query = self.session.query(CronLog).filter(CronLog.job_id == job_id)
        if user_id is not None:
            query = query.filter(CronLog.user_id == user_id)
        return query.order_by(desc(CronLog.created_at), desc(CronLog.id)).limit(limit).all()

    def count_for_job(self, job_id: int) -> int:
        """Number of executions recorded for a job."""
        return self.session.query(CronLog).filter(CronLog.job_id == job_id).count()

    def delete_older_than(self, before: datetime) -> int:
        """
        Delete log entries created before a given time.

        Returns:
            Number of entries deleted
        """
        result = self.session.query(CronLog).filter(
            CronLog.created_at < before
        ).delete()
        self.session.commit()
        return result
