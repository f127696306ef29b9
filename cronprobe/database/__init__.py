"""Persistence for job definitions and execution records."""

from cronprobe.database.store import JobStore, SQLJobStore

__all__ = [
    "JobStore",
    "SQLJobStore",
]
