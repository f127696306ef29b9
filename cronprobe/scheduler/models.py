"""Value types shared by the scheduling engine.

Jobs are read from the store as immutable snapshots; the engine never
observes a later edit except by re-reading at the next reconcile tick.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

# Status recorded when the probe never got an HTTP response
TRANSPORT_FAILURE_STATUS = 0


@dataclass(frozen=True)
class Job:
    """Snapshot of one health-check job definition.

    Attributes:
        id: Store identifier, stable for the job's lifetime
        name: Human-readable job name
        url: URL probed with a GET request
        schedule: 5-field cron expression (minute granularity, UTC)
        enabled: Whether the job should be scheduled
        user_id: Owner reference
    """

    id: int
    name: str
    url: str
    schedule: str
    enabled: bool = True
    user_id: int = 0

    @property
    def fingerprint(self) -> str:
        """Hash of the fields a live timer depends on."""
        digest = hashlib.sha256(f"{self.schedule}\n{self.url}".encode("utf-8"))
        return digest.hexdigest()

    def describe(self) -> str:
        return f'job {self.id} "{self.name}" -> {self.url} ({self.schedule})'


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one probe, appended once to the store.

    Attributes:
        job_id: Job the probe ran for
        user_id: Owner of the job
        status: HTTP status code, or 0 for a transport failure
        response_time_ms: Wall-clock time from dispatch, in milliseconds
        error_message: Failure code when status is 0
    """

    job_id: int
    user_id: int
    status: int
    response_time_ms: int
    error_message: Optional[str] = None

    @property
    def transport_failed(self) -> bool:
        return self.status == TRANSPORT_FAILURE_STATUS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "user_id": self.user_id,
            "status": self.status,
            "response_time_ms": self.response_time_ms,
            "error_message": self.error_message,
        }


class WorkerState(Enum):
    """Lifecycle state of the worker."""

    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
