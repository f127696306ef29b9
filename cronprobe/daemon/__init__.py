"""Worker process: lifecycle, signal handling and PID tracking."""

from cronprobe.daemon.pid import PIDFile
from cronprobe.daemon.service import (
    Worker,
    daemonize,
    run_worker,
)

__all__ = [
    "PIDFile",
    "Worker",
    "daemonize",
    "run_worker",
]
