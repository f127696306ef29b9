"""PID file tracking the running worker process."""

import os
from pathlib import Path
from typing import Optional


class PIDFile:
    """Worker PID file.

    Records the worker's process id so ``cronprobe run status`` and
    ``cronprobe run stop`` can find it. A file whose process is gone is
    treated as stale.

    Example:
        pid_file = PIDFile(config.data_dir / "cronprobe.pid")
        if pid_file.running_pid() is None:
            with pid_file:
                ...
    """

    def __init__(self, path: Path):
        self.path = path

    def __enter__(self) -> "PIDFile":
        self.write()
        return self

    def __exit__(self, *exc_info) -> None:
        self.remove()

    def write(self, pid: Optional[int] = None) -> None:
        """Write ``pid`` (default: this process) to the file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(pid if pid is not None else os.getpid()))

    def remove(self) -> None:
        """Delete the file if it exists."""
        self.path.unlink(missing_ok=True)

    def read(self) -> Optional[int]:
        """PID stored in the file, or None if missing or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except (FileNotFoundError, ValueError, OSError):
            return None

    def running_pid(self) -> Optional[int]:
        """PID of the live worker, or None if none is running."""
        pid = self.read()
        if pid is None or not _process_exists(pid):
            return None
        return pid

    def is_running(self) -> bool:
        return self.running_pid() is not None

    def clear_if_stale(self) -> bool:
        """Remove the file if its process is gone.

        Returns:
            True if a stale file was removed
        """
        if self.read() is not None and not self.is_running():
            self.remove()
            return True
        return False


def _process_exists(pid: int) -> bool:
    try:
        # Signal 0 only checks that the process exists
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    except OSError:
        return False
    return True
