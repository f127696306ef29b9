"""Process exit codes returned by cronprobe commands.

0 and 1 keep their usual meaning and 130 mirrors a shell's Ctrl+C exit;
the codes in between tell scripts which subsystem failed.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit status of a cronprobe command."""

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    STORAGE_ERROR = 3  # database unreachable or a write failed
    NETWORK_ERROR = 4
    INVALID_ARGUMENT = 5  # bad cron expression, URL or option value
    NOT_FOUND = 6  # no job with the given id

    CANCELLED = 130  # 128 + SIGINT

    @classmethod
    def get_name(cls, code: int) -> str:
        """Name of ``code``, or ``UNKNOWN(<code>)`` for foreign values."""
        try:
            return cls(code).name
        except ValueError:
            return f"UNKNOWN({code})"
