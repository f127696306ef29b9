"""
cronprobe configuration management.

Handles loading and validating configuration from various sources:
- Default values
- Configuration file (TOML)
- Environment variables
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, List

# Try to import tomllib (Python 3.11+) or tomli as fallback
try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib  # type: ignore
    except ImportError:
        tomllib = None  # type: ignore


DEFAULT_CONFIG_DIR = Path.home() / ".config" / "cronprobe"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "cronprobe"

_TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class WorkerConfig:
    """Configuration for the scheduling worker."""

    # Seconds between two reconcile ticks
    reconcile_interval: float = 60.0

    # Timezone every cron trigger fires in
    timezone: str = "UTC"

    # Seconds a fire may run late before APScheduler drops it as missed
    misfire_grace_time: int = 30

    # Skip a fire while the same job still has an execution in flight
    single_flight: bool = False

    # Recreate a timer when its job's schedule or URL changed in the store
    refresh_on_change: bool = False

    # Seconds stop() waits for in-flight executions (None: probe timeout + 5)
    drain_timeout: Optional[float] = None


@dataclass
class ProbeConfig:
    """Configuration for outgoing health-check requests."""

    timeout: float = 30.0
    follow_redirects: bool = True
    user_agent: str = "cronprobe/0.1"


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class CronprobeConfig:
    """Main configuration container for cronprobe."""

    # Paths
    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    # Sub-configurations
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database
    database_url: str = ""

    def __post_init__(self):
        """Initialize derived values."""
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir}/cronprobe.db"

    @property
    def drain_timeout(self) -> float:
        """Seconds the worker waits for in-flight probes on shutdown."""
        if self.worker.drain_timeout is not None:
            return self.worker.drain_timeout
        return self.probe.timeout + 5.0


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "CRONPROBE_"
) -> CronprobeConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/cronprobe/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = CronprobeConfig()

    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    if config_path.exists() and tomllib is not None:
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)

    return config


def _load_from_file(path: Path, config: CronprobeConfig) -> CronprobeConfig:
    """Load configuration from a TOML file."""
    if tomllib is None:
        return config

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        from cronprobe.cli.error_handler import ConfigurationError
        raise ConfigurationError(
            f"Failed to load config from {path}",
            details={"reason": str(e)},
        ) from e

    for section in ("worker", "probe", "logging"):
        section_obj = getattr(config, section)
        for key, value in data.get(section, {}).items():
            if hasattr(section_obj, key):
                setattr(section_obj, key, value)

    if isinstance(config.logging.file, str):
        config.logging.file = Path(config.logging.file)

    # Top-level settings
    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"])
        if "database_url" not in data:
            config.database_url = f"sqlite:///{config.data_dir}/cronprobe.db"
    if "database_url" in data:
        config.database_url = data["database_url"]

    return config


def _load_from_env(config: CronprobeConfig, prefix: str) -> CronprobeConfig:
    """Load configuration from environment variables."""

    # Worker settings
    if env_val := os.environ.get(f"{prefix}RECONCILE_INTERVAL"):
        config.worker.reconcile_interval = float(env_val)
    if env_val := os.environ.get(f"{prefix}SINGLE_FLIGHT"):
        config.worker.single_flight = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}REFRESH_ON_CHANGE"):
        config.worker.refresh_on_change = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}DRAIN_TIMEOUT"):
        config.worker.drain_timeout = float(env_val)

    # Probe settings
    if env_val := os.environ.get(f"{prefix}PROBE_TIMEOUT"):
        config.probe.timeout = float(env_val)
    if env_val := os.environ.get(f"{prefix}USER_AGENT"):
        config.probe.user_agent = env_val

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(env_val)
        if not os.environ.get(f"{prefix}DATABASE_URL"):
            config.database_url = f"sqlite:///{config.data_dir}/cronprobe.db"
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    return config


def ensure_directories(config: CronprobeConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance (lazy-loaded)
_global_config: Optional[CronprobeConfig] = None


def get_config() -> CronprobeConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: CronprobeConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None


def validate_url(url: str) -> bool:
    """Validate a URL format."""
    url_pattern = r"^https?://[^\s/$.?#].[^\s]*$"
    return bool(re.match(url_pattern, url))


def validate_config(config: Optional[CronprobeConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    if config.worker.reconcile_interval <= 0:
        errors.append(ValidationError(
            field="worker.reconcile_interval",
            message="Reconcile interval must be positive.",
            severity="error"
        ))
    elif config.worker.reconcile_interval > 60:
        errors.append(ValidationError(
            field="worker.reconcile_interval",
            message="Intervals above 60s delay pickup of new or disabled jobs.",
            severity="warning"
        ))

    if config.probe.timeout <= 0:
        errors.append(ValidationError(
            field="probe.timeout",
            message="Probe timeout must be positive.",
            severity="error"
        ))

    if config.worker.drain_timeout is not None and config.worker.drain_timeout < 0:
        errors.append(ValidationError(
            field="worker.drain_timeout",
            message="Drain timeout cannot be negative.",
            severity="error"
        ))

    if config.worker.timezone != "UTC":
        errors.append(ValidationError(
            field="worker.timezone",
            message="Schedules are documented as UTC; other zones shift every job.",
            severity="warning"
        ))

    if not config.database_url.startswith(("sqlite://", "postgresql", "mysql")):
        errors.append(ValidationError(
            field="database_url",
            message=f"Unsupported database URL: {config.database_url}",
            severity="error"
        ))

    if not config.data_dir.exists():
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory does not exist: {config.data_dir}",
            severity="warning"
        ))
    else:
        try:
            test_file = config.data_dir / ".write_test"
            test_file.touch()
            test_file.unlink()
        except (PermissionError, OSError):
            errors.append(ValidationError(
                field="data_dir",
                message=f"Data directory is not writable: {config.data_dir}",
                severity="error"
            ))

    return errors


def config_to_dict(config: CronprobeConfig) -> dict[str, Any]:
    """Convert configuration to a JSON-friendly dictionary."""
    return {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "database_url": config.database_url,
        "worker": {
            "reconcile_interval": config.worker.reconcile_interval,
            "timezone": config.worker.timezone,
            "misfire_grace_time": config.worker.misfire_grace_time,
            "single_flight": config.worker.single_flight,
            "refresh_on_change": config.worker.refresh_on_change,
            "drain_timeout": config.drain_timeout,
        },
        "probe": {
            "timeout": config.probe.timeout,
            "follow_redirects": config.probe.follow_redirects,
            "user_agent": config.probe.user_agent,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": str(config.logging.file) if config.logging.file else None,
        },
    }


def export_config_json(config: CronprobeConfig) -> str:
    """Export configuration as JSON string."""
    return json.dumps(config_to_dict(config), indent=2)
