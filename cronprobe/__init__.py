"""cronprobe - scheduled HTTP health checks with recorded outcomes."""

__app_name__ = "cronprobe"
__version__ = "0.1.0"
