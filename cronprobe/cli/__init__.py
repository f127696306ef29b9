"""CLI command modules for cronprobe.

Command groups are registered on the root app in ``cronprobe.main``.
"""
