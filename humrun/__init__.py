"""Supervision of local development processes: logs, error detection, file watching and resource tracking."""

__version__ = "0.1.0"