"""
Logging module for the supervisor.
This module provides operation-tagged console logging and a structured
JSON lines log file.
"""

from .setup import setup_logging, shutdown_logging, get_logger

__all__ = ["setup_logging", "shutdown_logging", "get_logger"]
