"""
Utilities package for GPU Job Orchestrator

Contains the PostgreSQL job store and logging helpers.
"""

from .database import DatabaseManager
from .logger import setup_logger, get_logger, set_log_context, clear_log_context, LoggerContext

__all__ = [
    "DatabaseManager",
    "setup_logger",
    "get_logger",
    "set_log_context",
    "clear_log_context",
    "LoggerContext"
]
