"""
CLI package for GPU Job Orchestrator

Provides command-line interface for submitting and stopping jobs, querying
the GPU catalog and running the orchestrator.
"""

from .main import main, cli

__all__ = ["main", "cli"]
