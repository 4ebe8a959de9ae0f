"""
Core package for GPU Job Orchestrator

Contains the lifecycle orchestrator, its timers, progression drivers,
recovery and configuration.
"""

from .orchestrator import LifecycleOrchestrator
from .recovery import RecoveryManager, RecoveryReport
from .progression import ProgressionDriver, TimedProgressionDriver, ProviderPollingDriver
from .timers import TimerRegistry, KeyedLock
from .config import OrchestratorConfig, AllocationFailurePolicy
from .exceptions import (
    JobOrchestratorError,
    JobNotFoundError,
    JobSubmissionError,
    InvalidTransitionError,
    ProviderError,
    TransientProviderError,
    ConfigurationError,
    DatabaseError,
    StoreWriteError,
    OrchestratorError
)

__all__ = [
    "LifecycleOrchestrator",
    "RecoveryManager",
    "RecoveryReport",
    "ProgressionDriver",
    "TimedProgressionDriver",
    "ProviderPollingDriver",
    "TimerRegistry",
    "KeyedLock",
    "OrchestratorConfig",
    "AllocationFailurePolicy",
    "JobOrchestratorError",
    "JobNotFoundError",
    "JobSubmissionError",
    "InvalidTransitionError",
    "ProviderError",
    "TransientProviderError",
    "ConfigurationError",
    "DatabaseError",
    "StoreWriteError",
    "OrchestratorError"
]
