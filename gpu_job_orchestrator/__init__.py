"""
GPU Job Orchestrator

Runs compute jobs on remote GPU instances: provisions an instance for each
submitted job, drives the job through its lifecycle on per-job timers,
publishes every state change to subscribers and resumes in-flight jobs after
a restart.

Usage:
    from gpu_job_orchestrator import Job, ResourceRequest, create_orchestrator, OrchestratorConfig

    orchestrator = create_orchestrator(OrchestratorConfig(running_delay=30))
    await orchestrator.start()

    job = Job(resource=ResourceRequest("A100", {"gpu_count": 1}))
    instance_id = await orchestrator.submit(job)

    async with orchestrator.subscribe(job.job_id) as events:
        async for event in events:
            print(event.to_dict())
"""

__version__ = "1.0.0"
__author__ = "GPU Job Orchestrator Team"
__license__ = "MIT"

import random
from typing import Optional

# Core orchestrator
from .core.orchestrator import LifecycleOrchestrator
from .core.recovery import RecoveryManager, RecoveryReport
from .core.progression import ProgressionDriver, TimedProgressionDriver, ProviderPollingDriver
from .core.config import OrchestratorConfig, AllocationFailurePolicy

# Data models
from .models.job import Job, JobState, ResourceRequest
from .models.events import LifecycleEvent

# Services
from .services.job_store import JobStore, InMemoryJobStore
from .services.event_bus import EventBus, Subscription

# Providers
from .providers import ProvisioningProvider, ReferenceProvider, RiftCliProvider, ResilientProvider, create_provider

# Utilities
from .utils.database import DatabaseManager
from .utils.logger import setup_logger, get_logger

# Exceptions
from .core.exceptions import (
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
    # Core
    "LifecycleOrchestrator",
    "RecoveryManager",
    "RecoveryReport",
    "ProgressionDriver",
    "TimedProgressionDriver",
    "ProviderPollingDriver",
    "OrchestratorConfig",
    "AllocationFailurePolicy",
    "create_orchestrator",

    # Models
    "Job",
    "JobState",
    "ResourceRequest",
    "LifecycleEvent",

    # Services
    "JobStore",
    "InMemoryJobStore",
    "EventBus",
    "Subscription",

    # Providers
    "ProvisioningProvider",
    "ReferenceProvider",
    "RiftCliProvider",
    "ResilientProvider",
    "create_provider",

    # Utilities
    "DatabaseManager",
    "setup_logger",
    "get_logger",

    # Exceptions
    "JobOrchestratorError",
    "JobNotFoundError",
    "JobSubmissionError",
    "InvalidTransitionError",
    "ProviderError",
    "TransientProviderError",
    "ConfigurationError",
    "DatabaseError",
    "StoreWriteError",
    "OrchestratorError",

    # Package metadata
    "__version__",
    "__author__",
    "__license__"
]

# Package-level configuration
import logging
logging.getLogger(__name__).addHandler(logging.NullHandler())


def create_orchestrator(config: Optional[OrchestratorConfig] = None) -> LifecycleOrchestrator:
    """
    Build an orchestrator from a configuration.

    Uses PostgreSQL when `config.database_url` is set and the in-memory store
    otherwise; the provider is wrapped with retry and circuit breaking.

    Example:
        orchestrator = create_orchestrator(OrchestratorConfig.from_env())
        await orchestrator.start()
    """
    config = config or OrchestratorConfig()
    rng = random.Random(config.random_seed)

    if config.database_url:
        store = DatabaseManager(config.database_url)
    else:
        store = InMemoryJobStore()

    provider = create_provider(config.provider, config.resilience, rng=rng)
    return LifecycleOrchestrator(store, provider, config=config, rng=rng)
