"""
Services package for GPU Job Orchestrator

Contains the job store and the lifecycle event bus.
"""

from .job_store import JobStore, InMemoryJobStore
from .event_bus import EventBus, Subscription

__all__ = [
    "JobStore",
    "InMemoryJobStore",
    "EventBus",
    "Subscription"
]
