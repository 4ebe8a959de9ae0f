"""
Data models for GPU Job Orchestrator

This module contains the job record, its lifecycle state graph and the
lifecycle events published when a job changes state.
"""

# Job models
from .job import (
    Job,
    JobState,
    ResourceRequest,
    ACTIVE_STATES,
    TERMINAL_STATES,
    JOB_STATE_TRANSITIONS,
    can_transition_to,
    get_valid_transitions,
    format_audit_entry
)

# Event models
from .events import (
    LifecycleEvent,
    BROADCAST_CHANNEL,
    job_channel
)

__all__ = [
    # Job models
    "Job",
    "JobState",
    "ResourceRequest",
    "ACTIVE_STATES",
    "TERMINAL_STATES",
    "JOB_STATE_TRANSITIONS",
    "can_transition_to",
    "get_valid_transitions",
    "format_audit_entry",

    # Event models
    "LifecycleEvent",
    "BROADCAST_CHANNEL",
    "job_channel"
]
