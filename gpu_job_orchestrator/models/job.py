"""
Job-related data models for GPU Job Orchestrator

Defines the job record, its requested resource and the fixed lifecycle
state graph the orchestrator drives it through.
"""

from enum import Enum
from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from uuid import uuid4


class JobState(Enum):
    """Job lifecycle state enumeration."""
    PENDING = "pending"
    PROVISIONING = "provisioning"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


# States with an armed progression timer
ACTIVE_STATES = frozenset({JobState.PROVISIONING, JobState.RUNNING})

TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.STOPPED})


@dataclass(frozen=True)
class ResourceRequest:
    """Requested accelerator: resource type plus provider-specific requirements."""

    resource_type: str
    requirements: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "requirements": dict(self.requirements)
        }


@dataclass
class Job:
    """Core job data model."""

    resource: ResourceRequest

    # Primary identification
    job_id: str = field(default_factory=lambda: uuid4().hex)

    # Ownership and display
    user_id: str = "default-user"
    model_type: Optional[str] = None

    # Status tracking
    state: JobState = JobState.PENDING
    instance_id: Optional[str] = None

    # Metadata
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    # Diagnostic trail, append-only
    audit_log: List[str] = field(default_factory=list)

    @property
    def resource_type(self) -> str:
        return self.resource.resource_type

    @property
    def requirements(self) -> Dict[str, Any]:
        return self.resource.requirements

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "user_id": self.user_id,
            "model_type": self.model_type,
            "resource_type": self.resource.resource_type,
            "requirements": dict(self.resource.requirements),
            "state": self.state.value,
            "instance_id": self.instance_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "audit_log": list(self.audit_log)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create job from dictionary (or database row)."""
        data = dict(data)

        for field_name in ["created_at", "updated_at"]:
            if isinstance(data.get(field_name), str):
                data[field_name] = datetime.fromisoformat(data[field_name])

        resource = ResourceRequest(
            resource_type=data.pop("resource_type"),
            requirements=dict(data.pop("requirements", None) or {})
        )
        data["state"] = JobState(data.get("state", JobState.PENDING.value))
        data["audit_log"] = list(data.get("audit_log") or [])

        known = {
            "job_id", "user_id", "model_type", "state", "instance_id",
            "created_at", "updated_at", "audit_log"
        }
        return cls(resource=resource, **{k: v for k, v in data.items() if k in known})

    def is_terminal(self) -> bool:
        """Check if job has reached a terminal state."""
        return self.state in TERMINAL_STATES

    def can_be_stopped(self) -> bool:
        """Check if job can be stopped."""
        return self.state in ACTIVE_STATES

    def record(self, entry: str, at: Optional[datetime] = None):
        """Append an entry to the audit log."""
        self.audit_log.append(format_audit_entry(entry, at))

    def get_age(self, now: Optional[datetime] = None) -> float:
        """Seconds since the job was created."""
        return ((now or datetime.utcnow()) - self.created_at).total_seconds()


def format_audit_entry(entry: str, at: Optional[datetime] = None) -> str:
    """Prefix an audit entry with its UTC timestamp."""
    return f"{(at or datetime.utcnow()).isoformat()} {entry}"


# Job state transition rules
JOB_STATE_TRANSITIONS = {
    JobState.PENDING: [JobState.PROVISIONING, JobState.FAILED],
    JobState.PROVISIONING: [JobState.RUNNING, JobState.STOPPED],
    JobState.RUNNING: [JobState.COMPLETED, JobState.FAILED, JobState.STOPPED],
    JobState.COMPLETED: [],  # Terminal state
    JobState.FAILED: [],  # Terminal state
    JobState.STOPPED: []  # Terminal state
}


def can_transition_to(current_state: JobState, target_state: JobState) -> bool:
    """Check if a job can transition from current state to target state."""
    return target_state in JOB_STATE_TRANSITIONS.get(current_state, [])


def get_valid_transitions(current_state: JobState) -> List[JobState]:
    """Get list of valid state transitions from current state."""
    return list(JOB_STATE_TRANSITIONS.get(current_state, []))
