"""
Lifecycle event model published on the event bus.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .job import Job, JobState

BROADCAST_CHANNEL = "jobs"


def job_channel(job_id: str) -> str:
    """Name of the per-job logical channel."""
    return f"job-{job_id}"


@dataclass(frozen=True)
class LifecycleEvent:
    """A single state change of a job."""

    job_id: str
    status: JobState
    instance_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def for_job(cls, job: Job) -> "LifecycleEvent":
        return cls(job_id=job.job_id, status=job.state, instance_id=job.instance_id)

    @property
    def channel(self) -> str:
        return job_channel(self.job_id)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form consumed by the presentation layer."""
        payload = {"jobId": self.job_id, "status": self.status.value}
        if self.instance_id is not None:
            payload["instanceId"] = self.instance_id
        return payload
