"""
Progression drivers.

A driver decides how long a job waits in an active stage and what that stage
resolves to when its timer fires. The orchestrator owns the state machine; the
driver only stands in for the completion signal, so fixed delays can later be
swapped for provider polling or webhooks without changing the state graph.
"""

import random
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..models.job import Job, JobState
from ..providers.base import ProvisioningProvider
from ..core.exceptions import ProviderError
from ..utils.logger import get_logger


class ProgressionDriver(ABC):
    """Interface between the lifecycle state machine and a completion signal."""

    @abstractmethod
    def delay_for(self, state: JobState) -> float:
        """Seconds to wait in `state` before the next tick."""

    @abstractmethod
    async def resolve(self, job: Job) -> Optional[JobState]:
        """
        Decide the state a ticking job moves to.

        Returns:
            The next state, or None to stay in the current stage and tick again
        """

    def pop_hold_reason(self, job_id: str) -> Optional[str]:
        """Why the last resolve kept the job in place, if worth recording."""
        return None


class TimedProgressionDriver(ProgressionDriver):
    """
    Fixed stage delays with a probabilistic outcome for running jobs.

    `success_ratio` is a placeholder for a real health signal: a running job
    ends `completed` with that probability and `failed` otherwise.
    """

    def __init__(self, provisioning_delay: float = 3.0, running_delay: float = 12.0,
                 success_ratio: float = 0.8, rng: Optional[random.Random] = None):
        self.provisioning_delay = provisioning_delay
        self.running_delay = running_delay
        self.success_ratio = success_ratio
        self.rng = rng or random.Random()

    def delay_for(self, state: JobState) -> float:
        if state == JobState.PROVISIONING:
            return self.provisioning_delay
        if state == JobState.RUNNING:
            return self.running_delay
        return 0.0

    async def resolve(self, job: Job) -> Optional[JobState]:
        if job.state == JobState.PROVISIONING:
            return JobState.RUNNING
        if job.state == JobState.RUNNING:
            return JobState.COMPLETED if self.rng.random() < self.success_ratio else JobState.FAILED
        return None


class ProviderPollingDriver(ProgressionDriver):
    """
    Resolves stages from the provider's reported instance status.

    A transient status failure, or a status that does not map to a later
    stage, keeps the job where it is until the next poll.
    """

    RUNNING_STATUSES = frozenset({"running", "active", "ready"})
    COMPLETED_STATUSES = frozenset({"completed", "succeeded", "exited", "finished"})
    FAILED_STATUSES = frozenset({"failed", "error", "crashed", "terminated"})

    def __init__(self, provider: ProvisioningProvider, poll_interval: float = 5.0):
        self.provider = provider
        self.poll_interval = poll_interval
        self.logger = get_logger(__name__)
        self._held: Dict[str, str] = {}
        self._hold_reasons: Dict[str, str] = {}

    def delay_for(self, state: JobState) -> float:
        return self.poll_interval

    def pop_hold_reason(self, job_id: str) -> Optional[str]:
        return self._hold_reasons.pop(job_id, None)

    def _hold(self, job: Job, status: str) -> None:
        # Recorded once per distinct status, not on every poll
        if self._held.get(job.job_id) != status:
            self._held[job.job_id] = status
            self._hold_reasons[job.job_id] = f"instance reported {status} while provisioning"

    async def resolve(self, job: Job) -> Optional[JobState]:
        if not job.instance_id:
            return None

        try:
            snapshot = await self.provider.status(job.instance_id)
        except ProviderError as e:
            self.logger.warning("Status poll failed, will retry", extra={
                "job_id": job.job_id,
                "instance_id": job.instance_id,
                "error": str(e)
            })
            return None

        if snapshot.is_stale:
            return None

        status = snapshot.status.lower()
        target = None
        if job.state == JobState.PROVISIONING:
            if status in self.RUNNING_STATUSES:
                target = JobState.RUNNING
            elif status in self.FAILED_STATUSES:
                # No provisioning -> failed edge; stay put until the instance recovers or is stopped
                self._hold(job, status)
        elif job.state == JobState.RUNNING:
            if status in self.COMPLETED_STATUSES:
                target = JobState.COMPLETED
            elif status in self.FAILED_STATUSES:
                target = JobState.FAILED

        if target is not None:
            self._held.pop(job.job_id, None)
            self._hold_reasons.pop(job.job_id, None)
        return target
