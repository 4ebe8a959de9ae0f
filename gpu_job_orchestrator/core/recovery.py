"""
RecoveryManager: re-arms in-flight jobs after a process restart.
"""

import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from ..models.job import JobState
from ..utils.logger import get_logger, set_log_context

if TYPE_CHECKING:
    from .orchestrator import LifecycleOrchestrator


@dataclass
class RecoveryReport:
    """Outcome of a resume() call."""
    resumed_provisioning: List[str] = field(default_factory=list)
    resumed_running: List[str] = field(default_factory=list)
    stranded_pending: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def resumed(self) -> int:
        return len(self.resumed_provisioning) + len(self.resumed_running)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resumed_provisioning": list(self.resumed_provisioning),
            "resumed_running": list(self.resumed_running),
            "stranded_pending": list(self.stranded_pending),
            "skipped": self.skipped
        }


class RecoveryManager:
    """
    Scans the job store for non-terminal jobs and re-arms their timers.

    - provisioning: re-armed with the full provisioning delay, as if freshly entered
    - running: re-armed after a random jitter in [0, jitter] seconds so a
      restart does not make every running job tick at once
    - pending: reported as stranded and left alone
    """

    def __init__(self, orchestrator: "LifecycleOrchestrator", jitter: float = 5.0,
                 rng: Optional[random.Random] = None):
        self.orchestrator = orchestrator
        self.jitter = jitter
        self.rng = rng or random.Random()
        self._resumed = False

        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="recovery")

    @property
    def has_resumed(self) -> bool:
        return self._resumed

    async def resume(self) -> RecoveryReport:
        """
        Re-arm timers for jobs left in flight. Only the first call does work.
        """
        if self._resumed:
            self.logger.warning("Recovery already ran, ignoring repeated resume()")
            return RecoveryReport(skipped=True)

        jobs = await self.orchestrator.store.find_by_states(
            [JobState.PENDING, JobState.PROVISIONING, JobState.RUNNING]
        )
        self._resumed = True

        report = RecoveryReport()
        for job in jobs:
            if job.state == JobState.PROVISIONING:
                self.orchestrator.arm_timer(job.job_id, JobState.PROVISIONING)
                report.resumed_provisioning.append(job.job_id)
            elif job.state == JobState.RUNNING:
                delay = self.rng.uniform(0, self.jitter) if self.jitter > 0 else 0.0
                self.orchestrator.arm_timer(job.job_id, JobState.RUNNING, delay=delay)
                report.resumed_running.append(job.job_id)
            else:
                report.stranded_pending.append(job.job_id)

        self.logger.info(f"Resuming {report.resumed} active jobs", extra={
            "provisioning": len(report.resumed_provisioning),
            "running": len(report.resumed_running),
            "stranded_pending": len(report.stranded_pending)
        })
        if report.stranded_pending:
            self.logger.warning("Pending jobs found without an instance; they need resubmission", extra={
                "job_ids": report.stranded_pending
            })
        return report
