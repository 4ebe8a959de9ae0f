"""
LifecycleOrchestrator: owns every job's state transitions.

Submitting a job provisions an instance and arms the job's timer. Each timer
tick re-reads the persisted job, applies exactly one transition from the
state graph, writes it to the job store, publishes it on the event bus and
arms the next stage until the job reaches a terminal state.
"""

import random
from typing import Dict, List, Optional, Any, Union

from ..models.job import Job, JobState, ACTIVE_STATES, can_transition_to
from ..models.events import LifecycleEvent
from ..providers.base import ProvisioningProvider, GPUAvailability, GPUPricing, GPUMetrics
from ..services.job_store import JobStore
from ..services.event_bus import EventBus, Subscription
from ..utils.logger import get_logger, set_log_context
from .config import OrchestratorConfig, AllocationFailurePolicy
from .progression import ProgressionDriver, TimedProgressionDriver
from .recovery import RecoveryManager, RecoveryReport
from .timers import TimerRegistry
from .exceptions import (
    JobOrchestratorError,
    JobNotFoundError,
    JobSubmissionError,
    InvalidTransitionError,
    ProviderError,
    TransientProviderError,
    DatabaseError,
    StoreWriteError,
    OrchestratorError
)


class LifecycleOrchestrator:
    """
    Per-job state machine driven by timers.

    Provides:
    - Job submission with instance provisioning
    - Idempotent stop requests
    - Timer-driven progression through the state graph
    - Timer recovery for in-flight jobs on start
    - Job status, listing and provider catalog queries
    """

    def __init__(
        self,
        job_store: JobStore,
        provider: ProvisioningProvider,
        event_bus: Optional[EventBus] = None,
        driver: Optional[ProgressionDriver] = None,
        config: Optional[OrchestratorConfig] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the LifecycleOrchestrator.

        Args:
            job_store: Durable job records, the source of truth for state
            provider: Provisioning provider for accelerator instances
            event_bus: Bus lifecycle events are published on
            driver: Progression driver; defaults to fixed delays from config
            config: Orchestrator configuration
            rng: Random source for outcomes and recovery jitter
        """
        self.config = config or OrchestratorConfig()
        self.store = job_store
        self.provider = provider
        self.rng = rng or random.Random(self.config.random_seed)
        self.event_bus = event_bus or EventBus(max_queue=self.config.event_queue_size)
        self.driver = driver or TimedProgressionDriver(
            provisioning_delay=self.config.provisioning_delay,
            running_delay=self.config.running_delay,
            success_ratio=self.config.success_ratio,
            rng=self.rng
        )
        self.timers = TimerRegistry()
        self.recovery = RecoveryManager(self, jitter=self.config.recovery_jitter, rng=self.rng)

        self._is_running = False

        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="orchestrator")

    async def start(self, resume: bool = True) -> Optional[RecoveryReport]:
        """
        Start the orchestrator.

        Args:
            resume: Re-arm timers of jobs left in flight by a previous process

        Returns:
            The recovery report when `resume` is set
        """
        self.logger.info("Starting LifecycleOrchestrator", extra={
            "provider": self.provider.provider_name,
            "driver": self.driver.__class__.__name__
        })

        report = None
        try:
            await self.store.initialize()
            await self.provider.initialize()

            # Recovery runs before submissions are accepted
            if resume:
                report = await self.recovery.resume()

            self._is_running = True
        except Exception as e:
            self.logger.error("Failed to start LifecycleOrchestrator", exc_info=True)
            await self.stop()
            raise OrchestratorError(f"Failed to start orchestrator: {str(e)}") from e

        self.logger.info("LifecycleOrchestrator started successfully")
        return report

    async def stop(self):
        """Cancel all timers and release the provider and the store."""
        self.logger.info("Stopping LifecycleOrchestrator", extra={"armed_timers": len(self.timers)})
        self._is_running = False

        await self.timers.shutdown()

        for name, closer in (("provider", self.provider.shutdown), ("job_store", self.store.close)):
            try:
                await closer()
            except Exception:
                self.logger.error(f"Error stopping {name}", exc_info=True)

        self.logger.info("LifecycleOrchestrator stopped")

    def is_running(self) -> bool:
        """Check if orchestrator is running."""
        return self._is_running

    def _ensure_running(self):
        if not self._is_running:
            raise OrchestratorError("Orchestrator is not running")

    # Submission
    async def submit(self, job: Job) -> str:
        """
        Persist a new job, provision its instance and start its progression.

        Args:
            job: A new job in state `pending`

        Returns:
            Provider instance id

        Raises:
            JobSubmissionError: If the provider could not allocate an instance
            StoreWriteError: If the job could not be persisted
        """
        self._ensure_running()

        if job.state != JobState.PENDING or job.instance_id is not None:
            raise JobSubmissionError("job must be new and pending", job_id=job.job_id,
                                     resource_type=job.resource_type)

        self.logger.info("Submitting job", extra={
            "job_id": job.job_id,
            "resource_type": job.resource_type,
            "user_id": job.user_id
        })

        job.record(f"submitted requesting {job.resource_type}")
        await self.store.create(job)
        self._publish(job)

        try:
            instance_id = await self.provider.allocate(job.resource_type, dict(job.requirements))
            if not isinstance(instance_id, str) or not instance_id.strip():
                raise ProviderError("allocate", f"provider returned no instance id ({instance_id!r})",
                                    self.provider.provider_name)
        except ProviderError as e:
            await self._handle_allocation_failure(job, e)
            raise JobSubmissionError(e.message, job_id=job.job_id, resource_type=job.resource_type) from e

        async with self.timers.lock_for(job.job_id):
            try:
                updated = await self.store.update_state(
                    job.job_id, JobState.PENDING, JobState.PROVISIONING,
                    instance_id=instance_id,
                    audit_entry=f"provisioning instance {instance_id}"
                )
            except JobOrchestratorError:
                self.logger.error("Failed to record provisioning, releasing instance", exc_info=True, extra={
                    "job_id": job.job_id,
                    "instance_id": instance_id
                })
                await self._terminate_quietly(job.job_id, instance_id)
                raise

            self._publish(updated)
            self.arm_timer(updated.job_id, updated.state)

        # Reflect the durable record on the caller's object
        job.state = updated.state
        job.instance_id = updated.instance_id
        job.updated_at = updated.updated_at
        job.audit_log = list(updated.audit_log)

        self.logger.info("Job submitted successfully", extra={
            "job_id": job.job_id,
            "instance_id": instance_id
        })
        return instance_id

    async def _handle_allocation_failure(self, job: Job, error: ProviderError):
        entry = f"allocation failed: {error.message}"
        self.logger.error("Instance allocation failed", extra={
            "job_id": job.job_id,
            "resource_type": job.resource_type,
            "transient": isinstance(error, TransientProviderError),
            "error": error.message
        })

        try:
            if self.config.allocation_failure_policy == AllocationFailurePolicy.MARK_FAILED:
                updated = await self.store.update_state(job.job_id, JobState.PENDING, JobState.FAILED,
                                                        audit_entry=entry)
                self._publish(updated)
                job.state = updated.state
            else:
                await self.store.append_audit(job.job_id, entry)
        except JobOrchestratorError:
            self.logger.warning("Could not record allocation failure", exc_info=True, extra={"job_id": job.job_id})

    # Stopping
    async def request_stop(self, job_id: str) -> bool:
        """
        Stop a provisioning or running job.

        Idempotent: only the call that actually moves the job to `stopped`
        returns True. Unknown, pending and terminal jobs return False without
        touching the store.

        Args:
            job_id: ID of job to stop

        Returns:
            True if the job is now stopped because of this call
        """
        self._ensure_running()

        async with self.timers.lock_for(job_id):
            job = await self.store.get(job_id)
            if job is None:
                self.logger.info("Stop requested for unknown job", extra={"job_id": job_id})
                return False

            if not job.can_be_stopped():
                self.logger.info("Job is not stoppable", extra={"job_id": job_id, "state": job.state.value})
                return False

            self.timers.cancel(job_id)
            try:
                updated = await self.store.update_state(job_id, job.state, JobState.STOPPED,
                                                        audit_entry="stopped on request")
            except (InvalidTransitionError, JobNotFoundError):
                return False
            except StoreWriteError:
                # Nothing changed durably; keep the job progressing
                self.arm_timer(job_id, job.state)
                raise

            self._publish(updated)

        self.logger.info("Job stopped", extra={"job_id": job_id, "instance_id": updated.instance_id})
        await self._terminate_quietly(job_id, updated.instance_id)
        return True

    async def _terminate_quietly(self, job_id: str, instance_id: Optional[str]):
        if not instance_id:
            return
        try:
            await self.provider.terminate(instance_id)
        except ProviderError as e:
            self.logger.warning("Failed to terminate instance", extra={
                "job_id": job_id,
                "instance_id": instance_id,
                "error": e.message
            })

    # Progression
    def arm_timer(self, job_id: str, state: JobState, delay: Optional[float] = None):
        """
        Arm the job's timer for the stage `state`, replacing any existing timer.

        Args:
            job_id: ID of job
            state: Stage the job is in; the tick expects to find it there
            delay: Seconds until the tick; defaults to the driver's stage delay
        """
        if delay is None:
            delay = self.driver.delay_for(state)
        return self.timers.arm(job_id, delay, self.on_timer_fire, payload=state)

    async def on_timer_fire(self, job_id: str, expected_state: Optional[JobState] = None):
        """
        Advance a job by one step when its timer fires.

        Never raises for store or provider trouble: the job is left in its last
        durable state and the same stage is retried later.
        """
        async with self.timers.lock_for(job_id):
            await self._advance(job_id, expected_state)

    async def _advance(self, job_id: str, expected_state: Optional[JobState]):
        try:
            job = await self.store.get(job_id)
        except DatabaseError as e:
            self.logger.warning("Cannot read job on tick, retrying", extra={"job_id": job_id, "error": e.message})
            if expected_state in ACTIVE_STATES:
                self.arm_timer(job_id, expected_state, delay=self.config.store_retry_delay)
            return

        if job is None:
            self.timers.cancel(job_id)
            self.logger.warning("Job record vanished, dropping its timer", extra={"job_id": job_id})
            return

        if job.is_terminal():
            self.timers.cancel(job_id)
            return

        if expected_state is not None and job.state != expected_state:
            await self._discard(InvalidTransitionError(job_id, job.state, expected_state), "stale timer")
            return

        if job.state not in ACTIVE_STATES:
            await self._discard(InvalidTransitionError(job_id, job.state, JobState.PROVISIONING), "inactive job")
            return

        try:
            await self._step(job)
        except Exception:
            self.logger.error("Timer step failed, retrying", exc_info=True, extra={
                "job_id": job_id,
                "state": job.state.value
            })
            self.arm_timer(job_id, job.state, delay=self.config.store_retry_delay)

    async def _step(self, job: Job):
        job_id = job.job_id
        target = await self.driver.resolve(job)
        if target is None:
            reason = self.driver.pop_hold_reason(job_id)
            if reason:
                await self.store.append_audit(job_id, f"holding in {job.state.value}: {reason}")
            self.arm_timer(job_id, job.state)
            return

        if not can_transition_to(job.state, target):
            await self._discard(InvalidTransitionError(job_id, job.state, target), "rejected transition")
            return

        try:
            updated = await self.store.update_state(
                job_id, job.state, target,
                audit_entry=f"{job.state.value} -> {target.value}"
            )
        except InvalidTransitionError as e:
            await self._discard(e, "lost race")
            return
        except JobNotFoundError:
            self.timers.cancel(job_id)
            return
        except StoreWriteError as e:
            self.logger.error("Failed to persist transition, retrying", extra={
                "job_id": job_id,
                "from_state": job.state.value,
                "to_state": target.value,
                "error": e.message
            })
            self.arm_timer(job_id, job.state, delay=self.config.store_retry_delay)
            return

        self._publish(updated)

        if updated.state in ACTIVE_STATES:
            self.arm_timer(job_id, updated.state)
        else:
            self.logger.info(f"Job {updated.state.value}", extra={
                "job_id": job_id,
                "instance_id": updated.instance_id
            })

    async def _discard(self, error: InvalidTransitionError, reason: str):
        self.logger.debug(f"Discarding timer event ({reason})", extra=error.details)
        try:
            await self.store.append_audit(error.job_id, f"discarded timer event ({reason}): {error.message}")
        except JobOrchestratorError:
            self.logger.warning("Could not record discarded timer event", extra={"job_id": error.job_id})

    def _publish(self, job: Job):
        self.event_bus.publish(LifecycleEvent.for_job(job))

    # Queries
    def subscribe(self, job_id: Optional[str] = None) -> Subscription:
        """Subscribe to lifecycle events of one job, or of all jobs."""
        return self.event_bus.subscribe(job_id)

    async def get_job(self, job_id: str) -> Job:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get_job_status(self, job_id: str) -> Dict[str, Any]:
        """
        Get a job's record together with its instance's live status.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = await self.get_job(job_id)

        status = job.to_dict()
        status["timer_armed"] = self.timers.is_armed(job_id)
        status["instance_status"] = None

        if job.instance_id:
            try:
                snapshot = await self.provider.status(job.instance_id)
                status["instance_status"] = snapshot.to_dict()
            except ProviderError as e:
                status["instance_status_error"] = e.message

        return status

    async def list_jobs(
        self,
        user_id: Optional[str] = None,
        state: Optional[Union[JobState, str]] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """List jobs newest first, optionally filtered by user and state."""
        if isinstance(state, str):
            state = JobState(state)
        jobs = await self.store.list_jobs(user_id=user_id, state=state, limit=limit)
        return [job.to_dict() for job in jobs]

    async def list_available_gpus(self) -> List[GPUAvailability]:
        return await self.provider.list_available()

    async def get_pricing(self) -> List[GPUPricing]:
        return await self.provider.pricing()

    async def get_gpu_metrics(self, job_id: str) -> GPUMetrics:
        """Sample utilisation metrics of a job's instance."""
        job = await self.get_job(job_id)
        if not job.instance_id:
            raise OrchestratorError(f"job {job_id} has no provisioned instance")
        return await self.provider.metrics(job.instance_id)

    def active_timer_count(self) -> int:
        return len(self.timers)

    async def health_check(self) -> bool:
        """True when running and the job store is reachable."""
        if not self._is_running:
            return False
        try:
            return await self.store.is_healthy()
        except Exception:
            return False
