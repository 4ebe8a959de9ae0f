import asyncio
import random

import pytest

from gpu_job_orchestrator.core.config import OrchestratorConfig
from gpu_job_orchestrator.core.orchestrator import LifecycleOrchestrator
from gpu_job_orchestrator.core.progression import TimedProgressionDriver, ProviderPollingDriver
from gpu_job_orchestrator.models.job import JobState
from gpu_job_orchestrator.providers.base import InstanceStatus
from gpu_job_orchestrator.providers.reference import ReferenceProvider
from gpu_job_orchestrator.services.job_store import InMemoryJobStore

from conftest import FAST_DELAYS, make_job


class ScriptedProvider(ReferenceProvider):
    """Reports whatever status the test sets."""

    def __init__(self, status="running", source="provider"):
        super().__init__()
        self.next_status = status
        self.source = source

    async def status(self, instance_id):
        self._enter("status")
        return InstanceStatus(instance_id=instance_id, status=self.next_status, source=self.source)


class TestTimedProgressionDriver:

    def test_delays_per_stage(self):
        driver = TimedProgressionDriver(provisioning_delay=3.0, running_delay=12.0)

        assert driver.delay_for(JobState.PROVISIONING) == 3.0
        assert driver.delay_for(JobState.RUNNING) == 12.0
        assert driver.delay_for(JobState.COMPLETED) == 0.0

    async def test_provisioning_resolves_to_running(self):
        driver = TimedProgressionDriver()

        assert await driver.resolve(make_job(state=JobState.PROVISIONING)) == JobState.RUNNING

    async def test_outcome_follows_success_ratio(self):
        driver = TimedProgressionDriver(success_ratio=0.8, rng=random.Random(42))
        job = make_job(state=JobState.RUNNING)

        outcomes = [await driver.resolve(job) for _ in range(1000)]

        completed = outcomes.count(JobState.COMPLETED)
        assert set(outcomes) == {JobState.COMPLETED, JobState.FAILED}
        assert 700 < completed < 900

    async def test_terminal_job_resolves_to_nothing(self):
        driver = TimedProgressionDriver()

        assert await driver.resolve(make_job(state=JobState.STOPPED)) is None


class TestProviderPollingDriver:

    @pytest.mark.parametrize("state,status,expected", [
        (JobState.PROVISIONING, "running", JobState.RUNNING),
        (JobState.PROVISIONING, "provisioning", None),
        (JobState.RUNNING, "running", None),
        (JobState.RUNNING, "completed", JobState.COMPLETED),
        (JobState.RUNNING, "crashed", JobState.FAILED),
        (JobState.RUNNING, "Exited", JobState.COMPLETED),
    ])
    async def test_status_mapping(self, state, status, expected):
        driver = ProviderPollingDriver(ScriptedProvider(status), poll_interval=2.0)
        job = make_job(state=state, instance_id="gpu-1")

        assert await driver.resolve(job) == expected
        assert driver.delay_for(state) == 2.0

    async def test_failed_during_provisioning_holds_stage(self):
        driver = ProviderPollingDriver(ScriptedProvider("failed"))
        job = make_job(state=JobState.PROVISIONING, instance_id="gpu-1")

        assert await driver.resolve(job) is None
        assert driver.pop_hold_reason(job.job_id) == "instance reported failed while provisioning"
        assert await driver.resolve(job) is None
        assert driver.pop_hold_reason(job.job_id) is None

    async def test_held_job_advances_once_instance_recovers(self):
        provider = ScriptedProvider("failed")
        driver = ProviderPollingDriver(provider)
        job = make_job(state=JobState.PROVISIONING, instance_id="gpu-1")
        await driver.resolve(job)

        provider.next_status = "running"

        assert await driver.resolve(job) == JobState.RUNNING
        assert driver.pop_hold_reason(job.job_id) is None

    async def test_orchestrator_audits_hold_without_running_event(self):
        store = InMemoryJobStore()
        driver = ProviderPollingDriver(ScriptedProvider("failed"), poll_interval=0.01)
        orchestrator = LifecycleOrchestrator(store, driver.provider, driver=driver,
                                             config=OrchestratorConfig(**FAST_DELAYS))
        await orchestrator.start()
        job = make_job()
        events = orchestrator.subscribe(job.job_id)
        try:
            await orchestrator.submit(job)
            await asyncio.sleep(0.08)

            persisted = await store.get(job.job_id)
            holds = [entry for entry in persisted.audit_log if "holding in provisioning" in entry]
            assert persisted.state == JobState.PROVISIONING
            assert len(holds) == 1
            assert [e.status for e in events.pending()] == [JobState.PENDING, JobState.PROVISIONING]
            assert orchestrator.timers.is_armed(job.job_id)
        finally:
            await orchestrator.stop()

    async def test_stale_snapshot_keeps_stage(self):
        driver = ProviderPollingDriver(ScriptedProvider("completed", source="cache"))
        job = make_job(state=JobState.RUNNING, instance_id="gpu-1")

        assert await driver.resolve(job) is None

    async def test_provider_error_keeps_stage(self):
        provider = ScriptedProvider("completed")
        provider.set_unavailable("status")
        driver = ProviderPollingDriver(provider)

        assert await driver.resolve(make_job(state=JobState.RUNNING, instance_id="gpu-1")) is None

    async def test_terminated_instance_fails_running_job(self):
        provider = ReferenceProvider()
        instance_id = await provider.allocate("A100", {})
        await provider.terminate(instance_id)
        driver = ProviderPollingDriver(provider)

        assert await driver.resolve(make_job(state=JobState.RUNNING, instance_id=instance_id)) == JobState.FAILED
