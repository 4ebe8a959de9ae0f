"""
Shared fixtures: an orchestrator wired to the in-memory store and the
reference provider, with stage delays shrunk to a few milliseconds.
"""

import asyncio

import pytest

from gpu_job_orchestrator.core.config import OrchestratorConfig
from gpu_job_orchestrator.core.orchestrator import LifecycleOrchestrator
from gpu_job_orchestrator.models.job import Job, ResourceRequest
from gpu_job_orchestrator.providers.reference import ReferenceProvider
from gpu_job_orchestrator.services.job_store import InMemoryJobStore

FAST_DELAYS = {
    "provisioning_delay": 0.02,
    "running_delay": 0.04,
    "recovery_jitter": 0.02,
    "store_retry_delay": 0.02,
}


def make_job(resource_type="A100", **kwargs):
    return Job(resource=ResourceRequest(resource_type, kwargs.pop("requirements", {})), **kwargs)


async def wait_for_state(store, job_id, states, timeout=2.0):
    """Poll the store until the job is in one of `states`."""
    states = set(states)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        job = await store.get(job_id)
        if job is not None and job.state in states:
            return job
        if loop.time() > deadline:
            current = job.state.value if job else None
            raise AssertionError(f"job {job_id} stuck in {current}, expected one of {sorted(s.value for s in states)}")
        await asyncio.sleep(0.005)


@pytest.fixture
def config():
    return OrchestratorConfig(random_seed=7, **FAST_DELAYS)


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def provider():
    return ReferenceProvider(start_index=123)


@pytest.fixture
async def orchestrator(store, provider, config):
    orchestrator = LifecycleOrchestrator(store, provider, config=config)
    await orchestrator.start()
    yield orchestrator
    await orchestrator.stop()
