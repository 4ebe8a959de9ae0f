"""
JobStore service for GPU Job Orchestrator

Durable record of each job. The store is the single source of truth for a
job's state; every state change is a compare-and-set on the expected
current state, one document at a time.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..models.job import Job, JobState, format_audit_entry
from ..core.exceptions import JobNotFoundError, InvalidTransitionError, StoreWriteError


class JobStore(ABC):
    """
    Abstract job store.

    Implementations must make `update_state` atomic per job: the write only
    lands if the persisted state still equals `expected`.
    """

    async def initialize(self) -> None:
        """Prepare the store (connections, schema)."""

    async def close(self) -> None:
        """Release store resources."""

    async def is_healthy(self) -> bool:
        """Check store connectivity."""
        return True

    @abstractmethod
    async def create(self, job: Job) -> None:
        """
        Insert a new job record.

        Raises:
            StoreWriteError: If the record could not be written
        """

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Get a job by ID, or None if it does not exist."""

    @abstractmethod
    async def update_state(
        self,
        job_id: str,
        expected: JobState,
        new_state: JobState,
        instance_id: Optional[str] = None,
        audit_entry: Optional[str] = None
    ) -> Job:
        """
        Atomically move a job from `expected` to `new_state`.

        `instance_id` is only written when the record has none yet.

        Returns:
            The updated job

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the persisted state is not `expected`
            StoreWriteError: If the write could not be made durable
        """

    @abstractmethod
    async def append_audit(self, job_id: str, entry: str) -> None:
        """Append an entry to a job's audit log."""

    @abstractmethod
    async def find_by_states(self, states: Iterable[JobState]) -> List[Job]:
        """Get all jobs currently in one of the given states, oldest first."""

    @abstractmethod
    async def list_jobs(
        self,
        user_id: Optional[str] = None,
        state: Optional[JobState] = None,
        limit: int = 100
    ) -> List[Job]:
        """List jobs, newest first."""


class InMemoryJobStore(JobStore):
    """
    Process-local job store.

    Records are copied on the way in and out so callers never share state
    with the store, which mirrors the behaviour of a real database.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> None:
        async with self._lock:
            if job.job_id in self._jobs:
                raise StoreWriteError("create", "duplicate job id", job_id=job.job_id)
            self._jobs[job.job_id] = copy.deepcopy(job)

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    async def update_state(
        self,
        job_id: str,
        expected: JobState,
        new_state: JobState,
        instance_id: Optional[str] = None,
        audit_entry: Optional[str] = None
    ) -> Job:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.state != expected:
                raise InvalidTransitionError(job_id, job.state, new_state)

            job.state = new_state
            if instance_id is not None and job.instance_id is None:
                job.instance_id = instance_id
            job.updated_at = datetime.utcnow()
            if audit_entry:
                job.audit_log.append(format_audit_entry(audit_entry, job.updated_at))

            return copy.deepcopy(job)

    async def append_audit(self, job_id: str, entry: str) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.audit_log.append(format_audit_entry(entry))

    async def find_by_states(self, states: Iterable[JobState]) -> List[Job]:
        wanted = set(states)
        jobs = [j for j in self._jobs.values() if j.state in wanted]
        return [copy.deepcopy(j) for j in sorted(jobs, key=lambda j: j.created_at)]

    async def list_jobs(
        self,
        user_id: Optional[str] = None,
        state: Optional[JobState] = None,
        limit: int = 100
    ) -> List[Job]:
        jobs = list(self._jobs.values())
        if user_id is not None:
            jobs = [j for j in jobs if j.user_id == user_id]
        if state is not None:
            jobs = [j for j in jobs if j.state == state]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [copy.deepcopy(j) for j in jobs[:limit]]

    async def delete(self, job_id: str) -> bool:
        """Remove a record; retention is an external policy, the orchestrator never calls this."""
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None
