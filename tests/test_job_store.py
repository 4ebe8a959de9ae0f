import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import asyncpg
import pytest

from gpu_job_orchestrator.core.exceptions import (
    DatabaseError,
    InvalidTransitionError,
    JobNotFoundError,
    StoreWriteError,
)
from gpu_job_orchestrator.models.job import JobState
from gpu_job_orchestrator.services.job_store import InMemoryJobStore
from gpu_job_orchestrator.utils.database import DatabaseManager

from conftest import make_job


class TestInMemoryJobStore:

    async def test_compare_and_set(self, store):
        job = make_job()
        await store.create(job)

        updated = await store.update_state(job.job_id, JobState.PENDING, JobState.PROVISIONING,
                                           instance_id="gpu-1", audit_entry="provisioning")

        assert updated.state == JobState.PROVISIONING
        assert updated.instance_id == "gpu-1"
        assert updated.audit_log[-1].endswith("provisioning")

    async def test_wrong_expected_state(self, store):
        job = make_job(state=JobState.STOPPED)
        await store.create(job)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await store.update_state(job.job_id, JobState.RUNNING, JobState.COMPLETED)

        assert exc_info.value.current_state == JobState.STOPPED
        assert (await store.get(job.job_id)).state == JobState.STOPPED

    async def test_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            await store.update_state("missing", JobState.PENDING, JobState.PROVISIONING)
        with pytest.raises(JobNotFoundError):
            await store.append_audit("missing", "hello")

    async def test_duplicate_create(self, store):
        job = make_job()
        await store.create(job)

        with pytest.raises(StoreWriteError):
            await store.create(job)

    async def test_instance_id_is_set_once(self, store):
        job = make_job(state=JobState.PROVISIONING, instance_id="gpu-1")
        await store.create(job)

        updated = await store.update_state(job.job_id, JobState.PROVISIONING, JobState.RUNNING, instance_id="gpu-2")

        assert updated.instance_id == "gpu-1"

    async def test_records_are_copies(self, store):
        job = make_job()
        await store.create(job)
        job.state = JobState.RUNNING

        fetched = await store.get(job.job_id)
        fetched.audit_log.append("tampered")

        persisted = await store.get(job.job_id)
        assert persisted.state == JobState.PENDING
        assert "tampered" not in persisted.audit_log

    async def test_find_by_states_oldest_first(self, store):
        now = datetime.utcnow()
        newer = make_job(state=JobState.RUNNING, created_at=now)
        older = make_job(state=JobState.PROVISIONING, created_at=now - timedelta(minutes=5))
        done = make_job(state=JobState.COMPLETED, created_at=now)
        for job in (newer, older, done):
            await store.create(job)

        found = await store.find_by_states([JobState.PROVISIONING, JobState.RUNNING])

        assert [j.job_id for j in found] == [older.job_id, newer.job_id]

    async def test_list_jobs_newest_first(self, store):
        now = datetime.utcnow()
        jobs = [make_job(user_id="alice", created_at=now - timedelta(seconds=i)) for i in range(3)]
        for job in jobs:
            await store.create(job)
        await store.create(make_job(user_id="bob"))

        listed = await store.list_jobs(user_id="alice", limit=2)

        assert [j.job_id for j in listed] == [jobs[0].job_id, jobs[1].job_id]

    async def test_delete(self, store):
        job = make_job()
        await store.create(job)

        assert await store.delete(job.job_id) is True
        assert await store.delete(job.job_id) is False
        assert await store.get(job.job_id) is None


class FakeConnection:
    """Answers queries from canned results and records what was executed."""

    def __init__(self, fetchrow=None, fetchval=None, fetch=None, execute="UPDATE 1", error=None):
        self.results = {"fetchrow": fetchrow, "fetchval": fetchval, "fetch": fetch, "execute": execute}
        self.error = error
        self.queries = []

    async def _answer(self, kind, query, args):
        self.queries.append((kind, " ".join(query.split()), args))
        if self.error:
            raise self.error
        return self.results[kind]

    async def fetchrow(self, query, *args):
        return await self._answer("fetchrow", query, args)

    async def fetchval(self, query, *args):
        return await self._answer("fetchval", query, args)

    async def fetch(self, query, *args):
        return await self._answer("fetch", query, args)

    async def execute(self, query, *args):
        return await self._answer("execute", query, args)


class FakePool:
    def __init__(self, connection):
        self.connection = connection

    @asynccontextmanager
    async def acquire(self):
        yield self.connection


def database_with(connection):
    db = DatabaseManager("postgresql://localhost/gpu_jobs")
    db.pool = FakePool(connection)
    return db


def row_for(job, **changes):
    row = dict(job.to_dict())
    row.update(changes)
    row["created_at"] = job.created_at
    row["updated_at"] = job.updated_at
    return row


class TestDatabaseManager:

    async def test_update_state_is_conditional(self):
        job = make_job()
        connection = FakeConnection(fetchrow=row_for(job, state="provisioning", instance_id="gpu-1"))
        db = database_with(connection)

        updated = await db.update_state(job.job_id, JobState.PENDING, JobState.PROVISIONING,
                                        instance_id="gpu-1", audit_entry="provisioning")

        kind, query, args = connection.queries[0]
        assert "WHERE job_id = $1 AND state = $2" in query
        assert args[:4] == (job.job_id, "pending", "provisioning", "gpu-1")
        assert updated.state == JobState.PROVISIONING

    async def test_lost_compare_and_set(self):
        connection = FakeConnection(fetchrow=None, fetchval="stopped")
        db = database_with(connection)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await db.update_state("j1", JobState.RUNNING, JobState.COMPLETED)

        assert exc_info.value.current_state == JobState.STOPPED

    async def test_update_missing_job(self):
        db = database_with(FakeConnection(fetchrow=None, fetchval=None))

        with pytest.raises(JobNotFoundError):
            await db.update_state("j1", JobState.RUNNING, JobState.COMPLETED)

    async def test_connection_failure_is_store_write_error(self):
        db = database_with(FakeConnection(error=OSError("connection refused")))

        with pytest.raises(StoreWriteError):
            await db.update_state("j1", JobState.RUNNING, JobState.COMPLETED)
        with pytest.raises(StoreWriteError):
            await db.create(make_job())
        with pytest.raises(DatabaseError):
            await db.get("j1")

    async def test_command_timeout_is_store_write_error(self):
        db = database_with(FakeConnection(error=asyncio.TimeoutError()))

        with pytest.raises(StoreWriteError):
            await db.update_state("j1", JobState.PROVISIONING, JobState.RUNNING)
        with pytest.raises(StoreWriteError):
            await db.append_audit("j1", "hello")

    async def test_pool_interface_error_is_database_error(self):
        db = database_with(FakeConnection(error=asyncpg.InterfaceError("pool is closing")))

        with pytest.raises(DatabaseError):
            await db.get("j1")
        with pytest.raises(DatabaseError):
            await db.find_by_states([JobState.RUNNING])

    async def test_append_audit_to_missing_job(self):
        db = database_with(FakeConnection(execute="UPDATE 0"))

        with pytest.raises(JobNotFoundError):
            await db.append_audit("j1", "hello")

    async def test_list_jobs_builds_filters(self):
        job = make_job(user_id="alice")
        connection = FakeConnection(fetch=[row_for(job)])
        db = database_with(connection)

        jobs = await db.list_jobs(user_id="alice", state=JobState.PENDING, limit=5)

        _, query, args = connection.queries[0]
        assert "WHERE user_id = $1 AND state = $2" in query
        assert "ORDER BY created_at DESC LIMIT $3" in query
        assert args == ("alice", "pending", 5)
        assert [j.job_id for j in jobs] == [job.job_id]

    async def test_job_statistics(self):
        db = database_with(FakeConnection(fetch=[
            {"state": "running", "count": 2},
            {"state": "completed", "count": 3},
        ]))

        assert await db.get_job_statistics() == {"total": 5, "running": 2, "completed": 3}

    async def test_uninitialized_pool(self):
        db = DatabaseManager("postgresql://localhost/gpu_jobs")

        assert await db.is_healthy() is False
        with pytest.raises(DatabaseError):
            await db.get("j1")
