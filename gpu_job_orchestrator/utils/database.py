"""
Database utilities for GPU Job Orchestrator

PostgreSQL-backed JobStore. Each state change is a single conditional
UPDATE, which gives the atomic per-job compare-and-set the orchestrator
relies on.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional, Any

import asyncpg

from ..models.job import Job, JobState, format_audit_entry
from ..services.job_store import JobStore
from ..core.exceptions import DatabaseError, StoreWriteError, JobNotFoundError, InvalidTransitionError

# command_timeout expiry surfaces as asyncio.TimeoutError, pool misuse as InterfaceError
CONNECTION_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id        TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL DEFAULT 'default-user',
    model_type    TEXT,
    resource_type TEXT NOT NULL,
    requirements  JSONB NOT NULL DEFAULT '{}'::jsonb,
    state         TEXT NOT NULL,
    instance_id   TEXT,
    audit_log     TEXT[] NOT NULL DEFAULT '{}',
    created_at    TIMESTAMP NOT NULL,
    updated_at    TIMESTAMP NOT NULL
);
CREATE INDEX IF NOT EXISTS jobs_user_created_idx ON jobs (user_id, created_at DESC);
CREATE INDEX IF NOT EXISTS jobs_state_idx ON jobs (state);
CREATE INDEX IF NOT EXISTS jobs_instance_idx ON jobs (instance_id);
"""


async def _init_connection(connection: asyncpg.Connection):
    await connection.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


class DatabaseManager(JobStore):
    """
    Manages the connection pool and the `jobs` table.
    """

    def __init__(self, connection_string: str, pool_size: int = 10, max_overflow: int = 20):
        """
        Initialize database manager.

        Args:
            connection_string: PostgreSQL connection string
            pool_size: Base connection pool size
            max_overflow: Maximum additional connections
        """
        self.connection_string = connection_string
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        """Create the connection pool and the schema."""
        if self.pool:
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=1,
                max_size=self.pool_size + self.max_overflow,
                command_timeout=60,
                init=_init_connection
            )
            async with self.pool.acquire() as connection:
                await connection.execute(SCHEMA_SQL)
        except CONNECTION_ERRORS as e:
            raise DatabaseError("initialization", f"Failed to create connection pool: {str(e)}")

    async def close(self) -> None:
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None

    async def is_healthy(self) -> bool:
        """Check database connectivity."""
        if not self.pool:
            return False
        try:
            async with self.pool.acquire() as connection:
                await connection.execute("SELECT 1")
                return True
        except CONNECTION_ERRORS:
            return False

    @asynccontextmanager
    async def get_connection(self):
        """Get a database connection from the pool."""
        if not self.pool:
            raise DatabaseError("connection", "Database pool not initialized")

        async with self.pool.acquire() as connection:
            yield connection

    @staticmethod
    def _row_to_job(row: Any) -> Job:
        return Job.from_dict(dict(row))

    async def create(self, job: Job) -> None:
        """Insert a new job."""
        try:
            async with self.get_connection() as conn:
                await conn.execute("""
                    INSERT INTO jobs (
                        job_id, user_id, model_type, resource_type, requirements,
                        state, instance_id, audit_log, created_at, updated_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                """,
                job.job_id, job.user_id, job.model_type, job.resource_type,
                dict(job.requirements), job.state.value, job.instance_id,
                list(job.audit_log), job.created_at, job.updated_at)
        except CONNECTION_ERRORS as e:
            raise StoreWriteError("create", str(e), job_id=job.job_id)

    async def get(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        try:
            async with self.get_connection() as conn:
                row = await conn.fetchrow("SELECT * FROM jobs WHERE job_id = $1", job_id)
        except CONNECTION_ERRORS as e:
            raise DatabaseError("get", str(e), table="jobs")
        return self._row_to_job(row) if row else None

    async def update_state(
        self,
        job_id: str,
        expected: JobState,
        new_state: JobState,
        instance_id: Optional[str] = None,
        audit_entry: Optional[str] = None
    ) -> Job:
        """Conditional state update; the WHERE clause carries the expected state."""
        entries = [format_audit_entry(audit_entry)] if audit_entry else []
        try:
            async with self.get_connection() as conn:
                row = await conn.fetchrow("""
                    UPDATE jobs SET
                        state = $3,
                        instance_id = COALESCE(instance_id, $4),
                        audit_log = audit_log || $5::text[],
                        updated_at = NOW() AT TIME ZONE 'utc'
                    WHERE job_id = $1 AND state = $2
                    RETURNING *
                """, job_id, expected.value, new_state.value, instance_id, entries)

                if row is None:
                    current = await conn.fetchval("SELECT state FROM jobs WHERE job_id = $1", job_id)
        except CONNECTION_ERRORS as e:
            raise StoreWriteError("update_state", str(e), job_id=job_id)

        if row is not None:
            return self._row_to_job(row)
        if current is None:
            raise JobNotFoundError(job_id)
        raise InvalidTransitionError(job_id, JobState(current), new_state)

    async def append_audit(self, job_id: str, entry: str) -> None:
        try:
            async with self.get_connection() as conn:
                status = await conn.execute(
                    "UPDATE jobs SET audit_log = array_append(audit_log, $2) WHERE job_id = $1",
                    job_id, format_audit_entry(entry)
                )
        except CONNECTION_ERRORS as e:
            raise StoreWriteError("append_audit", str(e), job_id=job_id)

        if status.endswith(" 0"):
            raise JobNotFoundError(job_id)

    async def find_by_states(self, states: Iterable[JobState]) -> List[Job]:
        tags = [s.value for s in states]
        try:
            async with self.get_connection() as conn:
                rows = await conn.fetch(
                    "SELECT * FROM jobs WHERE state = ANY($1::text[]) ORDER BY created_at ASC", tags
                )
        except CONNECTION_ERRORS as e:
            raise DatabaseError("find_by_states", str(e), table="jobs")
        return [self._row_to_job(row) for row in rows]

    async def list_jobs(
        self,
        user_id: Optional[str] = None,
        state: Optional[JobState] = None,
        limit: int = 100
    ) -> List[Job]:
        clauses, params = [], []
        if user_id is not None:
            params.append(user_id)
            clauses.append(f"user_id = ${len(params)}")
        if state is not None:
            params.append(state.value)
            clauses.append(f"state = ${len(params)}")
        params.append(limit)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"SELECT * FROM jobs {where} ORDER BY created_at DESC LIMIT ${len(params)}"

        try:
            async with self.get_connection() as conn:
                rows = await conn.fetch(query, *params)
        except CONNECTION_ERRORS as e:
            raise DatabaseError("list_jobs", str(e), table="jobs")
        return [self._row_to_job(row) for row in rows]

    async def get_job_statistics(self) -> Dict[str, int]:
        """Count jobs per state."""
        try:
            async with self.get_connection() as conn:
                rows = await conn.fetch("SELECT state, COUNT(*) AS count FROM jobs GROUP BY state")
        except CONNECTION_ERRORS as e:
            raise DatabaseError("get_job_statistics", str(e), table="jobs")

        stats = {"total": 0}
        for row in rows:
            stats[row['state']] = row['count']
            stats["total"] += row['count']
        return stats
