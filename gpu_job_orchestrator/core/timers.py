"""
Timer registry for per-job progression.

Maps each job id to at most one armed, cancellable timer (an asyncio task
sleeping until its tick) and hands out the per-job lock that serializes a
job's transitions.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..utils.logger import get_logger

TimerCallback = Callable[[str, Any], Awaitable[None]]


class KeyedLock:
    """One asyncio.Lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class TimerHandle:
    """A scheduled tick for one job."""

    def __init__(self, job_id: str, delay: float, payload: Any):
        self.job_id = job_id
        self.delay = delay
        self.payload = payload
        self.task: Optional[asyncio.Task] = None
        self.armed = True

    def __repr__(self):
        return f"<TimerHandle job_id={self.job_id} delay={self.delay} armed={self.armed}>"


class TimerRegistry:
    """
    Job-id-keyed registry of cancellable timers.

    `arm()` is synchronous, so cancelling the previous timer and registering
    the new one happens without yielding to the event loop: two arms for the
    same job can never both end up registered.
    """

    def __init__(self):
        self._timers: Dict[str, TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._locks = KeyedLock()

        # Instrumentation
        self._armed_counts: Dict[str, int] = defaultdict(int)
        self.peak_armed: Dict[str, int] = defaultdict(int)
        self.total_armed = 0

        self.logger = get_logger(__name__)

    def lock_for(self, job_id: str):
        """Async context manager serializing work on one job."""
        return self._locks.hold(job_id)

    def arm(self, job_id: str, delay: float, callback: TimerCallback, payload: Any = None) -> TimerHandle:
        """
        Schedule `callback(job_id, payload)` after `delay` seconds.

        Any timer already armed for the job is cancelled first.
        """
        self.cancel(job_id)

        handle = TimerHandle(job_id, max(0.0, delay), payload)
        handle.task = asyncio.get_running_loop().create_task(self._run(handle, callback))
        self._tasks.add(handle.task)
        handle.task.add_done_callback(self._tasks.discard)

        self._timers[job_id] = handle
        self._armed_counts[job_id] += 1
        self.peak_armed[job_id] = max(self.peak_armed[job_id], self._armed_counts[job_id])
        self.total_armed += 1
        return handle

    def cancel(self, job_id: str) -> bool:
        """Cancel the job's armed timer, if any. A timer already firing is left alone."""
        handle = self._timers.pop(job_id, None)
        if handle is None:
            return False

        self._disarm(handle)
        if handle.task is not None and handle.task is not asyncio.current_task():
            handle.task.cancel()
        return True

    def _disarm(self, handle: TimerHandle):
        if handle.armed:
            handle.armed = False
            self._armed_counts[handle.job_id] -= 1
            if self._armed_counts[handle.job_id] <= 0:
                del self._armed_counts[handle.job_id]

    async def _run(self, handle: TimerHandle, callback: TimerCallback):
        await asyncio.sleep(handle.delay)

        # Fired: the job no longer has an armed timer while the callback runs
        if self._timers.get(handle.job_id) is handle:
            del self._timers[handle.job_id]
        self._disarm(handle)

        try:
            await callback(handle.job_id, handle.payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.error("Timer callback failed", exc_info=True, extra={"job_id": handle.job_id})

    def is_armed(self, job_id: str) -> bool:
        return job_id in self._timers

    def armed_count(self, job_id: str) -> int:
        """Number of armed timers for a job (0 or 1)."""
        return self._armed_counts.get(job_id, 0)

    def active_jobs(self):
        return list(self._timers)

    def __len__(self) -> int:
        return len(self._timers)

    async def shutdown(self):
        """Cancel every timer, including callbacks currently running."""
        for job_id in list(self._timers):
            self.cancel(job_id)

        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
