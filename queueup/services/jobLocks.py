"""
Per-job lock registry.

Mutations of one job are serialized in-process through an ``asyncio.Lock``
keyed by job id. Locks are created on first use and dropped once no task
holds or waits on them, so the registry only ever contains busy jobs.
Acquisition is bounded; a caller that cannot get the lock in time fails with
``JobLockTimeoutError`` instead of queueing forever.

Cross-process safety comes from the job's version column, not from here.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from queueup.services.workflowErrors import JobLockTimeoutError

logger = logging.getLogger(__name__)


class JobLockRegistry:
    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._users: dict[uuid.UUID, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, job_id: uuid.UUID) -> bool:
        lock = self._locks.get(job_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(
        self,
        job_id: uuid.UUID,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[None]:
        """Hold the job's lock for the duration of the ``async with`` block."""
        wait = self.timeout if timeout is None else timeout
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        self._users[job_id] = self._users.get(job_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=wait)
            except asyncio.TimeoutError:
                logger.warning("Lock timeout on job %s after %.1fs", job_id, wait)
                raise JobLockTimeoutError(job_id, wait) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[job_id] -= 1
            if self._users[job_id] == 0:
                del self._users[job_id]
                del self._locks[job_id]
