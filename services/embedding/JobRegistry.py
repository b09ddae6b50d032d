"""Per-key job registry for the embedding orchestrator."""

import asyncio
import uuid
from typing import Awaitable, Callable, Hashable, TypeVar

from shared.cache.SingleFlight import SingleFlight
from shared.helper.HelperConfig import HelperConfig
from shared.models.jobs import Job, JobKind

T = TypeVar("T")

JobKey = tuple[uuid.UUID, uuid.UUID]


class JobRegistry:
    """
    Serializes jobs per key.

    A request for a (kind, key, variant) that is already running joins the
    running job and receives its result or error. Jobs of different kinds or
    variants on the same key run one after the other. The variant identifies
    request parameters that change the outcome, such as new configs.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._flight: SingleFlight = SingleFlight()
        self._locks: dict[JobKey, asyncio.Lock] = {}
        self._lock_users: dict[JobKey, int] = {}
        self._jobs: dict[tuple[JobKind, JobKey], Job] = {}

    def is_running(self, kind: JobKind, key: JobKey, variant: Hashable = None) -> bool:
        return self._flight.is_inflight((kind, key, variant))

    def get_last_job(self, kind: JobKind, key: JobKey) -> Job | None:
        """The most recent job for (kind, key), running or finished."""
        return self._jobs.get((kind, key))

    def _acquire_lock(self, key: JobKey) -> asyncio.Lock:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        return lock

    def _release_lock(self, key: JobKey) -> None:
        self._lock_users[key] -= 1
        if self._lock_users[key] == 0:
            del self._lock_users[key]
            del self._locks[key]

    async def run(
        self,
        kind: JobKind,
        key: JobKey,
        job_fn: Callable[[Job], Awaitable[T]],
        variant: Hashable = None,
    ) -> T:
        """
        Runs ``job_fn`` with a fresh Job unless the same (kind, key, variant) is in flight.

        Args:
            kind: Workflow type.
            key: (document or image id, collection id).
            job_fn: Receives the Job it must advance through its states.
            variant: Only requests with an equal variant join each other.
        """
        if self.is_running(kind, key, variant):
            self.logging.info("Joining running %s job for %s", kind.value, key)

        async def compute() -> T:
            lock = self._acquire_lock(key)
            try:
                async with lock:
                    job = Job(kind=kind, key=key)
                    self._jobs[(kind, key)] = job
                    return await job_fn(job)
            finally:
                self._release_lock(key)

        return await self._flight.do((kind, key, variant), compute)
