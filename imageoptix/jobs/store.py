"""In-memory job registry with lazy eviction of terminal jobs."""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Set

from imageoptix.jobs.models import JobState

logger = logging.getLogger(__name__)


class JobStore:
    """Maps job ids to immutable JobState snapshots.

    Writers swap whole snapshots under a lock, so a reader always sees a
    complete state. The first read that observes a terminal state schedules
    the record for eviction ``eviction_delay`` seconds later; reads after
    that deadline drop the record and report it as absent.

    A terminal snapshot that nobody reads is kept for ``retention_seconds``
    after it was written. ``create`` purges every record past its deadline.

    The store does not police transitions. Only the owning orchestrator task
    writes to a job id, and it never writes after a terminal state.
    """

    def __init__(
        self,
        eviction_delay: float = 60.0,
        retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._eviction_delay = eviction_delay
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._jobs: Dict[str, JobState] = {}
        self._evict_at: Dict[str, float] = {}
        self._observed: Set[str] = set()
        self._lock = threading.Lock()

    def create(self, job_id: str, state: JobState) -> None:
        if state.id != job_id:
            raise ValueError(f"State id {state.id!r} does not match {job_id!r}")
        with self._lock:
            self._purge_expired()
            if job_id in self._jobs:
                raise KeyError(f"Job {job_id} already exists")
            self._jobs[job_id] = state

    def update(self, job_id: str, state: JobState) -> None:
        """Replace the snapshot for ``job_id``."""
        if state.id != job_id:
            raise ValueError(f"State id {state.id!r} does not match {job_id!r}")
        with self._lock:
            if job_id not in self._jobs:
                raise KeyError(f"Job {job_id} not found")
            self._jobs[job_id] = state
            if state.is_terminal and job_id not in self._evict_at:
                self._evict_at[job_id] = self._clock() + self._retention_seconds

    def get(self, job_id: str) -> Optional[JobState]:
        now = self._clock()
        with self._lock:
            state = self._jobs.get(job_id)
            if state is None:
                return None

            deadline = self._evict_at.get(job_id)
            if deadline is not None and now >= deadline:
                self._drop(job_id)
                logger.debug("Evicted job %s", job_id)
                return None

            if state.is_terminal and job_id not in self._observed:
                self._observed.add(job_id)
                self._evict_at[job_id] = now + self._eviction_delay
            return state

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [jid for jid, deadline in self._evict_at.items() if now >= deadline]
        for job_id in expired:
            self._drop(job_id)
        if expired:
            logger.debug("Purged %d expired job(s)", len(expired))

    def _drop(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        self._evict_at.pop(job_id, None)
        self._observed.discard(job_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
