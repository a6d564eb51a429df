"""In-process job runner using asyncio.

Each submitted job gets its own background task. The runner keeps a handle
on every task so shutdown can wait for in-flight jobs to finish.
"""

import asyncio
import logging
from typing import Dict, Optional

from imageoptix.jobs.dispatcher import JobDispatcher, JobSubmission
from imageoptix.jobs.models import JobState
from imageoptix.jobs.orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)


class InProcessRunner(JobDispatcher):
    """Spawns one asyncio task per job and supervises it until it finishes."""

    def __init__(self, orchestrator: BatchOrchestrator, shutdown_grace_seconds: float = 30.0):
        self._orchestrator = orchestrator
        self._grace = shutdown_grace_seconds
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def submit(self, submission: JobSubmission) -> str:
        if not self._running:
            raise RuntimeError("Runner is not started")
        job_id = submission.job_id
        if job_id in self._tasks:
            raise ValueError(f"Job {job_id} is already running")

        task = asyncio.create_task(
            self._orchestrator.run(job_id, submission.items, submission.settings),
            name=f"job-{job_id}",
        )
        self._tasks[job_id] = task
        task.add_done_callback(lambda t, jid=job_id: self._on_done(jid, t))
        return job_id

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            logger.warning("Job %s task was cancelled", job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Job %s task crashed: %r", job_id, exc)

    def active_jobs(self) -> int:
        return len(self._tasks)

    async def join(self, job_id: str) -> Optional[JobState]:
        """Wait for a job's task. Returns its final state, or None if not running."""
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for every in-flight job. Returns True if all finished in time."""
        pending = list(self._tasks.values())
        if not pending:
            return True
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        return not not_done

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        if not self._tasks:
            return
        logger.info("Draining %d in-flight job(s)", len(self._tasks))
        if await self.drain(timeout=self._grace):
            return

        stragglers = list(self._tasks.values())
        logger.warning("Cancelling %d job(s) still running after %.0fs", len(stragglers), self._grace)
        for task in stragglers:
            task.cancel()
        await asyncio.gather(*stragglers, return_exceptions=True)
