"""Job submission and polling.

``submit`` validates a batch, applies admission control, registers the job
in ``starting`` state and hands it to the dispatcher without waiting.
``poll`` is a read-through to the job store.
"""

import logging
import uuid
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from imageoptix.errors import AdmissionError, SubmissionValidationError
from imageoptix.jobs.dispatcher import JobDispatcher, JobSubmission
from imageoptix.jobs.models import BatchItem, JobState, JobStatus
from imageoptix.jobs.store import JobStore
from imageoptix.processing.settings import OptimizationSettings
from imageoptix.security.rate_limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

SettingsInput = Union[OptimizationSettings, Mapping[str, Any]]


def parse_settings(raw: SettingsInput) -> OptimizationSettings:
    """Validate raw settings against the allowed formats and ranges."""
    if isinstance(raw, OptimizationSettings):
        return raw
    try:
        return OptimizationSettings.model_validate(dict(raw))
    except (ValidationError, TypeError, ValueError) as exc:
        raise SubmissionValidationError(f"Invalid settings: {_describe(exc)}") from exc


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc)


class BatchJobService:
    def __init__(
        self,
        store: JobStore,
        dispatcher: JobDispatcher,
        rate_limiter: FixedWindowRateLimiter,
        batch_limit: int = 50,
        max_input_bytes: Optional[int] = None,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._rate_limiter = rate_limiter
        self.batch_limit = batch_limit
        self.max_input_bytes = max_input_bytes

    def validate_batch(self, items: Sequence[BatchItem]) -> None:
        if not items:
            raise SubmissionValidationError("No images were provided")
        if len(items) > self.batch_limit:
            raise SubmissionValidationError(
                f"Too many images: {len(items)} submitted, the limit is {self.batch_limit}"
            )
        for item in items:
            if not item.name:
                raise SubmissionValidationError("Every image needs a file name")
            if not item.data:
                raise SubmissionValidationError(f"{item.name} is empty")
            if self.max_input_bytes is not None and len(item.data) > self.max_input_bytes:
                raise SubmissionValidationError(
                    f"{item.name} is too large ({len(item.data)} bytes, "
                    f"limit {self.max_input_bytes})"
                )

    async def submit(
        self,
        items: Sequence[BatchItem],
        settings: SettingsInput,
        identity: Optional[str],
    ) -> str:
        """Register and launch a batch job. Returns the new job id.

        Raises:
            SubmissionValidationError: bad batch or settings.
            AdmissionError: ``identity`` exceeded its submission rate.
        """
        items = list(items)
        self.validate_batch(items)
        parsed = parse_settings(settings)

        if not self._rate_limiter.check(identity):
            allowance = self._rate_limiter.status(identity)
            raise AdmissionError(
                "Too many requests. Please try again later.",
                retry_after=allowance["window_reset_in"],
            )

        job_id = uuid.uuid4().hex
        state = JobState(id=job_id, status=JobStatus.STARTING, total=len(items))
        self._store.create(job_id, state)
        try:
            await self._dispatcher.submit(JobSubmission(job_id=job_id, items=items, settings=parsed))
        except Exception:
            logger.exception("Job %s could not be launched", job_id)
            self._store.update(
                job_id, state.evolve(status=JobStatus.FAILED, error="Job could not be started")
            )
            raise
        logger.info(
            "Job %s submitted by %s: %d image(s) -> %s",
            job_id, identity or "unknown origin", len(items), parsed.format.value,
        )
        return job_id

    def poll(self, job_id: str) -> Optional[JobState]:
        return self._store.get(job_id)
