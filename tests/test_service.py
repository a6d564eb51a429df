import asyncio
import time

import pytest
import pytest_asyncio
from types import SimpleNamespace

from conftest import FakeClock, RecordingUploader, make_image_bytes
from imageoptix.errors import AdmissionError, SubmissionValidationError
from imageoptix.jobs.in_process_runner import InProcessRunner
from imageoptix.jobs.models import BatchItem, JobStatus, ResultType
from imageoptix.jobs.orchestrator import BatchOrchestrator
from imageoptix.jobs import service as service_module
from imageoptix.jobs.service import BatchJobService, parse_settings
from imageoptix.jobs.store import JobStore
from imageoptix.processing.settings import OptimizationSettings, OutputFormat
from imageoptix.security.rate_limiter import FixedWindowRateLimiter


def jpeg_items(n):
    return [BatchItem(name=f"img{i}.jpg", data=make_image_bytes("JPEG")) for i in range(n)]


class Harness:
    """A fully wired service with fake time and an in-memory uploader."""

    def __init__(self, batch_limit=5, max_requests=3, max_item_bytes=4 * 1024 * 1024, transcode_fn=None):
        self.clock = FakeClock()
        self.store = JobStore(eviction_delay=30, clock=self.clock)
        self.uploader = RecordingUploader()
        kwargs = {"transcode_fn": transcode_fn} if transcode_fn else {}
        self.orchestrator = BatchOrchestrator(self.store, self.uploader, max_item_bytes=max_item_bytes, **kwargs)
        self.runner = InProcessRunner(self.orchestrator, shutdown_grace_seconds=5)
        self.limiter = FixedWindowRateLimiter(max_requests=max_requests, window_seconds=60, clock=self.clock)
        self.service = BatchJobService(
            self.store, self.runner, self.limiter, batch_limit=batch_limit, max_input_bytes=1024 * 1024
        )


@pytest_asyncio.fixture
async def harness():
    h = Harness()
    await h.runner.start()
    yield h
    await h.runner.stop()


class TestParseSettings:
    def test_accepts_mapping(self):
        parsed = parse_settings({"format": "webp", "quality": "80", "width": 300})
        assert parsed == OptimizationSettings(format=OutputFormat.WEBP, quality=80, width=300)

    def test_defaults_quality(self):
        assert parse_settings({"format": "png"}).quality == 80

    def test_passes_through_settings_object(self):
        settings = OptimizationSettings(format="gif")
        assert parse_settings(settings) is settings

    @pytest.mark.parametrize("raw", [
        {},
        {"format": "heic"},
        {"format": "jpeg", "quality": 0},
        {"format": "jpeg", "quality": 101},
        {"format": "jpeg", "width": -5},
        {"format": "jpeg", "height": 0},
        {"format": "jpeg", "width": 100000},
    ])
    def test_rejects_out_of_schema_values(self, raw):
        with pytest.raises(SubmissionValidationError):
            parse_settings(raw)

    def test_error_names_offending_field(self):
        with pytest.raises(SubmissionValidationError, match="quality"):
            parse_settings({"format": "jpeg", "quality": 500})


class TestSubmitValidation:
    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, harness):
        with pytest.raises(SubmissionValidationError):
            await harness.service.submit([], {"format": "png"}, "1.1.1.1")
        assert len(harness.store) == 0

    @pytest.mark.asyncio
    async def test_batch_over_limit_rejected_without_job(self, harness):
        with pytest.raises(SubmissionValidationError, match="limit is 5"):
            await harness.service.submit(jpeg_items(6), {"format": "png"}, "1.1.1.1")
        assert len(harness.store) == 0
        # Validation happens before admission, so no request was counted
        assert harness.limiter.status("1.1.1.1")["requests_in_window"] == 0

    @pytest.mark.asyncio
    async def test_empty_item_rejected(self, harness):
        items = [BatchItem(name="a.jpg", data=b"")]
        with pytest.raises(SubmissionValidationError, match="a.jpg is empty"):
            await harness.service.submit(items, {"format": "png"}, "1.1.1.1")

    @pytest.mark.asyncio
    async def test_oversized_input_rejected(self, harness):
        items = [BatchItem(name="big.jpg", data=b"x" * (1024 * 1024 + 1))]
        with pytest.raises(SubmissionValidationError, match="too large"):
            await harness.service.submit(items, {"format": "png"}, "1.1.1.1")

    @pytest.mark.asyncio
    async def test_bad_settings_rejected(self, harness):
        with pytest.raises(SubmissionValidationError):
            await harness.service.submit(jpeg_items(1), {"format": "bitmap"}, "1.1.1.1")
        assert len(harness.store) == 0


class TestAdmission:
    @pytest.mark.asyncio
    async def test_excess_submissions_denied_until_window_rolls_over(self, harness):
        for _ in range(3):
            await harness.service.submit(jpeg_items(1), {"format": "png"}, "9.9.9.9")

        harness.clock.advance(15)
        with pytest.raises(AdmissionError) as exc_info:
            await harness.service.submit(jpeg_items(1), {"format": "png"}, "9.9.9.9")
        assert exc_info.value.retry_after == pytest.approx(45)
        assert len(harness.store) == 3

        # Other callers are unaffected
        await harness.service.submit(jpeg_items(1), {"format": "png"}, "8.8.8.8")

        harness.clock.advance(61)
        job_id = await harness.service.submit(jpeg_items(1), {"format": "png"}, "9.9.9.9")
        assert harness.service.poll(job_id) is not None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_submit_returns_before_processing(self, harness):
        job_id = await harness.service.submit(jpeg_items(3), {"format": "webp", "quality": 80}, "1.1.1.1")

        state = harness.service.poll(job_id)
        assert state.status == JobStatus.STARTING
        assert state.progress == 0
        assert state.total == 3

        final = await harness.runner.join(job_id)
        assert final.status == JobStatus.COMPLETED
        assert final.result.type == ResultType.URLS
        assert len(final.result.urls) == 3
        assert harness.service.poll(job_id).progress == 3

    @pytest.mark.asyncio
    async def test_polled_progress_never_decreases(self, harness):
        job_id = await harness.service.submit(jpeg_items(5), {"format": "png"}, "1.1.1.1")

        observed = []
        while True:
            state = harness.service.poll(job_id)
            observed.append(state.progress)
            if state.is_terminal:
                break
            await asyncio.sleep(0.001)

        assert observed == sorted(observed)
        assert observed[-1] == 5

    @pytest.mark.asyncio
    async def test_terminal_job_evicted_after_delay(self, harness):
        job_id = await harness.service.submit(jpeg_items(1), {"format": "png"}, "1.1.1.1")
        await harness.runner.join(job_id)

        assert harness.service.poll(job_id).status == JobStatus.COMPLETED
        harness.clock.advance(31)
        assert harness.service.poll(job_id) is None

    @pytest.mark.asyncio
    async def test_unknown_job_polls_as_none(self, harness):
        assert harness.service.poll("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_concurrent_jobs_all_reach_terminal_state(self, harness):
        bad = [BatchItem(name="bad.jpg", data=b"garbage")]
        ids = [
            await harness.service.submit(jpeg_items(2), {"format": "webp"}, "a"),
            await harness.service.submit(bad, {"format": "webp"}, "b"),
            await harness.service.submit(jpeg_items(4), {"format": "jpeg", "width": 16}, "c"),
        ]

        assert await harness.runner.drain(timeout=10)

        states = [harness.service.poll(i) for i in ids]
        assert [s.status for s in states] == [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.COMPLETED]
        assert states[1].error
        for s in states:
            if s.status == JobStatus.COMPLETED:
                assert s.progress == s.total


class TestRunner:
    @pytest.mark.asyncio
    async def test_submit_before_start_marks_job_failed(self, monkeypatch):
        monkeypatch.setattr(service_module, "uuid", SimpleNamespace(uuid4=lambda: SimpleNamespace(hex="fixed-id")))
        h = Harness()
        with pytest.raises(RuntimeError):
            await h.service.submit(jpeg_items(1), {"format": "png"}, "1.1.1.1")

        state = h.store.get("fixed-id")
        assert state.status == JobStatus.FAILED
        assert state.error == "Job could not be started"

    @pytest.mark.asyncio
    async def test_stop_drains_in_flight_jobs(self):
        def slow(data, settings):
            time.sleep(0.05)
            return data

        h = Harness(transcode_fn=slow)
        await h.runner.start()
        job_id = await h.service.submit(jpeg_items(3), {"format": "png"}, "1.1.1.1")
        assert h.runner.active_jobs() == 1

        await h.runner.stop()

        assert h.runner.active_jobs() == 0
        assert h.service.poll(job_id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stop_cancels_jobs_past_grace_period(self):
        def slow(data, settings):
            time.sleep(0.2)
            return data

        h = Harness(transcode_fn=slow)
        h.runner = InProcessRunner(h.orchestrator, shutdown_grace_seconds=0.01)
        h.service = BatchJobService(h.store, h.runner, h.limiter)
        await h.runner.start()
        job_id = await h.service.submit(jpeg_items(3), {"format": "png"}, "1.1.1.1")
        await asyncio.sleep(0)

        await h.runner.stop()

        state = h.service.poll(job_id)
        assert state.status == JobStatus.FAILED
        assert "cancelled" in state.error
