"""Batch job orchestrator.

Drives one job end to end:
1. Transcode every item in order, publishing progress after each one
2. Pick the delivery strategy from the transcoded sizes
3. Upload links, build an archive, or return the single file directly
4. Publish the terminal state (completed or failed)

Nothing is uploaded until every item has been transcoded.
"""

import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from imageoptix.errors import OptixError, TranscodeError, UploadError
from imageoptix.jobs.models import BatchItem, JobResult, JobState, JobStatus, ResultType
from imageoptix.jobs.store import JobStore
from imageoptix.jobs.strategy import DeliveryStrategy, OutputStrategySelector
from imageoptix.processing.archive import build_archive, unique_names
from imageoptix.processing.settings import OptimizationSettings
from imageoptix.processing.transcoder import mime_type, output_filename, transcode
from imageoptix.storage.uploader import Uploader

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"

TranscodeFn = Callable[[bytes, OptimizationSettings], bytes]
ArchiveFn = Callable[[Iterable[Tuple[str, bytes]]], bytes]


class _JobRun:
    """Holds the latest snapshot of one job and publishes changes to the store."""

    def __init__(self, store: JobStore, state: JobState):
        self._store = store
        self.state = state

    def write(self, **changes) -> JobState:
        self.state = self.state.evolve(**changes)
        self._store.update(self.state.id, self.state)
        return self.state


class BatchOrchestrator:
    def __init__(
        self,
        store: JobStore,
        uploader: Uploader,
        max_item_bytes: int,
        single_item_direct: bool = True,
        upload_archives: bool = False,
        transcode_fn: TranscodeFn = transcode,
        archive_fn: ArchiveFn = build_archive,
    ):
        self._store = store
        self._uploader = uploader
        self._max_item_bytes = max_item_bytes
        self._single_item_direct = single_item_direct
        self._upload_archives = upload_archives
        self._transcode = transcode_fn
        self._archive = archive_fn

    async def run(
        self,
        job_id: str,
        items: Sequence[BatchItem],
        settings: OptimizationSettings,
    ) -> Optional[JobState]:
        """Process a registered job to a terminal state. Never raises job errors."""
        initial = self._store.get(job_id)
        if initial is None:
            logger.warning("Job %s vanished before it started", job_id)
            return None

        run = _JobRun(self._store, initial)
        try:
            run.write(status=JobStatus.PROCESSING, progress=0, info=None)
            logger.info("Job %s: processing %d item(s) as %s", job_id, len(items), settings.format.value)

            outputs, strategy = await self._transcode_all(run, items, settings)
            result = await self._deliver(run, outputs, strategy, settings)

            run.write(
                status=JobStatus.COMPLETED,
                progress=run.state.total,
                result=result,
                info=None,
            )
            logger.info("Job %s: completed (%s)", job_id, result.type.value)
        except asyncio.CancelledError:
            self._fail(run, "Job was cancelled before it finished")
            raise
        except OptixError as exc:
            logger.warning("Job %s: failed: %s", job_id, exc)
            self._fail(run, str(exc))
        except Exception as exc:
            logger.exception("Job %s: unexpected failure", job_id)
            self._fail(run, f"{type(exc).__name__}: {exc}")
        return run.state

    def _fail(self, run: _JobRun, message: str) -> None:
        if run.state.is_terminal:
            return
        run.write(status=JobStatus.FAILED, error=message or "Processing failed", result=None, info=None)

    async def _transcode_all(
        self,
        run: _JobRun,
        items: Sequence[BatchItem],
        settings: OptimizationSettings,
    ) -> Tuple[List[Tuple[str, bytes]], DeliveryStrategy]:
        loop = asyncio.get_running_loop()
        selector = OutputStrategySelector(self._max_item_bytes, self._single_item_direct)
        names = unique_names(output_filename(item.name, settings.format) for item in items)
        total = len(items)

        outputs: List[Tuple[str, bytes]] = []
        for i, (item, out_name) in enumerate(zip(items, names)):
            run.write(info=f"Optimizing {item.name} ({i + 1}/{total})")
            try:
                data = await loop.run_in_executor(None, self._transcode, item.data, settings)
            except TranscodeError as exc:
                raise TranscodeError(f"Failed to optimize {item.name}: {exc}") from exc
            outputs.append((out_name, data))
            selector.observe(len(data))
            run.write(progress=i + 1)

        strategy = selector.decide()
        logger.debug("Job %s: strategy %s", run.state.id, strategy.value)
        return outputs, strategy

    async def _deliver(
        self,
        run: _JobRun,
        outputs: List[Tuple[str, bytes]],
        strategy: DeliveryStrategy,
        settings: OptimizationSettings,
    ) -> JobResult:
        content_type = mime_type(settings.format)

        if strategy == DeliveryStrategy.DIRECT:
            name, data = outputs[0]
            return JobResult(type=ResultType.FILE, filename=name, content_type=content_type, data=data)

        loop = asyncio.get_running_loop()

        if strategy == DeliveryStrategy.ARCHIVE:
            run.write(status=JobStatus.UPLOADING, info=f"Compressing {len(outputs)} file(s)")
            archive = await loop.run_in_executor(None, self._archive, outputs)
            filename = f"optimized-images-{run.state.id[:8]}.zip"
            url = None
            if self._upload_archives:
                run.write(info=f"Uploading {filename}")
                url = await loop.run_in_executor(
                    None, self._upload, archive, filename, ZIP_CONTENT_TYPE
                )
            return JobResult(
                type=ResultType.ZIP,
                filename=filename,
                content_type=ZIP_CONTENT_TYPE,
                data=archive,
                url=url,
            )

        run.write(status=JobStatus.UPLOADING, info=None)
        urls = []
        for i, (name, data) in enumerate(outputs):
            run.write(info=f"Uploading {name} ({i + 1}/{len(outputs)})")
            url = await loop.run_in_executor(None, self._upload, data, name, content_type)
            urls.append(url)
        return JobResult(type=ResultType.URLS, urls=urls)

    def _upload(self, data: bytes, name: str, content_type: str) -> str:
        try:
            url = self._uploader.upload(data, name, content_type)
        except UploadError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise UploadError(f"Upload of {name} failed: {exc}") from exc
        if not url:
            raise UploadError(f"Upload of {name} returned no URL")
        return url
