"""ImageOptix batch optimization service - FastAPI application."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from imageoptix.config import settings
from imageoptix.api.v1.router import v1_router
from imageoptix.api.v1.health import router as health_root_router
from imageoptix.api.v1 import files as files_api
from imageoptix.api.v1 import health as health_api
from imageoptix.api.v1 import jobs as jobs_api
from imageoptix.jobs.in_process_runner import InProcessRunner
from imageoptix.jobs.orchestrator import BatchOrchestrator
from imageoptix.jobs.service import BatchJobService
from imageoptix.jobs.store import JobStore
from imageoptix.security.rate_limiter import FixedWindowRateLimiter
from imageoptix.storage.temp_results import TempResultStore
from imageoptix.storage.uploader import create_supabase_uploader

logger = logging.getLogger(__name__)


def build_uploader():
    """Upload backend selected by settings.upload_backend."""
    if settings.upload_backend == "local":
        return TempResultStore(
            base_dir=settings.results_dir,
            ttl_hours=settings.result_ttl_hours,
            public_base_url=settings.public_base_url,
        )
    if settings.upload_backend == "supabase":
        return create_supabase_uploader(settings)
    raise ValueError(
        f"Unknown upload_backend '{settings.upload_backend}'. Valid: local, supabase"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    logger.info("Starting ImageOptix service (upload backend: %s)", settings.upload_backend)

    uploader = build_uploader()
    temp_store = uploader if isinstance(uploader, TempResultStore) else None
    if temp_store is not None:
        temp_store.cleanup_expired()

    store = JobStore(
        eviction_delay=settings.job_eviction_seconds,
        retention_seconds=settings.job_retention_seconds,
    )
    orchestrator = BatchOrchestrator(
        store,
        uploader,
        max_item_bytes=settings.max_item_bytes,
        single_item_direct=settings.single_item_direct,
        upload_archives=settings.upload_archives,
    )
    runner = InProcessRunner(orchestrator, shutdown_grace_seconds=settings.shutdown_grace_seconds)
    rate_limiter = FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    service = BatchJobService(
        store,
        runner,
        rate_limiter,
        batch_limit=settings.batch_limit,
        max_input_bytes=settings.max_input_mb * 1024 * 1024,
    )

    await runner.start()
    sweeper = asyncio.create_task(rate_limiter.run_sweeper(), name="rate-limit-sweeper")
    logger.info(
        "Job runner started (batch limit %d, %d submissions per %.0fs)",
        settings.batch_limit, settings.rate_limit_max_requests, settings.rate_limit_window_seconds,
    )

    # Wire components into API endpoints
    jobs_api.set_service(service)
    files_api.set_temp_store(temp_store)
    health_api.set_runner(runner)

    yield

    logger.info("Shutting down ImageOptix service")
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await runner.stop()
    jobs_api.set_service(None)
    files_api.set_temp_store(None)
    health_api.set_runner(None)
    if temp_store is not None:
        temp_store.cleanup_expired()


app = FastAPI(
    title="ImageOptix Service",
    description="Batch image optimization with background jobs and polling",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:9002", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
