"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

from PIL import features

from imageoptix.config import settings

router = APIRouter()

# Set by main.py during lifespan
_runner = None


def set_runner(runner):
    global _runner
    _runner = runner


@router.get("/health")
async def health_check():
    """Service health, codec support and system info."""
    return {
        "status": "healthy" if _runner is not None and _runner.running else "starting",
        "active_jobs": _runner.active_jobs() if _runner is not None else 0,
        "upload_backend": settings.upload_backend,
        "codecs": {
            "webp": features.check("webp"),
            "avif": features.check("avif"),
        },
        "python_version": sys.version,
        "platform": platform.platform(),
    }
