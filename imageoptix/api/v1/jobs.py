"""Batch job API: submit jobs, poll status, download archive/file results."""

import math
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from imageoptix.api.v1.deps import blank_to_none, client_identity, content_disposition, read_upload
from imageoptix.errors import AdmissionError, SubmissionValidationError
from imageoptix.jobs.models import BatchItem, JobState, JobStatus, ResultType

router = APIRouter()

# Set by main.py during lifespan
_service = None


def set_service(service):
    global _service
    _service = service


class JobSubmitResponse(BaseModel):
    job_id: str
    status: str
    message: str


def serialize_job(job: JobState) -> dict:
    response = {
        "job_id": job.id,
        "status": job.status.value,
        "progress": job.progress,
        "total": job.total,
        "info": job.info,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
    }

    if job.status == JobStatus.COMPLETED and job.result:
        result = job.result
        if result.type == ResultType.URLS:
            response["result"] = {"type": result.type.value, "urls": list(result.urls)}
        else:
            response["result"] = {
                "type": result.type.value,
                "filename": result.filename,
                "content_type": result.content_type,
                "size": result.size,
                "url": result.url,
                "download_url": f"/api/v1/jobs/{job.id}/download",
            }

    if job.status == JobStatus.FAILED:
        response["error"] = job.error

    return response


@router.post("/jobs", response_model=JobSubmitResponse, status_code=202)
async def submit_job(
    request: Request,
    files: List[UploadFile] = File(...),
    format: str = Form(...),
    quality: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
):
    """Submit a batch of images for optimization."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Job service not initialized")

    if len(files) > _service.batch_limit:
        raise HTTPException(
            status_code=400,
            detail=f"Too many images: {len(files)} submitted, the limit is {_service.batch_limit}",
        )

    items = []
    for upload in files:
        data = await read_upload(upload, _service.max_input_bytes)
        items.append(BatchItem(name=upload.filename or "image", data=data))

    raw_settings = {"format": format}
    for key, value in (("quality", quality), ("width", width), ("height", height)):
        value = blank_to_none(value)
        if value is not None:
            raw_settings[key] = value

    try:
        job_id = await _service.submit(items, raw_settings, client_identity(request))
    except SubmissionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AdmissionError as e:
        headers = None
        if e.retry_after is not None:
            headers = {"Retry-After": str(max(1, math.ceil(e.retry_after)))}
        raise HTTPException(status_code=429, detail=str(e), headers=headers)

    return JobSubmitResponse(
        job_id=job_id,
        status=JobStatus.STARTING.value,
        message="Job submitted successfully. Poll GET /api/v1/jobs/{id} for status.",
    )


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str):
    """Get the current status and result of a job."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Job service not initialized")

    job = _service.poll(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return serialize_job(job)


@router.get("/jobs/{job_id}/download")
async def download_job_result(job_id: str):
    """Download the archive or single-file payload of a completed job."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Job service not initialized")

    job = _service.poll(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.status != JobStatus.COMPLETED or job.result is None:
        raise HTTPException(status_code=409, detail=f"Job is {job.status.value}, no result to download")
    if job.result.type == ResultType.URLS:
        raise HTTPException(status_code=404, detail="Job result is a list of links, nothing to download")

    return Response(
        content=job.result.data,
        media_type=job.result.content_type or "application/octet-stream",
        headers={"Content-Disposition": content_disposition("attachment", job.result.filename)},
    )
