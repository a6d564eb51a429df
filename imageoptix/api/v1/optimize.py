"""Single-image optimize endpoint used for previews.

Runs the transcoder synchronously and streams the optimized image back
with the before/after sizes in response headers.
"""

from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from imageoptix.api.v1.deps import blank_to_none, content_disposition, read_upload
from imageoptix.config import settings
from imageoptix.errors import SubmissionValidationError, TranscodeError
from imageoptix.jobs.service import parse_settings
from imageoptix.processing.transcoder import mime_type, output_filename, transcode

router = APIRouter()


@router.post("/optimize")
async def optimize_image(
    file: UploadFile = File(...),
    format: str = Form(...),
    quality: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
):
    raw_settings = {"format": format}
    for key, value in (("quality", quality), ("width", width), ("height", height)):
        value = blank_to_none(value)
        if value is not None:
            raw_settings[key] = value

    try:
        opt = parse_settings(raw_settings)
    except SubmissionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    data = await read_upload(file, settings.max_input_mb * 1024 * 1024)
    if not data:
        raise HTTPException(status_code=400, detail="File is empty")

    try:
        optimized = await run_in_threadpool(transcode, data, opt)
    except TranscodeError as e:
        raise HTTPException(status_code=422, detail=f"Failed to process image: {e}")

    filename = output_filename(file.filename or "image", opt.format)
    return Response(
        content=optimized,
        media_type=mime_type(opt.format),
        headers={
            "Content-Disposition": content_disposition("inline", filename),
            "X-Original-Size": str(len(data)),
            "X-Optimized-Size": str(len(optimized)),
        },
    )
