"""Serves files hosted by the local upload backend."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

router = APIRouter()

# Set by main.py during lifespan when upload_backend=local
_temp_store = None


def set_temp_store(store):
    global _temp_store
    _temp_store = store


@router.get("/files/{token}/{filename}")
async def get_hosted_file(token: str, filename: str):
    if _temp_store is None:
        raise HTTPException(status_code=404, detail="Local file hosting is disabled")

    path = _temp_store.get_output_path(token, filename)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path, filename=filename)
