"""Request helpers shared by the v1 endpoints."""

import re
from typing import Optional
from urllib.parse import quote

from fastapi import HTTPException, Request, UploadFile

from imageoptix.security.rate_limiter import UNKNOWN_IDENTITY

_CHUNK_BYTES = 1024 * 1024
_UNSAFE_HEADER_CHARS = re.compile(r"[^\x20-\x7e]|[\\\"]")


def client_identity(request: Request) -> str:
    """Caller identity for admission control: first forwarded hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IDENTITY


async def read_upload(file: UploadFile, max_bytes: Optional[int]) -> bytes:
    """Read an uploaded file in 1 MB chunks, rejecting it once it passes ``max_bytes``."""
    chunks = []
    total = 0
    while True:
        chunk = await file.read(_CHUNK_BYTES)
        if not chunk:
            break
        total += len(chunk)
        if max_bytes is not None and total > max_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"{file.filename or 'File'} is too large (max {max_bytes // (1024 * 1024)} MB)",
            )
        chunks.append(chunk)
    return b"".join(chunks)


def blank_to_none(value: Optional[str]) -> Optional[str]:
    """HTML forms send empty strings for untouched optional fields."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def content_disposition(disposition: str, filename: str) -> str:
    """Content-Disposition value safe for any filename.

    Headers are encoded as latin-1, so non-ASCII names go into the RFC 5987
    ``filename*`` parameter with an ASCII ``filename`` fallback.
    """
    quoted = quote(filename)
    if quoted == filename:
        return f'{disposition}; filename="{filename}"'
    fallback = _UNSAFE_HEADER_CHARS.sub("_", filename) or "download"
    return f"{disposition}; filename=\"{fallback}\"; filename*=utf-8''{quoted}"
