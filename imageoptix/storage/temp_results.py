"""Local result hosting: optimized files in a temp directory with TTL cleanup."""

import logging
import os
import re
import shutil
import tempfile
import time
import uuid
from typing import Optional
from urllib.parse import quote

from imageoptix.errors import UploadError
from imageoptix.storage.uploader import Uploader

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._() -]")


class TempResultStore(Uploader):
    """Hosts uploaded files on local disk, served back by the files endpoint.

    Each upload gets its own token directory; directories older than the TTL
    are removed by ``cleanup_expired()``.
    """

    def __init__(
        self,
        base_dir: Optional[str] = None,
        ttl_hours: int = 2,
        public_base_url: str = "",
    ):
        if base_dir:
            self._base_dir = base_dir
        else:
            self._base_dir = os.path.join(tempfile.gettempdir(), "imageoptix_results")
        os.makedirs(self._base_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600
        self._public_base_url = public_base_url.rstrip("/")

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def upload(self, data: bytes, name: str, content_type: str) -> str:
        token = uuid.uuid4().hex
        filename = _SAFE_NAME.sub("_", os.path.basename(name)) or "file"
        token_dir = os.path.join(self._base_dir, token)
        try:
            os.makedirs(token_dir, exist_ok=True)
            with open(os.path.join(token_dir, filename), "wb") as dst:
                dst.write(data)
        except OSError as exc:
            raise UploadError(f"Failed to store {name}: {exc}") from exc
        logger.debug("Stored %s (%d bytes) under %s", filename, len(data), token)
        return f"{self._public_base_url}/api/v1/files/{token}/{quote(filename)}"

    def get_output_path(self, token: str, filename: str) -> Optional[str]:
        """Full path of a hosted file, or None if it does not exist."""
        if os.path.basename(token) != token or os.path.basename(filename) != filename:
            return None
        path = os.path.join(self._base_dir, token, filename)
        return path if os.path.isfile(path) else None

    def cleanup_expired(self) -> int:
        """Remove token directories older than TTL. Returns count of removed dirs."""
        now = time.time()
        removed = 0
        if not os.path.exists(self._base_dir):
            return 0
        for entry in os.listdir(self._base_dir):
            token_dir = os.path.join(self._base_dir, entry)
            if not os.path.isdir(token_dir):
                continue
            mtime = os.path.getmtime(token_dir)
            if now - mtime > self._ttl_seconds:
                shutil.rmtree(token_dir, ignore_errors=True)
                removed += 1
        if removed:
            logger.info("Removed %d expired result dir(s)", removed)
        return removed
