"""Uploader interface and the Supabase Storage implementation."""

import logging
import re
import uuid
from abc import ABC, abstractmethod

from supabase import create_client

from imageoptix.errors import UploadError

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def object_name(name: str) -> str:
    """Storage key segment for ``name``: path-free and limited to URL-safe characters."""
    base = name.replace("\\", "/").rsplit("/", 1)[-1]
    return _UNSAFE_KEY_CHARS.sub("_", base) or "file"


class Uploader(ABC):
    """Hosts a byte buffer and returns a public URL for it."""

    @abstractmethod
    def upload(self, data: bytes, name: str, content_type: str) -> str:
        """Store ``data`` under a name derived from ``name``. Returns the public URL.

        Raises:
            UploadError: when the backend rejects or cannot store the file.
        """
        ...


class SupabaseUploader(Uploader):
    """Uploads into a public Supabase Storage bucket."""

    def __init__(self, client, bucket: str, prefix: str = "optimized"):
        self._client = client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    def upload(self, data: bytes, name: str, content_type: str) -> str:
        key = f"{self._prefix}/{uuid.uuid4().hex}/{object_name(name)}"
        bucket = self._client.storage.from_(self._bucket)
        try:
            bucket.upload(
                key,
                data,
                {"content-type": content_type, "upsert": "false"},
            )
            url = bucket.get_public_url(key)
        except Exception as exc:  # noqa: BLE001
            raise UploadError(f"Upload of {name} failed: {exc}") from exc
        logger.info("Uploaded %s (%d bytes) to %s/%s", name, len(data), self._bucket, key)
        return url


def create_supabase_uploader(settings) -> SupabaseUploader:
    """Build a SupabaseUploader from service-role credentials in ``settings``."""
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
        )
    client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    return SupabaseUploader(client, bucket=settings.supabase_bucket)
