from io import BytesIO
import threading

import pytest
from PIL import Image

from imageoptix.errors import UploadError
from imageoptix.storage.uploader import Uploader


def make_image_bytes(fmt="JPEG", size=(64, 48), color=(200, 40, 40), mode="RGB"):
    """Encode a solid-colour test image."""
    image = Image.new(mode, size, color)
    buf = BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingUploader(Uploader):
    """Uploader that keeps everything in memory and returns fake CDN URLs."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def upload(self, data, name, content_type):
        with self._lock:
            self.calls.append((name, data, content_type))
            if self.fail_on is not None and len(self.calls) == self.fail_on:
                raise UploadError(f"Upload of {name} failed: bucket unavailable")
            return f"https://cdn.example.com/{len(self.calls)}/{name}"


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes("JPEG")


@pytest.fixture
def png_bytes():
    return make_image_bytes("PNG", mode="RGBA", color=(10, 120, 200, 128))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def uploader():
    return RecordingUploader()
