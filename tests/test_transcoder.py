from io import BytesIO

import pytest
from PIL import Image

from conftest import make_image_bytes
from imageoptix.errors import TranscodeError
from imageoptix.processing.settings import OptimizationSettings, OutputFormat
from imageoptix.processing.transcoder import output_filename, target_size, transcode


def _open(data):
    image = Image.open(BytesIO(data))
    image.load()
    return image


class TestTargetSize:
    def test_no_dimensions_keeps_original(self):
        assert target_size(800, 600) == (800, 600)

    def test_width_only_preserves_aspect(self):
        assert target_size(800, 600, width=400) == (400, 300)

    def test_height_only_preserves_aspect(self):
        assert target_size(800, 600, height=300) == (400, 300)

    def test_both_dimensions_stretch(self):
        assert target_size(800, 600, width=100, height=100) == (100, 100)

    def test_single_dimension_never_upscales(self):
        assert target_size(800, 600, width=1600) == (800, 600)
        assert target_size(800, 600, height=601) == (800, 600)

    def test_derived_dimension_is_at_least_one(self):
        assert target_size(4000, 10, width=100) == (100, 1)


class TestTranscode:
    def test_jpeg_to_webp(self, jpeg_bytes):
        out = transcode(jpeg_bytes, OptimizationSettings(format="webp", quality=80))
        image = _open(out)
        assert image.format == "WEBP"
        assert image.size == (64, 48)

    def test_png_with_alpha_to_jpeg_drops_alpha(self, png_bytes):
        out = transcode(png_bytes, OptimizationSettings(format=OutputFormat.JPEG, quality=70))
        image = _open(out)
        assert image.format == "JPEG"
        assert image.mode == "RGB"

    def test_resize_width_only(self, jpeg_bytes):
        out = transcode(jpeg_bytes, OptimizationSettings(format="png", width=32))
        assert _open(out).size == (32, 24)

    def test_resize_stretch(self, jpeg_bytes):
        out = transcode(jpeg_bytes, OptimizationSettings(format="png", width=10, height=30))
        assert _open(out).size == (10, 30)

    @pytest.mark.parametrize("fmt,pil_name", [
        ("png", "PNG"),
        ("tiff", "TIFF"),
        ("bmp", "BMP"),
        ("gif", "GIF"),
    ])
    def test_lossless_formats(self, png_bytes, fmt, pil_name):
        out = transcode(png_bytes, OptimizationSettings(format=fmt))
        assert _open(out).format == pil_name

    def test_lower_quality_gives_smaller_jpeg(self):
        noisy = Image.effect_noise((256, 256), 80).convert("RGB")
        buf = BytesIO()
        noisy.save(buf, format="PNG")
        src = buf.getvalue()

        high = transcode(src, OptimizationSettings(format="jpeg", quality=95))
        low = transcode(src, OptimizationSettings(format="jpeg", quality=10))
        assert len(low) < len(high)

    def test_corrupt_input_raises(self):
        with pytest.raises(TranscodeError):
            transcode(b"definitely not an image", OptimizationSettings(format="webp"))

    def test_truncated_input_raises(self, jpeg_bytes):
        with pytest.raises(TranscodeError):
            transcode(jpeg_bytes[: len(jpeg_bytes) // 3], OptimizationSettings(format="png"))

    def test_empty_input_raises(self):
        with pytest.raises(TranscodeError):
            transcode(b"", OptimizationSettings(format="png"))

    def test_palette_image_resizes(self):
        src = make_image_bytes("GIF", size=(40, 40), color=(0, 255, 0))
        out = transcode(src, OptimizationSettings(format="webp", width=20))
        assert _open(out).size == (20, 20)


class TestOutputFilename:
    def test_replaces_extension(self):
        assert output_filename("holiday.JPG", OutputFormat.PNG) == "holiday.png"

    def test_strips_directories(self):
        assert output_filename("C:\\photos\\cat.jpeg", OutputFormat.WEBP) == "cat.webp"
        assert output_filename("a/b/dog.png", OutputFormat.AVIF) == "dog.avif"

    def test_name_without_extension(self):
        assert output_filename("scan", OutputFormat.TIFF) == "scan.tiff"

    def test_keeps_inner_dots(self):
        assert output_filename("my.photo.v2.png", OutputFormat.JPEG) == "my.photo.v2.jpeg"
