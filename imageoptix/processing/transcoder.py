"""Pillow-backed image transcoder.

``transcode`` is the single entry point used by the job orchestrator and the
synchronous optimize endpoint:
bytes in -> decode -> orient -> resize -> re-encode -> bytes out.
"""

import logging
from io import BytesIO
from pathlib import PurePosixPath
from typing import Any, Dict, Optional, Tuple

from PIL import Image, ImageOps

from imageoptix.errors import TranscodeError
from imageoptix.processing.settings import OptimizationSettings, OutputFormat

logger = logging.getLogger(__name__)

_PIL_FORMATS = {
    OutputFormat.JPEG: "JPEG",
    OutputFormat.PNG: "PNG",
    OutputFormat.WEBP: "WEBP",
    OutputFormat.AVIF: "AVIF",
    OutputFormat.TIFF: "TIFF",
    OutputFormat.BMP: "BMP",
    OutputFormat.GIF: "GIF",
}

_MIME_TYPES = {
    OutputFormat.JPEG: "image/jpeg",
    OutputFormat.PNG: "image/png",
    OutputFormat.WEBP: "image/webp",
    OutputFormat.AVIF: "image/avif",
    OutputFormat.TIFF: "image/tiff",
    OutputFormat.BMP: "image/bmp",
    OutputFormat.GIF: "image/gif",
}


def mime_type(fmt: OutputFormat) -> str:
    return _MIME_TYPES[fmt]


def output_filename(name: str, fmt: OutputFormat) -> str:
    """Original base name with the extension of the target format."""
    stem = PurePosixPath(name.replace("\\", "/")).stem
    return f"{stem or 'image'}.{fmt.value}"


def target_size(
    orig_width: int,
    orig_height: int,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> Tuple[int, int]:
    """Compute output dimensions.

    Both dimensions given: stretch to exactly that size.
    One dimension given: derive the other from the aspect ratio, never
    growing past the original size.
    """
    if width and height:
        return width, height

    aspect = orig_width / orig_height
    if width:
        if width >= orig_width:
            return orig_width, orig_height
        return width, max(1, round(width / aspect))
    if height:
        if height >= orig_height:
            return orig_width, orig_height
        return max(1, round(height * aspect)), height
    return orig_width, orig_height


def _has_alpha(image: Image.Image) -> bool:
    return "A" in image.getbands() or "transparency" in image.info


def _prepare_mode(image: Image.Image, fmt: OutputFormat) -> Image.Image:
    """Convert to a colour mode the target encoder can store."""
    if fmt in (OutputFormat.JPEG, OutputFormat.BMP):
        if image.mode not in ("RGB", "L"):
            return image.convert("RGB")
        return image
    if fmt in (OutputFormat.WEBP, OutputFormat.AVIF):
        if image.mode not in ("RGB", "RGBA"):
            return image.convert("RGBA" if _has_alpha(image) else "RGB")
        return image
    if image.mode not in ("1", "L", "LA", "P", "RGB", "RGBA"):
        return image.convert("RGBA" if _has_alpha(image) else "RGB")
    return image


def _save_options(settings: OptimizationSettings) -> Dict[str, Any]:
    fmt = settings.format
    if fmt == OutputFormat.JPEG:
        return {"quality": settings.quality, "optimize": True}
    if fmt == OutputFormat.WEBP:
        return {"quality": settings.quality, "method": 4}
    if fmt == OutputFormat.AVIF:
        return {"quality": settings.quality}
    if fmt in (OutputFormat.PNG, OutputFormat.GIF):
        return {"optimize": True}
    if fmt == OutputFormat.TIFF:
        return {"compression": "tiff_lzw"}
    return {}


def decode(data: bytes) -> Image.Image:
    """Decode image bytes fully, raising TranscodeError on bad input."""
    if not data:
        raise TranscodeError("Empty image data")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise TranscodeError(f"Invalid image data: {exc}") from exc
    return image


def transcode(data: bytes, settings: OptimizationSettings) -> bytes:
    """Resize and re-encode one image according to ``settings``.

    Raises:
        TranscodeError: when the input cannot be decoded or the target
            encoder fails. No partial output is ever returned.
    """
    image = decode(data)
    try:
        image = ImageOps.exif_transpose(image)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Ignoring unreadable EXIF orientation: %s", exc)

    orig_w, orig_h = image.size
    new_w, new_h = target_size(orig_w, orig_h, settings.width, settings.height)
    if (new_w, new_h) != (orig_w, orig_h):
        if image.mode in ("1", "P"):
            image = image.convert("RGBA" if _has_alpha(image) else "RGB")
        image = image.resize((new_w, new_h), Image.LANCZOS)

    image = _prepare_mode(image, settings.format)

    out = BytesIO()
    try:
        image.save(out, format=_PIL_FORMATS[settings.format], **_save_options(settings))
    except KeyError as exc:
        raise TranscodeError(
            f"Encoding to {settings.format.value} is not supported by this build"
        ) from exc
    except Exception as exc:  # noqa: BLE001
        raise TranscodeError(
            f"Failed to encode {settings.format.value}: {exc}"
        ) from exc

    logger.debug(
        "Transcoded %dx%d -> %dx%d %s (%d -> %d bytes)",
        orig_w, orig_h, new_w, new_h, settings.format.value, len(data), out.tell(),
    )
    return out.getvalue()
