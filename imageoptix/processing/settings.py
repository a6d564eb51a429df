"""Batch-wide optimization settings and supported output formats."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Largest width/height a caller may request
MAX_DIMENSION = 16384


class OutputFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"
    TIFF = "tiff"
    BMP = "bmp"
    GIF = "gif"


# Formats whose encoder honours the quality setting
LOSSY_FORMATS = frozenset({OutputFormat.JPEG, OutputFormat.WEBP, OutputFormat.AVIF})


class OptimizationSettings(BaseModel):
    """Transform applied to every image of a batch.

    Resize rule: no dimension means no resize, one dimension derives the
    other from the source aspect ratio, both dimensions stretch.
    """

    model_config = {"frozen": True}

    format: OutputFormat
    quality: int = Field(80, ge=1, le=100)
    width: Optional[int] = Field(None, gt=0, le=MAX_DIMENSION)
    height: Optional[int] = Field(None, gt=0, le=MAX_DIMENSION)

    @property
    def resizes(self) -> bool:
        return self.width is not None or self.height is not None

    @property
    def is_lossy(self) -> bool:
        return self.format in LOSSY_FORMATS
