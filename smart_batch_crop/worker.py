"""
Rasterizer: crop, resize and encode one image (Qt-free).

Called from export worker threads.  Reads the shared pixel handle without
modifying it, so several renders (and analyses) of the same image may run at
once.
"""

import io

from PIL import Image

from smart_batch_crop.config import FORMAT_INFO, JPEG_SUBSAMPLING_DEFAULT, JPEG_SUBSAMPLING_MAP, PNG_COMPRESS_LEVEL
from smart_batch_crop.models import CropRect, ExportSettings


def render(
    image: Image.Image,
    rect: CropRect,
    out_w: int,
    out_h: int,
    fmt: str,
    quality: int,
) -> bytes:
    """
    Crop *rect* out of *image*, resize to ``out_w`` × ``out_h`` and encode.

    *rect* must be the integer rectangle from ``models.crop_rect``.  Raises
    ValueError for an unknown format or empty rectangle; encoder errors
    propagate as OSError.
    """
    if fmt not in FORMAT_INFO:
        raise ValueError(f"unsupported output format {fmt!r}")
    if rect.w <= 0 or rect.h <= 0:
        raise ValueError(f"empty crop rectangle {rect}")

    pil_format, _ext = FORMAT_INFO[fmt]
    cropped = image.crop(rect.box())
    resized = cropped.resize((out_w, out_h), Image.Resampling.LANCZOS)

    buf = io.BytesIO()
    if pil_format == "JPEG":
        resized.convert("RGB").save(
            buf, "JPEG",
            quality=quality,
            optimize=True,
            subsampling=JPEG_SUBSAMPLING_MAP[JPEG_SUBSAMPLING_DEFAULT],
        )
    elif pil_format == "PNG":
        resized.save(buf, "PNG", compress_level=PNG_COMPRESS_LEVEL)
    else:
        resized.save(buf, "WEBP", quality=quality)
    return buf.getvalue()


def export_filename(index: int, settings: ExportSettings) -> str:
    """``{prefix}{start_index + index}{suffix}.{ext}``, e.g. ``image-1.jpg``."""
    _pil_format, ext = FORMAT_INFO[settings.format]
    return f"{settings.prefix}{settings.start_index + index}{settings.suffix}.{ext}"
