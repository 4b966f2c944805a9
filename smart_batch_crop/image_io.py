"""
Qt-free image I/O utilities.

Provides helpers to decode images (including PSD) with orientation
normalization, compute content fingerprints, build previews, and generate
unique output paths.  Safe to import in worker threads.
"""

import hashlib
import io
import logging
import uuid
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError
from psd_tools import PSDImage

from smart_batch_crop.config import FINGERPRINT_READ_SIZE, SUPPORTED_EXTENSIONS, THUMBNAIL_MAX_SIZE
from smart_batch_crop.errors import DecodeFailed, InvalidImage

logger = logging.getLogger(__name__)

# Allow very large images (Pillow's default limit is ~178MP)
Image.MAX_IMAGE_PIXELS = None

_PSD_SIGNATURE = b"8BPS"


def compute_fingerprint(data: bytes) -> str:
    """
    Compute a content fingerprint for an image file's bytes.

    Hashes the first 10 KB with SHA-256 and keeps 16 hex characters.  The
    same content yields the same key regardless of filename, so a framing
    chosen once is recalled when the file is loaded again.  Collisions between
    files sharing their first 10 KB are accepted.
    """
    return hashlib.sha256(data[:FINGERPRINT_READ_SIZE]).hexdigest()[:16]


def generate_image_id() -> str:
    """Return a fresh, process-unique identity for a collection entry."""
    return f"img_{uuid.uuid4().hex[:12]}"


def is_supported_file(path: Path) -> bool:
    return path.suffix.lower() in SUPPORTED_EXTENSIONS


def _open_psd(data: bytes) -> Image.Image:
    # psd-tools raises a variety of parser errors on malformed files
    try:
        composite = PSDImage.open(io.BytesIO(data)).composite()
    except Exception as exc:
        raise DecodeFailed(f"PSD decode failed: {exc}") from exc
    if composite is None:
        raise DecodeFailed("PSD has no visible layers")
    return composite


def load_and_normalize(data: bytes) -> tuple[Image.Image, int, int]:
    """
    Decode image bytes and apply any EXIF orientation.

    Returns ``(image, width, height)`` where width/height are already
    display-correct.  Pixels are fully loaded so the handle can be read from
    several threads at once.

    Raises DecodeFailed if the bytes are not a readable image, InvalidImage
    if the decoded image has no area.
    """
    try:
        if data[:4] == _PSD_SIGNATURE:
            img = _open_psd(data)
        else:
            img = Image.open(io.BytesIO(data))
            img = ImageOps.exif_transpose(img)
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as exc:
        raise DecodeFailed(str(exc)) from exc

    w, h = img.size
    if w <= 0 or h <= 0:
        raise InvalidImage(f"image has invalid dimensions {w}x{h}")
    return img, w, h


def make_thumbnail(img: Image.Image, max_size: int = THUMBNAIL_MAX_SIZE) -> Image.Image:
    """Downscaled copy whose longest side is at most *max_size* (never upscales)."""
    scale = min(max_size / img.width, max_size / img.height, 1.0)
    size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
    return img.resize(size, Image.Resampling.BILINEAR)


def unique_path(out_path: Path) -> Path:
    """Return a unique path by appending -01, -02, etc. if file already exists."""
    if not out_path.exists():
        return out_path
    stem = out_path.stem
    suffix = out_path.suffix
    parent = out_path.parent
    counter = 1
    while True:
        candidate = parent / f"{stem}-{counter:02d}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1
