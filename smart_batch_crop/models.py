"""
Data models and crop-geometry utilities.

``FramingDescriptor`` is the resolution-independent description of a crop
(normalized center, zoom, target aspect).  The helper functions below turn a
framing into source-pixel rectangles and back; all of them are pure and take
image dimensions explicitly, so one framing can be applied to images of any
size.

Zoom semantics: at ``zoom == 1`` the crop is the largest rectangle of the
target aspect that fits in the image ("fit"); larger values shrink the crop.
"""

from dataclasses import dataclass, field, replace

from PIL import Image

from smart_batch_crop.config import (
    AUTO_ZOOM_CAP, MANUAL_ZOOM_CAP, MIN_CROP_SIZE,
    OUTPUT_FORMAT_DEFAULT, QUALITY_DEFAULT,
    TARGET_WIDTH_DEFAULT, TARGET_HEIGHT_DEFAULT,
    EXPORT_PREFIX_DEFAULT, EXPORT_SUFFIX_DEFAULT, EXPORT_START_INDEX_DEFAULT,
)


# =============================================================================
# Data classes
# =============================================================================
@dataclass(frozen=True)
class FramingDescriptor:
    """Normalized crop description: where (center), how tight (zoom), what shape (aspect)."""
    center_x: float = 0.5
    center_y: float = 0.5
    zoom: float = 1.0
    target_aspect: float = 1.0
    fingerprint: str | None = None  # content key for persistence


@dataclass(frozen=True)
class CropRect:
    """Crop rectangle in image coordinates."""
    x: float = 0
    y: float = 0
    w: float = 0
    h: float = 0

    def rounded(self) -> "CropRect":
        return CropRect(round(self.x), round(self.y), round(self.w), round(self.h))

    def box(self) -> tuple:
        """Pillow ``(left, upper, right, lower)`` box."""
        return (self.x, self.y, self.x + self.w, self.y + self.h)

    @property
    def area(self) -> float:
        return self.w * self.h


@dataclass(frozen=True)
class CropCalculation:
    """Intermediate values of ``calculate_crop``."""
    base_w: float
    base_h: float
    crop_w: float
    crop_h: float
    crop_x: float
    crop_y: float

    @property
    def rect(self) -> CropRect:
        return CropRect(self.crop_x, self.crop_y, self.crop_w, self.crop_h)


@dataclass(frozen=True)
class SaliencyResult:
    """Detector suggestion in source pixels, for one (image, target size) pair."""
    x: float
    y: float
    w: float
    h: float
    score: float = 1.0


@dataclass(frozen=True)
class ManagedImage:
    """One loaded image and its editing state.

    Instances are immutable snapshots; the collection replaces an entry
    wholesale on every transition.  ``image`` is the decoded pixel handle and
    is shared, read-only, between snapshots of the same entry.
    """
    id: str
    name: str
    img_w: int
    img_h: int
    image: Image.Image | None = field(default=None, repr=False, compare=False)
    thumbnail: Image.Image | None = field(default=None, repr=False, compare=False)
    framing: FramingDescriptor = field(default_factory=FramingDescriptor)
    saliency: SaliencyResult | None = None
    processing: bool = False
    analysis_pending: bool = False

    @property
    def fingerprint(self) -> str | None:
        return self.framing.fingerprint

    def release(self) -> None:
        """Free decoded pixels and the preview."""
        for img in (self.image, self.thumbnail):
            if img is not None:
                img.close()


@dataclass(frozen=True)
class ExportSettings:
    format: str = OUTPUT_FORMAT_DEFAULT  # jpeg | png | webp
    quality: int = QUALITY_DEFAULT       # 1-100
    target_w: int = TARGET_WIDTH_DEFAULT
    target_h: int = TARGET_HEIGHT_DEFAULT
    aspect_locked: bool = True
    prefix: str = EXPORT_PREFIX_DEFAULT
    suffix: str = EXPORT_SUFFIX_DEFAULT
    start_index: int = EXPORT_START_INDEX_DEFAULT

    @property
    def aspect(self) -> float:
        return self.target_w / self.target_h


@dataclass(frozen=True)
class AppSettings:
    enable_crop: bool = True          # show crop overlay in previews
    enable_smart_crop: bool = True    # auto-detect framing for new images
    show_rule_of_thirds: bool = True
    export: ExportSettings = field(default_factory=ExportSettings)


# =============================================================================
# Crop math utilities
# =============================================================================
def base_size(img_w: float, img_h: float, aspect: float) -> tuple[float, float]:
    """Largest ``aspect``-shaped rectangle that fits inside the image."""
    if img_w <= 0 or img_h <= 0:
        return 0.0, 0.0
    if aspect >= img_w / img_h:
        # Target is wider than the image: fit to width
        return float(img_w), img_w / aspect
    # Target is taller than the image: fit to height
    return img_h * aspect, float(img_h)


def calculate_crop(img_w: int, img_h: int, framing: FramingDescriptor) -> CropCalculation:
    """Map a framing onto the image, clamping the crop to image bounds."""
    base_w, base_h = base_size(img_w, img_h, framing.target_aspect)
    if base_w == 0 or base_h == 0:
        return CropCalculation(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    crop_w = base_w / framing.zoom
    crop_h = base_h / framing.zoom

    crop_x = framing.center_x * img_w - crop_w / 2
    crop_y = framing.center_y * img_h - crop_h / 2
    crop_x = max(0.0, min(img_w - crop_w, crop_x))
    crop_y = max(0.0, min(img_h - crop_h, crop_y))

    return CropCalculation(base_w, base_h, crop_w, crop_h, crop_x, crop_y)


def crop_rect(img_w: int, img_h: int, framing: FramingDescriptor) -> CropRect:
    """Integer crop rectangle in source pixels, as handed to the rasterizer."""
    return calculate_crop(img_w, img_h, framing).rect.rounded()


def display_rect(img_w: int, img_h: int, framing: FramingDescriptor) -> CropRect:
    """Unrounded crop rectangle for overlay drawing.

    Interactive dragging repaints from this so that rounding never accumulates.
    """
    return calculate_crop(img_w, img_h, framing).rect


def clamp_center(
    center_x: float, center_y: float,
    crop_w: float, crop_h: float,
    img_w: int, img_h: int,
) -> tuple[float, float]:
    """Clamp a normalized center so a crop of the given size stays inside the image."""
    if img_w <= 0 or img_h <= 0:
        return center_x, center_y
    min_x = (crop_w / 2) / img_w
    min_y = (crop_h / 2) / img_h
    return (
        max(min_x, min(1 - min_x, center_x)),
        max(min_y, min(1 - min_y, center_y)),
    )


def max_zoom(img_w: int, img_h: int, aspect: float) -> float:
    """Zoom at which the crop's smaller side reaches MIN_CROP_SIZE, capped at MANUAL_ZOOM_CAP."""
    base_w, base_h = base_size(img_w, img_h, aspect)
    return min(base_w / MIN_CROP_SIZE, base_h / MIN_CROP_SIZE, MANUAL_ZOOM_CAP)


def clamp_zoom(zoom: float, img_w: int, img_h: int, aspect: float) -> float:
    return max(1.0, min(max_zoom(img_w, img_h, aspect), zoom))


def saliency_to_framing(
    result: SaliencyResult, img_w: int, img_h: int, target_aspect: float,
    fingerprint: str | None = None,
) -> FramingDescriptor:
    """Convert a detector rectangle into a framing for ``target_aspect``.

    The zoom makes the crop cover the suggested region on its tighter axis,
    limited to ``[1, AUTO_ZOOM_CAP]`` and to the zoom at which the crop
    would drop below ``MIN_CROP_SIZE`` on this image.
    """
    center_x = (result.x + result.w / 2) / img_w
    center_y = (result.y + result.h / 2) / img_h

    base_w, base_h = base_size(img_w, img_h, target_aspect)
    zoom = min(base_w / result.w, base_h / result.h) if result.w > 0 and result.h > 0 else 1.0
    zoom = max(1.0, min(zoom, AUTO_ZOOM_CAP, max_zoom(img_w, img_h, target_aspect)))

    return FramingDescriptor(center_x, center_y, zoom, target_aspect, fingerprint)


def transfer_framing(
    source: FramingDescriptor, target_aspect: float, fingerprint: str | None = None,
) -> FramingDescriptor:
    """Reuse a framing on another image.

    Center and zoom are relative, so they carry over unchanged regardless of
    the other image's resolution; only the aspect (and content key) change.
    """
    return replace(source, target_aspect=target_aspect, fingerprint=fingerprint)


# =============================================================================
# Interactive edits
# =============================================================================
def move_center(
    framing: FramingDescriptor, img_w: int, img_h: int, center_x: float, center_y: float,
) -> FramingDescriptor:
    calc = calculate_crop(img_w, img_h, framing)
    cx, cy = clamp_center(center_x, center_y, calc.crop_w, calc.crop_h, img_w, img_h)
    return replace(framing, center_x=cx, center_y=cy)


def nudge(framing: FramingDescriptor, img_w: int, img_h: int, dx: float, dy: float) -> FramingDescriptor:
    return move_center(framing, img_w, img_h, framing.center_x + dx, framing.center_y + dy)


def set_zoom(framing: FramingDescriptor, img_w: int, img_h: int, zoom: float) -> FramingDescriptor:
    """Change zoom within ``[1, max_zoom]`` and re-clamp the center for the new crop size."""
    zoomed = replace(framing, zoom=clamp_zoom(zoom, img_w, img_h, framing.target_aspect))
    return move_center(zoomed, img_w, img_h, zoomed.center_x, zoomed.center_y)


def reset_framing(framing: FramingDescriptor) -> FramingDescriptor:
    """Back to the centered fit (zoom 1)."""
    return replace(framing, center_x=0.5, center_y=0.5, zoom=1.0)


def center_framing(framing: FramingDescriptor) -> FramingDescriptor:
    return replace(framing, center_x=0.5, center_y=0.5)


def zoom_by(framing: FramingDescriptor, img_w: int, img_h: int, delta: float) -> FramingDescriptor:
    return set_zoom(framing, img_w, img_h, framing.zoom + delta)


def fit_framing(framing: FramingDescriptor, img_w: int, img_h: int) -> FramingDescriptor:
    """Bring any framing within this image's limits: zoom in ``[1, max_zoom]``, crop inside the image."""
    return set_zoom(framing, img_w, img_h, framing.zoom)
