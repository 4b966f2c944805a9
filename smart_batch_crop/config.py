"""
Application constants and configuration.

Geometry limits, analysis tuning, export defaults and editor step sizes all
live here.  The ``config_dir()`` helper returns the platform-appropriate
config directory and is shared by the persistence layer.
"""

import os
import sys
from pathlib import Path

# =============================================================================
# APP IDENTITY & CONFIG DIRECTORY
# =============================================================================
APP_NAME = "smart-batch-crop"

# Overrides the platform directory (tests, portable installs)
CONFIG_DIR_ENV = "SMART_BATCH_CROP_CONFIG_DIR"


def config_dir() -> Path:
    """Return the platform-appropriate config directory, creating it if needed."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        directory = Path(override)
    else:
        if sys.platform == "win32":
            base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        elif sys.platform == "darwin":
            base = Path.home() / "Library" / "Application Support"
        else:
            base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
        directory = base / APP_NAME
    directory.mkdir(parents=True, exist_ok=True)
    return directory


# =============================================================================
# CROP GEOMETRY
# =============================================================================
# Minimum crop size (pixels) in either dimension
MIN_CROP_SIZE = 50

# Upper bound for zoom chosen by the user
MANUAL_ZOOM_CAP = 10.0

# Upper bound for zoom derived from a saliency suggestion.  Kept separate from
# MANUAL_ZOOM_CAP: automatic crops stay conservative.
AUTO_ZOOM_CAP = 5.0

# =============================================================================
# SMART CROP ANALYSIS
# =============================================================================
# Max detector invocations in flight during batch analysis
DEFAULT_CONCURRENCY = 2

# Longest side of the downscaled image the detector works on
ANALYSIS_SIZE = 256

# Smallest candidate window, relative to the largest window of the target aspect
DETECTOR_MIN_SCALE = 0.5
DETECTOR_SCALE_STEP = 0.1

# Candidate window stride, as a fraction of the analysis image's shorter side
DETECTOR_STEP_RATIO = 0.04

# Weight of colour saturation relative to edge strength in the importance map
DETECTOR_SATURATION_WEIGHT = 0.4

# =============================================================================
# IMAGE LOADING
# =============================================================================
SUPPORTED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".gif", ".webp", ".tiff", ".tif", ".psd"}

# Longest side of the cached low-resolution preview
THUMBNAIL_MAX_SIZE = 400

# Longest side of the pixmap shown in the framing editor
EDITOR_PREVIEW_SIZE = 1600

# Number of bytes hashed for the content fingerprint (10 KB)
FINGERPRINT_READ_SIZE = 10 * 1024

# =============================================================================
# EXPORT
# =============================================================================
OUTPUT_FORMATS = ["jpeg", "png", "webp"]
OUTPUT_FORMAT_DEFAULT = "jpeg"

# Output format -> (Pillow format name, file extension)
FORMAT_INFO = {
    "jpeg": ("JPEG", "jpg"),
    "png": ("PNG", "png"),
    "webp": ("WEBP", "webp"),
}

QUALITY_DEFAULT = 90
QUALITY_MIN = 1
QUALITY_MAX = 100

# PNG compression level (0-9, 9 = maximum compression)
PNG_COMPRESS_LEVEL = 9

# Map subsampling labels to Pillow integer values
JPEG_SUBSAMPLING_MAP = {"4:4:4": 0, "4:2:2": 1, "4:2:0": 2}
JPEG_SUBSAMPLING_DEFAULT = "4:2:0"

TARGET_WIDTH_DEFAULT = 1200
TARGET_HEIGHT_DEFAULT = 800
TARGET_SIZE_MAX = 20000

EXPORT_PREFIX_DEFAULT = "image-"
EXPORT_SUFFIX_DEFAULT = ""
EXPORT_START_INDEX_DEFAULT = 1

ARCHIVE_NAME_TEMPLATE = "smart-batch-crop-export-{date}.zip"

# Aspect presets: (label, width / height)
ASPECT_PRESETS = [
    ("1:1 Square", 1.0),
    ("4:3 Standard", 4 / 3),
    ("3:2 Classic", 3 / 2),
    ("16:9 Widescreen", 16 / 9),
    ("9:16 Portrait", 9 / 16),
    ("21:9 Ultrawide", 21 / 9),
]

# =============================================================================
# INTERACTIVE EDITING
# =============================================================================
# Center nudge amounts (normalized image coordinates)
NUDGE_SMALL = 0.01
NUDGE_LARGE = 0.05

ZOOM_STEP_SMALL = 0.1
ZOOM_STEP_LARGE = 0.2

# Relative zoom change per wheel delta unit (one notch = 120 units)
WHEEL_ZOOM_FACTOR = 0.001
