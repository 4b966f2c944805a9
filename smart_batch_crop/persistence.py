"""
Persistent settings and framings: remember choices across sessions.

Images are identified by a content fingerprint (see
``image_io.compute_fingerprint``), so a framing survives renames and moves of
the source file.  Both files use a versioned envelope::

    settings.json
    {"version": 1, "settings": {"enable_smart_crop": true, ..., "export": {...}}}

    framings.json
    {
        "version": 1,
        "framings": {
            "<fingerprint>": {"center_x": 0.5, "center_y": 0.4, "zoom": 1.25, "target_aspect": 1.5}
        }
    }

Everything here is best-effort: read or write failures are logged and
reported as "nothing stored", never raised.  This module is Qt-free.
"""

import json
import logging
from dataclasses import asdict, fields
from pathlib import Path

from smart_batch_crop.config import OUTPUT_FORMATS, QUALITY_MAX, QUALITY_MIN, config_dir
from smart_batch_crop.errors import PersistenceFailed
from smart_batch_crop.models import AppSettings, ExportSettings, FramingDescriptor

logger = logging.getLogger(__name__)

_SETTINGS_FILENAME = "settings.json"
_FRAMINGS_FILENAME = "framings.json"
_FORMAT_VERSION = 1


# =============================================================================
# Serialization helpers
# =============================================================================
def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def framing_to_dict(framing: FramingDescriptor) -> dict:
    """Serialize a framing to a JSON-safe dict (the fingerprint is the map key)."""
    return {
        "center_x": framing.center_x,
        "center_y": framing.center_y,
        "zoom": framing.zoom,
        "target_aspect": framing.target_aspect,
    }


def dict_to_framing(data: object, fingerprint: str | None = None) -> FramingDescriptor | None:
    """Deserialize a framing dict, or None if any field is missing or out of range."""
    if not isinstance(data, dict):
        return None
    values = [data.get(k) for k in ("center_x", "center_y", "zoom", "target_aspect")]
    if not all(_is_number(v) for v in values):
        return None
    cx, cy, zoom, aspect = (float(v) for v in values)
    if not (0.0 <= cx <= 1.0 and 0.0 <= cy <= 1.0) or zoom < 1.0 or aspect <= 0:
        return None
    return FramingDescriptor(cx, cy, zoom, aspect, fingerprint)


def settings_to_dict(settings: AppSettings) -> dict:
    return asdict(settings)


def dict_to_settings(data: object) -> AppSettings | None:
    """
    Deserialize settings, keeping defaults for any field that is missing or invalid.

    Returns None if *data* is not a dict at all.
    """
    if not isinstance(data, dict):
        return None

    defaults = AppSettings()
    top = {}
    for f in fields(AppSettings):
        if f.name == "export":
            continue
        value = data.get(f.name)
        top[f.name] = value if isinstance(value, bool) else getattr(defaults, f.name)

    raw_export = data.get("export") if isinstance(data.get("export"), dict) else {}
    export_defaults = ExportSettings()
    export = {}
    for f in fields(ExportSettings):
        value = raw_export.get(f.name)
        default = getattr(export_defaults, f.name)
        if f.name == "format":
            ok = value in OUTPUT_FORMATS
        elif f.name == "quality":
            ok = isinstance(value, int) and not isinstance(value, bool) and QUALITY_MIN <= value <= QUALITY_MAX
        elif f.name in ("target_w", "target_h"):
            ok = isinstance(value, int) and not isinstance(value, bool) and value > 0
        elif f.name == "start_index":
            ok = isinstance(value, int) and not isinstance(value, bool) and value >= 0
        else:
            ok = isinstance(value, type(default))
        export[f.name] = value if ok else default

    return AppSettings(export=ExportSettings(**export), **top)


# =============================================================================
# Local JSON store
# =============================================================================
class LocalPersistence:
    """JSON files in the user's config directory (or *directory* if given)."""

    def __init__(self, directory: Path | None = None):
        self._directory = directory

    @property
    def directory(self) -> Path:
        if self._directory is None:
            self._directory = config_dir()
        return self._directory

    # --- envelope I/O ---

    def _load_envelope(self, path: Path, payload_key: str) -> object:
        """Read one envelope file and return its payload; raises PersistenceFailed."""
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            raise PersistenceFailed(f"failed to read {path.name}: {exc}") from exc

        if not isinstance(raw, dict) or raw.get("version") != _FORMAT_VERSION or payload_key not in raw:
            raise PersistenceFailed(f"{path.name} version mismatch or invalid format")
        return raw[payload_key]

    def _read(self, filename: str, payload_key: str) -> object | None:
        try:
            path = self.directory / filename
            if not path.exists():
                logger.debug("No %s found at %s, starting fresh", filename, path)
                return None
            return self._load_envelope(path, payload_key)
        except (PersistenceFailed, OSError) as exc:
            logger.warning("%s (starting fresh)", exc)
            return None

    def _write(self, filename: str, payload_key: str, payload: object) -> bool:
        envelope = {"version": _FORMAT_VERSION, payload_key: payload}
        try:
            path = self.directory / filename
            path.write_text(json.dumps(envelope, indent=2, ensure_ascii=False), encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Could not write %s: %s", filename, exc)
            return False
        logger.debug("Saved %s to %s", filename, path)
        return True

    # --- settings ---

    def load_settings(self) -> AppSettings | None:
        settings = dict_to_settings(self._read(_SETTINGS_FILENAME, "settings"))
        if settings is not None:
            logger.info("Loaded settings from %s", self.directory / _SETTINGS_FILENAME)
        return settings

    def save_settings(self, settings: AppSettings) -> None:
        self._write(_SETTINGS_FILENAME, "settings", settings_to_dict(settings))

    # --- framings ---

    def load_framings(self) -> dict[str, FramingDescriptor] | None:
        """Return ``{fingerprint: framing}``, skipping malformed entries, or None if nothing usable is stored."""
        raw = self._read(_FRAMINGS_FILENAME, "framings")
        if not isinstance(raw, dict):
            return None

        framings: dict[str, FramingDescriptor] = {}
        for fingerprint, data in raw.items():
            framing = dict_to_framing(data, fingerprint)
            if framing is not None:
                framings[fingerprint] = framing
            else:
                logger.debug("Skipping malformed stored framing for %s", fingerprint)

        logger.info("Loaded %d stored framing(s)", len(framings))
        return framings

    def save_framings(self, framings: dict[str, FramingDescriptor]) -> None:
        self._write(
            _FRAMINGS_FILENAME, "framings",
            {fp: framing_to_dict(f) for fp, f in framings.items()},
        )

    def clear_all(self) -> None:
        for filename in (_SETTINGS_FILENAME, _FRAMINGS_FILENAME):
            try:
                (self.directory / filename).unlink(missing_ok=True)
            except OSError as exc:
                logger.error("Could not remove %s: %s", filename, exc)
