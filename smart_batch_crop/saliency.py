"""
Built-in saliency detector.

Finds the window of the target aspect ratio that holds the most visual
"importance".  Importance is OpenCV's spectral-residual saliency map plus a
weighted colour-saturation term.  The search runs on a downscaled copy of the
image and uses a summed-area table, so every candidate window is scored in
constant time.  The result is mapped back to source pixels.

This module is Qt-free and safe to call from worker threads: it only reads
the shared pixel handle, and each call creates its own OpenCV detector.
"""

import math

import cv2
import numpy as np
from PIL import Image

from smart_batch_crop.config import (
    ANALYSIS_SIZE, DETECTOR_MIN_SCALE, DETECTOR_SCALE_STEP,
    DETECTOR_STEP_RATIO, DETECTOR_SATURATION_WEIGHT,
)
from smart_batch_crop.errors import AnalysisFailed
from smart_batch_crop.models import SaliencyResult, base_size


def _normalize_map(src: np.ndarray) -> np.ndarray:
    arr = np.nan_to_num(src.astype(np.float32))
    mn = float(np.min(arr))
    mx = float(np.max(arr))
    if mx <= mn + 1e-8:
        return np.zeros_like(arr, dtype=np.float32)
    return (arr - mn) / (mx - mn)


def _resize_for_analysis(img: Image.Image, max_side: int) -> tuple[Image.Image, float]:
    """Downscale so the longest side is *max_side*; returns the image and the applied scale."""
    scale = max_side / max(img.width, img.height)
    if scale >= 1.0:
        return img.convert("RGB"), 1.0
    size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
    return img.convert("RGB").resize(size, Image.Resampling.BILINEAR), size[0] / img.width


def saliency_map(img: Image.Image) -> np.ndarray:
    """OpenCV static saliency (spectral residual) of *img*, normalized to ``[0, 1]``."""
    bgr = cv2.cvtColor(np.asarray(img.convert("RGB")), cv2.COLOR_RGB2BGR)
    detector = cv2.saliency.StaticSaliencySpectralResidual_create()
    success, values = detector.computeSaliency(bgr)
    if not success or values is None:
        raise AnalysisFailed("saliency computation failed")
    return _normalize_map(values)


def importance_map(img: Image.Image) -> np.ndarray:
    """Per-pixel importance in ``[0, 1]``: saliency plus weighted saturation."""
    rgb = np.asarray(img.convert("RGB"), dtype=np.float32) / 255.0
    hi = rgb.max(axis=2)
    lo = rgb.min(axis=2)
    saturation = np.where(hi > 0, (hi - lo) / np.maximum(hi, 1e-6), 0.0)

    return _normalize_map(saliency_map(img) + DETECTOR_SATURATION_WEIGHT * _normalize_map(saturation))


def _summed_area(values: np.ndarray) -> np.ndarray:
    table = np.zeros((values.shape[0] + 1, values.shape[1] + 1), dtype=np.float64)
    table[1:, 1:] = values.cumsum(axis=0).cumsum(axis=1)
    return table


def _positions(limit: int, step: int) -> np.ndarray:
    """Window offsets ``0..limit`` with the given stride, always including *limit*."""
    pos = np.arange(0, limit + 1, step)
    if pos[-1] != limit:
        pos = np.append(pos, limit)
    return pos


def _best_window(
    importance: np.ndarray, aspect: float,
) -> tuple[int, int, int, int, float]:
    """Search candidate windows; returns ``(x, y, w, h, window_sum)`` of the best one."""
    h, w = importance.shape
    table = _summed_area(importance)
    total_area = float(w * h)
    base_w, base_h = base_size(w, h, aspect)
    step = max(1, round(min(w, h) * DETECTOR_STEP_RATIO))

    best = None
    best_score = -1.0
    n_scales = int(round((1.0 - DETECTOR_MIN_SCALE) / DETECTOR_SCALE_STEP)) + 1
    for i in range(n_scales):
        scale = 1.0 - i * DETECTOR_SCALE_STEP
        cw = max(1, min(w, int(base_w * scale)))
        ch = max(1, min(h, int(base_h * scale)))
        ys = _positions(h - ch, step)[:, None]
        xs = _positions(w - cw, step)[None, :]
        sums = table[ys + ch, xs + cw] - table[ys, xs + cw] - table[ys + ch, xs] + table[ys, xs]
        area = float(cw * ch)
        scores = sums / area * math.sqrt(area / total_area)
        iy, ix = np.unravel_index(int(np.argmax(scores)), scores.shape)
        if scores[iy, ix] > best_score:
            best_score = float(scores[iy, ix])
            best = (int(xs[0, ix]), int(ys[iy, 0]), cw, ch, float(sums[iy, ix]))
    return best


def detect_saliency(img: Image.Image, target_w: int, target_h: int) -> SaliencyResult:
    """
    Suggest the most interesting ``target_w:target_h`` region of *img*.

    ``score`` is the share of the image's total importance inside the region;
    for featureless images the centered fit is returned with score 0.

    Raises AnalysisFailed for unusable input.
    """
    if img is None or img.width <= 0 or img.height <= 0:
        raise AnalysisFailed("no pixels to analyze")
    if target_w <= 0 or target_h <= 0:
        raise AnalysisFailed(f"invalid target size {target_w}x{target_h}")

    aspect = target_w / target_h
    small, scale = _resize_for_analysis(img, ANALYSIS_SIZE)
    if small.width < 2 or small.height < 2:
        raise AnalysisFailed(f"image too small to analyze ({img.width}x{img.height})")

    base_w, base_h = base_size(img.width, img.height, aspect)
    centered = SaliencyResult((img.width - base_w) / 2, (img.height - base_h) / 2, base_w, base_h, 0.0)
    if np.ptp(np.asarray(small)) == 0:
        return centered  # flat colour, nothing to find

    importance = importance_map(small)
    total = float(importance.sum())
    if total <= 1e-8:
        return centered

    x, y, cw, ch, window_sum = _best_window(importance, aspect)

    # Back to source pixels, clamped to bounds
    sw = min(img.width, cw / scale)
    sh = min(img.height, ch / scale)
    sx = max(0.0, min(img.width - sw, x / scale))
    sy = max(0.0, min(img.height - sh, y / scale))
    return SaliencyResult(sx, sy, sw, sh, window_sum / total)
