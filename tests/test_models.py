import pytest

from smart_batch_crop.config import AUTO_ZOOM_CAP, MANUAL_ZOOM_CAP, MIN_CROP_SIZE
from smart_batch_crop.models import (
    ExportSettings, FramingDescriptor, SaliencyResult,
    base_size, calculate_crop, center_framing, clamp_center, crop_rect, display_rect,
    max_zoom, move_center, nudge, reset_framing, saliency_to_framing, set_zoom,
    fit_framing, transfer_framing, zoom_by,
)


def test_base_size_fits_width_or_height() -> None:
    assert base_size(1000, 500, 1.0) == (500.0, 500.0)
    assert base_size(1000, 500, 4.0) == (1000.0, 250.0)
    assert base_size(0, 500, 1.0) == (0.0, 0.0)


def test_default_framing_is_centered_fit() -> None:
    rect = crop_rect(1000, 500, FramingDescriptor(target_aspect=1.0))
    assert (rect.x, rect.y, rect.w, rect.h) == (250, 0, 500, 500)


@pytest.mark.parametrize("center", [(0.0, 0.0), (1.0, 1.0), (0.5, 0.5), (0.97, 0.03)])
@pytest.mark.parametrize("zoom", [1.0, 2.5, 10.0])
def test_crop_stays_inside_image(center: tuple[float, float], zoom: float) -> None:
    img_w, img_h = 1600, 900
    framing = FramingDescriptor(center[0], center[1], zoom, 4 / 3)
    calc = calculate_crop(img_w, img_h, framing)
    assert calc.crop_x >= 0 and calc.crop_y >= 0
    assert calc.crop_x + calc.crop_w <= img_w + 1e-9
    assert calc.crop_y + calc.crop_h <= img_h + 1e-9
    # Aspect of the exported rectangle is the target aspect up to rounding
    rect = crop_rect(img_w, img_h, framing)
    assert abs(rect.w / rect.h - 4 / 3) < 2 / rect.h


def test_display_rect_is_not_rounded() -> None:
    framing = FramingDescriptor(zoom=3.0, target_aspect=1.0)
    shown = display_rect(1000, 500, framing)
    exported = crop_rect(1000, 500, framing)
    assert shown.w == pytest.approx(500 / 3)
    assert exported.w == 167


def test_clamp_center_is_idempotent() -> None:
    once = clamp_center(0.99, -0.2, 300, 200, 1000, 800)
    assert once == (pytest.approx(0.85), pytest.approx(0.125))
    assert clamp_center(*once, 300, 200, 1000, 800) == once


def test_max_zoom_respects_minimum_crop_size() -> None:
    assert max_zoom(1000, 500, 1.0) == MANUAL_ZOOM_CAP
    assert max_zoom(200, 100, 1.0) == pytest.approx(100 / MIN_CROP_SIZE)
    rect = crop_rect(200, 100, FramingDescriptor(zoom=max_zoom(200, 100, 1.0), target_aspect=1.0))
    assert min(rect.w, rect.h) == MIN_CROP_SIZE


def test_set_zoom_clamps_and_reclamps_center() -> None:
    framing = FramingDescriptor(center_x=0.95, center_y=0.5, zoom=1.0, target_aspect=1.0)
    zoomed = set_zoom(framing, 1000, 500, 2.0)
    assert zoomed.zoom == 2.0
    # 250 px crop in a 1000 px wide image: center x may not exceed 0.875
    assert zoomed.center_x == pytest.approx(0.875)

    assert set_zoom(framing, 1000, 500, 0.2).zoom == 1.0
    assert set_zoom(framing, 1000, 500, 50.0).zoom == MANUAL_ZOOM_CAP
    assert zoom_by(zoomed, 1000, 500, 0.5).zoom == pytest.approx(2.5)


def test_move_and_nudge_keep_crop_inside() -> None:
    framing = FramingDescriptor(target_aspect=1.0)
    moved = move_center(framing, 1000, 500, 0.0, 0.9)
    assert (moved.center_x, moved.center_y) == (pytest.approx(0.25), pytest.approx(0.5))
    nudged = nudge(moved, 1000, 500, 0.1, 0.0)
    assert nudged.center_x == pytest.approx(0.35)


def test_reset_and_center_framing() -> None:
    framing = FramingDescriptor(0.2, 0.7, 3.0, 1.5, "abc")
    assert reset_framing(framing) == FramingDescriptor(0.5, 0.5, 1.0, 1.5, "abc")
    assert center_framing(framing) == FramingDescriptor(0.5, 0.5, 3.0, 1.5, "abc")


def test_saliency_to_framing_covers_region() -> None:
    region = SaliencyResult(x=100, y=50, w=400, h=400)
    framing = saliency_to_framing(region, 1000, 500, 1.0, "fp")
    assert framing.center_x == pytest.approx(0.3)
    assert framing.center_y == pytest.approx(0.5)
    assert framing.zoom == pytest.approx(500 / 400)
    assert framing.fingerprint == "fp"


def test_saliency_to_framing_zoom_is_capped() -> None:
    tiny = saliency_to_framing(SaliencyResult(10, 10, 5, 5), 1000, 1000, 1.0)
    assert tiny.zoom == AUTO_ZOOM_CAP
    huge = saliency_to_framing(SaliencyResult(0, 0, 1000, 1000), 1000, 500, 1.0)
    assert huge.zoom == 1.0


def test_transfer_framing_keeps_center_and_zoom() -> None:
    source = FramingDescriptor(0.3, 0.6, 2.0, 1.0, "source")
    moved = transfer_framing(source, 16 / 9, "target")
    assert (moved.center_x, moved.center_y, moved.zoom) == (0.3, 0.6, 2.0)
    assert moved.target_aspect == 16 / 9
    assert moved.fingerprint == "target"


def test_export_settings_aspect() -> None:
    assert ExportSettings(target_w=1920, target_h=1080).aspect == pytest.approx(16 / 9)


def test_square_target_on_landscape_image() -> None:
    calc = calculate_crop(1200, 800, FramingDescriptor(0.5, 0.5, 1.0, 1.0))
    assert (calc.base_w, calc.base_h) == (800.0, 800.0)
    rect = calc.rect.rounded()
    assert (rect.x, rect.y, rect.w, rect.h) == (200, 0, 800, 800)


@pytest.mark.parametrize("region", [
    SaliencyResult(100, 100, 300, 300),
    SaliencyResult(0, 200, 900, 200),
    SaliencyResult(700, 500, 60, 40),
])
def test_suggested_framing_covers_suggestion(region: SaliencyResult) -> None:
    framing = saliency_to_framing(region, 1200, 800, 4 / 3)
    rect = crop_rect(1200, 800, framing)
    # Crop covers the suggestion on its tighter axis unless the zoom cap kicked in
    if framing.zoom < AUTO_ZOOM_CAP:
        assert rect.w >= region.w - 1 or rect.h >= region.h - 1
    assert rect.w * rect.h >= region.w * region.h / framing.zoom ** 2 - 2 * (rect.w + rect.h)


def test_saliency_zoom_respects_minimum_crop_on_small_images() -> None:
    framing = saliency_to_framing(SaliencyResult(10, 10, 5, 5), 120, 120, 1.0)
    assert framing.zoom == pytest.approx(120 / MIN_CROP_SIZE)
    rect = crop_rect(120, 120, framing)
    assert rect.w >= MIN_CROP_SIZE and rect.h >= MIN_CROP_SIZE


def test_fit_framing_brings_zoom_and_center_within_limits() -> None:
    too_wide = fit_framing(FramingDescriptor(0.5, 0.5, 0.5, 1.0), 400, 300)
    assert too_wide.zoom == 1.0
    too_tight = fit_framing(FramingDescriptor(0.99, 0.01, 50.0, 1.0), 400, 300)
    assert too_tight.zoom == pytest.approx(max_zoom(400, 300, 1.0))
    rect = crop_rect(400, 300, too_tight)
    assert rect.x + rect.w <= 400 and rect.y >= 0
    assert (too_tight.center_x, too_tight.center_y) == pytest.approx((1 - 25 / 400, 25 / 300))

    inside = FramingDescriptor(0.4, 0.6, 1.5, 1.0, "fp")
    assert fit_framing(inside, 400, 300) == inside
