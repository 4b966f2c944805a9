from pathlib import Path

import pytest
from PIL import Image

from smart_batch_crop.errors import DecodeFailed
from smart_batch_crop.image_io import (
    compute_fingerprint, generate_image_id, is_supported_file, load_and_normalize,
    make_thumbnail, unique_path,
)

from conftest import encode


def test_fingerprint_depends_on_leading_content_only() -> None:
    head = bytes(range(256)) * 40  # > 10 KiB
    assert compute_fingerprint(head + b"tail-a") == compute_fingerprint(head + b"tail-b")
    assert compute_fingerprint(b"x" + head) != compute_fingerprint(head)
    assert len(compute_fingerprint(b"")) == 16


def test_image_ids_are_unique() -> None:
    ids = {generate_image_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("img_") for i in ids)


def test_exif_orientation_is_applied() -> None:
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90° clockwise on display
    data = encode(Image.new("RGB", (40, 20), color="#ffffff"), "JPEG", exif=exif)

    image, w, h = load_and_normalize(data)
    assert (w, h) == (20, 40)
    assert image.size == (20, 40)


def test_palette_images_are_converted() -> None:
    image, w, h = load_and_normalize(encode(Image.new("P", (16, 8))))
    assert image.mode == "RGB"
    assert (w, h) == (16, 8)

    image, _w, _h = load_and_normalize(encode(Image.new("LA", (16, 8))))
    assert image.mode == "RGBA"


def test_garbage_bytes_fail_to_decode() -> None:
    with pytest.raises(DecodeFailed):
        load_and_normalize(b"definitely not an image")


def test_truncated_psd_fails_to_decode() -> None:
    with pytest.raises(DecodeFailed):
        load_and_normalize(b"8BPS" + b"\x00" * 8)


def test_thumbnail_never_upscales() -> None:
    assert make_thumbnail(Image.new("RGB", (1600, 800)), 400).size == (400, 200)
    assert make_thumbnail(Image.new("RGB", (100, 50)), 400).size == (100, 50)


def test_supported_extensions() -> None:
    assert is_supported_file(Path("a/B.JPG"))
    assert is_supported_file(Path("layers.psd"))
    assert not is_supported_file(Path("notes.txt"))


def test_unique_path_appends_counter(tmp_path: Path) -> None:
    target = tmp_path / "image-1.jpg"
    assert unique_path(target) == target
    target.write_bytes(b"x")
    assert unique_path(target) == tmp_path / "image-1-01.jpg"
