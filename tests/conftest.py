import io
import threading
import time
from pathlib import Path

import pytest
from PIL import Image

from smart_batch_crop.analyzer import SaliencyAnalyzer
from smart_batch_crop.collection import ImageCollection
from smart_batch_crop.config import CONFIG_DIR_ENV
from smart_batch_crop.image_io import compute_fingerprint, generate_image_id
from smart_batch_crop.models import AppSettings, ExportSettings, FramingDescriptor, ManagedImage, SaliencyResult


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    config = tmp_path / "config"
    monkeypatch.setenv(CONFIG_DIR_ENV, str(config))
    return config


def encode(image: Image.Image, fmt: str = "PNG", **params) -> bytes:
    buf = io.BytesIO()
    image.save(buf, fmt, **params)
    return buf.getvalue()


def make_entry(w: int = 400, h: int = 300, name: str = "photo.png", color: str = "#336699") -> ManagedImage:
    image = Image.new("RGB", (w, h), color=color)
    return ManagedImage(
        id=generate_image_id(),
        name=name,
        img_w=w,
        img_h=h,
        image=image,
        framing=FramingDescriptor(fingerprint=compute_fingerprint(encode(image) + name.encode())),
    )


class FixedDetector:
    """Detector stub returning the top-left quarter of the image; counts calls."""

    def __init__(self) -> None:
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, image: Image.Image, target_w: int, target_h: int) -> SaliencyResult:
        with self._lock:
            self.calls += 1
        return SaliencyResult(0, 0, image.width / 4, image.height / 4, 1.0)


class BlockingDetector(FixedDetector):
    """Detector stub that waits for ``release`` before returning."""

    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def __call__(self, image: Image.Image, target_w: int, target_h: int) -> SaliencyResult:
        self.started.set()
        assert self.release.wait(timeout=10)
        return super().__call__(image, target_w, target_h)


@pytest.fixture
def detector() -> FixedDetector:
    return FixedDetector()


@pytest.fixture
def collection(detector: FixedDetector):
    coll = ImageCollection(
        analyzer=SaliencyAnalyzer(detector=detector, max_workers=2),
        settings=AppSettings(export=ExportSettings(target_w=1000, target_h=1000)),
    )
    yield coll
    coll.shutdown()


class PeakDetector(FixedDetector):
    """Detector stub that sleeps briefly and records the most calls seen in flight at once."""

    def __init__(self, delay: float = 0.05) -> None:
        super().__init__()
        self.delay = delay
        self.active = 0
        self.peak = 0

    def __call__(self, image: Image.Image, target_w: int, target_h: int) -> SaliencyResult:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        return super().__call__(image, target_w, target_h)


def is_closed(image: Image.Image) -> bool:
    try:
        image.getpixel((0, 0))
    except ValueError:
        return True
    return False
