"""
Batch export: render every image with its current framing.

One image produces a single encoded file; several produce a ZIP archive.
Images are rendered on a thread pool; a failure in one image is recorded and
the rest of the batch continues.
"""

import io
import logging
import os
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable

from smart_batch_crop.collection import ImageCollection
from smart_batch_crop.config import ARCHIVE_NAME_TEMPLATE
from smart_batch_crop.errors import NoImagesToExport, RasterizationFailed, UnknownImage
from smart_batch_crop.image_io import unique_path
from smart_batch_crop.models import ExportSettings, ManagedImage, crop_rect
from smart_batch_crop.worker import export_filename, render

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    filename: str
    data: bytes
    is_archive: bool = False
    exported: list[str] = field(default_factory=list)             # output filenames
    failed: list[tuple[str, str]] = field(default_factory=list)   # (image name, reason)


def _render_one(index: int, image: ManagedImage, settings: ExportSettings) -> tuple[str, bytes]:
    filename = export_filename(index, settings)
    if image.image is None:
        raise RasterizationFailed(image.name, "image not loaded")
    rect = crop_rect(image.img_w, image.img_h, image.framing)
    try:
        data = render(image.image, rect, settings.target_w, settings.target_h, settings.format, settings.quality)
    except (OSError, ValueError) as exc:
        raise RasterizationFailed(image.name, str(exc)) from exc
    return filename, data


def _mark_processing(collection: ImageCollection | None, image_id: str, processing: bool) -> None:
    if collection is None:
        return
    try:
        collection.set_processing(image_id, processing)
    except UnknownImage:
        pass  # removed while exporting


def export_images(
    images: list[ManagedImage],
    settings: ExportSettings,
    on_progress: Callable[[int, int], None] | None = None,
    collection: ImageCollection | None = None,
    max_workers: int | None = None,
) -> ExportResult:
    """
    Render *images* (in collection order) and package the output.

    Filenames are ``{prefix}{start_index + i}{suffix}.{ext}`` where ``i`` is
    the image's position.  *on_progress* receives ``(completed, total)``
    after every image, successful or not.  When *collection* is given each
    entry is flagged ``processing`` while it renders, and its pixels stay
    open until the export is done even if the image is removed meanwhile.

    Raises NoImagesToExport for an empty list, and RasterizationFailed when
    the only image fails to render.
    """
    images = list(images)
    if not images:
        raise NoImagesToExport()

    total = len(images)
    workers = max_workers or max(1, (os.cpu_count() or 4) - 1)
    rendered: dict[int, tuple[str, bytes]] = {}
    failed: list[tuple[int, str, str]] = []
    completed = 0

    with ExitStack() as stack:
        if collection is not None:
            stack.enter_context(collection.reading(image.id for image in images))
        busy = {image.id for image in images}
        for image_id in busy:
            _mark_processing(collection, image_id, True)
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="export") as executor:
                futures = {
                    executor.submit(_render_one, i, image, settings): (i, image)
                    for i, image in enumerate(images)
                }
                for future in as_completed(futures):
                    index, image = futures[future]
                    try:
                        rendered[index] = future.result()
                    except RasterizationFailed as exc:
                        logger.warning("Export failed for %s: %s", image.name, exc.reason)
                        failed.append((index, image.name, exc.reason))
                    _mark_processing(collection, image.id, False)
                    busy.discard(image.id)
                    completed += 1
                    if on_progress is not None:
                        on_progress(completed, total)
        finally:
            for image_id in busy:
                _mark_processing(collection, image_id, False)

    failures = [(name, reason) for _i, name, reason in sorted(failed)]

    if total == 1:
        if not rendered:
            name, reason = failures[0]
            raise RasterizationFailed(name, reason)
        filename, data = rendered[0]
        logger.info("Exported %s", filename)
        return ExportResult(filename, data, exported=[filename])

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_STORED) as archive:
        for index in sorted(rendered):
            filename, data = rendered[index]
            archive.writestr(filename, data)

    archive_name = ARCHIVE_NAME_TEMPLATE.format(date=datetime.now().strftime("%Y-%m-%d"))
    exported = [rendered[i][0] for i in sorted(rendered)]
    logger.info("Export complete (%d/%d) -> %s", len(exported), total, archive_name)
    return ExportResult(archive_name, buf.getvalue(), is_archive=True, exported=exported, failed=failures)


def write_export(result: ExportResult, out_dir: Path) -> Path:
    """Write an export result into *out_dir* without overwriting existing files."""
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = unique_path(out_dir / result.filename)
    out_path.write_bytes(result.data)
    return out_path
