"""
Image collection: the single owner of all loaded images and their framings.

Every change goes through a named method on ``ImageCollection``; each method
applies its transition atomically under one lock and then notifies
listeners with the transition name.  Entries are immutable ``ManagedImage``
snapshots that are replaced, never mutated, so readers can hold a snapshot
while analysis or export threads move on.

Smart crop orchestration: a newly added image with no stored framing gets one
analysis job when auto-detection is on.  The job carries an immutable
snapshot (identity, pixels, target size).  On completion the current entry is
looked up by identity; if it was removed meanwhile the result is dropped.
"""

import logging
import threading
from contextlib import contextmanager
from concurrent.futures import Future, wait
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, Iterator

from smart_batch_crop.analyzer import AnalysisJob, ProgressCallback, SaliencyAnalyzer
from smart_batch_crop.config import DEFAULT_CONCURRENCY
from smart_batch_crop.errors import DecodeFailed, InvalidImage, UnknownImage
from smart_batch_crop.image_io import compute_fingerprint, generate_image_id, load_and_normalize, make_thumbnail
from smart_batch_crop.models import (
    AppSettings, FramingDescriptor, ManagedImage, SaliencyResult,
    clamp_zoom, fit_framing, saliency_to_framing, transfer_framing,
)
from smart_batch_crop.persistence import LocalPersistence

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]


@dataclass
class LoadReport:
    """Outcome of loading a batch of source files."""
    added: list[str] = field(default_factory=list)                # image ids, in order
    failed: list[tuple[str, str]] = field(default_factory=list)   # (name, reason)


class ImageCollection:
    """Authoritative, thread-safe store of images, settings and selection."""

    def __init__(
        self,
        analyzer: SaliencyAnalyzer | None = None,
        persistence: LocalPersistence | None = None,
        settings: AppSettings | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self._lock = threading.RLock()
        self._images: dict[str, ManagedImage] = {}  # insertion-ordered
        self._analyzer = analyzer if analyzer is not None else SaliencyAnalyzer(max_workers=concurrency)
        self._concurrency = concurrency
        self._persistence = persistence
        self._listeners: list[Listener] = []
        self._inflight: dict[str, Future] = {}
        self._readers: dict[str, int] = {}           # image id -> jobs reading its pixels
        self._retired: dict[str, ManagedImage] = {}  # removed, pixels still being read
        self._selected_id: str | None = None
        self._editing_id: str | None = None
        self._loading = False

        stored_settings = persistence.load_settings() if persistence is not None else None
        self._settings = settings or stored_settings or AppSettings()
        self._saved_framings: dict[str, FramingDescriptor] = (
            (persistence.load_framings() or {}) if persistence is not None else {}
        )

    # =========================================================================
    # Read-only views
    # =========================================================================
    @property
    def images(self) -> tuple[ManagedImage, ...]:
        with self._lock:
            return tuple(self._images.values())

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def selected_id(self) -> str | None:
        return self._selected_id

    @property
    def editing_id(self) -> str | None:
        return self._editing_id

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def analyzer(self) -> SaliencyAnalyzer:
        return self._analyzer

    def get(self, image_id: str) -> ManagedImage | None:
        with self._lock:
            return self._images.get(image_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._images)

    def __contains__(self, image_id: str) -> bool:
        with self._lock:
            return image_id in self._images

    # =========================================================================
    # Listeners
    # =========================================================================
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event)

    # =========================================================================
    # Internal helpers (caller holds the lock)
    # =========================================================================
    def _require(self, image_id: str) -> ManagedImage:
        entry = self._images.get(image_id)
        if entry is None:
            raise UnknownImage(image_id)
        return entry

    def _persist_framings(self) -> None:
        if self._persistence is None:
            return
        for entry in self._images.values():
            if entry.fingerprint:
                self._saved_framings[entry.fingerprint] = entry.framing
        self._persistence.save_framings(dict(self._saved_framings))

    def _persist_settings(self) -> None:
        if self._persistence is not None:
            self._persistence.save_settings(self._settings)

    def _release(self, entry: ManagedImage) -> None:
        """Free pixels now, or once the last job reading them lets go."""
        if self._readers.get(entry.id):
            self._retired[entry.id] = entry
        else:
            entry.release()

    def _hold(self, image_ids: Iterable[str]) -> None:
        with self._lock:
            for image_id in image_ids:
                self._readers[image_id] = self._readers.get(image_id, 0) + 1

    def _let_go(self, image_ids: Iterable[str]) -> None:
        with self._lock:
            for image_id in image_ids:
                count = self._readers.get(image_id, 0) - 1
                if count > 0:
                    self._readers[image_id] = count
                    continue
                self._readers.pop(image_id, None)
                retired = self._retired.pop(image_id, None)
                if retired is not None:
                    logger.debug("Releasing pixels of removed image %s", retired.name)
                    retired.release()

    @contextmanager
    def reading(self, image_ids: Iterable[str]) -> Iterator[None]:
        """Keep the pixels of *image_ids* open for the block, even if the images are removed meanwhile."""
        image_ids = list(image_ids)
        self._hold(image_ids)
        try:
            yield
        finally:
            self._let_go(image_ids)

    def _rescale(self, aspect: float) -> None:
        for image_id, entry in self._images.items():
            zoom = clamp_zoom(entry.framing.zoom, entry.img_w, entry.img_h, aspect)
            self._images[image_id] = replace(entry, framing=replace(entry.framing, target_aspect=aspect, zoom=zoom))

    def _job_for(self, entry: ManagedImage) -> AnalysisJob:
        export = self._settings.export
        return AnalysisJob(entry.id, entry.image, export.target_w, export.target_h)

    # =========================================================================
    # Loading
    # =========================================================================
    def add_sources(self, sources: list[tuple[str, bytes]]) -> LoadReport:
        """
        Decode ``(name, bytes)`` pairs and add them in order.

        Files that fail to decode are skipped and listed in the report; the
        rest of the batch is still added.
        """
        report = LoadReport()
        entries: list[ManagedImage] = []

        self._loading = True
        self._notify("loading")
        try:
            for name, data in sources:
                try:
                    image, w, h = load_and_normalize(data)
                except (DecodeFailed, InvalidImage) as exc:
                    logger.warning("Failed to load image %s: %s", name, exc)
                    report.failed.append((name, str(exc)))
                    continue
                entries.append(ManagedImage(
                    id=generate_image_id(),
                    name=name,
                    img_w=w,
                    img_h=h,
                    image=image,
                    thumbnail=make_thumbnail(image),
                    framing=FramingDescriptor(fingerprint=compute_fingerprint(data)),
                ))
        finally:
            self._loading = False

        if entries:
            self.add_images(entries)
        else:
            self._notify("loading")
        report.added = [e.id for e in entries]
        return report

    def add_files(self, paths: list[Path]) -> LoadReport:
        """Read and add image files; unreadable files are reported, not raised."""
        sources: list[tuple[str, bytes]] = []
        unreadable: list[tuple[str, str]] = []
        for path in paths:
            try:
                sources.append((path.name, path.read_bytes()))
            except OSError as exc:
                logger.warning("Failed to read %s: %s", path, exc)
                unreadable.append((path.name, str(exc)))
        report = self.add_sources(sources)
        report.failed = unreadable + report.failed
        return report

    # =========================================================================
    # Transitions
    # =========================================================================
    def add_images(self, entries: list[ManagedImage]) -> list[str]:
        """
        Append loaded entries in the given order.

        Each entry's framing is replaced by its stored framing (matched by
        fingerprint) or by a centered fit for the current export aspect.
        Entries without a stored framing are marked pending and analyzed when
        auto-detection is on.  Returns the ids scheduled for analysis.
        """
        jobs: list[AnalysisJob] = []
        with self._lock:
            for entry in entries:
                if entry.img_w <= 0 or entry.img_h <= 0:
                    raise InvalidImage(f"{entry.name}: invalid dimensions {entry.img_w}x{entry.img_h}")
                if entry.image is None:
                    raise ValueError(f"{entry.name}: pixels not loaded")
                if entry.id in self._images:
                    raise ValueError(f"duplicate image id {entry.id}")

            aspect = self._settings.export.aspect
            smart = self._settings.enable_smart_crop
            for entry in entries:
                fingerprint = entry.fingerprint
                saved = self._saved_framings.get(fingerprint) if fingerprint else None
                if saved is not None:
                    logger.debug("Restored stored framing for %s", entry.name)
                    framing = fit_framing(transfer_framing(saved, aspect, fingerprint), entry.img_w, entry.img_h)
                else:
                    framing = FramingDescriptor(target_aspect=aspect, fingerprint=fingerprint)
                pending = smart and saved is None
                entry = replace(entry, framing=framing, analysis_pending=pending, saliency=None)
                self._images[entry.id] = entry
                if pending:
                    jobs.append(self._job_for(entry))
            logger.info("Added %d image(s), %d queued for smart crop", len(entries), len(jobs))

        self._notify("images_added")
        for job in jobs:
            self._schedule(job)
        return [job.image_id for job in jobs]

    def remove_image(self, image_id: str) -> None:
        with self._lock:
            entry = self._require(image_id)
            del self._images[image_id]
            if self._selected_id == image_id:
                self._selected_id = None
            if self._editing_id == image_id:
                self._editing_id = None
            self._analyzer.invalidate(image_id)
            self._release(entry)
        self._notify("image_removed")

    def clear_all(self) -> None:
        """Empty the workspace: images, selection, analysis cache and stored data."""
        with self._lock:
            entries = list(self._images.values())
            self._images.clear()
            self._selected_id = None
            self._editing_id = None
            self._analyzer.clear()
            self._saved_framings.clear()
            if self._persistence is not None:
                self._persistence.clear_all()
            for entry in entries:
                self._release(entry)
        logger.info("Cleared workspace (%d image(s))", len(entries))
        self._notify("cleared")

    def update_framing(self, image_id: str, framing: FramingDescriptor) -> None:
        with self._lock:
            entry = self._require(image_id)
            framing = fit_framing(replace(framing, fingerprint=entry.fingerprint), entry.img_w, entry.img_h)
            self._images[image_id] = replace(entry, framing=framing)
            self._persist_framings()
        self._notify("framing_updated")

    def rescale_all_framings(self, aspect: float) -> None:
        """
        Set every framing's target aspect.

        Center and zoom are relative and stay as they are; only a zoom the new
        aspect can no longer honour is lowered to that image's ``max_zoom``.
        The center is re-clamped when the crop is calculated.
        """
        with self._lock:
            self._rescale(aspect)
            self._persist_framings()
        self._notify("framings_rescaled")

    def copy_framing_to_all(self, framing: FramingDescriptor) -> None:
        """Apply one center/zoom to every image at the current export aspect."""
        with self._lock:
            aspect = self._settings.export.aspect
            for image_id, entry in self._images.items():
                self._images[image_id] = replace(
                    entry,
                    framing=fit_framing(transfer_framing(framing, aspect, entry.fingerprint), entry.img_w, entry.img_h),
                )
            self._persist_framings()
        self._notify("framing_copied")

    def set_analysis_pending(self, image_id: str, pending: bool) -> None:
        with self._lock:
            entry = self._require(image_id)
            self._images[image_id] = replace(entry, analysis_pending=pending)
        self._notify("analysis_pending")

    def set_analysis_result(self, image_id: str, result: SaliencyResult | None) -> None:
        with self._lock:
            entry = self._require(image_id)
            self._images[image_id] = replace(entry, saliency=result, analysis_pending=False)
        self._notify("analysis_result")

    def set_processing(self, image_id: str, processing: bool) -> None:
        with self._lock:
            entry = self._require(image_id)
            self._images[image_id] = replace(entry, processing=processing)
        self._notify("processing")

    def set_selected(self, image_id: str | None) -> None:
        with self._lock:
            if image_id is not None:
                self._require(image_id)
            self._selected_id = image_id
        self._notify("selection")

    def set_editing(self, image_id: str | None) -> None:
        with self._lock:
            if image_id is not None:
                self._require(image_id)
            self._editing_id = image_id
        self._notify("editing")

    # =========================================================================
    # Settings
    # =========================================================================
    def update_settings(self, **changes) -> None:
        """Change top-level settings (``enable_smart_crop``, ``show_rule_of_thirds``, ...)."""
        if "export" in changes:
            raise ValueError("use update_export_settings() for export settings")
        with self._lock:
            self._settings = replace(self._settings, **changes)
            self._persist_settings()
        self._notify("settings")

    def update_export_settings(self, **changes) -> None:
        """
        Change export settings.

        A new target width/height rescales every framing to the new aspect
        right away and, with auto-detection on, drops cached suggestions that
        were computed for the old size.  It does not start re-analysis; see
        ``reanalyze_all``.
        """
        for key in ("target_w", "target_h"):
            if key in changes and (not isinstance(changes[key], int) or changes[key] <= 0):
                raise ValueError(f"{key} must be a positive integer, got {changes[key]!r}")

        with self._lock:
            old = self._settings.export
            export = replace(old, **changes)
            self._settings = replace(self._settings, export=export)
            resized = (export.target_w, export.target_h) != (old.target_w, old.target_h)
            if resized:
                self._rescale(export.aspect)
                self._persist_framings()
                if self._settings.enable_smart_crop:
                    self._analyzer.clear()
            self._persist_settings()
        if resized:
            logger.info("Target size changed to %dx%d", export.target_w, export.target_h)
            self._notify("framings_rescaled")
        self._notify("settings")

    def set_target_width(self, width: int) -> None:
        export = self._settings.export
        if export.aspect_locked:
            self.update_export_settings(target_w=width, target_h=max(1, round(width / export.aspect)))
        else:
            self.update_export_settings(target_w=width)

    def set_target_height(self, height: int) -> None:
        export = self._settings.export
        if export.aspect_locked:
            self.update_export_settings(target_w=max(1, round(height * export.aspect)), target_h=height)
        else:
            self.update_export_settings(target_h=height)

    def set_aspect(self, aspect: float) -> None:
        """Keep the target width and derive the height from *aspect* (presets)."""
        if aspect <= 0:
            raise ValueError(f"aspect must be positive, got {aspect!r}")
        width = self._settings.export.target_w
        self.update_export_settings(target_h=max(1, round(width / aspect)))

    # =========================================================================
    # Smart crop
    # =========================================================================
    def _schedule(self, job: AnalysisJob) -> Future:
        """Submit *job*; the returned future resolves once its result has been committed."""
        committed: Future = Future()
        with self._lock:
            self._inflight[job.image_id] = committed
            self._hold([job.image_id])
        future = self._analyzer.submit(job)
        future.add_done_callback(lambda f, job=job, c=committed: self._on_job_done(job, f, c))
        return committed

    def _on_job_done(self, job: AnalysisJob, future: Future, committed: Future) -> None:
        result = None
        try:
            if not future.cancelled():
                result = future.result()
            self._commit_analysis(job, result)
        finally:
            with self._lock:
                if self._inflight.get(job.image_id) is committed:
                    del self._inflight[job.image_id]
            self._let_go([job.image_id])
            committed.set_result(result)

    def _commit_analysis(self, job: AnalysisJob, result: SaliencyResult | None) -> None:
        """Store a finished job's suggestion and derived framing in one transition."""
        with self._lock:
            entry = self._images.get(job.image_id)
            if entry is None:
                logger.debug("Discarding smart crop result for removed image %s", job.image_id)
                self._analyzer.invalidate(job.image_id)
                return

            export = self._settings.export
            if (job.target_w, job.target_h) != (export.target_w, export.target_h):
                logger.info(
                    "Discarding smart crop result for %s computed at %dx%d (now %dx%d)",
                    entry.name, job.target_w, job.target_h, export.target_w, export.target_h,
                )
                entry = replace(entry, analysis_pending=False)
            elif result is None:
                entry = replace(entry, analysis_pending=False)
            else:
                framing = saliency_to_framing(
                    result, entry.img_w, entry.img_h, job.target_w / job.target_h, entry.fingerprint,
                )
                framing = fit_framing(framing, entry.img_w, entry.img_h)
                entry = replace(entry, saliency=result, framing=framing, analysis_pending=False)
            self._images[job.image_id] = entry
            if result is not None:
                self._persist_framings()
        self._notify("analysis_result")

    def run_analysis(self, image_id: str) -> Future | None:
        """Explicitly (re)run smart crop for one image.  Returns None when auto-detection is off."""
        with self._lock:
            entry = self._require(image_id)
            if not self._settings.enable_smart_crop:
                return None
            self._images[image_id] = replace(entry, analysis_pending=True)
            job = self._job_for(entry)
        self._notify("analysis_pending")
        return self._schedule(job)

    def reanalyze_all(self, on_progress: ProgressCallback | None = None) -> dict[str, SaliencyResult | None]:
        """
        Drop cached suggestions and re-run smart crop for every image.

        Blocks until the batch finishes; run it off the GUI thread.  Jobs
        already scheduled are allowed to finish first, so no image is
        analyzed twice.  Images removed mid-batch are skipped at commit time
        and their pixels stay open until the batch is done with them.
        """
        if not self._settings.enable_smart_crop:
            return {}
        self.wait_for_analysis()
        with self._lock:
            self._analyzer.clear()
            jobs = []
            for image_id, entry in self._images.items():
                self._images[image_id] = replace(entry, analysis_pending=True)
                jobs.append(self._job_for(entry))
            self._hold(job.image_id for job in jobs)
        self._notify("analysis_pending")

        try:
            return self._analyzer.batch_analyze(
                jobs, concurrency=self._concurrency,
                on_progress=on_progress, on_result=self._commit_analysis,
            )
        finally:
            self._let_go(job.image_id for job in jobs)

    def wait_for_analysis(self, timeout: float | None = None) -> bool:
        """Block until every scheduled analysis job has finished.  Returns False on timeout."""
        with self._lock:
            futures = list(self._inflight.values())
        if not futures:
            return True
        _done, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        self._analyzer.shutdown(wait=True)
