"""
Saliency cache and batch analyzer.

``SaliencyAnalyzer`` wraps a detector callable with a result cache keyed by
``(image_id, target_w, target_h)`` and turns detector failures into a
``None`` result, so smart crop degrades to the default framing instead of
failing.  Work runs on ``concurrent.futures`` thread pools whose size is the
concurrency ceiling; jobs beyond the ceiling wait in submission order.
Every detector call, from a single submitted job or a batch, takes one of
``max_workers`` slots, so the ceiling holds across both paths.

A detector call cannot be cancelled.  A stuck call occupies its slot until it
returns, and a batch does not finish before every admitted job has resolved.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable

from PIL import Image

from smart_batch_crop.config import DEFAULT_CONCURRENCY
from smart_batch_crop.models import SaliencyResult
from smart_batch_crop.saliency import detect_saliency

logger = logging.getLogger(__name__)

Detector = Callable[[Image.Image, int, int], SaliencyResult]
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class SaliencyKey:
    image_id: str
    target_w: int
    target_h: int


@dataclass(frozen=True)
class AnalysisJob:
    """Immutable snapshot of one unit of analysis work."""
    image_id: str
    image: Image.Image
    target_w: int
    target_h: int

    @property
    def key(self) -> SaliencyKey:
        return SaliencyKey(self.image_id, self.target_w, self.target_h)


class SaliencyAnalyzer:
    """Memoizing, failure-isolating front end for a saliency detector."""

    def __init__(self, detector: Detector = detect_saliency, max_workers: int = DEFAULT_CONCURRENCY):
        self._detector = detector
        self._cache: dict[SaliencyKey, SaliencyResult] = {}
        self._lock = threading.Lock()
        self._max_workers = max(1, max_workers)
        self._slots = threading.BoundedSemaphore(self._max_workers)
        self._executor: ThreadPoolExecutor | None = None

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------
    def cached(self, image_id: str, target_w: int, target_h: int) -> SaliencyResult | None:
        with self._lock:
            return self._cache.get(SaliencyKey(image_id, target_w, target_h))

    def invalidate(self, image_id: str) -> None:
        """Drop every cached result for one image."""
        with self._lock:
            stale = [key for key in self._cache if key.image_id == image_id]
            for key in stale:
                del self._cache[key]
        if stale:
            logger.debug("Invalidated %d cached result(s) for %s", len(stale), image_id)

    def clear(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.debug("Cleared saliency cache (%d entries)", count)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------
    def analyze(self, image: Image.Image, image_id: str, target_w: int, target_h: int) -> SaliencyResult | None:
        """
        Return the detector's suggestion, from cache when available.

        A failing detector is logged and yields ``None``; failures are not
        cached, so a later call retries.
        """
        key = SaliencyKey(image_id, target_w, target_h)
        with self._lock:
            hit = self._cache.get(key)
        if hit is not None:
            logger.debug("Saliency cache hit for %s at %dx%d", image_id, target_w, target_h)
            return hit

        with self._slots:
            # Another job for the same key may have finished while this one waited
            with self._lock:
                hit = self._cache.get(key)
            if hit is not None:
                return hit
            try:
                result = self._detector(image, target_w, target_h)
            except Exception as exc:
                logger.warning("Smart crop analysis failed for %s: %s", image_id, exc)
                return None
            if result is not None:
                with self._lock:
                    self._cache[key] = result
        return result

    def run_job(self, job: AnalysisJob) -> SaliencyResult | None:
        return self.analyze(job.image, job.image_id, job.target_w, job.target_h)

    def submit(self, job: AnalysisJob) -> Future:
        """Queue a single job on the shared pool (bounded by ``max_workers``)."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="smart-crop",
                )
            executor = self._executor
        return executor.submit(self.run_job, job)

    def batch_analyze(
        self,
        jobs: list[AnalysisJob],
        concurrency: int = DEFAULT_CONCURRENCY,
        on_progress: ProgressCallback | None = None,
        on_result: Callable[[AnalysisJob, SaliencyResult | None], None] | None = None,
    ) -> dict[str, SaliencyResult | None]:
        """
        Analyze *jobs* with at most *concurrency* detector calls in flight,
        never more than ``max_workers`` counting single submitted jobs.

        *on_result* and *on_progress* run on the calling thread after each job
        completes (success or failure), in completion order; progress counts
        increase by one per call and end at ``(len(jobs), len(jobs))``.
        Returns ``{image_id: result or None}``.
        """
        results: dict[str, SaliencyResult | None] = {}
        total = len(jobs)
        if total == 0:
            return results

        completed = 0
        with ThreadPoolExecutor(max_workers=max(1, concurrency), thread_name_prefix="smart-crop-batch") as executor:
            futures = {executor.submit(self.run_job, job): job for job in jobs}
            for future in as_completed(futures):
                job = futures[future]
                result = future.result()
                results[job.image_id] = result
                completed += 1
                if on_result is not None:
                    on_result(job, result)
                if on_progress is not None:
                    on_progress(completed, total)

        found = sum(1 for r in results.values() if r is not None)
        logger.info("Smart crop batch finished: %d/%d suggestion(s)", found, total)
        return results

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
