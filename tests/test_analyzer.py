import threading
import time

from PIL import Image

from smart_batch_crop.analyzer import AnalysisJob, SaliencyAnalyzer
from smart_batch_crop.errors import AnalysisFailed
from smart_batch_crop.models import SaliencyResult

from conftest import FixedDetector, PeakDetector


def _job(image_id: str, w: int = 100, h: int = 100) -> AnalysisJob:
    return AnalysisJob(image_id, Image.new("RGB", (200, 100)), w, h)


def test_analyze_uses_cache_per_target_size(detector: FixedDetector) -> None:
    analyzer = SaliencyAnalyzer(detector=detector)
    image = Image.new("RGB", (200, 100))

    first = analyzer.analyze(image, "a", 100, 100)
    second = analyzer.analyze(image, "a", 100, 100)
    assert first == second == SaliencyResult(0, 0, 50, 25, 1.0)
    assert detector.calls == 1

    analyzer.analyze(image, "a", 160, 90)
    assert detector.calls == 2
    assert len(analyzer) == 2


def test_invalidate_drops_only_that_image(detector: FixedDetector) -> None:
    analyzer = SaliencyAnalyzer(detector=detector)
    image = Image.new("RGB", (200, 100))
    analyzer.analyze(image, "a", 100, 100)
    analyzer.analyze(image, "b", 100, 100)

    analyzer.invalidate("a")
    assert analyzer.cached("a", 100, 100) is None
    assert analyzer.cached("b", 100, 100) is not None

    analyzer.clear()
    assert len(analyzer) == 0


def test_failed_detection_returns_none_and_is_not_cached() -> None:
    calls = []

    def failing(image, target_w, target_h):
        calls.append(1)
        raise AnalysisFailed("no features")

    analyzer = SaliencyAnalyzer(detector=failing)
    image = Image.new("RGB", (50, 50))
    assert analyzer.analyze(image, "a", 10, 10) is None
    assert analyzer.analyze(image, "a", 10, 10) is None
    assert len(calls) == 2
    assert len(analyzer) == 0


def test_batch_reports_progress_for_every_job(detector: FixedDetector) -> None:
    analyzer = SaliencyAnalyzer(detector=detector)
    progress: list[tuple[int, int]] = []
    seen: list[str] = []

    results = analyzer.batch_analyze(
        [_job(f"img{i}") for i in range(5)],
        concurrency=2,
        on_progress=lambda done, total: progress.append((done, total)),
        on_result=lambda job, result: seen.append(job.image_id),
    )

    assert progress == [(i, 5) for i in range(1, 6)]
    assert sorted(seen) == [f"img{i}" for i in range(5)]
    assert set(results) == {f"img{i}" for i in range(5)}
    assert all(r is not None for r in results.values())


def test_batch_failures_do_not_stop_the_batch() -> None:
    def flaky(image, target_w, target_h):
        if target_w == 13:
            raise RuntimeError("detector crashed")
        return SaliencyResult(0, 0, 10, 10)

    analyzer = SaliencyAnalyzer(detector=flaky)
    progress: list[tuple[int, int]] = []
    results = analyzer.batch_analyze(
        [_job("ok1"), _job("bad", w=13), _job("ok2")],
        on_progress=lambda done, total: progress.append((done, total)),
    )
    assert results["bad"] is None
    assert results["ok1"] is not None and results["ok2"] is not None
    assert progress[-1] == (3, 3)


def test_batch_respects_concurrency_ceiling() -> None:
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def slow(image, target_w, target_h):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.02)
        with lock:
            state["active"] -= 1
        return SaliencyResult(0, 0, 10, 10)

    analyzer = SaliencyAnalyzer(detector=slow)
    analyzer.batch_analyze([_job(f"img{i}") for i in range(8)], concurrency=2)
    assert 1 <= state["peak"] <= 2


def test_empty_batch() -> None:
    analyzer = SaliencyAnalyzer(detector=FixedDetector())
    progress: list[tuple[int, int]] = []
    assert analyzer.batch_analyze([], on_progress=lambda d, t: progress.append((d, t))) == {}
    assert progress == []


def test_submit_runs_on_shared_pool(detector: FixedDetector) -> None:
    analyzer = SaliencyAnalyzer(detector=detector, max_workers=1)
    future = analyzer.submit(_job("a"))
    assert future.result(timeout=5) == SaliencyResult(0, 0, 50, 25, 1.0)
    analyzer.shutdown()


def test_submitted_and_batch_jobs_share_the_ceiling() -> None:
    detector = PeakDetector()
    analyzer = SaliencyAnalyzer(detector=detector, max_workers=2)
    submitted = [analyzer.submit(_job(f"single{i}")) for i in range(4)]
    results = analyzer.batch_analyze([_job(f"batch{i}") for i in range(4)], concurrency=2)

    for future in submitted:
        assert future.result(timeout=10) is not None
    assert len(results) == 4
    assert detector.calls == 8
    assert 1 <= detector.peak <= 2
    analyzer.shutdown()


def test_waiting_job_reuses_result_of_identical_job() -> None:
    detector = PeakDetector()
    analyzer = SaliencyAnalyzer(detector=detector, max_workers=1)
    first = analyzer.submit(_job("a"))
    second = analyzer.submit(_job("a"))
    assert first.result(timeout=10) == second.result(timeout=10)
    assert detector.calls == 1
    analyzer.shutdown()
