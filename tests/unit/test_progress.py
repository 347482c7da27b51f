from __future__ import annotations

import pytest

from app.progress import ProgressTracker, initial_estimate_seconds


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_initial_estimate_is_three_seconds_per_batch() -> None:
    assert initial_estimate_seconds(25, 10) == 9
    assert initial_estimate_seconds(100, 10) == 30
    assert initial_estimate_seconds(0, 10) == 0


def test_cached_rows_keep_initial_estimate() -> None:
    clock = _FakeClock()
    tracker = ProgressTracker(100, 10, initial_estimate=30, clock=clock)

    clock.now += 5
    snapshot = tracker.record(10, cached=True)

    assert snapshot.processed_rows == 10
    assert snapshot.progress == 10
    assert snapshot.estimated_seconds == 30


def test_eta_uses_uncached_batch_rate_and_miss_ratio() -> None:
    clock = _FakeClock()
    tracker = ProgressTracker(100, 10, initial_estimate=30, clock=clock)
    tracker.record(10, cached=True)

    clock.now += 2
    snapshot = tracker.record(10, cached=False)

    # 80 unseen rows at a 50% miss ratio -> 4 batches at 2s each.
    assert snapshot.progress == 20
    assert snapshot.estimated_seconds == 8
    assert tracker.uncached_batches_done == 1
    assert tracker.cached_rows == 10
    assert tracker.fresh_rows == 10


def test_fully_cached_run_finishes_with_zero_eta() -> None:
    tracker = ProgressTracker(25, 10, initial_estimate=9, clock=_FakeClock())
    snapshot = tracker.record(25, cached=True)
    assert snapshot.progress == 100
    assert snapshot.estimated_seconds == 0


def test_progress_is_clamped_and_monotonic() -> None:
    clock = _FakeClock()
    tracker = ProgressTracker(10, 10, clock=clock)
    clock.now += 1
    assert tracker.record(10, cached=False).progress == 100
    clock.now += 1
    snapshot = tracker.record(5, cached=False)
    assert snapshot.progress == 100
    assert snapshot.estimated_seconds == 0


def test_record_rejects_negative_rows() -> None:
    tracker = ProgressTracker(10, 10, clock=_FakeClock())
    with pytest.raises(ValueError):
        tracker.record(-1, cached=False)
    with pytest.raises(ValueError):
        ProgressTracker(10, 0)
