from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

SECONDS_PER_BATCH = 3


@dataclass(frozen=True)
class ProgressSnapshot:
    processed_rows: int
    progress: int
    estimated_seconds: Optional[int]


def initial_estimate_seconds(total_rows: int, batch_size: int) -> int:
    if total_rows <= 0:
        return 0
    return int(math.ceil(total_rows / max(1, batch_size) * SECONDS_PER_BATCH))


class ProgressTracker:
    """Tracks processed rows and a throughput-based ETA for one job run.

    Only dispatched (uncached) batches feed the ETA; cached rows advance the
    progress counter but say nothing about external-call latency.
    """

    def __init__(
        self,
        total_rows: int,
        batch_size: int,
        *,
        initial_estimate: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.total_rows = max(0, int(total_rows))
        self.batch_size = int(batch_size)
        self.processed_rows = 0
        self.cached_rows = 0
        self.fresh_rows = 0
        self.uncached_batches_done = 0
        self._clock = clock
        self._started_at = clock()
        self._progress = 0
        self._estimate = initial_estimate

    @property
    def progress(self) -> int:
        return self._progress

    def _compute_progress(self) -> int:
        if self.total_rows <= 0:
            return 100 if self.processed_rows else 0
        raw = round(self.processed_rows / self.total_rows * 100)
        return max(0, min(100, int(raw)))

    def _remaining_uncached_batches(self) -> int:
        unseen_rows = max(0, self.total_rows - self.processed_rows)
        if unseen_rows == 0:
            return 0
        miss_ratio = self.fresh_rows / self.processed_rows if self.processed_rows else 1.0
        return int(math.ceil(unseen_rows * miss_ratio / self.batch_size))

    def _compute_estimate(self) -> Optional[int]:
        if self.uncached_batches_done == 0:
            if self.processed_rows >= self.total_rows:
                return 0
            return self._estimate
        elapsed_ms = (self._clock() - self._started_at) * 1000.0
        ms_per_batch = elapsed_ms / self.uncached_batches_done
        remaining = self._remaining_uncached_batches()
        return max(0, int(math.ceil(remaining * ms_per_batch / 1000.0)))

    def record(self, rows: int, *, cached: bool) -> ProgressSnapshot:
        if rows < 0:
            raise ValueError("rows must be >= 0")
        self.processed_rows += rows
        if cached:
            self.cached_rows += rows
        else:
            self.fresh_rows += rows
            self.uncached_batches_done += 1
        self._progress = max(self._progress, self._compute_progress())
        self._estimate = self._compute_estimate()
        return self.snapshot()

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            processed_rows=self.processed_rows,
            progress=self._progress,
            estimated_seconds=self._estimate,
        )
