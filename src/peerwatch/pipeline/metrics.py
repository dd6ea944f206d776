"""
Pipeline Metrics
================

Per-frame latency samples and frame counts, summarized as rate and
percentiles for display clients.

Formulas:
    fps     = frames / max(0.001, elapsed_seconds)
    median  = middle of sorted samples (even count: mean of the two middle)
    p95     = sorted[floor(0.95 * (n - 1))]

Latency is measured from the frame's capture timestamp to inference
completion, so it includes transport and slot waiting time. Percentiles
cover the most recent `max_samples` latencies; fps covers every frame since
the last reset.
"""

import logging
import math
import time
from collections import deque
from typing import Callable, Deque, List, Optional, Sequence

from peerwatch.models.output import PerformanceSummary


logger = logging.getLogger(__name__)


def _median_sorted(ordered: Sequence[float]) -> float:
    if not ordered:
        return 0.0
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return float(ordered[mid])
    return (ordered[mid - 1] + ordered[mid]) / 2.0


def _p95_sorted(ordered: Sequence[float]) -> float:
    if not ordered:
        return 0.0
    return float(ordered[math.floor(0.95 * (len(ordered) - 1))])


def median(samples: Sequence[float]) -> float:
    """Median of `samples`; 0.0 when empty."""
    return _median_sorted(sorted(samples))


def p95(samples: Sequence[float]) -> float:
    """95th percentile by lower index selection; 0.0 when empty."""
    return _p95_sorted(sorted(samples))


class MetricsAggregator:
    """
    Accumulates latency samples since the last reset.

    Only the newest `max_samples` latencies are kept, so a long-running
    pipeline summarizes a bounded window at constant cost.

    Example:
        metrics = MetricsAggregator()
        metrics.reset()
        metrics.record(inference_ts - capture_ts)
        summary = metrics.summary()
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_samples: int = 1000,
    ) -> None:
        """
        Args:
            clock: Wall-clock source in seconds
            max_samples: Size of the latency window used for percentiles
        """
        if max_samples < 1:
            raise ValueError("max_samples must be >= 1")
        self._clock = clock
        self.max_samples = max_samples
        self._latencies: Deque[float] = deque(maxlen=max_samples)
        self._frames: int = 0
        self._start_ts: float = clock()

    @property
    def frame_count(self) -> int:
        return self._frames

    @property
    def latencies(self) -> List[float]:
        """Copy of the latency window (ms), oldest first."""
        return list(self._latencies)

    def reset(self, now: Optional[float] = None) -> None:
        """Drop all samples and restart the rate window."""
        self._latencies.clear()
        self._frames = 0
        self._start_ts = self._clock() if now is None else now

    def record(self, latency_ms: float) -> None:
        """Count one processed frame with its end-to-end latency."""
        self._frames += 1
        self._latencies.append(float(latency_ms))

    def summary(self, now: Optional[float] = None) -> PerformanceSummary:
        now = self._clock() if now is None else now
        elapsed_s = max(0.001, now - self._start_ts)
        ordered = sorted(self._latencies)
        return PerformanceSummary(
            fps=self._frames / elapsed_s,
            median_latency_ms=_median_sorted(ordered),
            p95_latency_ms=_p95_sorted(ordered),
        )
