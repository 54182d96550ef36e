"""Per-stage timing for the pose pipeline.

Usage:
    profiler = PipelineProfiler()
    with profiler.stage("detection"):
        output = await engine.run_detector(batch)
    print(profiler.summary())
"""

from __future__ import annotations

import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np


@dataclass
class StageStats:
    """Timing statistics for one stage, in milliseconds."""
    name: str
    avg_ms: float
    min_ms: float
    max_ms: float
    p95_ms: float
    call_count: int


class PipelineProfiler:
    """Rolling-window stage timer."""

    STAGES = (
        "sampling",
        "detection",
        "decode",
        "landmarks",
        "projection",
        "gesture",
        "frame",
    )

    def __init__(self, window_size: int = 120):
        self._window_size = window_size
        self._timings: dict[str, deque[float]] = {}
        self._counts: dict[str, int] = {}
        self.enabled = True
        for name in self.STAGES:
            self._track(name)

    def _track(self, name: str):
        self._timings[name] = deque(maxlen=self._window_size)
        self._counts[name] = 0

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time the enclosed block under ``name``.

        Blocks that raise are not recorded.
        """
        if not self.enabled:
            yield
            return
        if name not in self._timings:
            self._track(name)

        t0 = time.perf_counter()
        yield
        self.record(name, (time.perf_counter() - t0) * 1000.0)

    def record(self, name: str, elapsed_ms: float):
        if not self.enabled:
            return
        if name not in self._timings:
            self._track(name)
        self._timings[name].append(elapsed_ms)
        self._counts[name] += 1

    def get_stage_stats(self, name: str) -> Optional[StageStats]:
        timings = self._timings.get(name)
        if not timings:
            return None
        arr = np.fromiter(timings, dtype=np.float64)
        return StageStats(
            name=name,
            avg_ms=float(arr.mean()),
            min_ms=float(arr.min()),
            max_ms=float(arr.max()),
            p95_ms=float(np.percentile(arr, 95)),
            call_count=self._counts[name],
        )

    def summary(self) -> dict[str, dict]:
        result = {}
        for name in self._timings:
            stats = self.get_stage_stats(name)
            if stats is None:
                continue
            result[name] = {
                "avg_ms": round(stats.avg_ms, 3),
                "p95_ms": round(stats.p95_ms, 3),
                "max_ms": round(stats.max_ms, 3),
                "calls": stats.call_count,
            }
        return result

    def reset(self):
        for name in list(self._timings):
            self._track(name)
