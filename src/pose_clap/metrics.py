"""Prometheus text-format metrics for the pose pipeline.

Tracked metrics:
- pose_clap_frames_total (counter, by outcome: admitted, skipped, dropped)
- pose_clap_detections_total (counter)
- pose_clap_claps_total (counter)
- pose_clap_frame_latency_seconds (histogram)
- pose_clap_detection_rate (gauge, moving average over admitted frames)
"""

from __future__ import annotations

import threading
from collections import Counter

LATENCY_BUCKETS = (0.005, 0.010, 0.020, 0.033, 0.050, 0.100, 0.250)
FRAME_OUTCOMES = ("admitted", "skipped", "dropped")


class _Histogram:
    def __init__(self, buckets):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0

    def observe(self, value: float):
        self.count += 1
        self.sum += value
        for i, bound in enumerate(self.buckets):
            if value <= bound:
                self.bucket_counts[i] += 1

    def render(self, name: str, help_text: str) -> list[str]:
        # bucket_counts are already cumulative
        lines = [f"# HELP {name} {help_text}", f"# TYPE {name} histogram"]
        for bound, count in zip(self.buckets, self.bucket_counts):
            lines.append(f'{name}_bucket{{le="{bound}"}} {count}')
        lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
        lines.append(f"{name}_sum {self.sum:.6f}")
        lines.append(f"{name}_count {self.count}")
        return lines


class MetricsCollector:
    """Counts frame outcomes, detections and claps."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frames: Counter = Counter({k: 0 for k in FRAME_OUTCOMES})
        self._detections = 0
        self._claps = 0
        self._detection_rate = 0.0
        self._latency = _Histogram(LATENCY_BUCKETS)

    def record_skip(self):
        with self._lock:
            self._frames["skipped"] += 1

    def record_drop(self):
        with self._lock:
            self._frames["dropped"] += 1

    def record_frame(self, latency_seconds: float, detected: bool):
        with self._lock:
            self._frames["admitted"] += 1
            if detected:
                self._detections += 1
            self._latency.observe(latency_seconds)
            self._detection_rate = 0.95 * self._detection_rate + 0.05 * (1.0 if detected else 0.0)

    def record_clap(self):
        with self._lock:
            self._claps += 1

    @property
    def frame_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._frames)

    @property
    def detections(self) -> int:
        return self._detections

    @property
    def claps(self) -> int:
        return self._claps

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        with self._lock:
            lines = [
                "# HELP pose_clap_frames_total Frames seen by outcome",
                "# TYPE pose_clap_frames_total counter",
            ]
            for outcome in FRAME_OUTCOMES:
                lines.append(f'pose_clap_frames_total{{outcome="{outcome}"}} {self._frames[outcome]}')
            lines += [
                "",
                "# HELP pose_clap_detections_total Frames with an active pose detection",
                "# TYPE pose_clap_detections_total counter",
                f"pose_clap_detections_total {self._detections}",
                "",
                "# HELP pose_clap_claps_total Clap events emitted",
                "# TYPE pose_clap_claps_total counter",
                f"pose_clap_claps_total {self._claps}",
                "",
            ]
            lines += self._latency.render(
                "pose_clap_frame_latency_seconds", "Admitted frame processing latency"
            )
            lines += [
                "",
                "# HELP pose_clap_detection_rate Moving average of detection over admitted frames",
                "# TYPE pose_clap_detection_rate gauge",
                f"pose_clap_detection_rate {self._detection_rate:.4f}",
            ]
        return "\n".join(lines) + "\n"
