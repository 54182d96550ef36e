"""Clap gesture detection from wrist and shoulder keypoints.

A clap is reported when the wrists come closer than a fraction of the
shoulder width. Each clap fires once: the detector disarms after firing and
only re-arms when the hands separate again or tracking is lost. A cooldown
additionally bounds the firing rate.

Usage:
    detector = ClapGestureDetector(distance_factor=0.35, cooldown_seconds=0.3)
    detector.on_clap(lambda evt: print("clap at", evt.timestamp))
    for keypoints, now in frames:
        event = detector.update(keypoints, now)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np

from pose_clap.landmarks import LEFT_SHOULDER, LEFT_WRIST, RIGHT_SHOULDER, RIGHT_WRIST, Keypoint

logger = logging.getLogger("pose_clap.clap")

MIN_DISTANCE_FACTOR, MAX_DISTANCE_FACTOR = 0.1, 2.0
MIN_COOLDOWN, MAX_COOLDOWN = 0.05, 2.0
SHOULDER_EPSILON = 1e-4


@dataclass
class ClapState:
    """Debounce state carried across frames."""
    armed: bool = True
    last_clap_time: float = -math.inf


@dataclass(frozen=True)
class ClapEvent:
    """A detected clap."""
    timestamp: float
    wrist_distance: float
    shoulder_width: float
    threshold: float


def _distance(a: Keypoint, b: Keypoint) -> float:
    d = np.asarray(a.position[:2], dtype=np.float64) - np.asarray(b.position[:2], dtype=np.float64)
    return float(np.hypot(d[0], d[1]))


class ClapGestureDetector:
    """Edge-triggered clap detector with cooldown and re-arm.

    Cooldown and re-arm are independent: holding the clap pose never fires
    again, even after the cooldown has elapsed.
    """

    def __init__(self, distance_factor: float = 0.35, cooldown_seconds: float = 0.3):
        if not MIN_DISTANCE_FACTOR <= distance_factor <= MAX_DISTANCE_FACTOR:
            raise ValueError(
                f"distance_factor must be in [{MIN_DISTANCE_FACTOR}, {MAX_DISTANCE_FACTOR}]"
            )
        if not MIN_COOLDOWN <= cooldown_seconds <= MAX_COOLDOWN:
            raise ValueError(f"cooldown_seconds must be in [{MIN_COOLDOWN}, {MAX_COOLDOWN}]")

        self.distance_factor = distance_factor
        self.cooldown_seconds = cooldown_seconds
        self.state = ClapState()
        self._callbacks: list[Callable[[ClapEvent], None]] = []
        self._total_claps = 0

    def on_clap(self, callback: Callable[[ClapEvent], None]):
        """Register a listener for clap events."""
        self._callbacks.append(callback)

    def set_sensitivity(self, value: float):
        """Set the distance factor, clamped to its valid range."""
        self.distance_factor = min(MAX_DISTANCE_FACTOR, max(MIN_DISTANCE_FACTOR, value))

    def update(self, keypoints: Sequence[Keypoint], now: float) -> Optional[ClapEvent]:
        """Feed one frame of keypoints. Returns a ClapEvent or None."""
        state = self.state
        tracked = (
            keypoints[LEFT_WRIST],
            keypoints[RIGHT_WRIST],
            keypoints[LEFT_SHOULDER],
            keypoints[RIGHT_SHOULDER],
        )
        if not all(kp.active for kp in tracked):
            state.armed = True
            return None

        left_wrist, right_wrist, left_shoulder, right_shoulder = tracked

        shoulder_width = _distance(left_shoulder, right_shoulder)
        if shoulder_width <= SHOULDER_EPSILON:
            return None

        wrist_distance = _distance(left_wrist, right_wrist)
        threshold = shoulder_width * self.distance_factor
        is_clap_pose = wrist_distance <= threshold

        if is_clap_pose and state.armed and now - state.last_clap_time >= self.cooldown_seconds:
            state.last_clap_time = now
            state.armed = False
            event = ClapEvent(
                timestamp=now,
                wrist_distance=wrist_distance,
                shoulder_width=shoulder_width,
                threshold=threshold,
            )
            self._total_claps += 1
            logger.info("Clap detected (wrists %.4f <= %.4f)", wrist_distance, threshold)
            self._emit(event)
            return event

        if not is_clap_pose:
            state.armed = True
        return None

    def _emit(self, event: ClapEvent):
        for cb in self._callbacks:
            try:
                cb(event)
            except Exception as e:
                logger.error("Clap listener error: %s", e)

    @property
    def total_claps(self) -> int:
        return self._total_claps

    def reset(self):
        """Restore the initial state."""
        self.state = ClapState()
        self._total_claps = 0
