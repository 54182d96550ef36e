"""Keypoint recording and replay.

Record pipeline output to disk so clap detection can be replayed and tested
without a camera or models:

    recorder = KeypointRecorder()
    recorder.start()
    pipeline.on_result(recorder.add_result)
    ...
    recorder.save("session.json")

    player = KeypointPlayer.load("session.json")
    events = player.replay_claps(ClapGestureDetector())
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

import numpy as np

from pose_clap.clap import ClapEvent, ClapGestureDetector
from pose_clap.errors import ShapeError
from pose_clap.landmarks import KEYPOINT_DIM, NUM_KEYPOINTS, Keypoint, is_visible

FORMAT_VERSION = 1


@dataclass
class RecordedFrame:
    """One recorded frame. ``keypoints`` is None when no pose was detected."""
    timestamp: float  # seconds from recording start
    keypoints: Optional[np.ndarray]  # (33, 5): world x, y, z, visibility, presence

    def to_keypoints(self) -> tuple[Keypoint, ...]:
        if self.keypoints is None:
            return ()
        return tuple(
            Keypoint(
                index=i,
                active=is_visible(float(row[3]), float(row[4])),
                position=np.array(row[:3], dtype=np.float64),
                image_position=np.array(row[:2], dtype=np.float64),
                visibility=float(row[3]),
                presence=float(row[4]),
            )
            for i, row in enumerate(self.keypoints)
        )


def _pack(keypoints: Sequence[Keypoint]) -> np.ndarray:
    if len(keypoints) != NUM_KEYPOINTS:
        raise ShapeError(f"Expected {NUM_KEYPOINTS} keypoints, got {len(keypoints)}")
    return np.array(
        [[*kp.position[:3], kp.visibility, kp.presence] for kp in keypoints],
        dtype=np.float64,
    )


class KeypointRecorder:
    """Collects per-frame keypoints and writes them to JSON or npz."""

    def __init__(self):
        self._frames: list[RecordedFrame] = []
        self._start_time: Optional[float] = None
        self._recording = False

    def start(self):
        """Begin a new recording session."""
        self._frames = []
        self._start_time = None
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns the number of frames captured."""
        self._recording = False
        return len(self._frames)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def add_frame(self, keypoints: Optional[Sequence[Keypoint]], timestamp: Optional[float] = None):
        """Append a frame. Ignored unless recording.

        Args:
            keypoints: 33 projected keypoints, or None/empty for no detection.
            timestamp: Absolute time of the frame; defaults to now.
        """
        if not self._recording:
            return

        now = time.monotonic() if timestamp is None else timestamp
        if self._start_time is None:
            self._start_time = now

        packed = _pack(keypoints) if keypoints else None
        self._frames.append(RecordedFrame(timestamp=now - self._start_time, keypoints=packed))

    def add_result(self, result):
        """Pipeline sink: record a PoseFrameResult."""
        self.add_frame(result.keypoints, result.timestamp)

    def save(self, path: str | Path):
        """Save recording as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": FORMAT_VERSION,
            "frame_count": len(self._frames),
            "duration": self.duration,
            "frames": [
                {
                    "timestamp": f.timestamp,
                    "keypoints": None if f.keypoints is None else f.keypoints.tolist(),
                }
                for f in self._frames
            ],
        }
        with open(path, "w") as f:
            json.dump(data, f)

    def save_compact(self, path: str | Path) -> Path:
        """Save as compressed npz. Frames without a pose are NaN-filled."""
        path = Path(path).with_suffix(".npz")
        path.parent.mkdir(parents=True, exist_ok=True)

        keypoints = np.full((len(self._frames), NUM_KEYPOINTS, KEYPOINT_DIM), np.nan)
        detected = np.zeros(len(self._frames), dtype=bool)
        for i, f in enumerate(self._frames):
            if f.keypoints is not None:
                keypoints[i] = f.keypoints
                detected[i] = True

        np.savez_compressed(
            path,
            timestamps=np.array([f.timestamp for f in self._frames], dtype=np.float64),
            keypoints=keypoints,
            detected=detected,
        )
        return path


class KeypointPlayer:
    """Replays a recorded keypoint session."""

    def __init__(self, frames: list[RecordedFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> KeypointPlayer:
        path = Path(path)
        if path.suffix == ".npz":
            return cls._load_compact(path)

        with open(path) as f:
            data = json.load(f)

        frames = []
        for entry in data["frames"]:
            kp = entry.get("keypoints")
            frames.append(RecordedFrame(
                timestamp=float(entry["timestamp"]),
                keypoints=None if kp is None else np.array(kp, dtype=np.float64),
            ))
        return cls(frames)

    @classmethod
    def _load_compact(cls, path: Path) -> KeypointPlayer:
        with np.load(path, allow_pickle=False) as data:
            timestamps = data["timestamps"]
            keypoints = data["keypoints"]
            detected = data["detected"]
        frames = [
            RecordedFrame(
                timestamp=float(ts),
                keypoints=keypoints[i] if detected[i] else None,
            )
            for i, ts in enumerate(timestamps)
        ]
        return cls(frames)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def play(self) -> Iterator[RecordedFrame]:
        yield from self._frames

    def replay_claps(self, detector: ClapGestureDetector) -> list[ClapEvent]:
        """Feed every detected frame through ``detector``; return fired events.

        Frames without a pose are skipped, as the pipeline skips them.
        """
        events = []
        for frame in self._frames:
            if frame.keypoints is None:
                continue
            event = detector.update(frame.to_keypoints(), frame.timestamp)
            if event is not None:
                events.append(event)
        return events
