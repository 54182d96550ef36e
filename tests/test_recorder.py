"""Tests for keypoint recording and replay."""

import json

import numpy as np
import pytest

from pose_clap.clap import ClapGestureDetector
from pose_clap.errors import ShapeError
from pose_clap.landmarks import (
    LEFT_SHOULDER,
    LEFT_WRIST,
    NUM_KEYPOINTS,
    RIGHT_SHOULDER,
    RIGHT_WRIST,
    Keypoint,
)
from pose_clap.recorder import KeypointPlayer, KeypointRecorder


def make_keypoints(wrist_gap: float):
    positions = {
        LEFT_SHOULDER: (-0.1, 0.3),
        RIGHT_SHOULDER: (0.1, 0.3),
        LEFT_WRIST: (-wrist_gap / 2, 0.0),
        RIGHT_WRIST: (wrist_gap / 2, 0.0),
    }
    return tuple(
        Keypoint(
            index=i,
            active=True,
            position=np.array([*positions.get(i, (0.0, 0.0)), 0.01 * i]),
            image_position=np.zeros(2),
            visibility=0.9,
            presence=0.8,
        )
        for i in range(NUM_KEYPOINTS)
    )


def record_session(recorder):
    """apart, clap, none, apart, clap every 0.5 s starting at t=100."""
    recorder.start()
    frames = [make_keypoints(0.4), make_keypoints(0.02), None, make_keypoints(0.4), make_keypoints(0.02)]
    for i, kps in enumerate(frames):
        recorder.add_frame(kps, timestamp=100.0 + 0.5 * i)
    recorder.stop()


class TestKeypointRecorder:
    def test_not_recording_ignores_frames(self):
        rec = KeypointRecorder()
        rec.add_frame(make_keypoints(0.1), timestamp=1.0)
        assert rec.frame_count == 0

    def test_relative_timestamps(self):
        rec = KeypointRecorder()
        record_session(rec)
        assert rec.frame_count == 5
        assert rec.duration == pytest.approx(2.0)
        assert not rec.is_recording

    def test_wrong_keypoint_count(self):
        rec = KeypointRecorder()
        rec.start()
        with pytest.raises(ShapeError):
            rec.add_frame(make_keypoints(0.1)[:10], timestamp=0.0)

    def test_start_clears(self):
        rec = KeypointRecorder()
        record_session(rec)
        rec.start()
        assert rec.frame_count == 0


class TestPersistence:
    def test_json_roundtrip(self, tmp_path):
        rec = KeypointRecorder()
        record_session(rec)
        path = tmp_path / "session.json"
        rec.save(path)

        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert data["frame_count"] == 5
        assert data["frames"][2]["keypoints"] is None

        player = KeypointPlayer.load(path)
        assert player.frame_count == 5
        assert player.duration == pytest.approx(2.0)
        frames = list(player.play())
        assert frames[1].keypoints.shape == (NUM_KEYPOINTS, 5)
        assert frames[1].keypoints[3, 2] == pytest.approx(0.03)

    def test_compact_roundtrip(self, tmp_path):
        rec = KeypointRecorder()
        record_session(rec)
        path = rec.save_compact(tmp_path / "session")
        assert path.suffix == ".npz"

        frames = list(KeypointPlayer.load(path).play())
        assert len(frames) == 5
        assert frames[2].keypoints is None
        np.testing.assert_allclose(frames[0].keypoints[:, 3:], np.tile([0.9, 0.8], (NUM_KEYPOINTS, 1)))

    def test_restored_keypoints(self, tmp_path):
        rec = KeypointRecorder()
        record_session(rec)
        rec.save(tmp_path / "s.json")
        kps = next(KeypointPlayer.load(tmp_path / "s.json").play()).to_keypoints()
        assert len(kps) == NUM_KEYPOINTS
        assert kps[LEFT_WRIST].active
        np.testing.assert_allclose(kps[LEFT_WRIST].position[:2], [-0.2, 0.0])


class TestReplay:
    def test_replay_claps(self, tmp_path):
        rec = KeypointRecorder()
        record_session(rec)
        rec.save(tmp_path / "s.json")

        events = KeypointPlayer.load(tmp_path / "s.json").replay_claps(ClapGestureDetector())
        assert [e.timestamp for e in events] == pytest.approx([0.5, 2.0])

    def test_replay_respects_cooldown(self, tmp_path):
        rec = KeypointRecorder()
        record_session(rec)
        path = rec.save_compact(tmp_path / "s")

        events = KeypointPlayer.load(path).replay_claps(ClapGestureDetector(cooldown_seconds=2.0))
        assert len(events) == 1
