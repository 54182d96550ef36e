"""Tests for the clap gesture state machine."""

import math

import numpy as np
import pytest

from pose_clap.clap import ClapGestureDetector, ClapState
from pose_clap.landmarks import (
    LEFT_SHOULDER,
    LEFT_WRIST,
    NUM_KEYPOINTS,
    RIGHT_SHOULDER,
    RIGHT_WRIST,
    Keypoint,
)

SHOULDERS = {LEFT_SHOULDER: (-0.1, 0.3), RIGHT_SHOULDER: (0.1, 0.3)}  # width 0.20


def make_keypoints(wrist_gap: float, hidden=(), shoulders=None):
    """Keypoints with wrists ``wrist_gap`` apart under 0.20-wide shoulders."""
    positions = dict(shoulders or SHOULDERS)
    positions[LEFT_WRIST] = (-wrist_gap / 2, 0.0)
    positions[RIGHT_WRIST] = (wrist_gap / 2, 0.0)

    keypoints = []
    for i in range(NUM_KEYPOINTS):
        x, y = positions.get(i, (0.0, 0.0))
        active = i not in hidden
        keypoints.append(Keypoint(
            index=i,
            active=active,
            position=np.array([x, y, 0.0]),
            image_position=np.array([x, y]),
            visibility=0.9 if active else 0.1,
            presence=0.9,
        ))
    return keypoints


def clapped():
    return make_keypoints(0.05)


def apart():
    return make_keypoints(0.4)


def run_sequence(detector, frames, step=0.1, start=0.0):
    events = []
    for i, kps in enumerate(frames):
        evt = detector.update(kps, start + i * step)
        if evt is not None:
            events.append(evt)
    return events


class TestClapScenario:
    def test_concrete_fire(self):
        det = ClapGestureDetector(distance_factor=0.35, cooldown_seconds=0.3)
        det.state = ClapState(armed=True, last_clap_time=9.5)

        evt = det.update(clapped(), 10.0)

        assert evt is not None
        assert evt.timestamp == 10.0
        assert evt.shoulder_width == pytest.approx(0.20)
        assert evt.threshold == pytest.approx(0.07)
        assert evt.wrist_distance == pytest.approx(0.05)
        assert det.state.last_clap_time == 10.0
        assert det.state.armed is False

    def test_initial_state(self):
        det = ClapGestureDetector()
        assert det.state.armed is True
        assert det.state.last_clap_time == -math.inf

    def test_first_clap_fires_immediately(self):
        det = ClapGestureDetector()
        assert det.update(clapped(), 0.0) is not None

    def test_threshold_is_inclusive(self):
        det = ClapGestureDetector(distance_factor=0.5)
        # wrists exactly half the shoulder width apart
        assert det.update(make_keypoints(0.1), 1.0) is not None


class TestDebounce:
    def test_non_clap_never_fires(self):
        det = ClapGestureDetector()
        frame = apart()
        assert run_sequence(det, [frame] * 100) == []
        assert det.state.armed is True

    def test_one_event_per_episode(self):
        det = ClapGestureDetector(cooldown_seconds=0.3)
        frames = [apart(), clapped(), clapped(), clapped(), apart(), clapped()]
        events = run_sequence(det, frames, step=0.1)
        assert len(events) == 2
        assert [e.timestamp for e in events] == pytest.approx([0.1, 0.5])

    def test_second_episode_inside_cooldown(self):
        det = ClapGestureDetector(cooldown_seconds=0.3)
        frames = [apart(), clapped(), clapped(), clapped(), apart(), clapped()]
        events = run_sequence(det, frames, step=0.05)
        assert len(events) == 1

    def test_blocked_clap_fires_once_cooldown_elapses(self):
        det = ClapGestureDetector(cooldown_seconds=0.3)
        run_sequence(det, [clapped(), apart()], step=0.05)
        assert det.update(clapped(), 0.1) is None  # cooldown
        assert det.state.armed is True
        assert det.update(clapped(), 0.4) is not None

    def test_held_clap_never_refires(self):
        det = ClapGestureDetector(cooldown_seconds=0.3)
        events = run_sequence(det, [clapped()] * 50, step=0.1)
        assert len(events) == 1

    def test_occlusion_rearms(self):
        det = ClapGestureDetector(cooldown_seconds=0.3)
        assert det.update(clapped(), 0.0) is not None
        assert det.state.armed is False

        det.update(make_keypoints(0.05, hidden=(LEFT_WRIST,)), 0.1)
        assert det.state.armed is True

        # re-armed without the hands ever separating; cooldown still applies
        assert det.update(clapped(), 0.2) is None
        assert det.update(clapped(), 0.35) is not None

    def test_held_clap_without_occlusion_stays_disarmed(self):
        det = ClapGestureDetector(cooldown_seconds=0.3)
        det.update(clapped(), 0.0)
        assert det.update(clapped(), 0.35) is None

    @pytest.mark.parametrize("hidden", [LEFT_WRIST, RIGHT_WRIST, LEFT_SHOULDER, RIGHT_SHOULDER])
    def test_any_missing_keypoint_rearms(self, hidden):
        det = ClapGestureDetector()
        det.state.armed = False
        assert det.update(make_keypoints(0.05, hidden=(hidden,)), 1.0) is None
        assert det.state.armed is True

    def test_other_keypoints_do_not_matter(self):
        det = ClapGestureDetector()
        assert det.update(make_keypoints(0.05, hidden=(0, 23, 24)), 0.0) is not None


class TestDegenerate:
    def test_zero_shoulder_width(self):
        det = ClapGestureDetector()
        det.state.armed = False
        collapsed = {LEFT_SHOULDER: (0.0, 0.3), RIGHT_SHOULDER: (0.0, 0.3)}
        assert det.update(make_keypoints(0.0, shoulders=collapsed), 1.0) is None
        # state untouched
        assert det.state.armed is False

    def test_tiny_shoulder_width(self):
        det = ClapGestureDetector()
        tiny = {LEFT_SHOULDER: (0.0, 0.3), RIGHT_SHOULDER: (0.00005, 0.3)}
        assert det.update(make_keypoints(0.0, shoulders=tiny), 1.0) is None


class TestConfiguration:
    @pytest.mark.parametrize("factor", [0.05, 2.5])
    def test_distance_factor_range(self, factor):
        with pytest.raises(ValueError):
            ClapGestureDetector(distance_factor=factor)

    @pytest.mark.parametrize("cooldown", [0.0, 3.0])
    def test_cooldown_range(self, cooldown):
        with pytest.raises(ValueError):
            ClapGestureDetector(cooldown_seconds=cooldown)

    def test_set_sensitivity_clamps(self):
        det = ClapGestureDetector()
        det.set_sensitivity(5.0)
        assert det.distance_factor == 2.0
        det.set_sensitivity(0.0)
        assert det.distance_factor == 0.1
        det.set_sensitivity(0.8)
        assert det.distance_factor == 0.8

    def test_sensitivity_changes_detection(self):
        det = ClapGestureDetector(distance_factor=0.1)
        assert det.update(make_keypoints(0.05), 0.0) is None
        det.set_sensitivity(0.35)
        assert det.update(make_keypoints(0.05), 0.1) is not None


class TestListeners:
    def test_callback_receives_event(self):
        det = ClapGestureDetector()
        received = []
        det.on_clap(received.append)
        evt = det.update(clapped(), 1.0)
        assert received == [evt]
        assert det.total_claps == 1

    def test_failing_listener_does_not_break_detection(self):
        det = ClapGestureDetector()

        def broken(_evt):
            raise RuntimeError("boom")

        det.on_clap(broken)
        assert det.update(clapped(), 1.0) is not None
        assert det.state.armed is False

    def test_reset(self):
        det = ClapGestureDetector()
        det.update(clapped(), 1.0)
        det.reset()
        assert det.state == ClapState()
        assert det.total_claps == 0
