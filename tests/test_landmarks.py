"""Tests for landmark projection and visibility gating."""

import numpy as np
import pytest

from pose_clap.affine import AffineTransform, compose, scale, translation
from pose_clap.errors import ShapeError
from pose_clap.landmarks import (
    KEYPOINT_NAMES,
    LEFT_SHOULDER,
    LEFT_WRIST,
    NUM_KEYPOINTS,
    RIGHT_SHOULDER,
    RIGHT_WRIST,
    LandmarkProjector,
    image_to_world,
)


def make_values(x=0.0, y=0.0, z=0.0, visibility=0.9, presence=0.9, n=NUM_KEYPOINTS):
    values = np.zeros((n, 5), dtype=np.float32)
    values[:] = [x, y, z, visibility, presence]
    return values.reshape(-1)


class TestImageToWorld:
    def test_center_is_origin(self):
        np.testing.assert_allclose(image_to_world((320, 240), 640, 480), [0, 0])

    def test_normalized_by_height(self):
        np.testing.assert_allclose(image_to_world((640, 480), 640, 480), [320 / 480, 0.5])


class TestLandmarkProjector:
    def test_projects_through_roi(self):
        values = make_values(x=150.0, y=50.0, z=10.0)
        kps = LandmarkProjector().project(values, AffineTransform.identity(), 200, 100)

        assert len(kps) == NUM_KEYPOINTS
        np.testing.assert_allclose(kps[0].image_position, [150, 50])
        np.testing.assert_allclose(kps[0].position, [0.5, 0.0, 0.1])

    def test_roi_transform_applied(self):
        m2 = compose(translation((100, 100)), scale(2.0))
        values = make_values(x=10.0, y=5.0)
        kps = LandmarkProjector().project(values, m2, 200, 200)
        np.testing.assert_allclose(kps[5].image_position, [120, 110])

    def test_index_aligned(self):
        kps = LandmarkProjector().project(make_values(), AffineTransform.identity(), 100, 100)
        assert [kp.index for kp in kps] == list(range(NUM_KEYPOINTS))
        assert kps[LEFT_SHOULDER].name == "left_shoulder"
        assert kps[RIGHT_SHOULDER].name == "right_shoulder"
        assert kps[LEFT_WRIST].name == "left_wrist"
        assert kps[RIGHT_WRIST].name == "right_wrist"
        assert len(KEYPOINT_NAMES) == NUM_KEYPOINTS

    @pytest.mark.parametrize(
        "visibility,presence,expected",
        [
            (0.9, 0.9, True),
            (0.51, 0.51, True),
            (0.5, 0.9, False),
            (0.9, 0.5, False),
            (0.2, 0.9, False),
            (0.9, 0.1, False),
        ],
    )
    def test_visibility_gate(self, visibility, presence, expected):
        values = make_values(visibility=visibility, presence=presence)
        kps = LandmarkProjector().project(values, AffineTransform.identity(), 100, 100)
        assert all(kp.active is expected for kp in kps)

    def test_extra_values_ignored(self):
        values = np.concatenate([make_values(x=1.0), np.full(30, 99.0)])
        kps = LandmarkProjector().project(values, AffineTransform.identity(), 100, 100)
        assert len(kps) == NUM_KEYPOINTS
        assert kps[-1].image_position[0] == pytest.approx(1.0)

    def test_short_input(self):
        values = make_values(n=NUM_KEYPOINTS - 1)
        with pytest.raises(ShapeError):
            LandmarkProjector().project(values, AffineTransform.identity(), 100, 100)
