"""Pose landmark projection from landmarker tensor space to world space."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from pose_clap.affine import AffineTransform
from pose_clap.errors import ShapeError

NUM_KEYPOINTS = 33
KEYPOINT_DIM = 5  # x, y, z, visibility, presence

# Landmarker output convention
NOSE = 0
LEFT_SHOULDER, RIGHT_SHOULDER = 11, 12
LEFT_ELBOW, RIGHT_ELBOW = 13, 14
LEFT_WRIST, RIGHT_WRIST = 15, 16
LEFT_HIP, RIGHT_HIP = 23, 24

KEYPOINT_NAMES = (
    "nose",
    "left_eye_inner", "left_eye", "left_eye_outer",
    "right_eye_inner", "right_eye", "right_eye_outer",
    "left_ear", "right_ear",
    "mouth_left", "mouth_right",
    "left_shoulder", "right_shoulder",
    "left_elbow", "right_elbow",
    "left_wrist", "right_wrist",
    "left_pinky", "right_pinky",
    "left_index", "right_index",
    "left_thumb", "right_thumb",
    "left_hip", "right_hip",
    "left_knee", "right_knee",
    "left_ankle", "right_ankle",
    "left_heel", "right_heel",
    "left_foot_index", "right_foot_index",
)

VISIBILITY_THRESHOLD = 0.5


@dataclass(frozen=True)
class Keypoint:
    """One projected landmark."""
    index: int
    active: bool
    position: np.ndarray  # world space (x, y, z)
    image_position: np.ndarray  # image space (x, y)
    visibility: float
    presence: float

    @property
    def name(self) -> str:
        return KEYPOINT_NAMES[self.index]


def image_to_world(point, width: float, height: float) -> np.ndarray:
    """Center on the image and normalize by its height."""
    p = np.asarray(point, dtype=np.float64)
    return (p - 0.5 * np.array([width, height], dtype=np.float64)) / height


def is_visible(visibility: float, presence: float) -> bool:
    # One shared threshold for both scores.
    return visibility > VISIBILITY_THRESHOLD and presence > VISIBILITY_THRESHOLD


class LandmarkProjector:
    """Maps the landmarker's 33 keypoints through the ROI transform.

    Input is the flat landmarker output: 33 records of
    [x, y, z, visibility, presence] in landmarker tensor space. Depth is in a
    unit cube centered on the hips and is normalized by image height like x/y.
    """

    def project(
        self,
        values: Sequence[float],
        roi_transform: AffineTransform,
        width: float,
        height: float,
    ) -> tuple[Keypoint, ...]:
        """Project landmarks into image and world space.

        Raises:
            ShapeError: fewer than 33 * 5 values were supplied.
        """
        flat = np.asarray(values, dtype=np.float64).reshape(-1)
        needed = NUM_KEYPOINTS * KEYPOINT_DIM
        if flat.size < needed:
            raise ShapeError(f"Landmarker output has {flat.size} values, expected {needed}")

        records = flat[:needed].reshape(NUM_KEYPOINTS, KEYPOINT_DIM)
        image_xy = roi_transform.apply(records[:, 0:2])
        world_xy = image_to_world(image_xy, width, height)
        depth = records[:, 2] / height

        keypoints = []
        for i in range(NUM_KEYPOINTS):
            visibility = float(records[i, 3])
            presence = float(records[i, 4])
            keypoints.append(Keypoint(
                index=i,
                active=is_visible(visibility, presence),
                position=np.array([world_xy[i, 0], world_xy[i, 1], depth[i]]),
                image_position=image_xy[i],
                visibility=visibility,
                presence=presence,
            ))
        return tuple(keypoints)
