"""Pose detector output decoding.

Turns the detector's best-anchor output into image-space geometry and the
region-of-interest transform that crops and re-orients the body for the
landmarker stage.

Coordinate spaces:
    detector tensor  (0..224, y down)  --M-->   image (pixels, y up)
    landmarker tensor (0..256, y down) --M2-->  image
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from pose_clap.affine import AffineTransform, compose, rotation, scale, translation
from pose_clap.anchors import AnchorTable
from pose_clap.errors import ShapeError
from pose_clap.landmarks import image_to_world

DETECTOR_INPUT_SIZE = 224
LANDMARKER_INPUT_SIZE = 256
ROI_SCALE = 1.25
BOX_DIM = 12


@dataclass(frozen=True)
class DetectorOutput:
    """Post-processed detector output for the best-scoring anchor."""
    best_anchor_index: int
    score: float
    box: np.ndarray  # [dx, dy, dw, dh, kp1x, kp1y, kp2x, kp2y, ...]

    def __post_init__(self):
        box = np.asarray(self.box, dtype=np.float64).reshape(-1)
        if box.size < 8:
            raise ShapeError(f"Detector box has {box.size} values, expected {BOX_DIM}")
        object.__setattr__(self, "box", box)


@dataclass
class PoseDetectionResult:
    """Decoded detection in image space. Geometry is None when inactive."""
    active: bool
    score: float
    box_center: Optional[np.ndarray] = None
    box_size: Optional[np.ndarray] = None
    kp1: Optional[np.ndarray] = None
    kp2: Optional[np.ndarray] = None
    roi_radius: Optional[float] = None
    roi_transform: Optional[AffineTransform] = None

    @classmethod
    def inactive(cls, score: float) -> PoseDetectionResult:
        return cls(active=False, score=score)

    def world_box(self, width: float, height: float) -> tuple[np.ndarray, np.ndarray]:
        """Bounding box (center, size) in normalized world space."""
        return image_to_world(self.box_center, width, height), self.box_size / height

    def world_circle(self, width: float, height: float) -> tuple[np.ndarray, float]:
        """Bounding circle (center, radius) in normalized world space."""
        return image_to_world(self.kp1, width, height), self.roi_radius / height


def detector_transform(
    width: float, height: float, input_size: int = DETECTOR_INPUT_SIZE
) -> AffineTransform:
    """Map detector tensor space onto a letterboxed, y-up image."""
    size = max(width, height)
    s = size / float(input_size)
    origin = 0.5 * (np.array([width, height], dtype=np.float64) + np.array([-size, size]))
    return compose(translation(origin), scale((s, -s)))


def roi_transform(
    kp1: np.ndarray,
    kp2: np.ndarray,
    landmarker_size: int = LANDMARKER_INPUT_SIZE,
    roi_scale: float = ROI_SCALE,
) -> tuple[AffineTransform, float]:
    """Build the landmarker ROI transform from the two reference keypoints.

    The ROI is centered on ``kp1`` and rotated so ``kp2`` lies straight above
    it, whatever the body orientation in the image.

    Returns:
        (M2, radius) where M2 maps landmarker tensor space to image space.
    """
    delta = np.asarray(kp2, dtype=np.float64) - np.asarray(kp1, dtype=np.float64)
    radius = roi_scale * float(np.hypot(delta[0], delta[1]))
    theta = math.atan2(delta[1], delta[0])
    half = 0.5 * landmarker_size
    s = radius / half
    m2 = compose(
        translation(kp1),
        scale((s, -s)),
        rotation(0.5 * math.pi - theta),
        translation((-half, -half)),
    )
    return m2, radius


class DetectionDecoder:
    """Decodes the best detector anchor into a ROI for the landmarker."""

    def __init__(
        self,
        anchors: AnchorTable,
        score_threshold: float = 0.75,
        detector_size: int = DETECTOR_INPUT_SIZE,
        landmarker_size: int = LANDMARKER_INPUT_SIZE,
    ):
        self.anchors = anchors
        self.score_threshold = score_threshold
        self.detector_size = detector_size
        self.landmarker_size = landmarker_size

    def decode(self, output: DetectorOutput, m: AffineTransform) -> PoseDetectionResult:
        """Decode one detector output.

        Args:
            output: Best anchor index, score and box offsets.
            m: Detector tensor space -> image space transform.

        Raises:
            IndexError: the anchor index is outside the anchor table.
        """
        score = float(output.score)
        if not score >= self.score_threshold:
            return PoseDetectionResult.inactive(score)

        anchor = self.detector_size * np.array(
            self.anchors.get(int(output.best_anchor_index)), dtype=np.float64
        )
        box = output.box

        center = m.apply(anchor + box[0:2])
        corner = m.apply(anchor + box[0:2] + 0.5 * box[2:4])
        kp1 = m.apply(anchor + box[4:6])
        kp2 = m.apply(anchor + box[6:8])

        m2, radius = roi_transform(kp1, kp2, self.landmarker_size)

        return PoseDetectionResult(
            active=True,
            score=score,
            box_center=center,
            box_size=2.0 * (corner - center),
            kp1=kp1,
            kp2=kp2,
            roi_radius=radius,
            roi_transform=m2,
        )

