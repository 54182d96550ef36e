"""Inference boundary: image sampling and the detector/landmarker models.

The pipeline only needs an object with two awaitable calls:

    run_detector(batch)   -> DetectorOutput for the best-scoring anchor
    run_landmarker(batch) -> flat landmark values, 33 x [x, y, z, vis, presence]

``OnnxPoseEngine`` provides them for BlazePose-style ONNX exports.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from pose_clap.affine import AffineTransform
from pose_clap.decoder import BOX_DIM, DetectorOutput
from pose_clap.errors import ShapeError

try:
    import cv2
except ImportError:
    cv2 = None

logger = logging.getLogger("pose_clap.engine")

SCORE_CLIP = 100.0


class InferenceEngine(ABC):
    """Opaque detector/landmarker inference."""

    @abstractmethod
    async def run_detector(self, batch: np.ndarray) -> DetectorOutput: ...

    @abstractmethod
    async def run_landmarker(self, batch: np.ndarray) -> np.ndarray: ...

    def close(self):
        pass


def sample_affine(pixels: np.ndarray, transform: AffineTransform, size: int) -> np.ndarray:
    """Resample an RGB image into a (1, size, size, 3) float32 batch.

    ``transform`` maps tensor coordinates to image coordinates. Image space is
    y-up, so rows are flipped before sampling. Out-of-image samples are black.
    """
    if cv2 is None:
        raise ImportError("opencv-python is required. Install with: pip install opencv-python")

    flipped = np.ascontiguousarray(pixels[::-1])
    out = cv2.warpAffine(
        flipped,
        np.array(transform.matrix, dtype=np.float64),
        (size, size),
        flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )
    batch = out.astype(np.float32)
    if pixels.dtype == np.uint8:
        batch /= 255.0
    return batch[np.newaxis]


def select_best_anchor(boxes, scores, clip: float = SCORE_CLIP) -> DetectorOutput:
    """Pick the highest-scoring anchor from raw detector outputs.

    Args:
        boxes: Raw box regressors, shape (1, N, 12) or (N, 12).
        scores: Raw score logits, shape (1, N, 1) or (N,).
    """
    logits = np.asarray(scores, dtype=np.float64).reshape(-1)
    flat = np.asarray(boxes, dtype=np.float64).reshape(-1)
    if flat.size != logits.size * BOX_DIM:
        raise ShapeError(
            f"Detector produced {flat.size} box values for {logits.size} anchors"
        )
    idx = int(np.argmax(logits))
    score = 1.0 / (1.0 + np.exp(-np.clip(logits[idx], -clip, clip)))
    return DetectorOutput(
        best_anchor_index=idx,
        score=float(score),
        box=flat.reshape(-1, BOX_DIM)[idx],
    )


class OnnxPoseEngine(InferenceEngine):
    """Runs the detector and landmarker with onnxruntime.

    Sessions are created up front, so a missing model fails before the
    pipeline starts. Inference runs in a worker thread to keep the event loop
    free.
    """

    LANDMARK_OUTPUT = "Identity"

    def __init__(
        self,
        detector_path: str | Path,
        landmarker_path: str | Path,
        providers: Optional[Sequence[str]] = None,
    ):
        import onnxruntime as ort

        for path in (detector_path, landmarker_path):
            if not Path(path).is_file():
                raise FileNotFoundError(f"Model not found: {path}")

        providers = list(providers or ["CPUExecutionProvider"])
        self._detector = ort.InferenceSession(str(detector_path), providers=providers)
        self._landmarker = ort.InferenceSession(str(landmarker_path), providers=providers)
        self._detector_input = self._detector.get_inputs()[0].name
        self._landmarker_input = self._landmarker.get_inputs()[0].name

        names = [o.name for o in self._landmarker.get_outputs()]
        self._landmark_output = self.LANDMARK_OUTPUT if self.LANDMARK_OUTPUT in names else names[0]
        logger.info(
            "Loaded detector %s and landmarker %s (%s)",
            Path(detector_path).name, Path(landmarker_path).name, ", ".join(providers),
        )

    def _detect(self, batch: np.ndarray) -> DetectorOutput:
        boxes, scores = self._detector.run(None, {self._detector_input: batch})[:2]
        return select_best_anchor(boxes, scores)

    def _landmark(self, batch: np.ndarray) -> np.ndarray:
        (values,) = self._landmarker.run([self._landmark_output], {self._landmarker_input: batch})
        return np.asarray(values, dtype=np.float32).reshape(-1)

    async def run_detector(self, batch: np.ndarray) -> DetectorOutput:
        return await asyncio.to_thread(self._detect, batch)

    async def run_landmarker(self, batch: np.ndarray) -> np.ndarray:
        return await asyncio.to_thread(self._landmark, batch)
