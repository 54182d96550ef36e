"""Image sources feeding the pose pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from pose_clap.errors import SourceUnavailable

try:
    import cv2
except ImportError:
    cv2 = None

logger = logging.getLogger("pose_clap.sources")


@dataclass
class Frame:
    """One input frame. ``pixels`` is RGB, shape (H, W, 3)."""
    pixels: np.ndarray
    width: int
    height: int
    is_fresh: bool = True

    @classmethod
    def from_pixels(cls, pixels: np.ndarray, is_fresh: bool = True) -> Frame:
        h, w = pixels.shape[:2]
        return cls(pixels=pixels, width=w, height=h, is_fresh=is_fresh)


class FrameSource:
    """Source interface consumed by the pipeline.

    ``live`` sources are subject to frame-skip gating; still sources are
    processed on every tick. ``blocking`` sources are read off the event loop.
    """

    live: bool = True
    blocking: bool = False

    def get_current_frame(self) -> Frame:
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class StillImageSource(FrameSource):
    """A fixed image, re-submitted on every tick."""

    live = False

    def __init__(self, pixels: np.ndarray):
        self._frame = Frame.from_pixels(np.ascontiguousarray(pixels))

    @classmethod
    def from_file(cls, path: str | Path) -> StillImageSource:
        return cls(load_image(path))

    def get_current_frame(self) -> Frame:
        return self._frame


class CameraSource(FrameSource):
    """Webcam capture through OpenCV."""

    blocking = True

    def __init__(self, index: int = 0, width: Optional[int] = None, height: Optional[int] = None):
        if cv2 is None:
            raise ImportError("opencv-python is required. Install with: pip install opencv-python")

        self.index = index
        self._cap = cv2.VideoCapture(index)
        if not self._cap.isOpened():
            self._cap.release()
            raise SourceUnavailable(f"Could not open camera {index}")
        if width:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._last: Optional[Frame] = None

    def get_current_frame(self) -> Frame:
        ret, frame = self._cap.read()
        if not ret:
            if self._last is None:
                raise SourceUnavailable(f"Camera {self.index} has not produced a frame")
            return Frame(self._last.pixels, self._last.width, self._last.height, is_fresh=False)

        self._last = Frame.from_pixels(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        return self._last

    def close(self):
        self._cap.release()


def load_image(path: str | Path) -> np.ndarray:
    """Read an image file as RGB."""
    if cv2 is None:
        raise ImportError("opencv-python is required. Install with: pip install opencv-python")
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise SourceUnavailable(f"Could not read image {path}")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
