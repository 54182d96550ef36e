"""2D affine transforms for mapping between tensor, image and ROI space.

Transforms are stored as immutable 2x3 matrices ``[A | t]`` so that a point
``p`` maps to ``A @ p + t``. Composition follows matrix multiplication order:
``compose(a, b)`` applies ``b`` first, then ``a``.

Usage:
    M = compose(translation((10, 20)), scale((2.0, -2.0)))
    image_point = apply(M, (112, 112))
"""

from __future__ import annotations

from typing import Union

import numpy as np

Vector = Union[float, tuple, list, np.ndarray]


class AffineTransform:
    """Immutable 2x3 affine matrix."""

    __slots__ = ("_m",)

    def __init__(self, matrix):
        m = np.array(matrix, dtype=np.float64).reshape(2, 3)
        m.setflags(write=False)
        self._m = m

    @property
    def matrix(self) -> np.ndarray:
        """Read-only 2x3 matrix."""
        return self._m

    @property
    def linear(self) -> np.ndarray:
        return self._m[:, :2]

    @property
    def offset(self) -> np.ndarray:
        return self._m[:, 2]

    @classmethod
    def identity(cls) -> AffineTransform:
        return cls([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])

    def apply(self, points) -> np.ndarray:
        """Map a single point (2,) or an array of points (N, 2)."""
        p = np.asarray(points, dtype=np.float64)
        return p @ self.linear.T + self.offset

    def compose(self, other: AffineTransform) -> AffineTransform:
        """Transform equivalent to applying ``other`` then ``self``."""
        a, b = self._m, other._m
        linear = a[:, :2] @ b[:, :2]
        offset = a[:, :2] @ b[:, 2] + a[:, 2]
        return AffineTransform(np.column_stack([linear, offset]))

    def __matmul__(self, other: AffineTransform) -> AffineTransform:
        return self.compose(other)

    def inverse(self) -> AffineTransform:
        inv = np.linalg.inv(self.linear)
        return AffineTransform(np.column_stack([inv, -inv @ self.offset]))

    def allclose(self, other: AffineTransform, atol: float = 1e-9) -> bool:
        return bool(np.allclose(self._m, other._m, atol=atol))

    def __eq__(self, other) -> bool:
        if not isinstance(other, AffineTransform):
            return NotImplemented
        return bool(np.array_equal(self._m, other._m))

    def __hash__(self):
        return hash(self._m.tobytes())

    def __repr__(self) -> str:
        rows = ", ".join(
            "[" + ", ".join(f"{v:.6g}" for v in row) + "]" for row in self._m
        )
        return f"AffineTransform([{rows}])"


def _as_pair(v: Vector) -> np.ndarray:
    arr = np.asarray(v, dtype=np.float64)
    if arr.ndim == 0:
        return np.array([float(arr), float(arr)])
    return arr.reshape(2)


def translation(v: Vector) -> AffineTransform:
    tx, ty = _as_pair(v)
    return AffineTransform([[1.0, 0.0, tx], [0.0, 1.0, ty]])


def scale(v: Vector) -> AffineTransform:
    """Axis-aligned scale. A negative y component flips the vertical axis."""
    sx, sy = _as_pair(v)
    return AffineTransform([[sx, 0.0, 0.0], [0.0, sy, 0.0]])


def rotation(theta: float) -> AffineTransform:
    """Counter-clockwise rotation by ``theta`` radians about the origin."""
    c, s = float(np.cos(theta)), float(np.sin(theta))
    return AffineTransform([[c, -s, 0.0], [s, c, 0.0]])


def compose(a: AffineTransform, b: AffineTransform, *rest: AffineTransform) -> AffineTransform:
    """Right-to-left composition: the last transform is applied first."""
    result = a.compose(b)
    for t in rest:
        result = result.compose(t)
    return result


def apply(t: AffineTransform, point) -> np.ndarray:
    return t.apply(point)
