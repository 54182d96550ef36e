"""Pose detector anchor table.

The detector predicts box and keypoint offsets relative to a fixed grid of
2254 anchors. Each anchor contributes a normalized (x, y) center, read once
at startup from a text resource with one anchor per row. Rows may be comma or
whitespace separated; only the first two columns are used.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Union

import numpy as np

from pose_clap.errors import ParseError

logger = logging.getLogger("pose_clap.anchors")

NUM_ANCHORS = 2254

_SPLIT = re.compile(r"[,\s]+")


def _parse_row(line: str) -> tuple[float, float] | None:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    fields = [f for f in _SPLIT.split(line) if f]
    if len(fields) < 2:
        return None
    try:
        return float(fields[0]), float(fields[1])
    except ValueError:
        # header rows and other junk
        return None


class AnchorTable:
    """Read-only table of normalized anchor centers.

    Safe to share between any number of pipelines.
    """

    def __init__(self, positions: np.ndarray):
        positions = np.array(positions, dtype=np.float64).reshape(-1, 2)
        positions.setflags(write=False)
        self._positions = positions

    @classmethod
    def load(
        cls,
        source: Union[str, Path, Iterable[str]],
        num_anchors: int = NUM_ANCHORS,
    ) -> AnchorTable:
        """Parse ``num_anchors`` rows from text, a file path or lines.

        Raises:
            ParseError: fewer than ``num_anchors`` valid rows were found.
        """
        if isinstance(source, Path):
            return cls.from_file(source, num_anchors)
        if isinstance(source, str):
            lines: Iterable[str] = source.splitlines()
        else:
            lines = source

        rows: list[tuple[float, float]] = []
        for line in lines:
            row = _parse_row(line)
            if row is None:
                continue
            rows.append(row)
            if len(rows) == num_anchors:
                break

        if len(rows) < num_anchors:
            raise ParseError(
                f"Anchor table has {len(rows)} valid rows, expected {num_anchors}"
            )

        logger.debug("Loaded %d anchors", len(rows))
        return cls(np.array(rows, dtype=np.float64))

    @classmethod
    def from_file(cls, path: Union[str, Path], num_anchors: int = NUM_ANCHORS) -> AnchorTable:
        path = Path(path)
        try:
            text = path.read_text()
        except OSError as e:
            raise ParseError(f"Cannot read anchor table {path}: {e}") from e
        return cls.load(text, num_anchors)

    def get(self, index: int) -> tuple[float, float]:
        """Return the stored (x, y) for ``index``.

        Raises:
            IndexError: index outside [0, N). Negative indices are not wrapped.
        """
        if not 0 <= index < len(self._positions):
            raise IndexError(
                f"Anchor index {index} out of range [0, {len(self._positions)})"
            )
        x, y = self._positions[index]
        return float(x), float(y)

    @property
    def positions(self) -> np.ndarray:
        return self._positions

    def __len__(self) -> int:
        return len(self._positions)
