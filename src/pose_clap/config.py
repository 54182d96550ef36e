"""Pipeline configuration.

Load from YAML:
    config = PipelineConfig.from_yaml("pose_clap.yml")

Keys match the dataclass fields; unknown keys are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from pose_clap.clap import MAX_COOLDOWN, MAX_DISTANCE_FACTOR, MIN_COOLDOWN, MIN_DISTANCE_FACTOR
from pose_clap.errors import ConfigError

logger = logging.getLogger("pose_clap.config")


@dataclass
class PipelineConfig:
    score_threshold: float = 0.75
    detect_every_nth_frame: int = 4
    clap_distance_factor: float = 0.35
    clap_cooldown_seconds: float = 0.3
    enable_clap_detection: bool = True
    wait_for_source: bool = True
    min_frame_size: int = 16
    detector_model: Optional[str] = None
    landmarker_model: Optional[str] = None
    anchors_file: Optional[str] = None
    camera_index: int = 0
    camera_width: int = 1920
    camera_height: int = 1080

    def validate(self) -> PipelineConfig:
        """Check ranges. Returns self so calls can be chained."""
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ConfigError(f"score_threshold must be in [0, 1], got {self.score_threshold}")
        if self.detect_every_nth_frame < 1:
            raise ConfigError(
                f"detect_every_nth_frame must be >= 1, got {self.detect_every_nth_frame}"
            )
        if not MIN_DISTANCE_FACTOR <= self.clap_distance_factor <= MAX_DISTANCE_FACTOR:
            raise ConfigError(
                f"clap_distance_factor must be in [{MIN_DISTANCE_FACTOR}, {MAX_DISTANCE_FACTOR}], "
                f"got {self.clap_distance_factor}"
            )
        if not MIN_COOLDOWN <= self.clap_cooldown_seconds <= MAX_COOLDOWN:
            raise ConfigError(
                f"clap_cooldown_seconds must be in [{MIN_COOLDOWN}, {MAX_COOLDOWN}], "
                f"got {self.clap_cooldown_seconds}"
            )
        if self.min_frame_size < 0:
            raise ConfigError(f"min_frame_size must be >= 0, got {self.min_frame_size}")
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> PipelineConfig:
        known = {f.name for f in fields(cls)}
        data = data or {}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known}).validate()

    @classmethod
    def from_yaml(cls, path: str | Path) -> PipelineConfig:
        """Load a config from a YAML file."""
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"{path}: invalid YAML: {e}") from e
        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at top level")
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
