"""PoseClap - Pose detection and clap gestures from a two-stage pose model."""

__version__ = "0.1.0"

from pose_clap.affine import AffineTransform, apply, compose, rotation, scale, translation
from pose_clap.anchors import AnchorTable, NUM_ANCHORS
from pose_clap.clap import ClapEvent, ClapGestureDetector, ClapState
from pose_clap.config import PipelineConfig
from pose_clap.decoder import DetectionDecoder, DetectorOutput, PoseDetectionResult
from pose_clap.errors import ConfigError, ParseError, PoseClapError, ShapeError, SourceUnavailable
from pose_clap.landmarks import Keypoint, LandmarkProjector
from pose_clap.pipeline import FrameGate, PoseFrameResult, PosePipeline
from pose_clap.recorder import KeypointPlayer, KeypointRecorder
from pose_clap.sources import Frame, FrameSource, StillImageSource
