"""Per-frame pose pipeline: frame -> detector -> landmarker -> clap events.

One pipeline instance runs one cooperative loop. Frames are processed strictly
in order; the loop only suspends while waiting for a frame or for inference.
Per-frame errors drop the frame and the loop carries on.

Usage:
    pipeline = PosePipeline(CameraSource(0), OnnxPoseEngine(det, lm), anchors)
    pipeline.on_clap(lambda evt: print("clap!"))
    await pipeline.run()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from pose_clap.anchors import AnchorTable
from pose_clap.clap import ClapEvent, ClapGestureDetector
from pose_clap.config import PipelineConfig
from pose_clap.decoder import DetectionDecoder, PoseDetectionResult, detector_transform
from pose_clap.engine import InferenceEngine, sample_affine
from pose_clap.errors import ShapeError, SourceUnavailable
from pose_clap.landmarks import Keypoint, LandmarkProjector
from pose_clap.metrics import MetricsCollector
from pose_clap.profiler import PipelineProfiler
from pose_clap.sources import Frame, FrameSource

logger = logging.getLogger("pose_clap.pipeline")

ImageSampler = Callable[[np.ndarray, object, int], np.ndarray]


@dataclass
class PoseFrameResult:
    """Everything the pipeline produced for one admitted frame."""
    timestamp: float
    width: int
    height: int
    detection: PoseDetectionResult
    keypoints: tuple[Keypoint, ...] = ()
    clap: Optional[ClapEvent] = None
    dropped: bool = False

    @property
    def active(self) -> bool:
        return self.detection.active

    @property
    def bounding_box(self) -> Optional[tuple[np.ndarray, np.ndarray]]:
        """(center, size) in world space, or None without a detection."""
        if not self.detection.active:
            return None
        return self.detection.world_box(self.width, self.height)

    @property
    def bounding_circle(self) -> Optional[tuple[np.ndarray, float]]:
        """(center, radius) in world space, or None without a detection."""
        if not self.detection.active:
            return None
        return self.detection.world_circle(self.width, self.height)


@dataclass
class PipelineStats:
    """Runtime statistics."""
    fps: float
    avg_latency_ms: float
    frames_admitted: int
    frames_skipped: int
    frames_dropped: int
    detections: int
    claps: int
    profiler_summary: dict = field(default_factory=dict)


class FrameGate:
    """Decides which source frames reach the pipeline.

    Stale frames and frames no larger than ``min_size`` in either dimension
    are skipped without counting. Of the remaining frames from a live source,
    only every ``every_nth`` one is admitted. Still sources pass every tick.
    """

    def __init__(self, every_nth: int = 4, min_size: int = 16, live: bool = True):
        self.every_nth = max(1, every_nth)
        self.min_size = min_size
        self.live = live
        self._count = 0

    def is_valid(self, frame: Frame) -> bool:
        return frame.is_fresh and frame.width > self.min_size and frame.height > self.min_size

    def admit(self, frame: Frame) -> bool:
        if not self.live:
            return True
        if not self.is_valid(frame):
            return False
        self._count += 1
        return self._count % self.every_nth == 0

    def reset(self):
        self._count = 0


class PosePipeline:
    """Drives detection, landmarking and clap detection for one source.

    Collaborators are injected: the frame source, the inference engine, the
    shared anchor table and an image sampler that resamples a frame through a
    tensor->image transform.
    """

    def __init__(
        self,
        source: Optional[FrameSource],
        engine: InferenceEngine,
        anchors: AnchorTable,
        config: Optional[PipelineConfig] = None,
        sampler: ImageSampler = sample_affine,
        fallback: Optional[FrameSource] = None,
        clock: Callable[[], float] = time.monotonic,
        idle_interval: float = 0.01,
        enable_profiling: bool = True,
    ):
        if source is None:
            if fallback is None:
                raise SourceUnavailable("No input source available for pose detection")
            logger.warning("Live source unavailable, falling back to %s", type(fallback).__name__)
            source = fallback

        self.config = (config or PipelineConfig()).validate()
        self.source = source
        self.engine = engine
        self.sampler = sampler
        self.idle_interval = idle_interval
        self._clock = clock

        self.decoder = DetectionDecoder(anchors, score_threshold=self.config.score_threshold)
        self.projector = LandmarkProjector()
        self.clap_detector = ClapGestureDetector(
            distance_factor=self.config.clap_distance_factor,
            cooldown_seconds=self.config.clap_cooldown_seconds,
        )
        self.gate = FrameGate(
            every_nth=self.config.detect_every_nth_frame,
            min_size=self.config.min_frame_size,
            live=source.live,
        )

        self.metrics = MetricsCollector()
        self.profiler = PipelineProfiler()
        self.profiler.enabled = enable_profiling
        self.clap_detector.on_clap(lambda _evt: self.metrics.record_clap())

        self._callbacks: list[Callable[[PoseFrameResult], None]] = []
        self._frame_times: deque = deque(maxlen=60)
        self._stopping = False
        self._task: Optional[asyncio.Task] = None

    def on_result(self, callback: Callable[[PoseFrameResult], None]):
        """Register a sink for per-frame results."""
        self._callbacks.append(callback)

    def on_clap(self, callback: Callable[[ClapEvent], None]):
        """Register a listener for clap events."""
        self.clap_detector.on_clap(callback)

    def set_clap_sensitivity(self, value: float):
        self.clap_detector.set_sensitivity(value)

    async def process_frame(self, frame: Frame, now: Optional[float] = None) -> PoseFrameResult:
        """Run one detect -> landmark -> gesture sequence on ``frame``.

        Any failure inside the stages drops the frame; the returned result then
        carries no geometry, only the detector score if one was decoded.
        """
        now = self._clock() if now is None else now
        t0 = time.perf_counter()
        result = PoseFrameResult(
            timestamp=now,
            width=frame.width,
            height=frame.height,
            detection=PoseDetectionResult.inactive(0.0),
        )

        try:
            await self._run_stages(frame, result)
        except (IndexError, ShapeError) as e:
            logger.warning("Dropping frame: %s", e)
            self._drop(result)
        except Exception:
            logger.exception("Frame failed")
            self._drop(result)
        else:
            elapsed = time.perf_counter() - t0
            self._frame_times.append(elapsed)
            self.profiler.record("frame", elapsed * 1000.0)
            self.metrics.record_frame(elapsed, result.active)

        for cb in self._callbacks:
            try:
                cb(result)
            except Exception as e:
                logger.error("Result sink error: %s", e)

        return result

    def _drop(self, result: PoseFrameResult):
        self.metrics.record_drop()
        result.detection = PoseDetectionResult.inactive(result.detection.score)
        result.keypoints = ()
        result.clap = None
        result.dropped = True

    async def _run_stages(self, frame: Frame, result: PoseFrameResult):
        """Fill ``result`` stage by stage."""
        decoder = self.decoder
        m = detector_transform(frame.width, frame.height, decoder.detector_size)

        with self.profiler.stage("sampling"):
            batch = self.sampler(frame.pixels, m, decoder.detector_size)
        with self.profiler.stage("detection"):
            output = await self.engine.run_detector(batch)
        result.detection = PoseDetectionResult.inactive(float(output.score))
        with self.profiler.stage("decode"):
            detection = decoder.decode(output, m)

        result.detection = detection
        if not detection.active:
            return

        with self.profiler.stage("sampling"):
            roi_batch = self.sampler(frame.pixels, detection.roi_transform, decoder.landmarker_size)
        with self.profiler.stage("landmarks"):
            values = await self.engine.run_landmarker(roi_batch)
        with self.profiler.stage("projection"):
            result.keypoints = self.projector.project(
                values, detection.roi_transform, frame.width, frame.height
            )

        if self.config.enable_clap_detection:
            with self.profiler.stage("gesture"):
                result.clap = self.clap_detector.update(result.keypoints, result.timestamp)

    async def _read_frame(self) -> Frame:
        if self.source.blocking:
            return await asyncio.to_thread(self.source.get_current_frame)
        return self.source.get_current_frame()

    async def wait_for_source(self) -> Optional[Frame]:
        """Wait until the source delivers a valid fresh frame.

        Returns None if the pipeline is stopped while waiting.
        """
        while not self._stopping:
            try:
                frame = await self._read_frame()
            except SourceUnavailable as e:
                logger.debug("Waiting for source: %s", e)
            else:
                if self.gate.is_valid(frame):
                    return frame
            await asyncio.sleep(self.idle_interval)
        return None

    async def run(self, max_frames: Optional[int] = None):
        """Process frames until stop(), cancellation or ``max_frames`` admitted frames.

        A stopped pipeline can be run again; each call clears the stop request.
        """
        self._stopping = False
        self._task = asyncio.current_task()
        processed = 0

        try:
            if self.source.live and self.config.wait_for_source:
                if await self.wait_for_source() is None:
                    return
                logger.info("Source ready, starting pose detection")

            while not self._stopping:
                try:
                    frame = await self._read_frame()
                except SourceUnavailable as e:
                    logger.debug("Source unavailable: %s", e)
                    await asyncio.sleep(self.idle_interval)
                    continue

                if not self.gate.admit(frame):
                    self.metrics.record_skip()
                    await asyncio.sleep(0)
                    continue

                await self.process_frame(frame)
                processed += 1
                if max_frames is not None and processed >= max_frames:
                    break
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            if not self._stopping:
                raise
            logger.info("Pipeline cancelled")
        finally:
            self._task = None
            logger.info("Pipeline stopped after %d frames", processed)

    def stop(self):
        """Request shutdown, aborting any in-flight inference wait."""
        self._stopping = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # From inside the loop itself the flag alone ends it.
        if task is not current:
            task.cancel()

    @property
    def stopping(self) -> bool:
        return self._stopping

    @property
    def stats(self) -> PipelineStats:
        if self._frame_times:
            avg = sum(self._frame_times) / len(self._frame_times)
            fps = 1.0 / avg if avg > 0 else 0.0
        else:
            avg = fps = 0.0
        counts = self.metrics.frame_counts
        return PipelineStats(
            fps=fps,
            avg_latency_ms=avg * 1000.0,
            frames_admitted=counts["admitted"],
            frames_skipped=counts["skipped"],
            frames_dropped=counts["dropped"],
            detections=self.metrics.detections,
            claps=self.metrics.claps,
            profiler_summary=self.profiler.summary(),
        )

    def reset(self):
        """Clear gesture state, frame counting and timings."""
        self.clap_detector.reset()
        self.gate.reset()
        self._frame_times.clear()
        self.profiler.reset()

    def close(self):
        self.engine.close()
        self.source.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
