"""PoseClap CLI.

Usage:
    pose-clap run            - Run pose detection on a camera or still image
    pose-clap replay         - Replay recorded keypoints through the clap detector
    pose-clap check-anchors  - Validate an anchor table
    pose-clap config         - Write the default configuration as YAML
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

try:
    import typer
except ImportError:
    raise ImportError("typer is required for CLI. Install with: pip install typer")

from pose_clap.config import PipelineConfig
from pose_clap.errors import ConfigError, ParseError, SourceUnavailable

app = typer.Typer(
    name="pose-clap",
    help="👏 Pose detection and clap gestures from a camera or image.",
    add_completion=False,
)


def _setup_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def _load_config(path: Optional[str]) -> PipelineConfig:
    if not path:
        return PipelineConfig()
    try:
        return PipelineConfig.from_yaml(path)
    except (OSError, ConfigError) as e:
        typer.echo(f"❌ Invalid config {path}: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def run(
    detector: Optional[str] = typer.Option(None, help="Pose detector ONNX model"),
    landmarker: Optional[str] = typer.Option(None, help="Pose landmarker ONNX model"),
    anchors: Optional[str] = typer.Option(None, help="Anchor table (CSV)"),
    image: Optional[str] = typer.Option(None, help="Still image; used as fallback when the camera fails"),
    camera: bool = typer.Option(True, "--camera/--no-camera", help="Use the webcam"),
    camera_index: Optional[int] = typer.Option(None, help="Camera device index"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to YAML config"),
    record: Optional[str] = typer.Option(None, help="Record keypoints to this file"),
    max_frames: int = typer.Option(0, help="Stop after N processed frames (0 = until Ctrl+C)"),
    metrics: bool = typer.Option(False, "--metrics", help="Print Prometheus metrics on exit"),
    log_level: str = typer.Option("info", help="Log level"),
):
    """Run the pose pipeline and print clap events."""
    from pose_clap.anchors import AnchorTable
    from pose_clap.engine import OnnxPoseEngine
    from pose_clap.pipeline import PosePipeline
    from pose_clap.recorder import KeypointRecorder
    from pose_clap.sources import CameraSource, StillImageSource

    _setup_logging(log_level)
    cfg = _load_config(config)

    detector = detector or cfg.detector_model
    landmarker = landmarker or cfg.landmarker_model
    anchors = anchors or cfg.anchors_file
    if not (detector and landmarker and anchors):
        typer.echo("❌ Detector, landmarker and anchors are required (options or config)", err=True)
        raise typer.Exit(1)

    try:
        table = AnchorTable.from_file(anchors)
        engine = OnnxPoseEngine(detector, landmarker)
    except (ParseError, FileNotFoundError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    source = None
    fallback = None
    try:
        if image:
            fallback = StillImageSource.from_file(image)
        if camera:
            index = cfg.camera_index if camera_index is None else camera_index
            source = CameraSource(index, cfg.camera_width, cfg.camera_height)
    except SourceUnavailable as e:
        typer.echo(f"⚠️  {e}", err=True)
    if not camera:
        source, fallback = fallback, None

    try:
        pipeline = PosePipeline(source, engine, table, cfg, fallback=fallback)
    except SourceUnavailable as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    def on_clap(event):
        typer.echo(
            f"   👏 Clap at {event.timestamp:.2f}s "
            f"(wrists {event.wrist_distance:.3f} <= {event.threshold:.3f})"
        )

    pipeline.on_clap(on_clap)

    recorder = None
    if record:
        recorder = KeypointRecorder()
        recorder.start()
        pipeline.on_result(recorder.add_result)

    typer.echo(f"🎥 Running on {type(pipeline.source).__name__}. Press Ctrl+C to stop")
    try:
        asyncio.run(pipeline.run(max_frames=max_frames or None))
    except KeyboardInterrupt:
        pass
    finally:
        pipeline.close()

    stats = pipeline.stats
    typer.echo(
        f"\n📊 {stats.frames_admitted} frames, {stats.detections} detections, "
        f"{stats.claps} claps, {stats.frames_dropped} dropped"
    )
    typer.echo(f"   Average latency: {stats.avg_latency_ms:.1f} ms ({stats.fps:.0f} FPS)")
    if metrics:
        typer.echo("")
        typer.echo(pipeline.metrics.render())

    if recorder is not None:
        recorder.stop()
        if record.endswith(".npz"):
            recorder.save_compact(record)
        else:
            recorder.save(record)
        typer.echo(f"💾 Saved {recorder.frame_count} frames to: {record}")


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Path to a keypoint recording"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to YAML config"),
    distance_factor: Optional[float] = typer.Option(None, help="Override clap distance factor"),
    cooldown: Optional[float] = typer.Option(None, help="Override clap cooldown (seconds)"),
):
    """Replay a keypoint recording through the clap detector."""
    from pose_clap.clap import ClapGestureDetector
    from pose_clap.recorder import KeypointPlayer

    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    cfg = _load_config(config)
    try:
        detector = ClapGestureDetector(
            distance_factor=cfg.clap_distance_factor if distance_factor is None else distance_factor,
            cooldown_seconds=cfg.clap_cooldown_seconds if cooldown is None else cooldown,
        )
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    player = KeypointPlayer.load(path)
    typer.echo(f"▶️  Replaying {path.name} ({player.frame_count} frames, {player.duration:.1f}s)")

    events = player.replay_claps(detector)
    for event in events:
        typer.echo(f"   👏 {event.timestamp:.2f}s")
    typer.echo(f"\n✅ Replay complete. {len(events)} claps detected.")


@app.command("check-anchors")
def check_anchors(
    path: str = typer.Argument(..., help="Anchor table (CSV)"),
):
    """Load an anchor table and report its extent."""
    from pose_clap.anchors import AnchorTable

    try:
        table = AnchorTable.from_file(path)
    except ParseError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    pos = table.positions
    typer.echo(f"✅ {len(table)} anchors")
    typer.echo(f"   x: [{pos[:, 0].min():.4f}, {pos[:, 0].max():.4f}]")
    typer.echo(f"   y: [{pos[:, 1].min():.4f}, {pos[:, 1].max():.4f}]")


@app.command("config")
def write_config(
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output YAML path (default: stdout)"),
):
    """Write the default configuration."""
    cfg = PipelineConfig()
    if output:
        cfg.to_yaml(output)
        typer.echo(f"💾 Saved to {output}")
    else:
        import yaml
        typer.echo(yaml.dump(cfg.to_dict(), default_flow_style=False, sort_keys=False))


def main():
    app()


if __name__ == "__main__":
    main()
