"""Materialize highlights as video files through a transcode engine.

Every public call returns a ClipExtractionResult instead of raising, so job
processors can branch on success/retryable. The one exception is a missing
engine: that is a startup condition and raises EngineUnavailableError.

Temporary outputs are tracked per instance and released by cleanup(), which
also runs on context-manager exit.
"""

from __future__ import annotations

import logging
import math
import subprocess
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .errors import EngineUnavailableError
from .exporter import (
    OUTPUT_FORMATS,
    RESOLUTION_FILTERS,
    WATERMARK_POSITIONS,
    ClipSpec,
    FFmpegEngine,
    ProgressFn,
    TranscodeEngine,
)
from .ffmpeg import parse_ffprobe_fps
from .platforms import PLATFORM_PRESETS, get_platform_preset

log = logging.getLogger(__name__)

# Failures from the engine or the filesystem; anything else is a bug and propagates.
_ENGINE_ERRORS = (RuntimeError, OSError, subprocess.SubprocessError, ValueError)


@dataclass(frozen=True)
class ClipExtractionResult:
    success: bool
    output_path: Optional[Path] = None
    duration: Optional[float] = None
    error: Optional[str] = None
    # True for environment failures worth retrying; False for bad input.
    retryable: bool = False

    @classmethod
    def failed(cls, error: str, *, retryable: bool) -> "ClipExtractionResult":
        return cls(success=False, error=error, retryable=retryable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output_path": str(self.output_path) if self.output_path else None,
            "duration": self.duration,
            "error": self.error,
            "retryable": self.retryable,
        }


@dataclass(frozen=True)
class VideoInfo:
    width: int
    height: int
    fps: float
    duration: float
    bitrate: int


def _to_float(val: Any) -> Optional[float]:
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def parse_video_info(probe: Dict[str, Any]) -> Optional[VideoInfo]:
    streams = probe.get("streams") or []
    if not streams:
        return None
    stream = streams[0]
    fmt = probe.get("format") or {}
    fps = parse_ffprobe_fps(stream.get("avg_frame_rate") or "") or parse_ffprobe_fps(stream.get("r_frame_rate") or "")
    duration = _to_float(stream.get("duration"))
    if duration is None:
        duration = _to_float(fmt.get("duration"))
    bitrate = _to_float(stream.get("bit_rate"))
    if bitrate is None:
        bitrate = _to_float(fmt.get("bit_rate"))
    return VideoInfo(
        width=int(stream.get("width") or 0),
        height=int(stream.get("height") or 0),
        fps=round(float(fps or 0.0), 3),
        duration=float(duration or 0.0),
        bitrate=int(bitrate or 0),
    )


class ClipExtractor:
    def __init__(
        self,
        *,
        engine: Optional[TranscodeEngine] = None,
        work_dir: Optional[Path] = None,
        timeout_s: float = 1800.0,
    ) -> None:
        self.engine: TranscodeEngine = engine or FFmpegEngine(timeout_s=timeout_s)
        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.gettempdir()) / "streamclips"
        self._temp_files: Set[Path] = set()
        self._engine_ok: Optional[bool] = None

    def __enter__(self) -> "ClipExtractor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.cleanup()

    # -- engine precondition ------------------------------------------------

    def validate_ffmpeg_installation(self) -> bool:
        if self._engine_ok is None:
            self._engine_ok = bool(self.engine.available())
            if not self._engine_ok:
                log.error("Transcode engine unavailable: ffmpeg/ffprobe not found or not runnable")
        return self._engine_ok

    def _require_engine(self) -> None:
        if not self.validate_ffmpeg_installation():
            raise EngineUnavailableError("ffmpeg/ffprobe are not installed or not runnable")

    # -- temp file tracking ---------------------------------------------------

    def _new_output(self, prefix: str, suffix: str) -> Path:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        path = self.work_dir / f"{prefix}_{uuid.uuid4().hex}.{suffix}"
        self._temp_files.add(path)
        return path

    @property
    def temp_files(self) -> List[Path]:
        return sorted(self._temp_files)

    def keep(self, path: Path) -> None:
        """Hand a produced file off to the caller; cleanup() will leave it alone."""
        self._temp_files.discard(Path(path))

    def cleanup(self) -> int:
        removed = 0
        for path in list(self._temp_files):
            try:
                path.unlink(missing_ok=True)
                removed += 1
            except OSError as exc:
                log.warning("cleanup: could not remove %s: %s", path, exc)
                continue
            self._temp_files.discard(path)
        if removed:
            log.debug("cleanup: removed %d temp files from %s", removed, self.work_dir)
        return removed

    def _check_output(self, path: Path) -> None:
        if not path.is_file() or path.stat().st_size == 0:
            raise RuntimeError(f"Output file not created: {path.name}")

    # -- operations ------------------------------------------------------------

    def extract_clip(
        self,
        input_url: str,
        start_time: float,
        end_time: float,
        output_format: str = "mp4",
        resolution: str = "1080p",
        *,
        fps: int = 30,
        bitrate: str = "5M",
        preset: str = "fast",
        on_progress: Optional[ProgressFn] = None,
    ) -> ClipExtractionResult:
        """Cut [start_time, end_time) seconds of input_url into a new file."""
        if not (math.isfinite(start_time) and math.isfinite(end_time)):
            return ClipExtractionResult.failed(
                f"Invalid time range: {start_time}-{end_time} is not finite", retryable=False
            )
        if end_time <= start_time:
            return ClipExtractionResult.failed(
                f"Invalid time range: end_time ({end_time}) must be greater than start_time ({start_time})",
                retryable=False,
            )
        if start_time < 0:
            return ClipExtractionResult.failed(f"Invalid start_time: {start_time}", retryable=False)
        if output_format not in OUTPUT_FORMATS:
            return ClipExtractionResult.failed(f"Unsupported output format: {output_format}", retryable=False)
        if resolution not in RESOLUTION_FILTERS:
            return ClipExtractionResult.failed(f"Unsupported resolution: {resolution}", retryable=False)

        self._require_engine()
        try:
            output_path = self._new_output("clip", output_format)
            spec = ClipSpec(
                input_url=str(input_url),
                start_s=float(start_time),
                end_s=float(end_time),
                output_path=output_path,
                output_format=output_format,
                resolution=resolution,
                fps=int(fps),
                bitrate=bitrate,
                preset=preset,
            )
            self.engine.extract(spec, on_progress=on_progress)
            self._check_output(output_path)
        except _ENGINE_ERRORS as exc:
            log.warning("extract_clip failed for %s [%.2f-%.2f]: %s", input_url, start_time, end_time, exc)
            return ClipExtractionResult.failed(f"{type(exc).__name__}: {exc}", retryable=True)

        info = self.get_video_info(output_path)
        duration = info.duration if info and info.duration > 0 else spec.duration_s
        log.info("Extracted clip %s (%.2fs)", output_path.name, duration)
        return ClipExtractionResult(success=True, output_path=output_path, duration=duration)

    def generate_thumbnail(self, video_path: Path, at_seconds: float = 0.0) -> ClipExtractionResult:
        """Grab one JPEG frame; at_seconds past the end is pulled back inside the clip."""
        self._require_engine()
        at = max(0.0, float(at_seconds))
        info = self.get_video_info(video_path)
        if info is not None and info.duration > 0 and at >= info.duration:
            frame_s = 1.0 / info.fps if info.fps > 0 else 0.1
            at = max(0.0, info.duration - frame_s)

        try:
            output_path = self._new_output("thumb", "jpg")
            self.engine.thumbnail(str(video_path), output_path, at)
            self._check_output(output_path)
        except _ENGINE_ERRORS as exc:
            log.warning("generate_thumbnail failed for %s at %.2fs: %s", video_path, at, exc)
            return ClipExtractionResult.failed(f"{type(exc).__name__}: {exc}", retryable=True)
        return ClipExtractionResult(success=True, output_path=output_path)

    def convert_for_platform(self, video_path: Path, platform: str) -> ClipExtractionResult:
        preset = get_platform_preset(platform)
        if preset is None:
            known = ", ".join(sorted(PLATFORM_PRESETS))
            return ClipExtractionResult.failed(
                f"Unknown platform preset: {platform!r} (known: {known})",
                retryable=False,
            )

        self._require_engine()
        try:
            output_path = self._new_output(preset.name, "mp4")
            self.engine.convert(str(video_path), output_path, preset)
            self._check_output(output_path)
        except _ENGINE_ERRORS as exc:
            log.warning("convert_for_platform(%s) failed for %s: %s", preset.name, video_path, exc)
            return ClipExtractionResult.failed(f"{type(exc).__name__}: {exc}", retryable=True)

        info = self.get_video_info(output_path)
        duration = min(info.duration, preset.max_duration_s) if info and info.duration > 0 else None
        return ClipExtractionResult(success=True, output_path=output_path, duration=duration)

    def add_watermark(
        self,
        video_path: Path,
        watermark_path: Path,
        position: str = "bottom-right",
    ) -> ClipExtractionResult:
        if position not in WATERMARK_POSITIONS:
            return ClipExtractionResult.failed(f"Unknown watermark position: {position}", retryable=False)
        if not Path(watermark_path).is_file():
            return ClipExtractionResult.failed(f"Watermark image not found: {watermark_path}", retryable=False)

        self._require_engine()
        try:
            output_path = self._new_output("watermarked", "mp4")
            self.engine.watermark(str(video_path), str(watermark_path), output_path, position)
            self._check_output(output_path)
        except _ENGINE_ERRORS as exc:
            log.warning("add_watermark failed for %s: %s", video_path, exc)
            return ClipExtractionResult.failed(f"{type(exc).__name__}: {exc}", retryable=True)
        return ClipExtractionResult(success=True, output_path=output_path)

    def get_video_info(self, video_path: Path) -> Optional[VideoInfo]:
        try:
            return parse_video_info(self.engine.probe(str(video_path)))
        except _ENGINE_ERRORS as exc:
            log.debug("get_video_info(%s) failed: %s", video_path, exc)
            return None
