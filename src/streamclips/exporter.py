"""ffmpeg command construction and the transcode engine interface.

ClipExtractor only talks to a TranscodeEngine; FFmpegEngine is the production
implementation and tests substitute a fake that writes placeholder files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from .ffmpeg import ffmpeg_available, ffprobe_json, run_ffmpeg
from .platforms import PlatformPreset

log = logging.getLogger(__name__)

ProgressFn = Callable[[float], None]

RESOLUTION_FILTERS: Dict[str, Optional[str]] = {
    "1080p": "scale=-2:1080",
    "720p": "scale=-2:720",
    "480p": "scale=-2:480",
    "original": None,
}

OUTPUT_FORMATS = ("mp4", "webm", "mov")

WATERMARK_POSITIONS: Dict[str, str] = {
    "top-left": "overlay=10:10",
    "top-right": "overlay=W-w-10:10",
    "bottom-left": "overlay=10:H-h-10",
    "bottom-right": "overlay=W-w-10:H-h-10",
}


@dataclass(frozen=True)
class ClipSpec:
    input_url: str
    start_s: float
    end_s: float
    output_path: Path
    output_format: str = "mp4"
    resolution: str = "1080p"
    fps: int = 30
    bitrate: str = "5M"
    preset: str = "fast"
    crf: int = 23
    abitrate: str = "192k"

    @property
    def duration_s(self) -> float:
        return self.end_s - self.start_s


def _codec_args(output_format: str) -> List[str]:
    if output_format == "webm":
        return ["-c:v", "libvpx-vp9", "-c:a", "libopus"]
    return ["-c:v", "libx264", "-c:a", "aac"]


def build_clip_args(spec: ClipSpec) -> List[str]:
    if spec.end_s <= spec.start_s:
        raise ValueError("end_s must be > start_s")

    args: List[str] = [
        # Input seeking: fast and frame-accurate with re-encode.
        "-ss",
        f"{spec.start_s:.3f}",
        "-i",
        spec.input_url,
        "-t",
        f"{spec.duration_s:.3f}",
    ]
    args += _codec_args(spec.output_format)
    if spec.output_format != "webm":
        args += ["-preset", spec.preset]
    args += [
        "-crf",
        str(spec.crf),
        "-b:v",
        spec.bitrate,
        "-b:a",
        spec.abitrate,
        "-r",
        str(spec.fps),
    ]
    vf = RESOLUTION_FILTERS.get(spec.resolution)
    if vf:
        args += ["-vf", vf]
    if spec.output_format in {"mp4", "mov"}:
        args += ["-pix_fmt", "yuv420p", "-movflags", "+faststart"]
    args += ["-y", str(spec.output_path)]
    return args


def build_thumbnail_args(video_path: str, output_path: Path, at_s: float) -> List[str]:
    return [
        "-ss",
        f"{max(0.0, at_s):.3f}",
        "-i",
        str(video_path),
        "-frames:v",
        "1",
        "-vf",
        "scale=-2:720",
        "-q:v",
        "2",
        "-y",
        str(output_path),
    ]


def build_platform_args(video_path: str, output_path: Path, preset: PlatformPreset) -> List[str]:
    return [
        "-i",
        str(video_path),
        "-vf",
        preset.filtergraph(),
        "-c:v",
        "libx264",
        "-preset",
        "fast",
        "-crf",
        str(preset.crf),
        "-maxrate",
        preset.max_bitrate,
        "-bufsize",
        preset.max_bitrate,
        "-r",
        str(preset.fps),
        "-c:a",
        "aac",
        "-b:a",
        preset.audio_bitrate,
        "-t",
        f"{preset.max_duration_s:.3f}",
        "-pix_fmt",
        "yuv420p",
        "-movflags",
        "+faststart",
        "-y",
        str(output_path),
    ]


def build_watermark_args(video_path: str, watermark_path: str, output_path: Path, position: str) -> List[str]:
    overlay = WATERMARK_POSITIONS.get(position)
    if overlay is None:
        raise ValueError(f"Unknown watermark position: {position}")
    return [
        "-i",
        str(video_path),
        "-i",
        str(watermark_path),
        "-filter_complex",
        f"[1:v]scale=150:-1[wm];[0:v][wm]{overlay}",
        "-c:v",
        "libx264",
        "-preset",
        "fast",
        "-crf",
        "23",
        "-c:a",
        "copy",
        "-y",
        str(output_path),
    ]


class TranscodeEngine(Protocol):
    def available(self) -> bool: ...

    def extract(self, spec: ClipSpec, *, on_progress: Optional[ProgressFn] = None) -> None: ...

    def thumbnail(self, video_path: str, output_path: Path, at_s: float) -> None: ...

    def convert(self, video_path: str, output_path: Path, preset: PlatformPreset) -> None: ...

    def watermark(self, video_path: str, watermark_path: str, output_path: Path, position: str) -> None: ...

    def probe(self, video_path: str) -> Dict[str, Any]: ...


class FFmpegEngine:
    """TranscodeEngine backed by ffmpeg/ffprobe subprocesses with a per-call timeout."""

    def __init__(self, *, timeout_s: float = 1800.0, probe_timeout_s: float = 30.0) -> None:
        self.timeout_s = float(timeout_s)
        self.probe_timeout_s = float(probe_timeout_s)

    def available(self) -> bool:
        return ffmpeg_available()

    def extract(self, spec: ClipSpec, *, on_progress: Optional[ProgressFn] = None) -> None:
        run_ffmpeg(
            build_clip_args(spec),
            timeout_s=self.timeout_s,
            duration_s=spec.duration_s,
            on_progress=on_progress,
        )

    def thumbnail(self, video_path: str, output_path: Path, at_s: float) -> None:
        run_ffmpeg(build_thumbnail_args(video_path, output_path, at_s), timeout_s=min(self.timeout_s, 120.0))

    def convert(self, video_path: str, output_path: Path, preset: PlatformPreset) -> None:
        run_ffmpeg(build_platform_args(video_path, output_path, preset), timeout_s=self.timeout_s)

    def watermark(self, video_path: str, watermark_path: str, output_path: Path, position: str) -> None:
        run_ffmpeg(build_watermark_args(video_path, watermark_path, output_path, position), timeout_s=self.timeout_s)

    def probe(self, video_path: str) -> Dict[str, Any]:
        return ffprobe_json(video_path, timeout_s=self.probe_timeout_s)
