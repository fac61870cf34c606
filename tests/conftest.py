from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from streamclips.exporter import ClipSpec, ProgressFn
from streamclips.ffmpeg import FFmpegError
from streamclips.platforms import PlatformPreset


class FakeEngine:
    """In-memory TranscodeEngine: writes placeholder files and records calls."""

    def __init__(self, *, available: bool = True, duration: float = 10.0, fps: str = "30/1") -> None:
        self.is_available = available
        self.duration = duration
        self.fps = fps
        self.calls: List[Tuple[str, Any]] = []
        self.fail_extract: Optional[Exception] = None
        self.fail_probe = False

    def available(self) -> bool:
        self.calls.append(("available", None))
        return self.is_available

    def extract(self, spec: ClipSpec, *, on_progress: Optional[ProgressFn] = None) -> None:
        self.calls.append(("extract", spec))
        # A partial output is left behind on failure, like a killed ffmpeg.
        spec.output_path.write_bytes(b"partial")
        if self.fail_extract is not None:
            raise self.fail_extract
        if on_progress is not None:
            on_progress(0.5)
            on_progress(1.0)
        spec.output_path.write_bytes(b"clip-bytes")

    def thumbnail(self, video_path: str, output_path: Path, at_s: float) -> None:
        self.calls.append(("thumbnail", at_s))
        output_path.write_bytes(b"jpeg")

    def convert(self, video_path: str, output_path: Path, preset: PlatformPreset) -> None:
        self.calls.append(("convert", preset.name))
        output_path.write_bytes(b"converted")

    def watermark(self, video_path: str, watermark_path: str, output_path: Path, position: str) -> None:
        self.calls.append(("watermark", position))
        output_path.write_bytes(b"watermarked")

    def probe(self, video_path: str) -> Dict[str, Any]:
        self.calls.append(("probe", video_path))
        if self.fail_probe or not Path(video_path).exists():
            raise FFmpegError(f"ffprobe failed for {video_path}", returncode=1)
        return {
            "streams": [{"width": 1920, "height": 1080, "avg_frame_rate": self.fps, "duration": str(self.duration)}],
            "format": {"duration": str(self.duration), "bit_rate": "5000000"},
        }

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()
