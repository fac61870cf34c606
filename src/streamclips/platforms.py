from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class PlatformPreset:
    name: str
    width: int
    height: int
    max_duration_s: float
    max_bitrate: str
    fps: int = 30
    crf: int = 23
    audio_bitrate: str = "192k"

    @property
    def aspect_ratio(self) -> str:
        return f"{self.width}:{self.height}"

    def filtergraph(self) -> str:
        # Letterbox into the target frame instead of cropping HUD/text.
        return (
            f"scale={self.width}:{self.height}:force_original_aspect_ratio=decrease,"
            f"pad={self.width}:{self.height}:(ow-iw)/2:(oh-ih)/2"
        )


PLATFORM_PRESETS: Dict[str, PlatformPreset] = {
    "tiktok": PlatformPreset(name="tiktok", width=1080, height=1920, max_duration_s=60.0, max_bitrate="6M"),
    "youtube_shorts": PlatformPreset(name="youtube_shorts", width=1080, height=1920, max_duration_s=60.0, max_bitrate="8M"),
    "instagram_reels": PlatformPreset(name="instagram_reels", width=1080, height=1920, max_duration_s=90.0, max_bitrate="5M"),
}


def get_platform_preset(platform: str) -> Optional[PlatformPreset]:
    return PLATFORM_PRESETS.get((platform or "").strip().lower())
