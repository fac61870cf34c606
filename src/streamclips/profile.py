from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


PROFILE_ENV = "STREAMCLIPS_PROFILE"


def default_profile() -> Dict[str, Any]:
    return {
        "chat": {
            "bucket_seconds": 5.0,
            # Channel-specific emotes on top of the built-in table.
            "extra_emotes": [],
        },
        "highlights": {
            "spike_multiplier": 1.25,
            "min_absolute_count": 3,
            "merge_gap_seconds": 30.0,
            "top_n": 5,
            "emote_burst_ratio": 0.4,
            "rate_ratio_cap": 3.0,
            "min_confidence": 0.0,
            "weights": {
                "rate": 0.5,
                "emotes": 0.3,
                "users": 0.2,
            },
        },
        "extract": {
            "output_format": "mp4",
            "resolution": "1080p",
            "fps": 30,
            "bitrate": "5M",
            "preset": "fast",
            "timeout_seconds": 1800.0,
            "thumbnail_at_seconds": 1.0,
            "work_dir": None,  # None => <tmp>/streamclips
        },
        "jobs": {
            "db_path": "outputs/jobs.sqlite",
            "max_workers": 2,
            "max_attempts": 3,
            "backoff_base_seconds": 2.0,
            "backoff_max_seconds": 300.0,
            "subscriber_queue_size": 100,
        },
        "server": {
            "host": "127.0.0.1",
            "port": 8765,
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_profile(profile_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load a YAML profile merged over the defaults.

    Falls back to $STREAMCLIPS_PROFILE when no path is given.
    """
    if profile_path is None:
        env_path = os.getenv(PROFILE_ENV, "").strip()
        if not env_path:
            return default_profile()
        profile_path = Path(env_path)

    profile_path = Path(profile_path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Profile YAML must be a mapping")
    return _deep_merge(default_profile(), data)
