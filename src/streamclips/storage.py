"""Filesystem-backed VOD source and clip sink.

Layout under the library root:

    <root>/vods/<vod_id>/chat.json        chat log (JSON or JSONL)
    <root>/vods/<vod_id>/video.<ext>      source video (or video_url in vod.json)
    <root>/vods/<vod_id>/vod.json         optional metadata: duration_seconds, video_url
    <root>/vods/<vod_id>/highlights.json  written by save_highlights
    <root>/clips/<clip_id>.<ext>          stored clips and thumbnails
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .analysis_highlights import HighlightMoment
from .chat import ChatEvent, load_chat_log
from .errors import InputError
from .ffmpeg import ffprobe_json
from .utils import utc_iso

log = logging.getLogger(__name__)

_VIDEO_SUFFIXES = (".mp4", ".mkv", ".webm", ".mov", ".ts", ".flv")


def save_json(path: Path, obj: Any) -> None:
    """Write JSON atomically (temp file in the same directory + replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp", prefix=path.stem + "_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, str(path))
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


def load_json(path: Path) -> Dict[str, Any]:
    return json.loads(Path(path).read_text(encoding="utf-8"))


class LocalLibrary:
    """Implements both VodSource and ClipSink on a local directory tree."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def vod_dir(self, vod_id: str) -> Path:
        if not vod_id or "/" in vod_id or "\\" in vod_id or vod_id in (".", ".."):
            raise InputError(f"Invalid vod id: {vod_id!r}")
        return self.root / "vods" / vod_id

    @property
    def clips_dir(self) -> Path:
        return self.root / "clips"

    def _meta(self, vod_id: str) -> Dict[str, Any]:
        path = self.vod_dir(vod_id) / "vod.json"
        return load_json(path) if path.exists() else {}

    def _video_file(self, vod_id: str) -> Optional[Path]:
        for suffix in _VIDEO_SUFFIXES:
            candidate = self.vod_dir(vod_id) / f"video{suffix}"
            if candidate.is_file():
                return candidate
        return None

    # -- VodSource ----------------------------------------------------------------

    def get_chat(self, vod_id: str) -> List[ChatEvent]:
        path = self.vod_dir(vod_id) / "chat.json"
        if not path.exists():
            raise InputError(f"No chat log for VOD {vod_id}: {path}")
        return load_chat_log(path)

    def get_video_url(self, vod_id: str) -> str:
        url = self._meta(vod_id).get("video_url")
        if url:
            return str(url)
        video = self._video_file(vod_id)
        if video is None:
            raise InputError(f"No video for VOD {vod_id} under {self.vod_dir(vod_id)}")
        return str(video)

    def get_duration_ms(self, vod_id: str) -> int:
        meta = self._meta(vod_id)
        if meta.get("duration_seconds") is not None:
            return int(round(float(meta["duration_seconds"]) * 1000))
        probe = ffprobe_json(self.get_video_url(vod_id))
        duration = (probe.get("format") or {}).get("duration")
        if duration is None:
            raise InputError(f"Could not determine duration of VOD {vod_id}")
        return int(round(float(duration) * 1000))

    # -- ClipSink -----------------------------------------------------------------

    def save_highlights(self, vod_id: str, highlights: Sequence[HighlightMoment]) -> List[str]:
        clip_ids = [f"{vod_id}-{i + 1:02d}-{uuid.uuid4().hex[:8]}" for i in range(len(highlights))]
        records = []
        for i, (clip_id, h) in enumerate(zip(clip_ids, highlights)):
            records.append(
                {
                    "clip_id": clip_id,
                    "title": f"Highlight {i + 1}: {h.reason}",
                    **h.to_dict(),
                }
            )
        save_json(
            self.vod_dir(vod_id) / "highlights.json",
            {"vod_id": vod_id, "analyzed_at": utc_iso(), "highlights": records},
        )
        log.info("Saved %d highlights for VOD %s", len(records), vod_id)
        return clip_ids

    def _store(self, clip_id: str, path: Path, suffix: str) -> str:
        src = Path(path)
        if not src.is_file():
            raise InputError(f"File to store does not exist: {src}")
        self.clips_dir.mkdir(parents=True, exist_ok=True)
        dest = self.clips_dir / f"{clip_id}{suffix}"
        shutil.copy2(src, dest)
        return str(dest)

    def store_clip(self, clip_id: str, path: Path) -> str:
        return self._store(clip_id, path, Path(path).suffix or ".mp4")

    def store_thumbnail(self, clip_id: str, path: Path) -> str:
        return self._store(clip_id, path, "_thumb" + (Path(path).suffix or ".jpg"))
