"""The three pipeline stages: analyze_vod -> extract_clip -> upload_clip.

Each stage is a JobProcessor. Malformed payloads come back as non-retryable
JobResults; anything a collaborator raises is classified by the orchestrator.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from ..analysis_highlights import HighlightConfig, HighlightMoment, analyze_chat
from ..chat import ChatEvent, ChatLexicon
from ..clips import ClipExtractor
from ..errors import EngineUnavailableError, InputError
from .models import JobKind, JobResult
from .orchestrator import JobContext, JobProcessor

log = logging.getLogger(__name__)


class VodSource(Protocol):
    def get_chat(self, vod_id: str) -> List[ChatEvent]: ...

    def get_duration_ms(self, vod_id: str) -> int: ...

    def get_video_url(self, vod_id: str) -> str: ...


class ClipSink(Protocol):
    def save_highlights(self, vod_id: str, highlights: Sequence[HighlightMoment]) -> List[str]:
        """Persist highlights; returns one clip id per highlight, in order."""
        ...

    def store_clip(self, clip_id: str, path: Path) -> str: ...

    def store_thumbnail(self, clip_id: str, path: Path) -> str: ...


def vod_resource(vod_id: str) -> str:
    return f"vod:{vod_id}"


def clip_resource(clip_id: str) -> str:
    return f"clip:{clip_id}"


def upload_resource(clip_id: str) -> str:
    return f"upload:{clip_id}"


def _require(payload: Dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if payload.get(k) in (None, "")]
    if missing:
        raise InputError(f"Job payload missing: {', '.join(missing)}")


class AnalyzeVodProcessor:
    def __init__(
        self,
        source: VodSource,
        sink: ClipSink,
        *,
        cfg: Optional[HighlightConfig] = None,
        lexicon: Optional[ChatLexicon] = None,
    ) -> None:
        self.source = source
        self.sink = sink
        self.cfg = cfg or HighlightConfig()
        self.lexicon = lexicon

    def process(self, ctx: JobContext) -> JobResult:
        try:
            _require(ctx.payload, "vod_id")
        except InputError as e:
            return JobResult.failed(str(e))
        vod_id = str(ctx.payload["vod_id"])

        events = self.source.get_chat(vod_id)
        duration_ms = self.source.get_duration_ms(vod_id)
        ctx.progress(20)

        highlights = analyze_chat(events, duration_ms, self.cfg, lexicon=self.lexicon)
        ctx.progress(60)

        clip_ids = self.sink.save_highlights(vod_id, highlights)
        ctx.progress(80)

        extract_jobs: List[str] = []
        if highlights:
            video_url = self.source.get_video_url(vod_id)
            for clip_id, h in zip(clip_ids, highlights):
                extract_jobs.append(
                    ctx.enqueue(
                        JobKind.EXTRACT_CLIP,
                        clip_resource(clip_id),
                        {
                            "clip_id": clip_id,
                            "vod_id": vod_id,
                            "video_url": video_url,
                            "start_time": h.start_ms / 1000.0,
                            "end_time": h.end_ms / 1000.0,
                        },
                    )
                )

        log.info("VOD %s: %d chat messages, %d highlights", vod_id, len(events), len(highlights))
        return JobResult.ok(
            vod_id=vod_id,
            message_count=len(events),
            highlights_found=len(highlights),
            clip_ids=list(clip_ids),
            extract_jobs=extract_jobs,
        )


class ExtractClipProcessor:
    """Cut one clip plus a thumbnail and hand both to an upload_clip job."""

    def __init__(
        self,
        extractor_factory: Callable[[], ClipExtractor],
        *,
        output_format: str = "mp4",
        resolution: str = "1080p",
        fps: int = 30,
        bitrate: str = "5M",
        preset: str = "fast",
        thumbnail_at_seconds: float = 1.0,
    ) -> None:
        self.extractor_factory = extractor_factory
        self.output_format = output_format
        self.resolution = resolution
        self.fps = fps
        self.bitrate = bitrate
        self.preset = preset
        self.thumbnail_at_seconds = thumbnail_at_seconds

    def check_engine(self) -> None:
        """Raise EngineUnavailableError up front instead of failing every clip job."""
        with self.extractor_factory() as extractor:
            if not extractor.validate_ffmpeg_installation():
                raise EngineUnavailableError("ffmpeg/ffprobe are not installed or not runnable")

    def process(self, ctx: JobContext) -> JobResult:
        payload = ctx.payload
        try:
            _require(payload, "clip_id", "video_url", "start_time", "end_time")
        except InputError as e:
            return JobResult.failed(str(e))
        clip_id = str(payload["clip_id"])

        # A fresh extractor per job keeps temp-file ownership per worker thread.
        with self.extractor_factory() as extractor:
            result = extractor.extract_clip(
                str(payload["video_url"]),
                float(payload["start_time"]),
                float(payload["end_time"]),
                self.output_format,
                self.resolution,
                fps=self.fps,
                bitrate=self.bitrate,
                preset=self.preset,
                on_progress=lambda frac: ctx.progress(frac * 90.0),
            )
            if not result.success or result.output_path is None:
                return JobResult.failed(result.error or "extraction failed", retryable=result.retryable)

            thumb_path: Optional[Path] = None
            thumb = extractor.generate_thumbnail(result.output_path, self.thumbnail_at_seconds)
            if thumb.success:
                thumb_path = thumb.output_path
            else:
                log.warning("Clip %s: thumbnail failed (%s); uploading without one", clip_id, thumb.error)
            ctx.progress(95)

            upload_job = ctx.enqueue(
                JobKind.UPLOAD_CLIP,
                upload_resource(clip_id),
                {
                    "clip_id": clip_id,
                    "local_path": str(result.output_path),
                    "thumbnail_path": str(thumb_path) if thumb_path else None,
                    "duration": result.duration,
                },
            )
            # Ownership moves to the upload job only once it exists.
            extractor.keep(result.output_path)
            if thumb_path is not None:
                extractor.keep(thumb_path)

        return JobResult.ok(
            clip_id=clip_id,
            output_path=str(result.output_path),
            thumbnail_path=str(thumb_path) if thumb_path else None,
            duration=result.duration,
            upload_job=upload_job,
        )


class UploadClipProcessor:
    def __init__(self, sink: ClipSink) -> None:
        self.sink = sink

    def process(self, ctx: JobContext) -> JobResult:
        payload = ctx.payload
        try:
            _require(payload, "clip_id", "local_path")
        except InputError as e:
            return JobResult.failed(str(e))
        clip_id = str(payload["clip_id"])
        local_path = Path(payload["local_path"])
        if not local_path.is_file():
            return JobResult.failed(f"Clip file missing: {local_path}")

        video_url = self.sink.store_clip(clip_id, local_path)
        ctx.progress(70)

        thumbnail_url = None
        thumb_raw = payload.get("thumbnail_path")
        thumb_path = Path(thumb_raw) if thumb_raw else None
        if thumb_path is not None and thumb_path.is_file():
            thumbnail_url = self.sink.store_thumbnail(clip_id, thumb_path)

        for path in (local_path, thumb_path):
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                log.warning("Clip %s: could not remove %s: %s", clip_id, path, e)

        return JobResult.ok(
            clip_id=clip_id,
            video_url=video_url,
            thumbnail_url=thumbnail_url,
            duration=payload.get("duration"),
        )


def build_default_processors(
    profile: Dict[str, Any],
    *,
    source: VodSource,
    sink: ClipSink,
    extractor_factory: Optional[Callable[[], ClipExtractor]] = None,
    check_engine: bool = False,
) -> Dict[JobKind, JobProcessor]:
    chat_cfg = profile.get("chat", {}) or {}
    ex = profile.get("extract", {}) or {}

    if extractor_factory is None:
        work_dir = ex.get("work_dir")
        timeout_s = float(ex.get("timeout_seconds", 1800.0))

        def extractor_factory() -> ClipExtractor:
            return ClipExtractor(work_dir=Path(work_dir) if work_dir else None, timeout_s=timeout_s)

    extract = ExtractClipProcessor(
        extractor_factory,
        output_format=str(ex.get("output_format", "mp4")),
        resolution=str(ex.get("resolution", "1080p")),
        fps=int(ex.get("fps", 30)),
        bitrate=str(ex.get("bitrate", "5M")),
        preset=str(ex.get("preset", "fast")),
        thumbnail_at_seconds=float(ex.get("thumbnail_at_seconds", 1.0)),
    )
    if check_engine:
        extract.check_engine()

    return {
        JobKind.ANALYZE_VOD: AnalyzeVodProcessor(
            source,
            sink,
            cfg=HighlightConfig.from_profile(profile),
            lexicon=ChatLexicon(extra_emotes=tuple(chat_cfg.get("extra_emotes") or ())),
        ),
        JobKind.EXTRACT_CLIP: extract,
        JobKind.UPLOAD_CLIP: UploadClipProcessor(sink),
    }
