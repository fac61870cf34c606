from __future__ import annotations

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .analysis_highlights import HighlightConfig, analyze_chat
from .chat import ChatLexicon, load_chat_log
from .clips import ClipExtractor
from .doctor import run_doctor
from .errors import EngineUnavailableError, ResourceConflictError
from .exporter import OUTPUT_FORMATS, RESOLUTION_FILTERS
from .ffmpeg import ffprobe_json
from .logging_config import UVICORN_LOGGERS, setup_logging
from .platforms import PLATFORM_PRESETS
from .profile import load_profile


def _fmt_time(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = seconds % 60.0
    if h > 0:
        return f"{h:02d}:{m:02d}:{s:05.2f}"
    return f"{m:02d}:{s:05.2f}"


def _extract_settings(profile: Dict[str, Any]) -> Dict[str, Any]:
    return profile.get("extract", {}) or {}


def _make_extractor(profile: Dict[str, Any]) -> ClipExtractor:
    ex = _extract_settings(profile)
    work_dir = ex.get("work_dir")
    return ClipExtractor(
        work_dir=Path(work_dir) if work_dir else None,
        timeout_s=float(ex.get("timeout_seconds", 1800.0)),
    )


def cmd_analyze(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    cfg = HighlightConfig.from_profile(profile)
    lexicon = ChatLexicon(extra_emotes=tuple((profile.get("chat", {}) or {}).get("extra_emotes") or ()))

    events = load_chat_log(args.chat)
    if args.duration is not None:
        duration_s = float(args.duration)
    elif args.video is not None:
        duration_s = float((ffprobe_json(str(args.video)).get("format") or {}).get("duration") or 0.0)
    else:
        # No authoritative length: cover the log up to its last message.
        duration_s = (max((e.timestamp_ms for e in events), default=0) + cfg.bucket_ms) / 1000.0

    highlights = analyze_chat(events, int(round(duration_s * 1000)), cfg, lexicon=lexicon)
    payload = {
        "chat": str(args.chat),
        "duration_s": duration_s,
        "message_count": len(events),
        "highlights": [h.to_dict() for h in highlights],
    }

    out_path = args.out or Path("outputs") / args.chat.stem / "highlights.json"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    print(f"Wrote: {out_path}")
    print(f"Messages: {len(events)}  Highlights: {len(highlights)}")
    print()
    print(f"{'#':>3}  {'Start':>10}  {'End':>10}  {'Conf':>5}  {'Msgs':>5}  {'Users':>5}  {'Pattern':<9}  Reason")
    for i, h in enumerate(highlights, start=1):
        print(
            f"{i:>3}  {_fmt_time(h.start_ms / 1000):>10}  {_fmt_time(h.end_ms / 1000):>10}  {h.confidence:>5.2f}  {h.message_count:>5}  {h.unique_users:>5}  {h.activity_pattern:<9}  {h.reason}"
        )


def cmd_extract(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    ex = _extract_settings(profile)

    with _make_extractor(profile) as extractor:
        if not extractor.validate_ffmpeg_installation():
            raise SystemExit("ffmpeg/ffprobe not found. Run `streamclips doctor`.")

        def on_progress(frac: float) -> None:
            print(f"\rExtracting... {frac * 100:5.1f}%", end="", flush=True)

        result = extractor.extract_clip(
            args.input,
            args.start,
            args.end,
            args.format or ex.get("output_format", "mp4"),
            args.resolution or ex.get("resolution", "1080p"),
            fps=int(ex.get("fps", 30)),
            bitrate=str(ex.get("bitrate", "5M")),
            preset=str(ex.get("preset", "fast")),
            on_progress=on_progress,
        )
        print()
        if not result.success or result.output_path is None:
            raise SystemExit(f"Extraction failed: {result.error}")

        final = result.output_path
        if args.platform:
            converted = extractor.convert_for_platform(final, args.platform)
            if not converted.success or converted.output_path is None:
                raise SystemExit(f"Platform conversion failed: {converted.error}")
            final = converted.output_path

        out_path: Path = args.out
        out_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(final, out_path)
        print(f"Wrote: {out_path} ({result.duration:.2f}s)")

        if args.thumbnail:
            thumb = extractor.generate_thumbnail(out_path, float(ex.get("thumbnail_at_seconds", 1.0)))
            if thumb.success and thumb.output_path is not None:
                thumb_out = out_path.with_suffix(".jpg")
                shutil.copy2(thumb.output_path, thumb_out)
                print(f"Thumbnail: {thumb_out}")
            else:
                print(f"Thumbnail failed: {thumb.error}", file=sys.stderr)


def cmd_doctor(_: argparse.Namespace) -> None:
    rep = run_doctor()
    print("streamclips doctor\n")
    for name, data in rep.checks.items():
        print(f"- {name}:")
        for k, v in data.items():
            print(f"    {k}: {v}")
    print("\nOK" if rep.ok else "\nNOT OK (fix missing requirements above)")
    if not rep.ok:
        raise SystemExit(1)


def _build_orchestrator(args: argparse.Namespace, profile: Dict[str, Any]):
    from .jobs import JobOrchestrator
    from .jobs.processors import build_default_processors
    from .storage import LocalLibrary

    library = LocalLibrary(args.library)
    processors = build_default_processors(
        profile,
        source=library,
        sink=library,
        extractor_factory=lambda: _make_extractor(profile),
        check_engine=True,
    )
    return JobOrchestrator.from_profile(profile, processors=processors, db_path=args.db)


def cmd_process(args: argparse.Namespace) -> None:
    from .jobs import JobKind
    from .jobs.processors import vod_resource

    profile = load_profile(args.profile)
    orchestrator = _build_orchestrator(args, profile)
    try:
        job_id = orchestrator.enqueue(JobKind.ANALYZE_VOD, vod_resource(args.vod_id), {"vod_id": args.vod_id})
    except ResourceConflictError as e:
        raise SystemExit(f"VOD {args.vod_id} is already being processed (job {e.job_id}).")

    ran = orchestrator.run_pending()
    job = orchestrator.get(job_id)
    print(f"Ran {ran} jobs. Analysis job {job_id}: {job.status.value}")
    if job.error:
        print(f"  error: {job.error}")
    for j in orchestrator.store.list_jobs(limit=ran):
        print(f"  {j.id}  {j.kind.value:<12}  {j.status.value:<10}  {j.resource_key}  {j.error or ''}")


def cmd_serve(args: argparse.Namespace) -> None:
    from .server import create_app

    profile = load_profile(args.profile)
    server_cfg = profile.get("server", {}) or {}
    host = args.host or str(server_cfg.get("host", "127.0.0.1"))
    port = args.port or int(server_cfg.get("port", 8765))

    app = create_app(_build_orchestrator(args, profile))

    import uvicorn

    # log_config=None keeps uvicorn on the handlers installed by setup_logging.
    uvicorn.run(app, host=host, port=port, log_config=None)


def cmd_jobs_list(args: argparse.Namespace) -> None:
    from .jobs import JobStore

    profile = load_profile(args.profile)
    db_path = args.db or Path((profile.get("jobs", {}) or {}).get("db_path", "outputs/jobs.sqlite"))
    for job in JobStore(db_path).list_jobs(limit=args.limit):
        print(
            f"{job.id}  {job.kind.value:<12}  {job.status.value:<10}  {job.progress:>3}%  "
            f"attempts={job.attempts}  {job.resource_key}"
        )


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="streamclips", description="Chat-driven stream highlight clipper")
    parser.add_argument("--log-level", type=str, default="INFO", help="DEBUG, INFO, WARNING, ...")
    parser.add_argument("--log-file", type=Path, default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("analyze", help="Detect highlights in a chat log.")
    a.add_argument("chat", type=Path, help="Chat log (JSON or JSONL)")
    a.add_argument("--duration", type=float, default=None, help="VOD length in seconds")
    a.add_argument("--video", type=Path, default=None, help="Probe the VOD length from this video instead")
    a.add_argument("--out", type=Path, default=None)
    a.add_argument("--profile", type=Path, default=None)
    a.set_defaults(func=cmd_analyze)

    e = sub.add_parser("extract", help="Cut one clip out of a video file or URL.")
    e.add_argument("input", type=str)
    e.add_argument("--start", type=float, required=True)
    e.add_argument("--end", type=float, required=True)
    e.add_argument("--out", type=Path, required=True)
    e.add_argument("--format", type=str, default=None, choices=list(OUTPUT_FORMATS))
    e.add_argument("--resolution", type=str, default=None, choices=sorted(RESOLUTION_FILTERS))
    e.add_argument("--platform", type=str, default=None, choices=sorted(PLATFORM_PRESETS))
    e.add_argument("--thumbnail", action="store_true")
    e.add_argument("--profile", type=Path, default=None)
    e.set_defaults(func=cmd_extract)

    d = sub.add_parser("doctor", help="Check local system dependencies (ffmpeg, python packages).")
    d.set_defaults(func=cmd_doctor)

    pr = sub.add_parser("process", help="Run the full analyze/extract/upload pipeline for one VOD.")
    pr.add_argument("vod_id", type=str)
    pr.add_argument("--library", type=Path, default=Path("library"))
    pr.add_argument("--db", type=Path, default=None)
    pr.add_argument("--profile", type=Path, default=None)
    pr.set_defaults(func=cmd_process)

    s = sub.add_parser("serve", help="Run the job API (enqueue, status, progress events).")
    s.add_argument("--library", type=Path, default=Path("library"))
    s.add_argument("--db", type=Path, default=None)
    s.add_argument("--host", type=str, default=None)
    s.add_argument("--port", type=int, default=None)
    s.add_argument("--profile", type=Path, default=None)
    s.set_defaults(func=cmd_serve)

    jobs = sub.add_parser("jobs", help="Inspect processing jobs.")
    jobs_sub = jobs.add_subparsers(dest="jobs_cmd", required=True)
    jobs_list = jobs_sub.add_parser("list", help="List recent jobs.")
    jobs_list.add_argument("--db", type=Path, default=None)
    jobs_list.add_argument("--limit", type=int, default=50)
    jobs_list.add_argument("--profile", type=Path, default=None)
    jobs_list.set_defaults(func=cmd_jobs_list)

    args = parser.parse_args(argv)
    setup_logging(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        log_file=args.log_file,
        capture=UVICORN_LOGGERS if args.cmd == "serve" else (),
    )
    try:
        args.func(args)
    except EngineUnavailableError as e:
        raise SystemExit(f"{e}. Run `streamclips doctor`.")


if __name__ == "__main__":
    main()
