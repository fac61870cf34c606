from __future__ import annotations

import json
import logging
import shutil
import subprocess
import threading
from typing import Any, Callable, Dict, List, Optional

from .utils import subprocess_flags as _subprocess_flags

log = logging.getLogger(__name__)


class FFmpegError(RuntimeError):
    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class FFmpegTimeoutError(FFmpegError):
    pass


def _require_cmd(cmd: str) -> str:
    path = shutil.which(cmd)
    if not path:
        raise FileNotFoundError(
            f"Required executable '{cmd}' not found in PATH. "
            "Install ffmpeg/ffprobe and ensure they are available on PATH."
        )
    return path


def ffmpeg_available(timeout_s: float = 10.0) -> bool:
    """True when both ffmpeg and ffprobe are on PATH and `ffmpeg -version` runs."""
    if not shutil.which("ffmpeg") or not shutil.which("ffprobe"):
        return False
    try:
        proc = subprocess.run(
            ["ffmpeg", "-hide_banner", "-version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout_s,
            **_subprocess_flags(),
        )
    except (OSError, subprocess.SubprocessError) as exc:
        log.warning("ffmpeg -version failed: %s", exc)
        return False
    return proc.returncode == 0


def ffprobe_json(path: str, *, timeout_s: float = 30.0) -> Dict[str, Any]:
    """Return ffprobe JSON for the first video stream plus the container format."""
    _require_cmd("ffprobe")
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height,avg_frame_rate,r_frame_rate,bit_rate,duration:format=duration,bit_rate",
        "-print_format",
        "json",
        str(path),
    ]
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
            **_subprocess_flags(),
        )
    except subprocess.TimeoutExpired as e:
        raise FFmpegTimeoutError(f"ffprobe timed out after {timeout_s:.0f}s") from e
    if proc.returncode != 0:
        raise FFmpegError(
            f"ffprobe failed (exit={proc.returncode}). {proc.stderr.strip()}",
            returncode=proc.returncode,
            stderr=proc.stderr,
        )
    try:
        return json.loads(proc.stdout or "{}")
    except json.JSONDecodeError as e:
        raise FFmpegError(f"ffprobe returned invalid JSON: {proc.stdout[:200]!r}") from e


def parse_ffprobe_fps(rate: str) -> Optional[float]:
    if not rate:
        return None
    if "/" in rate:
        num, den = rate.split("/", 1)
        try:
            num_f = float(num)
            den_f = float(den)
        except ValueError:
            return None
        if den_f == 0:
            return None
        return num_f / den_f
    try:
        return float(rate)
    except ValueError:
        return None


def run_ffmpeg(
    args: List[str],
    *,
    timeout_s: float,
    duration_s: Optional[float] = None,
    on_progress: Optional[Callable[[float], None]] = None,
) -> None:
    """Run `ffmpeg <args>` to completion, killing it after timeout_s.

    When duration_s is given, `-progress pipe:1` output is parsed into a 0..1
    fraction for on_progress.
    """
    _require_cmd("ffmpeg")
    cmd = ["ffmpeg", "-hide_banner", "-v", "error", "-nostdin"]
    if on_progress is not None and duration_s:
        cmd += ["-progress", "pipe:1", "-nostats"]
    cmd += list(args)
    log.debug("ffmpeg: %s", " ".join(cmd))

    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,
        **_subprocess_flags(),
    )
    assert proc.stdout is not None
    assert proc.stderr is not None

    timed_out = threading.Event()

    def _kill() -> None:
        timed_out.set()
        proc.kill()

    watchdog = threading.Timer(timeout_s, _kill)
    watchdog.daemon = True
    watchdog.start()

    try:
        for line in proc.stdout:
            line = line.strip()
            if not line or "=" not in line or on_progress is None or not duration_s:
                continue
            # ffmpeg -progress emits key=value
            k, v = line.split("=", 1)
            k = k.strip()
            v = v.strip()
            if k == "out_time_ms":
                try:
                    out_time_s = int(v) / 1_000_000.0
                except ValueError:
                    continue
                on_progress(min(1.0, max(0.0, out_time_s / duration_s)))
            elif k == "progress" and v == "end":
                on_progress(1.0)

        ret = proc.wait()
        err = proc.stderr.read().strip()
    except Exception:
        proc.kill()
        proc.wait()
        raise
    finally:
        watchdog.cancel()
        try:
            proc.stdout.close()
        except OSError:
            pass
        try:
            proc.stderr.close()
        except OSError:
            pass

    if timed_out.is_set():
        raise FFmpegTimeoutError(f"ffmpeg killed after {timeout_s:.0f}s timeout", returncode=ret, stderr=err)
    if ret != 0:
        raise FFmpegError(f"ffmpeg failed (exit={ret}). {err}", returncode=ret, stderr=err)
