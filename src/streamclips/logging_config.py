"""Logging setup for the CLI, the job workers and the HTTP server.

Records emitted while a job runs carry that job's id (see job_logging), so
interleaved output from the worker pool can be told apart. uvicorn's loggers
are routed through the same handlers when serving.
"""

from __future__ import annotations

import contextvars
import logging
import os
import re
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

_ROOT = "streamclips"
MODULE_LEVELS_ENV = "SC_LOG_MODULE_LEVELS"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s%(job)s: %(message)s"
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_CONFIGURED = False
_current_job: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("streamclips_job", default=None)
_LEVEL_RE = re.compile(r"([\w.]+)\s*[=:]\s*(\w+)")


@contextmanager
def job_logging(job_id: str) -> Iterator[None]:
    """Tag every record logged in this thread/context with job_id."""
    token = _current_job.set(job_id)
    try:
        yield
    finally:
        _current_job.reset(token)


class JobIdFilter(logging.Filter):
    """Adds `job` to records: " [job <id8>]" inside job_logging, else ""."""

    def filter(self, record: logging.LogRecord) -> bool:
        job_id = _current_job.get()
        record.job = f" [job {job_id[:8]}]" if job_id else ""
        return True


def _parse_module_levels(spec: str) -> Dict[str, int]:
    """`"chat=DEBUG; jobs:warning"` -> {"streamclips.chat": 10, "streamclips.jobs": 30}.

    Short names are taken relative to the package; numeric levels are accepted
    and unknown level names are skipped.
    """
    out: Dict[str, int] = {}
    for name, level_str in _LEVEL_RE.findall(spec or ""):
        if level_str.isdigit():
            level: object = int(level_str)
        else:
            level = logging.getLevelName(level_str.upper())
        if not isinstance(level, int):
            continue
        if name != _ROOT and not name.startswith(_ROOT + "."):
            name = f"{_ROOT}.{name}"
        out[name] = level
    return out


def _handlers(log_file: Optional[Path], fmt: str) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    formatter = logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S")
    job_filter = JobIdFilter()
    for handler in handlers:
        # Permissive so per-module overrides can enable DEBUG.
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(formatter)
        handler.addFilter(job_filter)
    return handlers


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    *,
    capture: Sequence[str] = (),
    format_string: str = DEFAULT_FORMAT,
) -> None:
    """Configure the `streamclips` logger once per process.

    capture names third-party loggers (e.g. UVICORN_LOGGERS) that should
    write through the same handlers instead of their own.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    handlers = _handlers(log_file, format_string)
    logger = logging.getLogger(_ROOT)
    logger.setLevel(level)
    logger.handlers[:] = handlers
    logger.propagate = False

    for name in capture:
        external = logging.getLogger(name)
        external.handlers[:] = handlers
        external.setLevel(level)
        external.propagate = False

    for name, lvl in _parse_module_levels(os.getenv(MODULE_LEVELS_ENV, "")).items():
        logging.getLogger(name).setLevel(lvl)

    _CONFIGURED = True
