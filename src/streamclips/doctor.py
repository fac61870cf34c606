from __future__ import annotations

import importlib.util
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, Optional

from .utils import subprocess_flags

# import name -> distribution name
_PY_DEPS = {
    "numpy": "numpy",
    "yaml": "PyYAML",
    "fastapi": "fastapi",
    "uvicorn": "uvicorn",
}


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    checks: Dict[str, Dict[str, object]]


def _which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def _version(cmd: str) -> str:
    try:
        out = subprocess.check_output(
            [cmd, "-version"],
            text=True,
            stderr=subprocess.STDOUT,
            timeout=10,
            **subprocess_flags(),
        )
        return out.splitlines()[0].strip()
    except (OSError, subprocess.SubprocessError) as e:
        return f"error: {type(e).__name__}: {e}"


def run_doctor() -> DoctorReport:
    checks: Dict[str, Dict[str, object]] = {}

    for cmd in ("ffmpeg", "ffprobe"):
        path = _which(cmd)
        checks[cmd] = {
            "found": path is not None,
            "path": path,
            "version": _version(cmd) if path else None,
        }

    for module, dist in _PY_DEPS.items():
        if importlib.util.find_spec(module) is not None:
            checks[dist] = {"installed": True}
        else:
            checks[dist] = {"installed": False, "note": f"Install with: pip install {dist}"}

    ok = bool(checks["ffmpeg"]["found"] and checks["ffprobe"]["found"])
    return DoctorReport(ok=ok, checks=checks)
