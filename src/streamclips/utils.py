"""Shared utility functions for streamclips.

This module provides common utilities used across multiple modules:
- subprocess_flags(): Windows-specific flags to hide console windows
- utc_iso(): UTC timestamp in ISO format
- clamp(): bound a number to a closed range
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from typing import Any, Dict


def subprocess_flags() -> Dict[str, Any]:
    """Return subprocess flags to hide console window on Windows.

    Usage:
        proc = subprocess.Popen(cmd, **subprocess_flags())

    Returns:
        Dict with 'creationflags' on Windows, empty dict otherwise.
    """
    if sys.platform == "win32":
        # CREATE_NO_WINDOW = 0x08000000
        return {"creationflags": 0x08000000}
    return {}


def utc_iso() -> str:
    """Return current UTC time in ISO 8601 format.

    Returns:
        ISO formatted timestamp string like '2024-01-15T10:30:00+00:00'
    """
    return datetime.now(timezone.utc).isoformat()


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, float(value)))
