"""Normalize chat logs from various sources into ChatEvent records.

Supports:
  - the native export ({timestamp (ms), username, message, emotes})
  - Twitch VOD comment dumps (content_offset_seconds, commenter, message.body)
  - chat-replay-downloader JSON (time_in_seconds, author, message)
  - generic rows with t_ms/author/text style keys
Both a JSON document and JSONL (one object per line) are accepted.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .signals import ChatEvent

log = logging.getLogger(__name__)


# (key, multiplier to milliseconds)
_TS_KEYS = (
    ("timestamp_ms", 1.0),
    ("t_ms", 1.0),
    ("time_ms", 1.0),
    ("offset_ms", 1.0),
    ("videoOffsetTimeMsec", 1.0),
    ("timestamp", 1.0),
    ("content_offset_seconds", 1000.0),
    ("time_in_seconds", 1000.0),
    ("offset_seconds", 1000.0),
    ("seconds", 1000.0),
    ("time", 1000.0),
)

_USER_KEYS = ("username", "user_id", "userId", "user", "author", "commenter", "name")
_TEXT_KEYS = ("message", "text", "body", "content")


def _parse_hhmmss(val: str) -> Optional[float]:
    """Parse HH:MM:SS or MM:SS format to seconds."""
    parts = val.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        parts_f = [float(p) for p in parts]
    except ValueError:
        return None
    sec = 0.0
    for p in parts_f:
        sec = sec * 60.0 + p
    return sec


def _parse_timestamp_ms(msg: Dict[str, Any]) -> Optional[int]:
    for key, mult in _TS_KEYS:
        if key not in msg:
            continue
        val = msg[key]
        if isinstance(val, bool) or val is None:
            continue
        if isinstance(val, (int, float)):
            return int(round(float(val) * mult))
        if isinstance(val, str):
            s = val.strip()
            try:
                return int(round(float(s) * mult))
            except ValueError:
                pass
            sec = _parse_hhmmss(s)
            if sec is not None:
                return int(round(sec * 1000.0))
    return None


def _pick_str(msg: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        val = msg.get(key)
        if isinstance(val, str):
            return val
        if isinstance(val, dict):
            # Twitch dumps nest these: {"commenter": {"display_name": ...}}, {"message": {"body": ...}}
            for sub in ("display_name", "name", "_id", "body"):
                if isinstance(val.get(sub), str):
                    return val[sub]
        if isinstance(val, (int, float)) and not isinstance(val, bool):
            return str(val)
    return None


def _pick_emotes(msg: Dict[str, Any]) -> tuple[str, ...]:
    raw = msg.get("emotes")
    if isinstance(raw, list):
        out = []
        for item in raw:
            if isinstance(item, str):
                out.append(item)
            elif isinstance(item, dict) and isinstance(item.get("name"), str):
                out.append(item["name"])
        return tuple(out)
    return ()


def normalize_chat_messages(messages: Iterable[Any]) -> List[ChatEvent]:
    """Convert raw dict rows to ChatEvents, skipping rows without time or text."""
    events: List[ChatEvent] = []
    skipped = 0
    for msg in messages:
        if not isinstance(msg, dict):
            skipped += 1
            continue
        ts = _parse_timestamp_ms(msg)
        text = _pick_str(msg, _TEXT_KEYS)
        if ts is None or text is None:
            skipped += 1
            continue
        user = _pick_str(msg, _USER_KEYS) or ""
        events.append(ChatEvent(timestamp_ms=ts, user_id=user, text=text, emotes=_pick_emotes(msg)))
    if skipped:
        log.debug("normalize_chat_messages: skipped %d malformed rows", skipped)
    return events


def _extract_rows(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("messages", "comments", "chat", "items"):
            if key in data and isinstance(data[key], list):
                return data[key]
    return []


def load_chat_log(path: Path) -> List[ChatEvent]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Chat log not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        rows: List[Any] = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        data = rows
    return normalize_chat_messages(_extract_rows(data))
