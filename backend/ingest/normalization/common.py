"""Absence-tolerant field access and coercion shared by the provider mappers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional


def as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def dig(obj: Any, *path: Any, default: Any = None) -> Any:
    """Walk mappings by key and lists by index; any miss returns ``default``."""
    cur = obj
    for step in path:
        if isinstance(step, int) and isinstance(cur, (list, tuple)):
            if -len(cur) <= step < len(cur):
                cur = cur[step]
                continue
            return default
        if isinstance(cur, Mapping) and step in cur:
            cur = cur[step]
            continue
        return default
    return default if cur is None else cur


def first(*values: Any) -> Any:
    """First value that is neither None nor an empty string."""
    for v in values:
        if v is not None and v != "":
            return v
    return None


def as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return int(float(text))
            except ValueError:
                return None
    return None


def as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def as_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool) or value == "":
        return None
    if isinstance(value, (str, int)):
        return str(value)
    return None


def as_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO-8601 string or epoch seconds to an aware UTC datetime. Naive input is taken as UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def team_short_name(full_name: Any) -> str:
    """
    Short code for a team without one: initials of up to three words, or the
    first three letters of a single-word name, uppercased.
    """
    if not isinstance(full_name, str):
        return ""
    words = full_name.split()
    if not words:
        return ""
    if len(words) == 1:
        return words[0][:3].upper()
    return "".join(word[0] for word in words)[:3].upper()


def drop_none(values: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}
