from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_utc_iso(ts: str) -> Optional[datetime]:
    s = (ts or "").strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[: -len("Z")] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_clock(ts: str) -> str:
    """HH:MM:SS for a stored timestamp; the raw value when it does not parse."""
    dt = parse_utc_iso(ts)
    if dt is None:
        return ts
    return dt.astimezone().strftime("%H:%M:%S")
