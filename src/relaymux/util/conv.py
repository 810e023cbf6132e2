from __future__ import annotations

from typing import Any


def coerce_int(value: Any, *, default: int, min_value: int = 0, max_value: int | None = None) -> int:
    """Parse an int from YAML/CLI input and clamp it into [min_value, max_value].

    Settings arrive from YAML where numbers may be quoted strings; anything
    unparseable (or a bool, which int() would accept) maps to `default`.
    """
    if isinstance(value, bool):
        n = int(default)
    else:
        try:
            n = int(value)
        except (TypeError, ValueError):
            n = int(default)
    if n < min_value:
        n = min_value
    if max_value is not None and n > max_value:
        n = max_value
    return n
