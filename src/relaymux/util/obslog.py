"""JSONL log lines for relaymux processes.

Every record becomes one JSON object on the handler's stream. Relay code
attaches pane and dispatch ids with ``extra={...}``; those keys are lifted
into the object so a dispatch can be followed across the dispatch and
writer threads.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO, Tuple


CONTEXT_KEYS: Tuple[str, ...] = (
    "op",
    "pane_id",
    "parent_pane_id",
    "target_pane_id",
    "dispatch_id",
    "workspace_id",
)


class JsonlFormatter(logging.Formatter):
    def __init__(self, *, component: str, context_keys: Tuple[str, ...] = CONTEXT_KEYS):
        super().__init__()
        self._component = str(component or "").strip() or "relaymux"
        self._context_keys = context_keys

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "component": self._component,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        for key in self._context_keys:
            value = str(getattr(record, key, "") or "").strip()
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _level(name: str) -> int:
    value = logging.getLevelName(str(name or "").strip().upper() or "INFO")
    return value if isinstance(value, int) else logging.INFO


def setup_root_json_logging(
    *,
    component: str,
    level: str = "INFO",
    stream: Optional[TextIO] = None,
    force: bool = False,
) -> None:
    """Install the JSONL handler on the root logger.

    Repeated calls only adjust the level of the handler already installed;
    `force=True` replaces every root handler.
    """
    root = logging.getLogger()
    lvl = _level(level)
    if force:
        for h in list(root.handlers):
            root.removeHandler(h)
    root.setLevel(lvl)

    installed = [h for h in root.handlers if isinstance(h.formatter, JsonlFormatter)]
    for h in installed:
        h.setLevel(lvl)
    if installed:
        return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(lvl)
    handler.setFormatter(JsonlFormatter(component=component))
    root.addHandler(handler)
