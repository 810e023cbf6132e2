"""Global settings for relaymux.

Settings live in ~/.relaymux/settings.yaml (or $RELAYMUX_HOME/settings.yaml).
Only the `relay:` section is interpreted here::

    relay:
      line_terminator: "\\r"
      dispatch_workers: 8
      history_limit: 240000
      log_keep_last: 0
      log_preview: 5
      status_prefix: "[relay] "
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore

from ..paths import ensure_home
from ..util.conv import coerce_int
from ..util.fs import atomic_write_text


_TERMINATORS = {"\r", "\n", "\r\n"}


@dataclass(frozen=True)
class RelaySettings:
    line_terminator: str = "\r"
    dispatch_workers: int = 8
    history_limit: int = 240_000
    # 0 keeps every dispatch log entry.
    log_keep_last: int = 0
    log_preview: int = 5
    status_prefix: str = "[relay] "

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Any) -> "RelaySettings":
        base = cls()
        if not isinstance(d, dict):
            return base
        term = d.get("line_terminator")
        if not isinstance(term, str) or term not in _TERMINATORS:
            term = base.line_terminator
        prefix = d.get("status_prefix")
        if not isinstance(prefix, str):
            prefix = base.status_prefix
        return cls(
            line_terminator=term,
            dispatch_workers=coerce_int(d.get("dispatch_workers"), default=base.dispatch_workers, min_value=1, max_value=256),
            history_limit=coerce_int(d.get("history_limit"), default=base.history_limit, min_value=1024),
            log_keep_last=coerce_int(d.get("log_keep_last"), default=base.log_keep_last, min_value=0),
            log_preview=coerce_int(d.get("log_preview"), default=base.log_preview, min_value=1, max_value=1000),
            status_prefix=prefix,
        )


def _settings_path() -> Path:
    return ensure_home() / "settings.yaml"


def load_settings() -> Dict[str, Any]:
    """Load global settings; a missing or unreadable file yields {}."""
    p = _settings_path()
    if not p.exists():
        return {}
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        return {}
    return doc if isinstance(doc, dict) else {}


def save_settings(settings: Dict[str, Any]) -> None:
    atomic_write_text(_settings_path(), yaml.safe_dump(settings, allow_unicode=True, sort_keys=False))


def get_relay_settings(settings: Optional[Dict[str, Any]] = None) -> RelaySettings:
    doc = load_settings() if settings is None else settings
    return RelaySettings.from_dict(doc.get("relay"))


def set_relay_settings(relay: RelaySettings) -> None:
    settings = load_settings()
    settings["relay"] = relay.to_dict()
    save_settings(settings)
