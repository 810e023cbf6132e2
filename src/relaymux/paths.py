from __future__ import annotations

import os
from pathlib import Path


def relaymux_home() -> Path:
    env = os.environ.get("RELAYMUX_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".relaymux").resolve()


def ensure_home() -> Path:
    home = relaymux_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def dispatch_log_dir() -> Path:
    return ensure_home() / "dispatch"
