from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from ..relay.dispatch import SessionWriter, WriteError

PTY_SUPPORTED = False

OutputCallback = Callable[[str], None]


@dataclass
class PtySession:
    pane_id: str = ""
    pid: int = 0


class PtySupervisor(SessionWriter):
    def pane_running(self, pane_id: str) -> bool:
        return False

    def start_pane(
        self,
        *,
        pane_id: str,
        cwd: Path,
        command: Iterable[str] = (),
        env: Optional[Dict[str, str]] = None,
        on_output: Optional[OutputCallback] = None,
        max_backlog_bytes: int = 2_000_000,
        cols: int = 80,
        rows: int = 24,
    ) -> PtySession:
        raise RuntimeError("pty panes are not supported on this platform; use the tmux runner")

    def stop_pane(self, pane_id: str) -> None:
        return None

    def stop_all(self) -> None:
        return None

    def resize(self, pane_id: str, *, cols: int, rows: int) -> None:
        return None

    def write_input(self, pane_id: str, data: bytes) -> bool:
        return False

    def write(self, target: str, data: str) -> None:
        raise WriteError(f"pane not running: {target}")


SUPERVISOR = PtySupervisor()
