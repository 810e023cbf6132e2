"""Per-pane relay state, wired together.

Each attached pane gets its own interceptor, output scanner and history;
nothing is shared between panes except the directory and the dispatch
orchestrator. Callers must feed a given pane's input (and output) from one
thread at a time; different panes may be fed concurrently.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from ..contracts.v1 import DispatchLogEntry, DispatchResult
from ..kernel.directory import PaneDirectory, PaneNotFoundError
from ..kernel.dispatch_log import DispatchLogStore
from ..kernel.history import PaneHistory
from ..kernel.settings import RelaySettings
from ..runners import pty as pty_runner
from .dispatch import DispatchOrchestrator, SessionWriter
from .interceptor import InputInterceptor
from .output_scanner import OutputScanner


logger = logging.getLogger("relaymux.host")


@dataclass
class PaneRuntime:
    pane_id: str
    interceptor: InputInterceptor
    scanner: OutputScanner
    history: PaneHistory


class RelayHost:
    def __init__(
        self,
        directory: PaneDirectory,
        writer: SessionWriter,
        log_store: DispatchLogStore,
        settings: Optional[RelaySettings] = None,
    ) -> None:
        self._directory = directory
        self._settings = settings or RelaySettings()
        self._orchestrator = DispatchOrchestrator(
            writer,
            log_store,
            directory=directory,
            line_terminator=self._settings.line_terminator,
            max_workers=self._settings.dispatch_workers,
        )
        self._lock = threading.Lock()
        self._panes: Dict[str, PaneRuntime] = {}

    @property
    def directory(self) -> PaneDirectory:
        return self._directory

    @property
    def orchestrator(self) -> DispatchOrchestrator:
        return self._orchestrator

    @property
    def settings(self) -> RelaySettings:
        return self._settings

    def _runtime(self, pane_id: str) -> PaneRuntime:
        with self._lock:
            rt = self._panes.get(pane_id)
        if rt is None:
            raise PaneNotFoundError(pane_id)
        return rt

    def attached(self) -> List[str]:
        with self._lock:
            return list(self._panes)

    def attach_pane(
        self,
        pane_id: str,
        forward: Callable[[str], None],
        display: Optional[Callable[[str], None]] = None,
    ) -> PaneRuntime:
        """Create the relay state of a pane.

        `forward` receives keystrokes bound for the pane's session; `display`
        (optional) receives the pane's output and relay status lines.
        """
        s = self._settings
        history = PaneHistory(limit=s.history_limit)

        def _render(text: str) -> None:
            history.append(text)
            if display is not None:
                display(text)

        rt = PaneRuntime(
            pane_id=pane_id,
            interceptor=InputInterceptor(
                pane_id,
                directory=self._directory,
                orchestrator=self._orchestrator,
                forward=forward,
                display=_render,
                line_terminator=s.line_terminator,
                status_prefix=s.status_prefix,
            ),
            scanner=OutputScanner(
                pane_id,
                directory=self._directory,
                orchestrator=self._orchestrator,
                sink=_render,
                display=_render,
                status_prefix=s.status_prefix,
                max_line=s.history_limit,
            ),
            history=history,
        )
        with self._lock:
            if pane_id in self._panes:
                raise ValueError(f"pane already attached: {pane_id}")
            self._panes[pane_id] = rt
        logger.info("pane attached", extra={"pane_id": pane_id})
        return rt

    def detach_pane(self, pane_id: str) -> None:
        with self._lock:
            rt = self._panes.pop(pane_id, None)
        if rt is None:
            return
        rt.interceptor.reset()
        rt.scanner.reset()
        logger.info("pane detached", extra={"pane_id": pane_id})

    def handle_input(self, pane_id: str, data: str) -> None:
        self._runtime(pane_id).interceptor.feed(data)

    def handle_output(self, pane_id: str, chunk: str) -> None:
        self._runtime(pane_id).scanner.feed(chunk)

    def send_to_targets(
        self, parent_pane_id: str, target_pane_ids: Iterable[str], command: str
    ) -> Optional["Future[DispatchResult]"]:
        """Relay `command` to explicitly chosen panes (no `@` syntax involved)."""
        cmd = (command or "").strip()
        targets = [t for t in target_pane_ids if t]
        if not cmd or not targets:
            return None
        return self._orchestrator.dispatch(parent_pane_id, targets, cmd)

    def default_targets(self, source_pane_id: str) -> List[str]:
        """Every sibling of the source; the source itself when it is alone."""
        try:
            siblings = self._directory.siblings(source_pane_id)
        except PaneNotFoundError:
            return []
        return siblings or [source_pane_id]

    def logs_for(self, parent_pane_id: str, limit: Optional[int] = None) -> List[DispatchLogEntry]:
        return self._orchestrator.log_store.logs_for(parent_pane_id, limit=limit)

    def history(self, pane_id: str) -> PaneHistory:
        return self._runtime(pane_id).history

    def spawn_shell(
        self,
        pane_id: str,
        *,
        cwd: Optional[Path] = None,
        command: Iterable[str] = (),
        env: Optional[Dict[str, str]] = None,
        display: Optional[Callable[[str], None]] = None,
        supervisor: Optional[pty_runner.PtySupervisor] = None,
    ) -> pty_runner.PtySession:
        """Start a shell for `pane_id` under a PTY and attach it.

        The host's writer should be the same supervisor, so relayed commands
        reach the spawned shells.
        """
        sup = supervisor if supervisor is not None else pty_runner.SUPERVISOR

        def _forward(text: str) -> None:
            if not sup.write_input(pane_id, text.encode("utf-8", errors="replace")):
                logger.warning("pane input dropped: session not running", extra={"pane_id": pane_id})

        self.attach_pane(pane_id, _forward, display)
        try:
            return sup.start_pane(
                pane_id=pane_id,
                cwd=cwd or Path.cwd(),
                command=command,
                env=env,
                on_output=lambda text: self.handle_output(pane_id, text),
            )
        except Exception:
            self.detach_pane(pane_id)
            raise

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            pane_ids = list(self._panes)
        for pid in pane_ids:
            self.detach_pane(pid)
        self._orchestrator.shutdown(wait=wait)
