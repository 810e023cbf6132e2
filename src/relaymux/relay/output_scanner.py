"""Passive relay detection on a pane's output stream.

Output is always handed to the render/history sink first, unmodified and
exactly once. The scanner then reassembles complete lines (LF-terminated, CR
ignored) independently of how the stream was chunked and dispatches every
line that parses as a relay command. Nothing is ever suppressed.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from ..kernel import relay_parser
from ..kernel.directory import PaneDirectory
from ..kernel.history import DEFAULT_HISTORY_LIMIT
from .dispatch import DISPATCH_FAILED_STATUS, DispatchOrchestrator
from .interceptor import report_when_done, status_line


logger = logging.getLogger("relaymux.output")


class OutputScanner:
    def __init__(
        self,
        pane_id: str,
        *,
        directory: PaneDirectory,
        orchestrator: DispatchOrchestrator,
        sink: Callable[[str], None],
        display: Optional[Callable[[str], None]] = None,
        status_prefix: str = "[relay] ",
        max_line: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.pane_id = pane_id
        self._directory = directory
        self._orchestrator = orchestrator
        self._sink = sink
        self._display = display
        self._status_prefix = status_prefix
        self._max_line = max(1, int(max_line))
        self.pending_line = ""
        # Set while dropping the remainder of an over-long line.
        self._overflow = False

    def reset(self) -> None:
        self.pending_line = ""
        self._overflow = False

    def feed(self, chunk: str) -> None:
        if not chunk:
            return
        self._sink(chunk)

        parts = chunk.replace("\r", "").split("\n")
        for part in parts[:-1]:
            line = self.pending_line + part
            overflowed = self._overflow
            self.reset()
            if not overflowed:
                self._scan_line(line)
        self._accumulate(parts[-1])

    def _accumulate(self, tail: str) -> None:
        if self._overflow or not tail:
            return
        self.pending_line += tail
        if len(self.pending_line) > self._max_line:
            self.pending_line = ""
            self._overflow = True

    def _scan_line(self, line: str) -> None:
        if len(line) > self._max_line:
            return
        parsed = relay_parser.parse(line, self.pane_id, self._directory)
        if parsed is None:
            return
        try:
            fut = self._orchestrator.dispatch(self.pane_id, parsed.targets, parsed.command)
        except RuntimeError:
            logger.error("relay dispatch could not be scheduled", exc_info=True, extra={"pane_id": self.pane_id})
            if self._display is not None:
                self._display(status_line(self._status_prefix, DISPATCH_FAILED_STATUS))
            return
        report_when_done(fut, parsed.command, self._display, prefix=self._status_prefix, pane_id=self.pane_id)
