"""Keystroke interception for one pane.

Sits between the keyboard and the pane's session. Characters pass straight
through until an ``@`` is typed at the start of a line; from then on the
line is held back (compose mode) until Enter. A complete relay line is
dispatched to other panes and never reaches the local session. Anything else
is forwarded exactly as typed, followed by the line terminator, so compose
mode never loses input.
"""
from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from ..contracts.v1 import DispatchResult, ParsedRelayCommand
from ..kernel import relay_parser
from ..kernel.directory import PaneDirectory
from .dispatch import DISPATCH_FAILED_STATUS, DispatchOrchestrator, format_status


logger = logging.getLogger("relaymux.interceptor")

TERMINATORS = ("\r", "\n")
ERASERS = ("\x7f", "\b")


class Mode(str, Enum):
    PASSTHROUGH = "passthrough"
    COMPOSE = "compose"


@dataclass
class InterceptorState:
    mode: Mode = Mode.PASSTHROUGH
    # Current unterminated input line, tracked in both modes.
    line_buffer: str = ""
    # Held-back text; only filled while composing.
    compose_buffer: str = ""


def status_line(prefix: str, status: str) -> str:
    return f"\r\n{prefix}{status}\r\n"


def report_when_done(
    fut: "Future[DispatchResult]",
    command: str,
    display: Optional[Callable[[str], None]],
    *,
    prefix: str,
    pane_id: str,
) -> None:
    """Write the dispatch outcome to the pane's display once it settles."""

    def _done(f: "Future[DispatchResult]") -> None:
        try:
            status = format_status(f.result(), command)
        except Exception:
            logger.error("relay dispatch failed", exc_info=True, extra={"pane_id": pane_id})
            status = DISPATCH_FAILED_STATUS
        if display is None:
            return
        try:
            display(status_line(prefix, status))
        except Exception:
            logger.warning("status display failed", exc_info=True, extra={"pane_id": pane_id})

    fut.add_done_callback(_done)


class InputInterceptor:
    def __init__(
        self,
        pane_id: str,
        *,
        directory: PaneDirectory,
        orchestrator: DispatchOrchestrator,
        forward: Callable[[str], None],
        display: Optional[Callable[[str], None]] = None,
        line_terminator: str = "\r",
        status_prefix: str = "[relay] ",
    ) -> None:
        self.pane_id = pane_id
        self._directory = directory
        self._orchestrator = orchestrator
        self._forward = forward
        self._display = display
        self._terminator = line_terminator
        self._status_prefix = status_prefix
        self.state = InterceptorState()

    @property
    def mode(self) -> Mode:
        return self.state.mode

    def reset(self) -> None:
        self.state = InterceptorState()

    def feed(self, chunk: str) -> None:
        if not chunk:
            return
        st = self.state
        out: List[str] = []
        # Positions within this chunk; -1 means "before this chunk".
        compose_entered_at = -1
        last_terminator_at = -1

        for i, ch in enumerate(chunk):
            if ch in TERMINATORS:
                last_terminator_at = i

            if st.mode is Mode.PASSTHROUGH:
                if ch == "@" and not st.line_buffer:
                    st.mode = Mode.COMPOSE
                    st.compose_buffer = "@"
                    compose_entered_at = i
                elif ch in TERMINATORS:
                    out.append(ch)
                    st.line_buffer = ""
                elif ch in ERASERS:
                    out.append(ch)
                    st.line_buffer = st.line_buffer[:-1]
                else:
                    out.append(ch)
                    st.line_buffer += ch
                continue

            if ch in ERASERS:
                st.compose_buffer = st.compose_buffer[:-1]
            elif ch in TERMINATORS:
                self._finish_compose(out)
            else:
                st.compose_buffer += ch

        if st.mode is Mode.COMPOSE and last_terminator_at > compose_entered_at:
            # The loop leaves COMPOSE on every terminator; reaching this means
            # the state was corrupted. Release the held text rather than lose it.
            logger.warning("compose state survived a line terminator; flushing", extra={"pane_id": self.pane_id})
            out.append(st.compose_buffer)
            self.reset()

        if out:
            self._forward("".join(out))

    def _finish_compose(self, out: List[str]) -> None:
        st = self.state
        text = st.compose_buffer
        st.mode = Mode.PASSTHROUGH
        st.compose_buffer = ""
        st.line_buffer = ""

        parsed = relay_parser.parse(text, self.pane_id, self._directory)
        if parsed is None:
            out.append(text + self._terminator)
            return
        self._dispatch(parsed)

    def _dispatch(self, parsed: ParsedRelayCommand) -> None:
        try:
            fut = self._orchestrator.dispatch(self.pane_id, parsed.targets, parsed.command)
        except RuntimeError:
            # Executor already shut down (pane host closing).
            logger.error("relay dispatch could not be scheduled", exc_info=True, extra={"pane_id": self.pane_id})
            if self._display is not None:
                self._display(status_line(self._status_prefix, DISPATCH_FAILED_STATUS))
            return
        report_when_done(
            fut,
            parsed.command,
            self._display,
            prefix=self._status_prefix,
            pane_id=self.pane_id,
        )
