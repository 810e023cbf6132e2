"""tmux-backed pane directory and session writer.

A tmux window is a workspace and its panes are the workspace panes, in
tmux's own order. The `@all` receivers of a pane live in the pane user
option ``@relay_targets`` (comma separated pane ids), so they survive
across relaymux invocations without any state of our own.
"""
from __future__ import annotations

import logging
import os
import subprocess
from typing import Iterable, List, Optional, Tuple

from ..kernel.directory import PaneDirectory, PaneNotFoundError
from ..relay.dispatch import SessionWriter, WriteError


logger = logging.getLogger("relaymux.tmux")

TARGETS_OPTION = "@relay_targets"


def _run_tmux(args: List[str], *, timeout_s: float = 3.0) -> Tuple[int, str, str]:
    try:
        p = subprocess.run(
            ["tmux", *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
            check=False,
        )
        return int(p.returncode), (p.stdout or ""), (p.stderr or "")
    except subprocess.TimeoutExpired:
        return 124, "", "tmux timeout"
    except Exception as e:
        return 1, "", str(e)


def current_pane() -> Optional[str]:
    """The pane this process runs in, from $TMUX_PANE."""
    pane = os.environ.get("TMUX_PANE", "").strip()
    return pane or None


def _display(pane_id: str, fmt: str) -> str:
    code, out, _ = _run_tmux(["display-message", "-p", "-t", pane_id, fmt])
    if code != 0:
        raise PaneNotFoundError(pane_id)
    return out.rstrip("\n")


def _split_ids(raw: str) -> List[str]:
    out: List[str] = []
    for part in raw.replace(",", " ").split():
        if part and part not in out:
            out.append(part)
    return out


class TmuxDirectory(PaneDirectory):
    def contains(self, pane_id: str) -> bool:
        if not pane_id:
            return False
        try:
            return _display(pane_id, "#{pane_id}").strip() == pane_id
        except PaneNotFoundError:
            return False

    def workspace_panes(self, pane_id: str) -> List[str]:
        if not pane_id:
            raise PaneNotFoundError(pane_id)
        code, out, _ = _run_tmux(["list-panes", "-t", pane_id, "-F", "#{pane_id}"])
        if code != 0:
            raise PaneNotFoundError(pane_id)
        return [ln.strip() for ln in out.splitlines() if ln.strip()]

    def managed_targets(self, pane_id: str) -> List[str]:
        code, out, _ = _run_tmux(["show-options", "-p", "-v", "-t", pane_id, TARGETS_OPTION])
        if code != 0:
            # Unset option: tmux exits non-zero with "invalid option".
            return []
        return _split_ids(out.strip())

    def title_of(self, pane_id: str) -> str:
        return _display(pane_id, "#{pane_title}")

    def set_managed_targets(self, pane_id: str, target_ids: Iterable[str]) -> List[str]:
        """Store the `@all` receivers of `pane_id`; only current siblings are kept."""
        siblings = set(self.siblings(pane_id))
        keep: List[str] = []
        for tid in target_ids:
            t = str(tid or "").strip()
            if t in siblings and t not in keep:
                keep.append(t)
        if keep:
            code, _, err = _run_tmux(["set-option", "-p", "-t", pane_id, TARGETS_OPTION, ",".join(keep)])
        else:
            code, _, err = _run_tmux(["set-option", "-p", "-u", "-t", pane_id, TARGETS_OPTION])
        if code != 0:
            raise RuntimeError(f"tmux set-option failed: {err.strip()}")
        return keep


class TmuxSessionWriter(SessionWriter):
    """Types text into tmux panes.

    The text goes in literally (``send-keys -l``); a trailing line terminator
    is sent as a separate Enter key so shells and TUIs both submit it.
    """

    def __init__(self, *, timeout_s: float = 3.0) -> None:
        self._timeout_s = float(timeout_s)

    def write(self, target: str, data: str) -> None:
        text = data.rstrip("\r\n")
        submit = len(text) != len(data)
        if text:
            code, _, err = _run_tmux(["send-keys", "-t", target, "-l", text], timeout_s=self._timeout_s)
            if code != 0:
                raise WriteError(f"tmux send-keys failed for {target}: {err.strip()}")
        if submit:
            code, _, err = _run_tmux(["send-keys", "-t", target, "Enter"], timeout_s=self._timeout_s)
            if code != 0:
                raise WriteError(f"tmux send-keys failed for {target}: {err.strip()}")
