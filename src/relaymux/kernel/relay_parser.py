"""Relay line grammar and target resolution.

A relay line looks like::

    [list marker] @<targets> <command>

where the optional list marker is one of ``-``, ``*``, ``•``, ``>`` or a
number followed by ``.`` or ``)``, and ``<targets>`` is either ``all`` or a
comma separated list of pane numbers, each optionally spelled ``paneN``.
``<command>`` may be wrapped in one layer of matching quotes.

Anything that does not fit, resolves to no pane, or carries an empty
command is ordinary text: `parse` returns None and never raises.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from ..contracts.v1 import ParsedRelayCommand
from . import ansi
from .directory import PaneDirectory, PaneNotFoundError, pane_number_from_title


_RELAY_LINE_RE = re.compile(
    r"^(?:[-*•>]|\d+[.)])?\s*"
    r"@(all|(?:pane)?\d+(?:,(?:pane)?\d+)*)"
    r"[\s\u3000]+"
    r"(.+)$",
    re.IGNORECASE | re.DOTALL,
)
_PANE_PREFIX_RE = re.compile(r"^pane", re.IGNORECASE)

_QUOTES = ('"', "'", "`")


def match_relay_line(line: str) -> Optional[Tuple[str, str]]:
    """Grammar-only match: (target_token, raw_command) or None."""
    m = _RELAY_LINE_RE.match(line or "")
    if not m:
        return None
    return m.group(1), m.group(2)


def normalize_command(raw: str) -> str:
    s = (raw or "").strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in _QUOTES:
        s = s[1:-1].strip()
    return s


def parse_target_numbers(token: str) -> List[int]:
    out: List[int] = []
    for part in (token or "").split(","):
        digits = _PANE_PREFIX_RE.sub("", part.strip())
        try:
            n = int(digits)
        except ValueError:
            continue
        if n <= 0 or n in out:
            continue
        out.append(n)
    return out


def _pane_numbers(directory: PaneDirectory, source_pane: str) -> Dict[int, str]:
    """Map "Pane N" titles to pane ids; the first pane holding a number keeps it."""
    numbers: Dict[int, str] = {}
    for pid in directory.workspace_panes(source_pane):
        n = pane_number_from_title(directory.title_of(pid))
        if n is None or n in numbers:
            continue
        numbers[n] = pid
    return numbers


def _resolve_all(directory: PaneDirectory, source_pane: str, siblings: List[str]) -> List[str]:
    managed = directory.managed_targets(source_pane)
    if not managed:
        return list(siblings)
    sibling_set = set(siblings)
    out: List[str] = []
    for pid in managed:
        if pid in sibling_set and pid not in out:
            out.append(pid)
    return out


def _resolve_numbers(directory: PaneDirectory, source_pane: str, siblings: List[str], token: str) -> List[str]:
    wanted = parse_target_numbers(token)
    if not wanted:
        return []
    numbers = _pane_numbers(directory, source_pane)
    sibling_set = set(siblings)
    out: List[str] = []
    for n in wanted:
        pid = numbers.get(n)
        if pid is None or pid not in sibling_set or pid in out:
            continue
        out.append(pid)
    return out


def parse(raw_line: str, source_pane: str, directory: PaneDirectory) -> Optional[ParsedRelayCommand]:
    line = ansi.strip(raw_line or "").strip()
    if "@" not in line:
        return None
    matched = match_relay_line(line)
    if matched is None:
        return None
    token, raw_command = matched

    command = normalize_command(raw_command)
    if not command:
        return None

    try:
        if not directory.contains(source_pane):
            return None
        siblings = directory.siblings(source_pane)
        if token.lower() == "all":
            targets = _resolve_all(directory, source_pane, siblings)
        else:
            targets = _resolve_numbers(directory, source_pane, siblings, token)
    except PaneNotFoundError:
        return None

    if not targets:
        return None
    return ParsedRelayCommand(targets=targets, command=command)
