"""CSI/OSC escape stripping for terminal text.

Only the two escape families that decorate shell prompts and program output
are removed:

- CSI: ESC [ ... <final byte 0x40-0x7E>
- OSC: ESC ] ... BEL  or  ESC ] ... ESC \\

Any other byte after ESC is kept and only the ESC is dropped. Other control
characters (CR, TAB, BEL outside OSC, ...) pass through `strip` untouched.
"""
from __future__ import annotations


ESC = "\x1b"
BEL = "\x07"


def _csi_end(s: str, i: int) -> int:
    """Index just after the CSI final byte, or -1 when it has not arrived."""
    n = len(s)
    while i < n:
        if "@" <= s[i] <= "~":
            return i + 1
        i += 1
    return -1


def _osc_end(s: str, i: int) -> int:
    """Index just after the OSC terminator, or -1 when it has not arrived.

    A trailing ESC counts as not arrived: it may be the first half of ESC \\.
    """
    n = len(s)
    while i < n:
        ch = s[i]
        if ch == BEL:
            return i + 1
        if ch == ESC:
            if i + 1 == n:
                return -1
            if s[i + 1] == "\\":
                return i + 2
        i += 1
    return -1


def _skip_csi(s: str, i: int) -> int:
    end = _csi_end(s, i)
    return end if end >= 0 else len(s)


def _skip_osc(s: str, i: int) -> int:
    end = _osc_end(s, i)
    return end if end >= 0 else len(s)


def open_sequence_start(s: str) -> int:
    """Where an escape sequence left open at the end of `s` begins; len(s) if none.

    Output read in chunks can end mid-sequence; callers hold `s[start:]` back
    until the next chunk completes it.
    """
    n = len(s)
    i = s.find(ESC)
    while 0 <= i < n:
        if i + 1 == n:
            return i
        kind = s[i + 1]
        if kind == "[":
            end = _csi_end(s, i + 2)
        elif kind == "]":
            end = _osc_end(s, i + 2)
        else:
            end = i + 1
        if end < 0:
            return i
        i = s.find(ESC, end)
    return n


def strip(line: str) -> str:
    s = line or ""
    if ESC not in s:
        return s

    out: list[str] = []
    i = 0
    n = len(s)
    while i < n:
        ch = s[i]
        if ch != ESC:
            out.append(ch)
            i += 1
            continue

        nxt = s[i + 1] if i + 1 < n else ""
        if nxt == "[":
            i = _skip_csi(s, i + 2)
        elif nxt == "]":
            i = _skip_osc(s, i + 2)
        else:
            # Unrecognized family: drop ESC, rescan from the following char.
            i += 1
    return "".join(out)


def normalize_for_search(chunk: str) -> str:
    """Strip escapes and the control characters that make history unsearchable.

    Keeps LF and TAB; drops CR, DEL and every other C0 control.
    """
    out: list[str] = []
    for ch in strip(chunk):
        code = ord(ch)
        if code == 13 or code == 127:
            continue
        if code < 32 and ch not in ("\n", "\t"):
            continue
        out.append(ch)
    return "".join(out)
