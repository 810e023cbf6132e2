from __future__ import annotations

import threading
from typing import List

from .ansi import normalize_for_search, open_sequence_start


DEFAULT_HISTORY_LIMIT = 240_000
NO_OUTPUT_PLACEHOLDER = "(no output yet)"
# Longest unterminated escape held back from `text`; past this it is flushed.
MAX_PENDING_ESCAPE = 4096


class PaneHistory:
    """Bounded output history of one pane.

    `raw` keeps the output as received; `text` keeps an escape-free copy
    used for search and previews. Both drop their oldest characters once
    they exceed `limit`. An escape sequence split across chunks is held
    back from `text` until the chunk that completes it arrives.
    """

    def __init__(self, *, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._lock = threading.Lock()
        self._limit = max(1, int(limit))
        self._raw = ""
        self._text = ""
        self._pending = ""

    def append(self, chunk: str) -> None:
        if not chunk:
            return
        with self._lock:
            self._raw = (self._raw + chunk)[-self._limit :]
            data = self._pending + chunk
            cut = open_sequence_start(data)
            if len(data) - cut > MAX_PENDING_ESCAPE:
                cut = len(data)
            self._pending = data[cut:]
            self._text = (self._text + normalize_for_search(data[:cut]))[-self._limit :]

    @property
    def raw(self) -> str:
        with self._lock:
            return self._raw

    @property
    def text(self) -> str:
        with self._lock:
            return self._text

    def clear(self) -> None:
        with self._lock:
            self._raw = ""
            self._text = ""
            self._pending = ""

    def latest_visible_line(self) -> str:
        lines = [ln.strip() for ln in self.text.split("\n")]
        lines = [ln for ln in lines if ln]
        return lines[-1] if lines else NO_OUTPUT_PLACEHOLDER

    def search(self, term: str) -> List[str]:
        needle = (term or "").casefold()
        if not needle:
            return []
        return [ln for ln in self.text.split("\n") if needle in ln.casefold()]
