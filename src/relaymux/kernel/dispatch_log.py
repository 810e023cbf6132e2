"""Append-only audit log of relay dispatches, grouped by parent pane.

Entries are written once and never mutated. Queries return the most recent
entry first. Retention is opt-in (`keep_last`); a UI showing only a few
entries passes `limit` instead.
"""
from __future__ import annotations

import hashlib
import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..contracts.v1 import DispatchLogEntry, DispatchStatus
from ..paths import dispatch_log_dir
from ..util.file_lock import held_lock
from ..util.fs import append_jsonl, atomic_write_text, read_all_lines, read_last_lines


def dispatch_status(target_pane_ids: List[str], failed_pane_ids: List[str]) -> DispatchStatus:
    if not failed_pane_ids:
        return "success"
    if len(failed_pane_ids) >= len(target_pane_ids):
        return "failed"
    return "partial"


def build_entry(
    parent_pane_id: str,
    target_pane_ids: Iterable[str],
    failed_pane_ids: Iterable[str],
    command: str,
) -> DispatchLogEntry:
    targets = list(target_pane_ids)
    failed_set = set(failed_pane_ids)
    failed = [pid for pid in targets if pid in failed_set]
    return DispatchLogEntry(
        parent_pane_id=parent_pane_id,
        target_pane_ids=targets,
        command=command,
        status=dispatch_status(targets, failed),
        failed_pane_ids=failed,
    )


class DispatchLogStore(ABC):
    @abstractmethod
    def append(self, entry: DispatchLogEntry) -> None:
        ...

    @abstractmethod
    def logs_for(self, parent_pane_id: str, *, limit: Optional[int] = None) -> List[DispatchLogEntry]:
        """Entries recorded under `parent_pane_id`, most recent first."""


class MemoryDispatchLog(DispatchLogStore):
    def __init__(self, *, keep_last: int = 0) -> None:
        self._lock = threading.Lock()
        self._keep_last = max(0, int(keep_last))
        # parent pane id -> entries, newest first
        self._entries: Dict[str, List[DispatchLogEntry]] = {}

    def append(self, entry: DispatchLogEntry) -> None:
        with self._lock:
            items = self._entries.setdefault(entry.parent_pane_id, [])
            items.insert(0, entry)
            if self._keep_last and len(items) > self._keep_last:
                del items[self._keep_last :]

    def logs_for(self, parent_pane_id: str, *, limit: Optional[int] = None) -> List[DispatchLogEntry]:
        with self._lock:
            items = list(self._entries.get(parent_pane_id) or [])
        if limit is not None:
            items = items[: max(0, int(limit))]
        return items

    def forget(self, parent_pane_id: str) -> None:
        with self._lock:
            self._entries.pop(parent_pane_id, None)


def _parent_key(parent_pane_id: str) -> str:
    return hashlib.sha256(parent_pane_id.encode("utf-8")).hexdigest()[:16]


def _decode_entries(lines: List[str]) -> List[DispatchLogEntry]:
    out: List[DispatchLogEntry] = []
    for line in lines:
        try:
            out.append(DispatchLogEntry.model_validate(json.loads(line)))
        except (ValueError, ValidationError):
            continue
    return out


class FileDispatchLog(DispatchLogStore):
    """One JSONL file per parent pane, appended under an exclusive lockfile."""

    def __init__(self, root: Optional[Path] = None, *, keep_last: int = 0) -> None:
        self._root = root if root is not None else dispatch_log_dir()
        self._keep_last = max(0, int(keep_last))
        self._lock = threading.Lock()

    def path_for(self, parent_pane_id: str) -> Path:
        return self._root / f"{_parent_key(parent_pane_id)}.jsonl"

    def _lock_path(self, parent_pane_id: str) -> Path:
        return self._root / "locks" / f"{_parent_key(parent_pane_id)}.lock"

    def append(self, entry: DispatchLogEntry) -> None:
        path = self.path_for(entry.parent_pane_id)
        with self._lock, held_lock(self._lock_path(entry.parent_pane_id)):
            append_jsonl(path, entry.model_dump())
            if not self._keep_last:
                return
            lines = read_all_lines(path)
            if len(lines) > self._keep_last:
                atomic_write_text(path, "\n".join(lines[-self._keep_last :]) + "\n")

    def logs_for(self, parent_pane_id: str, *, limit: Optional[int] = None) -> List[DispatchLogEntry]:
        path = self.path_for(parent_pane_id)
        if limit is None:
            entries = [e for e in _decode_entries(read_all_lines(path)) if e.parent_pane_id == parent_pane_id]
        else:
            want = max(0, int(limit))
            entries = []
            n = want
            # Malformed lines do not count toward the limit; widen the tail until
            # enough entries decode or the whole file has been read.
            while n > 0:
                lines = read_last_lines(path, n)
                entries = [e for e in _decode_entries(lines) if e.parent_pane_id == parent_pane_id]
                if len(entries) >= want or len(lines) < n:
                    break
                n *= 2
            entries = entries[-want:] if want else []
        entries.reverse()
        return entries
