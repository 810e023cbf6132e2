"""Read-only pane directory used by the relay parser, and an in-memory implementation.

The directory answers, for a source pane, which panes share its workspace,
which of them the source has explicitly chosen as `@all` receivers, and what
each pane is titled. Membership is read at call time; nothing is snapshotted.
"""
from __future__ import annotations

import re
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml  # type: ignore

from ..contracts.v1 import PaneInfo, Workspace
from ..util.fs import atomic_write_text
from ..util.time import utc_now_iso


_PANE_TITLE_RE = re.compile(r"^Pane\s+(\d+)", re.IGNORECASE)


class PaneNotFoundError(LookupError):
    """The pane is not a member of any workspace."""


def default_pane_title(n: int) -> str:
    return f"Pane {int(n)}"


def pane_number_from_title(title: str) -> Optional[int]:
    m = _PANE_TITLE_RE.match(title or "")
    if not m:
        return None
    return int(m.group(1))


class PaneDirectory(ABC):
    """What the relay core may ask about the surrounding pane layout."""

    @abstractmethod
    def contains(self, pane_id: str) -> bool:
        ...

    @abstractmethod
    def workspace_panes(self, pane_id: str) -> List[str]:
        """All panes of `pane_id`'s workspace in display order, source included.

        Raises PaneNotFoundError when the pane belongs to no workspace.
        """

    @abstractmethod
    def managed_targets(self, pane_id: str) -> List[str]:
        """Receivers explicitly chosen for `@all`; may be empty or stale."""

    @abstractmethod
    def title_of(self, pane_id: str) -> str:
        ...

    def siblings(self, pane_id: str) -> List[str]:
        return [pid for pid in self.workspace_panes(pane_id) if pid != pane_id]


def _new_workspace_id() -> str:
    return "w_" + uuid.uuid4().hex[:12]


def _new_pane_id() -> str:
    return "p_" + uuid.uuid4().hex[:12]


class WorkspaceDirectory(PaneDirectory):
    """Thread-safe in-memory workspaces, each an ordered list of panes."""

    def __init__(self, workspaces: Optional[Iterable[Workspace]] = None) -> None:
        self._lock = threading.RLock()
        self._workspaces: Dict[str, Workspace] = {}
        self._pane_index: Dict[str, str] = {}
        for ws in workspaces or []:
            self._insert_workspace(ws)

    def _insert_workspace(self, ws: Workspace) -> None:
        with self._lock:
            if ws.id in self._workspaces:
                raise ValueError(f"workspace already exists: {ws.id}")
            for pane in ws.panes:
                if pane.id in self._pane_index:
                    raise ValueError(f"pane already belongs to a workspace: {pane.id}")
            self._workspaces[ws.id] = ws
            for pane in ws.panes:
                self._pane_index[pane.id] = ws.id

    def _workspace_for(self, pane_id: str) -> Workspace:
        wid = self._pane_index.get(str(pane_id or ""))
        if wid is None:
            raise PaneNotFoundError(pane_id)
        return self._workspaces[wid]

    def _pane(self, pane_id: str) -> PaneInfo:
        ws = self._workspace_for(pane_id)
        for pane in ws.panes:
            if pane.id == pane_id:
                return pane
        raise PaneNotFoundError(pane_id)

    # -- PaneDirectory -------------------------------------------------------

    def contains(self, pane_id: str) -> bool:
        with self._lock:
            return str(pane_id or "") in self._pane_index

    def workspace_panes(self, pane_id: str) -> List[str]:
        with self._lock:
            return self._workspace_for(pane_id).pane_ids()

    def managed_targets(self, pane_id: str) -> List[str]:
        with self._lock:
            ws = self._workspace_for(pane_id)
            return list(ws.managed.get(pane_id) or [])

    def title_of(self, pane_id: str) -> str:
        with self._lock:
            return self._pane(pane_id).title

    # -- mutations -----------------------------------------------------------

    def add_workspace(self, workspace_id: str = "", *, name: str = "") -> Workspace:
        wid = workspace_id.strip() or _new_workspace_id()
        ws = Workspace(id=wid, name=name.strip() or wid)
        self._insert_workspace(ws)
        return ws.model_copy(deep=True)

    def remove_workspace(self, workspace_id: str) -> None:
        with self._lock:
            ws = self._workspaces.pop(workspace_id, None)
            if ws is None:
                raise ValueError(f"workspace not found: {workspace_id}")
            for pane in ws.panes:
                self._pane_index.pop(pane.id, None)

    def add_pane(self, workspace_id: str, pane_id: str = "", *, title: str = "") -> PaneInfo:
        with self._lock:
            ws = self._workspaces.get(workspace_id)
            if ws is None:
                raise ValueError(f"workspace not found: {workspace_id}")
            pid = pane_id.strip() or _new_pane_id()
            if pid in self._pane_index:
                raise ValueError(f"pane already belongs to a workspace: {pid}")
            if not title.strip():
                used = {pane_number_from_title(p.title) for p in ws.panes}
                n = 1
                while n in used:
                    n += 1
                title = default_pane_title(n)
            pane = PaneInfo(id=pid, title=title.strip())
            ws.panes.append(pane)
            ws.updated_at = utc_now_iso()
            self._pane_index[pid] = ws.id
            return pane.model_copy()

    def remove_pane(self, pane_id: str) -> None:
        with self._lock:
            ws = self._workspace_for(pane_id)
            ws.panes = [p for p in ws.panes if p.id != pane_id]
            ws.managed.pop(pane_id, None)
            ws.updated_at = utc_now_iso()
            self._pane_index.pop(pane_id, None)

    def rename_pane(self, pane_id: str, title: str) -> None:
        t = (title or "").strip()
        if not t:
            raise ValueError("missing title")
        with self._lock:
            self._pane(pane_id).title = t
            self._workspace_for(pane_id).updated_at = utc_now_iso()

    def move_pane(self, workspace_id: str, old_index: int, new_index: int) -> None:
        with self._lock:
            ws = self._workspaces.get(workspace_id)
            if ws is None:
                raise ValueError(f"workspace not found: {workspace_id}")
            if not 0 <= old_index < len(ws.panes):
                raise IndexError(old_index)
            pane = ws.panes.pop(old_index)
            ws.panes.insert(max(0, min(new_index, len(ws.panes))), pane)
            ws.updated_at = utc_now_iso()

    def set_managed_targets(self, parent_pane_id: str, target_ids: Iterable[str]) -> List[str]:
        """Store the `@all` receivers of a pane; only current siblings are kept."""
        with self._lock:
            ws = self._workspace_for(parent_pane_id)
            siblings = set(self.siblings(parent_pane_id))
            out: List[str] = []
            for tid in target_ids:
                t = str(tid or "").strip()
                if t in siblings and t not in out:
                    out.append(t)
            if out:
                ws.managed[parent_pane_id] = out
            else:
                ws.managed.pop(parent_pane_id, None)
            ws.updated_at = utc_now_iso()
            return list(out)

    # -- queries -------------------------------------------------------------

    def workspace_of(self, pane_id: str) -> Workspace:
        with self._lock:
            return self._workspace_for(pane_id).model_copy(deep=True)

    def workspaces(self) -> List[Workspace]:
        with self._lock:
            return [ws.model_copy(deep=True) for ws in self._workspaces.values()]


def load_workspace_file(path: Path) -> WorkspaceDirectory:
    """Load a YAML workspace description.

    Format::

        workspaces:
          - id: main
            name: build farm
            panes:
              - {id: a, title: Pane 1}
              - {id: b, title: Pane 2}
            managed:
              a: [b]
    """
    try:
        doc: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"invalid workspace file: {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ValueError(f"invalid workspace file: {path}")
    raw = doc.get("workspaces")
    if not isinstance(raw, list):
        raise ValueError(f"invalid workspace file (missing workspaces list): {path}")
    return WorkspaceDirectory(Workspace.model_validate(item) for item in raw if isinstance(item, dict))


def save_workspace_file(directory: WorkspaceDirectory, path: Path) -> None:
    doc = {"v": 1, "workspaces": [ws.model_dump() for ws in directory.workspaces()]}
    atomic_write_text(path, yaml.safe_dump(doc, allow_unicode=True, sort_keys=False))
