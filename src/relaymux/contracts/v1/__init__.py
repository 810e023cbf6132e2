from __future__ import annotations

from .relay import DispatchLogEntry, DispatchResult, DispatchStatus, ParsedRelayCommand
from .workspace import PaneInfo, Workspace

__all__ = [
    "DispatchLogEntry",
    "DispatchResult",
    "DispatchStatus",
    "PaneInfo",
    "ParsedRelayCommand",
    "Workspace",
]
