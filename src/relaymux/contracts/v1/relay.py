from __future__ import annotations

import uuid
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

from ...util.time import utc_now_iso


DispatchStatus = Literal["success", "partial", "failed"]


class ParsedRelayCommand(BaseModel):
    """A relay line resolved against the pane directory.

    `targets` keeps first-seen order and never contains the source pane.
    """

    targets: List[str] = Field(min_length=1)
    command: str = Field(min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class DispatchResult(BaseModel):
    success_pane_ids: List[str] = Field(default_factory=list)
    failed_pane_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def sent(self) -> int:
        return len(self.success_pane_ids)

    @property
    def failed(self) -> int:
        return len(self.failed_pane_ids)


class DispatchLogEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    parent_pane_id: str
    target_pane_ids: List[str] = Field(default_factory=list)
    command: str
    created_at: str = Field(default_factory=utc_now_iso)
    status: DispatchStatus
    failed_pane_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def success_pane_ids(self) -> List[str]:
        failed = set(self.failed_pane_ids)
        return [pid for pid in self.target_pane_ids if pid not in failed]
