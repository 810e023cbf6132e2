from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from ...util.time import utc_now_iso


class PaneInfo(BaseModel):
    id: str
    title: str = ""

    model_config = ConfigDict(extra="forbid")


class Workspace(BaseModel):
    id: str
    name: str = ""
    panes: List[PaneInfo] = Field(default_factory=list)
    # parent pane id -> explicitly chosen receivers for "@all"
    managed: Dict[str, List[str]] = Field(default_factory=dict)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    model_config = ConfigDict(extra="ignore")

    def pane_ids(self) -> List[str]:
        return [p.id for p in self.panes]
