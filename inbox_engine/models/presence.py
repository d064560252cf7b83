"""Modelos de presença/supervisão dos operadores."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

PresenceState = Literal["viewing", "typing", "left"]


@dataclass
class PresenceRecord:
    operator_id: str
    contact_id: str
    state: PresenceState
    since: datetime
    operator_name: Optional[str] = None
    view_duration_s: float = 0.0
    text: Optional[str] = None
    refreshed_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.operator_id, self.contact_id)

    def as_dict(self) -> dict:
        return {
            "operatorId": self.operator_id,
            "operatorName": self.operator_name,
            "contactId": self.contact_id,
            "state": self.state,
            "since": self.since.isoformat(),
            "viewDuration": int(self.view_duration_s),
            "text": self.text,
        }
