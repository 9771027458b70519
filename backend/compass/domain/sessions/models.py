from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, Field, field_serializer

from compass.utils.time import utc_now


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class EscalationLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK = {
    EscalationLevel.LOW: 0,
    EscalationLevel.MEDIUM: 1,
    EscalationLevel.HIGH: 2,
    EscalationLevel.CRITICAL: 3,
}


class FlowSession(BaseModel):
    """
    Mutable progress of one traversal. Owned by exactly one runner at a time.

    Escalation only ever goes up; a reset discards the whole session instead
    of lowering it.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    flow_id: str
    flow_type: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    start_time: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    current_node_id: Optional[str] = None
    visited_node_ids: Set[str] = Field(default_factory=set)
    user_responses: Dict[str, str] = Field(default_factory=dict)
    escalation_level: EscalationLevel = EscalationLevel.LOW
    transitions: int = 0

    @field_serializer("visited_node_ids")
    def _sorted_visited(self, value: Set[str]) -> List[str]:
        return sorted(value)

    @property
    def is_finished(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.ABANDONED)

    def touch(self) -> None:
        self.last_activity = utc_now()

    def raise_escalation(self, level: EscalationLevel) -> bool:
        """Returns True if the level actually went up."""
        if level.rank > self.escalation_level.rank:
            self.escalation_level = level
            return True
        return False

    def enter(self, node_id: str, *, transition: bool) -> None:
        self.current_node_id = node_id
        self.visited_node_ids.add(node_id)
        if transition:
            self.transitions += 1
            self.raise_escalation(EscalationLevel.MEDIUM)
        self.touch()

    def record_response(self, node_id: str, text: str) -> None:
        self.user_responses[node_id] = text
        self.touch()

    def complete(self) -> None:
        self.status = SessionStatus.COMPLETED
        self.end_time = utc_now()
        self.touch()
