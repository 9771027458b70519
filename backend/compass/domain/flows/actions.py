"""
Node actions.

Flow JSON carries actions as opaque identifiers ("breathing_exercise") or as
objects with parameters ({"type": "call", "parameters": {"phone_number": "988"}}).
They are parsed into a closed ActionKind; identifiers we don't know parse as
ActionKind.UNKNOWN with the raw value kept, so legacy flows still load.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from compass.schemas.flow import ActionDoc


class ActionKind(str, Enum):
    BREATHING_EXERCISE = "breathing_exercise"
    GROUNDING_EXERCISE = "grounding_exercise"
    SHOW_CONTACTS = "show_contacts"
    SAVE_TECHNIQUES = "save_techniques"
    COMPLETION_HAPTIC = "completion_haptic"
    CALL = "call"
    TEXT = "text"
    LOCATION = "location"
    HAPTIC = "haptic"
    AUDIO = "audio"
    NOTIFICATION = "notification"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str) -> "ActionKind":
        try:
            kind = cls((raw or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN
        return kind


class MessageKind(str, Enum):
    TEXT = "text"
    ACTION = "action"
    BREATHING = "breathing"
    GROUNDING = "grounding"
    CONTACTS = "contacts"
    SYSTEM = "system"


@dataclass(frozen=True)
class ActionCue:
    text: str
    kind: MessageKind


_CUES: Dict[ActionKind, ActionCue] = {
    ActionKind.BREATHING_EXERCISE: ActionCue("Let's breathe together...", MessageKind.BREATHING),
    ActionKind.GROUNDING_EXERCISE: ActionCue("Look around you... what do you see?", MessageKind.GROUNDING),
    ActionKind.SHOW_CONTACTS: ActionCue("Here are your emergency contacts:", MessageKind.CONTACTS),
    ActionKind.SAVE_TECHNIQUES: ActionCue("Saving these techniques for you...", MessageKind.ACTION),
}


@dataclass(frozen=True)
class NodeAction:
    kind: ActionKind
    raw: str
    parameters: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def parse(cls, value: Union[str, ActionDoc, Mapping[str, Any], None]) -> Optional["NodeAction"]:
        if value is None:
            return None
        if isinstance(value, ActionDoc):
            raw, params = value.type, value.parameters
        elif isinstance(value, Mapping):
            raw, params = str(value.get("type", "")), dict(value.get("parameters") or {})
        else:
            raw, params = str(value), {}
        if not raw.strip():
            return None
        return cls(
            kind=ActionKind.parse(raw),
            raw=raw,
            parameters=MappingProxyType({str(k): str(v) for k, v in params.items()}),
        )

    @property
    def cue(self) -> Optional[ActionCue]:
        """On-screen line that accompanies the action, if any."""
        return _CUES.get(self.kind)

    def to_wire(self) -> Union[str, ActionDoc]:
        if not self.parameters:
            return self.raw
        return ActionDoc(type=self.raw, parameters=dict(self.parameters))


@dataclass(frozen=True)
class ActionResult:
    """What the UI collaborator reports back after performing an action."""

    kind: ActionKind
    success: bool = True
    data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def signals_high_severity(self) -> bool:
        return str(self.data.get("emergency_level", "")).lower() == "high"
