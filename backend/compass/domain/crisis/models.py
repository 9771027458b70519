from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple

from compass.domain.triggers.models import Trigger, TriggerCategory


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class CrisisType(str, Enum):
    SUICIDE = "suicide"
    DOMESTIC_VIOLENCE = "domestic_violence"
    MEDICAL_EMERGENCY = "medical_emergency"
    MENTAL_HEALTH = "mental_health"
    SUBSTANCE_ABUSE = "substance_abuse"
    NATURAL_DISASTER = "natural_disaster"
    VIOLENCE = "violence"
    ABUSE = "abuse"
    HARASSMENT = "harassment"
    OTHER = "other"


class ResponseAction(str, Enum):
    MONITOR = "monitor"
    CHECK_IN = "checkIn"
    PROVIDE_RESOURCES = "provideResources"
    IMMEDIATE_SUPPORT = "immediateSupport"
    EMERGENCY_CONTACT = "emergencyContact"
    EMERGENCY_INTERVENTION = "emergencyIntervention"
    SUICIDE_PREVENTION = "suicidePrevention"
    VIOLENCE_PREVENTION = "violencePrevention"
    MEDICAL_EMERGENCY = "medicalEmergency"
    ABUSE_SUPPORT = "abuseSupport"


@dataclass(frozen=True)
class CrisisKeyword:
    keyword: str
    crisis_type: CrisisType


@dataclass(frozen=True)
class CrisisAnalysis:
    """Result of scoring one utterance. Immutable."""

    source_text: str
    risk_score: float
    triggers: Tuple[Trigger, ...] = ()
    sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_confidence: float = 0.5
    matched_keywords: Tuple[CrisisKeyword, ...] = ()
    suggestions: Tuple[ResponseAction, ...] = field(default=())

    @property
    def categories(self) -> List[TriggerCategory]:
        seen: List[TriggerCategory] = []
        for t in self.triggers:
            if t.category not in seen:
                seen.append(t.category)
        return seen

    def to_dict(self) -> dict:
        return {
            "risk_score": round(self.risk_score, 4),
            "sentiment": self.sentiment.value,
            "sentiment_confidence": round(self.sentiment_confidence, 4),
            "triggers": [t.to_dict() for t in self.triggers],
            "matched_keywords": [
                {"keyword": k.keyword, "type": k.crisis_type.value} for k in self.matched_keywords
            ],
            "suggestions": [s.value for s in self.suggestions],
        }
