# compass/domain/crisis/triage.py
"""
Free text -> (triggers, analysis, reply, flow to run).

    detect -> high-priority check -> score -> reply -> flow selection
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from compass.domain.crisis.models import CrisisAnalysis
from compass.domain.crisis.responses import immediate_response, response_for
from compass.domain.crisis.scorer import CrisisScorer, get_scorer
from compass.domain.flows.graph import FlowType
from compass.domain.triggers.models import Trigger, TriggerCategory, TriggerPriority
from compass.utils.text import truncate

logger = logging.getLogger(__name__)

__all__ = ["TriageResult", "flow_type_for", "triage"]

_FLOW_BY_CATEGORY = {
    TriggerCategory.SUICIDE: FlowType.SUICIDE,
    TriggerCategory.MEDICAL: FlowType.MEDICAL,
    TriggerCategory.ABUSE: FlowType.DOMESTIC_VIOLENCE,
    TriggerCategory.VIOLENCE: FlowType.DOMESTIC_VIOLENCE,
    TriggerCategory.MENTAL_HEALTH: FlowType.PANIC,
}


def flow_type_for(category: Optional[TriggerCategory]) -> FlowType:
    if category is None:
        return FlowType.PANIC
    return _FLOW_BY_CATEGORY.get(category, FlowType.PANIC)


@dataclass(frozen=True)
class TriageResult:
    triggers: Tuple[Trigger, ...]
    analysis: CrisisAnalysis
    high_priority: bool
    most_severe: Optional[TriggerCategory]
    reply: str
    flow_type: FlowType

    def to_dict(self) -> dict:
        return {
            "high_priority": self.high_priority,
            "most_severe": self.most_severe.value if self.most_severe else None,
            "flow_type": self.flow_type.value,
            "reply": self.reply,
            "analysis": self.analysis.to_dict(),
        }


def triage(text: str, scorer: Optional[CrisisScorer] = None) -> TriageResult:
    scorer = scorer or get_scorer()
    detector = scorer.detector

    triggers = detector.detect(text)
    high = any(t.category.priority is TriggerPriority.HIGH for t in triggers)
    if high:
        logger.warning("High-priority crisis triggers in %r", truncate(text, 80))

    analysis = scorer.score(text)
    reply = immediate_response(triggers) if high else response_for(analysis)
    severe = detector.most_severe(text)

    return TriageResult(
        triggers=tuple(triggers),
        analysis=analysis,
        high_priority=high,
        most_severe=severe,
        reply=reply,
        flow_type=flow_type_for(severe),
    )
