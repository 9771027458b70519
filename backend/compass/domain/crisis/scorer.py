# compass/domain/crisis/scorer.py
"""
Crisis risk scoring on top of trigger detection.

    score = clip01(0.2 * len(triggers) + sentiment_term + 0.15 * len(crisis_keywords))
    sentiment_term: negative +0.3, positive -0.1, neutral 0

The constants are heuristic (not clinically validated) and are kept as-is
for behavioural parity with the mobile app.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from compass.domain.crisis.models import (
    CrisisAnalysis,
    CrisisKeyword,
    CrisisType,
    ResponseAction,
    Sentiment,
)
from compass.domain.triggers.detector import TriggerDetector, get_detector
from compass.domain.triggers.models import Trigger, TriggerCategory
from compass.utils.text import clip, fold_quotes

__all__ = ["CrisisScorer", "get_scorer", "score_text"]

POSITIVE_WORDS = ("good", "great", "excellent", "happy", "love", "wonderful", "amazing")
NEGATIVE_WORDS = ("bad", "terrible", "awful", "hate", "sad", "angry", "depressed", "suicide", "kill", "die")

CRISIS_KEYWORDS: Dict[str, CrisisType] = {
    "suicide": CrisisType.SUICIDE,
    "kill myself": CrisisType.SUICIDE,
    "end it all": CrisisType.SUICIDE,
    "violence": CrisisType.VIOLENCE,
    "hurt": CrisisType.VIOLENCE,
    "attack": CrisisType.VIOLENCE,
    "abuse": CrisisType.ABUSE,
    "domestic": CrisisType.ABUSE,
    "medical": CrisisType.MEDICAL_EMERGENCY,
    "emergency": CrisisType.MEDICAL_EMERGENCY,
    "pain": CrisisType.MEDICAL_EMERGENCY,
}

TRIGGER_WEIGHT = 0.2
KEYWORD_WEIGHT = 0.15
SENTIMENT_TERM = {Sentiment.NEGATIVE: 0.3, Sentiment.POSITIVE: -0.1, Sentiment.NEUTRAL: 0.0}

CATEGORY_SUGGESTION = {
    TriggerCategory.SUICIDE: ResponseAction.SUICIDE_PREVENTION,
    TriggerCategory.VIOLENCE: ResponseAction.VIOLENCE_PREVENTION,
    TriggerCategory.MEDICAL: ResponseAction.MEDICAL_EMERGENCY,
    TriggerCategory.ABUSE: ResponseAction.ABUSE_SUPPORT,
    TriggerCategory.MENTAL_HEALTH: ResponseAction.PROVIDE_RESOURCES,
}


class CrisisScorer:
    def __init__(self, detector: Optional[TriggerDetector] = None):
        self.detector = detector or get_detector()

    def score(self, text: str) -> CrisisAnalysis:
        text = text or ""
        triggers = self.detector.detect(text)
        sentiment, confidence = self.sentiment(text)
        keywords = self.crisis_keywords(text)
        risk = self.risk_score(triggers, sentiment, keywords)
        return CrisisAnalysis(
            source_text=text,
            risk_score=risk,
            triggers=tuple(triggers),
            sentiment=sentiment,
            sentiment_confidence=confidence,
            matched_keywords=tuple(keywords),
            suggestions=tuple(self.suggest(risk, triggers)),
        )

    @staticmethod
    def sentiment(text: str) -> Tuple[Sentiment, float]:
        """Keyword-count sentiment. Ties (including no hits) are neutral @ 0.5."""
        t = (text or "").lower()
        pos = sum(1 for w in POSITIVE_WORDS if w in t)
        neg = sum(1 for w in NEGATIVE_WORDS if w in t)
        if neg > pos:
            return Sentiment.NEGATIVE, min(neg / 10.0, 1.0)
        if pos > neg:
            return Sentiment.POSITIVE, min(pos / 10.0, 1.0)
        return Sentiment.NEUTRAL, 0.5

    @staticmethod
    def crisis_keywords(text: str) -> List[CrisisKeyword]:
        t = fold_quotes(text or "").lower()
        return [CrisisKeyword(k, ct) for k, ct in CRISIS_KEYWORDS.items() if k in t]

    @staticmethod
    def risk_score(
        triggers: Sequence[Trigger],
        sentiment: Sentiment,
        keywords: Sequence[CrisisKeyword],
    ) -> float:
        score = TRIGGER_WEIGHT * len(triggers) + SENTIMENT_TERM[sentiment] + KEYWORD_WEIGHT * len(keywords)
        return clip(score)

    @staticmethod
    def suggest(risk_score: float, triggers: Sequence[Trigger]) -> List[ResponseAction]:
        """Tiered actions for the score, then one action per trigger, duplicates kept."""
        if risk_score < 0.3:
            out = [ResponseAction.MONITOR]
        elif risk_score < 0.6:
            out = [ResponseAction.CHECK_IN, ResponseAction.PROVIDE_RESOURCES]
        elif risk_score < 0.8:
            out = [ResponseAction.IMMEDIATE_SUPPORT, ResponseAction.EMERGENCY_CONTACT]
        else:
            out = [ResponseAction.EMERGENCY_INTERVENTION, ResponseAction.IMMEDIATE_SUPPORT]
        out.extend(CATEGORY_SUGGESTION[t.category] for t in triggers)
        return out


_scorer: Optional[CrisisScorer] = None


def get_scorer() -> CrisisScorer:
    global _scorer
    if _scorer is None:
        _scorer = CrisisScorer()
    return _scorer


def score_text(text: str) -> CrisisAnalysis:
    return get_scorer().score(text)
