# compass/domain/triggers/detector.py
"""
Rule-based crisis trigger detection.

Two tables drive detection:
  - KEYWORDS: case-insensitive substring -> category. Confidence starts at 0.5
    and is adjusted by the words around the hit (±50 chars):
      +0.2 per intensifier, -0.3 per negation, -0.1 if past tense appears.
  - PATTERNS: regexes with their own fixed confidence.

Public API:
- TriggerDetector(...).detect(text) -> list[Trigger]
- has_high_priority(text) -> bool
- most_severe(text) -> TriggerCategory | None
- frequency_across_messages(messages) -> TriggerFrequency
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from compass.domain.triggers.models import (
    Trigger,
    TriggerCategory,
    TriggerFrequency,
    TriggerPattern,
    TriggerPriority,
)
from compass.utils.text import clip, contains_word, fold_quotes

__all__ = [
    "KEYWORDS",
    "PATTERNS",
    "TriggerDetector",
    "get_detector",
    "detect_triggers",
]

C = TriggerCategory

# Table order matters: it is the tie-break order for equal confidences.
KEYWORDS: Dict[str, TriggerCategory] = {
    # suicide
    "suicide": C.SUICIDE,
    "kill myself": C.SUICIDE,
    "end it all": C.SUICIDE,
    "want to die": C.SUICIDE,
    "better off dead": C.SUICIDE,
    "no reason to live": C.SUICIDE,
    "give up": C.SUICIDE,
    # violence
    "hurt someone": C.VIOLENCE,
    "attack": C.VIOLENCE,
    "fight": C.VIOLENCE,
    "violent": C.VIOLENCE,
    "weapon": C.VIOLENCE,
    "gun": C.VIOLENCE,
    "knife": C.VIOLENCE,
    # abuse
    "abuse": C.ABUSE,
    "domestic violence": C.ABUSE,
    "beaten": C.ABUSE,
    "hit me": C.ABUSE,
    "scared": C.ABUSE,
    "afraid": C.ABUSE,
    "threatened": C.ABUSE,
    # medical
    "medical emergency": C.MEDICAL,
    "chest pain": C.MEDICAL,
    "can't breathe": C.MEDICAL,
    "overdose": C.MEDICAL,
    "bleeding": C.MEDICAL,
    "unconscious": C.MEDICAL,
    "seizure": C.MEDICAL,
    # mental health
    "depression": C.MENTAL_HEALTH,
    "anxiety": C.MENTAL_HEALTH,
    "panic attack": C.MENTAL_HEALTH,
    "hallucinations": C.MENTAL_HEALTH,
    "paranoia": C.MENTAL_HEALTH,
    "self-harm": C.MENTAL_HEALTH,
    "cutting": C.MENTAL_HEALTH,
}

PATTERNS: Tuple[TriggerPattern, ...] = (
    TriggerPattern(r"I want to (kill|end|hurt) myself", C.SUICIDE, 0.9),
    TriggerPattern(r"I'm going to (kill|end|hurt) myself", C.SUICIDE, 0.95),
    TriggerPattern(r"I feel like (killing|ending|hurting) myself", C.SUICIDE, 0.8),
)

INTENSIFIERS = ("really", "very", "extremely", "completely", "totally")
NEGATIONS = ("not", "don't", "doesn't", "didn't", "won't", "can't")
PAST_TENSE = ("was", "were")

BASE_CONFIDENCE = 0.5
CONTEXT_RADIUS = 50


class TriggerDetector:
    def __init__(
        self,
        keywords: Optional[Mapping[str, TriggerCategory]] = None,
        patterns: Optional[Sequence[TriggerPattern]] = None,
    ):
        table = KEYWORDS if keywords is None else keywords
        self.keywords: Dict[str, TriggerCategory] = {k.lower(): v for k, v in table.items()}
        self.patterns: Tuple[TriggerPattern, ...] = tuple(PATTERNS if patterns is None else patterns)
        self._keyword_res = {
            k: re.compile(re.escape(fold_quotes(k)), re.IGNORECASE) for k in self.keywords
        }

    # ---- detection ----------------------------------------------------------
    def detect(self, text: str) -> List[Trigger]:
        """Triggers in `text`, deduplicated by (keyword, category), highest confidence first."""
        t = fold_quotes(text or "")
        if not t.strip():
            return []

        found: List[Trigger] = []
        for word, category in self.keywords.items():
            m = self._keyword_res[word].search(t)
            if m is None:
                continue
            before, after = self._around(t, m.start(), m.end())
            found.append(
                Trigger(
                    keyword=word,
                    category=category,
                    confidence=self._confidence(before + " " + after),
                    context_snippet=before + m.group(0) + after,
                )
            )

        for pattern in self.patterns:
            m = pattern.search(t)
            if m is None:
                continue
            before, after = self._around(t, m.start(), m.end())
            found.append(
                Trigger(
                    keyword=pattern.source,
                    category=pattern.category,
                    confidence=clip(pattern.confidence),
                    context_snippet=before + m.group(0) + after,
                )
            )

        return _dedupe_sorted(found)

    def has_high_priority(self, text: str) -> bool:
        return any(t.category.priority is TriggerPriority.HIGH for t in self.detect(text))

    def most_severe(self, text: str) -> Optional[TriggerCategory]:
        """
        Category of the most severe trigger. Ties keep the first trigger in
        detect() order (confidence desc, then keyword table, then patterns).
        """
        best: Optional[Trigger] = None
        for trig in self.detect(text):
            if best is None or trig.category.severity > best.category.severity:
                best = trig
        return best.category if best else None

    def frequency_across_messages(self, messages: Iterable[str]) -> TriggerFrequency:
        """Per-category counts over an ordered conversation. No cross-message dedupe."""
        counter: Counter = Counter()
        for message in messages or []:
            for trig in self.detect(message):
                counter[trig.category] += 1
        return TriggerFrequency.from_counter(counter)

    # ---- internals ----------------------------------------------------------
    @staticmethod
    def _around(text: str, start: int, end: int) -> Tuple[str, str]:
        return text[max(0, start - CONTEXT_RADIUS):start], text[end:end + CONTEXT_RADIUS]

    @staticmethod
    def _confidence(context: str) -> float:
        confidence = BASE_CONFIDENCE
        for word in INTENSIFIERS:
            if contains_word(context, word):
                confidence += 0.2
        for word in NEGATIONS:
            if contains_word(context, word):
                confidence -= 0.3
        if any(contains_word(context, w) for w in PAST_TENSE):
            confidence -= 0.1
        return clip(confidence)


def _dedupe_sorted(triggers: Iterable[Trigger]) -> List[Trigger]:
    best: Dict[Trigger, Trigger] = {}
    for trig in triggers:
        current = best.get(trig)
        if current is None or trig.confidence > current.confidence:
            # reassigning an existing key keeps its first-seen position
            best[trig] = trig
    # sorted() is stable: equal confidences keep detection order
    return sorted(best.values(), key=lambda t: t.confidence, reverse=True)


_detector: Optional[TriggerDetector] = None


def get_detector() -> TriggerDetector:
    """Shared default detector (tables are immutable, so one instance is enough)."""
    global _detector
    if _detector is None:
        _detector = TriggerDetector()
    return _detector


def detect_triggers(text: str) -> List[Trigger]:
    return get_detector().detect(text)
