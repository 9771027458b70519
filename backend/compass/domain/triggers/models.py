from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional


class TriggerPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TriggerCategory(str, Enum):
    SUICIDE = "suicide"
    VIOLENCE = "violence"
    ABUSE = "abuse"
    MEDICAL = "medical"
    MENTAL_HEALTH = "mentalHealth"

    @property
    def priority(self) -> TriggerPriority:
        return _PRIORITY[self]

    @property
    def severity(self) -> int:
        """1 (least) .. 5 (most severe)."""
        return _SEVERITY[self]


_PRIORITY: Dict[TriggerCategory, TriggerPriority] = {
    TriggerCategory.SUICIDE: TriggerPriority.HIGH,
    TriggerCategory.MEDICAL: TriggerPriority.HIGH,
    TriggerCategory.VIOLENCE: TriggerPriority.MEDIUM,
    TriggerCategory.ABUSE: TriggerPriority.MEDIUM,
    TriggerCategory.MENTAL_HEALTH: TriggerPriority.LOW,
}

_SEVERITY: Dict[TriggerCategory, int] = {
    TriggerCategory.SUICIDE: 5,
    TriggerCategory.MEDICAL: 4,
    TriggerCategory.VIOLENCE: 3,
    TriggerCategory.ABUSE: 2,
    TriggerCategory.MENTAL_HEALTH: 1,
}


@dataclass(frozen=True, eq=False)
class Trigger:
    """
    One detected crisis indicator.

    Identity is (keyword, category): two detections of the same keyword in the
    same category are the same trigger regardless of confidence or snippet.
    """

    keyword: str
    category: TriggerCategory
    confidence: float
    context_snippet: str = ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Trigger):
            return NotImplemented
        return (self.keyword, self.category) == (other.keyword, other.category)

    def __hash__(self) -> int:
        return hash((self.keyword, self.category))

    def to_dict(self) -> dict:
        return {
            "keyword": self.keyword,
            "category": self.category.value,
            "confidence": round(self.confidence, 4),
            "context": self.context_snippet,
        }


@dataclass(frozen=True)
class TriggerPattern:
    """Regex trigger with a fixed confidence (no context adjustment)."""

    source: str
    category: TriggerCategory
    confidence: float
    regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "regex", re.compile(self.source, re.IGNORECASE))

    def search(self, text: str) -> Optional[re.Match]:
        return self.regex.search(text)


@dataclass(frozen=True)
class TriggerFrequency:
    """Per-category trigger counts accumulated across several messages."""

    counts: Mapping[TriggerCategory, int] = field(default_factory=dict)

    @classmethod
    def from_counter(cls, counter: Counter) -> "TriggerFrequency":
        return cls(counts=dict(counter))

    @property
    def most_frequent(self) -> Optional[TriggerCategory]:
        if not self.counts:
            return None
        # max() keeps the first of equal counts, i.e. first category seen
        return max(self.counts, key=lambda c: self.counts[c])

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def frequency(self, category: TriggerCategory) -> int:
        return self.counts.get(category, 0)

    def __getitem__(self, category: TriggerCategory) -> int:
        return self.frequency(category)

    def __len__(self) -> int:
        return len(self.counts)
