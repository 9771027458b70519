from .models import Trigger, TriggerCategory, TriggerFrequency, TriggerPattern, TriggerPriority
from .detector import KEYWORDS, PATTERNS, TriggerDetector, detect_triggers, get_detector

__all__ = [
    "Trigger",
    "TriggerCategory",
    "TriggerFrequency",
    "TriggerPattern",
    "TriggerPriority",
    "KEYWORDS",
    "PATTERNS",
    "TriggerDetector",
    "detect_triggers",
    "get_detector",
]
