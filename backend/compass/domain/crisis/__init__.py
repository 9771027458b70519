from .models import CrisisAnalysis, CrisisKeyword, CrisisType, ResponseAction, Sentiment
from .scorer import CrisisScorer, get_scorer, score_text
from .responses import fallback_reply, immediate_response, response_for, safe_default_message
from .triage import TriageResult, flow_type_for, triage

__all__ = [
    "CrisisAnalysis",
    "CrisisKeyword",
    "CrisisType",
    "ResponseAction",
    "Sentiment",
    "CrisisScorer",
    "get_scorer",
    "score_text",
    "fallback_reply",
    "immediate_response",
    "response_for",
    "safe_default_message",
    "TriageResult",
    "flow_type_for",
    "triage",
]
