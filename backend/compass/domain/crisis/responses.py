# compass/domain/crisis/responses.py
"""
Canned replies for crisis situations.

Everything here is static text; nothing is generated. Any path that can fail
upstream ends in safe_default_message(), which always names an emergency number.
"""

from __future__ import annotations

from typing import Iterable, Optional

from compass.core.config import get_settings
from compass.domain.crisis.models import CrisisAnalysis
from compass.domain.triggers.models import Trigger, TriggerCategory

__all__ = [
    "immediate_response",
    "response_for",
    "fallback_reply",
    "safe_default_message",
    "region_line",
]

SUICIDE_RESPONSE = (
    "I'm very concerned about your safety. Please reach out for help right now:\n"
    "- Call or text 988 (Suicide & Crisis Lifeline), available 24/7\n"
    "- Text HOME to 741741 (Crisis Text Line)\n"
    "- Call 911 if you are in immediate danger\n"
    "You don't have to go through this alone."
)

VIOLENCE_RESPONSE = (
    "Your safety matters. If you are in immediate danger, call 911 now.\n"
    "- National Domestic Violence Hotline: 1-800-799-7233\n"
    "- Text START to 88788\n"
    "If you can, move to a safe place."
)

MEDICAL_RESPONSE = (
    "This may be a medical emergency. Call 911 or go to the nearest emergency room now.\n"
    "- Poison Control: 1-800-222-1222\n"
    "Stay where someone can reach you."
)

GENERAL_RESPONSE = (
    "I'm here with you. If you feel unsafe at any point, call 911, "
    "or call or text 988 to talk to someone right now."
)

_HIGH_RISK_REPLIES = {
    TriggerCategory.SUICIDE: (
        "I'm very concerned about what you're telling me. Your life has value and you "
        "don't have to face this alone. Please call 988 right now - they're available "
        "24/7 and want to help you."
    ),
    TriggerCategory.VIOLENCE: (
        "Your safety is my top priority. If you're in immediate danger, please call 911. "
        "I can help you find resources and support to stay safe."
    ),
    TriggerCategory.MEDICAL: (
        "This sounds like it could be a medical emergency. Please call 911 or go to the "
        "nearest emergency room immediately."
    ),
}

CHECK_IN_REPLY = (
    "I can hear that you're going through something really difficult. Can you tell me "
    "more about what's happening? I want to make sure you get the right kind of help."
)

OPEN_REPLY = (
    "I'm here to listen and help. What would be most helpful for you right now? I can "
    "guide you to resources, help you make a plan, or just be here to talk."
)

FALLBACK_REPLY = (
    "I understand you're going through something difficult. Can you tell me more about "
    "what's happening? I'm here to help guide you through this."
)

_REGION_LINES = {
    "US": "You can also call or text 988 (Suicide & Crisis Lifeline), or text HOME to 741741.",
    "CA": "You can also call or text 988 (Suicide Crisis Helpline).",
    "UK": "You can also contact Samaritans at 116 123.",
    "AU": "You can also contact Lifeline at 13 11 14.",
}


def immediate_response(triggers: Iterable[Trigger]) -> str:
    """Category-specific message for a high-priority detection."""
    categories = {t.category for t in triggers}
    if TriggerCategory.SUICIDE in categories:
        return SUICIDE_RESPONSE
    if TriggerCategory.VIOLENCE in categories or TriggerCategory.ABUSE in categories:
        return VIOLENCE_RESPONSE
    if TriggerCategory.MEDICAL in categories:
        return MEDICAL_RESPONSE
    return GENERAL_RESPONSE


def response_for(analysis: CrisisAnalysis) -> str:
    """Tiered reply: >0.7 category-specific, >0.4 check-in, else an open prompt."""
    if analysis.risk_score > 0.7:
        for category in (TriggerCategory.SUICIDE, TriggerCategory.VIOLENCE, TriggerCategory.MEDICAL):
            if category in analysis.categories:
                return _HIGH_RISK_REPLIES[category]
    if analysis.risk_score > 0.4:
        return CHECK_IN_REPLY
    return OPEN_REPLY


def fallback_reply() -> str:
    return FALLBACK_REPLY


def region_line(region: Optional[str] = None) -> str:
    """Crisis line sentence for a region; empty when none is known."""
    return _REGION_LINES.get((region or get_settings().REGION or "").upper(), "")


def safe_default_message(region: Optional[str] = None, emergency_number: Optional[str] = None) -> str:
    """
    Shown whenever the flow engine cannot continue.
    - Always names the local emergency number.
    - Adds widely recognised crisis lines for known regions.
    """
    settings = get_settings()
    region = (region or settings.REGION or "").upper()
    number = emergency_number or settings.EMERGENCY_NUMBER

    msg = (
        "Something went wrong, but you are not alone. "
        f"If you are in danger or need urgent help, call {number} now. "
    )
    msg += region_line(region)
    return msg.strip()
