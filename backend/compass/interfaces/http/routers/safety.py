from __future__ import annotations
from typing import Optional
from fastapi import APIRouter, Query

from compass.domain.crisis import immediate_response, safe_default_message, triage
from compass.domain.triggers import get_detector
from compass.schemas.common import CountsOut, MessagesIn, TextIn

router = APIRouter()

@router.post("/analyze")
def analyze(body: TextIn):
    return triage(body.text).to_dict()

@router.get("/triggers")
def triggers(text: str = Query(..., description="Text to scan")):
    detector = get_detector()
    found = detector.detect(text)
    severe = detector.most_severe(text)
    return {
        "triggers": [t.to_dict() for t in found],
        "high_priority": detector.has_high_priority(text),
        "most_severe": severe.value if severe else None,
    }

@router.post("/frequency", response_model=CountsOut)
def frequency(body: MessagesIn):
    freq = get_detector().frequency_across_messages(body.messages)
    top = freq.most_frequent
    return CountsOut(
        counts={c.value: n for c, n in freq.counts.items()},
        total=freq.total,
        most_frequent=top.value if top else None,
    )

@router.get("/crisis")
def crisis(text: Optional[str] = None, region: Optional[str] = None):
    if text:
        return {"message": immediate_response(get_detector().detect(text))}
    return {"message": safe_default_message(region)}
