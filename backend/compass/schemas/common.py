from __future__ import annotations
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

class HealthResponse(BaseModel):
    ok: bool = True
    app: str = ""
    env: str = ""
    version: Optional[str] = None
    flows: List[str] = []

class ErrorResponse(BaseModel):
    error: str
    message: str
    request_id: str
    details: Optional[Any] = None

class EmptyResponse(BaseModel):
    ok: bool = True

class TextIn(BaseModel):
    text: str = Field(..., description="Raw user text")

class MessagesIn(BaseModel):
    messages: List[str] = Field(default_factory=list, description="Ordered utterances")

class CountsOut(BaseModel):
    counts: Dict[str, int] = {}
    total: int = 0
    most_frequent: Optional[str] = None
