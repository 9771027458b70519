from __future__ import annotations
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field

class StartSessionIn(BaseModel):
    flow_type: Optional[str] = Field(None, description="panic | suicide | medical | domestic_violence | ...")
    text: Optional[str] = Field(None, description="If no flow_type, triage this text to pick one")
    flow_id: Optional[str] = Field(None, description="Run a stored custom flow instead")

class ResumeIn(BaseModel):
    session_id: Optional[str] = Field(None, description="Omit to resume the most recent session")

class SelectIn(BaseModel):
    option: Union[int, str] = Field(..., description="Option index or its exact text")

class RespondIn(BaseModel):
    text: str

class ActionResultIn(BaseModel):
    kind: str
    success: bool = True
    data: Dict[str, Any] = {}

class OptionOut(BaseModel):
    index: int
    text: str

class MessageOut(BaseModel):
    text: str
    from_user: bool = False
    kind: str = "text"
    node_id: Optional[str] = None

class SessionView(BaseModel):
    session_id: Optional[str] = None
    flow_id: Optional[str] = None
    state: str
    node_id: Optional[str] = None
    messages: List[MessageOut] = []
    options: List[OptionOut] = []
    escalation_level: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    input: Optional[Dict[str, Any]] = None
