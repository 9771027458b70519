from .models import EscalationLevel, FlowSession, SessionStatus
from .store import CURRENT_SESSION_KEY, SessionStateStore, session_key

__all__ = [
    "EscalationLevel",
    "FlowSession",
    "SessionStatus",
    "CURRENT_SESSION_KEY",
    "SessionStateStore",
    "session_key",
]
