"""
Error taxonomy for the flow core.

Every error carries a stable ``code`` so outer surfaces (HTTP, CLI) can
report it without string matching. Built-in flow failures are recovered by
the runner (fallback graph); custom/imported flow failures are surfaced to
the caller with full diagnostics.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

__all__ = [
    "CompassError",
    "FlowError",
    "FlowNotFound",
    "ValidationFailed",
    "ImportFailed",
    "DanglingReference",
    "SessionRestoreFailed",
    "SessionBusy",
    "InvalidTransition",
    "StorageError",
]


class CompassError(Exception):
    code = "compass_error"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class FlowError(CompassError):
    code = "flow_error"


class FlowNotFound(FlowError):
    code = "flow_not_found"

    def __init__(self, flow_type: str, tried: Optional[Sequence[str]] = None):
        self.flow_type = flow_type
        self.tried: List[str] = list(tried or [])
        super().__init__(f"Flow not found: {flow_type}")


class ValidationFailed(FlowError):
    code = "validation_failed"

    def __init__(self, issues: Sequence[Any]):
        self.issues = list(issues)
        codes = ", ".join(str(getattr(i, "code", i)) for i in self.issues) or "unknown"
        super().__init__(f"Flow validation failed: {codes}")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["issues"] = [i.to_dict() if hasattr(i, "to_dict") else str(i) for i in self.issues]
        return out


class ImportFailed(FlowError):
    code = "import_failed"

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Failed to import flow: {cause}")


class DanglingReference(FlowError):
    code = "dangling_reference"

    def __init__(self, node_id: str, target: Optional[str] = None):
        self.node_id = node_id
        self.target = target
        super().__init__(f"Node '{node_id}' points at missing node '{target}'")


class SessionRestoreFailed(CompassError):
    code = "session_restore_failed"

    def __init__(self, session_id: Optional[str], cause: Optional[BaseException] = None):
        self.session_id = session_id
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Could not restore session {session_id or '<current>'}{detail}")


class SessionBusy(CompassError):
    code = "session_busy"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is already driven by another runner")


class InvalidTransition(FlowError):
    code = "invalid_transition"

    def __init__(self, state: Any, signal: Any):
        self.state = state
        self.signal = signal
        super().__init__(f"Cannot apply {getattr(signal, 'value', signal)} in state {getattr(state, 'value', state)}")


class StorageError(CompassError):
    code = "storage_error"

    def __init__(self, key: str, cause: Optional[BaseException] = None):
        self.key = key
        self.cause = cause
        super().__init__(f"Storage error on '{key}': {cause}")
