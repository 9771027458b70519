# backend/compass/domain/flows/__init__.py
from .actions import ActionCue, ActionKind, ActionResult, MessageKind, NodeAction
from .graph import FlowGraph, FlowNode, FlowOption, FlowType, NodeKind, dump_flow, parse_flow
from .validator import (
    FlowValidator,
    InputValidation,
    IssueSeverity,
    ValidationCode,
    ValidationIssue,
    errors_only,
)
from .fallback import FALLBACK_FLOW_ID, fallback_graph, is_fallback
from .state import RunnerState, Signal, next_state
from .repository import FlowRepository
from .runner import ChatMessage, EventKind, FlowRunner, RunnerEvent

__all__ = [
    "ActionCue",
    "ActionKind",
    "ActionResult",
    "MessageKind",
    "NodeAction",
    "FlowGraph",
    "FlowNode",
    "FlowOption",
    "FlowType",
    "NodeKind",
    "dump_flow",
    "parse_flow",
    "FlowValidator",
    "InputValidation",
    "IssueSeverity",
    "ValidationCode",
    "ValidationIssue",
    "errors_only",
    "FALLBACK_FLOW_ID",
    "fallback_graph",
    "is_fallback",
    "RunnerState",
    "Signal",
    "next_state",
    "FlowRepository",
    "ChatMessage",
    "EventKind",
    "FlowRunner",
    "RunnerEvent",
]
