"""
Built-in fallback flow.

Substituted whenever a built-in flow can't be loaded or fails validation, so
the person on the other end always gets a response and a way forward.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from compass.core.config import get_settings
from compass.domain.crisis.responses import region_line
from compass.domain.flows.graph import FlowGraph, FlowNode, FlowOption, FlowType, NodeKind

FALLBACK_FLOW_ID = "fallback_flow"
FALLBACK_START = "fallback_start"


def fallback_graph(region: Optional[str] = None, emergency_number: Optional[str] = None) -> FlowGraph:
    """Emergency wording follows REGION and EMERGENCY_NUMBER unless given."""
    settings = get_settings()
    return _build((region or settings.REGION or "").upper(), emergency_number or settings.EMERGENCY_NUMBER)


@lru_cache(maxsize=8)
def _build(region: str, emergency_number: str) -> FlowGraph:
    danger = f"If you are in immediate danger, call {emergency_number} now."
    line = region_line(region)
    return FlowGraph(
        id=FALLBACK_FLOW_ID,
        title="Support",
        start_node_id=FALLBACK_START,
        flow_type=FlowType.CUSTOM.value,
        description="Minimal supportive flow used when a crisis flow is unavailable.",
        node_list=(
            FlowNode(
                id=FALLBACK_START,
                kind=NodeKind.MESSAGE,
                messages=(
                    "I'm here with you.",
                    "Let's take this one step at a time. What would help most right now?",
                ),
                options=(
                    FlowOption("I need help right now", "fallback_emergency"),
                    FlowOption("I want to keep talking", "fallback_support"),
                ),
            ),
            FlowNode(
                id="fallback_emergency",
                kind=NodeKind.TERMINAL,
                messages=(danger, line) if line else (danger,),
            ),
            FlowNode(
                id="fallback_support",
                kind=NodeKind.TERMINAL,
                messages=(
                    "Take a slow breath in, and a slow breath out.",
                    "You reached out, and that matters. Support is available whenever you need it.",
                ),
            ),
        ),
    )


def is_fallback(graph: FlowGraph) -> bool:
    return graph.id == FALLBACK_FLOW_ID
