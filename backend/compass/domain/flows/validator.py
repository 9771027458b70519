# compass/domain/flows/validator.py
"""
Flow validation.

Two independent checks:
- validate(graph): structural integrity before a graph is run
  (ids, start node, dangling targets, orphans, cycles, action parameters).
- validate_input(text, node, choices): gate for what a user typed at a node
  (empty, too long, harmful markup, per-kind rules) plus the emergency flag.

Cycles are not errors by themselves: a grounding exercise may loop back on
purpose. A cycle with an escape (some node on it reaches a terminal node) is
reported as a warning; a cycle nobody can leave is an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from compass.core.config import get_settings
from compass.domain.flows.actions import ActionKind, NodeAction
from compass.domain.flows.graph import FlowGraph, FlowNode, NodeKind
from compass.utils.text import contains_word

__all__ = [
    "ValidationCode",
    "IssueSeverity",
    "ValidationIssue",
    "InputValidation",
    "FlowValidator",
    "errors_only",
    "EMERGENCY_KEYWORDS",
    "HARMFUL_MARKERS",
    "DECISION_TOKENS",
    "validation_codes",
]


class ValidationCode(str, Enum):
    EMPTY_INPUT = "emptyInput"
    HARMFUL_CONTENT = "harmfulContent"
    INPUT_TOO_LONG = "inputTooLong"
    INVALID_CHOICE = "invalidChoice"
    INSUFFICIENT_RESPONSE = "insufficientResponse"
    MISSING_FLOW_ID = "missingFlowId"
    MISSING_FLOW_TITLE = "missingFlowTitle"
    MISSING_START_NODE = "missingStartNode"
    DUPLICATE_NODE = "duplicateNode"
    CIRCULAR_REFERENCE = "circularReference"
    ORPHANED_NODE = "orphanedNode"
    DANGLING_REFERENCE = "danglingReference"
    INVALID_ACTION_PARAMETERS = "invalidActionParameters"


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    code: ValidationCode
    severity: IssueSeverity = IssueSeverity.ERROR
    node_id: Optional[str] = None
    detail: str = ""
    nodes: Tuple[str, ...] = ()

    @property
    def is_error(self) -> bool:
        return self.severity is IssueSeverity.ERROR

    def to_dict(self) -> dict:
        out = {"code": self.code.value, "severity": self.severity.value}
        if self.node_id is not None:
            out["node_id"] = self.node_id
        if self.detail:
            out["detail"] = self.detail
        if self.nodes:
            out["nodes"] = list(self.nodes)
        return out


@dataclass(frozen=True)
class InputValidation:
    is_valid: bool
    issue: Optional[ValidationIssue] = None
    is_emergency: bool = False
    normalized: str = ""

    @property
    def code(self) -> Optional[ValidationCode]:
        return self.issue.code if self.issue else None


def errors_only(issues: Iterable[ValidationIssue]) -> List[ValidationIssue]:
    return [i for i in issues if i.is_error]


EMERGENCY_KEYWORDS = ("help", "emergency", "danger", "urgent", "911")
HARMFUL_MARKERS = ("<script", "javascript:", "vbscript:", "data:text/html", "onload=", "onerror=")
AFFIRMATIVE_TOKENS = ("yes", "y", "true", "1")
NEGATIVE_TOKENS = ("no", "n", "false", "0")
DECISION_TOKENS = AFFIRMATIVE_TOKENS + NEGATIVE_TOKENS

PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
_WORD_RE = re.compile(r"[^\W_]")  # any letter or digit

_WHITE, _GRAY, _BLACK = 0, 1, 2


class FlowValidator:
    def __init__(self, max_input_length: Optional[int] = None, sms_max_length: Optional[int] = None):
        settings = get_settings()
        self.max_input_length = max_input_length or settings.MAX_INPUT_LENGTH
        self.sms_max_length = sms_max_length or settings.SMS_MAX_LENGTH

    # ------------------------------------------------------------------
    # Graph validation
    # ------------------------------------------------------------------
    def validate(self, graph: FlowGraph) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []

        if not (graph.id or "").strip():
            issues.append(ValidationIssue(ValidationCode.MISSING_FLOW_ID))
        if not (graph.title or "").strip():
            issues.append(ValidationIssue(ValidationCode.MISSING_FLOW_TITLE))

        seen: Set[str] = set()
        for node in graph.node_list:
            if node.id in seen:
                issues.append(ValidationIssue(ValidationCode.DUPLICATE_NODE, node_id=node.id))
            seen.add(node.id)

        start_ok = bool(graph.start_node_id) and graph.start_node_id in graph
        if not start_ok:
            issues.append(
                ValidationIssue(
                    ValidationCode.MISSING_START_NODE,
                    detail=f"start node {graph.start_node_id!r} not found" if graph.start_node_id else "",
                )
            )

        for node in graph.nodes.values():
            for target in node.referenced_ids():
                if target not in graph:
                    issues.append(
                        ValidationIssue(
                            ValidationCode.DANGLING_REFERENCE,
                            node_id=node.id,
                            detail=f"target {target!r} does not exist",
                        )
                    )
            if node.action is not None:
                problem = self.check_action(node.action)
                if problem:
                    issues.append(
                        ValidationIssue(ValidationCode.INVALID_ACTION_PARAMETERS, node_id=node.id, detail=problem)
                    )

        if start_ok:
            reachable = self.reachable(graph)
            for node_id in graph.nodes:
                if node_id not in reachable:
                    issues.append(ValidationIssue(ValidationCode.ORPHANED_NODE, node_id=node_id))

        escapes = self.nodes_reaching_terminal(graph)
        for cycle in self.find_cycles(graph):
            has_exit = any(n in escapes for n in cycle)
            issues.append(
                ValidationIssue(
                    ValidationCode.CIRCULAR_REFERENCE,
                    severity=IssueSeverity.WARNING if has_exit else IssueSeverity.ERROR,
                    node_id=cycle[0],
                    detail="loop with an exit" if has_exit else "unbounded loop: no node on it reaches an end",
                    nodes=tuple(cycle),
                )
            )

        return issues

    def is_valid(self, graph: FlowGraph) -> bool:
        return not errors_only(self.validate(graph))

    @staticmethod
    def reachable(graph: FlowGraph) -> Set[str]:
        start = graph.start_node_id
        if not start or start not in graph:
            return set()
        seen = {start}
        stack = [start]
        while stack:
            node = graph.nodes[stack.pop()]
            for nxt in node.successor_ids():
                if nxt in graph and nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return seen

    @staticmethod
    def nodes_reaching_terminal(graph: FlowGraph) -> Set[str]:
        """Nodes from which some terminal node is reachable (reverse BFS)."""
        parents: Dict[str, List[str]] = {nid: [] for nid in graph.nodes}
        for node in graph.nodes.values():
            for nxt in node.successor_ids():
                if nxt in parents:
                    parents[nxt].append(node.id)

        out = {n.id for n in graph.nodes.values() if n.is_terminal}
        queue = list(out)
        while queue:
            cur = queue.pop()
            for parent in parents[cur]:
                if parent not in out:
                    out.add(parent)
                    queue.append(parent)
        return out

    @staticmethod
    def find_cycles(graph: FlowGraph) -> List[List[str]]:
        """
        DFS with white/gray/black marking; a back edge to a gray node closes a
        cycle. Starts at the start node, then sweeps the rest so cycles among
        orphans are reported too. Each distinct node set is reported once.
        """
        color: Dict[str, int] = {nid: _WHITE for nid in graph.nodes}
        cycles: List[List[str]] = []
        seen_sets: Set[frozenset] = set()

        roots = [graph.start_node_id] if graph.start_node_id in graph else []
        roots += [nid for nid in graph.nodes if nid != graph.start_node_id]

        for root in roots:
            if color[root] != _WHITE:
                continue
            path: List[str] = [root]
            color[root] = _GRAY
            stack = [iter(graph.nodes[root].successor_ids())]
            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    stack.pop()
                    color[path.pop()] = _BLACK
                    continue
                if nxt not in color:
                    continue  # dangling, reported elsewhere
                if color[nxt] == _GRAY:
                    cycle = path[path.index(nxt):]
                    key = frozenset(cycle)
                    if key not in seen_sets:
                        seen_sets.add(key)
                        cycles.append(list(cycle))
                elif color[nxt] == _WHITE:
                    color[nxt] = _GRAY
                    path.append(nxt)
                    stack.append(iter(graph.nodes[nxt].successor_ids()))
        return cycles

    def check_action(self, action: NodeAction) -> Optional[str]:
        """Returns a problem description, or None if the action is safe to run."""
        if action.kind is ActionKind.CALL:
            phone = (action.parameters.get("phone_number") or "").strip()
            if not PHONE_RE.match(phone):
                return f"invalid phone number {phone!r}"
        elif action.kind is ActionKind.TEXT:
            message = action.parameters.get("message")
            if not message:
                return "text action needs a message"
            if len(message) > self.sms_max_length:
                return f"message longer than {self.sms_max_length} characters"
        return None

    # ------------------------------------------------------------------
    # Input validation
    # ------------------------------------------------------------------
    def validate_input(
        self,
        text: Optional[str],
        node: Optional[FlowNode] = None,
        choices: Sequence[str] = (),
    ) -> InputValidation:
        """`choices` are option texts the user may type verbatim; they pass the per-kind rules."""
        raw = text or ""
        normalized = raw.strip()
        if not normalized:
            return InputValidation(False, ValidationIssue(ValidationCode.EMPTY_INPUT))

        emergency = self.is_emergency(raw)
        node_id = node.id if node else None

        def reject(code: ValidationCode) -> InputValidation:
            return InputValidation(False, ValidationIssue(code, node_id=node_id), emergency, normalized)

        if len(raw) > self.max_input_length:
            return reject(ValidationCode.INPUT_TOO_LONG)
        if self.is_harmful(raw):
            return reject(ValidationCode.HARMFUL_CONTENT)
        if normalized.lower() in {c.strip().lower() for c in choices}:
            return InputValidation(True, None, emergency, normalized)

        kind = node.kind if node else NodeKind.MESSAGE
        if kind is NodeKind.DECISION:
            if normalized.lower() not in DECISION_TOKENS:
                return reject(ValidationCode.INVALID_CHOICE)
        elif kind is NodeKind.MESSAGE:
            if not _WORD_RE.search(normalized):
                return reject(ValidationCode.INSUFFICIENT_RESPONSE)

        return InputValidation(True, None, emergency, normalized)

    @staticmethod
    def is_emergency(text: str) -> bool:
        return any(contains_word(text, k) for k in EMERGENCY_KEYWORDS)

    @staticmethod
    def is_harmful(text: str) -> bool:
        compact = re.sub(r"\s+", "", text).lower()
        return any(marker in compact for marker in HARMFUL_MARKERS)

    @staticmethod
    def decision_index(text: str) -> Optional[int]:
        """0 for an affirmative token, 1 for a negative one, else None."""
        token = (text or "").strip().lower()
        if token in AFFIRMATIVE_TOKENS:
            return 0
        if token in NEGATIVE_TOKENS:
            return 1
        return None


def validation_codes(issues: Sequence[ValidationIssue]) -> List[ValidationCode]:
    return [i.code for i in issues]
