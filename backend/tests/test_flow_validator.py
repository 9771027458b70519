"""
Flow validation: graph structure and user input gating.

Run with: pytest backend/tests/test_flow_validator.py -v
"""

from __future__ import annotations

import os
import sys

THIS_DIR = os.path.dirname(__file__)
PKG_ROOT = os.path.abspath(os.path.join(THIS_DIR, ".."))
if PKG_ROOT not in sys.path:
    sys.path.insert(0, PKG_ROOT)

import pytest
from compass.domain.flows import (
    FlowGraph,
    FlowNode,
    FlowOption,
    FlowValidator,
    IssueSeverity,
    NodeAction,
    NodeKind,
    ValidationCode,
    parse_flow,
)
from compass.domain.flows.validator import validation_codes


def make_graph(*nodes: FlowNode, start: str = "start", flow_id: str = "t", title: str = "T") -> FlowGraph:
    return FlowGraph(id=flow_id, title=title, start_node_id=start, node_list=tuple(nodes))


def node(node_id: str, *targets: str, auto: str = None, kind: NodeKind = NodeKind.MESSAGE, action=None) -> FlowNode:
    return FlowNode(
        id=node_id,
        kind=kind,
        messages=(f"{node_id} says hi",),
        options=tuple(FlowOption(f"to {t}", t) for t in targets),
        auto_next_id=auto,
        action=NodeAction.parse(action) if action is not None else None,
    )


@pytest.fixture
def validator() -> FlowValidator:
    return FlowValidator()


class TestGraphStructure:
    def test_valid_linear_graph(self, validator):
        graph = make_graph(node("start", auto="end"), node("end"))
        assert validator.validate(graph) == []
        assert validator.is_valid(graph)

    def test_dangling_option(self, validator):
        """options=[{text: A, nextNode: missing}] -> danglingReference."""
        graph = make_graph(
            FlowNode(id="start", messages=("hi",), options=(FlowOption("A", "missing"),)),
        )
        issues = validator.validate(graph)
        assert ValidationCode.DANGLING_REFERENCE in validation_codes(issues)
        dangling = next(i for i in issues if i.code is ValidationCode.DANGLING_REFERENCE)
        assert dangling.node_id == "start"
        assert "missing" in dangling.detail

    def test_dangling_auto_next_shadowed_by_options_is_still_reported(self, validator):
        graph = make_graph(node("start", "end", auto="ghost"), node("end"))
        assert validation_codes(validator.validate(graph)) == [ValidationCode.DANGLING_REFERENCE]

    @pytest.mark.parametrize("start", [None, "", "nowhere"])
    def test_missing_start_node(self, validator, start):
        graph = make_graph(node("a"), start=start)
        assert ValidationCode.MISSING_START_NODE in validation_codes(validator.validate(graph))

    def test_missing_id_and_title(self, validator):
        graph = make_graph(node("start"), flow_id=" ", title="")
        codes = validation_codes(validator.validate(graph))
        assert ValidationCode.MISSING_FLOW_ID in codes
        assert ValidationCode.MISSING_FLOW_TITLE in codes

    def test_duplicate_node(self, validator):
        graph = make_graph(node("start"), node("start"))
        assert ValidationCode.DUPLICATE_NODE in validation_codes(validator.validate(graph))

    def test_orphans_are_errors(self, validator):
        graph = make_graph(node("start"), node("island"))
        issues = validator.validate(graph)
        (orphan,) = issues
        assert orphan.code is ValidationCode.ORPHANED_NODE
        assert orphan.node_id == "island"
        assert orphan.severity is IssueSeverity.ERROR

    def test_node_reachable_only_through_shadowed_auto_next_is_orphaned(self, validator):
        graph = make_graph(node("start", "end", auto="hidden"), node("end"), node("hidden"))
        issues = validator.validate(graph)
        assert [(i.code, i.node_id) for i in issues] == [(ValidationCode.ORPHANED_NODE, "hidden")]

    def test_every_node_of_a_valid_graph_exists_and_is_reachable(self, validator):
        graph = make_graph(
            node("start", "a", "b"), node("a", auto="end"), node("b", "a", "end"), node("end"),
        )
        assert validator.is_valid(graph)
        assert validator.reachable(graph) == set(graph.nodes)


class TestCycles:
    def test_loop_with_exit_is_warning(self, validator):
        """A grounding exercise that repeats until the person is ready is fine."""
        graph = make_graph(
            node("start", auto="breathe"),
            node("breathe", auto="check"),
            node("check", "breathe", "end"),
            node("end"),
        )
        issues = validator.validate(graph)
        (cycle,) = issues
        assert cycle.code is ValidationCode.CIRCULAR_REFERENCE
        assert cycle.severity is IssueSeverity.WARNING
        assert set(cycle.nodes) == {"breathe", "check"}
        assert validator.is_valid(graph)

    def test_loop_without_exit_is_error(self, validator):
        graph = make_graph(node("start", auto="a"), node("a", auto="b"), node("b", auto="a"))
        issues = validator.validate(graph)
        (cycle,) = issues
        assert cycle.code is ValidationCode.CIRCULAR_REFERENCE
        assert cycle.severity is IssueSeverity.ERROR
        assert not validator.is_valid(graph)

    def test_self_loop(self, validator):
        graph = make_graph(node("start", "start", "end"), node("end"))
        (cycle,) = validator.validate(graph)
        assert cycle.nodes == ("start",)
        assert cycle.severity is IssueSeverity.WARNING

    def test_each_cycle_reported_once(self, validator):
        graph = make_graph(node("start", "a", "end"), node("a", "start", "end"), node("end"))
        cycles = validator.find_cycles(graph)
        assert len(cycles) == 1


class TestActionParameters:
    @pytest.mark.parametrize("phone", ["988", "911", "+14155550123", "18002221222"])
    def test_valid_phone(self, validator, phone):
        action = {"type": "call", "parameters": {"phone_number": phone}}
        graph = make_graph(node("start", action=action))
        assert validator.validate(graph) == []

    @pytest.mark.parametrize("phone", ["", "0800", "1", "call-me", "+0123", "1234567890123456"])
    def test_invalid_phone(self, validator, phone):
        action = {"type": "call", "parameters": {"phone_number": phone}}
        graph = make_graph(node("start", action=action))
        (issue,) = validator.validate(graph)
        assert issue.code is ValidationCode.INVALID_ACTION_PARAMETERS

    def test_sms_limit(self, validator):
        ok = {"type": "text", "parameters": {"phone_number": "741741", "message": "x" * 160}}
        too_long = {"type": "text", "parameters": {"phone_number": "741741", "message": "x" * 161}}
        assert validator.validate(make_graph(node("start", action=ok))) == []
        (issue,) = validator.validate(make_graph(node("start", action=too_long)))
        assert issue.code is ValidationCode.INVALID_ACTION_PARAMETERS

    def test_opaque_actions_pass(self, validator):
        graph = make_graph(node("start", action="some_legacy_action"))
        assert validator.validate(graph) == []


class TestInputValidation:
    @pytest.fixture
    def decision(self) -> FlowNode:
        return FlowNode(
            id="d",
            kind=NodeKind.DECISION,
            messages=("Are you safe?",),
            options=(FlowOption("Yes", "y"), FlowOption("No", "n")),
        )

    @pytest.fixture
    def message(self) -> FlowNode:
        return FlowNode(id="m", kind=NodeKind.MESSAGE, messages=("Tell me more",))

    def test_maybe_is_invalid_choice(self, validator, decision):
        result = validator.validate_input("maybe", decision)
        assert not result.is_valid
        assert result.code is ValidationCode.INVALID_CHOICE

    def test_option_text_passes_decision_rule(self, validator, decision):
        choices = ["Yes, I'm safe for now", "No, I'm not safe"]
        assert validator.validate_input("no, i'm NOT safe", decision, choices=choices).is_valid
        assert validator.validate_input("No, I'm not safe", decision).code is ValidationCode.INVALID_CHOICE
        harmful = validator.validate_input("<script>", decision, choices=["<script>"])
        assert harmful.code is ValidationCode.HARMFUL_CONTENT

    @pytest.mark.parametrize("token", ["yes", "NO", " y ", "n", "true", "False", "1", "0"])
    def test_decision_tokens(self, validator, decision, token):
        assert validator.validate_input(token, decision).is_valid

    @pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
    def test_empty(self, validator, message, text):
        assert validator.validate_input(text, message).code is ValidationCode.EMPTY_INPUT

    def test_too_long(self, validator, message):
        assert validator.validate_input("a" * 1000, message).is_valid
        assert validator.validate_input("a" * 1001, message).code is ValidationCode.INPUT_TOO_LONG

    @pytest.mark.parametrize(
        "text",
        [
            "<script>alert(1)</script>",
            "javascript:void(0)",
            "<img src=x onerror=alert(1)>",
            "JavaScript : alert(1)",
            "<body onload = x>",
        ],
    )
    def test_harmful(self, validator, message, text):
        assert validator.validate_input(text, message).code is ValidationCode.HARMFUL_CONTENT

    def test_message_needs_a_real_token(self, validator, message):
        assert validator.validate_input("...", message).code is ValidationCode.INSUFFICIENT_RESPONSE
        assert validator.validate_input("ok", message).is_valid

    def test_technique_nodes_accept_anything_non_empty(self, validator):
        technique = FlowNode(id="t", kind=NodeKind.TECHNIQUE)
        assert validator.validate_input("...", technique).is_valid

    @pytest.mark.parametrize("text", ["help", "this is an EMERGENCY", "I'm in danger", "urgent!", "call 911"])
    def test_emergency_flag(self, validator, message, text):
        assert validator.validate_input(text, message).is_emergency

    def test_emergency_flag_set_even_when_invalid(self, validator, decision):
        result = validator.validate_input("help me please", decision)
        assert not result.is_valid
        assert result.is_emergency

    def test_no_emergency_in_ordinary_words(self, validator, message):
        assert not validator.validate_input("that was helpful", message).is_emergency

    def test_check_order(self, validator, message):
        """Length is checked before content."""
        text = "<script>" + "a" * 1000
        assert validator.validate_input(text, message).code is ValidationCode.INPUT_TOO_LONG


class TestImportedDocuments:
    def test_missing_start_node_is_reported_with_other_problems(self, validator):
        graph = parse_flow({"id": "x", "title": "X", "nodes": [{"id": "a", "nextNode": "zzz"}]})
        codes = validation_codes(validator.validate(graph))
        assert ValidationCode.MISSING_START_NODE in codes
        assert ValidationCode.DANGLING_REFERENCE in codes
