"""
Flow runner: presentation order, input handling, failure paths and lifecycle.

All runners here use zero reveal/auto-advance delays, so a node chain finishes
within one settle().

Run with: pytest backend/tests/test_flow_runner.py -v
"""

from __future__ import annotations

import asyncio
import os
import sys

THIS_DIR = os.path.dirname(__file__)
PKG_ROOT = os.path.abspath(os.path.join(THIS_DIR, ".."))
if PKG_ROOT not in sys.path:
    sys.path.insert(0, PKG_ROOT)

import pytest
import compass.domain.flows.repository as repository_module
from compass.adapters.storage import MemoryStore, RetryingStore
from compass.core.errors import (
    DanglingReference,
    InvalidTransition,
    SessionBusy,
    SessionRestoreFailed,
    ValidationFailed,
)
from compass.domain.flows import (
    FALLBACK_FLOW_ID,
    ActionKind,
    ActionResult,
    EventKind,
    FlowGraph,
    FlowNode,
    FlowOption,
    FlowRepository,
    FlowRunner,
    FlowValidator,
    MessageKind,
    NodeAction,
    NodeKind,
    RunnerState,
)
from compass.domain.sessions import (
    EscalationLevel,
    SessionStateStore,
    SessionStatus,
    session_key,
)


class PermissiveValidator(FlowValidator):
    """Accepts any graph, so runtime failure paths can be exercised."""

    def validate(self, graph):
        return []


class FailingStore(MemoryStore):
    """Every write fails; reads see whatever was seeded."""

    def __init__(self):
        super().__init__()
        self.put_calls = 0

    async def put(self, key, value):
        self.put_calls += 1
        raise OSError("disk full")

    async def delete(self, key):
        raise OSError("disk full")


def make_runner(store=None, sessions=None, **kwargs) -> FlowRunner:
    store = store if store is not None else MemoryStore()
    kwargs.setdefault("reveal_delay", 0)
    kwargs.setdefault("auto_advance_pause", 0)
    validator = kwargs.pop("validator", None) or FlowValidator()
    return FlowRunner(
        repository=FlowRepository(store, validator=validator, flow_dirs=[]),
        sessions=sessions or SessionStateStore(store),
        validator=validator,
        **kwargs,
    )


def linear_graph() -> FlowGraph:
    return FlowGraph(
        id="linear",
        title="Linear",
        start_node_id="start",
        node_list=(
            FlowNode(id="start", messages=("one", "two"), auto_next_id="end"),
            FlowNode(id="end", kind=NodeKind.TERMINAL, messages=("three",)),
        ),
    )


def choice_graph(kind: NodeKind = NodeKind.MESSAGE) -> FlowGraph:
    return FlowGraph(
        id="choice",
        title="Choice",
        start_node_id="start",
        node_list=(
            FlowNode(
                id="start",
                kind=kind,
                messages=("Are you somewhere safe?",),
                options=(FlowOption("Yes, I'm safe", "safe"), FlowOption("No", "unsafe")),
            ),
            FlowNode(id="safe", kind=NodeKind.TERMINAL, messages=("Good. Let's breathe.",)),
            FlowNode(id="unsafe", kind=NodeKind.TERMINAL, messages=("Call 911 now.",)),
        ),
    )


def texts(runner: FlowRunner, from_user=None):
    return [m.text for m in runner.transcript if from_user is None or m.from_user is from_user]


class TestPresentation:
    def test_messages_in_order_then_completed(self):
        async def scenario():
            store = MemoryStore()
            runner = make_runner(store)
            runner.load_flow(linear_graph())
            session = runner.begin()
            await runner.settle()
            return runner, session, store

        runner, session, store = asyncio.run(scenario())
        assert texts(runner) == ["one", "two", "three"]
        assert runner.state is RunnerState.COMPLETED
        assert runner.last_error is None
        assert session.status is SessionStatus.COMPLETED
        assert session.visited_node_ids == {"start", "end"}
        assert session.transitions == 1
        # completed sessions are cleared from storage
        assert store.data == {}

    def test_messages_carry_their_node(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(linear_graph())
            runner.begin()
            await runner.settle()
            return runner

        runner = asyncio.run(scenario())
        assert [m.node_id for m in runner.transcript] == ["start", "start", "end"]

    def test_single_terminal_node_completes_without_error(self):
        graph = FlowGraph(id="one", title="One", start_node_id="only", node_list=(FlowNode(id="only", messages=("bye",)),))

        async def scenario():
            runner = make_runner()
            events = []
            runner.subscribe(events.append)
            runner.load_flow(graph)
            runner.begin()
            await runner.settle()
            return runner, events

        runner, events = asyncio.run(scenario())
        assert runner.state is RunnerState.COMPLETED
        assert texts(runner) == ["bye"]
        assert not [e for e in events if e.kind is EventKind.ERROR]

    def test_completed_session_kept_when_configured(self):
        async def scenario():
            store = MemoryStore()
            runner = make_runner(store, clear_completed=False)
            runner.load_flow(linear_graph())
            session = runner.begin()
            await runner.settle()
            return session, store

        session, store = asyncio.run(scenario())
        assert session_key(session.id) in store.data

    def test_options_wait_for_input(self):
        async def scenario():
            store = MemoryStore()
            runner = make_runner(store)
            events = []
            runner.subscribe(events.append)
            runner.load_flow(choice_graph())
            session = runner.begin()
            await runner.settle()
            return runner, session, events, store

        runner, session, events, store = asyncio.run(scenario())
        assert runner.state is RunnerState.AWAITING_INPUT
        assert [o.text for o in runner.options] == ["Yes, I'm safe", "No"]
        option_events = [e for e in events if e.kind is EventKind.OPTIONS]
        assert len(option_events) == 1
        assert option_events[0].node_id == "start"
        # snapshot written on entry
        assert session_key(session.id) in store.data

    def test_begin_requires_loaded_flow(self):
        async def scenario():
            runner = make_runner()
            with pytest.raises(InvalidTransition):
                runner.begin()
            return runner

        runner = asyncio.run(scenario())
        assert runner.state is RunnerState.IDLE

    def test_invalid_graph_is_refused(self):
        broken = FlowGraph(id="b", title="B", start_node_id="nope", node_list=(FlowNode(id="a"),))

        async def scenario():
            runner = make_runner()
            with pytest.raises(ValidationFailed):
                runner.load_flow(broken)
            return runner

        runner = asyncio.run(scenario())
        assert runner.state is RunnerState.ERROR
        assert runner.graph is None
        assert "911" in runner.transcript[-1].text
        assert runner.transcript[-1].kind is MessageKind.SYSTEM


class TestSelection:
    def test_select_by_index(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph())
            session = runner.begin()
            await runner.settle()
            await runner.select_option(1)
            await runner.settle()
            return runner, session

        runner, session = asyncio.run(scenario())
        assert runner.state is RunnerState.COMPLETED
        assert texts(runner, from_user=True) == ["No"]
        assert texts(runner)[-1] == "Call 911 now."
        assert session.user_responses == {"start": "No"}
        assert session.escalation_level is EscalationLevel.MEDIUM

    def test_select_by_text_and_option(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph())
            runner.begin()
            await runner.settle()
            await runner.select_option("yes, i'm safe")
            await runner.settle()
            first = runner.current_node.id
            runner.load_flow(choice_graph())
            runner.begin()
            await runner.settle()
            await runner.select_option(runner.options[1])
            await runner.settle()
            return first, runner.current_node.id

        assert asyncio.run(scenario()) == ("safe", "unsafe")

    def test_out_of_range_choice(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph())
            runner.begin()
            await runner.settle()
            with pytest.raises(ValidationFailed) as exc:
                await runner.select_option(5)
            return runner, exc.value

        runner, err = asyncio.run(scenario())
        assert runner.state is RunnerState.AWAITING_INPUT
        assert err.code == "validation_failed"

    def test_select_outside_awaiting_input(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(linear_graph())
            runner.begin()
            await runner.settle()
            with pytest.raises(InvalidTransition):
                await runner.select_option(0)
            return runner

        assert asyncio.run(scenario()).state is RunnerState.COMPLETED

    def test_dangling_option_ends_in_error_with_safe_message(self):
        graph = FlowGraph(
            id="d",
            title="D",
            start_node_id="start",
            node_list=(FlowNode(id="start", messages=("hi",), options=(FlowOption("A", "missing"),)),),
        )

        async def scenario():
            runner = make_runner(validator=PermissiveValidator())
            events = []
            runner.subscribe(events.append)
            runner.load_flow(graph)
            runner.begin()
            await runner.settle()
            await runner.select_option(0)
            await runner.settle()
            return runner, events

        runner, events = asyncio.run(scenario())
        assert runner.state is RunnerState.ERROR
        assert isinstance(runner.last_error, DanglingReference)
        last = runner.transcript[-1]
        assert last.kind is MessageKind.SYSTEM
        assert "911" in last.text
        assert [e.error for e in events if e.kind is EventKind.ERROR] == ["dangling_reference"]

    def test_dangling_auto_next_ends_in_error(self):
        graph = FlowGraph(
            id="d",
            title="D",
            start_node_id="start",
            node_list=(FlowNode(id="start", messages=("hi",), auto_next_id="ghost"),),
        )

        async def scenario():
            runner = make_runner(validator=PermissiveValidator())
            runner.load_flow(graph)
            runner.begin()
            await runner.settle()
            return runner

        runner = asyncio.run(scenario())
        assert runner.state is RunnerState.ERROR
        assert isinstance(runner.last_error, DanglingReference)
        assert texts(runner)[0] == "hi"


class TestResponses:
    def test_emergency_words_escalate_even_when_invalid(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph(NodeKind.DECISION))
            session = runner.begin()
            await runner.settle()
            result = await runner.respond("help")
            return runner, session, result

        runner, session, result = asyncio.run(scenario())
        assert not result.is_valid
        assert result.is_emergency
        assert session.escalation_level is EscalationLevel.HIGH
        assert runner.state is RunnerState.AWAITING_INPUT

    @pytest.mark.parametrize("token,expected", [("yes", "safe"), ("N", "unsafe"), ("1", "safe"), ("0", "unsafe")])
    def test_decision_tokens_select(self, token, expected):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph(NodeKind.DECISION))
            runner.begin()
            await runner.settle()
            result = await runner.respond(token)
            await runner.settle()
            return runner, result

        runner, result = asyncio.run(scenario())
        assert result.is_valid
        assert runner.current_node.id == expected

    def test_option_text_selects(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph())
            runner.begin()
            await runner.settle()
            await runner.respond("  YES, I'M SAFE ")
            await runner.settle()
            return runner

        assert asyncio.run(scenario()).current_node.id == "safe"

    @pytest.mark.parametrize("typed,expected", [("Yes, I'm safe", "safe"), ("  yes, i'm SAFE ", "safe"), ("No", "unsafe")])
    def test_option_text_selects_on_decision_node(self, typed, expected):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph(NodeKind.DECISION))
            runner.begin()
            await runner.settle()
            result = await runner.respond(typed)
            await runner.settle()
            return runner, result

        runner, result = asyncio.run(scenario())
        assert result.is_valid
        assert runner.current_node.id == expected

    def test_bundled_safety_check_accepts_option_text(self):
        async def scenario():
            runner = make_runner()
            session = await runner.start("suicide")
            await runner.settle()
            asked = runner.current_node.id
            result = await runner.respond("No, I'm not safe")
            await runner.settle()
            return runner, session, asked, result

        runner, session, asked, result = asyncio.run(scenario())
        assert asked == "safety_check"
        assert result.is_valid
        assert runner.current_node.id == "emergency"
        assert "emergency" in session.visited_node_ids

    def test_free_text_is_recorded(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph())
            session = runner.begin()
            await runner.settle()
            result = await runner.respond("I'm at home")
            return runner, session, result

        runner, session, result = asyncio.run(scenario())
        assert result.is_valid
        assert runner.state is RunnerState.AWAITING_INPUT
        assert texts(runner, from_user=True) == ["I'm at home"]
        assert session.user_responses == {"start": "I'm at home"}
        assert session.escalation_level is EscalationLevel.LOW

    def test_rejected_input_not_recorded(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph())
            session = runner.begin()
            await runner.settle()
            result = await runner.respond("<script>alert(1)</script>")
            return runner, session, result

        runner, session, result = asyncio.run(scenario())
        assert result.code.value == "harmfulContent"
        assert texts(runner, from_user=True) == []
        assert session.user_responses == {}


class TestActions:
    @staticmethod
    def action_graph(action) -> FlowGraph:
        return FlowGraph(
            id="act",
            title="Act",
            start_node_id="start",
            node_list=(
                FlowNode(
                    id="start",
                    kind=NodeKind.TECHNIQUE,
                    messages=("Let's try something.",),
                    action=NodeAction.parse(action),
                    auto_next_id="end",
                ),
                FlowNode(id="end", messages=("Done.",)),
            ),
        )

    def test_cue_message_and_action_event(self):
        async def scenario():
            runner = make_runner()
            events = []
            runner.subscribe(events.append)
            runner.load_flow(self.action_graph("breathing_exercise"))
            runner.begin()
            await runner.settle()
            return runner, events

        runner, events = asyncio.run(scenario())
        kinds = [m.kind for m in runner.transcript]
        assert kinds == [MessageKind.TEXT, MessageKind.BREATHING, MessageKind.TEXT]
        (action_event,) = [e for e in events if e.kind is EventKind.ACTION]
        assert action_event.action.kind is ActionKind.BREATHING_EXERCISE
        assert runner.state is RunnerState.COMPLETED

    def test_high_severity_result_escalates(self):
        seen = []

        async def handler(action, node):
            seen.append((action.kind, node.id, dict(action.parameters)))
            return ActionResult(action.kind, True, {"emergency_level": "high"})

        async def scenario():
            runner = make_runner(action_handler=handler)
            runner.load_flow(self.action_graph({"type": "call", "parameters": {"phone_number": "988"}}))
            session = runner.begin()
            await runner.settle()
            return session

        session = asyncio.run(scenario())
        assert seen == [(ActionKind.CALL, "start", {"phone_number": "988"})]
        assert session.escalation_level is EscalationLevel.HIGH

    def test_handler_failure_does_not_stop_the_flow(self):
        async def handler(action, node):
            raise RuntimeError("dialer unavailable")

        async def scenario():
            runner = make_runner(action_handler=handler)
            runner.load_flow(self.action_graph("show_contacts"))
            runner.begin()
            await runner.settle()
            return runner

        runner = asyncio.run(scenario())
        assert runner.state is RunnerState.COMPLETED
        assert texts(runner)[-1] == "Done."

    def test_out_of_band_action_result(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph())
            session = runner.begin()
            await runner.settle()
            await runner.record_action_result(ActionResult(ActionKind.LOCATION, True, {"emergency_level": "HIGH"}))
            return session

        assert asyncio.run(scenario()).escalation_level is EscalationLevel.HIGH


class TestFallback:
    def test_invalid_builtin_is_replaced(self, tmp_path):
        (tmp_path / "panic.json").write_text(
            '{"id": "panic_flow", "title": "Broken", "nodes": [{"id": "a"}]}', encoding="utf-8"
        )

        async def scenario():
            store = MemoryStore()
            runner = FlowRunner(
                repository=FlowRepository(store, flow_dirs=[str(tmp_path)]),
                sessions=SessionStateStore(store),
                reveal_delay=0,
                auto_advance_pause=0,
            )
            session = await runner.start("panic")
            await runner.settle()
            return runner, session

        runner, session = asyncio.run(scenario())
        assert runner.graph.id == FALLBACK_FLOW_ID
        assert runner.state is RunnerState.AWAITING_INPUT
        assert len(runner.options) == 2
        assert session.flow_type == "panic"

    def test_missing_builtin_is_replaced(self, tmp_path, monkeypatch):
        monkeypatch.setattr(repository_module, "BUNDLED_FLOW_DIR", tmp_path / "nothing-here")

        async def scenario():
            runner = make_runner()
            await runner.start("medical")
            await runner.settle()
            await runner.select_option(0)
            await runner.settle()
            return runner

        runner = asyncio.run(scenario())
        assert runner.graph.id == FALLBACK_FLOW_ID
        assert runner.state is RunnerState.COMPLETED
        assert any("911" in t for t in texts(runner))

    def test_bundled_builtin_loads(self):
        async def scenario():
            runner = make_runner()
            await runner.start("panic")
            await runner.settle()
            return runner

        runner = asyncio.run(scenario())
        assert runner.graph.id == "panic_flow"
        assert runner.current_node.id == "welcome"
        assert runner.state is RunnerState.AWAITING_INPUT


class TestLifecycle:
    def test_reset_cancels_pending_auto_advance(self):
        async def scenario():
            runner = make_runner(auto_advance_pause=0.05)
            runner.load_flow(linear_graph())
            runner.begin()
            for _ in range(100):
                if runner.state is RunnerState.ADVANCING:
                    break
                await asyncio.sleep(0)
            assert runner.state is RunnerState.ADVANCING
            gen = runner.generation
            await runner.reset()
            await asyncio.sleep(0.1)
            return runner, gen

        runner, gen = asyncio.run(scenario())
        assert runner.generation > gen
        assert runner.state is RunnerState.IDLE
        assert runner.current_node is None
        assert runner.transcript == []

    def test_listener_errors_are_contained(self):
        def broken(event):
            raise ValueError("listener bug")

        async def scenario():
            runner = make_runner()
            runner.subscribe(broken)
            runner.load_flow(linear_graph())
            runner.begin()
            await runner.settle()
            return runner

        assert asyncio.run(scenario()).state is RunnerState.COMPLETED

    def test_unsubscribe(self):
        async def scenario():
            runner = make_runner()
            events = []
            unsubscribe = runner.subscribe(events.append)
            unsubscribe()
            unsubscribe()
            runner.load_flow(linear_graph())
            runner.begin()
            await runner.settle()
            return events

        assert asyncio.run(scenario()) == []

    def test_pause_then_resume(self):
        async def scenario():
            store = MemoryStore()
            sessions = SessionStateStore(store)
            first = make_runner(store, sessions)
            await first.repository.save_custom(choice_graph())
            first.load_flow(choice_graph())
            session = first.begin()
            await first.settle()
            await first.respond("help")
            await first.pause()
            paused = await sessions.restore(session.id)
            claimed = sessions.is_claimed(session.id)

            second = make_runner(store, sessions)
            resumed = await second.resume(session.id)
            await second.settle()
            return first, second, paused, claimed, resumed, session

        first, second, paused, claimed, resumed, session = asyncio.run(scenario())
        assert first.state is RunnerState.IDLE
        assert first.session is None
        assert paused.status is SessionStatus.PAUSED
        assert not claimed

        assert resumed.id == session.id
        assert resumed.status is SessionStatus.ACTIVE
        assert resumed.escalation_level is EscalationLevel.HIGH
        assert second.state is RunnerState.AWAITING_INPUT
        assert second.current_node.id == "start"
        assert texts(second) == ["Are you somewhere safe?"]

    def test_resume_current_without_id(self):
        async def scenario():
            store = MemoryStore()
            sessions = SessionStateStore(store)
            first = make_runner(store, sessions)
            await first.repository.save_custom(choice_graph())
            first.load_flow(choice_graph())
            session = first.begin()
            await first.settle()
            await first.close()
            second = make_runner(store, sessions)
            resumed = await second.resume()
            return session, resumed

        session, resumed = asyncio.run(scenario())
        assert resumed.id == session.id

    def test_resume_held_session_is_busy(self):
        async def scenario():
            store = MemoryStore()
            sessions = SessionStateStore(store)
            first = make_runner(store, sessions)
            await first.repository.save_custom(choice_graph())
            first.load_flow(choice_graph())
            session = first.begin()
            await first.settle()
            second = make_runner(store, sessions)
            with pytest.raises(SessionBusy):
                await second.resume(session.id)
            return first

        assert asyncio.run(scenario()).state is RunnerState.AWAITING_INPUT

    def test_resume_unknown_session(self):
        async def scenario():
            runner = make_runner()
            with pytest.raises(SessionRestoreFailed):
                await runner.resume("does-not-exist")
            return runner

        runner = asyncio.run(scenario())
        assert runner.state is RunnerState.ERROR
        assert "911" in runner.transcript[-1].text

    def test_resume_completed_session_fails(self):
        async def scenario():
            store = MemoryStore()
            first = make_runner(store, clear_completed=False)
            first.load_flow(linear_graph())
            session = first.begin()
            await first.settle()
            second = make_runner(store)
            with pytest.raises(SessionRestoreFailed):
                await second.resume(session.id)
            return second

        assert asyncio.run(scenario()).state is RunnerState.ERROR

    def test_storage_failure_does_not_stop_the_flow(self):
        async def scenario():
            failing = FailingStore()
            sessions = SessionStateStore(RetryingStore(failing, retries=1))
            runner = make_runner(MemoryStore(), sessions)
            runner.load_flow(linear_graph())
            runner.begin()
            await runner.settle()
            return runner, failing

        runner, failing = asyncio.run(scenario())
        assert runner.state is RunnerState.COMPLETED
        assert texts(runner) == ["one", "two", "three"]
        assert failing.put_calls > 0

    def test_load_flow_while_running_restarts_cleanly(self):
        async def scenario():
            runner = make_runner()
            runner.load_flow(choice_graph())
            runner.begin()
            await runner.settle()
            runner.load_flow(linear_graph())
            runner.begin()
            await runner.settle()
            return runner

        runner = asyncio.run(scenario())
        assert runner.state is RunnerState.COMPLETED
        assert texts(runner) == ["one", "two", "three"]
