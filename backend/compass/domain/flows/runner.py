# compass/domain/flows/runner.py
"""
Flow runner: walks a validated FlowGraph node by node.

State lives in two places:
- RunnerState, advanced only through state.next_state()
- FlowSession, snapshotted after every node entry

Message reveal and auto-advance run in one asyncio task per node chain. Every
delayed step checks the runner generation first; reset()/close() bump the
generation and cancel the task, so nothing queued before a teardown can apply
after it.

Listeners get RunnerEvent objects; they are a projection of runner state and
never drive it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from compass.adapters.storage import MemoryStore, RetryingStore
from compass.core.config import get_settings
from compass.core.errors import (
    CompassError,
    DanglingReference,
    FlowError,
    InvalidTransition,
    SessionRestoreFailed,
    StorageError,
    ValidationFailed,
)
from compass.domain.crisis.responses import safe_default_message
from compass.domain.flows.actions import ActionResult, MessageKind, NodeAction
from compass.domain.flows.fallback import fallback_graph
from compass.domain.flows.graph import FlowGraph, FlowNode, FlowOption, FlowType, NodeKind
from compass.domain.flows.repository import FlowRepository
from compass.domain.flows.state import RunnerState, Signal, can_apply, next_state
from compass.domain.flows.validator import (
    FlowValidator,
    InputValidation,
    ValidationCode,
    ValidationIssue,
    errors_only,
)
from compass.domain.sessions.models import EscalationLevel, FlowSession, SessionStatus
from compass.domain.sessions.store import SessionStateStore

logger = logging.getLogger(__name__)

__all__ = ["ChatMessage", "EventKind", "RunnerEvent", "ActionHandler", "FlowRunner"]

ActionHandler = Callable[[NodeAction, FlowNode], Awaitable[Optional[ActionResult]]]


@dataclass(frozen=True)
class ChatMessage:
    text: str
    from_user: bool = False
    kind: MessageKind = MessageKind.TEXT
    node_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"text": self.text, "from_user": self.from_user, "kind": self.kind.value, "node_id": self.node_id}


class EventKind(str, Enum):
    STATE = "state"
    MESSAGE = "message"
    OPTIONS = "options"
    ACTION = "action"
    ERROR = "error"


@dataclass(frozen=True)
class RunnerEvent:
    kind: EventKind
    state: RunnerState
    node_id: Optional[str] = None
    message: Optional[ChatMessage] = None
    options: Tuple[FlowOption, ...] = ()
    action: Optional[NodeAction] = None
    error: Optional[str] = None


Listener = Callable[[RunnerEvent], None]


class FlowRunner:
    def __init__(
        self,
        *,
        repository: Optional[FlowRepository] = None,
        sessions: Optional[SessionStateStore] = None,
        validator: Optional[FlowValidator] = None,
        action_handler: Optional[ActionHandler] = None,
        reveal_delay: Optional[float] = None,
        auto_advance_pause: Optional[float] = None,
        clear_completed: Optional[bool] = None,
    ):
        settings = get_settings()
        self.validator = validator or FlowValidator()
        if repository is None or sessions is None:
            store = RetryingStore(MemoryStore(), retries=settings.STORAGE_RETRIES)
            repository = repository or FlowRepository(store, validator=self.validator)
            sessions = sessions or SessionStateStore(store)
        self.repository = repository
        self.sessions = sessions
        self.action_handler = action_handler
        self.reveal_delay = settings.MESSAGE_REVEAL_DELAY_S if reveal_delay is None else reveal_delay
        self.auto_advance_pause = settings.AUTO_ADVANCE_PAUSE_S if auto_advance_pause is None else auto_advance_pause
        self.clear_completed = settings.CLEAR_COMPLETED_SESSIONS if clear_completed is None else clear_completed

        self._state = RunnerState.IDLE
        self._graph: Optional[FlowGraph] = None
        self._node: Optional[FlowNode] = None
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []

        self.session: Optional[FlowSession] = None
        self.transcript: List[ChatMessage] = []
        self.options: Tuple[FlowOption, ...] = ()
        self.last_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def graph(self) -> Optional[FlowGraph]:
        return self._graph

    @property
    def current_node(self) -> Optional[FlowNode]:
        return self._node

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: RunnerEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Runner listener failed on %s event", event.kind.value)

    def _signal(self, signal: Signal) -> None:
        self._state = next_state(self._state, signal)
        self._emit(RunnerEvent(EventKind.STATE, self._state, node_id=self._node.id if self._node else None))

    def _say(self, text: str, *, from_user: bool = False, kind: MessageKind = MessageKind.TEXT) -> ChatMessage:
        msg = ChatMessage(text, from_user=from_user, kind=kind, node_id=self._node.id if self._node else None)
        self.transcript.append(msg)
        self._emit(RunnerEvent(EventKind.MESSAGE, self._state, node_id=msg.node_id, message=msg))
        return msg

    def _fail(self, exc: BaseException) -> None:
        """Any state -> error, plus a message that always offers a way out."""
        self.last_error = exc
        self.options = ()
        self._signal(Signal.FAIL)
        self._say(safe_default_message(), kind=MessageKind.SYSTEM)
        code = exc.code if isinstance(exc, CompassError) else "internal_error"
        self._emit(RunnerEvent(EventKind.ERROR, self._state, node_id=self._node.id if self._node else None, error=code))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load_flow(self, graph: FlowGraph) -> None:
        """Validate and install a graph. Validation errors -> error state + ValidationFailed."""
        self._prepare_load()
        self._install(graph)

    def _install(self, graph: FlowGraph) -> None:
        issues = self.validator.validate(graph)
        for warning in (i for i in issues if not i.is_error):
            logger.warning("Flow %s: %s %s", graph.id, warning.code.value, warning.detail, extra={"flow_id": graph.id})
        errors = errors_only(issues)
        if errors:
            exc = ValidationFailed(errors)
            self._fail(exc)
            raise exc
        self._graph = graph
        self._node = graph.start_node
        self._signal(Signal.LOADED)

    async def start(self, flow_type: Union[FlowType, str]) -> FlowSession:
        """
        Load a built-in flow and begin it. A built-in that can't be loaded or
        doesn't validate is replaced by the fallback graph.
        """
        flow_type = FlowType.parse(flow_type) if isinstance(flow_type, str) else flow_type
        self._prepare_load()
        try:
            graph = await self.repository.load_builtin(flow_type)
            errors = errors_only(self.validator.validate(graph))
            if errors:
                raise ValidationFailed(errors)
        except (FlowError, StorageError) as e:
            logger.warning("Built-in flow %s unusable (%s); using fallback", flow_type.value, e)
            graph = fallback_graph()
        self._install(graph)
        return self.begin(flow_type=flow_type.value)

    def begin(self, flow_type: Optional[str] = None) -> FlowSession:
        """Create a fresh session on the loaded graph and enter its start node."""
        if self._state is not RunnerState.READY or self._graph is None or self._node is None:
            raise InvalidTransition(self._state, Signal.ENTER)
        session = FlowSession(flow_id=self._graph.id, flow_type=flow_type or self._graph.flow_type)
        self.sessions.claim(session.id, self)
        self.session = session
        self.transcript = []
        self._start_presenting(self._node, transition=False)
        return session

    async def resume(self, session_id: Optional[str] = None) -> FlowSession:
        """Pick a stored session back up at the node it was on."""
        self._prepare_load()
        try:
            session = await self.sessions.restore(session_id)
            if session is None:
                raise SessionRestoreFailed(session_id)
            if session.is_finished:
                raise SessionRestoreFailed(session.id, ValueError(f"session is {session.status.value}"))
            try:
                graph = await self.repository.load_by_id(session.flow_id)
            except (FlowError, StorageError) as e:
                raise SessionRestoreFailed(session.id, e) from e
        except SessionRestoreFailed as e:
            self._fail(e)
            raise

        self._install(graph)
        node = graph.get(session.current_node_id) or graph.start_node
        self.sessions.claim(session.id, self)
        session.status = SessionStatus.ACTIVE
        session.touch()
        self.session = session
        self.transcript = []
        self._node = node
        self._start_presenting(node, transition=False)
        return session

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------
    def _alive(self, generation: int) -> bool:
        return generation == self._generation

    def _enter(self, node: FlowNode, *, transition: bool) -> None:
        self._node = node
        self.options = ()
        self._signal(Signal.ENTER)
        if self.session is not None:
            self.session.enter(node.id, transition=transition)

    def _start_presenting(self, node: FlowNode, *, transition: bool) -> None:
        self._enter(node, transition=transition)
        gen = self._generation
        self._task = asyncio.get_running_loop().create_task(self._present(node, gen))

    async def _present(self, node: FlowNode, gen: int) -> None:
        try:
            while True:
                await self._snapshot()
                if not self._alive(gen):
                    return

                delay = self.reveal_delay if node.delay is None else node.delay
                for i, text in enumerate(node.messages):
                    if i:
                        await asyncio.sleep(delay)
                        if not self._alive(gen):
                            return
                    self._say(text)

                if node.action is not None:
                    await self._dispatch(node)
                    if not self._alive(gen):
                        return

                if node.messages and delay:
                    await asyncio.sleep(delay)
                    if not self._alive(gen):
                        return

                if node.options:
                    self.options = node.options
                    self._signal(Signal.AWAIT_INPUT)
                    self._emit(RunnerEvent(EventKind.OPTIONS, self._state, node_id=node.id, options=node.options))
                    await self._snapshot()
                    return

                if node.auto_next_id:
                    self._signal(Signal.ADVANCE)
                    await asyncio.sleep(self.auto_advance_pause)
                    if not self._alive(gen):
                        return
                    target = self._graph.get(node.auto_next_id) if self._graph else None
                    if target is None:
                        raise DanglingReference(node.id, node.auto_next_id)
                    self._enter(target, transition=True)
                    node = target
                    continue

                await self._complete()
                return
        except CompassError as e:
            if self._alive(gen):
                self._fail(e)
                await self._snapshot()
        except Exception as e:
            logger.exception("Flow presentation crashed", extra={"node_id": node.id})
            if self._alive(gen):
                self._fail(e)

    async def _dispatch(self, node: FlowNode) -> None:
        action = node.action
        cue = action.cue
        if cue is not None:
            self._say(cue.text, kind=cue.kind)
        self._emit(RunnerEvent(EventKind.ACTION, self._state, node_id=node.id, action=action))
        if self.action_handler is None:
            return
        try:
            result = await self.action_handler(action, node)
        except Exception:
            logger.exception("Action handler failed for %s", action.raw, extra={"node_id": node.id})
            return
        if result is not None:
            self._apply_action_result(result)

    def _apply_action_result(self, result: ActionResult) -> None:
        if self.session is not None and result.signals_high_severity:
            if self.session.raise_escalation(EscalationLevel.HIGH):
                logger.warning("Session escalated to high by %s action", result.kind.value,
                               extra={"session_id": self.session.id})

    async def _complete(self) -> None:
        self._signal(Signal.COMPLETE)
        session = self.session
        if session is None:
            return
        session.complete()
        await self._snapshot()
        self.sessions.release(session.id, self)
        if self.clear_completed:
            try:
                await self.sessions.clear(session.id)
            except StorageError as e:
                logger.warning("Could not clear completed session: %s", e, extra={"session_id": session.id})

    async def _snapshot(self) -> bool:
        if self.session is None:
            return False
        return await self.sessions.snapshot(self.session)

    async def settle(self) -> None:
        """Wait until the current node chain stops (awaiting input, completed, error)."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------
    async def select_option(self, choice: Union[int, FlowOption, str]) -> None:
        """Only legal while awaiting input. A dangling target ends in the error state."""
        if self._state is not RunnerState.AWAITING_INPUT or self._node is None:
            logger.debug("select_option ignored in state %s", self._state.value)
            raise InvalidTransition(self._state, Signal.ENTER)
        node = self._node
        option = self._resolve_option(node, choice)
        if option is None:
            raise ValidationFailed([ValidationIssue(ValidationCode.INVALID_CHOICE, node_id=node.id)])

        self._say(option.text, from_user=True)
        if self.session is not None:
            self.session.record_response(node.id, option.text)

        target = self._graph.get(option.next_node_id) if self._graph else None
        if target is None:
            self._fail(DanglingReference(node.id, option.next_node_id))
            await self._snapshot()
            return
        self._start_presenting(target, transition=True)

    async def respond(self, text: str) -> InputValidation:
        """
        Free-text input at the current node.
        - emergency words escalate the session to high, valid input or not
        - valid input is recorded; when options are pending, a matching option
          (or a yes/no token on a decision node) is selected
        """
        node = self._node
        awaiting = self._state is RunnerState.AWAITING_INPUT and node is not None
        choices = [o.text for o in node.options] if awaiting else ()
        result = self.validator.validate_input(text, node, choices=choices)
        session = self.session

        if result.is_emergency and session is not None:
            if session.raise_escalation(EscalationLevel.HIGH):
                logger.warning("Emergency language in response; escalating", extra={"session_id": session.id})
        if not result.is_valid:
            await self._snapshot()
            return result

        option = None
        if awaiting:
            option = self._match_option(node, result.normalized)
        if option is not None:
            await self.select_option(option)
            return result

        self._say(result.normalized, from_user=True)
        if session is not None and node is not None:
            session.record_response(node.id, result.normalized)
        await self._snapshot()
        return result

    async def record_action_result(self, result: ActionResult) -> None:
        """For UI collaborators that report action outcomes out of band."""
        self._apply_action_result(result)
        await self._snapshot()

    def _resolve_option(self, node: FlowNode, choice: Union[int, FlowOption, str]) -> Optional[FlowOption]:
        if isinstance(choice, FlowOption):
            return choice if choice in node.options else None
        if isinstance(choice, int):
            return node.options[choice] if 0 <= choice < len(node.options) else None
        return self._match_option(node, choice)

    def _match_option(self, node: FlowNode, text: str) -> Optional[FlowOption]:
        wanted = (text or "").strip().lower()
        for option in node.options:
            if option.text.strip().lower() == wanted:
                return option
        if node.kind is NodeKind.DECISION:
            idx = self.validator.decision_index(wanted)
            if idx is not None and idx < len(node.options):
                return node.options[idx]
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _prepare_load(self) -> None:
        self._teardown()
        if not can_apply(self._state, Signal.LOAD):
            self._signal(Signal.RESET)
        self._signal(Signal.LOAD)

    def _teardown(self) -> None:
        """Stop timers and drop ownership. Storage is left alone."""
        self._generation += 1
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self.session is not None:
            self.sessions.release(self.session.id, self)

    async def pause(self) -> None:
        """Mark the session paused, persist it, and let go of it. Resume with resume(id)."""
        if self.session is None:
            return
        self._teardown()
        self.session.status = SessionStatus.PAUSED
        self.session.touch()
        await self._snapshot()
        await self.close()

    async def close(self) -> None:
        """Tear down, keeping the snapshot so the session can be resumed later."""
        self._teardown()
        self._graph = None
        self._node = None
        self.options = ()
        self.session = None
        self._signal(Signal.RESET)

    async def reset(self) -> None:
        """Clear everything, stored snapshot included, and return to idle."""
        session = self.session
        self._teardown()
        if session is not None:
            try:
                await self.sessions.clear(session.id)
            except StorageError as e:
                logger.warning("Could not clear session on reset: %s", e, extra={"session_id": session.id})
        self.session = None
        self._graph = None
        self._node = None
        self.options = ()
        self.transcript = []
        self.last_error = None
        self._signal(Signal.RESET)

    def visible_messages(self, since: int = 0) -> Sequence[ChatMessage]:
        return self.transcript[since:]
