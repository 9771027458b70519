from __future__ import annotations
from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from compass.core.errors import FlowNotFound, SessionRestoreFailed
from compass.domain.crisis import triage
from compass.domain.flows.actions import ActionKind, ActionResult
from compass.domain.flows.runner import FlowRunner
from compass.domain.flows.validator import InputValidation
from compass.interfaces.http.deps.services import Services, get_services
from compass.schemas.session import (
    ActionResultIn,
    MessageOut,
    OptionOut,
    RespondIn,
    ResumeIn,
    SelectIn,
    SessionView,
    StartSessionIn,
)

router = APIRouter()


def _view(runner: FlowRunner, since: int = 0, checked: Optional[InputValidation] = None) -> SessionView:
    session = runner.session
    node = runner.current_node
    err = runner.last_error
    return SessionView(
        session_id=session.id if session else None,
        flow_id=runner.graph.id if runner.graph else None,
        state=runner.state.value,
        node_id=node.id if node else None,
        messages=[MessageOut(**m.to_dict()) for m in runner.visible_messages(since)],
        options=[OptionOut(index=i, text=o.text) for i, o in enumerate(runner.options)],
        escalation_level=session.escalation_level.value if session else None,
        status=session.status.value if session else None,
        error=getattr(err, "code", None) if err else None,
        input=(
            {
                "valid": checked.is_valid,
                "code": checked.code.value if checked.code else None,
                "is_emergency": checked.is_emergency,
            }
            if checked is not None
            else None
        ),
    )


@router.post("/", response_model=SessionView, status_code=201)
async def start_session(body: StartSessionIn, services: Services = Depends(get_services)):
    runner = services.new_runner()
    if body.flow_id:
        graph = await services.repository.load_custom(body.flow_id)
        if graph is None:
            raise FlowNotFound(body.flow_id)
        runner.load_flow(graph)
        runner.begin()
    else:
        flow_type = body.flow_type
        if not flow_type:
            flow_type = triage(body.text or "").flow_type.value
        await runner.start(flow_type)
    services.register(runner)
    await runner.settle()
    view = _view(runner)
    await services.release_if_completed(runner)
    return view


@router.post("/resume", response_model=SessionView)
async def resume_session(body: ResumeIn, services: Services = Depends(get_services)):
    if body.session_id and body.session_id in services.runners:
        return _view(services.runners[body.session_id])
    runner = services.new_runner()
    await runner.resume(body.session_id)
    services.register(runner)
    await runner.settle()
    view = _view(runner)
    await services.release_if_completed(runner)
    return view


@router.get("/{session_id}", response_model=SessionView)
async def get_session(session_id: str, since: int = 0, services: Services = Depends(get_services)):
    runner = services.runners.get(session_id)
    if runner is not None:
        return _view(runner, since)
    stored = await services.sessions.restore(session_id)
    if stored is None:
        raise SessionRestoreFailed(session_id)
    return SessionView(
        session_id=stored.id,
        flow_id=stored.flow_id,
        state="idle",
        node_id=stored.current_node_id,
        escalation_level=stored.escalation_level.value,
        status=stored.status.value,
    )


@router.get("/{session_id}/export", response_class=PlainTextResponse)
async def export_session(session_id: str, services: Services = Depends(get_services)):
    runner = services.runners.get(session_id)
    session = runner.session if runner is not None else None
    if session is None:
        session = await services.sessions.restore(session_id)
    if session is None:
        raise SessionRestoreFailed(session_id)
    return services.sessions.export(session)


@router.post("/{session_id}/select", response_model=SessionView)
async def select_option(session_id: str, body: SelectIn, services: Services = Depends(get_services)):
    runner = services.runner_for(session_id)
    mark = len(runner.transcript)
    await runner.select_option(body.option)
    await runner.settle()
    view = _view(runner, mark)
    await services.release_if_completed(runner)
    return view


@router.post("/{session_id}/respond", response_model=SessionView)
async def respond(session_id: str, body: RespondIn, services: Services = Depends(get_services)):
    runner = services.runner_for(session_id)
    mark = len(runner.transcript)
    checked = await runner.respond(body.text)
    await runner.settle()
    view = _view(runner, mark, checked)
    await services.release_if_completed(runner)
    return view


@router.post("/{session_id}/action-result", response_model=SessionView)
async def action_result(session_id: str, body: ActionResultIn, services: Services = Depends(get_services)):
    runner = services.runner_for(session_id)
    await runner.record_action_result(ActionResult(ActionKind.parse(body.kind), body.success, body.data))
    return _view(runner, len(runner.transcript))


@router.post("/{session_id}/pause")
async def pause_session(session_id: str, services: Services = Depends(get_services)):
    runner = services.runner_for(session_id)
    await runner.pause()
    services.drop(session_id)
    return {"ok": True, "session_id": session_id, "status": "paused"}


@router.post("/{session_id}/reset")
async def reset_session(session_id: str, services: Services = Depends(get_services)):
    runner = services.drop(session_id)
    if runner is not None:
        await runner.reset()
    else:
        await services.sessions.clear(session_id)
    return {"ok": True}
