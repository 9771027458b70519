from __future__ import annotations
from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from compass.core.errors import FlowNotFound
from compass.domain.flows.graph import FlowGraph, FlowType, parse_flow
from compass.interfaces.http.deps.services import Services, get_services

router = APIRouter()


def _summary(graph: FlowGraph) -> Dict[str, Any]:
    return {
        "id": graph.id,
        "type": graph.flow_type,
        "title": graph.title,
        "version": graph.version,
        "nodes": len(graph),
        "tags": graph.tags,
    }


def _builtin_type(flow_type: str) -> FlowType:
    try:
        kind = FlowType(flow_type)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown flow type: {flow_type}")
    if kind is FlowType.CUSTOM:
        raise HTTPException(status_code=404, detail="Use /flows/custom/{flow_id} for custom flows")
    return kind


@router.get("/")
async def list_flows(services: Services = Depends(get_services)):
    repo = services.repository
    return {
        "builtin": [t.value for t in repo.available_types()],
        "custom": [_summary(g) for g in await repo.list_custom()],
        "stats": await repo.statistics(),
    }


@router.post("/validate")
def validate_flow(doc: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    graph = parse_flow(doc)
    issues = services.validator.validate(graph)
    return {
        "valid": not any(i.is_error for i in issues),
        "issues": [i.to_dict() for i in issues],
    }


@router.post("/import", status_code=201)
async def import_flow(doc: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    graph = parse_flow(doc)
    saved = await services.repository.save_custom(graph)
    return _summary(saved)


@router.get("/custom/{flow_id}")
async def get_custom(flow_id: str, services: Services = Depends(get_services)):
    graph = await services.repository.load_custom(flow_id)
    if graph is None:
        raise FlowNotFound(flow_id)
    return graph.to_dict()


@router.delete("/custom/{flow_id}")
async def delete_custom(flow_id: str, services: Services = Depends(get_services)):
    if not await services.repository.delete_custom(flow_id):
        raise FlowNotFound(flow_id)
    return {"ok": True}


@router.get("/custom/{flow_id}/export", response_class=PlainTextResponse)
async def export_custom(flow_id: str, services: Services = Depends(get_services)):
    graph = await services.repository.load_custom(flow_id)
    if graph is None:
        raise FlowNotFound(flow_id)
    return services.repository.export_flow(graph)


@router.get("/{flow_type}")
async def get_builtin(flow_type: str, services: Services = Depends(get_services)):
    graph = await services.repository.load_builtin(_builtin_type(flow_type))
    return graph.to_dict()


@router.get("/{flow_type}/export", response_class=PlainTextResponse)
async def export_builtin(flow_type: str, services: Services = Depends(get_services)):
    repo = services.repository
    graph = await repo.load_builtin(_builtin_type(flow_type))
    return repo.export_flow(graph)
