# compass/domain/flows/repository.py
"""
Where flow graphs come from and where user-authored ones go.

Built-in flows:
    1. storage override  flow_<flow id>       (an updated built-in)
    2. candidate files   <dir>/<type>.json, <dir>/flows/<type>.json, <dir>/<type>_flow.json
                         for every FLOW_DIRS entry, then the bundled resources
FlowNotFound is raised only after every candidate has failed.

Custom flows live under custom_flow_<id>. Anything written to storage has
passed full graph validation first; a rejected import leaves storage untouched.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from compass.adapters.storage import KeyValueStore
from compass.core.config import get_settings
from compass.core.errors import FlowNotFound, ImportFailed, StorageError, ValidationFailed
from compass.domain.flows.fallback import FALLBACK_FLOW_ID, fallback_graph
from compass.domain.flows.graph import FlowGraph, FlowType, dump_flow, parse_flow
from compass.domain.flows.validator import FlowValidator, ValidationIssue, errors_only

logger = logging.getLogger(__name__)

__all__ = ["BUNDLED_FLOW_DIR", "CUSTOM_PREFIX", "BUILTIN_PREFIX", "FlowRepository"]

BUNDLED_FLOW_DIR = Path(__file__).resolve().parents[2] / "resources" / "flows"
CUSTOM_PREFIX = "custom_flow_"
BUILTIN_PREFIX = "flow_"


def custom_key(flow_id: str) -> str:
    return f"{CUSTOM_PREFIX}{flow_id}"


def builtin_key(flow_id: str) -> str:
    return f"{BUILTIN_PREFIX}{flow_id}"


class FlowRepository:
    def __init__(
        self,
        store: KeyValueStore,
        validator: Optional[FlowValidator] = None,
        flow_dirs: Optional[Sequence[str]] = None,
    ):
        self.store = store
        self.validator = validator or FlowValidator()
        if flow_dirs is None:
            flow_dirs = get_settings().FLOW_DIRS
        self.search_dirs: List[Path] = [Path(d) for d in flow_dirs] + [BUNDLED_FLOW_DIR]

    # ------------------------------------------------------------------
    # Built-in flows
    # ------------------------------------------------------------------
    def candidate_paths(self, flow_type: FlowType) -> List[Path]:
        name = flow_type.value
        out: List[Path] = []
        for d in self.search_dirs:
            out += [d / f"{name}.json", d / "flows" / f"{name}.json", d / f"{name}_flow.json"]
        return out

    def available_types(self) -> List[FlowType]:
        return [
            t for t in FlowType
            if t is not FlowType.CUSTOM and any(p.is_file() for p in self.candidate_paths(t))
        ]

    async def load_builtin(self, flow_type: FlowType) -> FlowGraph:
        """Raises FlowNotFound once the override and every candidate file have failed."""
        override = await self._read_stored(builtin_key(flow_type.flow_id))
        if override is not None:
            return override

        tried: List[str] = []
        for path in self.candidate_paths(flow_type):
            tried.append(str(path))
            if not path.is_file():
                continue
            try:
                text = await asyncio.to_thread(path.read_text, encoding="utf-8")
                return parse_flow(text)
            except (OSError, ImportFailed) as e:
                logger.warning("Could not load flow file %s: %s", path, e)
        raise FlowNotFound(flow_type.value, tried)

    async def update_builtin(self, graph: FlowGraph) -> FlowGraph:
        self._require_valid(graph)
        await self.store.put(builtin_key(graph.id), dump_flow(graph))
        return graph

    # ------------------------------------------------------------------
    # Custom flows
    # ------------------------------------------------------------------
    async def save_custom(self, graph: FlowGraph) -> FlowGraph:
        self._require_valid(graph)
        await self.store.put(custom_key(graph.id), dump_flow(graph))
        return graph

    async def load_custom(self, flow_id: str) -> Optional[FlowGraph]:
        return await self._read_stored(custom_key(flow_id))

    async def delete_custom(self, flow_id: str) -> bool:
        key = custom_key(flow_id)
        if await self.store.get(key) is None:
            return False
        await self.store.delete(key)
        return True

    async def list_custom(self) -> List[FlowGraph]:
        out: List[FlowGraph] = []
        for key in await self.store.list_keys(CUSTOM_PREFIX):
            graph = await self._read_stored(key)
            if graph is not None:
                out.append(graph)
        return out

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------
    def export_flow(self, graph: FlowGraph) -> str:
        return dump_flow(graph)

    async def import_flow(self, data: str) -> FlowGraph:
        """Decode, validate, save. ImportFailed / ValidationFailed leave storage as it was."""
        graph = parse_flow(data)
        return await self.save_custom(graph)

    # ------------------------------------------------------------------
    # Lookup by id (session resumption)
    # ------------------------------------------------------------------
    async def load_by_id(self, flow_id: str) -> FlowGraph:
        custom = await self.load_custom(flow_id)
        if custom is not None:
            return custom
        for flow_type in FlowType:
            if flow_type.flow_id == flow_id:
                return await self.load_builtin(flow_type)
        if flow_id == FALLBACK_FLOW_ID:
            return fallback_graph()
        # built-in files may carry ids that don't follow <type>_flow
        for flow_type in self.available_types():
            try:
                graph = await self.load_builtin(flow_type)
            except FlowNotFound:
                continue
            if graph.id == flow_id:
                return graph
        raise FlowNotFound(flow_id)

    async def statistics(self) -> Dict[str, object]:
        custom = await self.list_custom()
        by_type: Dict[str, int] = {}
        for g in custom:
            by_type[g.flow_type] = by_type.get(g.flow_type, 0) + 1
        builtin = self.available_types()
        return {
            "builtin_flows": len(builtin),
            "custom_flows": len(custom),
            "total_flows": len(builtin) + len(custom),
            "custom_by_type": by_type,
            "builtin_types": [t.value for t in builtin],
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def validate(self, graph: FlowGraph) -> List[ValidationIssue]:
        return self.validator.validate(graph)

    def _require_valid(self, graph: FlowGraph) -> None:
        errors = errors_only(self.validator.validate(graph))
        if errors:
            raise ValidationFailed(errors)

    async def _read_stored(self, key: str) -> Optional[FlowGraph]:
        """Stored graph or None. Unreadable entries are logged and skipped."""
        try:
            raw = await self.store.get(key)
        except StorageError as e:
            logger.warning("Flow storage unavailable for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return parse_flow(raw)
        except ImportFailed as e:
            logger.warning("Stored flow %s is not decodable: %s", key, e)
            return None
