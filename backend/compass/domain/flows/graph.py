# compass/domain/flows/graph.py
"""
Immutable flow graph.

A FlowGraph is built from a FlowDocument (the JSON wire model) and can be
dumped back to one. Node order from the document is preserved so that
encode -> decode -> encode is byte-identical.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from compass.core.errors import ImportFailed
from compass.domain.flows.actions import NodeAction
from compass.schemas.flow import FlowDocument, FlowMetadataDoc, NodeDoc, OptionDoc

__all__ = [
    "FlowType",
    "NodeKind",
    "FlowOption",
    "FlowNode",
    "FlowGraph",
    "parse_flow",
    "dump_flow",
]


class FlowType(str, Enum):
    PANIC = "panic"
    POLICE = "police"
    DOMESTIC_VIOLENCE = "domestic_violence"
    SUICIDE = "suicide"
    MEDICAL = "medical"
    DISASTER = "disaster"
    CUSTOM = "custom"

    @property
    def flow_id(self) -> str:
        return f"{self.value}_flow"

    @classmethod
    def parse(cls, raw: str) -> "FlowType":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.CUSTOM


class NodeKind(str, Enum):
    MESSAGE = "message"
    DECISION = "decision"
    TECHNIQUE = "technique"
    TERMINAL = "terminal"

    @classmethod
    def parse(cls, raw: str) -> "NodeKind":
        return _KIND_ALIASES.get((raw or "").strip().lower(), cls.MESSAGE)


# legacy node "type" strings seen in shipped flows
_KIND_ALIASES: Dict[str, NodeKind] = {
    "message": NodeKind.MESSAGE,
    "conversation": NodeKind.MESSAGE,
    "question": NodeKind.MESSAGE,
    "resource": NodeKind.MESSAGE,
    "decision": NodeKind.DECISION,
    "technique": NodeKind.TECHNIQUE,
    "exercise": NodeKind.TECHNIQUE,
    "action": NodeKind.TECHNIQUE,
    "terminal": NodeKind.TERMINAL,
    "end": NodeKind.TERMINAL,
    "completion": NodeKind.TERMINAL,
}


@dataclass(frozen=True)
class FlowOption:
    text: str
    next_node_id: str

    def to_dict(self) -> dict:
        return {"text": self.text, "next_node": self.next_node_id}


@dataclass(frozen=True)
class FlowNode:
    id: str
    kind: NodeKind = NodeKind.MESSAGE
    messages: Tuple[str, ...] = ()
    options: Tuple[FlowOption, ...] = ()
    auto_next_id: Optional[str] = None
    action: Optional[NodeAction] = None
    delay: Optional[float] = None
    raw_type: Optional[str] = None
    has_options_field: bool = field(default=False, compare=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        """No way out: no options and no auto-advance."""
        return not self.options and not self.auto_next_id

    def referenced_ids(self) -> List[str]:
        """Every target this node names, including an auto-next shadowed by options."""
        out = [o.next_node_id for o in self.options]
        if self.auto_next_id:
            out.append(self.auto_next_id)
        return out

    def successor_ids(self) -> List[str]:
        """Targets the runner can actually take (options win over auto-next)."""
        if self.options:
            return [o.next_node_id for o in self.options]
        return [self.auto_next_id] if self.auto_next_id else []

    @classmethod
    def from_doc(cls, doc: NodeDoc) -> "FlowNode":
        return cls(
            id=doc.id,
            kind=NodeKind.parse(doc.type),
            messages=tuple(doc.messages),
            options=tuple(FlowOption(o.text, o.next_node) for o in (doc.options or [])),
            auto_next_id=doc.next_node or None,
            action=NodeAction.parse(doc.action),
            delay=doc.delay,
            raw_type=doc.type,
            has_options_field=doc.options is not None,
        )

    def to_doc(self) -> NodeDoc:
        options = None
        if self.options or self.has_options_field:
            options = [OptionDoc(text=o.text, next_node=o.next_node_id) for o in self.options]
        return NodeDoc(
            id=self.id,
            type=self.raw_type or self.kind.value,
            messages=list(self.messages),
            options=options,
            action=self.action.to_wire() if self.action else None,
            next_node=self.auto_next_id,
            delay=self.delay,
        )


@dataclass(frozen=True)
class FlowGraph:
    id: str
    title: str
    start_node_id: Optional[str]
    node_list: Tuple[FlowNode, ...] = ()
    flow_type: str = FlowType.CUSTOM.value
    description: str = ""
    version: str = "1.0"
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)
    _index: Mapping[str, FlowNode] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: Dict[str, FlowNode] = {}
        for node in self.node_list:
            # first definition wins; duplicates are a validation error
            index.setdefault(node.id, node)
        object.__setattr__(self, "_index", MappingProxyType(index))

    @property
    def nodes(self) -> Mapping[str, FlowNode]:
        return self._index

    @property
    def start_node(self) -> Optional[FlowNode]:
        return self._index.get(self.start_node_id) if self.start_node_id else None

    def get(self, node_id: Optional[str]) -> Optional[FlowNode]:
        if not node_id:
            return None
        return self._index.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def __iter__(self) -> Iterator[FlowNode]:
        return iter(self.node_list)

    def __len__(self) -> int:
        return len(self.node_list)

    @property
    def tags(self) -> List[str]:
        return list(self.metadata.get("tags") or [])

    # ---- wire conversion ----
    @classmethod
    def from_document(cls, doc: FlowDocument) -> "FlowGraph":
        return cls(
            id=doc.id,
            title=doc.title,
            start_node_id=doc.start_node or None,
            node_list=tuple(FlowNode.from_doc(n) for n in doc.nodes),
            flow_type=doc.type,
            description=doc.description,
            version=doc.version,
            metadata=MappingProxyType(doc.metadata.model_dump(by_alias=True)),
        )

    def to_document(self) -> FlowDocument:
        return FlowDocument(
            id=self.id,
            type=self.flow_type,
            title=self.title,
            description=self.description,
            version=self.version,
            start_node=self.start_node_id,
            nodes=[n.to_doc() for n in self.node_list],
            metadata=FlowMetadataDoc.model_validate(dict(self.metadata)),
        )

    def to_dict(self) -> dict:
        doc = self.to_document()
        data = doc.model_dump(by_alias=True, exclude_none=True)
        # metadata extras are user data; nulls there are kept
        data["metadata"] = doc.metadata.model_dump(by_alias=True)
        return data


def parse_flow(data: Union[str, bytes, Mapping[str, Any]]) -> FlowGraph:
    """Decode flow JSON (text or already-parsed mapping). Raises ImportFailed."""
    try:
        if isinstance(data, (str, bytes)):
            doc = FlowDocument.model_validate_json(data)
        else:
            doc = FlowDocument.model_validate(data)
    except ValidationError as e:
        raise ImportFailed(e) from e
    return FlowGraph.from_document(doc)


def dump_flow(graph: FlowGraph) -> str:
    """Pretty-printed JSON, stable across round trips."""
    return json.dumps(graph.to_dict(), indent=2, ensure_ascii=False)
