from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OptionDoc(_Wire):
    text: str
    next_node: str = Field(..., alias="nextNode")


class ActionDoc(_Wire):
    type: str
    parameters: Dict[str, str] = Field(default_factory=dict)


class NodeDoc(_Wire):
    id: str = ""
    type: str = "message"
    messages: List[str] = Field(default_factory=list)
    options: Optional[List[OptionDoc]] = None
    action: Optional[Union[str, ActionDoc]] = None
    next_node: Optional[str] = Field(default=None, alias="nextNode")
    delay: Optional[float] = None


class FlowMetadataDoc(_Wire):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tags: List[str] = Field(default_factory=list)
    difficulty: str = "easy"
    estimated_duration: int = Field(default=180, alias="estimatedDuration")


class FlowDocument(_Wire):
    """
    On-disk / over-the-wire flow definition.

    Everything is optional at this layer so a structurally broken document
    still decodes and reaches the validator, which reports every problem at once
    (missing start node, dangling targets, ...).
    """

    id: str = ""
    type: str = "custom"
    title: str = ""
    description: str = ""
    version: str = "1.0"
    start_node: Optional[str] = Field(default=None, alias="startNode")
    nodes: List[NodeDoc] = Field(default_factory=list)
    metadata: FlowMetadataDoc = Field(default_factory=FlowMetadataDoc)
