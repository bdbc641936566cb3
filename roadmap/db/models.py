"""Dataclass models representing DB rows.

These are plain Python objects – not ORM models.  The DB layer serialises /
deserialises to and from these types.

The ``metadata`` columns are schema-less JSON.  They are exposed here as
small dataclasses whose typed members cover the keys the engine relies on;
any other key is preserved untouched in ``extra`` so a round trip through
``from_dict`` / ``to_dict`` never loses data.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class NodeType(str, Enum):
    PHASE = "phase"
    STEP = "step"
    SUBSTEP = "substep"

    @property
    def level(self) -> int:
        """Tree depth: phase=1, step=2, substep=3."""
        return _LEVELS[self]

    @property
    def parent_type(self) -> Optional["NodeType"]:
        """The only type a node of this type may hang under (``None`` for phases)."""
        return _PARENT_TYPES[self]

    @property
    def child_type(self) -> Optional["NodeType"]:
        return _CHILD_TYPES[self]


_LEVELS = {NodeType.PHASE: 1, NodeType.STEP: 2, NodeType.SUBSTEP: 3}
_PARENT_TYPES = {
    NodeType.PHASE: None,
    NodeType.STEP: NodeType.PHASE,
    NodeType.SUBSTEP: NodeType.STEP,
}
_CHILD_TYPES = {
    NodeType.PHASE: NodeType.STEP,
    NodeType.STEP: NodeType.SUBSTEP,
    NodeType.SUBSTEP: None,
}


def is_valid_parent(parent_type: NodeType, child_type: NodeType) -> bool:
    """True for the two tree links: phase → step and step → substep."""
    return child_type.parent_type is parent_type


class NodeStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Metadata bags
# ---------------------------------------------------------------------------

class _MetadataBag:
    """Shared (de)serialisation for the JSON metadata columns.

    Subclasses declare ``_KEYS``: attribute name → stored JSON key.
    """

    _KEYS: ClassVar[dict[str, str]] = {}
    extra: dict[str, Any]

    @classmethod
    def from_dict(cls, raw: Optional[dict[str, Any]]):
        raw = dict(raw or {})
        known = {attr: raw.pop(key) for attr, key in cls._KEYS.items() if key in raw}
        return cls(**known, extra=raw)

    @classmethod
    def from_json(cls, text: Optional[str]):
        return cls.from_dict(json.loads(text or "{}"))

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        for attr, key in self._KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class NodeMetadata(_MetadataBag):
    phase_index: Optional[int] = None
    progress: Optional[int] = None
    estimated_time: Optional[str] = None
    checklist: Optional[list[Any]] = None
    resources: Optional[list[Any]] = None
    dependencies: Optional[list[Any]] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KEYS: ClassVar[dict[str, str]] = {
        "phase_index": "phaseIndex",
        "progress": "progress",
        "estimated_time": "estimatedTime",
        "checklist": "checklist",
        "resources": "resources",
        "dependencies": "dependencies",
    }


@dataclass
class ProjectMetadata(_MetadataBag):
    total_steps: Optional[int] = None
    completed_steps: Optional[int] = None
    progress_percentage: Optional[int] = None
    current_phase: Optional[str] = None
    custom_edges: list[dict[str, Any]] = field(default_factory=list)
    deleted_edges: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    _KEYS: ClassVar[dict[str, str]] = {
        "total_steps": "totalSteps",
        "completed_steps": "completedSteps",
        "progress_percentage": "progressPercentage",
        "current_phase": "currentPhase",
        "custom_edges": "customEdges",
        "deleted_edges": "deletedEdges",
    }


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

@dataclass
class Position:
    x: float
    y: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass
class Node:
    id: str
    project_id: str
    parent_id: Optional[str]
    title: str
    description: str
    type: NodeType
    order_index: int
    status: NodeStatus
    priority: Priority
    position: Position
    metadata: NodeMetadata
    created_at: int
    updated_at: int

    @property
    def level(self) -> int:
        return self.type.level

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "parent_id": self.parent_id,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "level": self.level,
            "order_index": self.order_index,
            "status": self.status.value,
            "priority": self.priority.value,
            "position": self.position.to_dict(),
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Project:
    id: str
    title: str
    jurusan: str
    timeline: str
    description: str
    metadata: ProjectMetadata
    created_at: int
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "jurusan": self.jurusan,
            "timeline": self.timeline,
            "description": self.description,
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Edge:
    """A derived canvas edge.  Never stored as a row.

    Custom edges are persisted inside ``ProjectMetadata.custom_edges`` using
    the camelCase dict produced by :meth:`to_dict`.
    """

    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    type: str = "smoothstep"
    animated: bool = False
    style: dict[str, Any] = field(default_factory=dict)
    label: Optional[str] = None
    label_style: Optional[dict[str, Any]] = None
    label_bg_style: Optional[dict[str, Any]] = None
    marker_start: Optional[Any] = None
    marker_end: Optional[Any] = None

    _KEYS: ClassVar[dict[str, str]] = {
        "source_handle": "sourceHandle",
        "target_handle": "targetHandle",
        "label": "label",
        "label_style": "labelStyle",
        "label_bg_style": "labelBgStyle",
        "marker_start": "markerStart",
        "marker_end": "markerEnd",
    }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Edge":
        return cls(
            id=raw.get("id") or f"e-{raw['source']}-{raw['target']}",
            source=raw["source"],
            target=raw["target"],
            type=raw.get("type") or "smoothstep",
            animated=bool(raw.get("animated", False)),
            style=dict(raw.get("style") or {}),
            **{attr: raw.get(key) for attr, key in cls._KEYS.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.type,
            "animated": self.animated,
            "style": self.style,
        }
        for attr, key in self._KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data
