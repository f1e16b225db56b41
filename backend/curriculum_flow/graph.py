"""
Edge state behind the prerequisite graph.

The visual edge list is a projection of the prerequisite list plus per-edge
routing (an ordered list of waypoints the path bends through). Colors follow
completion: an edge whose source is completed is satisfied, a co-requisite with
an open source is pending, anything else is unsatisfied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .auth import Subject
from .completion import CompletionEngine
from .config import PERIOD_WIDTH, ROW_HEIGHT
from .errors import EdgeNotFound, ValidationFailed
from .persistence import ROUTINGS, PersistenceAdapter, require_login
from .schemas import CurriculumData, Prerequisite, PrerequisiteKind

logger = logging.getLogger(__name__)


class EdgeState(str, Enum):
    SATISFIED = "satisfied"
    COREQUISITE_PENDING = "corequisite_pending"
    UNSATISFIED = "unsatisfied"


EDGE_COLORS = {
    EdgeState.SATISFIED: "#22C55E",
    EdgeState.COREQUISITE_PENDING: "#3B82F6",
    EdgeState.UNSATISFIED: "#EF4444",
}


def edge_id(from_id: str, to_id: str) -> str:
    return f"{from_id}-{to_id}"


def edge_state(prerequisite: Prerequisite, completed: set[str]) -> EdgeState:
    if prerequisite.from_id in completed:
        return EdgeState.SATISFIED
    if prerequisite.kind == PrerequisiteKind.COREQUISITE:
        return EdgeState.COREQUISITE_PENDING
    return EdgeState.UNSATISFIED


@dataclass
class EdgeView:
    prerequisite: Prerequisite
    routing: str = "step"
    waypoints: list[dict] = field(default_factory=list)
    state: EdgeState = EdgeState.UNSATISFIED

    @property
    def id(self) -> str:
        return edge_id(*self.prerequisite.key)

    @property
    def color(self) -> str:
        return EDGE_COLORS[self.state]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.prerequisite.from_id,
            "target": self.prerequisite.to_id,
            "kind": int(self.prerequisite.kind),
            "state": self.state.value,
            "color": self.color,
            "dashed": self.prerequisite.kind == PrerequisiteKind.FLEXIBLE,
            "routing": self.routing,
            "waypoints": [dict(p) for p in self.waypoints],
        }


class GraphView:
    def __init__(self, adapter: PersistenceAdapter, data: CurriculumData, routes: Optional[dict] = None):
        self.adapter = adapter
        self.data = data
        self.completed = set(data.completed_courses)
        routes = routes or {}
        self.edges: dict[tuple[str, str], EdgeView] = {}
        for p in data.prerequisites:
            route = routes.get(p.key) or {}
            self.edges[p.key] = EdgeView(p, routing=route.get("routing") or "step", waypoints=list(route.get("waypoints") or []))
        self.recolor(self.completed)

    def recolor(self, completed) -> None:
        self.completed = set(completed)
        for edge in self.edges.values():
            edge.state = edge_state(edge.prerequisite, self.completed)

    def edge_list(self) -> list[EdgeView]:
        return list(self.edges.values())

    def nodes(self) -> list[dict]:
        engine = CompletionEngine(self.data.with_completions(self.completed))
        return [
            {
                "id": c.id,
                "name": c.name,
                "type": c.type,
                "position": {"x": (c.period - 1) * PERIOD_WIDTH, "y": (c.row - 1) * ROW_HEIGHT},
                "completed": engine.is_completed(c.id),
                "eligible": engine.is_eligible(c.id),
            }
            for c in self.data.courses
        ]

    def find(self, eid: str) -> EdgeView:
        for edge in self.edges.values():
            if edge.id == eid:
                return edge
        raise EdgeNotFound(f"edge {eid} not found")

    def connect(self, subject: Subject, from_id: str, to_id: str, kind: int = PrerequisiteKind.HARD) -> Optional[EdgeView]:
        """Anonymous subjects cannot draw edges; their attempts are ignored."""
        if not subject.authenticated:
            logger.info("Ignoring edge %s -> %s drawn without login", from_id, to_id)
            return None
        existing = self.edges.get((from_id, to_id))
        if existing is not None:
            return existing
        if self.adapter.add_prerequisite(subject, from_id, to_id, kind):
            edge = EdgeView(Prerequisite(from_id=from_id, to_id=to_id, kind=kind))
            self.adapter.save_edge_route(subject, from_id, to_id, edge.routing, edge.waypoints)
        else:
            edge = self._load_stored(from_id, to_id, kind)
        edge.state = edge_state(edge.prerequisite, self.completed)
        self.edges[edge.prerequisite.key] = edge
        self.data = self.data.with_prerequisite(edge.prerequisite)
        return edge

    def _load_stored(self, from_id: str, to_id: str, kind: int) -> EdgeView:
        """The edge was added elsewhere after this view was built; keep its stored kind and route."""
        stored = next((p for p in self.adapter.fetch_catalog().prerequisites if p.key == (from_id, to_id)), None)
        prerequisite = stored or Prerequisite(from_id=from_id, to_id=to_id, kind=kind)
        route = self.adapter.fetch_edge_routes().get((from_id, to_id)) or {}
        return EdgeView(prerequisite, routing=route.get("routing") or "step", waypoints=list(route.get("waypoints") or []))

    def disconnect(self, subject: Subject, from_id: str, to_id: str) -> bool:
        require_login(subject)
        removed = self.adapter.remove_prerequisite(subject, from_id, to_id)
        self.edges.pop((from_id, to_id), None)
        self.data = self.data.without_prerequisite(from_id, to_id)
        return removed

    def _save(self, subject: Subject, edge: EdgeView) -> EdgeView:
        self.adapter.save_edge_route(subject, edge.prerequisite.from_id, edge.prerequisite.to_id, edge.routing, edge.waypoints)
        return edge

    def set_routing(self, subject: Subject, eid: str, routing: str) -> EdgeView:
        require_login(subject)
        if routing not in ROUTINGS:
            raise ValidationFailed(f"routing must be one of {', '.join(ROUTINGS)}")
        edge = self.find(eid)
        edge.routing = routing
        return self._save(subject, edge)

    def add_waypoint(self, subject: Subject, eid: str, index: int, x: float, y: float) -> EdgeView:
        require_login(subject)
        edge = self.find(eid)
        index = max(0, min(index, len(edge.waypoints)))
        edge.waypoints.insert(index, {"x": x, "y": y})
        return self._save(subject, edge)

    def move_waypoint(self, subject: Subject, eid: str, index: int, x: float, y: float) -> EdgeView:
        require_login(subject)
        edge = self.find(eid)
        if not 0 <= index < len(edge.waypoints):
            raise ValidationFailed(f"edge {eid} has no waypoint {index}")
        edge.waypoints[index] = {"x": x, "y": y}
        return self._save(subject, edge)

    def remove_waypoint(self, subject: Subject, eid: str, index: int) -> EdgeView:
        require_login(subject)
        edge = self.find(eid)
        if not 0 <= index < len(edge.waypoints):
            raise ValidationFailed(f"edge {eid} has no waypoint {index}")
        del edge.waypoints[index]
        return self._save(subject, edge)
