"""
Planar component model.

A Component is a flat polygon described in its own local frame: an ordered
vertex list, a unit normal, and a forward/inverse transform into the shared
world frame. Detection appends classified joints to one of three buckets
(finger, hole, slot); ``reset`` clears them without touching geometry.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import Polygon

from vector_math import Transform, Vector, normalize, plane_basis

ComponentId = Hashable


class JointType(Enum):
    """Joint kinds assigned to a classified intersection."""
    FINGER = "finger"
    HOLE = "hole"
    SLOT = "slot"


@dataclass(frozen=True)
class Segment:
    """Bounded line between two points."""
    start: Vector = field(default_factory=Vector)
    end: Vector = field(default_factory=Vector)

    @property
    def length(self) -> float:
        return float(np.linalg.norm(self.end.as_array() - self.start.as_array()))

    @property
    def midpoint(self) -> Vector:
        return (self.start + self.end) * 0.5

    def transformed(self, transform: Transform) -> "Segment":
        return Segment(
            transform.transform_point(self.start),
            transform.transform_point(self.end),
        )

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}


@dataclass(frozen=True)
class Joint:
    """A classified intersection on one component.

    ``segment`` is in the owning component's local frame. ``partner_id``
    names the component holding the matching joint.
    """
    joint_type: JointType
    segment: Segment
    partner_id: Optional[ComponentId] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.joint_type.value,
            "segment": self.segment.to_dict(),
            "partner": self.partner_id,
        }


@dataclass(frozen=True)
class JointCounts:
    finger: int = 0
    hole: int = 0
    slot: int = 0

    @property
    def total(self) -> int:
        return self.finger + self.hole + self.slot

    def __add__(self, other: "JointCounts") -> "JointCounts":
        return JointCounts(
            finger=self.finger + other.finger,
            hole=self.hole + other.hole,
            slot=self.slot + other.slot,
        )

    def to_dict(self) -> Dict[str, int]:
        return {"finger": self.finger, "hole": self.hole, "slot": self.slot}


@dataclass
class Component:
    """
    A planar face taking part in joint detection.

    Attributes:
        id: Unique identifier, stable for the lifetime of a run
        vertices: Boundary polygon in local coordinates (>= 3, simple, planar)
        normal: Unit normal in local coordinates (zero = undefined)
        transform: Local -> world
        inverse_transform: World -> local
        fingers, holes, slots: Joint buckets filled by detection
    """
    id: ComponentId
    vertices: List[Vector] = field(default_factory=list)
    normal: Vector = field(default_factory=lambda: Vector(0.0, 0.0, 1.0))
    transform: Transform = field(default_factory=Transform.identity)
    inverse_transform: Transform = field(default_factory=Transform.identity)
    fingers: List[Joint] = field(default_factory=list)
    holes: List[Joint] = field(default_factory=list)
    slots: List[Joint] = field(default_factory=list)

    # ─── Build ──────────────────────────────────────────────────────────────

    def add_vertex(self, x: float, y: float, z: float) -> "Component":
        self.vertices.append(Vector(float(x), float(y), float(z)))
        return self

    def set_normal(self, x: float, y: float, z: float) -> "Component":
        """Store the normalized normal; near-zero input stores the zero vector."""
        self.normal = normalize(Vector(float(x), float(y), float(z)))
        return self

    def set_transform(
        self,
        forward: Transform,
        inverse: Optional[Transform] = None,
    ) -> "Component":
        """Set the local -> world transform, deriving the inverse if omitted."""
        self.transform = forward
        self.inverse_transform = inverse if inverse is not None else forward.inverse()
        return self

    # ─── Joints ─────────────────────────────────────────────────────────────

    def _bucket(self, joint_type: JointType) -> List[Joint]:
        if joint_type is JointType.FINGER:
            return self.fingers
        if joint_type is JointType.HOLE:
            return self.holes
        if joint_type is JointType.SLOT:
            return self.slots
        raise ValueError(f"Unknown joint type: {joint_type!r}")

    def add_joint(
        self,
        joint_type: JointType,
        segment: Segment,
        partner_id: Optional[ComponentId] = None,
    ) -> Joint:
        joint = Joint(joint_type=joint_type, segment=segment, partner_id=partner_id)
        self._bucket(joint_type).append(joint)
        return joint

    def joints(self, joint_type: Optional[JointType] = None) -> List[Joint]:
        if joint_type is not None:
            return list(self._bucket(joint_type))
        return [*self.fingers, *self.holes, *self.slots]

    def joint_counts(self) -> JointCounts:
        return JointCounts(
            finger=len(self.fingers),
            hole=len(self.holes),
            slot=len(self.slots),
        )

    def reset(self) -> None:
        self.fingers.clear()
        self.holes.clear()
        self.slots.clear()

    # ─── Geometry ───────────────────────────────────────────────────────────

    def local_vertices(self) -> np.ndarray:
        """(N, 3) vertex array in local coordinates."""
        if not self.vertices:
            return np.zeros((0, 3))
        return np.array([v.as_array() for v in self.vertices])

    def world_vertices(self) -> np.ndarray:
        """(N, 3) vertex array in world coordinates."""
        return self.transform.transform_points(self.local_vertices())

    def world_normal(self) -> Vector:
        """Normal mapped to the world frame by the inverse-transpose."""
        linear_inv = self.inverse_transform.matrix[:3, :3]
        return normalize(Vector.from_array(linear_inv.T @ self.normal.as_array()))

    def plane_point(self) -> Vector:
        """A world-space point on the component's plane."""
        if not self.vertices:
            raise ValueError(f"Component {self.id!r} has no vertices")
        return self.transform.transform_point(self.vertices[0])

    def local_basis(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(origin, u, v) of the 2D frame in the local plane."""
        if not self.vertices:
            raise ValueError(f"Component {self.id!r} has no vertices")
        u, v = plane_basis(self.normal.as_array())
        return self.vertices[0].as_array(), u, v

    def to_plane_2d(self, local_points: np.ndarray) -> np.ndarray:
        """Project (N, 3) local points into the (u, v) plane frame."""
        origin, u, v = self.local_basis()
        rel = np.asarray(local_points, dtype=float).reshape(-1, 3) - origin
        return np.column_stack([rel @ u, rel @ v])

    def outline_2d(self) -> Polygon:
        """Boundary polygon in the (u, v) plane frame."""
        if len(self.vertices) < 3:
            return Polygon()
        return Polygon(self.to_plane_2d(self.local_vertices()))

    def planarity_error(self) -> float:
        """Largest distance of a vertex from the plane through vertex 0."""
        pts = self.local_vertices()
        if len(pts) == 0:
            return 0.0
        n = normalize(self.normal).as_array()
        return float(np.max(np.abs((pts - pts[0]) @ n)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "vertices": [v.to_dict() for v in self.vertices],
            "normal": self.normal.to_dict(),
            "transform": self.transform.to_list(),
            "fingers": [j.to_dict() for j in self.fingers],
            "holes": [j.to_dict() for j in self.holes],
            "slots": [j.to_dict() for j in self.slots],
        }


ComponentSet = Sequence[Component]


# ─── Build / read API ────────────────────────────────────────────────────────

def create_component(component_id: ComponentId) -> Component:
    return Component(id=component_id)


def add_vertex(component: Component, x: float, y: float, z: float) -> Component:
    return component.add_vertex(x, y, z)


def set_normal(component: Component, x: float, y: float, z: float) -> Component:
    return component.set_normal(x, y, z)


def polygon_component(
    component_id: ComponentId,
    points: Sequence[Tuple[float, float, float]],
    normal: Tuple[float, float, float],
    transform: Optional[Transform] = None,
) -> Component:
    """Build a component from a point list and normal in one call."""
    component = create_component(component_id)
    for x, y, z in points:
        component.add_vertex(x, y, z)
    component.set_normal(*normal)
    if transform is not None:
        component.set_transform(transform)
    return component


def joint_counts(component: Component) -> JointCounts:
    return component.joint_counts()


def reset(components: ComponentSet) -> None:
    """Clear every joint bucket; vertices, normals and transforms are kept."""
    for component in components:
        component.reset()