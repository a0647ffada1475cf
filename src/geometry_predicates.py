"""
Geometric predicates for pairs of planar components.

Everything is computed in 3D world space except the polygon work, which
happens in each component's local 2D plane frame:

1. ``are_parallel`` / ``are_coplanar`` compare world normals and plane offsets
2. ``components_intersect`` is a separating-axis broad phase
3. ``intersection_line`` solves the two plane equations for a common line
4. ``line_component_intersections`` clips that line edge by edge against a
   component's boundary polygon
5. ``segment_on_edge`` tests whether a local segment sits on the boundary
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
from shapely.geometry import Point

from components import Component, Segment
from detection_errors import NumericInstabilityError
from vector_math import EPSILON, Vector, dot, normalize

# Minimum |nA x nB| for a non-parallel pair before the plane solve is
# treated as ill-conditioned. Must exceed sqrt(2 * EPSILON), the largest
# |nA x nB| that the parallel test still accepts.
ILL_CONDITIONED_TOLERANCE = 1e-4


@dataclass(frozen=True)
class Line:
    """Infinite line ``origin + t * direction`` with a unit direction."""
    origin: Vector
    direction: Vector

    def point_at(self, t: float) -> Vector:
        return self.origin + self.direction * t

    def parameter_of(self, point: Vector) -> float:
        return dot(point - self.origin, self.direction)

    def as_segment(self) -> Segment:
        return Segment(self.origin, self.point_at(1.0))

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {"origin": self.origin.to_dict(), "direction": self.direction.to_dict()}


# ─── Plane relations ─────────────────────────────────────────────────────────

def are_parallel(a: Component, b: Component, eps: float = EPSILON) -> bool:
    """True iff the world normals are collinear (either orientation)."""
    d = dot(a.world_normal(), b.world_normal())
    return abs(abs(d) - 1.0) < eps


def are_coplanar(a: Component, b: Component, eps: float = EPSILON) -> bool:
    """True iff parallel and ``b``'s plane point lies on ``a``'s plane."""
    if not are_parallel(a, b, eps):
        return False
    offset = dot(b.plane_point() - a.plane_point(), a.world_normal())
    return abs(offset) < eps


def components_intersect(a: Component, b: Component, eps: float = EPSILON) -> bool:
    """Separating-axis broad phase on the two world-space vertex sets.

    Candidate axes are both normals, the in-plane edge normals of each
    polygon, and the cross products of every edge pair. If the projected
    intervals are disjoint on any axis the convex hulls are disjoint, so
    the components cannot touch. Touching intervals count as overlapping.
    """
    pa = a.world_vertices()
    pb = b.world_vertices()
    if len(pa) == 0 or len(pb) == 0:
        return False

    na = a.world_normal().as_array()
    nb = b.world_normal().as_array()
    edges_a = np.roll(pa, -1, axis=0) - pa
    edges_b = np.roll(pb, -1, axis=0) - pb

    axes = np.vstack([
        na[None, :],
        nb[None, :],
        np.cross(na, edges_a),
        np.cross(nb, edges_b),
        np.cross(edges_a[:, None, :], edges_b[None, :, :]).reshape(-1, 3),
    ])
    lengths = np.linalg.norm(axes, axis=1)
    axes = axes[lengths > eps] / lengths[lengths > eps][:, None]

    proj_a = pa @ axes.T
    proj_b = pb @ axes.T
    separated = (
        (proj_a.max(axis=0) < proj_b.min(axis=0) - eps)
        | (proj_b.max(axis=0) < proj_a.min(axis=0) - eps)
    )
    return not bool(np.any(separated))


def intersection_line(
    a: Component,
    b: Component,
    eps: float = EPSILON,
    ill_conditioned_tolerance: float = ILL_CONDITIONED_TOLERANCE,
) -> Line:
    """Line shared by the planes of two non-parallel components.

    The direction is ``normalize(nA x nB)``. The point is the solution of
    both plane equations plus ``dot(p, direction) = 0``, so it is the point
    of the line closest to the world origin.

    Raises:
        ValueError: if the components are parallel within ``eps``.
        NumericInstabilityError: if ``|nA x nB|`` is below
            ``ill_conditioned_tolerance`` or the system is singular.
    """
    if are_parallel(a, b, eps):
        raise ValueError(
            f"Components {a.id!r} and {b.id!r} are parallel; "
            "their planes do not meet in a single line"
        )

    na = a.world_normal().as_array()
    nb = b.world_normal().as_array()
    direction = np.cross(na, nb)
    length = float(np.linalg.norm(direction))
    if length < ill_conditioned_tolerance:
        raise NumericInstabilityError(
            a.id, b.id, f"|nA x nB| = {length:.3e} < {ill_conditioned_tolerance:.1e}",
        )

    system = np.vstack([na, nb, direction])
    rhs = np.array([
        float(na @ a.plane_point().as_array()),
        float(nb @ b.plane_point().as_array()),
        0.0,
    ])
    try:
        point = np.linalg.solve(system, rhs)
    except np.linalg.LinAlgError as exc:
        raise NumericInstabilityError(a.id, b.id, str(exc)) from exc
    if not np.all(np.isfinite(point)):
        raise NumericInstabilityError(a.id, b.id, "non-finite line point")

    return Line(
        origin=Vector.from_array(point),
        direction=normalize(Vector.from_array(direction / length)),
    )


# ─── Line / polygon clipping ─────────────────────────────────────────────────

def _cross2(a: np.ndarray, b: np.ndarray) -> float:
    return float(a[0] * b[1] - a[1] * b[0])


def _edge_crossings(
    origin: np.ndarray,
    direction: np.ndarray,
    ring: np.ndarray,
    eps: float,
) -> List[float]:
    """Line parameters where ``origin + t * direction`` meets each edge.

    An edge collinear with the line contributes both of its endpoints.
    """
    ts: List[float] = []
    d_len = float(np.linalg.norm(direction))
    dd = d_len * d_len
    for a, b in zip(ring[:-1], ring[1:]):
        edge = b - a
        e_len = float(np.linalg.norm(edge))
        if e_len < eps:
            continue
        w = a - origin
        denom = _cross2(direction, edge)
        if abs(denom) <= eps * d_len * e_len:
            # Parallel edge; only a collinear one touches the line
            if abs(_cross2(w, direction)) <= eps * d_len:
                ts.append(float(w @ direction) / dd)
                ts.append(float((b - origin) @ direction) / dd)
            continue
        s = _cross2(w, direction) / denom
        s_tol = eps / e_len
        if -s_tol <= s <= 1.0 + s_tol:
            ts.append(_cross2(w, edge) / denom)
    return ts


def _unique_sorted(values: List[float], eps: float) -> List[float]:
    result: List[float] = []
    for t in sorted(values):
        if not result or t - result[-1] > eps:
            result.append(t)
    return result


def clip_line_to_polygon(
    origin: np.ndarray,
    direction: np.ndarray,
    polygon,
    eps: float = EPSILON,
) -> List[Tuple[float, float]]:
    """Parameter intervals of a 2D line that lie inside or on ``polygon``.

    Edge-by-edge crossing test: collect every crossing parameter, then keep
    each span between consecutive crossings whose midpoint is covered by
    the polygon. Adjacent kept spans are merged. Single touch points
    (zero-length spans) are dropped.
    """
    ring = np.asarray(polygon.exterior.coords, dtype=float)
    crossings = _unique_sorted(_edge_crossings(origin, direction, ring, eps), eps)
    if len(crossings) < 2:
        return []

    intervals: List[Tuple[float, float]] = []
    for t0, t1 in zip(crossings[:-1], crossings[1:]):
        mid = origin + direction * ((t0 + t1) / 2.0)
        if polygon.distance(Point(mid[0], mid[1])) > eps:
            continue
        if intervals and abs(intervals[-1][1] - t0) <= eps:
            intervals[-1] = (intervals[-1][0], t1)
        else:
            intervals.append((t0, t1))
    return intervals


def line_component_intersections(
    line: Line,
    component: Component,
    eps: float = EPSILON,
) -> List[Segment]:
    """World-space sub-segments of ``line`` inside ``component``'s polygon.

    The line is brought into the component's local frame through its
    inverse transform and clipped against the boundary polygon there.
    It is expected to lie in the component's plane, as the line from
    ``intersection_line`` does. Sub-segments are ordered along
    ``line.direction``; a convex polygon yields at most one.

    Each Segment's start and end are the boundary-crossing points that
    bound an inside span, so a convex polygon gives the 0 or 2 crossings
    as either ``[]`` or ``[Segment(enter, exit)]``. A line that only
    touches the boundary at a single point gives ``[]``.
    """
    inverse = component.inverse_transform
    origin_local = inverse.transform_point(line.origin)
    direction_local = inverse.transform_direction(line.direction)

    frame_origin, u, v = component.local_basis()
    rel = origin_local.as_array() - frame_origin
    d_local = direction_local.as_array()
    origin_2d = np.array([rel @ u, rel @ v])
    direction_2d = np.array([d_local @ u, d_local @ v])
    if np.linalg.norm(direction_2d) < eps:
        return []

    polygon = component.outline_2d()
    if polygon.is_empty:
        return []

    # The affine map keeps the parametrization, so local t is world t.
    segments = []
    for t0, t1 in clip_line_to_polygon(origin_2d, direction_2d, polygon, eps):
        segment = Segment(line.point_at(t0), line.point_at(t1))
        if segment.length > eps:
            segments.append(segment)
    return segments


def overlap_segment(
    line: Line,
    first: Segment,
    second: Segment,
    eps: float = EPSILON,
) -> Optional[Segment]:
    """Common part of two segments lying on ``line``, or None if disjoint."""
    a0, a1 = sorted((line.parameter_of(first.start), line.parameter_of(first.end)))
    b0, b1 = sorted((line.parameter_of(second.start), line.parameter_of(second.end)))
    t0 = max(a0, b0)
    t1 = min(a1, b1)
    if t1 - t0 <= eps:
        return None
    return Segment(line.point_at(t0), line.point_at(t1))


# ─── Boundary test ───────────────────────────────────────────────────────────

def segment_on_edge(segment: Segment, component: Component, eps: float = EPSILON) -> bool:
    """True iff both endpoints of a local-frame segment lie on the boundary.

    "On the boundary" means the distance to the nearest boundary edge is
    below ``eps``; points strictly inside the polygon do not qualify.
    """
    polygon = component.outline_2d()
    if polygon.is_empty:
        return False
    boundary = polygon.exterior
    endpoints = component.to_plane_2d(
        np.array([segment.start.as_array(), segment.end.as_array()])
    )
    return all(boundary.distance(Point(p[0], p[1])) < eps for p in endpoints)
