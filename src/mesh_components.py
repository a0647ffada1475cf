"""
Component sets built from triangle meshes, plus small demo scenes.

Each planar facet of a mesh becomes one Component. Its triangles are
projected into an orthonormal (u, v) basis on the facet plane and unioned
with Shapely into one boundary polygon, stored as local vertices with
z = 0. The forward transform maps that local frame back onto the facet.
"""
import logging
from typing import List, Sequence

import numpy as np
import trimesh
from shapely.geometry import MultiPolygon, Polygon
from shapely.ops import unary_union

from components import Component, polygon_component
from vector_math import Transform, plane_basis

logger = logging.getLogger(__name__)


def _face_groups(mesh: trimesh.Trimesh) -> List[List[int]]:
    """Facets (coplanar adjacent faces) plus every face that is in none."""
    groups = [sorted(int(i) for i in facet) for facet in mesh.facets]
    grouped = {i for g in groups for i in g}
    groups.extend([i] for i in range(len(mesh.faces)) if i not in grouped)
    return groups


def project_faces_to_plane(
    mesh: trimesh.Trimesh,
    face_indices: Sequence[int],
    normal: np.ndarray,
    origin: np.ndarray,
) -> Polygon:
    """Union of the given faces projected onto the plane (origin, normal).

    Coordinates are in the ``plane_basis(normal)`` frame centred on
    ``origin``. Holes are dropped; a disconnected result keeps its
    largest piece.
    """
    u, v = plane_basis(normal)
    polygons = []
    for tri in mesh.triangles[list(face_indices)]:
        rel = tri - origin
        p = Polygon(np.column_stack([rel @ u, rel @ v]))
        if p.is_valid and p.area > 0:
            polygons.append(p)

    if not polygons:
        return Polygon()

    merged = unary_union(polygons)
    if isinstance(merged, MultiPolygon):
        merged = max(merged.geoms, key=lambda g: g.area)
    tolerance = 1e-9 * max(1.0, float(mesh.scale))
    merged = merged.simplify(tolerance, preserve_topology=True)
    if merged.is_empty:
        return Polygon()
    return Polygon(merged.exterior)


def components_from_mesh(
    mesh: trimesh.Trimesh,
    id_prefix: str = "facet",
    min_area: float = 0.0,
) -> List[Component]:
    """One component per planar facet of ``mesh``.

    Args:
        mesh: Input triangle mesh.
        id_prefix: Component ids are ``f"{id_prefix}_{index}"``.
        min_area: Facets with a projected area at or below this are skipped.
    """
    components: List[Component] = []
    for index, faces in enumerate(_face_groups(mesh)):
        normal = np.asarray(mesh.face_normals[faces[0]], dtype=float)
        origin = np.asarray(mesh.triangles[faces[0]][0], dtype=float)
        outline = project_faces_to_plane(mesh, faces, normal, origin)
        if outline.is_empty or outline.area <= min_area:
            logger.debug("Skipping facet %d (area %.3g)", index, outline.area)
            continue

        u, v = plane_basis(normal)
        coords = list(outline.exterior.coords)[:-1]
        components.append(polygon_component(
            f"{id_prefix}_{index}",
            [(float(x), float(y), 0.0) for x, y in coords],
            (0.0, 0.0, 1.0),
            transform=Transform.from_basis(origin, u, v, normal),
        ))

    logger.info(
        "Built %d components from %d mesh faces", len(components), len(mesh.faces),
    )
    return components


# ─── Demo scenes ─────────────────────────────────────────────────────────────

def create_demo_scene(size: float = 1.0) -> List[Component]:
    """Three squares in the XY, YZ and XZ planes meeting along the axes.

    Every pair shares an edge, so each pair classifies as finger/finger.
    """
    s = float(size)
    return [
        polygon_component(1, [(0, 0, 0), (s, 0, 0), (s, s, 0), (0, s, 0)], (0, 0, 1)),
        polygon_component(2, [(0, 0, 0), (0, s, 0), (0, s, s), (0, 0, s)], (1, 0, 0)),
        polygon_component(3, [(0, 0, 0), (s, 0, 0), (s, 0, s), (0, 0, s)], (0, 1, 0)),
    ]


def box_scene(size: float = 1.0) -> List[Component]:
    """The six faces of a cube centred on the origin."""
    mesh = trimesh.creation.box(extents=[size, size, size])
    return components_from_mesh(mesh, id_prefix="face")


DEMO_SCENES = {
    "axes": create_demo_scene,
    "box": box_scene,
}
