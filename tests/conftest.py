"""
Shared test fixtures for joint detection tests.
"""
import sys
from pathlib import Path

import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from components import Component, polygon_component
from mesh_components import box_scene, create_demo_scene


def xy_square(component_id, x0=0.0, y0=0.0, size=1.0, z=0.0) -> Component:
    """Axis-aligned square in the plane z = const, normal +Z."""
    x1, y1 = x0 + size, y0 + size
    return polygon_component(
        component_id,
        [(x0, y0, z), (x1, y0, z), (x1, y1, z), (x0, y1, z)],
        (0, 0, 1),
    )


def xz_rect(component_id, x0, x1, z0, z1, y=0.0) -> Component:
    """Axis-aligned rectangle in the plane y = const, normal +Y."""
    return polygon_component(
        component_id,
        [(x0, y, z0), (x1, y, z0), (x1, y, z1), (x0, y, z1)],
        (0, 1, 0),
    )


@pytest.fixture
def unit_square_xy():
    return xy_square("a")


@pytest.fixture
def shared_edge_pair():
    """Two unit squares, perpendicular, sharing the edge y=0, z=0, x in [0, 1]."""
    return [xy_square("a"), xz_rect("b", 0.0, 1.0, 0.0, 1.0)]


@pytest.fixture
def demo_scene():
    return create_demo_scene()


@pytest.fixture
def box_components():
    return box_scene(size=2.0)


@pytest.fixture
def box_mesh_file(tmp_path) -> str:
    """A 100mm cube written to an STL file."""
    mesh = trimesh.creation.box(extents=[100, 100, 100])
    path = tmp_path / "box.stl"
    mesh.export(str(path))
    return str(path)
