"""
Shared test fixtures for flat-pattern placement and unfold visualization tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from geometry_primitives import FaceBasis, FaceMeta, FlatMeshData


def quad_strip(xs, height):
    """Vertices and triangles for a row of quads between consecutive xs.

    Vertex 2*i is (xs[i], 0), vertex 2*i + 1 is (xs[i], height). Quad i
    is split along its (b0, t1) diagonal.
    """
    positions = []
    for x in xs:
        positions.append([float(x), 0.0, 0.0])
        positions.append([float(x), float(height), 0.0])
    triangles = []
    for i in range(len(xs) - 1):
        b0, t0, b1, t1 = 2 * i, 2 * i + 1, 2 * i + 2, 2 * i + 3
        triangles.append([b0, b1, t1])
        triangles.append([b0, t1, t0])
    return np.array(positions), np.array(triangles)


def rotate_2d(points, angle, shift=(0.0, 0.0)):
    c, s = np.cos(angle), np.sin(angle)
    rot = np.array([[c, -s], [s, c]])
    return np.asarray(points, dtype=float) @ rot.T + np.asarray(shift, dtype=float)


# Right trapezoid with a unique longest edge (10), so alignment is unambiguous.
TRAPEZOID_2D = np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 4.0], [3.0, 4.0]])
TRAPEZOID_FACES = np.array([[0, 1, 2], [0, 2, 3]])


@pytest.fixture
def bent_strip():
    """Planar (1) / bend (2) / planar (3) strip, 3 units tall.

    Face 1 spans x 0..4, the bend face 2 spans x 4..5 and face 3 x 5..9.
    """
    positions, triangles = quad_strip([0.0, 4.0, 5.0, 9.0], 3.0)
    return FlatMeshData(
        positions=positions,
        triangles=triangles,
        triangle_face_ids=np.array([1, 1, 2, 2, 3, 3]),
        face_meta_by_id={
            1: FaceMeta(type="planar"),
            2: FaceMeta(type="cylindrical", radius=2.0),
            3: FaceMeta(type="planar"),
        },
        name="body",
    )


@pytest.fixture
def reference_basis():
    """Face frame in the world x = 5 plane."""
    return FaceBasis.from_axes([5.0, -2.0, 7.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0])


@pytest.fixture
def trapezoid_face(reference_basis):
    """(vertices, faces) of the trapezoid laid into ``reference_basis``."""
    vertices = np.array([
        reference_basis.project_2d_to_3d(x, y) for x, y in TRAPEZOID_2D
    ])
    return vertices, TRAPEZOID_FACES.copy()


@pytest.fixture
def flat_trapezoid():
    """Trapezoid rotated by 0.9 rad and shifted by (3, -1.5) in the flat frame."""
    q = rotate_2d(TRAPEZOID_2D, 0.9, (3.0, -1.5))
    return FlatMeshData(
        positions=np.column_stack([q, np.zeros(len(q))]),
        triangles=TRAPEZOID_FACES.copy(),
        triangle_face_ids=np.array([7, 7]),
        face_meta_by_id={7: FaceMeta(type="planar")},
        name="panel",
    )


@pytest.fixture
def box_mesh():
    """A closed 10x10x10 box."""
    return trimesh.creation.box(extents=[10, 10, 10])


@pytest.fixture
def trapezoid_2d():
    return TRAPEZOID_2D.copy()
