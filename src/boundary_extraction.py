"""
Open-boundary extraction for triangulated faces.

Two extractors share one multiplicity table:

* 3D faces arrive as independently generated triangles, so vertices are
  welded by quantizing world coordinates to a tolerance derived from the
  face's bounding diagonal.
* Flattened meshes carry canonical vertex indices, so edges are keyed by
  raw index pairs and filtered by face id.

An edge is on the boundary when exactly one triangle of the region uses it.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional, Sequence, Set, Tuple

import numpy as np
import trimesh
from shapely.geometry import MultiPolygon, Polygon
from shapely.ops import unary_union

from geometry_primitives import (
    EPS,
    BoundaryEdge,
    FaceBasis,
    FlatMeshData,
    bounding_diagonal,
)

logger = logging.getLogger(__name__)

MIN_QUANTIZATION = 1e-6
RELATIVE_QUANTIZATION = 1e-6


@dataclass
class EdgeRecord:
    """Occurrences of one undirected edge."""
    a_key: Hashable
    b_key: Hashable
    count: int = 0
    face_ids: Set[Any] = field(default_factory=set)


class EdgeMultiplicityTable:
    """Counts how many triangles reference each undirected vertex-key pair.

    Entries keep insertion order, so iteration follows triangle traversal
    order and the first-seen orientation of every edge.
    """

    def __init__(self):
        self._records: Dict[Tuple[Hashable, Hashable], EdgeRecord] = {}

    @staticmethod
    def edge_key(a: Hashable, b: Hashable) -> Tuple[Hashable, Hashable]:
        return (a, b) if a <= b else (b, a)

    def add(self, a: Hashable, b: Hashable, face_id: Any = None) -> EdgeRecord:
        key = self.edge_key(a, b)
        record = self._records.get(key)
        if record is None:
            record = EdgeRecord(a_key=a, b_key=b)
            self._records[key] = record
        record.count += 1
        if face_id is not None:
            record.face_ids.add(face_id)
        return record

    def count(self, a: Hashable, b: Hashable) -> int:
        record = self._records.get(self.edge_key(a, b))
        return record.count if record else 0

    def get(self, a: Hashable, b: Hashable) -> Optional[EdgeRecord]:
        return self._records.get(self.edge_key(a, b))

    def records(self) -> List[EdgeRecord]:
        return list(self._records.values())

    def boundary_records(self) -> List[EdgeRecord]:
        return [r for r in self._records.values() if r.count == 1]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, pair) -> bool:
        a, b = pair
        return self.edge_key(a, b) in self._records


def quantization_tolerance(points: np.ndarray) -> float:
    """Weld tolerance: 1e-6 of the bounding diagonal, never below 1e-6."""
    return max(MIN_QUANTIZATION, bounding_diagonal(points) * RELATIVE_QUANTIZATION)


def quantize_key(point: Sequence[float], tolerance: float) -> str:
    return ",".join(str(int(round(float(c) / tolerance))) for c in point)


# ─── 3D faces ────────────────────────────────────────────────────────────────

def extract_boundary_3d(
    vertices: np.ndarray,
    faces: Optional[np.ndarray] = None,
    transform: Optional[np.ndarray] = None,
    tolerance: Optional[float] = None,
) -> List[BoundaryEdge]:
    """Return the open boundary of a triangulated 3D face in world space.

    Args:
        vertices: (n, 3) local vertex positions.
        faces: (m, 3) index buffer. ``None`` treats ``vertices`` as a
            triangle soup (three consecutive rows per triangle).
        transform: optional 4x4 local-to-world matrix.
        tolerance: weld tolerance override.

    Returns:
        Boundary edges carrying the first-seen world coordinates of each
        welded vertex. An empty face yields an empty list.
    """
    verts, tris = _as_triangles(vertices, faces)
    if len(tris) == 0:
        return []
    if transform is not None:
        verts = trimesh.transform_points(verts, np.asarray(transform, dtype=float))

    used = verts[np.unique(tris.reshape(-1))]
    tol = float(tolerance) if tolerance else quantization_tolerance(used)
    keys = [quantize_key(p, tol) for p in verts]

    point_lookup: Dict[Hashable, np.ndarray] = {}
    table = EdgeMultiplicityTable()
    for t, tri in enumerate(tris):
        tri_keys = [keys[i] for i in tri]
        for corner, key in zip(tri, tri_keys):
            if key not in point_lookup:
                point_lookup[key] = verts[corner]
        for i, j in ((0, 1), (1, 2), (2, 0)):
            if tri_keys[i] == tri_keys[j]:
                continue
            table.add(tri_keys[i], tri_keys[j], face_id=t)

    edges = _boundary_edges(table, point_lookup)
    logger.debug(
        "3D boundary: %d triangles, %d unique edges, %d boundary edges (tol=%.3g)",
        len(tris), len(table), len(edges), tol,
    )
    return edges


def extract_mesh_boundary(
    mesh: trimesh.Trimesh,
    transform: Optional[np.ndarray] = None,
) -> List[BoundaryEdge]:
    """Boundary of a trimesh face mesh, optionally placed by *transform*."""
    return extract_boundary_3d(
        np.asarray(mesh.vertices, dtype=float),
        np.asarray(mesh.faces, dtype=int),
        transform=transform,
    )


# ─── Flattened meshes ────────────────────────────────────────────────────────

def extract_boundary_2d(flat_mesh: FlatMeshData, face_id) -> List[BoundaryEdge]:
    """Return the open boundary of one face id of a flattened mesh.

    Only triangles tagged with *face_id* are counted, so edges shared with a
    neighbouring face are boundary edges of this face. Endpoints are the
    (x, y) coordinates read from ``positions``.
    """
    tris = flat_mesh.triangles_for_face(face_id)
    if len(tris) == 0:
        return []

    table = EdgeMultiplicityTable()
    for tri in tris:
        a, b, c = (int(i) for i in tri)
        table.add(a, b, face_id=face_id)
        table.add(b, c, face_id=face_id)
        table.add(c, a, face_id=face_id)

    points = flat_mesh.positions[:, :2]
    lookup = {}
    for record in table.boundary_records():
        lookup[record.a_key] = points[record.a_key]
        lookup[record.b_key] = points[record.b_key]
    return _boundary_edges(table, lookup)


def build_edge_usage(triangles: np.ndarray, face_ids: Sequence) -> EdgeMultiplicityTable:
    """Edge usage over a whole indexed mesh, recording contributing face ids."""
    table = EdgeMultiplicityTable()
    tris = np.asarray(triangles, dtype=int).reshape(-1, 3)
    ids = np.asarray(face_ids).reshape(-1).tolist()
    for tri, face_id in zip(tris, ids):
        a, b, c = (int(i) for i in tri)
        table.add(a, b, face_id=face_id)
        table.add(b, c, face_id=face_id)
        table.add(c, a, face_id=face_id)
    return table


# ─── Loops and centroids ─────────────────────────────────────────────────────

def build_boundary_loops(
    edges: Sequence[BoundaryEdge],
) -> Tuple[List[List[Hashable]], List[List[Hashable]]]:
    """Chain boundary edges into vertex-key loops.

    Edges are visited in sorted key order and each walk takes the first
    unused neighbour in sorted order, so the result does not depend on the
    order of *edges*.

    Returns:
        (closed_loops, open_chains)
    """
    adjacency: Dict[Hashable, List[Hashable]] = {}
    unused: Set[Tuple[Hashable, Hashable]] = set()
    for edge in edges:
        if edge.a_key == edge.b_key:
            continue
        key = EdgeMultiplicityTable.edge_key(edge.a_key, edge.b_key)
        if key in unused:
            continue
        unused.add(key)
        adjacency.setdefault(edge.a_key, []).append(edge.b_key)
        adjacency.setdefault(edge.b_key, []).append(edge.a_key)
    for neighbours in adjacency.values():
        neighbours.sort()

    loops: List[List[Hashable]] = []
    chains: List[List[Hashable]] = []
    for seg in sorted(unused):
        if seg not in unused:
            continue
        unused.discard(seg)
        start, curr = seg
        prev = start
        walk = [start, curr]
        while curr != start:
            nxt = None
            for neighbour in adjacency.get(curr, []):
                if neighbour == prev:
                    continue
                if EdgeMultiplicityTable.edge_key(curr, neighbour) in unused:
                    nxt = neighbour
                    break
            if nxt is None:
                break
            unused.discard(EdgeMultiplicityTable.edge_key(curr, nxt))
            prev, curr = curr, nxt
            walk.append(curr)
        if curr == start and len(walk) > 3:
            loops.append(walk[:-1])
        else:
            chains.append(walk)
    return loops, chains


def boundary_polygon(edges: Sequence[BoundaryEdge]) -> Polygon:
    """Polygon bounded by the largest 2D boundary loop, smaller loops as holes."""
    lookup = edge_point_lookup(edges)
    loops, _ = build_boundary_loops(edges)
    rings = []
    for loop in loops:
        coords = [tuple(lookup[k][:2]) for k in loop]
        ring = Polygon(coords)
        if ring.is_valid and ring.area > EPS:
            rings.append(ring)
    if not rings:
        return Polygon()
    rings.sort(key=lambda r: r.area, reverse=True)
    shell = rings[0]
    holes = [r.exterior.coords for r in rings[1:] if shell.contains(r)]
    return Polygon(shell.exterior.coords, holes)


def region_centroid_2d(
    points_2d: np.ndarray,
    triangles: np.ndarray,
) -> Optional[Tuple[float, float]]:
    """Area centroid of the union of the given 2D triangles."""
    pts = np.asarray(points_2d, dtype=float)
    tris = np.asarray(triangles, dtype=int).reshape(-1, 3)
    polygons = []
    for tri in tris:
        poly = Polygon(pts[tri, :2])
        if poly.is_valid and poly.area > EPS:
            polygons.append(poly)
    if not polygons:
        return None
    merged = unary_union(polygons)
    if merged.is_empty:
        return None
    if isinstance(merged, MultiPolygon):
        logger.debug("Region splits into %d parts; using union centroid", len(merged.geoms))
    c = merged.centroid
    return (float(c.x), float(c.y))


def flat_face_centroid(flat_mesh: FlatMeshData, face_id) -> Optional[Tuple[float, float]]:
    return region_centroid_2d(flat_mesh.positions[:, :2], flat_mesh.triangles_for_face(face_id))


def face_centroid_in_basis(
    vertices: np.ndarray,
    faces: Optional[np.ndarray],
    basis: FaceBasis,
    transform: Optional[np.ndarray] = None,
) -> Optional[Tuple[float, float]]:
    """Centroid of a 3D face expressed in *basis* (u, v) coordinates."""
    verts, tris = _as_triangles(vertices, faces)
    if len(tris) == 0:
        return None
    if transform is not None:
        verts = trimesh.transform_points(verts, np.asarray(transform, dtype=float))
    rel = verts - basis.origin
    local = np.column_stack([rel @ basis.u_axis, rel @ basis.v_axis])
    return region_centroid_2d(local, tris)


# ─── Internal helpers ────────────────────────────────────────────────────────

def _as_triangles(
    vertices: np.ndarray,
    faces: Optional[np.ndarray],
) -> Tuple[np.ndarray, np.ndarray]:
    verts = np.asarray(vertices, dtype=float)
    if verts.size == 0:
        return np.zeros((0, 3)), np.zeros((0, 3), dtype=int)
    verts = verts.reshape(-1, 3)
    if faces is None:
        n_tri = len(verts) // 3
        tris = np.arange(n_tri * 3, dtype=int).reshape(-1, 3)
    else:
        tris = np.asarray(faces, dtype=int)
        tris = tris.reshape(-1, 3) if tris.size else np.zeros((0, 3), dtype=int)
    return verts, tris


def _boundary_edges(
    table: EdgeMultiplicityTable,
    point_lookup: Dict[Hashable, np.ndarray],
) -> List[BoundaryEdge]:
    edges = []
    for record in table.boundary_records():
        edge = BoundaryEdge.from_points(
            point_lookup[record.a_key],
            point_lookup[record.b_key],
            record.a_key,
            record.b_key,
        )
        if edge.length <= EPS:
            continue
        edges.append(edge)
    return edges


def edge_point_lookup(edges: Sequence[BoundaryEdge]) -> Dict[Hashable, Tuple[float, ...]]:
    lookup: Dict[Hashable, Tuple[float, ...]] = {}
    for edge in edges:
        lookup.setdefault(edge.a_key, edge.a)
        lookup.setdefault(edge.b_key, edge.b)
    return lookup
