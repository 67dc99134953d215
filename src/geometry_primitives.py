"""
Core geometry types for flat-pattern placement and unfold diagnostics.

Provides boundary edge records (from 3D faces and flattened meshes), the
face basis used to map a local 2D frame into world space, the rigid
placement produced by alignment, and the read-only flat mesh container
handed over by the flat-pattern engine.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

Point = Tuple[float, ...]

EPS = 1e-12
BEND_SURFACE_TYPES = ("cylindrical",)


def as_point(values: Sequence[float]) -> Point:
    """Coerce any coordinate sequence into a plain float tuple."""
    return tuple(float(v) for v in values)


@dataclass(frozen=True)
class BoundaryEdge:
    """A boundary segment of a triangulated region.

    ``a_key``/``b_key`` are stable vertex identities: raw mesh indices for
    indexed (flattened) meshes, quantized coordinate strings for 3D faces.
    """
    a: Point
    b: Point
    a_key: Hashable
    b_key: Hashable
    midpoint: Point
    length: float

    @classmethod
    def from_points(
        cls,
        a: Sequence[float],
        b: Sequence[float],
        a_key: Hashable,
        b_key: Hashable,
    ) -> "BoundaryEdge":
        pa = np.asarray(a, dtype=float)
        pb = np.asarray(b, dtype=float)
        return cls(
            a=as_point(pa),
            b=as_point(pb),
            a_key=a_key,
            b_key=b_key,
            midpoint=as_point((pa + pb) * 0.5),
            length=float(np.linalg.norm(pb - pa)),
        )

    @property
    def dimension(self) -> int:
        return len(self.a)

    def other_key(self, key: Hashable) -> Hashable:
        return self.b_key if key == self.a_key else self.a_key

    def point_for(self, key: Hashable) -> Point:
        return self.a if key == self.a_key else self.b

    def direction(self) -> np.ndarray:
        """Unit vector from ``a`` to ``b`` (zero vector for degenerate edges)."""
        d = np.asarray(self.b, dtype=float) - np.asarray(self.a, dtype=float)
        if self.length <= EPS:
            return np.zeros_like(d)
        return d / self.length


@dataclass(frozen=True)
class MergedEdge(BoundaryEdge):
    """A maximal colinear run of boundary edges fused into one edge.

    ``vertex_keys`` lists the chain from ``a_key`` to ``b_key`` inclusive.
    """
    vertex_keys: Tuple[Hashable, ...] = ()
    segment_count: int = 1

    @classmethod
    def from_chain(
        cls,
        points: Dict[Hashable, Sequence[float]],
        chain: Sequence[Hashable],
    ) -> "MergedEdge":
        first, last = chain[0], chain[-1]
        base = BoundaryEdge.from_points(points[first], points[last], first, last)
        return cls(
            a=base.a,
            b=base.b,
            a_key=first,
            b_key=last,
            midpoint=base.midpoint,
            length=base.length,
            vertex_keys=tuple(chain),
            segment_count=max(1, len(chain) - 1),
        )

    @classmethod
    def from_edge(cls, edge: BoundaryEdge) -> "MergedEdge":
        if isinstance(edge, MergedEdge):
            return edge
        return cls(
            a=edge.a,
            b=edge.b,
            a_key=edge.a_key,
            b_key=edge.b_key,
            midpoint=edge.midpoint,
            length=edge.length,
            vertex_keys=(edge.a_key, edge.b_key),
            segment_count=1,
        )


@dataclass
class FaceBasis:
    """Local frame of a 3D face: ``u_axis``/``v_axis`` span the face plane."""
    origin: np.ndarray
    u_axis: np.ndarray
    v_axis: np.ndarray
    normal: np.ndarray

    @classmethod
    def from_axes(
        cls,
        origin: Sequence[float],
        u_axis: Sequence[float],
        v_axis: Sequence[float],
    ) -> "FaceBasis":
        """Build a basis with ``normal = u x v`` (normalized when possible)."""
        u = np.asarray(u_axis, dtype=float)
        v = np.asarray(v_axis, dtype=float)
        n = np.cross(u, v)
        norm = float(np.linalg.norm(n))
        if norm > EPS:
            n = n / norm
        return cls(
            origin=np.asarray(origin, dtype=float),
            u_axis=u,
            v_axis=v,
            normal=n,
        )

    @classmethod
    def from_normal(
        cls,
        origin: Sequence[float],
        normal: Sequence[float],
    ) -> "FaceBasis":
        u, v = make_2d_basis(np.asarray(normal, dtype=float))
        return cls.from_axes(origin, u, v)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> Optional["FaceBasis"]:
        if not isinstance(payload, dict):
            return None
        try:
            origin = payload.get("origin", [0.0, 0.0, 0.0])
            u = payload.get("uAxis", payload.get("u_axis"))
            v = payload.get("vAxis", payload.get("v_axis"))
            if u is None or v is None:
                return None
            basis = cls.from_axes(origin, u, v)
            normal = payload.get("normal")
            if normal is not None:
                basis.normal = np.asarray(normal, dtype=float)
            return basis
        except (TypeError, ValueError):
            return None

    def is_degenerate(self) -> bool:
        for axis in (self.u_axis, self.v_axis, self.normal):
            arr = np.asarray(axis, dtype=float)
            if arr.shape != (3,) or not np.all(np.isfinite(arr)):
                return True
            if float(np.linalg.norm(arr)) <= 1e-9:
                return True
        return not np.all(np.isfinite(np.asarray(self.origin, dtype=float)))

    def rotation(self) -> Rotation:
        """Rotation taking local (x, y, z) onto (u, v, normal)."""
        matrix = np.column_stack([
            _unit(self.u_axis),
            _unit(self.v_axis),
            _unit(self.normal),
        ])
        return Rotation.from_matrix(matrix)

    def project_3d_to_2d(self, point_3d: Sequence[float]) -> Tuple[float, float]:
        """Project a 3D point into this basis' local 2D coordinates."""
        d = np.asarray(point_3d, dtype=float) - self.origin
        return (float(d @ self.u_axis), float(d @ self.v_axis))

    def project_2d_to_3d(self, u: float, v: float) -> np.ndarray:
        return self.origin + u * self.u_axis + v * self.v_axis


@dataclass(frozen=True)
class PlacementResult:
    """Rigid transform mapping a flattened patch's 2D frame into world space.

    ``rotation`` is a quaternion in scalar-last (x, y, z, w) order.
    """
    position: Point
    rotation: Tuple[float, float, float, float]
    angle_rad: float = 0.0
    translation_2d: Tuple[float, float] = (0.0, 0.0)
    score: float = 0.0
    flat_edge_index: int = -1
    reversed: bool = False

    def rotation_matrix(self) -> np.ndarray:
        return Rotation.from_quat(self.rotation).as_matrix()

    def as_matrix(self) -> np.ndarray:
        """4x4 homogeneous transform."""
        out = np.eye(4)
        out[:3, :3] = self.rotation_matrix()
        out[:3, 3] = np.asarray(self.position, dtype=float)
        return out

    def transform_points(self, points_2d: Sequence[Sequence[float]]) -> np.ndarray:
        """Map local flat-pattern points (z = 0 if omitted) to world space."""
        pts = np.asarray(points_2d, dtype=float)
        if pts.size == 0:
            return np.zeros((0, 3), dtype=float)
        pts = np.atleast_2d(pts)
        if pts.shape[1] == 2:
            pts = np.column_stack([pts, np.zeros(len(pts))])
        return pts @ self.rotation_matrix().T + np.asarray(self.position, dtype=float)


@dataclass(frozen=True)
class FaceMeta:
    """Surface metadata for one face id of a flattened mesh."""
    type: str = "planar"
    radius: Optional[float] = None

    @property
    def is_bend(self) -> bool:
        if self.type not in BEND_SURFACE_TYPES or self.radius is None:
            return False
        r = float(self.radius)
        return bool(np.isfinite(r) and r > 0)


@dataclass
class FaceStats:
    normal: np.ndarray
    centroid: np.ndarray
    area: float


@dataclass
class FlatMeshData:
    """Flattened mesh entry produced by the flat-pattern engine (read-only)."""
    positions: np.ndarray              # (n, 3), z constant
    triangles: np.ndarray              # (m, 3) vertex indices
    triangle_face_ids: np.ndarray      # (m,)
    face_meta_by_id: Dict[Any, FaceMeta] = field(default_factory=dict)
    name: str = ""
    diagnostic_rays: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        pos = np.asarray(self.positions, dtype=float)
        if pos.ndim == 1:
            pos = pos.reshape(-1, 3)
        self.positions = pos
        tris = np.asarray(self.triangles, dtype=int)
        self.triangles = tris.reshape(-1, 3) if tris.size else np.zeros((0, 3), dtype=int)
        self.triangle_face_ids = np.asarray(self.triangle_face_ids).reshape(-1)
        if len(self.triangle_face_ids) != len(self.triangles):
            raise ValueError(
                f"triangleFaceIds has {len(self.triangle_face_ids)} entries "
                f"for {len(self.triangles)} triangles"
            )

    @property
    def vertex_count(self) -> int:
        return int(len(self.positions))

    @property
    def triangle_count(self) -> int:
        return int(len(self.triangles))

    def face_ids(self) -> List[Any]:
        """Distinct face ids in first-seen triangle order."""
        seen: Dict[Any, None] = {}
        for fid in self.triangle_face_ids.tolist():
            seen.setdefault(fid, None)
        return list(seen)

    def triangles_for_face(self, face_id) -> np.ndarray:
        mask = self.triangle_face_ids == face_id
        return self.triangles[mask]

    def face_meta(self, face_id) -> Optional[FaceMeta]:
        return self.face_meta_by_id.get(face_id)


# ─── Conversion functions ────────────────────────────────────────────────────

def compute_face_stats(
    vertices: np.ndarray,
    triangles: np.ndarray,
    face_ids: Sequence,
) -> Dict[Any, FaceStats]:
    """Area-weighted normal and centroid per face id.

    Triangle normals are flipped to agree with the first non-degenerate
    triangle of the same face before accumulation.
    """
    verts = np.asarray(vertices, dtype=float)
    tris = np.asarray(triangles, dtype=int).reshape(-1, 3)
    ids = list(np.asarray(face_ids).reshape(-1).tolist())

    sums: Dict[Any, Dict[str, Any]] = {}
    for t, face_id in enumerate(ids):
        data = sums.setdefault(face_id, {
            "normal": np.zeros(3), "centroid": np.zeros(3), "area": 0.0, "ref": None,
        })
        p0, p1, p2 = verts[tris[t]]
        n = np.cross(p1 - p0, p2 - p0)
        length = float(np.linalg.norm(n))
        if length < EPS:
            continue
        area = length * 0.5
        n = n / length
        if data["ref"] is None:
            data["ref"] = n.copy()
        elif float(n @ data["ref"]) < 0:
            n = -n
        data["normal"] += n * area
        data["centroid"] += (p0 + p1 + p2) / 3.0 * area
        data["area"] += area

    out: Dict[Any, FaceStats] = {}
    for face_id, data in sums.items():
        total = data["normal"]
        if float(np.linalg.norm(total)) > EPS:
            normal = total / np.linalg.norm(total)
        elif data["ref"] is not None:
            normal = data["ref"]
        else:
            normal = np.array([0.0, 0.0, 1.0])
        centroid = data["centroid"] / data["area"] if data["area"] > EPS else np.zeros(3)
        out[face_id] = FaceStats(normal=normal, centroid=centroid, area=float(data["area"]))
    return out


def bounding_diagonal(points: np.ndarray) -> float:
    pts = np.asarray(points, dtype=float)
    if pts.size == 0:
        return 0.0
    pts = pts.reshape(-1, pts.shape[-1])
    return float(np.linalg.norm(pts.max(axis=0) - pts.min(axis=0)))


def make_2d_basis(normal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Build an orthonormal (u, v) basis perpendicular to normal."""
    n = normal / np.linalg.norm(normal)
    if abs(n[2]) < 0.9:
        ref = np.array([0.0, 0.0, 1.0])
    else:
        ref = np.array([1.0, 0.0, 0.0])
    u = np.cross(ref, n)
    u /= np.linalg.norm(u)
    v = np.cross(n, u)
    v /= np.linalg.norm(v)
    return u, v


# ─── Internal helpers ────────────────────────────────────────────────────────

def _unit(vec) -> np.ndarray:
    arr = np.asarray(vec, dtype=float)
    norm = float(np.linalg.norm(arr))
    return arr / norm if norm > EPS else arr
