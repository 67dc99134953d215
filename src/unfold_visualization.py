"""
Visualization builder for flat-pattern unfold debug steps.

Turns one debug step plus the flattened meshes it refers to into renderable
primitives: per-face colored meshes (planar vs. bend), solid outer boundary
lines, dashed seam lines between faces, bend centerlines and the step's own
curve paths with newly added curves emphasised. Faces the step adds or works
on are highlighted and its basis frames become axis pairs.
``render_visualization`` draws the result headless with matplotlib.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np
from matplotlib.colors import hsv_to_rgb, to_hex
from shapely.geometry import LineString
from shapely.ops import substring

from boundary_extraction import (
    EdgeMultiplicityTable,
    boundary_polygon,
    build_edge_usage,
    extract_boundary_2d,
    flat_face_centroid,
)
from colinear_merge import merge_colinear
from geometry_primitives import (
    EPS,
    BoundaryEdge,
    FaceBasis,
    FaceMeta,
    FlatMeshData,
    MergedEdge,
    bounding_diagonal,
)
from unfold_payload import DebugPath, UnfoldDebugStep

logger = logging.getLogger(__name__)

NO_GEOMETRY_MESSAGE = "No geometry for this step"

FlatMeshEntries = Union[Mapping[str, FlatMeshData], Sequence[FlatMeshData]]


@dataclass
class VisualizationConfig:
    planar_color: str = "#4c8bf5"
    bend_color: str = "#f5a142"
    outer_color: str = "#d62728"
    seam_color: str = "#333333"
    centerline_color: str = "#1f4fd6"
    path_color: str = "#111111"
    added_face_color: str = "#2ca02c"
    current_face_color: str = "#9467bd"
    base_face_color: str = "#7f7f7f"
    basis_u_color: str = "#e31a1c"
    basis_v_color: str = "#33a02c"
    basis_axis_scale: float = 0.15                # axis length as a fraction of the geometry diagonal
    base_stroke_width: float = 1.0
    added_stroke_scale: float = 2.5
    dashes_per_shortest_edge: int = 4
    dash_ratio: float = 0.5                       # drawn fraction of each dash period
    centerline_parallel_tolerance: float = 0.05   # |sin| of angle to the dominant direction
    hash_saturation: float = 0.55
    hash_value: float = 0.85


# ─── Output types ────────────────────────────────────────────────────────────

@dataclass
class ColoredMesh:
    entry_name: str
    face_id: Any
    kind: Optional[str]       # "planar" | "bend" | None (unclassified)
    color: str
    vertices: np.ndarray      # (n, 3)
    triangles: np.ndarray     # (m, 3), indices into vertices
    highlight: Optional[str] = None        # "added" | "current" | "base"
    outline_color: Optional[str] = None


@dataclass
class BasisFrame:
    role: str                 # "basis" | "base_basis"
    origin: Tuple[float, float, float]
    u_end: Tuple[float, float, float]
    v_end: Tuple[float, float, float]
    u_color: str
    v_color: str


@dataclass
class EdgeLine:
    entry_name: str
    kind: str                 # "outer" | "seam"
    start: Tuple[float, float]
    end: Tuple[float, float]
    color: str
    face_ids: Tuple[Any, ...] = ()
    dash_count: int = 0       # 0 means solid

    @property
    def dashed(self) -> bool:
        return self.dash_count > 0

    @property
    def length(self) -> float:
        return float(np.linalg.norm(np.asarray(self.end) - np.asarray(self.start)))

    def dash_segments(self, dash_ratio: float = 0.5) -> List[Tuple[Tuple[float, float], Tuple[float, float]]]:
        """Visible (start, end) pieces; a solid line is a single piece."""
        if not self.dashed:
            return [(self.start, self.end)]
        line = LineString([self.start, self.end])
        period = line.length / self.dash_count
        out = []
        for i in range(self.dash_count):
            piece = substring(line, i * period, i * period + period * dash_ratio)
            coords = list(piece.coords)
            if len(coords) >= 2:
                out.append((tuple(coords[0]), tuple(coords[-1])))
        return out


@dataclass
class Centerline:
    entry_name: str
    face_id: Any
    start: Tuple[float, float]
    end: Tuple[float, float]
    direction: Tuple[float, float]
    offset: float                          # signed, from the face centroid along the normal
    side_offsets: Tuple[float, float]      # (negative side, positive side)
    color: str = "#1f4fd6"


@dataclass
class StyledPath:
    label: str
    points: np.ndarray
    color: str
    stroke_width: float
    dashed: bool = False
    closed: bool = False
    added: bool = False
    face_id: Any = None


@dataclass
class VisualizationOutput:
    step_label: str = ""
    colored_meshes: List[ColoredMesh] = field(default_factory=list)
    edge_lines: List[EdgeLine] = field(default_factory=list)
    centerlines: List[Centerline] = field(default_factory=list)
    step_paths: List[StyledPath] = field(default_factory=list)
    basis_frames: List[BasisFrame] = field(default_factory=list)
    added_labels: Set[str] = field(default_factory=set)
    message: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.colored_meshes or self.edge_lines or self.step_paths or self.basis_frames)

    @property
    def highlighted_faces(self) -> Dict[Any, str]:
        return {m.face_id: m.highlight for m in self.colored_meshes if m.highlight}


# ─── Face classification and colour ─────────────────────────────────────────

def classify_face(meta: Optional[FaceMeta]) -> Optional[str]:
    """Return "bend", "planar" or None when metadata is missing."""
    if meta is None:
        return None
    return "bend" if meta.is_bend else "planar"


def hashed_face_color(face_id: Any, saturation: float = 0.55, value: float = 0.85) -> str:
    digest = hashlib.md5(str(face_id).encode("utf-8")).hexdigest()
    hue = int(digest[:8], 16) / float(0xFFFFFFFF)
    return to_hex(hsv_to_rgb((hue, saturation, value)))


def face_color(face_id: Any, meta: Optional[FaceMeta], config: VisualizationConfig) -> str:
    kind = classify_face(meta)
    if kind == "bend":
        return config.bend_color
    if kind == "planar":
        return config.planar_color
    return hashed_face_color(face_id, config.hash_saturation, config.hash_value)


def face_highlight(face_id: Any, step: Optional[UnfoldDebugStep]) -> Optional[str]:
    """Role of *face_id* in *step*: the added face wins over current and base."""
    if step is None or face_id is None:
        return None
    for role, target in (
        ("added", step.added_face_id),
        ("current", step.face_id),
        ("base", step.base_face_id),
    ):
        if target is not None and face_id == target:
            return role
    return None


def highlight_color(role: Optional[str], config: VisualizationConfig) -> Optional[str]:
    if role == "added":
        return config.added_face_color
    if role == "current":
        return config.current_face_color
    if role == "base":
        return config.base_face_color
    return None


def build_colored_meshes(
    flat_mesh: FlatMeshData,
    config: Optional[VisualizationConfig] = None,
    step: Optional[UnfoldDebugStep] = None,
    entry_name: Optional[str] = None,
) -> List[ColoredMesh]:
    """One compact sub-mesh per face id, in first-seen triangle order.

    Faces named by *step* (added, current, base) carry a highlight role and
    outline colour on top of their class colour.
    """
    if config is None:
        config = VisualizationConfig()
    name = entry_name if entry_name is not None else flat_mesh.name
    meshes = []
    for face_id in flat_mesh.face_ids():
        tris = flat_mesh.triangles_for_face(face_id)
        used = np.unique(tris.reshape(-1))
        remap = np.full(flat_mesh.vertex_count, -1, dtype=int)
        remap[used] = np.arange(len(used), dtype=int)
        meta = flat_mesh.face_meta(face_id)
        role = face_highlight(face_id, step)
        meshes.append(ColoredMesh(
            entry_name=name,
            face_id=face_id,
            kind=classify_face(meta),
            color=face_color(face_id, meta, config),
            vertices=flat_mesh.positions[used],
            triangles=remap[tris],
            highlight=role,
            outline_color=highlight_color(role, config),
        ))
    return meshes


# ─── Basis frames ────────────────────────────────────────────────────────────

def build_basis_frame(
    basis: Optional[FaceBasis],
    role: str,
    axis_length: float,
    config: Optional[VisualizationConfig] = None,
) -> Optional[BasisFrame]:
    """Origin plus unit u/v axes scaled to *axis_length*; None if degenerate."""
    if basis is None or basis.is_degenerate():
        return None
    if config is None:
        config = VisualizationConfig()
    origin = np.asarray(basis.origin, dtype=float)
    u = np.asarray(basis.u_axis, dtype=float)
    v = np.asarray(basis.v_axis, dtype=float)
    u_end = origin + u / np.linalg.norm(u) * axis_length
    v_end = origin + v / np.linalg.norm(v) * axis_length
    return BasisFrame(
        role=role,
        origin=tuple(float(x) for x in origin),
        u_end=tuple(float(x) for x in u_end),
        v_end=tuple(float(x) for x in v_end),
        u_color=config.basis_u_color,
        v_color=config.basis_v_color,
    )


def build_basis_frames(
    step: Optional[UnfoldDebugStep],
    axis_length: float = 1.0,
    config: Optional[VisualizationConfig] = None,
) -> List[BasisFrame]:
    if step is None:
        return []
    frames = []
    for role, basis in (("basis", step.basis), ("base_basis", step.base_basis)):
        frame = build_basis_frame(basis, role, axis_length, config)
        if frame is not None:
            frames.append(frame)
        elif basis is not None:
            logger.debug("Step '%s': degenerate %s skipped", step.label, role)
    return frames


# ─── Edge classification ─────────────────────────────────────────────────────

def _edges_from_records(records, points_2d: np.ndarray) -> List[BoundaryEdge]:
    edges = []
    for record in records:
        edge = BoundaryEdge.from_points(
            points_2d[record.a_key], points_2d[record.b_key], record.a_key, record.b_key,
        )
        if edge.length > EPS:
            edges.append(edge)
    return edges


def seam_groups(usage: EdgeMultiplicityTable) -> Dict[Tuple[Any, ...], List[Any]]:
    """Records shared by two or more distinct face ids, grouped by face set."""
    groups: Dict[Tuple[Any, ...], List[Any]] = {}
    for record in usage.records():
        if len(record.face_ids) < 2:
            continue
        key = tuple(sorted(record.face_ids, key=lambda f: (type(f).__name__, f)))
        groups.setdefault(key, []).append(record)
    return groups


def build_edge_lines(
    flat_mesh: FlatMeshData,
    usage: Optional[EdgeMultiplicityTable] = None,
    config: Optional[VisualizationConfig] = None,
    entry_name: Optional[str] = None,
) -> List[EdgeLine]:
    """Outer lines (single-triangle edges) and dashed seams between faces.

    Seam dash counts are scaled so the shortest merged seam gets
    ``dashes_per_shortest_edge`` dashes and longer seams keep the same period.
    """
    if config is None:
        config = VisualizationConfig()
    if usage is None:
        usage = build_edge_usage(flat_mesh.triangles, flat_mesh.triangle_face_ids)
    points = flat_mesh.positions[:, :2]
    name = entry_name if entry_name is not None else flat_mesh.name

    lines: List[EdgeLine] = []
    outer = merge_colinear(_edges_from_records(usage.boundary_records(), points))
    for edge in outer:
        lines.append(EdgeLine(
            entry_name=name,
            kind="outer",
            start=tuple(edge.a[:2]),
            end=tuple(edge.b[:2]),
            color=config.outer_color,
        ))

    seams: List[Tuple[Tuple[Any, ...], MergedEdge]] = []
    for face_pair, records in seam_groups(usage).items():
        for edge in merge_colinear(_edges_from_records(records, points)):
            seams.append((face_pair, edge))
    if not seams:
        return lines

    shortest = min(edge.length for _, edge in seams)
    period = shortest / max(1, config.dashes_per_shortest_edge)
    for face_pair, edge in seams:
        lines.append(EdgeLine(
            entry_name=name,
            kind="seam",
            start=tuple(edge.a[:2]),
            end=tuple(edge.b[:2]),
            color=config.seam_color,
            face_ids=face_pair,
            dash_count=max(1, int(round(edge.length / period))),
        ))
    return lines


# ─── Bend centerlines ────────────────────────────────────────────────────────

def _canonical_direction(d: np.ndarray) -> np.ndarray:
    if d[0] < -EPS or (abs(d[0]) <= EPS and d[1] < 0):
        return -d
    return d


def centerline_from_edges(
    edges: Sequence[BoundaryEdge],
    centroid: Sequence[float],
    parallel_tolerance: float = 0.05,
) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray, float, Tuple[float, float]]]:
    """Centerline between the two parallel sides of a bend region.

    Edges parallel to the longest one are split by the sign of their
    perpendicular offset from *centroid*. Each side's offset is the
    length-weighted mean of its edges' midpoint offsets; the centerline sits
    halfway between the two sides and spans the union of both sides'
    extents along the dominant direction.

    Returns:
        (start, end, direction, offset, (negative_offset, positive_offset))
        or None when both sides cannot be found.
    """
    usable = [e for e in edges if e.length > EPS]
    if not usable:
        return None
    c = np.asarray(centroid, dtype=float)[:2]
    longest = max(usable, key=lambda e: e.length)
    d = _canonical_direction(longest.direction()[:2])
    n = np.array([-d[1], d[0]])

    sides: Dict[int, List[BoundaryEdge]] = {-1: [], 1: []}
    for edge in usable:
        e_dir = edge.direction()[:2]
        if abs(float(e_dir[0] * d[1] - e_dir[1] * d[0])) > parallel_tolerance:
            continue
        off = float((np.asarray(edge.midpoint[:2]) - c) @ n)
        if abs(off) <= EPS:
            continue
        sides[1 if off > 0 else -1].append(edge)
    if not sides[-1] or not sides[1]:
        return None

    side_offsets = {}
    t_values: List[float] = []
    for sign, group in sides.items():
        weights = np.array([e.length for e in group])
        offsets = np.array([(np.asarray(e.midpoint[:2]) - c) @ n for e in group])
        side_offsets[sign] = float(np.sum(weights * offsets) / np.sum(weights))
        for e in group:
            t_values.append(float((np.asarray(e.a[:2]) - c) @ d))
            t_values.append(float((np.asarray(e.b[:2]) - c) @ d))

    mid = 0.5 * (side_offsets[-1] + side_offsets[1])
    start = c + d * min(t_values) + n * mid
    end = c + d * max(t_values) + n * mid
    return start, end, d, mid, (side_offsets[-1], side_offsets[1])


def bend_region_centroid(
    flat_mesh: FlatMeshData,
    face_id: Any,
    boundary: Optional[Sequence[BoundaryEdge]] = None,
) -> Tuple[float, float]:
    """Centroid of the polygon bounded by the face's outer loop.

    Falls back to the triangle union, then to the mean of the face's
    vertices when the boundary does not close into a loop.
    """
    if boundary is None:
        boundary = extract_boundary_2d(flat_mesh, face_id)
    polygon = boundary_polygon(boundary)
    if not polygon.is_empty:
        c = polygon.centroid
        return (float(c.x), float(c.y))
    centroid = flat_face_centroid(flat_mesh, face_id)
    if centroid is not None:
        return centroid
    tris = flat_mesh.triangles_for_face(face_id)
    if len(tris) == 0:
        return (0.0, 0.0)
    return tuple(float(x) for x in flat_mesh.positions[np.unique(tris.reshape(-1)), :2].mean(axis=0))


def build_centerlines(
    flat_mesh: FlatMeshData,
    usage: Optional[EdgeMultiplicityTable] = None,
    config: Optional[VisualizationConfig] = None,
    entry_name: Optional[str] = None,
) -> List[Centerline]:
    """One centerline per bend face that has two parallel sides."""
    if config is None:
        config = VisualizationConfig()
    if usage is None:
        usage = build_edge_usage(flat_mesh.triangles, flat_mesh.triangle_face_ids)
    points = flat_mesh.positions[:, :2]
    name = entry_name if entry_name is not None else flat_mesh.name

    out = []
    for face_id in flat_mesh.face_ids():
        if classify_face(flat_mesh.face_meta(face_id)) != "bend":
            continue
        own_boundary = extract_boundary_2d(flat_mesh, face_id)
        seam_records = [
            r for r in usage.records()
            if face_id in r.face_ids and len(r.face_ids) >= 2
        ]
        edges: List[BoundaryEdge] = merge_colinear(_edges_from_records(seam_records, points))
        if len(edges) < 2:
            edges = merge_colinear(own_boundary)

        centroid = bend_region_centroid(flat_mesh, face_id, own_boundary)

        result = centerline_from_edges(edges, centroid, config.centerline_parallel_tolerance)
        if result is None:
            logger.debug("Bend face %s in '%s': no parallel sides", face_id, name)
            continue
        start, end, direction, offset, side_offsets = result
        out.append(Centerline(
            entry_name=name,
            face_id=face_id,
            start=tuple(float(x) for x in start),
            end=tuple(float(x) for x in end),
            direction=tuple(float(x) for x in direction),
            offset=offset,
            side_offsets=side_offsets,
            color=config.centerline_color,
        ))
    return out


# ─── Step paths ──────────────────────────────────────────────────────────────

def newly_added_labels(
    step: Optional[UnfoldDebugStep],
    previous: Optional[UnfoldDebugStep] = None,
) -> Set[str]:
    """Edge labels present in *step* but not in *previous*."""
    if step is None:
        return set()
    before = previous.edge_labels() if previous is not None else set()
    return step.edge_labels() - before


def _is_dashed_label(path: DebugPath) -> bool:
    text = f"{path.edge_label} {path.face_name}".lower()
    return "bend" in text or "center" in text or "seam" in text


def style_step_paths(
    step: UnfoldDebugStep,
    added_labels: Set[str],
    config: Optional[VisualizationConfig] = None,
) -> List[StyledPath]:
    if config is None:
        config = VisualizationConfig()
    styled = []
    for path in step.paths:
        added = bool(path.edge_label) and path.edge_label in added_labels
        width = path.stroke_width if path.stroke_width else config.base_stroke_width
        if added:
            width *= config.added_stroke_scale
        styled.append(StyledPath(
            label=path.edge_label,
            points=path.points,
            color=path.color or config.path_color,
            stroke_width=width,
            dashed=_is_dashed_label(path),
            closed=path.closed,
            added=added,
            face_id=path.face_id,
        ))
    return styled


# ─── Builder ─────────────────────────────────────────────────────────────────

def _iter_entries(entries: Optional[FlatMeshEntries]) -> List[Tuple[str, FlatMeshData]]:
    """(entry name, mesh) pairs; mapping keys name meshes without a name."""
    if not entries:
        return []
    if isinstance(entries, Mapping):
        return [(mesh.name or str(name), mesh) for name, mesh in entries.items()]
    return [(mesh.name, mesh) for mesh in entries]


def _usable(name: str, mesh: FlatMeshData) -> bool:
    if mesh.triangle_count == 0 or mesh.vertex_count == 0:
        return False
    tris = mesh.triangles
    if tris.min() < 0 or tris.max() >= mesh.vertex_count:
        logger.warning("Flat mesh '%s' has out-of-range triangle indices; skipped", name)
        return False
    return True


def _axis_length(
    meshes: Sequence[FlatMeshData],
    step: Optional[UnfoldDebugStep],
    config: VisualizationConfig,
) -> float:
    clouds = [m.positions[:, :2] for m in meshes]
    if step is not None:
        clouds.extend(np.asarray(p.points, dtype=float)[:, :2] for p in step.paths)
    diagonal = bounding_diagonal(np.vstack(clouds)) if clouds else 0.0
    if diagonal <= EPS:
        return 1.0
    return diagonal * config.basis_axis_scale


def build_visualization(
    step: Optional[UnfoldDebugStep],
    flat_mesh_entries: Optional[FlatMeshEntries],
    previous_step: Optional[UnfoldDebugStep] = None,
    config: Optional[VisualizationConfig] = None,
) -> VisualizationOutput:
    """Build every renderable primitive for one debug step.

    Faces the step adds or works on are highlighted and its basis frames are
    drawn as axis pairs. Never raises for degenerate input: an empty step
    with no usable meshes yields an output whose ``message`` says there is
    nothing to show. The flat mesh entries are not modified.
    """
    if config is None:
        config = VisualizationConfig()
    output = VisualizationOutput(step_label=step.label if step is not None else "")

    used: List[FlatMeshData] = []
    for name, mesh in _iter_entries(flat_mesh_entries):
        if not _usable(name, mesh):
            continue
        used.append(mesh)
        usage = build_edge_usage(mesh.triangles, mesh.triangle_face_ids)
        output.colored_meshes.extend(build_colored_meshes(mesh, config, step=step, entry_name=name))
        output.edge_lines.extend(build_edge_lines(mesh, usage, config, entry_name=name))
        output.centerlines.extend(build_centerlines(mesh, usage, config, entry_name=name))

    if step is not None:
        output.added_labels = newly_added_labels(step, previous_step)
        output.step_paths = style_step_paths(step, output.added_labels, config)
        output.basis_frames = build_basis_frames(step, _axis_length(used, step, config), config)

    if output.is_empty:
        output.message = NO_GEOMETRY_MESSAGE
        logger.debug("Step '%s': %s", output.step_label, NO_GEOMETRY_MESSAGE)
    else:
        logger.debug(
            "Step '%s': %d meshes, %d edge lines, %d centerlines, %d added curves, "
            "%d highlighted faces, %d basis frames",
            output.step_label, len(output.colored_meshes), len(output.edge_lines),
            len(output.centerlines), len(output.added_labels),
            len(output.highlighted_faces), len(output.basis_frames),
        )
    return output


# ─── Headless rendering ──────────────────────────────────────────────────────

def render_visualization(
    output: VisualizationOutput,
    output_path: str,
    *,
    face_alpha: float = 0.55,
    dash_ratio: float = 0.5,
    dpi: int = 150,
) -> str:
    """Render a visualization to *output_path* (PNG) with the Agg backend.

    Returns the absolute path of the written file.
    """
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    from matplotlib.collections import LineCollection, PolyCollection

    fig, ax = plt.subplots(figsize=(8, 6))
    bounds: List[np.ndarray] = []

    for mesh in output.colored_meshes:
        polys = mesh.vertices[mesh.triangles][:, :, :2]
        ax.add_collection(PolyCollection(
            polys,
            facecolors=mesh.color,
            edgecolors=mesh.outline_color or "none",
            linewidths=2.0 if mesh.highlight else 0.0,
            alpha=min(1.0, face_alpha + 0.3) if mesh.highlight else face_alpha,
        ))
        bounds.append(mesh.vertices[:, :2])

    for kind, width in (("outer", 1.5), ("seam", 0.8)):
        segments = []
        colors = []
        for line in output.edge_lines:
            if line.kind != kind:
                continue
            for a, b in line.dash_segments(dash_ratio):
                segments.append([a, b])
                colors.append(line.color)
        if segments:
            ax.add_collection(LineCollection(segments, colors=colors, linewidths=width))

    for cl in output.centerlines:
        ax.plot([cl.start[0], cl.end[0]], [cl.start[1], cl.end[1]],
                color=cl.color, linestyle="-.", linewidth=1.2)

    for path in output.step_paths:
        pts = np.asarray(path.points, dtype=float)[:, :2]
        if path.closed:
            pts = np.vstack([pts, pts[:1]])
        ax.plot(pts[:, 0], pts[:, 1], color=path.color, linewidth=path.stroke_width,
                linestyle="--" if path.dashed else "-")
        bounds.append(pts)

    for frame in output.basis_frames:
        linestyle = "-" if frame.role == "basis" else ":"
        for end, color in ((frame.u_end, frame.u_color), (frame.v_end, frame.v_color)):
            ax.plot([frame.origin[0], end[0]], [frame.origin[1], end[1]],
                    color=color, linestyle=linestyle, linewidth=1.5)
        bounds.append(np.array([frame.origin[:2], frame.u_end[:2], frame.v_end[:2]]))

    if bounds:
        cloud = np.vstack(bounds)
        mins, maxs = cloud.min(axis=0), cloud.max(axis=0)
        pad = max(float(np.max(maxs - mins)) * 0.05, 1.0)
        ax.set_xlim(mins[0] - pad, maxs[0] + pad)
        ax.set_ylim(mins[1] - pad, maxs[1] + pad)
    if output.message:
        ax.text(0.5, 0.5, output.message, ha="center", va="center", transform=ax.transAxes)

    ax.set_aspect("equal", adjustable="datalim")
    ax.set_title(output.step_label or "unfold step")
    fig.tight_layout()

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(str(out), dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logger.info("Step render saved: %s", out)
    return str(out.resolve())
