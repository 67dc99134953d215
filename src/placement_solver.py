"""
Rigid placement of a flattened sheet-metal patch onto its originating 3D face.

The reference face is reduced to merged boundary edges expressed in its
FaceBasis. The longest reference edge is the anchor; every length-compatible
flattened edge is tried in both orientations, each giving a 2D rotation and
translation. Candidates are scored by endpoint residual, centroid residual,
endpoint-signature distance and a tiny length penalty, and the argmin is
lifted to a world-space PlacementResult.

Nothing here raises for degenerate input: missing basis, empty edge sets or
a zero-length anchor all yield None ("alignment unavailable").
"""
import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation
import trimesh

from boundary_extraction import (
    extract_boundary_2d,
    extract_boundary_3d,
    face_centroid_in_basis,
    flat_face_centroid,
)
from colinear_merge import merge_colinear
from edge_signatures import build_edge_adjacency, edge_signatures, signature_distance
from geometry_primitives import (
    EPS,
    BoundaryEdge,
    FaceBasis,
    FlatMeshData,
    PlacementResult,
    as_point,
    compute_face_stats,
)

logger = logging.getLogger(__name__)


@dataclass
class AlignmentConfig:
    """Scoring constants for the alignment search.

    The weights are empirical; treat them as tuning knobs.
    """
    length_tolerance: float = 0.01        # relative to anchor length
    signature_weight: float = 1.0
    length_penalty_weight: float = 1e-6
    centroid_weight: float = 1.0


@dataclass(frozen=True)
class CandidateTransform:
    """One scored (flat edge, orientation) hypothesis."""
    flat_edge_index: int
    reversed: bool
    angle: float
    translation: Tuple[float, float]
    endpoint_residual: float
    centroid_residual: float
    signature_penalty: float
    length_penalty: float
    score: float

    def apply(self, points_2d: Sequence[Sequence[float]]) -> np.ndarray:
        pts = np.atleast_2d(np.asarray(points_2d, dtype=float))[:, :2]
        return pts @ rotation_2d(self.angle).T + np.asarray(self.translation)


def rotation_2d(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s], [s, c]])


def rigid_fit_segment(
    p0: np.ndarray,
    p1: np.ndarray,
    q0: np.ndarray,
    q1: np.ndarray,
) -> Tuple[float, np.ndarray]:
    """Rotation + translation laying segment q0->q1 onto p0->p1.

    The translation is the mean of the two per-endpoint offsets, which
    spreads any length mismatch evenly over both ends.
    """
    dp = p1 - p0
    dq = q1 - q0
    angle = math.atan2(dp[1], dp[0]) - math.atan2(dq[1], dq[0])
    angle = math.atan2(math.sin(angle), math.cos(angle))
    rot = rotation_2d(angle)
    t0 = p0 - rot @ q0
    t1 = p1 - rot @ q1
    return angle, (t0 + t1) * 0.5


def project_edges_to_basis(
    edges: Sequence[BoundaryEdge],
    basis: FaceBasis,
) -> List[BoundaryEdge]:
    """Express 3D edges in the basis' (u, v) coordinates; 2D edges pass through."""
    out = []
    for edge in edges:
        if edge.dimension == 2:
            out.append(edge)
            continue
        a = np.asarray(basis.project_3d_to_2d(edge.a))
        b = np.asarray(basis.project_3d_to_2d(edge.b))
        out.append(replace(
            edge,
            a=as_point(a),
            b=as_point(b),
            midpoint=as_point((a + b) * 0.5),
            length=float(np.linalg.norm(b - a)),
        ))
    return out


def enumerate_candidates(
    reference_edges: Sequence[BoundaryEdge],
    flat_edges: Sequence[BoundaryEdge],
    ref_centroid: Optional[Sequence[float]] = None,
    flat_centroid: Optional[Sequence[float]] = None,
    config: Optional[AlignmentConfig] = None,
) -> List[CandidateTransform]:
    """Score every anchor correspondence.

    Args:
        reference_edges: reference boundary in basis 2D coordinates.
        flat_edges: flattened boundary in patch 2D coordinates.
        ref_centroid: reference centroid in basis 2D coordinates.
        flat_centroid: flattened-face centroid in patch coordinates.

    Returns:
        Candidates in (flat edge order, forward before reversed) order.
    """
    if config is None:
        config = AlignmentConfig()
    if not reference_edges or not flat_edges:
        return []

    # Stable sort: equal-length anchors resolve to first-seen.
    order = sorted(range(len(reference_edges)), key=lambda i: -reference_edges[i].length)
    anchor_index = order[0]
    anchor = reference_edges[anchor_index]
    if anchor.length <= EPS:
        return []

    tolerance = config.length_tolerance * anchor.length
    pool = [
        j for j, e in enumerate(flat_edges)
        if e.length > EPS and abs(e.length - anchor.length) <= tolerance
    ]
    if not pool:
        pool = [j for j, e in enumerate(flat_edges) if e.length > EPS]
        logger.debug(
            "No flat edge within %.1f%% of anchor length %.4f; scoring all %d",
            config.length_tolerance * 100, anchor.length, len(pool),
        )

    ref_adj = build_edge_adjacency(reference_edges)
    flat_adj = build_edge_adjacency(flat_edges)
    anchor_sigs = edge_signatures(reference_edges, anchor_index, ref_adj)
    p0 = np.asarray(anchor.a, dtype=float)[:2]
    p1 = np.asarray(anchor.b, dtype=float)[:2]
    rc = np.asarray(ref_centroid, dtype=float)[:2] if ref_centroid is not None else None
    fc = np.asarray(flat_centroid, dtype=float)[:2] if flat_centroid is not None else None

    candidates: List[CandidateTransform] = []
    for j in pool:
        edge = flat_edges[j]
        sig_a, sig_b = edge_signatures(flat_edges, j, flat_adj)
        length_penalty = abs(edge.length - anchor.length)
        for reverse in (False, True):
            if reverse:
                q0, q1 = np.asarray(edge.b)[:2], np.asarray(edge.a)[:2]
                flat_sigs = (sig_b, sig_a)
            else:
                q0, q1 = np.asarray(edge.a)[:2], np.asarray(edge.b)[:2]
                flat_sigs = (sig_a, sig_b)

            angle, t = rigid_fit_segment(p0, p1, q0, q1)
            rot = rotation_2d(angle)
            m0 = rot @ q0 + t
            m1 = rot @ q1 + t
            endpoint_residual = float(np.sum((m0 - p0) ** 2) + np.sum((m1 - p1) ** 2))

            centroid_residual = 0.0
            if rc is not None and fc is not None:
                centroid_residual = float(np.sum((rot @ fc + t - rc) ** 2))

            signature_penalty = 0.0
            for ref_sig, flat_sig in zip(anchor_sigs, flat_sigs):
                if ref_sig is None or flat_sig is None:
                    continue
                signature_penalty += signature_distance(ref_sig, flat_sig, anchor.length)

            score = (
                endpoint_residual
                + config.centroid_weight * centroid_residual
                + config.signature_weight * signature_penalty
                + config.length_penalty_weight * length_penalty
            )
            if not math.isfinite(score):
                continue
            candidates.append(CandidateTransform(
                flat_edge_index=j,
                reversed=reverse,
                angle=angle,
                translation=(float(t[0]), float(t[1])),
                endpoint_residual=endpoint_residual,
                centroid_residual=centroid_residual,
                signature_penalty=signature_penalty,
                length_penalty=length_penalty,
                score=score,
            ))
    return candidates


def select_best(candidates: Sequence[CandidateTransform]) -> Optional[CandidateTransform]:
    """Lowest score; the first candidate wins exact ties."""
    best = None
    for candidate in candidates:
        if best is None or candidate.score < best.score:
            best = candidate
    return best


def solve_placement(
    reference_edges: Sequence[BoundaryEdge],
    reference_basis: Optional[FaceBasis],
    flat_edges: Sequence[BoundaryEdge],
    ref_centroid: Optional[Sequence[float]] = None,
    flat_centroid: Optional[Sequence[float]] = None,
    config: Optional[AlignmentConfig] = None,
) -> Optional[PlacementResult]:
    """Best-fit world placement of a flattened patch onto a reference face.

    Args:
        reference_edges: merged boundary of the 3D face (world 3D, or already
            in basis 2D coordinates).
        reference_basis: frame of the 3D face.
        flat_edges: merged boundary of the flattened face.
        ref_centroid: reference centroid, world 3D or basis 2D.
        flat_centroid: flattened-face centroid in patch coordinates.

    Returns:
        PlacementResult, or None when no placement can be derived.
    """
    if reference_basis is None or reference_basis.is_degenerate():
        logger.debug("Placement unavailable: missing or degenerate basis")
        return None
    if not reference_edges or not flat_edges:
        logger.debug(
            "Placement unavailable: %d reference / %d flat edges",
            len(reference_edges or []), len(flat_edges or []),
        )
        return None

    ref_2d = project_edges_to_basis(reference_edges, reference_basis)
    rc = None
    if ref_centroid is not None:
        rc = np.asarray(ref_centroid, dtype=float)
        if rc.shape[-1] == 3:
            rc = np.asarray(reference_basis.project_3d_to_2d(rc))

    candidates = enumerate_candidates(ref_2d, flat_edges, rc, flat_centroid, config)
    best = select_best(candidates)
    if best is None:
        logger.debug("Placement unavailable: no scorable candidates")
        return None

    rotation = reference_basis.rotation() * Rotation.from_euler("z", best.angle)
    tx, ty = best.translation
    position = reference_basis.origin + reference_basis.u_axis * tx + reference_basis.v_axis * ty
    logger.debug(
        "Placement: %d candidates, best edge %d%s score=%.3g angle=%.2f deg",
        len(candidates), best.flat_edge_index, " (reversed)" if best.reversed else "",
        best.score, math.degrees(best.angle),
    )
    return PlacementResult(
        position=as_point(position),
        rotation=tuple(float(c) for c in rotation.as_quat()),
        angle_rad=best.angle,
        translation_2d=(tx, ty),
        score=best.score,
        flat_edge_index=best.flat_edge_index,
        reversed=best.reversed,
    )


def derive_face_basis(
    vertices: np.ndarray,
    faces: np.ndarray,
    transform: Optional[np.ndarray] = None,
) -> Optional[FaceBasis]:
    """Basis at the area centroid of a face, normal from its triangles."""
    verts = np.asarray(vertices, dtype=float).reshape(-1, 3)
    tris = np.asarray(faces, dtype=int).reshape(-1, 3)
    if len(tris) == 0:
        return None
    if transform is not None:
        verts = trimesh.transform_points(verts, np.asarray(transform, dtype=float))
    stats = compute_face_stats(verts, tris, np.zeros(len(tris), dtype=int))
    face = stats.get(0)
    if face is None or face.area <= EPS:
        return None
    return FaceBasis.from_normal(face.centroid, face.normal)


def align_flat_face(
    reference_vertices: np.ndarray,
    reference_faces: Optional[np.ndarray],
    reference_basis: Optional[FaceBasis],
    flat_mesh: FlatMeshData,
    face_id,
    transform: Optional[np.ndarray] = None,
    config: Optional[AlignmentConfig] = None,
) -> Optional[PlacementResult]:
    """Extract, merge and align one face of interest.

    The colinearity test for the reference boundary runs on positions
    projected into the reference basis.
    """
    if reference_basis is None or reference_basis.is_degenerate():
        logger.debug("Face %s: no usable reference basis", face_id)
        return None

    raw_ref = extract_boundary_3d(reference_vertices, reference_faces, transform=transform)
    projected = {}
    for edge in raw_ref:
        projected.setdefault(edge.a_key, reference_basis.project_3d_to_2d(edge.a))
        projected.setdefault(edge.b_key, reference_basis.project_3d_to_2d(edge.b))
    ref_edges = merge_colinear(raw_ref, projected)
    flat_edges = merge_colinear(extract_boundary_2d(flat_mesh, face_id))

    ref_centroid = face_centroid_in_basis(
        reference_vertices, reference_faces, reference_basis, transform=transform,
    )
    flat_centroid = flat_face_centroid(flat_mesh, face_id)

    placement = solve_placement(
        ref_edges, reference_basis, flat_edges,
        ref_centroid=ref_centroid, flat_centroid=flat_centroid, config=config,
    )
    if placement is None:
        logger.info("Face %s: alignment unavailable", face_id)
    else:
        logger.info(
            "Face %s: aligned %d flat edges to %d reference edges (score %.3g)",
            face_id, len(flat_edges), len(ref_edges), placement.score,
        )
    return placement


def placement_to_dict(placement: Optional[PlacementResult]) -> Optional[dict]:
    if placement is None:
        return None
    return {
        "position": list(placement.position),
        "rotation": list(placement.rotation),
        "angle_deg": math.degrees(placement.angle_rad),
        "translation_2d": list(placement.translation_2d),
        "score": placement.score,
        "flat_edge_index": placement.flat_edge_index,
        "reversed": placement.reversed,
    }
