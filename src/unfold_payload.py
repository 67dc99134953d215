"""Loading of unfold-engine debug dumps (steps, flat meshes, offset info)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

import numpy as np

from geometry_primitives import FaceBasis, FaceMeta, FlatMeshData
from unfold_diagnostics import NeutralOffsetInfo

logger = logging.getLogger(__name__)


@dataclass
class DebugPath:
    points: np.ndarray
    closed: bool = False
    edge_label: str = ""
    face_id: Any = None
    face_name: str = ""
    color: Optional[str] = None
    stroke_width: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DebugPath":
        raw = payload.get("points")
        if raw is None:
            raise ValueError("path has no points")
        rows = []
        for p in raw:
            if isinstance(p, Mapping):
                rows.append([p.get("x", 0.0), p.get("y", 0.0), p.get("z", 0.0)])
            else:
                rows.append(list(p))
        points = np.asarray(rows, dtype=float)
        if points.ndim != 2 or points.shape[0] < 2 or points.shape[1] not in (2, 3):
            raise ValueError(f"path points have shape {points.shape}")
        width = payload.get("strokeWidth")
        return cls(
            points=points,
            closed=bool(payload.get("closed", False)),
            edge_label=str(payload.get("edgeLabel") or ""),
            face_id=face_key(payload.get("faceId")),
            face_name=str(payload.get("faceName") or ""),
            color=payload.get("color"),
            stroke_width=float(width) if width is not None else None,
        )


@dataclass
class UnfoldDebugStep:
    label: str
    paths: List[DebugPath] = field(default_factory=list)
    basis: Optional[FaceBasis] = None
    base_basis: Optional[FaceBasis] = None
    added_face_id: Any = None
    face_id: Any = None
    base_face_id: Any = None

    def edge_labels(self) -> Set[str]:
        return {p.edge_label for p in self.paths if p.edge_label}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], index: int = 0) -> "UnfoldDebugStep":
        paths = []
        for i, raw in enumerate(payload.get("paths") or []):
            try:
                paths.append(DebugPath.from_dict(raw))
            except (TypeError, ValueError) as exc:
                logger.warning("Step %d: skipping path %d: %s", index, i, exc)
        return cls(
            label=str(payload.get("label") or f"step_{index:02d}"),
            paths=paths,
            basis=FaceBasis.from_dict(payload.get("basis")),
            base_basis=FaceBasis.from_dict(payload.get("baseBasis")),
            added_face_id=face_key(payload.get("addedFaceId")),
            face_id=face_key(payload.get("faceId")),
            base_face_id=face_key(payload.get("baseFaceId")),
        )


@dataclass
class UnfoldDebugDump:
    steps: List[UnfoldDebugStep]
    flat_meshes: Dict[str, FlatMeshData]
    offset_info: Optional[NeutralOffsetInfo] = None
    source_path: str = ""


def _read_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def face_key(value: Any) -> Any:
    """JSON object keys arrive as strings; numeric ids become ints."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
        return stripped
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def parse_flat_mesh(name: str, payload: Mapping[str, Any]) -> FlatMeshData:
    """Build a FlatMeshData from the engine's camelCase payload."""
    if not isinstance(payload, Mapping):
        raise ValueError(f"Flat mesh '{name}' is not an object")
    try:
        positions = np.asarray(payload.get("positions", []), dtype=float).reshape(-1, 3)
        triangles = np.asarray(payload.get("triangles", []), dtype=int).reshape(-1, 3)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Flat mesh '{name}' has malformed buffers: {exc}") from exc
    face_ids = [face_key(v) for v in payload.get("triangleFaceIds", [])]

    if len(triangles) and (triangles.min() < 0 or triangles.max() >= len(positions)):
        raise ValueError(f"Flat mesh '{name}' references vertices out of range")

    meta: Dict[Any, FaceMeta] = {}
    for key, raw in (payload.get("faceMetaById") or {}).items():
        if not isinstance(raw, Mapping):
            continue
        radius = raw.get("radius")
        try:
            radius = float(radius) if radius is not None else None
        except (TypeError, ValueError):
            radius = None
        meta[face_key(key)] = FaceMeta(type=str(raw.get("type") or "planar"), radius=radius)

    return FlatMeshData(
        positions=positions,
        triangles=triangles,
        triangle_face_ids=np.asarray(face_ids, dtype=object if _mixed(face_ids) else None),
        face_meta_by_id=meta,
        name=name,
        diagnostic_rays=list(payload.get("diagnosticRays") or []),
    )


def parse_unfold_debug(payload: Mapping[str, Any], source_path: str = "") -> UnfoldDebugDump:
    if not isinstance(payload, Mapping):
        raise ValueError("Unfold debug payload must be a JSON object")

    steps = [
        UnfoldDebugStep.from_dict(raw, index=i)
        for i, raw in enumerate(payload.get("steps") or [])
        if isinstance(raw, Mapping)
    ]

    raw_meshes = payload.get("flatMeshes") or {}
    if isinstance(raw_meshes, list):
        raw_meshes = {
            str(m.get("name") or f"flat_{i:02d}"): m
            for i, m in enumerate(raw_meshes)
            if isinstance(m, Mapping)
        }
    flat_meshes = {name: parse_flat_mesh(name, m) for name, m in raw_meshes.items()}

    offset_raw = payload.get("offsetInfo")
    offset_info = NeutralOffsetInfo.from_dict(offset_raw) if offset_raw is not None else None

    logger.info(
        "Loaded unfold debug: %d steps, %d flat meshes", len(steps), len(flat_meshes),
    )
    return UnfoldDebugDump(
        steps=steps,
        flat_meshes=flat_meshes,
        offset_info=offset_info,
        source_path=source_path,
    )


def load_unfold_debug(path: str) -> UnfoldDebugDump:
    dump_path = Path(path)
    if not dump_path.exists():
        raise FileNotFoundError(f"Missing unfold debug dump: {dump_path}")
    try:
        payload = _read_json(dump_path)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {dump_path}: {exc}") from exc
    return parse_unfold_debug(payload, source_path=str(dump_path))


def _mixed(values: List[Any]) -> bool:
    return len({type(v) for v in values}) > 1
