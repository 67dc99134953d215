"""
Diagnostics for flat-pattern unfold output.

Summarizes the ray-cast sanity checks the unfold engine records per flat
mesh, shows the neutral-factor offset the engine used, and evaluates
pass/warn/fail quality gates so an engineer can see at a glance whether a
step's flattened geometry is trustworthy. Offsets are displayed and
cross-checked, never derived here.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from geometry_primitives import FlatMeshData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NeutralOffsetInfo:
    """Neutral-factor offset reported by the unfold engine (display only)."""
    neutral_factor: float
    thickness: float
    offset_distance: float
    a_face_count: int = 0

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Optional["NeutralOffsetInfo"]:
        if not isinstance(payload, Mapping):
            return None
        try:
            return cls(
                neutral_factor=float(payload.get("neutralFactor", payload.get("neutral_factor"))),
                thickness=float(payload.get("thickness")),
                offset_distance=float(payload.get("offsetDistance", payload.get("offset_distance"))),
                a_face_count=int(payload.get("aFaceCount", payload.get("a_face_count", 0)) or 0),
            )
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed offset info: %r", payload)
            return None

    def describe(self) -> str:
        return (
            f"K {self.neutral_factor:.3f} x T {self.thickness:.3f} = "
            f"offset {self.offset_distance:.3f} ({self.a_face_count} A-faces)"
        )


@dataclass(frozen=True)
class DiagnosticRay:
    origin: np.ndarray
    direction: np.ndarray
    length: float
    hits_original: bool
    hits_offset_positive: bool
    original_hit_point: Optional[np.ndarray] = None
    offset_hit_point: Optional[np.ndarray] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DiagnosticRay":
        def _vec(key: str) -> Optional[np.ndarray]:
            value = payload.get(key)
            if value is None:
                return None
            if isinstance(value, Mapping):
                value = [value.get("x", 0.0), value.get("y", 0.0), value.get("z", 0.0)]
            arr = np.asarray(value, dtype=float).reshape(-1)
            if arr.shape != (3,):
                raise ValueError(f"{key} must have 3 components")
            return arr

        origin = _vec("origin")
        direction = _vec("direction")
        if origin is None or direction is None:
            raise ValueError("diagnostic ray needs origin and direction")
        return cls(
            origin=origin,
            direction=direction,
            length=float(payload.get("length", 0.0)),
            hits_original=bool(payload.get("hitsOriginal", False)),
            hits_offset_positive=bool(payload.get("hitsOffsetPositive", False)),
            original_hit_point=_vec("originalHitPoint"),
            offset_hit_point=_vec("offsetHitPoint"),
        )

    def hit_gap(self) -> Optional[float]:
        """Distance between the original and offset hits, when both exist."""
        if self.original_hit_point is None or self.offset_hit_point is None:
            return None
        return float(np.linalg.norm(self.offset_hit_point - self.original_hit_point))


@dataclass
class RaySummary:
    total: int = 0
    original_hits: int = 0
    offset_hits: int = 0
    both_hits: int = 0
    mean_gap: Optional[float] = None

    @property
    def hit_fraction(self) -> float:
        return self.both_hits / self.total if self.total else 0.0


@dataclass
class RayGateConfig:
    hit_fraction_pass: float = 0.90
    hit_fraction_fail: float = 0.50
    gap_tolerance_pass: float = 0.10    # relative to the reported offset
    gap_tolerance_fail: float = 0.25


@dataclass
class QualityGate:
    """A single pass/warn/fail check."""

    name: str
    status: str  # "pass" | "warn" | "fail"
    metric_value: float
    threshold_pass: float
    threshold_fail: float
    message: str
    recommendations: List[str] = field(default_factory=list)


@dataclass
class UnfoldDiagnosticsReport:
    entries: Dict[str, RaySummary] = field(default_factory=dict)
    offset_info: Optional[NeutralOffsetInfo] = None
    quality_gates: List[QualityGate] = field(default_factory=list)
    overall_status: str = ""
    skipped_rays: int = 0


def parse_rays(raw_rays: Sequence[Mapping[str, Any]]) -> List[DiagnosticRay]:
    rays = []
    for i, raw in enumerate(raw_rays or []):
        try:
            rays.append(DiagnosticRay.from_dict(raw))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping diagnostic ray %d: %s", i, exc)
    return rays


def summarize_rays(rays: Sequence[DiagnosticRay]) -> RaySummary:
    summary = RaySummary(total=len(rays))
    gaps = []
    for ray in rays:
        summary.original_hits += int(ray.hits_original)
        summary.offset_hits += int(ray.hits_offset_positive)
        if ray.hits_original and ray.hits_offset_positive:
            summary.both_hits += 1
            gap = ray.hit_gap()
            if gap is not None:
                gaps.append(gap)
    if gaps:
        summary.mean_gap = float(np.mean(gaps))
    return summary


# ---------------------------------------------------------------------------
# Quality gate evaluation
# ---------------------------------------------------------------------------

def _gate_ray_hits(name: str, summary: RaySummary, config: RayGateConfig) -> QualityGate:
    fraction = summary.hit_fraction
    recs: List[str] = []
    if fraction >= config.hit_fraction_pass:
        status = "pass"
    elif fraction >= config.hit_fraction_fail:
        status = "warn"
    else:
        status = "fail"
    if status != "pass":
        missed = summary.total - summary.both_hits
        recs.append(f"Inspect {missed} rays of '{name}' that missed the original or offset surface")
    return QualityGate(
        name=f"ray_hits[{name}]",
        status=status,
        metric_value=fraction,
        threshold_pass=config.hit_fraction_pass,
        threshold_fail=config.hit_fraction_fail,
        message=f"{summary.both_hits}/{summary.total} rays hit both surfaces",
        recommendations=recs,
    )


def _gate_offset_gap(
    name: str,
    summary: RaySummary,
    info: NeutralOffsetInfo,
    config: RayGateConfig,
) -> Optional[QualityGate]:
    if summary.mean_gap is None or info.offset_distance <= 0:
        return None
    rel_error = abs(summary.mean_gap - info.offset_distance) / info.offset_distance
    if rel_error <= config.gap_tolerance_pass:
        status = "pass"
    elif rel_error <= config.gap_tolerance_fail:
        status = "warn"
    else:
        status = "fail"
    recs = []
    if status != "pass":
        recs.append("Check that the offset surface was built from the same A-faces")
    return QualityGate(
        name=f"offset_gap[{name}]",
        status=status,
        metric_value=rel_error,
        threshold_pass=config.gap_tolerance_pass,
        threshold_fail=config.gap_tolerance_fail,
        message=(
            f"Mean hit gap {summary.mean_gap:.4f} vs reported offset "
            f"{info.offset_distance:.4f}"
        ),
        recommendations=recs,
    )


def _gate_offset_consistency(info: NeutralOffsetInfo) -> QualityGate:
    expected = info.neutral_factor * info.thickness
    scale = max(abs(expected), 1e-9)
    rel_error = abs(info.offset_distance - expected) / scale
    status = "pass" if rel_error <= 1e-6 else "warn"
    recs = []
    if status != "pass":
        recs.append("Reported offset does not equal neutral factor x thickness")
    return QualityGate(
        name="offset_consistency",
        status=status,
        metric_value=rel_error,
        threshold_pass=1e-6,
        threshold_fail=float("inf"),
        message=info.describe(),
        recommendations=recs,
    )


def build_diagnostics_report(
    flat_meshes: Mapping[str, FlatMeshData],
    offset_info: Optional[NeutralOffsetInfo] = None,
    config: Optional[RayGateConfig] = None,
) -> UnfoldDiagnosticsReport:
    """Summarize rays per flat mesh entry and evaluate quality gates."""
    if config is None:
        config = RayGateConfig()
    report = UnfoldDiagnosticsReport(offset_info=offset_info)

    gates: List[QualityGate] = []
    if offset_info is not None:
        gates.append(_gate_offset_consistency(offset_info))

    for name, entry in flat_meshes.items():
        raw = entry.diagnostic_rays or []
        rays = parse_rays(raw)
        report.skipped_rays += len(raw) - len(rays)
        if not rays:
            continue
        summary = summarize_rays(rays)
        report.entries[name] = summary
        gates.append(_gate_ray_hits(name, summary, config))
        if offset_info is not None:
            gap_gate = _gate_offset_gap(name, summary, offset_info, config)
            if gap_gate is not None:
                gates.append(gap_gate)

    report.quality_gates = gates
    statuses = [g.status for g in gates]
    if "fail" in statuses:
        report.overall_status = "fail"
    elif "warn" in statuses:
        report.overall_status = "warn"
    else:
        report.overall_status = "pass"
    return report


def report_to_text(report: UnfoldDiagnosticsReport) -> str:
    """Render the report as markdown for stdout or a detail pane."""
    lines: List[str] = [f"# Unfold Diagnostics: {report.overall_status.upper()}", ""]
    if report.offset_info is not None:
        lines.append(f"**Neutral offset:** {report.offset_info.describe()}")
        lines.append("")

    if report.entries:
        lines.append("## Diagnostic Rays")
        for name, summary in report.entries.items():
            gap = f", mean gap {summary.mean_gap:.4f}" if summary.mean_gap is not None else ""
            lines.append(
                f"- {name}: {summary.total} rays, {summary.original_hits} original hits, "
                f"{summary.offset_hits} offset hits{gap}"
            )
        if report.skipped_rays:
            lines.append(f"- ({report.skipped_rays} malformed rays skipped)")
        lines.append("")

    lines.append("## Quality Gates")
    if not report.quality_gates:
        lines.append("- No diagnostic data")
    for g in report.quality_gates:
        lines.append(f"- [{g.status.upper()}] **{g.name}**: {g.message}")
        for rec in g.recommendations:
            lines.append(f"  - {rec}")
    return "\n".join(lines)
