"""Tests for the unfold step visualization builder."""
import re

import numpy as np
import pytest

from geometry_primitives import BoundaryEdge, FaceBasis, FaceMeta, FlatMeshData
from unfold_payload import DebugPath, UnfoldDebugStep
from unfold_visualization import (
    NO_GEOMETRY_MESSAGE,
    VisualizationConfig,
    bend_region_centroid,
    build_basis_frame,
    build_basis_frames,
    build_centerlines,
    build_colored_meshes,
    build_edge_lines,
    build_visualization,
    centerline_from_edges,
    classify_face,
    face_color,
    face_highlight,
    hashed_face_color,
    newly_added_labels,
    render_visualization,
)


def _step(label, edge_labels):
    return UnfoldDebugStep(
        label=label,
        paths=[
            DebugPath(points=np.array([[0.0, i], [1.0, i]]), edge_label=name)
            for i, name in enumerate(edge_labels)
        ],
    )


class TestFaceColoring:

    def test_classify(self):
        assert classify_face(FaceMeta(type="cylindrical", radius=1.0)) == "bend"
        assert classify_face(FaceMeta(type="planar")) == "planar"
        assert classify_face(FaceMeta(type="cylindrical", radius=None)) == "planar"
        assert classify_face(None) is None

    def test_class_colors(self, bent_strip):
        config = VisualizationConfig()
        meshes = {m.face_id: m for m in build_colored_meshes(bent_strip, config)}
        assert meshes[2].kind == "bend"
        assert meshes[2].color == config.bend_color
        assert meshes[1].color == meshes[3].color == config.planar_color

    def test_hash_fallback_is_deterministic(self):
        config = VisualizationConfig()
        a = face_color(17, None, config)
        assert a == face_color(17, None, config)
        assert re.fullmatch(r"#[0-9a-f]{6}", a)
        assert hashed_face_color(1) != hashed_face_color(2)

    def test_same_face_same_color_regardless_of_order(self, bent_strip):
        order = [5, 0, 3, 1, 4, 2]
        shuffled = FlatMeshData(
            positions=bent_strip.positions,
            triangles=bent_strip.triangles[order],
            triangle_face_ids=bent_strip.triangle_face_ids[order],
            face_meta_by_id={},
        )
        meshes = build_colored_meshes(shuffled)
        colors = {m.face_id: m.color for m in meshes}
        assert len(meshes) == 3
        assert [m.face_id for m in meshes] == [3, 1, 2]
        for m in build_colored_meshes(FlatMeshData(
            positions=bent_strip.positions,
            triangles=bent_strip.triangles,
            triangle_face_ids=bent_strip.triangle_face_ids,
        )):
            assert colors[m.face_id] == m.color

    def test_submesh_vertices_are_compacted(self, bent_strip):
        bend = [m for m in build_colored_meshes(bent_strip) if m.face_id == 2][0]
        assert bend.vertices.shape == (4, 3)
        assert bend.triangles.max() == 3
        assert np.allclose(sorted(set(bend.vertices[:, 0])), [4.0, 5.0])


class TestEdgeLines:

    def test_outer_and_seam_split(self, bent_strip):
        lines = build_edge_lines(bent_strip)
        outer = [l for l in lines if l.kind == "outer"]
        seams = [l for l in lines if l.kind == "seam"]
        assert len(outer) == 4
        assert sorted(l.length for l in outer) == pytest.approx([3.0, 3.0, 9.0, 9.0])
        assert not any(l.dashed for l in outer)
        assert sorted(l.face_ids for l in seams) == [(1, 2), (2, 3)]

    def test_dash_count_from_shortest_seam(self, bent_strip):
        config = VisualizationConfig(dashes_per_shortest_edge=6)
        seams = [l for l in build_edge_lines(bent_strip, config=config) if l.kind == "seam"]
        assert all(l.dash_count == 6 for l in seams)

    def test_dash_segments(self, bent_strip):
        seam = [l for l in build_edge_lines(bent_strip) if l.kind == "seam"][0]
        pieces = seam.dash_segments(0.5)
        assert len(pieces) == 4
        for a, b in pieces:
            assert np.linalg.norm(np.subtract(b, a)) == pytest.approx(0.375)

    def test_internal_diagonals_are_not_lines(self):
        mesh = FlatMeshData(
            positions=np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]], dtype=float),
            triangles=np.array([[0, 1, 2], [0, 2, 3]]),
            triangle_face_ids=np.array([0, 0]),
        )
        lines = build_edge_lines(mesh)
        assert len(lines) == 4
        assert all(l.kind == "outer" for l in lines)


class TestCenterlines:

    def test_symmetric_groups(self):
        edges = [
            BoundaryEdge.from_points((0, 1), (4, 1), "a0", "a1"),
            BoundaryEdge.from_points((0, -1), (4, -1), "b0", "b1"),
        ]
        start, end, direction, offset, sides = centerline_from_edges(edges, (2, 0))
        assert offset == pytest.approx(0.0)
        assert sides == pytest.approx((-1.0, 1.0))
        assert np.allclose(start, [0, 0])
        assert np.allclose(end, [4, 0])
        assert np.allclose(direction, [1, 0])

    def test_offset_is_mean_and_extent_is_union(self):
        edges = [
            BoundaryEdge.from_points((0, 2), (4, 2), "a0", "a1"),
            BoundaryEdge.from_points((6, -1), (1, -1), "b0", "b1"),
            BoundaryEdge.from_points((0, -1), (0, 2), "c0", "c1"),
        ]
        start, end, _, offset, sides = centerline_from_edges(edges, (0, 0))
        assert offset == pytest.approx(0.5)
        assert sides == pytest.approx((-1.0, 2.0))
        assert np.allclose(start, [0, 0.5])
        assert np.allclose(end, [6, 0.5])

    def test_one_sided_returns_none(self):
        edges = [BoundaryEdge.from_points((0, 1), (4, 1), 0, 1)]
        assert centerline_from_edges(edges, (2, 0)) is None
        assert centerline_from_edges([], (0, 0)) is None

    def test_bend_face_centerline(self, bent_strip):
        lines = build_centerlines(bent_strip)
        assert len(lines) == 1
        cl = lines[0]
        assert cl.face_id == 2
        assert sorted([cl.start, cl.end]) == [pytest.approx((4.5, 0.0)), pytest.approx((4.5, 3.0))]
        assert cl.offset == pytest.approx(0.0)

    def test_isolated_bend_face_uses_own_boundary(self, bent_strip):
        tris = bent_strip.triangles_for_face(2)
        mesh = FlatMeshData(
            positions=bent_strip.positions,
            triangles=tris,
            triangle_face_ids=np.array([2, 2]),
            face_meta_by_id={2: FaceMeta(type="cylindrical", radius=1.0)},
        )
        lines = build_centerlines(mesh)
        assert len(lines) == 1
        assert lines[0].start[0] == pytest.approx(4.5)

    def test_planar_faces_have_no_centerline(self, bent_strip):
        bent_strip.face_meta_by_id[2] = FaceMeta(type="planar")
        assert build_centerlines(bent_strip) == []


class TestBuildVisualization:

    def test_full_step(self, bent_strip):
        out = build_visualization(_step("s1", ["e1"]), {"body": bent_strip})
        assert out.step_label == "s1"
        assert len(out.colored_meshes) == 3
        assert len(out.centerlines) == 1
        assert out.message == ""
        assert all(m.entry_name == "body" for m in out.colored_meshes)

    def test_list_entries(self, bent_strip):
        out = build_visualization(None, [bent_strip])
        assert len(out.colored_meshes) == 3
        assert out.step_paths == []

    def test_no_geometry_message(self):
        out = build_visualization(None, {})
        assert out.message == NO_GEOMETRY_MESSAGE
        assert out.is_empty

    def test_empty_mesh_and_empty_step(self):
        empty = FlatMeshData(
            positions=np.zeros((0, 3)), triangles=np.zeros((0, 3), dtype=int),
            triangle_face_ids=np.zeros(0, dtype=int),
        )
        out = build_visualization(UnfoldDebugStep(label="blank"), {"e": empty})
        assert out.message == NO_GEOMETRY_MESSAGE

    def test_out_of_range_indices_skipped(self):
        broken = FlatMeshData(
            positions=np.zeros((3, 3)), triangles=np.array([[0, 1, 5]]),
            triangle_face_ids=np.array([0]),
        )
        out = build_visualization(None, {"broken": broken})
        assert out.message == NO_GEOMETRY_MESSAGE

    def test_newly_added_curves_are_emphasised(self, bent_strip):
        first = _step("s1", ["e1"])
        second = _step("s2", ["e1", "e2"])
        config = VisualizationConfig(base_stroke_width=1.0, added_stroke_scale=2.5)
        out = build_visualization(second, {"body": bent_strip}, previous_step=first, config=config)
        assert out.added_labels == {"e2"}
        widths = {p.label: p.stroke_width for p in out.step_paths}
        assert widths["e1"] == pytest.approx(1.0)
        assert widths["e2"] == pytest.approx(2.5)

    def test_first_step_everything_new(self):
        assert newly_added_labels(_step("s", ["a", "b"])) == {"a", "b"}
        assert newly_added_labels(None) == set()

    def test_bend_paths_are_dashed(self):
        step = UnfoldDebugStep(label="s", paths=[
            DebugPath(points=np.array([[0, 0], [1, 0]]), edge_label="bend_3"),
            DebugPath(points=np.array([[0, 0], [1, 0]]), edge_label="outline"),
        ])
        out = build_visualization(step, {})
        assert [p.dashed for p in out.step_paths] == [True, False]


class TestRender:

    def test_writes_png(self, bent_strip, tmp_path):
        out = build_visualization(_step("s1", ["e1"]), {"body": bent_strip})
        path = render_visualization(out, str(tmp_path / "renders" / "step.png"), dpi=40)
        with open(path, "rb") as f:
            assert f.read(8) == b"\x89PNG\r\n\x1a\n"

    def test_renders_no_geometry_state(self, tmp_path):
        path = render_visualization(build_visualization(None, {}), str(tmp_path / "empty.png"), dpi=40)
        assert path.endswith("empty.png")


class TestStepFaces:

    def test_added_face_is_highlighted(self, bent_strip):
        step = UnfoldDebugStep(label="s", added_face_id=2, face_id=2, base_face_id=1)
        out = build_visualization(step, {"body": bent_strip})
        assert out.highlighted_faces == {2: "added", 1: "base"}
        meshes = {m.face_id: m for m in out.colored_meshes}
        assert meshes[2].outline_color == VisualizationConfig().added_face_color
        assert meshes[3].highlight is None
        assert meshes[3].outline_color is None

    def test_step_without_face_ids_has_no_highlights(self, bent_strip):
        out = build_visualization(UnfoldDebugStep(label="s"), {"body": bent_strip})
        assert out.highlighted_faces == {}

    def test_highlight_changes_output(self, bent_strip):
        plain = build_visualization(UnfoldDebugStep(label="s"), {"body": bent_strip})
        marked = build_visualization(UnfoldDebugStep(label="s", added_face_id=2), {"body": bent_strip})
        assert [m.highlight for m in plain.colored_meshes] != [m.highlight for m in marked.colored_meshes]

    def test_current_and_base_roles(self):
        step = UnfoldDebugStep(label="s", added_face_id=4, face_id=3, base_face_id=1)
        assert face_highlight(4, step) == "added"
        assert face_highlight(3, step) == "current"
        assert face_highlight(1, step) == "base"
        assert face_highlight(9, step) is None
        assert face_highlight(1, None) is None


class TestBasisFrames:

    def test_frames_from_step_bases(self, bent_strip):
        step = UnfoldDebugStep(
            label="s",
            basis=FaceBasis.from_axes([1.0, 2.0, 0.0], [2.0, 0.0, 0.0], [0.0, 1.0, 0.0]),
            base_basis=FaceBasis.from_axes([0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [-1.0, 0.0, 0.0]),
        )
        config = VisualizationConfig(basis_axis_scale=0.1)
        out = build_visualization(step, {"body": bent_strip}, config=config)
        frames = {f.role: f for f in out.basis_frames}
        assert set(frames) == {"basis", "base_basis"}
        length = 0.1 * np.sqrt(9.0 ** 2 + 3.0 ** 2)
        basis = frames["basis"]
        assert basis.origin == pytest.approx((1.0, 2.0, 0.0))
        assert basis.u_end == pytest.approx((1.0 + length, 2.0, 0.0))
        assert basis.v_end == pytest.approx((1.0, 2.0 + length, 0.0))
        assert frames["base_basis"].v_end == pytest.approx((-length, 0.0, 0.0))

    def test_degenerate_basis_skipped(self):
        flat = FaceBasis.from_axes([0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 1.0, 0.0])
        assert build_basis_frame(flat, "basis", 1.0) is None
        assert build_basis_frames(UnfoldDebugStep(label="s", basis=flat)) == []

    def test_basis_alone_is_something_to_show(self):
        step = UnfoldDebugStep(
            label="s", basis=FaceBasis.from_axes([0, 0, 0], [1, 0, 0], [0, 1, 0]),
        )
        out = build_visualization(step, {})
        assert len(out.basis_frames) == 1
        assert out.basis_frames[0].u_end == pytest.approx((1.0, 0.0, 0.0))
        assert out.message == ""

    def test_render_with_frames_and_highlights(self, bent_strip, tmp_path):
        step = UnfoldDebugStep(
            label="s", added_face_id=2,
            basis=FaceBasis.from_axes([4.5, 1.5, 0], [1, 0, 0], [0, 1, 0]),
        )
        out = build_visualization(step, {"body": bent_strip})
        path = render_visualization(out, str(tmp_path / "framed.png"), dpi=40)
        with open(path, "rb") as f:
            assert f.read(8) == b"\x89PNG\r\n\x1a\n"


class TestEntryNames:

    def test_mapping_key_names_unnamed_mesh_without_mutating_it(self, bent_strip):
        unnamed = FlatMeshData(
            positions=bent_strip.positions,
            triangles=bent_strip.triangles,
            triangle_face_ids=bent_strip.triangle_face_ids,
            face_meta_by_id=bent_strip.face_meta_by_id,
        )
        out = build_visualization(None, {"strip": unnamed})
        assert unnamed.name == ""
        assert {m.entry_name for m in out.colored_meshes} == {"strip"}
        assert {line.entry_name for line in out.edge_lines} == {"strip"}
        assert [cl.entry_name for cl in out.centerlines] == ["strip"]


class TestBendRegionCentroid:

    def test_centroid_of_boundary_polygon(self, bent_strip):
        assert bend_region_centroid(bent_strip, 2) == pytest.approx((4.5, 1.5))

    def test_collapsed_face_falls_back_to_vertex_mean(self):
        sliver = FlatMeshData(
            positions=np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]]),
            triangles=np.array([[0, 1, 2]]),
            triangle_face_ids=np.array([5]),
        )
        assert bend_region_centroid(sliver, 5) == pytest.approx((1.0, 0.0))
