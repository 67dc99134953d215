"""Tests for loading unfold debug dumps."""
import json

import numpy as np
import pytest

from unfold_payload import (
    DebugPath,
    face_key,
    load_unfold_debug,
    parse_flat_mesh,
    parse_unfold_debug,
)


def _dump_payload():
    return {
        "steps": [
            {
                "label": "base",
                "faceId": "12",
                "basis": {"origin": [0, 0, 0], "uAxis": [1, 0, 0], "vAxis": [0, 1, 0]},
                "paths": [
                    {"points": [[0, 0], [4, 0]], "edgeLabel": "e1", "faceId": 12},
                    {"points": [{"x": 0, "y": 0}, {"x": 0, "y": 3}], "edgeLabel": "e2",
                     "closed": False, "color": "#ff0000", "strokeWidth": 2},
                ],
            },
            {
                "label": "flange",
                "addedFaceId": 13,
                "baseFaceId": 12,
                "paths": [
                    {"points": [[0, 0], [4, 0]], "edgeLabel": "e1"},
                    {"points": [[9, 9]], "edgeLabel": "broken"},
                ],
            },
        ],
        "flatMeshes": {
            "body": {
                "positions": [0, 0, 0, 1, 0, 0, 1, 1, 0, 0, 1, 0],
                "triangles": [[0, 1, 2], [0, 2, 3]],
                "triangleFaceIds": [12, 13],
                "faceMetaById": {
                    "12": {"type": "planar"},
                    "13": {"type": "cylindrical", "radius": "2.5"},
                },
                "diagnosticRays": [{"origin": [0, 0, 0], "direction": [0, 0, 1]}],
            },
        },
        "offsetInfo": {"neutralFactor": 0.4, "thickness": 2.0, "offsetDistance": 0.8, "aFaceCount": 3},
    }


class TestFaceKey:

    def test_numeric_strings_become_ints(self):
        assert face_key("12") == 12
        assert face_key(" -3 ") == -3
        assert face_key(4.0) == 4

    def test_other_values_pass_through(self):
        assert face_key("A1") == "A1"
        assert face_key(None) is None


class TestParse:

    def test_steps(self):
        dump = parse_unfold_debug(_dump_payload())
        assert [s.label for s in dump.steps] == ["base", "flange"]
        base, flange = dump.steps
        assert base.face_id == 12
        assert base.basis is not None
        assert np.allclose(base.basis.normal, [0, 0, 1])
        assert base.edge_labels() == {"e1", "e2"}
        assert flange.added_face_id == 13
        assert flange.base_face_id == 12

    def test_path_fields(self):
        path = parse_unfold_debug(_dump_payload()).steps[0].paths[1]
        assert path.points.shape == (2, 3)
        assert path.color == "#ff0000"
        assert path.stroke_width == pytest.approx(2.0)

    def test_malformed_path_skipped(self, caplog):
        with caplog.at_level("WARNING"):
            dump = parse_unfold_debug(_dump_payload())
        assert [p.edge_label for p in dump.steps[1].paths] == ["e1"]
        assert "skipping path" in caplog.text

    def test_flat_mesh(self):
        mesh = parse_unfold_debug(_dump_payload()).flat_meshes["body"]
        assert mesh.name == "body"
        assert mesh.vertex_count == 4
        assert mesh.triangle_count == 2
        assert mesh.face_meta(13).is_bend
        assert mesh.face_meta(13).radius == pytest.approx(2.5)
        assert not mesh.face_meta(12).is_bend
        assert len(mesh.diagnostic_rays) == 1

    def test_offset_info(self):
        info = parse_unfold_debug(_dump_payload()).offset_info
        assert info.offset_distance == pytest.approx(0.8)
        assert info.a_face_count == 3

    def test_list_of_flat_meshes(self):
        payload = _dump_payload()
        entry = payload["flatMeshes"]["body"]
        entry["name"] = "sheet"
        payload["flatMeshes"] = [entry]
        assert list(parse_unfold_debug(payload).flat_meshes) == ["sheet"]

    def test_face_id_count_mismatch(self):
        with pytest.raises(ValueError):
            parse_flat_mesh("bad", {
                "positions": [0, 0, 0, 1, 0, 0, 0, 1, 0],
                "triangles": [0, 1, 2],
                "triangleFaceIds": [1, 2],
            })

    def test_out_of_range_triangle(self):
        with pytest.raises(ValueError, match="out of range"):
            parse_flat_mesh("bad", {
                "positions": [0, 0, 0],
                "triangles": [0, 1, 2],
                "triangleFaceIds": [1],
            })

    def test_payload_must_be_object(self):
        with pytest.raises(ValueError):
            parse_unfold_debug([1, 2, 3])

    def test_debug_path_needs_points(self):
        with pytest.raises(ValueError):
            DebugPath.from_dict({"edgeLabel": "x"})


class TestLoad:

    def test_roundtrip_file(self, tmp_path):
        path = tmp_path / "dump.json"
        path.write_text(json.dumps(_dump_payload()), encoding="utf-8")
        dump = load_unfold_debug(str(path))
        assert dump.source_path == str(path)
        assert len(dump.steps) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_unfold_debug(str(tmp_path / "nope.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_unfold_debug(str(path))
