"""Tests for colinear boundary-edge merging."""
import numpy as np
import pytest

from boundary_extraction import extract_boundary_2d
from colinear_merge import BoundaryGraph, is_colinear, merge_colinear
from geometry_primitives import BoundaryEdge


def _chain(points, keys=None):
    keys = keys if keys is not None else list(range(len(points)))
    return [
        BoundaryEdge.from_points(points[i], points[i + 1], keys[i], keys[i + 1])
        for i in range(len(points) - 1)
    ]


def _endpoints(edges):
    return sorted(
        tuple(sorted((tuple(np.round(e.a, 9)), tuple(np.round(e.b, 9)))))
        for e in edges
    )


class TestIsColinear:

    def test_same_direction(self):
        assert is_colinear(np.array([1.0, 0.0]), np.array([3.0, 0.0]))

    def test_opposite_direction_is_not_a_continuation(self):
        assert not is_colinear(np.array([1.0, 0.0]), np.array([-1.0, 0.0]))

    def test_perpendicular(self):
        assert not is_colinear(np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0]))

    def test_zero_vector(self):
        assert not is_colinear(np.zeros(2), np.array([1.0, 0.0]))


class TestMergeColinear:

    def test_four_unit_edges_merge_into_one(self):
        edges = _chain([(0, 0), (1, 0), (2, 0), (3, 0), (4, 0)])
        merged = merge_colinear(edges)
        assert len(merged) == 1
        assert merged[0].length == pytest.approx(4.0)
        assert merged[0].vertex_keys == (0, 1, 2, 3, 4)
        assert merged[0].segment_count == 4

    def test_input_order_does_not_matter(self):
        edges = _chain([(0, 0), (1, 0), (2, 0), (3, 0), (4, 0)])
        shuffled = [edges[2], edges[0], edges[3], edges[1]]
        assert _endpoints(merge_colinear(shuffled)) == _endpoints(merge_colinear(edges))

    def test_three_dimensional_run(self):
        edges = _chain([(0, 0, 0), (1, 1, 1), (2, 2, 2)], keys=["a", "b", "c"])
        merged = merge_colinear(edges)
        assert len(merged) == 1
        assert merged[0].length == pytest.approx(np.sqrt(12))

    def test_subdivided_square_sides(self):
        pts = [(0, 0), (1, 0), (2, 0), (2, 1), (2, 2), (1, 2), (0, 2), (0, 1), (0, 0)]
        keys = list(range(8)) + [0]
        merged = merge_colinear(_chain(pts, keys))
        assert len(merged) == 4
        assert all(m.length == pytest.approx(2.0) for m in merged)

    def test_idempotent(self):
        pts = [(0, 0), (1, 0), (2, 0), (2, 1), (2, 2), (1, 2), (0, 2), (0, 1), (0, 0)]
        keys = list(range(8)) + [0]
        once = merge_colinear(_chain(pts, keys))
        twice = merge_colinear(once)
        assert _endpoints(twice) == _endpoints(once)

    def test_ambiguous_junction_stops_the_run(self):
        edges = [
            BoundaryEdge.from_points((-1, 0), (0, 0), "m", "o"),
            BoundaryEdge.from_points((0, 0), (1, 0), "o", "p"),
            BoundaryEdge.from_points((0, 0), (2, 0), "o", "q"),
        ]
        assert len(merge_colinear(edges)) == 3

    def test_corner_is_kept(self):
        edges = _chain([(0, 0), (1, 0), (1, 1)])
        assert len(merge_colinear(edges)) == 2

    def test_zero_length_edges_dropped(self):
        edges = _chain([(0, 0), (1, 0)]) + [BoundaryEdge.from_points((1, 0), (1, 0), 1, 9)]
        merged = merge_colinear(edges)
        assert len(merged) == 1

    def test_empty(self):
        assert merge_colinear([]) == []

    def test_point_lookup_drives_colinearity(self):
        # Positions bent in 3D but straight once projected.
        edges = _chain([(0, 0, 0), (1, 0, 0.5), (2, 0, 0)], keys=[0, 1, 2])
        assert len(merge_colinear(edges)) == 2
        lookup = {0: (0.0, 0.0), 1: (1.0, 0.0), 2: (2.0, 0.0)}
        merged = merge_colinear(edges, lookup)
        assert len(merged) == 1
        assert merged[0].a == (0.0, 0.0, 0.0)

    def test_flat_face_boundary(self, bent_strip):
        raw = [e for f in (1, 2, 3) for e in extract_boundary_2d(bent_strip, f)]
        assert len(merge_colinear(raw)) < len(raw)


class TestBoundaryGraph:

    def test_vertex_indices_follow_sorted_keys(self):
        edges = _chain([(0, 0), (1, 0), (2, 0)], keys=[7, 3, 5])
        graph = BoundaryGraph(edges)
        assert graph.keys == [3, 5, 7]
        assert graph.degree(graph.index[3]) == 2
        assert set(graph.edges) == {(0, 2), (0, 1)}
