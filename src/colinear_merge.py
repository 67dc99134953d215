"""
Colinear merging of boundary edges.

Triangulated faces split every straight physical edge into several boundary
segments. Merging maximal straight runs restores the polygon edges needed for
length-based matching. Works the same on 2D and 3D edge sets.

The boundary is held in an arena-indexed graph: vertex keys map to integer
indices into a coordinate array and edges are stored by sorted index pair.
Vertex indices are assigned in sorted key order and seeds are taken in sorted
pair order, so the output is reproducible regardless of input order.
"""
import logging
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from geometry_primitives import EPS, BoundaryEdge, MergedEdge

logger = logging.getLogger(__name__)

COLINEAR_TOLERANCE = 1e-6

Pair = Tuple[int, int]


class BoundaryGraph:
    """Boundary edges as an index graph."""

    def __init__(
        self,
        edges: Sequence[BoundaryEdge],
        point_lookup: Optional[Mapping[Hashable, Sequence[float]]] = None,
    ):
        own_points: Dict[Hashable, Tuple[float, ...]] = {}
        for edge in edges:
            own_points.setdefault(edge.a_key, edge.a)
            own_points.setdefault(edge.b_key, edge.b)

        self.keys: List[Hashable] = sorted(own_points, key=_sort_token)
        self.index: Dict[Hashable, int] = {k: i for i, k in enumerate(self.keys)}
        source = point_lookup if point_lookup is not None else own_points
        self.coords = np.array(
            [np.asarray(source.get(k, own_points[k]), dtype=float) for k in self.keys],
            dtype=float,
        )
        self.edges: Dict[Pair, BoundaryEdge] = {}
        self.incident: List[List[int]] = [[] for _ in self.keys]

        for edge in edges:
            u, v = self.index[edge.a_key], self.index[edge.b_key]
            if u == v:
                continue
            pair = self.pair(u, v)
            if pair in self.edges:
                continue
            self.edges[pair] = edge
            self.incident[u].append(v)
            self.incident[v].append(u)
        for neighbours in self.incident:
            neighbours.sort()

    @staticmethod
    def pair(u: int, v: int) -> Pair:
        return (u, v) if u < v else (v, u)

    def degree(self, u: int) -> int:
        return len(self.incident[u])

    def vector(self, u: int, v: int) -> np.ndarray:
        return self.coords[v] - self.coords[u]

    def walk(
        self,
        start: int,
        direction: np.ndarray,
        unvisited: Set[Pair],
        tolerance: float,
    ) -> List[int]:
        """Follow unvisited colinear continuations from *start*.

        Stops at a vertex with zero or several straight continuations; an
        ambiguous junction is a segment boundary, never a guess.
        """
        out: List[int] = []
        curr = start
        while True:
            candidates = [
                n for n in self.incident[curr]
                if self.pair(curr, n) in unvisited
                and is_colinear(direction, self.vector(curr, n), tolerance)
            ]
            if len(candidates) != 1:
                break
            nxt = candidates[0]
            unvisited.discard(self.pair(curr, nxt))
            out.append(nxt)
            curr = nxt
        return out


def is_colinear(
    d1: np.ndarray,
    d2: np.ndarray,
    tolerance: float = COLINEAR_TOLERANCE,
) -> bool:
    """True when *d2* continues *d1* along the same straight line."""
    n1 = float(np.linalg.norm(d1))
    n2 = float(np.linalg.norm(d2))
    if n1 <= EPS or n2 <= EPS:
        return False
    if len(d1) == 2:
        cross = abs(float(d1[0] * d2[1] - d1[1] * d2[0]))
    else:
        cross = float(np.linalg.norm(np.cross(d1, d2)))
    return cross <= tolerance * n1 * n2 and float(np.dot(d1, d2)) > 0


def merge_colinear(
    edges: Sequence[BoundaryEdge],
    point_lookup: Optional[Mapping[Hashable, Sequence[float]]] = None,
    tolerance: float = COLINEAR_TOLERANCE,
) -> List[MergedEdge]:
    """Collapse consecutive colinear boundary edges into single edges.

    Args:
        edges: boundary edges from either extractor (zero-length edges are
            dropped).
        point_lookup: optional vertex key -> position map used for the
            colinearity test (e.g. positions projected into a face plane).
            Output endpoints always come from the edges themselves.
        tolerance: relative cross-product tolerance,
            ``|d1 x d2| <= tolerance * |d1| * |d2|``.

    Returns:
        One MergedEdge per maximal straight run.
    """
    usable = [e for e in edges if e.length > EPS and e.a_key != e.b_key]
    if not usable:
        return []

    graph = BoundaryGraph(usable, point_lookup)
    points: Dict[Hashable, Tuple[float, ...]] = {}
    for edge in usable:
        points.setdefault(edge.a_key, edge.a)
        points.setdefault(edge.b_key, edge.b)

    unvisited: Set[Pair] = set(graph.edges)
    merged: List[MergedEdge] = []
    for pair in sorted(graph.edges):
        if pair not in unvisited:
            continue
        unvisited.discard(pair)
        seed = graph.edges[pair]
        a, b = graph.index[seed.a_key], graph.index[seed.b_key]
        direction = graph.vector(a, b)

        forward = graph.walk(b, direction, unvisited, tolerance)
        backward = graph.walk(a, -direction, unvisited, tolerance)
        if not forward and not backward:
            merged.append(MergedEdge.from_edge(seed))
            continue
        chain = [graph.keys[i] for i in reversed(backward)]
        chain += [seed.a_key, seed.b_key]
        chain += [graph.keys[i] for i in forward]
        merged.append(MergedEdge.from_chain(points, chain))

    logger.debug("Colinear merge: %d edges -> %d runs", len(usable), len(merged))
    return merged


def _sort_token(key: Hashable):
    return (type(key).__name__, key)
