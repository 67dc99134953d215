"""
Endpoint signatures for disambiguating edge correspondences.

At each endpoint of an edge the signature records the signed turn angle to
the longest neighbouring edge sharing that vertex, plus that neighbour's
length. Signatures are compared on 2D coordinates (flattened patch or a 3D
face projected into its basis) and only ever used as a scoring penalty.
"""
import math
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from geometry_primitives import EPS, BoundaryEdge


@dataclass(frozen=True)
class EndpointSignature:
    angle: float      # signed angle (rad) from this edge to its neighbour
    length: float     # neighbour length


def build_edge_adjacency(edges: Sequence[BoundaryEdge]) -> Dict[Hashable, List[int]]:
    """Vertex key -> indices of incident edges, in edge-list order."""
    adjacency: Dict[Hashable, List[int]] = {}
    for i, edge in enumerate(edges):
        adjacency.setdefault(edge.a_key, []).append(i)
        if edge.b_key != edge.a_key:
            adjacency.setdefault(edge.b_key, []).append(i)
    return adjacency


def endpoint_signature(
    edges: Sequence[BoundaryEdge],
    index: int,
    vertex_key: Hashable,
    adjacency: Optional[Dict[Hashable, List[int]]] = None,
) -> Optional[EndpointSignature]:
    """Signature of ``edges[index]`` at the endpoint *vertex_key*.

    Returns None when no other edge meets that endpoint, which callers treat
    as "fall back to geometry only". Ties between equally long neighbours go
    to the first one in edge-list order.
    """
    if adjacency is None:
        adjacency = build_edge_adjacency(edges)
    edge = edges[index]

    best: Optional[int] = None
    for j in adjacency.get(vertex_key, []):
        if j == index or edges[j].length <= EPS:
            continue
        if best is None or edges[j].length > edges[best].length:
            best = j
    if best is None:
        return None

    neighbour = edges[best]
    shared = np.asarray(edge.point_for(vertex_key), dtype=float)[:2]
    own_far = np.asarray(edge.point_for(edge.other_key(vertex_key)), dtype=float)[:2]
    nb_far = np.asarray(neighbour.point_for(neighbour.other_key(vertex_key)), dtype=float)[:2]

    d1 = own_far - shared
    d2 = nb_far - shared
    n1 = float(np.linalg.norm(d1))
    n2 = float(np.linalg.norm(d2))
    if n1 <= EPS or n2 <= EPS:
        return None
    d1 /= n1
    d2 /= n2
    cross = float(d1[0] * d2[1] - d1[1] * d2[0])
    dot = float(d1 @ d2)
    return EndpointSignature(angle=math.atan2(cross, dot), length=float(neighbour.length))


def edge_signatures(
    edges: Sequence[BoundaryEdge],
    index: int,
    adjacency: Optional[Dict[Hashable, List[int]]] = None,
) -> Tuple[Optional[EndpointSignature], Optional[EndpointSignature]]:
    """(signature at ``a``, signature at ``b``) of ``edges[index]``."""
    if adjacency is None:
        adjacency = build_edge_adjacency(edges)
    edge = edges[index]
    return (
        endpoint_signature(edges, index, edge.a_key, adjacency),
        endpoint_signature(edges, index, edge.b_key, adjacency),
    )


def wrap_angle(delta: float) -> float:
    """Map an angle difference into [0, pi]."""
    return abs(math.atan2(math.sin(delta), math.cos(delta)))


def signature_distance(
    a: EndpointSignature,
    b: EndpointSignature,
    ref_length: float,
) -> float:
    """Squared angle gap plus squared relative neighbour-length gap."""
    scale = ref_length if ref_length > EPS else 1.0
    return wrap_angle(a.angle - b.angle) ** 2 + ((a.length - b.length) / scale) ** 2
