#!/usr/bin/env python3
"""
Place one flattened face of an unfold debug dump onto a face of a 3D mesh.

The reference face is a coplanar facet of the mesh (largest first). Its basis
is derived from the facet's area-weighted normal and centroid unless one is
given explicitly.

Usage:
    python scripts/align_flat_face.py --mesh part.stl --dump unfold_debug.json --flat-mesh body --face-id 3
    python scripts/align_flat_face.py --mesh part.glb --dump dump.json --flat-mesh body --face-id 3 --facet 1 -v
"""
import sys
import json
import argparse
import logging
from pathlib import Path

import numpy as np
import trimesh

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from placement_solver import AlignmentConfig, align_flat_face, derive_face_basis, placement_to_dict
from unfold_payload import load_unfold_debug, face_key


def _load_mesh(mesh_path: Path) -> trimesh.Trimesh:
    scene_or_mesh = trimesh.load(str(mesh_path))
    if isinstance(scene_or_mesh, trimesh.Scene):
        meshes = [
            g for g in scene_or_mesh.geometry.values()
            if isinstance(g, trimesh.Trimesh)
        ]
        if not meshes:
            raise ValueError(f"No triangle mesh found in scene: {mesh_path}")
        mesh = max(meshes, key=lambda m: len(m.faces))
    elif isinstance(scene_or_mesh, trimesh.Trimesh):
        mesh = scene_or_mesh
    else:
        raise ValueError(f"Unsupported mesh object: {type(scene_or_mesh)}")
    out = mesh.copy()
    out.remove_unreferenced_vertices()
    return out


def _facet_faces(mesh: trimesh.Trimesh, index: int) -> np.ndarray:
    """Triangles of the *index*-th largest coplanar facet."""
    facets = list(mesh.facets)
    if not facets:
        order = np.argsort(-mesh.area_faces, kind="stable")
        if index >= len(order):
            raise ValueError(f"Facet {index} out of range ({len(order)} triangles)")
        return mesh.faces[[order[index]]]
    order = np.argsort(-np.asarray(mesh.facets_area), kind="stable")
    if index >= len(order):
        raise ValueError(f"Facet {index} out of range ({len(order)} facets)")
    return mesh.faces[facets[order[index]]]


def main():
    parser = argparse.ArgumentParser(
        description="Solve the rigid placement of a flattened face onto a 3D mesh face.",
    )
    parser.add_argument("--mesh", required=True, help="Reference mesh (STL, OBJ, GLB, PLY)")
    parser.add_argument("--dump", required=True, help="Unfold debug dump (JSON)")
    parser.add_argument("--flat-mesh", required=True, help="Name of the flat mesh entry")
    parser.add_argument("--face-id", required=True, help="Face id inside the flat mesh")
    parser.add_argument(
        "--facet", type=int, default=0,
        help="Reference facet, ordered by area (default: 0 = largest)",
    )
    parser.add_argument(
        "--length-tolerance", type=float, default=0.01,
        help="Relative length tolerance for candidate edges (default: 0.01)",
    )
    parser.add_argument("--output", default=None, help="Write placement JSON here")
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        mesh = _load_mesh(Path(args.mesh))
        dump = load_unfold_debug(args.dump)
        faces = _facet_faces(mesh, args.facet)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    flat_mesh = dump.flat_meshes.get(args.flat_mesh)
    if flat_mesh is None:
        parser.error(
            f"No flat mesh '{args.flat_mesh}' in dump "
            f"(available: {', '.join(sorted(dump.flat_meshes)) or 'none'})"
        )

    vertices = np.asarray(mesh.vertices, dtype=float)
    basis = derive_face_basis(vertices, faces)
    placement = align_flat_face(
        vertices, faces, basis, flat_mesh, face_key(args.face_id),
        config=AlignmentConfig(length_tolerance=args.length_tolerance),
    )

    payload = {
        "mesh": str(Path(args.mesh).resolve()),
        "flat_mesh": args.flat_mesh,
        "face_id": args.face_id,
        "facet": args.facet,
        "placement": placement_to_dict(placement),
    }
    text = json.dumps(payload, indent=2)
    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text + "\n", encoding="utf-8")
        print(f"Placement written to {out}")
    else:
        print(text)
    return 0 if placement is not None else 1


if __name__ == "__main__":
    sys.exit(main())
