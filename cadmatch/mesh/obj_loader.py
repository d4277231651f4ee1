"""
Minimal OBJ reader producing a validated triangle Mesh.

Only ``v``, ``vn`` and ``f`` records are read; everything else (``vt``,
``g``, ``usemtl``, comments, ...) is ignored.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, TextIO, Union

import numpy as np

from cadmatch.core.data_structures import Mesh
from cadmatch.core.errors import MeshErrorKind, MeshLoadError

logger = logging.getLogger(__name__)


def _parse_face_index(token: str, num_vertices: int) -> int:
    """Zero-based vertex index from an OBJ face token such as ``7``, ``7/2`` or ``7//3``."""
    value = int(token.split("/")[0])
    if value < 0:
        # Relative index: -1 is the most recently declared vertex.
        return num_vertices + value
    return value - 1


def compute_vertex_normals(positions: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """
    Area-weighted per-vertex normals.

    Args:
        positions: Vertex positions (V, 3).
        triangles: Zero-based triangle indices (T, 3).

    Returns:
        Unit normals (V, 3), dtype=float32. Vertices not used by any
        triangle get a zero normal.
    """
    normals = np.zeros_like(positions, dtype=np.float64)
    if len(triangles) == 0:
        return normals.astype(np.float32)

    p0 = positions[triangles[:, 0]].astype(np.float64)
    p1 = positions[triangles[:, 1]].astype(np.float64)
    p2 = positions[triangles[:, 2]].astype(np.float64)
    # Cross product length is twice the triangle area, so this weights by area.
    face_normals = np.cross(p1 - p0, p2 - p0)

    for corner in range(3):
        np.add.at(normals, triangles[:, corner], face_normals)

    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    lengths[lengths == 0] = 1.0
    return (normals / lengths).astype(np.float32)


def _read_lines(stream: Union[TextIO, BinaryIO]) -> List[str]:
    try:
        data = stream.read()
    except (OSError, ValueError) as e:
        raise MeshLoadError(MeshErrorKind.IO, f"failed to read OBJ stream: {e}") from e

    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    return data.splitlines()


def load_obj(stream: Union[TextIO, BinaryIO]) -> Mesh:
    """
    Parse an OBJ stream into a Mesh.

    Malformed ``v``/``vn``/``f`` lines are dropped with a warning; they never
    abort the load.

    Args:
        stream: Text or binary file-like object.

    Returns:
        Validated Mesh with zero-based triangle indices.

    Raises:
        MeshLoadError: IO if the stream cannot be read, FORMAT if the
            resulting mesh has no triangles or fewer than 3 vertices.
    """
    positions: List[List[float]] = []
    normals: List[List[float]] = []
    faces: List[List[int]] = []
    dropped = 0

    for line_no, raw_line in enumerate(_read_lines(stream), start=1):
        tokens = raw_line.split()
        if not tokens:
            continue
        tag = tokens[0]

        if tag not in ("v", "vn", "f"):
            continue

        try:
            if tag == "v":
                if len(tokens) < 4:
                    raise ValueError(f"expected 3 coordinates, got {len(tokens) - 1}")
                positions.append([float(t) for t in tokens[1:4]])
            elif tag == "vn":
                if len(tokens) < 4:
                    raise ValueError(f"expected 3 components, got {len(tokens) - 1}")
                normals.append([float(t) for t in tokens[1:4]])
            else:
                if len(tokens) < 4:
                    raise ValueError(f"expected 3 face indices, got {len(tokens) - 1}")
                if len(tokens) > 4:
                    logger.debug(
                        "[mesh] line %d: %d-vertex face, keeping first triangle",
                        line_no,
                        len(tokens) - 1,
                    )
                faces.append([_parse_face_index(t, len(positions)) for t in tokens[1:4]])
        except ValueError as e:
            dropped += 1
            logger.warning("[mesh] line %d dropped (%s): %r", line_no, e, raw_line.strip())

    vertex_array = np.array(positions, dtype=np.float32).reshape(-1, 3)
    triangle_array = np.array(faces, dtype=np.int32).reshape(-1, 3)

    if len(triangle_array) > 0:
        in_range = np.all((triangle_array >= 0) & (triangle_array < len(vertex_array)), axis=1)
        if not np.all(in_range):
            logger.warning(
                "[mesh] dropping %d faces with out-of-range vertex indices",
                int((~in_range).sum()),
            )
            triangle_array = triangle_array[in_range]

    if len(normals) == len(positions) and len(normals) > 0:
        normal_array = np.array(normals, dtype=np.float32).reshape(-1, 3)
    else:
        if normals:
            logger.info(
                "[mesh] %d normals for %d vertices; recomputing vertex normals",
                len(normals),
                len(positions),
            )
        normal_array = compute_vertex_normals(vertex_array, triangle_array)

    mesh = Mesh(positions=vertex_array, normals=normal_array, triangles=triangle_array)
    mesh.validate()

    logger.info(
        "[mesh] OBJ parsed: %d vertices, %d normals, %d triangles (%d lines dropped)",
        mesh.num_vertices,
        len(normals),
        mesh.num_triangles,
        dropped,
    )
    return mesh


def load_obj_bytes(data: bytes) -> Mesh:
    """Parse an in-memory OBJ file."""
    return load_obj(io.BytesIO(data))


def load_obj_file(path: Union[str, Path], encoding: Optional[str] = "utf-8") -> Mesh:
    """
    Load an OBJ file from disk.

    Raises:
        MeshLoadError: IO if the file cannot be opened.
    """
    try:
        with open(path, "r", encoding=encoding, errors="replace") as f:
            return load_obj(f)
    except OSError as e:
        raise MeshLoadError(MeshErrorKind.IO, f"could not open {path}: {e}") from e


__all__ = ["load_obj", "load_obj_bytes", "load_obj_file", "compute_vertex_normals"]
