"""Byte layout of the glTF binary payload.

Each (element, material) pair accumulates its geometry in a :class:`BinaryData`
bucket.  When the owning element is finalised the bucket is handed to
:class:`BinaryLayoutEngine`, which appends bufferViews/accessors to the document
and remembers the bucket so :meth:`BinaryLayoutEngine.write_payload` can later
emit bytes that line up exactly with those views.

Layout per bucket, in this order:

* indices: ``uint32`` when the largest index exceeds 65535, otherwise ``uint16``
  followed by two zero bytes whenever ``2 * count`` is not a multiple of four
  (the padding is part of the view's ``byteLength``)
* positions (``float32`` VEC3, with min/max)
* normals (``float32`` VEC3)
* texture coordinates (``float32`` VEC2)

Views are chained: every new view starts where the previous one ended.  Since
the index region is padded to four bytes and float regions are multiples of four,
every float region starts on a four-byte boundary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

import numpy as np

from .gltf_data import (
    Accessor,
    AccessorType,
    BufferView,
    ComponentType,
    GltfDocument,
    Target,
)

log = logging.getLogger(__name__)

UNSIGNED_SHORT_MAX = 65535

# Triangles of an axis-aligned box; vertex order matches _box_vertices.
_BOX_FACES = np.array(
    [
        [0, 1, 2], [0, 2, 3],
        [4, 0, 3], [4, 3, 7],
        [1, 5, 6], [1, 6, 2],
        [4, 7, 6], [4, 6, 5],
        [3, 2, 6], [3, 6, 7],
        [4, 5, 1], [4, 1, 0],
    ],
    dtype=np.uint32,
)


def _box_vertices(lo: np.ndarray, hi: np.ndarray) -> np.ndarray:
    x0, y0, z0 = (float(v) for v in lo)
    x1, y1, z1 = (float(v) for v in hi)
    return np.array(
        [
            [x0, y0, z1], [x1, y0, z1], [x1, y1, z1], [x0, y1, z1],
            [x0, y0, z0], [x1, y0, z0], [x1, y1, z0], [x0, y1, z0],
        ],
        dtype=np.float32,
    )


@dataclass
class BinaryData:
    """Geometry accumulated for one material within one element."""

    material_key: str
    _positions: List[np.ndarray] = field(default_factory=list, repr=False)
    _normals: List[Optional[np.ndarray]] = field(default_factory=list, repr=False)
    _uvs: List[Optional[np.ndarray]] = field(default_factory=list, repr=False)
    _indices: List[np.ndarray] = field(default_factory=list, repr=False)
    vertex_count: int = 0
    index_max: Optional[int] = None
    index_padding: int = 0

    def append_polymesh(
        self,
        points: np.ndarray,
        facets: Any,
        uvs: Optional[np.ndarray] = None,
        normals: Optional[np.ndarray] = None,
    ) -> None:
        """Append already converted points/uvs/normals plus local facet indices."""
        pts = np.asarray(points, dtype=np.float32).reshape(-1, 3)
        tri = np.asarray(facets, dtype=np.int64).reshape(-1, 3)
        count = int(pts.shape[0])
        if tri.size:
            lo = int(tri.min())
            hi = int(tri.max())
            if lo < 0 or hi >= count:
                raise ValueError(
                    f"Facet index {lo if lo < 0 else hi} out of range for {count} points "
                    f"in material '{self.material_key}'"
                )
        offset = self.vertex_count
        self._positions.append(pts)
        if uvs is not None:
            uv = np.asarray(uvs, dtype=np.float32).reshape(-1, 2)
            if uv.shape[0] != count:
                log.warning(
                    "Ignoring %d UVs for %d points in material '%s'",
                    uv.shape[0],
                    count,
                    self.material_key,
                )
                uv = None
        else:
            uv = None
        self._uvs.append(uv)
        if normals is not None:
            nrm = np.asarray(normals, dtype=np.float32).reshape(-1, 3)
            if nrm.shape[0] == 1 and count > 1:
                nrm = np.repeat(nrm, count, axis=0)
            if nrm.shape[0] != count:
                log.warning(
                    "Ignoring %d normals for %d points in material '%s'",
                    nrm.shape[0],
                    count,
                    self.material_key,
                )
                nrm = None
        else:
            nrm = None
        self._normals.append(nrm)
        if tri.size:
            shifted = tri + offset
            self._indices.append(shifted.reshape(-1))
            local_max = int(shifted.max())
            if self.index_max is None or local_max > self.index_max:
                self.index_max = local_max
        self.vertex_count += count

    # -- flattened views ---------------------------------------------------

    @property
    def positions(self) -> np.ndarray:
        if not self._positions:
            return np.zeros((0, 3), dtype=np.float32)
        return np.concatenate(self._positions, axis=0)

    @property
    def indices(self) -> np.ndarray:
        if not self._indices:
            return np.zeros((0,), dtype=np.uint32)
        return np.concatenate(self._indices).astype(np.uint32)

    @property
    def uvs(self) -> np.ndarray:
        """UVs for every vertex, zero-filled for chunks that came without any."""
        if not any(uv is not None for uv in self._uvs):
            return np.zeros((0, 2), dtype=np.float32)
        parts = [
            uv if uv is not None else np.zeros((pts.shape[0], 2), dtype=np.float32)
            for uv, pts in zip(self._uvs, self._positions)
        ]
        return np.concatenate(parts, axis=0)

    @property
    def normals(self) -> np.ndarray:
        """Normals only when every chunk supplied them."""
        if not self._normals or any(n is None for n in self._normals):
            if any(n is not None for n in self._normals):
                log.debug("Dropping partial normals for material '%s'", self.material_key)
            return np.zeros((0, 3), dtype=np.float32)
        return np.concatenate(self._normals, axis=0)

    @property
    def uses_uint32(self) -> bool:
        return self.index_max is not None and self.index_max > UNSIGNED_SHORT_MAX

    @property
    def is_empty(self) -> bool:
        return self.vertex_count == 0

    def freeze(self) -> None:
        """Collapse accumulated chunks into single arrays before handing off."""
        positions = self.positions
        indices = self.indices
        uvs = self.uvs
        normals = self.normals
        self._positions = [positions] if positions.size else []
        self._indices = [indices] if indices.size else []
        self._uvs = [uvs if uvs.size else None] if positions.size else []
        self._normals = [normals if normals.size else None] if positions.size else []

    def collapse_to_box(self) -> None:
        """Replace the geometry with its axis-aligned bounding box."""
        pts = self.positions
        if not pts.size:
            return
        verts = _box_vertices(pts.min(axis=0), pts.max(axis=0))
        self._positions = [verts]
        self._indices = [_BOX_FACES.reshape(-1).copy()]
        self._uvs = [None]
        self._normals = [None]
        self.vertex_count = int(verts.shape[0])
        self.index_max = int(_BOX_FACES.max())


def _bounds(values: np.ndarray) -> Tuple[List[float], List[float]]:
    return (
        [float(v) for v in values.min(axis=0)],
        [float(v) for v in values.max(axis=0)],
    )


class BinaryLayoutEngine:
    """Emit bufferViews/accessors for buckets and write the matching bytes."""

    def __init__(self, document: GltfDocument, *, compressed: bool = False, buffer_index: int = 0) -> None:
        self.document = document
        self.compressed = compressed
        self.buffer_index = buffer_index
        self.buckets: List[BinaryData] = []

    # -- views & accessors ---------------------------------------------------

    def _append_view(self, byte_length: int, target: Optional[int]) -> int:
        view = BufferView(
            buffer=self.buffer_index,
            byte_offset=self.document.next_view_offset(),
            byte_length=int(byte_length),
            target=int(target) if target is not None else None,
        )
        return self.document.append_buffer_view(view)

    def _append_accessor(
        self,
        *,
        byte_length: int,
        target: Optional[int],
        component_type: ComponentType,
        count: int,
        type_: str,
        bounds: Optional[Tuple[List[float], List[float]]] = None,
    ) -> int:
        accessor = Accessor(component_type=int(component_type), count=int(count), type=type_)
        if not self.compressed:
            accessor.buffer_view = self._append_view(byte_length, target)
            accessor.byte_offset = 0
        if bounds is not None:
            accessor.min, accessor.max = bounds
        return self.document.append_accessor(accessor)

    def add_primitive(self, bucket: BinaryData) -> Dict[str, int]:
        """Append views/accessors for ``bucket``; returns semantic -> accessor index.

        The bucket is retained (in call order) for :meth:`write_payload`.
        """
        bucket.freeze()
        out: Dict[str, int] = {}

        indices = bucket.indices
        if indices.size:
            count = int(indices.size)
            if bucket.uses_uint32:
                bucket.index_padding = 0
                out["indices"] = self._append_accessor(
                    byte_length=4 * count,
                    target=Target.ELEMENT_ARRAY_BUFFER,
                    component_type=ComponentType.UNSIGNED_INT,
                    count=count,
                    type_=AccessorType.SCALAR,
                )
            else:
                bucket.index_padding = 2 if (2 * count) % 4 != 0 else 0
                out["indices"] = self._append_accessor(
                    byte_length=2 * count + bucket.index_padding,
                    target=Target.ELEMENT_ARRAY_BUFFER,
                    component_type=ComponentType.UNSIGNED_SHORT,
                    count=count,
                    type_=AccessorType.SCALAR,
                )

        positions = bucket.positions
        if positions.size:
            out["POSITION"] = self._append_accessor(
                byte_length=4 * positions.size,
                target=Target.ARRAY_BUFFER,
                component_type=ComponentType.FLOAT,
                count=positions.shape[0],
                type_=AccessorType.VEC3,
                bounds=_bounds(positions),
            )

        normals = bucket.normals
        if normals.size:
            out["NORMAL"] = self._append_accessor(
                byte_length=4 * normals.size,
                target=Target.ARRAY_BUFFER,
                component_type=ComponentType.FLOAT,
                count=normals.shape[0],
                type_=AccessorType.VEC3,
            )

        uvs = bucket.uvs
        if uvs.size:
            out["TEXCOORD_0"] = self._append_accessor(
                byte_length=4 * uvs.size,
                target=Target.ARRAY_BUFFER,
                component_type=ComponentType.FLOAT,
                count=uvs.shape[0],
                type_=AccessorType.VEC2,
            )

        self.buckets.append(bucket)
        return out

    # -- bytes -------------------------------------------------------------

    @staticmethod
    def bucket_bytes(bucket: BinaryData) -> bytes:
        parts: List[bytes] = []
        indices = bucket.indices
        if indices.size:
            if bucket.uses_uint32:
                parts.append(indices.astype("<u4").tobytes())
            else:
                parts.append(indices.astype("<u2").tobytes())
                if bucket.index_padding:
                    parts.append(b"\x00" * bucket.index_padding)
        for array in (bucket.positions, bucket.normals, bucket.uvs):
            if array.size:
                parts.append(np.ascontiguousarray(array, dtype="<f4").tobytes())
        return b"".join(parts)

    def write_payload(self, stream: BinaryIO) -> int:
        """Write every retained bucket in order; returns bytes written."""
        if self.compressed:
            raise RuntimeError("Uncompressed payload requested from a compressed layout")
        written = 0
        for bucket in self.buckets:
            data = self.bucket_bytes(bucket)
            stream.write(data)
            written += len(data)
        return written

    def append_blob(self, stream: BinaryIO, data: bytes, *, target: Optional[int] = None) -> int:
        """Append raw bytes (e.g. an image) as a new view chained after the last one."""
        index = self._append_view(len(data), target)
        stream.write(data)
        return index


__all__ = [
    "BinaryData",
    "BinaryLayoutEngine",
    "UNSIGNED_SHORT_MAX",
]
