"""Concurrent mesh compression (KHR_draco_mesh_compression).

Primitives are compressed on a thread pool while traversal continues.  The
layout stays deterministic because everything that touches the document
happens on the calling thread:

* :meth:`CompressionCoordinator.submit` appends the primitive's placeholder
  bufferView immediately, so view order is submission order;
* :meth:`CompressionCoordinator.finalize` waits for every task, then walks the
  jobs in submission order, copying each blob into the payload and patching the
  placeholder's offset/length.

Which task finishes first never influences the output bytes.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Union

import numpy as np

from .binary_layout import BinaryData
from .errors import CompressionTimeoutError
from .gltf_data import DRACO_EXTENSION, BufferView, GltfDocument, Primitive
from .options import DracoOptions

log = logging.getLogger(__name__)

# Attribute ids a codec assigns when it does not report its own.
_DEFAULT_ATTRIBUTE_ORDER = ("POSITION", "NORMAL", "TEXCOORD_0")


def _resolve_threads(env_var: str = "BUILDGLTF_COMPRESSION_THREADS", minimum: int = 1) -> int:
    """Determine how many compression workers to start."""
    val = os.getenv(env_var)
    if val and val.strip():
        try:
            return max(minimum, int(val))
        except ValueError:
            log.warning("Ignoring non-integer %s=%r", env_var, val)
    try:
        return max(minimum, multiprocessing.cpu_count())
    except NotImplementedError:
        return minimum


@dataclass
class EncodeRequest:
    """Flat arrays handed to the codec for one primitive."""

    positions: np.ndarray
    indices: np.ndarray
    normals: Optional[np.ndarray] = None
    uvs: Optional[np.ndarray] = None
    options: DracoOptions = field(default_factory=DracoOptions)

    @property
    def semantics(self) -> List[str]:
        present = ["POSITION"]
        if self.normals is not None:
            present.append("NORMAL")
        if self.uvs is not None:
            present.append("TEXCOORD_0")
        return present

    @classmethod
    def from_bucket(cls, bucket: BinaryData, options: DracoOptions) -> "EncodeRequest":
        normals = bucket.normals
        uvs = bucket.uvs
        return cls(
            positions=bucket.positions.reshape(-1),
            indices=bucket.indices.reshape(-1),
            normals=normals.reshape(-1) if normals.size else None,
            uvs=uvs.reshape(-1) if uvs.size else None,
            options=options,
        )


class EncodedGeometry:
    """A compressed blob owned by the coordinator until it is merged.

    Usable as a context manager; :meth:`release` is idempotent and drops the
    bytes (and notifies ``on_release`` when the codec supplied one).
    """

    def __init__(
        self,
        data: bytes,
        attribute_ids: Optional[Dict[str, int]] = None,
        on_release: Optional[Callable[[], None]] = None,
    ) -> None:
        self._data: Optional[bytes] = bytes(data)
        self.attribute_ids = dict(attribute_ids) if attribute_ids else None
        self._on_release = on_release

    @property
    def released(self) -> bool:
        return self._data is None

    @property
    def data(self) -> bytes:
        if self._data is None:
            raise ValueError("Encoded geometry already released")
        return self._data

    def __len__(self) -> int:
        return 0 if self._data is None else len(self._data)

    def release(self) -> None:
        if self._data is None:
            return
        self._data = None
        if self._on_release is not None:
            callback, self._on_release = self._on_release, None
            callback()

    def __enter__(self) -> "EncodedGeometry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


Codec = Callable[[EncodeRequest], Union[bytes, EncodedGeometry]]


# draco::GeometryAttribute::Type values reported by DracoPy.decode
_DRACO_ATTRIBUTE_TYPES = {0: "POSITION", 1: "NORMAL", 3: "TEXCOORD_0"}


def draco_codec(request: EncodeRequest) -> EncodedGeometry:
    """Encode through DracoPy (``pip install buildgltf[draco]``).

    DracoPy picks its own attribute ids, so they are read back from the
    encoded blob rather than assumed.
    """
    try:
        import DracoPy  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "Draco compression requires the 'DracoPy' package (pip install buildgltf[draco])"
        ) from exc

    opts = request.options
    kwargs: Dict[str, Any] = {
        "faces": request.indices.reshape(-1, 3),
        "quantization_bits": opts.position_bits,
        "compression_level": opts.compression_level,
    }
    # DracoPy only accepts float64 for the optional attributes
    if request.uvs is not None:
        kwargs["tex_coord"] = request.uvs.reshape(-1, 2).astype(np.float64)
        kwargs["tex_coord_quantization_bits"] = opts.texcoord_bits
    if request.normals is not None:
        kwargs["normals"] = request.normals.reshape(-1, 3).astype(np.float64)
        kwargs["normal_quantization_bits"] = opts.normal_bits
    data = DracoPy.encode(request.positions.reshape(-1, 3), **kwargs)
    attribute_ids = {
        _DRACO_ATTRIBUTE_TYPES[attr["attribute_type"]]: int(attr["unique_id"])
        for attr in DracoPy.decode(data).attributes
        if attr["attribute_type"] in _DRACO_ATTRIBUTE_TYPES
    }
    return EncodedGeometry(data, attribute_ids)


@dataclass
class _Job:
    bucket: BinaryData
    primitive: Primitive
    view_index: int
    semantics: List[str]
    future: Future


class CompressionCoordinator:
    """Dispatch one compression task per primitive and merge in submission order."""

    def __init__(
        self,
        document: GltfDocument,
        codec: Optional[Codec] = None,
        *,
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None,
        options: Optional[DracoOptions] = None,
        buffer_index: int = 0,
    ) -> None:
        self.document = document
        self.codec: Codec = codec or draco_codec
        self.max_workers = max_workers or _resolve_threads()
        self.timeout = timeout
        self.options = options or DracoOptions()
        self.buffer_index = buffer_index
        self._executor: Optional[ThreadPoolExecutor] = None
        self._jobs: List[_Job] = []
        self._closed = False

    # -- dispatch ----------------------------------------------------------

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="buildgltf-draco",
            )
        return self._executor

    def _encode(self, request: EncodeRequest) -> EncodedGeometry:
        result = self.codec(request)
        if not isinstance(result, EncodedGeometry):
            result = EncodedGeometry(result)
        return result

    def submit(self, bucket: BinaryData, primitive: Primitive) -> int:
        """Append the placeholder view for ``primitive`` and start compressing it."""
        if self._closed:
            raise RuntimeError("CompressionCoordinator is closed")
        view_index = self.document.append_buffer_view(
            BufferView(buffer=self.buffer_index, byte_offset=0, byte_length=0)
        )
        if primitive.extensions is None:
            primitive.extensions = {}
        primitive.extensions[DRACO_EXTENSION] = {"bufferView": view_index, "attributes": {}}
        request = EncodeRequest.from_bucket(bucket, self.options)
        future = self._ensure_executor().submit(self._encode, request)
        self._jobs.append(_Job(bucket, primitive, view_index, request.semantics, future))
        log.debug("Queued primitive for compression (view %d)", view_index)
        return view_index

    @property
    def pending(self) -> int:
        return len(self._jobs)

    # -- merge -------------------------------------------------------------

    @staticmethod
    def _attribute_ids(job: _Job, encoded: EncodedGeometry) -> Dict[str, int]:
        if encoded.attribute_ids:
            return {name: int(encoded.attribute_ids[name]) for name in job.semantics if name in encoded.attribute_ids}
        ordered = [name for name in _DEFAULT_ATTRIBUTE_ORDER if name in job.semantics]
        return {name: idx for idx, name in enumerate(ordered)}

    def finalize(self, stream: BinaryIO) -> int:
        """Wait for every task, copy blobs into ``stream``; returns bytes written."""
        try:
            if self._jobs:
                _, not_done = wait([job.future for job in self._jobs], timeout=self.timeout)
                if not_done:
                    raise CompressionTimeoutError(
                        f"{len(not_done)} of {len(self._jobs)} compression tasks did not finish "
                        f"within {self.timeout} s"
                    )
            offset = 0
            for job in self._jobs:
                encoded = job.future.result()
                with encoded:
                    data = encoded.data
                    stream.write(data)
                    view = self.document.buffer_views[job.view_index]
                    view.byte_offset = offset
                    view.byte_length = len(data)
                    job.primitive.extensions[DRACO_EXTENSION]["attributes"] = self._attribute_ids(job, encoded)
                    offset += len(data)
            for accessor in self.document.accessors:
                accessor.buffer_view = None
                accessor.byte_offset = None
            log.info("Merged %d compressed primitives (%d bytes)", len(self._jobs), offset)
            return offset
        finally:
            self.close()

    @staticmethod
    def _release_result(future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        future.result().release()

    def close(self) -> None:
        """Release every outstanding blob and stop the pool.

        Tasks still running when the coordinator closes release their blob as
        soon as they complete.
        """
        if self._closed:
            return
        self._closed = True
        outstanding = 0
        for job in self._jobs:
            future = job.future
            if future.done():
                if not future.cancelled() and future.exception() is None and not future.result().released:
                    outstanding += 1
            # runs immediately for finished futures, on the worker otherwise
            future.add_done_callback(self._release_result)
        if outstanding:
            log.debug("Released %d unmerged compressed blobs", outstanding)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def __enter__(self) -> "CompressionCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "Codec",
    "CompressionCoordinator",
    "EncodeRequest",
    "EncodedGeometry",
    "draco_codec",
]
