"""Serialise a finished document as ``.gltf`` + ``.bin`` or as a GLB container."""

from __future__ import annotations

import io
import logging
import struct
from pathlib import Path
from typing import Union

from .errors import ContainerOverflowError
from .gltf_data import GltfDocument

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

GLB_MAGIC = 0x46546C67  # "glTF"
GLB_VERSION = 2
CHUNK_JSON = 0x4E4F534A  # "JSON"
CHUNK_BIN = 0x004E4942  # "BIN\0"
_UINT32_MAX = 0xFFFFFFFF


def _padding(length: int) -> int:
    return (4 - length % 4) % 4


def _uint32(value: int, what: str) -> bytes:
    if value < 0 or value > _UINT32_MAX:
        raise ContainerOverflowError(f"{what} of {value} bytes does not fit into a GLB uint32 field")
    return struct.pack("<I", value)


def to_json(document: GltfDocument) -> str:
    return document.to_json()


def pack_glb(json_text: str, payload: bytes) -> bytes:
    """GLB bytes: 12-byte header, space-padded JSON chunk, zero-padded BIN chunk.

    The BIN chunk is omitted when there is no payload.

    Length fields are written as placeholders and patched once the chunk has
    been written.
    """
    out = io.BytesIO()
    out.write(struct.pack("<III", GLB_MAGIC, GLB_VERSION, 0))

    json_bytes = json_text.encode("utf-8")
    json_start = out.tell()
    out.write(struct.pack("<II", 0, CHUNK_JSON))
    out.write(json_bytes)
    out.write(b" " * _padding(len(json_bytes)))
    json_length = out.tell() - json_start - 8
    out.seek(json_start)
    out.write(_uint32(json_length, "JSON chunk"))
    out.seek(0, io.SEEK_END)

    if payload:
        bin_start = out.tell()
        out.write(struct.pack("<II", 0, CHUNK_BIN))
        out.write(payload)
        out.write(b"\x00" * _padding(len(payload)))
        bin_length = out.tell() - bin_start - 8
        out.seek(bin_start)
        out.write(_uint32(bin_length, "BIN chunk"))
        out.seek(0, io.SEEK_END)

    total = out.tell()
    out.seek(8)
    out.write(_uint32(total, "GLB file"))
    return out.getvalue()


def buffer_uri_for(path: PathLike) -> str:
    return Path(path).with_suffix(".bin").name


def write_gltf(document: GltfDocument, payload: bytes, path: PathLike) -> Path:
    """Write ``<stem>.gltf`` plus the ``<stem>.bin`` sibling; returns the JSON path."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if not document.buffers:
        target.write_text(document.to_json(), encoding="utf-8")
        log.info("Wrote %s (no binary payload)", target)
        return target
    document.buffers[0].uri = buffer_uri_for(target)
    bin_path = target.with_suffix(".bin")
    bin_path.write_bytes(payload)
    target.write_text(document.to_json(), encoding="utf-8")
    log.info("Wrote %s (+ %s, %d bytes)", target, bin_path.name, len(payload))
    return target


class ContainerWriter:
    """Choose between the GLB and the separate-file representation."""

    def __init__(self, glb: bool = True) -> None:
        self.glb = glb

    @property
    def suffix(self) -> str:
        return ".glb" if self.glb else ".gltf"

    def to_bytes(self, document: GltfDocument, payload: bytes, *, uri: str | None = None) -> bytes:
        """GLB bytes, or the UTF-8 JSON text when writing separate files."""
        if self.glb:
            if document.buffers:
                document.buffers[0].uri = None
            return pack_glb(document.to_json(), payload)
        if document.buffers and uri is not None:
            document.buffers[0].uri = uri
        return document.to_json().encode("utf-8")

    def write(self, document: GltfDocument, payload: bytes, path: PathLike) -> Path:
        target = Path(path)
        if not self.glb:
            return write_gltf(document, payload, target)
        target.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_bytes(document, payload)
        target.write_bytes(data)
        log.info("Wrote %s (%d bytes)", target, len(data))
        return target


__all__ = [
    "CHUNK_BIN",
    "CHUNK_JSON",
    "ContainerWriter",
    "GLB_MAGIC",
    "GLB_VERSION",
    "buffer_uri_for",
    "pack_glb",
    "to_json",
    "write_gltf",
]
