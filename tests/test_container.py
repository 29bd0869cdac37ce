import json
import struct

import pytest

from buildgltf.container import (
    CHUNK_BIN,
    CHUNK_JSON,
    GLB_MAGIC,
    ContainerWriter,
    _uint32,
    pack_glb,
    write_gltf,
)
from buildgltf.errors import ContainerOverflowError
from buildgltf.gltf_data import Buffer, GltfDocument


def _chunks(data: bytes):
    magic, version, total = struct.unpack_from("<III", data, 0)
    json_len, json_type = struct.unpack_from("<II", data, 12)
    json_bytes = data[20 : 20 + json_len]
    bin_start = 20 + json_len
    bin_len, bin_type = struct.unpack_from("<II", data, bin_start)
    bin_bytes = data[bin_start + 8 : bin_start + 8 + bin_len]
    return (magic, version, total), (json_len, json_type, json_bytes), (bin_len, bin_type, bin_bytes)


def test_glb_header_and_json_padding():
    text = '{"asset":{"version":"2.0"},"x":"ab"}'
    text = text + " " * (37 - len(text))
    assert len(text) == 37
    data = pack_glb(text, b"\x01\x02\x03")

    header, json_chunk, bin_chunk = _chunks(data)
    assert header == (GLB_MAGIC, 2, len(data))
    assert json_chunk[0] == 40
    assert json_chunk[1] == CHUNK_JSON
    assert json_chunk[2].endswith(b"   ")
    assert bin_chunk[0] == 4
    assert bin_chunk[1] == CHUNK_BIN
    assert bin_chunk[2] == b"\x01\x02\x03\x00"
    assert len(data) % 4 == 0
    assert len(data) == 12 + 8 + 40 + 8 + 4


def test_glb_aligned_chunks_get_no_padding():
    data = pack_glb("{}  ", b"\x00" * 8)
    header, json_chunk, bin_chunk = _chunks(data)
    assert json_chunk[0] == 4
    assert bin_chunk[0] == 8
    assert header[2] == 12 + 8 + 4 + 8 + 8


def test_uint32_overflow_is_an_error():
    assert _uint32(0xFFFFFFFF, "x") == b"\xff\xff\xff\xff"
    with pytest.raises(ContainerOverflowError):
        _uint32(0x1_0000_0000, "BIN chunk")
    with pytest.raises(OverflowError):
        _uint32(-1, "BIN chunk")


def test_writer_json_bytes_and_glb_bytes():
    doc = GltfDocument()
    doc.append_buffer(Buffer(byte_length=4))
    gltf = ContainerWriter(glb=False).to_bytes(doc, b"abcd", uri="scene.bin")
    parsed = json.loads(gltf.decode("utf-8"))
    assert parsed["buffers"] == [{"byteLength": 4, "uri": "scene.bin"}]

    glb = ContainerWriter(glb=True).to_bytes(doc, b"abcd")
    _, json_chunk, bin_chunk = _chunks(glb)
    assert "uri" not in json.loads(json_chunk[2].decode("utf-8"))["buffers"][0]
    assert bin_chunk[2] == b"abcd"


def test_write_gltf_writes_bin_sibling(tmp_path):
    doc = GltfDocument()
    doc.append_buffer(Buffer(byte_length=3))
    target = write_gltf(doc, b"xyz", tmp_path / "out" / "tower.gltf")
    assert (tmp_path / "out" / "tower.bin").read_bytes() == b"xyz"
    parsed = json.loads(target.read_text(encoding="utf-8"))
    assert parsed["buffers"][0]["uri"] == "tower.bin"
    assert parsed["asset"]["version"] == "2.0"


def test_glb_without_payload_has_no_bin_chunk():
    data = pack_glb('{"asset":{"version":"2.0"}}', b"")
    magic, _, total = struct.unpack_from("<III", data, 0)
    json_len, json_type = struct.unpack_from("<II", data, 12)
    assert (magic, json_type) == (GLB_MAGIC, CHUNK_JSON)
    assert total == len(data) == 12 + 8 + json_len
