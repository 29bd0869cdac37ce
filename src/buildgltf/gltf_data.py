"""In-memory glTF 2.0 document.

The dataclasses below mirror the glTF JSON schema closely enough that
serialisation is a mechanical walk: snake_case field names become camelCase
keys, ``None`` and empty containers are dropped.  Dictionary keys (attribute
semantics, extras, extension names) are written verbatim.

Every list on :class:`GltfDocument` is append-only.  The ``append_*`` helpers
return the index of the new entry, which is what every other object stores.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, is_dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

GENERATOR = "buildgltf"
DRACO_EXTENSION = "KHR_draco_mesh_compression"


class ComponentType(IntEnum):
    BYTE = 5120
    UNSIGNED_BYTE = 5121
    SHORT = 5122
    UNSIGNED_SHORT = 5123
    UNSIGNED_INT = 5125
    FLOAT = 5126


class Target(IntEnum):
    ARRAY_BUFFER = 34962
    ELEMENT_ARRAY_BUFFER = 34963


class PrimitiveMode(IntEnum):
    POINTS = 0
    LINES = 1
    LINE_LOOP = 2
    LINE_STRIP = 3
    TRIANGLES = 4
    TRIANGLE_STRIP = 5
    TRIANGLE_FAN = 6


class AccessorType:
    SCALAR = "SCALAR"
    VEC2 = "VEC2"
    VEC3 = "VEC3"
    VEC4 = "VEC4"
    MAT4 = "MAT4"


class CameraType:
    PERSPECTIVE = "perspective"
    ORTHOGRAPHIC = "orthographic"


# Sampler constants
LINEAR = 9729
LINEAR_MIPMAP_LINEAR = 9987
REPEAT = 10497


# ---------------- schema objects ----------------

@dataclass
class Asset:
    version: str = "2.0"
    generator: str = GENERATOR
    extras: Optional[Dict[str, Any]] = None


@dataclass
class Scene:
    nodes: List[int] = field(default_factory=list)
    name: Optional[str] = None


@dataclass
class Node:
    name: Optional[str] = None
    mesh: Optional[int] = None
    camera: Optional[int] = None
    translation: Optional[List[float]] = None
    rotation: Optional[List[float]] = None
    matrix: Optional[List[float]] = None
    children: Optional[List[int]] = None
    extensions: Optional[Dict[str, Any]] = None
    extras: Optional[Dict[str, Any]] = None


@dataclass
class Primitive:
    attributes: Dict[str, int] = field(default_factory=dict)
    indices: Optional[int] = None
    material: Optional[int] = None
    mode: int = PrimitiveMode.TRIANGLES
    extensions: Optional[Dict[str, Any]] = None


@dataclass
class Mesh:
    primitives: List[Primitive] = field(default_factory=list)
    name: Optional[str] = None


@dataclass
class Buffer:
    byte_length: int = 0
    uri: Optional[str] = None


@dataclass
class BufferView:
    buffer: int = 0
    byte_offset: int = 0
    byte_length: int = 0
    target: Optional[int] = None
    byte_stride: Optional[int] = None
    name: Optional[str] = None

    @property
    def end(self) -> int:
        return self.byte_offset + self.byte_length


@dataclass
class Accessor:
    component_type: int
    count: int
    type: str
    buffer_view: Optional[int] = None
    byte_offset: Optional[int] = None
    min: Optional[List[float]] = None
    max: Optional[List[float]] = None
    name: Optional[str] = None


@dataclass
class TextureInfo:
    index: int
    tex_coord: Optional[int] = None


@dataclass
class PbrMetallicRoughness:
    base_color_factor: Optional[List[float]] = None
    base_color_texture: Optional[TextureInfo] = None
    metallic_factor: Optional[float] = None
    roughness_factor: Optional[float] = None


@dataclass
class Material:
    name: Optional[str] = None
    pbr_metallic_roughness: Optional[PbrMetallicRoughness] = None
    alpha_mode: Optional[str] = None
    double_sided: Optional[bool] = None
    extras: Optional[Dict[str, Any]] = None


@dataclass
class Image:
    name: Optional[str] = None
    uri: Optional[str] = None
    mime_type: Optional[str] = None
    buffer_view: Optional[int] = None


@dataclass
class Texture:
    source: Optional[int] = None
    sampler: Optional[int] = None


@dataclass
class Sampler:
    mag_filter: Optional[int] = None
    min_filter: Optional[int] = None
    wrap_s: Optional[int] = None
    wrap_t: Optional[int] = None


@dataclass
class PerspectiveCamera:
    yfov: float
    znear: float
    zfar: Optional[float] = None
    aspect_ratio: Optional[float] = None


@dataclass
class OrthographicCamera:
    xmag: float
    ymag: float
    zfar: float
    znear: float


@dataclass
class Camera:
    type: str
    perspective: Optional[PerspectiveCamera] = None
    orthographic: Optional[OrthographicCamera] = None
    name: Optional[str] = None


# ---------------- document ----------------

@dataclass
class GltfDocument:
    """Root glTF object; owns every list and hands out indices on append."""

    asset: Asset = field(default_factory=Asset)
    scene: Optional[int] = None
    scenes: List[Scene] = field(default_factory=list)
    nodes: List[Node] = field(default_factory=list)
    meshes: List[Mesh] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    accessors: List[Accessor] = field(default_factory=list)
    buffer_views: List[BufferView] = field(default_factory=list)
    buffers: List[Buffer] = field(default_factory=list)
    cameras: Optional[List[Camera]] = None
    images: Optional[List[Image]] = None
    textures: Optional[List[Texture]] = None
    samplers: Optional[List[Sampler]] = None
    extensions_used: Optional[List[str]] = None
    extensions_required: Optional[List[str]] = None
    extras: Optional[Dict[str, Any]] = None

    # -- append helpers --------------------------------------------------

    def append_scene(self, scene: Scene) -> int:
        self.scenes.append(scene)
        return len(self.scenes) - 1

    def append_node(self, node: Node) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def add_root_child(self, node: Node) -> int:
        """Append ``node`` and hang it under the root node (index 0)."""
        index = self.append_node(node)
        if index > 0:
            self.attach_to_root(index)
        return index

    def attach_to_root(self, index: int) -> None:
        root = self.nodes[0]
        if root.children is None:
            root.children = []
        root.children.append(int(index))

    def append_mesh(self, mesh: Mesh) -> int:
        self.meshes.append(mesh)
        return len(self.meshes) - 1

    def append_material(self, material: Material) -> int:
        self.materials.append(material)
        return len(self.materials) - 1

    def append_accessor(self, accessor: Accessor) -> int:
        self.accessors.append(accessor)
        return len(self.accessors) - 1

    def append_buffer_view(self, view: BufferView) -> int:
        self.buffer_views.append(view)
        return len(self.buffer_views) - 1

    def append_buffer(self, buffer: Buffer) -> int:
        self.buffers.append(buffer)
        return len(self.buffers) - 1

    def append_camera(self, camera: Camera) -> int:
        if self.cameras is None:
            self.cameras = []
        self.cameras.append(camera)
        return len(self.cameras) - 1

    def append_image(self, image: Image) -> int:
        if self.images is None:
            self.images = []
        self.images.append(image)
        return len(self.images) - 1

    def append_texture(self, texture: Texture) -> int:
        if self.textures is None:
            self.textures = []
        self.textures.append(texture)
        return len(self.textures) - 1

    def append_sampler(self, sampler: Sampler) -> int:
        if self.samplers is None:
            self.samplers = []
        self.samplers.append(sampler)
        return len(self.samplers) - 1

    def require_extension(self, name: str, *, required: bool = True) -> None:
        if self.extensions_used is None:
            self.extensions_used = []
        if name not in self.extensions_used:
            self.extensions_used.append(name)
        if required:
            if self.extensions_required is None:
                self.extensions_required = []
            if name not in self.extensions_required:
                self.extensions_required.append(name)

    def next_view_offset(self) -> int:
        """Byte offset where the next bufferView starts (end of the last one)."""
        if not self.buffer_views:
            return 0
        return self.buffer_views[-1].end

    # -- serialisation ---------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return _to_json_value(self)

    def to_json(self, *, indent: Optional[int] = None) -> str:
        separators = (",", ":") if indent is None else None
        return json.dumps(self.to_dict(), indent=indent, separators=separators, ensure_ascii=False)

    # -- structural checks -----------------------------------------------

    def check_references(self) -> None:
        """Raise ``ValueError`` when any index points outside its target list."""
        problems: List[str] = []

        def _check(kind: str, index: Optional[int], size: int, where: str) -> None:
            if index is None:
                return
            if not (0 <= int(index) < size):
                problems.append(f"{where}: {kind} index {index} out of range (size {size})")

        n_nodes = len(self.nodes)
        n_cameras = len(self.cameras or [])
        n_images = len(self.images or [])
        n_samplers = len(self.samplers or [])
        n_textures = len(self.textures or [])

        for s_idx, scene in enumerate(self.scenes):
            for child in scene.nodes:
                _check("node", child, n_nodes, f"scenes[{s_idx}]")
        _check("scene", self.scene, len(self.scenes), "document")

        for n_idx, node in enumerate(self.nodes):
            where = f"nodes[{n_idx}]"
            _check("mesh", node.mesh, len(self.meshes), where)
            _check("camera", node.camera, n_cameras, where)
            for child in node.children or []:
                _check("node", child, n_nodes, where)
                if child == n_idx:
                    problems.append(f"{where}: node lists itself as a child")
            if node.matrix is not None and (node.translation is not None or node.rotation is not None):
                problems.append(f"{where}: matrix and TRS are mutually exclusive")

        for m_idx, mesh in enumerate(self.meshes):
            for p_idx, prim in enumerate(mesh.primitives):
                where = f"meshes[{m_idx}].primitives[{p_idx}]"
                _check("material", prim.material, len(self.materials), where)
                _check("accessor", prim.indices, len(self.accessors), where)
                for semantic, acc in prim.attributes.items():
                    _check("accessor", acc, len(self.accessors), f"{where}.{semantic}")
                draco = (prim.extensions or {}).get(DRACO_EXTENSION)
                if draco is not None:
                    _check("bufferView", draco.get("bufferView"), len(self.buffer_views), where)

        for a_idx, accessor in enumerate(self.accessors):
            _check("bufferView", accessor.buffer_view, len(self.buffer_views), f"accessors[{a_idx}]")

        for v_idx, view in enumerate(self.buffer_views):
            _check("buffer", view.buffer, len(self.buffers), f"bufferViews[{v_idx}]")

        for t_idx, texture in enumerate(self.textures or []):
            _check("image", texture.source, n_images, f"textures[{t_idx}]")
            _check("sampler", texture.sampler, n_samplers, f"textures[{t_idx}]")

        for i_idx, image in enumerate(self.images or []):
            _check("bufferView", image.buffer_view, len(self.buffer_views), f"images[{i_idx}]")

        for mat_idx, material in enumerate(self.materials):
            pbr = material.pbr_metallic_roughness
            if pbr is not None and pbr.base_color_texture is not None:
                _check("texture", pbr.base_color_texture.index, n_textures, f"materials[{mat_idx}]")

        if problems:
            raise ValueError("Invalid glTF references:\n  " + "\n  ".join(problems))


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _to_json_value(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        out: Dict[str, Any] = {}
        for f in fields(value):
            converted = _to_json_value(getattr(value, f.name))
            if converted is None:
                continue
            if isinstance(converted, (list, dict)) and not converted:
                continue
            out[_camel(f.name)] = converted
        return out
    if isinstance(value, IntEnum):
        return int(value)
    if isinstance(value, dict):
        return {str(k): _to_json_value(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    if hasattr(value, "item") and callable(value.item):
        # numpy scalar
        return value.item()
    return value


__all__ = [
    "Accessor",
    "AccessorType",
    "Asset",
    "Buffer",
    "BufferView",
    "Camera",
    "CameraType",
    "ComponentType",
    "DRACO_EXTENSION",
    "GltfDocument",
    "Image",
    "Material",
    "Mesh",
    "Node",
    "OrthographicCamera",
    "PbrMetallicRoughness",
    "PerspectiveCamera",
    "Primitive",
    "PrimitiveMode",
    "Sampler",
    "Scene",
    "Target",
    "Texture",
    "TextureInfo",
]
