"""Traversal state machine that turns scene callbacks into a glTF document.

The builder owns one :class:`~buildgltf.gltf_data.GltfDocument` per export.
Geometry is collected per element in material buckets and turned into meshes
when an instance or element closes.  Instances of the same geometry template
share a single mesh through :class:`GeometryTemplateCache`; the walker is asked
to skip the geometry of templates that are already cached.
"""

from __future__ import annotations

import enum
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from .binary_layout import BinaryData, BinaryLayoutEngine
from .compression import Codec, CompressionCoordinator
from .errors import ExportError, MissingMaterialError, _ensure_not_cancelled, _is_cancelled
from .gltf_data import (
    DRACO_EXTENSION,
    LINEAR,
    LINEAR_MIPMAP_LINEAR,
    REPEAT,
    Buffer,
    Camera,
    CameraType,
    GltfDocument,
    Image,
    Material,
    Mesh,
    Node,
    OrthographicCamera,
    PbrMetallicRoughness,
    PerspectiveCamera,
    Primitive,
    Sampler,
    Scene,
    Texture,
    TextureInfo,
)
from .options import ExportCustomizer, ExportOptions
from .scene_events import (
    ElementInfo,
    ExportContext,
    InstanceInfo,
    LinkInfo,
    MaterialInfo,
    PolymeshInfo,
    RenderAction,
    SceneDocument,
    ViewInfo,
)
from .textures import ResolvedTexture, TextureResolver
from .transforms import IDENTITY, CoordinateTransform, as_matrix, is_identity

log = logging.getLogger(__name__)

_ATTRIBUTE_SEMANTICS = ("POSITION", "NORMAL", "TEXCOORD_0")


class BuilderState(enum.Enum):
    IDLE = "idle"
    DOCUMENT_OPEN = "document_open"
    ELEMENT_OPEN = "element_open"
    FINISHED = "finished"


class GeometryTemplateCache:
    """Template identity -> mesh index; entries are never replaced."""

    def __init__(self) -> None:
        self._meshes: Dict[Any, int] = {}

    def get(self, template_id: Any) -> Optional[int]:
        if template_id is None:
            return None
        return self._meshes.get(template_id)

    def register(self, template_id: Any, mesh_index: int) -> bool:
        if template_id is None or template_id in self._meshes:
            return False
        self._meshes[template_id] = int(mesh_index)
        return True

    def __contains__(self, template_id: Any) -> bool:
        return template_id in self._meshes

    def __len__(self) -> int:
        return len(self._meshes)


@dataclass
class _InstanceFrame:
    template_id: Any
    cached_mesh: Optional[int] = None
    buckets: Dict[str, BinaryData] = field(default_factory=dict)


@dataclass
class ElementBuildState:
    """Transient data of the element currently being visited."""

    info: ElementInfo
    buckets: Dict[str, BinaryData] = field(default_factory=dict)
    instance_nodes: List[int] = field(default_factory=list)
    current_material: Optional[str] = None
    instances: List[_InstanceFrame] = field(default_factory=list)

    @property
    def template_id(self) -> Any:
        return self.instances[-1].template_id if self.instances else None

    def active_buckets(self) -> Dict[str, BinaryData]:
        return self.instances[-1].buckets if self.instances else self.buckets


def basic_material_name(material: MaterialInfo) -> str:
    r, g, b = (int(c) for c in material.color)
    alpha = 1.0 - float(material.transparency)
    return f"Basic {r}-{g}-{b}-{int(alpha * 255)}"


class SceneGraphBuilder(ExportContext):
    """Consume traversal callbacks and build the glTF document."""

    def __init__(
        self,
        options: Optional[ExportOptions] = None,
        *,
        customizer: Optional[ExportCustomizer] = None,
        codec: Optional[Codec] = None,
        texture_resolver: Optional[TextureResolver] = None,
        cancel_event: Any = None,
    ) -> None:
        self.options = options or ExportOptions()
        self.customizer = customizer or ExportCustomizer()
        self.codec = codec
        self.texture_resolver = texture_resolver or TextureResolver(self.options.texture_dir)
        self.cancel_event = cancel_event
        self.transform = CoordinateTransform(
            unit_scale=self.options.unit_scale,
            bake=self.options.bake_coordinates,
        )
        self.state = BuilderState.IDLE
        self.document = GltfDocument()
        self.templates = GeometryTemplateCache()
        self.layout: Optional[BinaryLayoutEngine] = None
        self.compressor: Optional[CompressionCoordinator] = None
        self._transforms: List[np.ndarray] = []
        self._documents: List[SceneDocument] = []
        self._element: Optional[ElementBuildState] = None
        self._link_frames: List[tuple[Optional[ElementBuildState], BuilderState]] = []
        self._materials: Dict[str, int] = {}
        self._textures: Dict[str, int] = {}
        self._pending_images: List[tuple[int, ResolvedTexture]] = []
        self._sampler: Optional[int] = None
        self.payload: Optional[bytes] = None

    # -- helpers -------------------------------------------------------------

    @property
    def current_transform(self) -> np.ndarray:
        return self._transforms[-1] if self._transforms else IDENTITY

    @property
    def current_document(self) -> SceneDocument:
        if not self._documents:
            raise RuntimeError("No scene document is open; call start() first")
        return self._documents[-1]

    def _require(self, *states: BuilderState) -> None:
        if self.state not in states:
            expected = ", ".join(s.value for s in states)
            raise RuntimeError(f"Invalid traversal order: state is {self.state.value}, expected {expected}")

    def _node_matrix(self, transform: np.ndarray) -> Optional[List[float]]:
        if is_identity(transform):
            return None
        return self.transform.matrix(transform)

    # -- document ------------------------------------------------------------

    def start(self, document: SceneDocument) -> bool:
        self._require(BuilderState.IDLE)
        self._transforms = [IDENTITY.copy()]
        self._documents = [document]
        doc = self.document
        root = Node(name="root")
        if not self.options.bake_coordinates:
            root.matrix = self.transform.conversion_matrix()
        doc.append_node(root)
        doc.scene = doc.append_scene(Scene(nodes=[0]))
        compressed = bool(self.options.use_draco)
        self.layout = BinaryLayoutEngine(doc, compressed=compressed)
        if compressed:
            doc.require_extension(DRACO_EXTENSION)
            self.compressor = CompressionCoordinator(
                doc,
                self.codec,
                max_workers=self.options.compression_threads,
                timeout=self.options.compression_timeout,
                options=self.options.draco,
            )
        self.state = BuilderState.DOCUMENT_OPEN
        log.debug("Export started (compressed=%s)", compressed)
        return True

    def is_cancelled(self) -> bool:
        return _is_cancelled(self.cancel_event)

    def close(self) -> None:
        """Release compression resources; safe to call on any exit path."""
        if self.compressor is not None:
            self.compressor.close()

    def finish(self) -> bytes:
        """Finalise the byte layout; returns the binary payload."""
        self._require(BuilderState.DOCUMENT_OPEN)
        try:
            _ensure_not_cancelled(self.cancel_event)
            payload = io.BytesIO()
            if self.compressor is not None:
                self.compressor.finalize(payload)
            else:
                self.layout.write_payload(payload)
            for image_index, texture in self._pending_images:
                self.document.images[image_index].buffer_view = self.layout.append_blob(
                    payload, texture.read_bytes()
                )
            self._pending_images = []
            data = payload.getvalue()
        finally:
            self.close()
        if self.document.next_view_offset() != len(data):
            raise ExportError(
                f"Payload length {len(data)} does not match bufferView extent "
                f"{self.document.next_view_offset()}"
            )
        if data:
            # a buffer must hold at least one byte
            self.document.append_buffer(Buffer(byte_length=len(data)))
        self.payload = data
        self.state = BuilderState.FINISHED
        log.info(
            "Built glTF: %d nodes, %d meshes, %d materials, %d byte payload",
            len(self.document.nodes),
            len(self.document.meshes),
            len(self.document.materials),
            len(data),
        )
        return data

    # -- views ---------------------------------------------------------------

    def on_view_begin(self, view: ViewInfo) -> RenderAction:
        self._require(BuilderState.DOCUMENT_OPEN)
        view.level_of_detail = 0 if self.options.box_instances else int(self.options.quality)
        if self.options.export_cameras:
            self._add_camera(view)
        return RenderAction.PROCEED

    def on_view_end(self, view: ViewInfo) -> None:
        return None

    def _add_camera(self, view: ViewInfo) -> int:
        if view.is_perspective:
            camera = Camera(
                type=CameraType.PERSPECTIVE,
                perspective=PerspectiveCamera(yfov=1.0, znear=0.1, zfar=1000.0, aspect_ratio=1.0),
                name=view.name,
            )
        else:
            half = float(view.vertical_extent) * 0.5
            if self.options.bake_coordinates:
                half *= float(self.options.unit_scale)
            camera = Camera(
                type=CameraType.ORTHOGRAPHIC,
                orthographic=OrthographicCamera(xmag=half, ymag=half, zfar=1000.0, znear=0.0),
                name=view.name,
            )
        camera_index = self.document.append_camera(camera)
        eye = np.asarray(view.eye, dtype=float)
        forward = np.asarray(view.forward, dtype=float)
        target = eye + forward * (float(view.near) + float(view.far)) * 0.5
        node = Node(
            name=view.name,
            camera=camera_index,
            translation=list(self.transform.point(eye)),
            rotation=self.transform.camera_rotation(view.forward, view.up),
            extras={"target": list(self.transform.point(target))},
        )
        self.document.add_root_child(node)
        return camera_index

    # -- elements ------------------------------------------------------------

    def _is_excluded(self, info: ElementInfo) -> bool:
        return bool(info.category) and info.category in self.options.skip_categories

    def on_element_begin(self, element_id: int) -> RenderAction:
        self._require(BuilderState.DOCUMENT_OPEN)
        self._element = None
        if not self.options.includes(element_id):
            log.debug("Skipping element %s (not selected)", element_id)
            return RenderAction.SKIP
        info = self.current_document.get_element(element_id)
        if info is None or self._is_excluded(info):
            log.debug("Skipping element %s (%s)", element_id, getattr(info, "category", None))
            return RenderAction.SKIP
        self._element = ElementBuildState(info=info)
        self.state = BuilderState.ELEMENT_OPEN
        return RenderAction.PROCEED

    def _element_extras(self, info: ElementInfo) -> Dict[str, Any]:
        extras: Dict[str, Any] = {"ElementID": int(info.id), "UniqueId": str(info.unique_id)}
        if self.options.export_parameters and info.parameters:
            extras["Parameters"] = dict(info.parameters)
        return extras

    def on_element_end(self, element_id: int) -> None:
        element = self._element
        if element is None:
            return
        info = element.info
        loose_node: Optional[int] = None
        if any(not b.is_empty for b in element.buckets.values()):
            loose_node = self._write_mesh_node(
                element.buckets,
                name=info.name,
                matrix=self._node_matrix(self.current_transform),
                collapse=False,
            )
        if element.instance_nodes:
            children = list(element.instance_nodes)
            if loose_node is not None:
                children.append(loose_node)
            self.document.add_root_child(
                Node(name=info.name, children=children, extras=self._element_extras(info))
            )
        elif loose_node is not None:
            self.document.nodes[loose_node].extras = self._element_extras(info)
            self.document.attach_to_root(loose_node)
        self._element = None
        self.state = BuilderState.DOCUMENT_OPEN

    # -- instances & links ---------------------------------------------------

    def on_instance_begin(self, instance: InstanceInfo) -> RenderAction:
        element = self._element
        if element is None:
            return RenderAction.SKIP
        self._transforms.append(self.current_transform @ as_matrix(instance.transform))
        cached = self.templates.get(instance.template_id)
        element.instances.append(_InstanceFrame(template_id=instance.template_id, cached_mesh=cached))
        if cached is not None:
            log.debug("Template %s already exported as mesh %d", instance.template_id, cached)
            return RenderAction.SKIP
        return RenderAction.PROCEED

    def on_instance_end(self, instance: InstanceInfo) -> None:
        element = self._element
        if element is None or not element.instances:
            return
        frame = element.instances[-1]
        transform = self.current_transform
        if frame.cached_mesh is not None:
            index = self.document.append_node(
                Node(name=element.info.name, mesh=frame.cached_mesh, matrix=self._node_matrix(transform))
            )
            element.instance_nodes.append(index)
        else:
            index = self._write_mesh_node(
                frame.buckets,
                name=element.info.name,
                matrix=self._node_matrix(transform),
                collapse=self.options.box_instances,
            )
            if index is not None:
                element.instance_nodes.append(index)
                if self.options.cache_identity_instances or not is_identity(transform):
                    self.templates.register(frame.template_id, self.document.nodes[index].mesh)
        element.instances.pop()
        self._transforms.pop()

    def on_link_begin(self, link: LinkInfo) -> RenderAction:
        # linked elements are exported on their own; the host element resumes afterwards
        self._link_frames.append((self._element, self.state))
        self._element = None
        if self.state is BuilderState.ELEMENT_OPEN:
            self.state = BuilderState.DOCUMENT_OPEN
        self._documents.append(link.document)
        self._transforms.append(self.current_transform @ as_matrix(link.transform))
        return RenderAction.PROCEED

    def on_link_end(self, link: LinkInfo) -> None:
        if len(self._documents) > 1:
            self._documents.pop()
        if len(self._transforms) > 1:
            self._transforms.pop()
        if self._link_frames:
            self._element, self.state = self._link_frames.pop()

    # -- materials -----------------------------------------------------------

    def _material_key(self, material: MaterialInfo) -> str:
        name: Optional[str] = None
        if material.is_persisted:
            name = self.current_document.get_material_name(material.material_id)
        default = name or basic_material_name(material)
        return self.customizer.material_name(material, default) or default

    def on_material(self, material: MaterialInfo) -> None:
        element = self._element
        if element is None:
            return
        key = self._material_key(material)
        if key not in self._materials:
            self._materials[key] = self._create_material(key, material)
        element.current_material = key
        buckets = element.active_buckets()
        if key not in buckets:
            buckets[key] = BinaryData(key)

    def _create_material(self, name: str, material: MaterialInfo) -> int:
        r, g, b = (float(c) / 255.0 for c in material.color)
        alpha = 1.0 - float(material.transparency)
        pbr = PbrMetallicRoughness(
            base_color_factor=[r, g, b, alpha],
            metallic_factor=0.0,
            roughness_factor=1.0,
        )
        gltf_material = Material(name=name, pbr_metallic_roughness=pbr)
        if alpha != 1.0:
            gltf_material.alpha_mode = "BLEND"
            gltf_material.double_sided = True
        if self.options.export_textures and material.is_persisted and material.texture_reference:
            pbr.base_color_texture = TextureInfo(index=self._texture_index(material.texture_reference))
            pbr.base_color_factor = None
        return self.document.append_material(gltf_material)

    def _texture_index(self, reference: str) -> int:
        resolved = self.texture_resolver.resolve(reference)
        key = str(resolved.path)
        existing = self._textures.get(key)
        if existing is not None:
            return existing
        if self._sampler is None:
            self._sampler = self.document.append_sampler(
                Sampler(mag_filter=LINEAR, min_filter=LINEAR_MIPMAP_LINEAR, wrap_s=REPEAT, wrap_t=REPEAT)
            )
        image_index = self.document.append_image(Image(name=resolved.name, mime_type=resolved.mime_type))
        self._pending_images.append((image_index, resolved))
        texture_index = self.document.append_texture(Texture(source=image_index, sampler=self._sampler))
        self._textures[key] = texture_index
        return texture_index

    # -- geometry ------------------------------------------------------------

    def on_polymesh(self, mesh: PolymeshInfo) -> None:
        element = self._element
        if element is None:
            return
        key = element.current_material
        if key is None:
            raise MissingMaterialError(element.info.id)
        buckets = element.active_buckets()
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = BinaryData(key)
        uvs = None
        if mesh.uvs is not None:
            uvs = np.asarray(mesh.uvs, dtype=float) * float(self.options.uv_scale)
        normals = None
        if mesh.normals is not None and self.options.export_normals:
            normals = self.transform.directions(mesh.normals)
        bucket.append_polymesh(self.transform.points(mesh.points), mesh.facets, uvs=uvs, normals=normals)

    def _write_mesh_node(
        self,
        buckets: Dict[str, BinaryData],
        *,
        name: str,
        matrix: Optional[List[float]],
        collapse: bool,
    ) -> Optional[int]:
        mesh = Mesh(name=name)
        for key, bucket in buckets.items():
            if bucket.is_empty:
                continue
            if collapse:
                bucket.collapse_to_box()
            accessors = self.layout.add_primitive(bucket)
            primitive = Primitive(
                attributes={s: accessors[s] for s in _ATTRIBUTE_SEMANTICS if s in accessors},
                indices=accessors.get("indices"),
                material=self._materials[key],
            )
            if self.compressor is not None:
                self.compressor.submit(bucket, primitive)
            mesh.primitives.append(primitive)
        buckets.clear()
        if not mesh.primitives:
            return None
        mesh_index = self.document.append_mesh(mesh)
        return self.document.append_node(Node(name=name, mesh=mesh_index, matrix=matrix))


__all__ = [
    "BuilderState",
    "ElementBuildState",
    "GeometryTemplateCache",
    "SceneGraphBuilder",
    "basic_material_name",
]
