from . import api
from .api import (
    DEFAULT_EXPORT_OPTIONS,
    EXPORT_DEFAULTS,
    ExportDefaults,
    ExportSettings,
    export,
)
from .binary_layout import BinaryData, BinaryLayoutEngine
from .compression import CompressionCoordinator, EncodedGeometry, EncodeRequest, draco_codec
from .config.settings import ExportConfig
from .container import ContainerWriter, pack_glb
from .errors import (
    BuildGltfError,
    CompressionTimeoutError,
    ContainerOverflowError,
    ExportCancelledError,
    ExportError,
    MissingMaterialError,
    MissingTextureError,
)
from .exporter import ExportResult, export_scene
from .gltf_data import GltfDocument
from .options import DracoOptions, ExportCustomizer, ExportOptions
from .scene_builder import SceneGraphBuilder
from .scene_events import (
    ElementInfo,
    ExportContext,
    InstanceInfo,
    LinkInfo,
    MaterialInfo,
    PolymeshInfo,
    RenderAction,
    ViewInfo,
)
from .scene_model import SceneModel, SceneModelWalker
from .transforms import CoordinateTransform

__all__ = [
    "api",
    "export",
    "export_scene",
    "ExportDefaults",
    "ExportSettings",
    "EXPORT_DEFAULTS",
    "DEFAULT_EXPORT_OPTIONS",
    "ExportOptions",
    "ExportCustomizer",
    "ExportConfig",
    "ExportResult",
    "DracoOptions",
    "GltfDocument",
    "SceneGraphBuilder",
    "BinaryData",
    "BinaryLayoutEngine",
    "CompressionCoordinator",
    "EncodeRequest",
    "EncodedGeometry",
    "draco_codec",
    "ContainerWriter",
    "pack_glb",
    "CoordinateTransform",
    "ExportContext",
    "RenderAction",
    "ViewInfo",
    "ElementInfo",
    "InstanceInfo",
    "LinkInfo",
    "MaterialInfo",
    "PolymeshInfo",
    "SceneModel",
    "SceneModelWalker",
    "BuildGltfError",
    "ExportError",
    "ExportCancelledError",
    "MissingMaterialError",
    "MissingTextureError",
    "ContainerOverflowError",
    "CompressionTimeoutError",
]
