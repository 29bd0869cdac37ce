"""Export options and the customization hook."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Tuple

from .transforms import FEET_TO_METERS

if TYPE_CHECKING:
    from .gltf_data import GltfDocument
    from .scene_events import MaterialInfo

DEFAULT_SKIP_CATEGORIES: Tuple[str, ...] = (
    "Grids",
    "Levels",
    "Cameras",
    "Reference Planes",
    "IfcGrid",
    "IfcBuildingStorey",
    "IfcAnnotation",
    "IfcOpeningElement",
    "IfcSpace",
)


@dataclass(frozen=True)
class DracoOptions:
    """Quantisation bits and effort passed to the mesh codec."""

    position_bits: int = 11
    texcoord_bits: int = 10
    normal_bits: int = 8
    compression_level: int = 7


@dataclass
class ExportOptions:
    """High-level knobs used while building the glTF document."""

    glb: bool = True
    export_textures: bool = True
    export_cameras: bool = False
    use_draco: bool = False
    quality: int = 8
    elements: Optional[Tuple[int, ...]] = None
    box_instances: bool = False
    export_parameters: bool = False
    export_normals: bool = True
    uv_scale: float = 0.5
    unit_scale: float = FEET_TO_METERS
    bake_coordinates: bool = True
    cache_identity_instances: bool = False
    skip_categories: Tuple[str, ...] = DEFAULT_SKIP_CATEGORIES
    texture_dir: Optional[Path] = None
    compression_threads: Optional[int] = None
    compression_timeout: Optional[float] = None
    draco: DracoOptions = field(default_factory=DracoOptions)

    def includes(self, element_id: int) -> bool:
        if self.elements is None:
            return True
        return int(element_id) in self.elements


class ExportCustomizer:
    """Hook for callers that want to rename materials or edit the final document.

    Subclass and override either method; the defaults leave everything as is.
    """

    def material_name(self, material: "MaterialInfo", default: str) -> str:
        return default

    def mutate(self, document: "GltfDocument") -> None:
        return None


OPTIONS = ExportOptions()

__all__ = [
    "DEFAULT_SKIP_CATEGORIES",
    "DracoOptions",
    "ExportCustomizer",
    "ExportOptions",
    "OPTIONS",
]
