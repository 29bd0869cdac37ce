"""In-memory scene description and a walker that replays it as callbacks.

Useful on its own for programmatic exports and as the target that other
front-ends (see :mod:`buildgltf.ifc_walker`) translate their input into.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

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

log = logging.getLogger(__name__)


@dataclass
class GeometryPiece:
    material: MaterialInfo
    mesh: PolymeshInfo


@dataclass
class SceneInstance:
    """Placement of a template; the template's geometry is in its own frame."""

    template_id: Any
    transform: Any = None
    name: Optional[str] = None


@dataclass
class GeometryTemplate:
    pieces: List[GeometryPiece] = field(default_factory=list)
    instances: List[SceneInstance] = field(default_factory=list)


@dataclass
class SceneElement:
    info: ElementInfo
    instances: List[SceneInstance] = field(default_factory=list)
    pieces: List[GeometryPiece] = field(default_factory=list)


@dataclass
class SceneLink:
    model: "SceneModel"
    transform: Any = None
    name: Optional[str] = None


@dataclass
class SceneModel:
    """A host document: elements, shared templates, material names and links."""

    elements: List[SceneElement] = field(default_factory=list)
    templates: Dict[Any, GeometryTemplate] = field(default_factory=dict)
    materials: Dict[int, str] = field(default_factory=dict)
    links: List[SceneLink] = field(default_factory=list)
    view: ViewInfo = field(default_factory=ViewInfo)
    name: str = "model"

    # SceneDocument protocol
    def get_element(self, element_id: int) -> Optional[ElementInfo]:
        for element in self.elements:
            if element.info.id == element_id:
                return element.info
        return None

    def get_material_name(self, material_id: int) -> Optional[str]:
        return self.materials.get(material_id)

    # construction helpers
    def add_element(self, info: ElementInfo) -> SceneElement:
        element = SceneElement(info=info)
        self.elements.append(element)
        return element

    def add_template(self, template_id: Any) -> GeometryTemplate:
        return self.templates.setdefault(template_id, GeometryTemplate())

    def add_material(self, material_id: int, name: str) -> MaterialInfo:
        self.materials[material_id] = name
        return MaterialInfo(material_id=material_id)


class SceneModelWalker:
    """Replay a :class:`SceneModel` through an :class:`ExportContext`."""

    def __init__(self, model: SceneModel) -> None:
        self.model = model
        self._cancelled = False

    def walk(self, context: ExportContext) -> None:
        self._cancelled = False
        context.start(self.model)
        view = self.model.view
        if context.on_view_begin(view) is not RenderAction.SKIP:
            self._walk_document(context, self.model)
        context.on_view_end(view)
        context.finish()

    def _check_cancel(self, context: ExportContext) -> bool:
        if not self._cancelled and context.is_cancelled():
            log.info("Scene walk cancelled")
            self._cancelled = True
        return self._cancelled

    def _walk_document(self, context: ExportContext, model: SceneModel) -> None:
        for element in model.elements:
            if self._check_cancel(context):
                return
            if context.on_element_begin(element.info.id) is not RenderAction.SKIP:
                for instance in element.instances:
                    self._walk_instance(context, model, instance)
                self._emit_pieces(context, element.pieces)
            context.on_element_end(element.info.id)
        for link in model.links:
            if self._check_cancel(context):
                return
            info = LinkInfo(document=link.model, transform=link.transform, name=link.name)
            if context.on_link_begin(info) is not RenderAction.SKIP:
                self._walk_document(context, link.model)
            context.on_link_end(info)

    def _walk_instance(self, context: ExportContext, model: SceneModel, instance: SceneInstance) -> None:
        info = InstanceInfo(template_id=instance.template_id, transform=instance.transform, name=instance.name)
        if context.on_instance_begin(info) is not RenderAction.SKIP:
            template = model.templates.get(instance.template_id)
            if template is None:
                log.warning("Instance references unknown template %r", instance.template_id)
            else:
                for child in template.instances:
                    self._walk_instance(context, model, child)
                self._emit_pieces(context, template.pieces)
        context.on_instance_end(info)

    @staticmethod
    def _emit_pieces(context: ExportContext, pieces: List[GeometryPiece]) -> None:
        for piece in pieces:
            context.on_material(piece.material)
            context.on_polymesh(piece.mesh)


__all__ = [
    "GeometryPiece",
    "GeometryTemplate",
    "SceneElement",
    "SceneInstance",
    "SceneLink",
    "SceneModel",
    "SceneModelWalker",
]
