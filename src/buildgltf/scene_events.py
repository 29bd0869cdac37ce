"""Traversal callback interface between a scene walker and the exporter.

A walker visits the host scene depth-first and reports what it sees through an
:class:`ExportContext`.  The expected sequence is::

    start(document)
      on_view_begin(view)
        on_element_begin(element_id)
          on_instance_begin(instance) / on_link_begin(link)    (nestable)
            on_material(material)
            on_polymesh(mesh)
          on_instance_end(instance) / on_link_end(link)
          on_material / on_polymesh                            (loose geometry)
        on_element_end(element_id)
      on_view_end(view)
    finish()

``on_element_begin`` and ``on_instance_begin`` may answer
:attr:`RenderAction.SKIP`, in which case the walker must not descend but still
delivers the matching ``*_end`` call.
"""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np


class RenderAction(enum.Enum):
    PROCEED = "proceed"
    SKIP = "skip"


@dataclass
class ViewInfo:
    """The view being exported.

    ``level_of_detail`` is written back by the exporter before the walker
    tessellates anything.
    """

    name: str = "view"
    eye: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    forward: Tuple[float, float, float] = (0.0, 1.0, 0.0)
    up: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    is_perspective: bool = True
    vertical_extent: float = 1.0
    near: float = 0.1
    far: float = 1000.0
    level_of_detail: int = 8


@dataclass
class ElementInfo:
    id: int
    unique_id: str = ""
    name: str = ""
    category: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InstanceInfo:
    """One placement of a shared geometry template."""

    template_id: Any
    transform: Any = None
    name: Optional[str] = None


@dataclass
class LinkInfo:
    """Entry into a linked document placed at ``transform``."""

    document: "SceneDocument"
    transform: Any = None
    name: Optional[str] = None


@dataclass
class MaterialInfo:
    """Material selection.

    ``color`` holds 0-255 channel values; ``transparency`` is in [0, 1].
    ``texture_reference`` is the raw bitmap reference of a persisted material
    (``"path/to/file.png|..."``).
    """

    material_id: Optional[int] = None
    color: Tuple[int, int, int] = (128, 128, 128)
    transparency: float = 0.0
    texture_reference: Optional[str] = None

    @property
    def is_persisted(self) -> bool:
        return self.material_id is not None and self.material_id >= 0


@dataclass
class PolymeshInfo:
    """Tessellated geometry in the coordinates of the current transform.

    ``facets`` is an (M, 3) array of indices into ``points``.  ``normals`` holds
    either one normal per point or a single normal for the whole mesh.
    """

    points: np.ndarray
    facets: np.ndarray
    uvs: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None

    @classmethod
    def from_sequences(
        cls,
        points: Sequence[Sequence[float]],
        facets: Sequence[Sequence[int]],
        uvs: Optional[Sequence[Sequence[float]]] = None,
        normals: Optional[Sequence[Sequence[float]]] = None,
    ) -> "PolymeshInfo":
        return cls(
            points=np.asarray(points, dtype=float).reshape(-1, 3),
            facets=np.asarray(facets, dtype=np.int64).reshape(-1, 3),
            uvs=None if uvs is None else np.asarray(uvs, dtype=float).reshape(-1, 2),
            normals=None if normals is None else np.asarray(normals, dtype=float).reshape(-1, 3),
        )


@runtime_checkable
class SceneDocument(Protocol):
    def get_element(self, element_id: int) -> ElementInfo: ...

    def get_material_name(self, material_id: int) -> Optional[str]: ...


class ExportContext(abc.ABC):
    """Receiver of traversal callbacks."""

    @abc.abstractmethod
    def start(self, document: SceneDocument) -> bool: ...

    @abc.abstractmethod
    def finish(self) -> Any: ...

    @abc.abstractmethod
    def is_cancelled(self) -> bool: ...

    @abc.abstractmethod
    def on_view_begin(self, view: ViewInfo) -> RenderAction: ...

    @abc.abstractmethod
    def on_view_end(self, view: ViewInfo) -> None: ...

    @abc.abstractmethod
    def on_element_begin(self, element_id: int) -> RenderAction: ...

    @abc.abstractmethod
    def on_element_end(self, element_id: int) -> None: ...

    @abc.abstractmethod
    def on_instance_begin(self, instance: InstanceInfo) -> RenderAction: ...

    @abc.abstractmethod
    def on_instance_end(self, instance: InstanceInfo) -> None: ...

    @abc.abstractmethod
    def on_link_begin(self, link: LinkInfo) -> RenderAction: ...

    @abc.abstractmethod
    def on_link_end(self, link: LinkInfo) -> None: ...

    @abc.abstractmethod
    def on_material(self, material: MaterialInfo) -> None: ...

    @abc.abstractmethod
    def on_polymesh(self, mesh: PolymeshInfo) -> None: ...


@runtime_checkable
class SceneWalker(Protocol):
    def walk(self, context: ExportContext) -> None: ...


__all__ = [
    "ElementInfo",
    "ExportContext",
    "InstanceInfo",
    "LinkInfo",
    "MaterialInfo",
    "PolymeshInfo",
    "RenderAction",
    "SceneDocument",
    "SceneWalker",
    "ViewInfo",
]
