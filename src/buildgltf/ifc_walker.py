"""IFC front-end: tessellate an IFC file with ifcopenshell into a SceneModel.

Each IFC product becomes one element holding a single instance of its
tessellated representation.  Products that share a representation map share
the iterator's geometry id, so they end up as one glTF mesh with several
nodes.  ifcopenshell works in metres, hence :attr:`IfcSceneWalker.unit_scale`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from .compression import _resolve_threads
from .errors import _ensure_not_cancelled
from .scene_events import ElementInfo, ExportContext, MaterialInfo, PolymeshInfo
from .scene_model import GeometryPiece, SceneInstance, SceneModel, SceneModelWalker

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

IFC_UNIT_SCALE = 1.0
DEFAULT_COLOUR = (204, 204, 204)

_GEOM_SETTINGS: Dict[str, Any] = {
    "use-world-coords": False,
    "weld-vertices": True,
    "apply-default-materials": True,
    "disable-opening-subtractions": False,
}

_IGNORED_CLASSES = ("IfcOpeningElement", "IfcSpace")


# ---------------- ifcopenshell helpers ----------------

def _apply_geom_settings(settings, overrides: Dict[str, Any]) -> None:
    for key, value in overrides.items():
        try:
            settings.set(key, value)
        except Exception:
            alt_key = key.replace("-", "_").upper()
            constant = getattr(settings, alt_key, None)
            if constant is None:
                log.debug("Geometry setting '%s' not supported by this ifcopenshell", key)
                continue
            settings.set(constant, value)


def _channel(value: Any) -> float:
    return float(value() if callable(value) else value)


def _colour_components(colour: Any) -> Optional[Tuple[float, float, float]]:
    """RGB in [0, 1] from an ifcopenshell colour (attributes, methods or sequence)."""
    if colour is None:
        return None
    try:
        if all(hasattr(colour, c) for c in ("r", "g", "b")):
            return (_channel(colour.r), _channel(colour.g), _channel(colour.b))
        values = [float(v) for v in colour]
    except (TypeError, ValueError):
        return None
    if len(values) < 3:
        return None
    return (values[0], values[1], values[2])


def _material_info(style: Any, registry: Dict[str, int], model: SceneModel) -> MaterialInfo:
    name = str(getattr(style, "name", "") or "").strip()
    rgb = _colour_components(getattr(style, "diffuse", None))
    colour = DEFAULT_COLOUR if rgb is None else tuple(int(round(max(0.0, min(1.0, c)) * 255)) for c in rgb)
    transparency = getattr(style, "transparency", None)
    try:
        transparency = 0.0 if transparency is None else max(0.0, min(1.0, float(transparency)))
    except (TypeError, ValueError):
        transparency = 0.0
    if transparency != transparency:  # NaN
        transparency = 0.0
    material_id: Optional[int] = None
    if name:
        material_id = registry.get(name)
        if material_id is None:
            material_id = len(registry)
            registry[name] = material_id
            model.materials[material_id] = name
    return MaterialInfo(material_id=material_id, color=colour, transparency=transparency)


def _property_value(prop: Any) -> Any:
    value = getattr(prop, "NominalValue", None)
    if value is None:
        return None
    value = getattr(value, "wrappedValue", value)
    if isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def _quantity_value(qty: Any) -> Any:
    for attr in ("LengthValue", "AreaValue", "VolumeValue", "CountValue", "WeightValue", "TimeValue"):
        value = getattr(qty, attr, None)
        if value is not None:
            return float(value)
    return None


def _definition_values(definition: Any) -> Tuple[Optional[str], Dict[str, Any]]:
    if definition.is_a("IfcPropertySet"):
        items = getattr(definition, "HasProperties", None) or []
        return getattr(definition, "Name", None), {p.Name: _property_value(p) for p in items}
    if definition.is_a("IfcElementQuantity"):
        items = getattr(definition, "Quantities", None) or []
        return getattr(definition, "Name", None), {q.Name: _quantity_value(q) for q in items}
    return None, {}


def collect_parameters(product: Any) -> Dict[str, Any]:
    """Flatten property and quantity sets of a product (and its type) to ``Set.Name`` keys."""
    out: Dict[str, Any] = {}

    def merge(set_name: Optional[str], values: Dict[str, Any]) -> None:
        prefix = set_name or "Unnamed"
        for key, value in values.items():
            if value is not None:
                out.setdefault(f"{prefix}.{key}", value)

    for rel in getattr(product, "IsDefinedBy", None) or []:
        definition = getattr(rel, "RelatingPropertyDefinition", None)
        if definition is not None:
            merge(*_definition_values(definition))
    for rel in getattr(product, "IsTypedBy", None) or []:
        type_obj = getattr(rel, "RelatingType", None)
        if type_obj is None:
            continue
        for definition in getattr(type_obj, "HasPropertySets", None) or []:
            merge(*_definition_values(definition))
    return out


def _mesh_arrays(geometry: Any) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray], List[int]]:
    verts = np.asarray(geometry.verts, dtype=float).reshape(-1, 3)
    faces = np.asarray(geometry.faces, dtype=np.int64).reshape(-1, 3)
    normals = getattr(geometry, "normals", None)
    normal_array: Optional[np.ndarray] = None
    if normals is not None and len(normals) == verts.size:
        normal_array = np.asarray(normals, dtype=float).reshape(-1, 3)
    material_ids = list(getattr(geometry, "material_ids", None) or [])
    return verts, faces, normal_array, material_ids


def _split_by_material(
    verts: np.ndarray,
    faces: np.ndarray,
    normals: Optional[np.ndarray],
    material_ids: List[int],
) -> Iterable[Tuple[int, PolymeshInfo]]:
    """Yield one compact polymesh per material id used by the faces."""
    if len(material_ids) != len(faces):
        material_ids = [-1] * len(faces)
    ids = np.asarray(material_ids, dtype=np.int64)
    for material_id in dict.fromkeys(int(m) for m in ids):
        selected = faces[ids == material_id]
        used, local = np.unique(selected.reshape(-1), return_inverse=True)
        yield material_id, PolymeshInfo(
            points=verts[used],
            facets=local.reshape(-1, 3),
            normals=None if normals is None else normals[used],
        )


def _shape_matrix(shape: Any) -> np.ndarray:
    from ifcopenshell.util import shape as ifc_shape_util

    return np.asarray(ifc_shape_util.get_shape_matrix(shape), dtype=float).reshape(4, 4)


# ---------------- scene construction ----------------

def load_ifc_scene(
    ifc_path: PathLike,
    *,
    threads: Optional[int] = None,
    cancel_event: Any = None,
    include_parameters: bool = True,
) -> SceneModel:
    """Tessellate ``ifc_path`` into an in-memory :class:`SceneModel`."""
    import ifcopenshell
    import ifcopenshell.geom

    path = Path(ifc_path)
    ifc_file = ifcopenshell.open(str(path))
    settings = ifcopenshell.geom.settings()
    _apply_geom_settings(settings, _GEOM_SETTINGS)
    model = SceneModel(name=path.stem)
    model.view.name = path.stem
    registry: Dict[str, int] = {}
    seen_templates: set = set()

    iterator = ifcopenshell.geom.iterator(settings, ifc_file, threads or _resolve_threads("BUILDGLTF_IFC_THREADS"))
    if not iterator.initialize():
        log.warning("No geometry found in %s", path)
        return model

    processed = 0
    while True:
        _ensure_not_cancelled(cancel_event)
        shape = iterator.get()
        product = ifc_file.by_id(int(shape.id)) if shape is not None else None
        if product is not None and not any(product.is_a(cls) for cls in _IGNORED_CLASSES):
            processed += 1
            _add_product(model, product, shape, registry, seen_templates, include_parameters)
        if not iterator.next():
            break

    log.info(
        "Tessellated %d products from %s (%d unique geometries, %d materials)",
        processed,
        path.name,
        len(model.templates),
        len(model.materials),
    )
    return model


def _add_product(
    model: SceneModel,
    product: Any,
    shape: Any,
    registry: Dict[str, int],
    seen_templates: set,
    include_parameters: bool,
) -> None:
    geometry = shape.geometry
    template_id = str(geometry.id)
    info = ElementInfo(
        id=int(product.id()),
        unique_id=str(getattr(product, "GlobalId", "") or ""),
        name=str(getattr(product, "Name", None) or product.is_a()),
        category=product.is_a(),
        parameters=collect_parameters(product) if include_parameters else {},
    )
    element = model.add_element(info)
    element.instances.append(SceneInstance(template_id=template_id, transform=_shape_matrix(shape)))
    if template_id in seen_templates:
        return
    seen_templates.add(template_id)
    template = model.add_template(template_id)
    styles = list(getattr(geometry, "materials", None) or [])
    verts, faces, normals, material_ids = _mesh_arrays(geometry)
    for material_id, mesh in _split_by_material(verts, faces, normals, material_ids):
        style = styles[material_id] if 0 <= material_id < len(styles) else None
        material = _material_info(style, registry, model)
        template.pieces.append(GeometryPiece(material=material, mesh=mesh))


class IfcSceneWalker:
    """Scene walker over an IFC file; tessellation happens on the first walk."""

    unit_scale = IFC_UNIT_SCALE

    def __init__(self, ifc_path: PathLike, *, threads: Optional[int] = None, cancel_event: Any = None) -> None:
        self.ifc_path = Path(ifc_path)
        self.threads = threads
        self.cancel_event = cancel_event
        self._model: Optional[SceneModel] = None

    @property
    def model(self) -> SceneModel:
        if self._model is None:
            self._model = load_ifc_scene(self.ifc_path, threads=self.threads, cancel_event=self.cancel_event)
        return self._model

    def walk(self, context: ExportContext) -> None:
        SceneModelWalker(self.model).walk(context)


__all__ = [
    "IFC_UNIT_SCALE",
    "IfcSceneWalker",
    "collect_parameters",
    "load_ifc_scene",
]
