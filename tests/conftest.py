from __future__ import annotations

import numpy as np
import pytest

from buildgltf.options import ExportOptions
from buildgltf.scene_events import ElementInfo, MaterialInfo, PolymeshInfo
from buildgltf.scene_model import GeometryPiece, SceneInstance, SceneModel

GREY = MaterialInfo(color=(128, 128, 128))


def square(offset: float = 0.0, *, normals: bool = False, uvs: bool = False) -> PolymeshInfo:
    """Unit square in the host XY plane, two triangles."""
    return PolymeshInfo.from_sequences(
        [(offset, 0, 0), (offset + 1, 0, 0), (offset + 1, 1, 0), (offset, 1, 0)],
        [(0, 1, 2), (0, 2, 3)],
        uvs=[(0, 0), (1, 0), (1, 1), (0, 1)] if uvs else None,
        normals=[(0, 0, 1)] if normals else None,
    )


def translation(x: float, y: float, z: float) -> np.ndarray:
    m = np.eye(4)
    m[:3, 3] = (x, y, z)
    return m


def loose_element(model: SceneModel, element_id: int, mesh: PolymeshInfo, material: MaterialInfo = GREY, **info):
    element = model.add_element(ElementInfo(id=element_id, unique_id=f"uid-{element_id}", name=f"E{element_id}", **info))
    element.pieces.append(GeometryPiece(material=material, mesh=mesh))
    return element


def instanced_element(model: SceneModel, element_id: int, template_id, transform=None, **info):
    element = model.add_element(ElementInfo(id=element_id, unique_id=f"uid-{element_id}", name=f"E{element_id}", **info))
    element.instances.append(SceneInstance(template_id=template_id, transform=transform))
    return element


@pytest.fixture
def options() -> ExportOptions:
    return ExportOptions(unit_scale=1.0, export_textures=False)


@pytest.fixture
def model() -> SceneModel:
    return SceneModel()
