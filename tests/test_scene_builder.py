import json
import struct
import threading
from dataclasses import replace

import numpy as np
import pytest

from buildgltf.errors import ExportCancelledError, MissingMaterialError, MissingTextureError
from buildgltf.exporter import export_scene
from buildgltf.gltf_data import ComponentType
from buildgltf.options import ExportCustomizer
from buildgltf.scene_builder import SceneGraphBuilder
from buildgltf.scene_events import ElementInfo, MaterialInfo, PolymeshInfo, ViewInfo
from buildgltf.scene_model import GeometryPiece, SceneLink, SceneModel, SceneModelWalker
from buildgltf.textures import TextureResolver
from buildgltf.transforms import CoordinateTransform

from conftest import GREY, instanced_element, loose_element, square, translation


def _export(model, options, **kwargs):
    return export_scene(SceneModelWalker(model), options, **kwargs)


def test_single_element_two_triangles(model, options):
    loose_element(model, 7, square())
    result = _export(model, options)
    doc = result.document

    assert doc.scenes[0].nodes == [0]
    assert doc.nodes[0].name == "root"
    assert doc.nodes[0].matrix is None
    assert doc.nodes[0].children == [1]
    node = doc.nodes[1]
    assert node.extras == {"ElementID": 7, "UniqueId": "uid-7"}

    primitive = doc.meshes[node.mesh].primitives[0]
    indices = doc.accessors[primitive.indices]
    assert indices.component_type == ComponentType.UNSIGNED_SHORT
    assert indices.count == 6
    positions = doc.accessors[primitive.attributes["POSITION"]]
    assert positions.count == 4
    assert positions.min == [0.0, 0.0, -1.0]
    assert positions.max == [1.0, 0.0, 0.0]
    assert primitive.mode == 4

    assert doc.buffers[0].byte_length == len(result.payload) == 12 + 48
    assert np.frombuffer(result.payload[:12], dtype="<u2").tolist() == [0, 1, 2, 0, 2, 3]
    doc.check_references()


def test_basic_material_from_colour(model, options):
    glass = MaterialInfo(color=(10, 20, 30), transparency=0.5)
    loose_element(model, 1, square(), material=glass)
    doc = _export(model, options).document

    material = doc.materials[0]
    assert material.name == "Basic 10-20-30-127"
    assert material.alpha_mode == "BLEND"
    assert material.double_sided is True
    pbr = material.pbr_metallic_roughness
    assert pbr.base_color_factor == pytest.approx([10 / 255, 20 / 255, 30 / 255, 0.5])
    assert (pbr.metallic_factor, pbr.roughness_factor) == (0.0, 1.0)


def test_persisted_materials_are_shared_by_name(model, options):
    model.materials[3] = "Concrete"
    loose_element(model, 1, square(), material=MaterialInfo(material_id=3))
    loose_element(model, 2, square(5), material=MaterialInfo(material_id=3))
    doc = _export(model, options).document
    assert [m.name for m in doc.materials] == ["Concrete"]
    assert doc.materials[0].alpha_mode is None


def test_instances_share_one_mesh(model, options):
    model.add_template("door").pieces.append(GeometryPiece(material=GREY, mesh=square()))
    instanced_element(model, 1, "door", translation(10, 0, 0))
    instanced_element(model, 2, "door", translation(0, 20, 0))
    doc = _export(model, options).document

    assert len(doc.meshes) == 1
    instance_nodes = [n for n in doc.nodes if n.mesh is not None]
    assert len(instance_nodes) == 2
    assert {n.mesh for n in instance_nodes} == {0}
    assert instance_nodes[0].matrix[12:15] == pytest.approx([10.0, 0.0, 0.0])
    assert instance_nodes[1].matrix[12:15] == pytest.approx([0.0, 0.0, -20.0])

    wrappers = [doc.nodes[i] for i in doc.nodes[0].children]
    assert [w.extras["ElementID"] for w in wrappers] == [1, 2]
    for wrapper in wrappers:
        assert len(wrapper.children) == 1
        assert doc.nodes[wrapper.children[0]].mesh == 0
        assert wrapper.mesh is None


def test_identity_instances_are_not_cached_by_default(model, options):
    model.add_template("chair").pieces.append(GeometryPiece(material=GREY, mesh=square()))
    instanced_element(model, 1, "chair")
    instanced_element(model, 2, "chair")
    assert len(_export(model, options).document.meshes) == 2

    cached = replace(options, cache_identity_instances=True)
    assert len(_export(model, cached).document.meshes) == 1


def test_instance_node_named_after_element(model, options):
    model.add_template("t").pieces.append(GeometryPiece(material=GREY, mesh=square()))
    instanced_element(model, 4, "t", translation(1, 0, 0))
    doc = _export(model, options).document
    assert all(n.name == "E4" for n in doc.nodes[1:])


def test_loose_geometry_next_to_instances_is_kept(model, options):
    model.add_template("t").pieces.append(GeometryPiece(material=GREY, mesh=square()))
    element = instanced_element(model, 1, "t", translation(1, 0, 0))
    element.pieces.append(GeometryPiece(material=GREY, mesh=square(3)))
    doc = _export(model, options).document
    wrapper = doc.nodes[doc.nodes[0].children[0]]
    assert len(wrapper.children) == 2
    assert len(doc.meshes) == 2


def test_polymesh_without_material_fails(model, options):
    builder = SceneGraphBuilder(options)
    builder.start(model)
    model.add_element(ElementInfo(id=1))
    builder.on_element_begin(1)
    with pytest.raises(MissingMaterialError):
        builder.on_polymesh(square())


def test_skipped_categories_and_element_filter(model, options):
    loose_element(model, 1, square(), category="Levels")
    loose_element(model, 2, square(2))
    loose_element(model, 3, square(4))
    doc = _export(model, options).document
    assert [doc.nodes[i].extras["ElementID"] for i in doc.nodes[0].children] == [2, 3]

    only_three = replace(options, elements=(3,))
    doc = _export(model, only_three).document
    assert [doc.nodes[i].extras["ElementID"] for i in doc.nodes[0].children] == [3]


def test_parameters_written_to_extras(model, options):
    loose_element(model, 1, square(), parameters={"Pset_Wall.FireRating": "2h"})
    doc = _export(model, replace(options, export_parameters=True)).document
    assert doc.nodes[1].extras["Parameters"] == {"Pset_Wall.FireRating": "2h"}
    doc = _export(model, options).document
    assert "Parameters" not in doc.nodes[1].extras


def test_view_quality_and_box_instances(model, options):
    model.add_template("t").pieces.append(GeometryPiece(material=GREY, mesh=square(uvs=True)))
    instanced_element(model, 1, "t", translation(1, 0, 0))
    boxed = replace(options, box_instances=True)
    doc = _export(model, boxed).document
    assert model.view.level_of_detail == 0
    primitive = doc.meshes[0].primitives[0]
    assert doc.accessors[primitive.attributes["POSITION"]].count == 8
    assert doc.accessors[primitive.indices].count == 36
    assert "TEXCOORD_0" not in primitive.attributes

    _export(model, replace(options, quality=5))
    assert model.view.level_of_detail == 5


def test_uvs_are_scaled_and_normals_converted(model, options):
    loose_element(model, 1, square(uvs=True, normals=True))
    result = _export(model, options)
    primitive = result.document.meshes[0].primitives[0]
    normal_view = result.document.buffer_views[result.document.accessors[primitive.attributes["NORMAL"]].buffer_view]
    uv_view = result.document.buffer_views[result.document.accessors[primitive.attributes["TEXCOORD_0"]].buffer_view]
    normals = np.frombuffer(result.payload, dtype="<f4", count=12, offset=normal_view.byte_offset).reshape(-1, 3)
    uvs = np.frombuffer(result.payload, dtype="<f4", count=8, offset=uv_view.byte_offset).reshape(-1, 2)
    assert normals.tolist() == [[0.0, 1.0, 0.0]] * 4
    assert uvs[2].tolist() == [0.5, 0.5]


def test_camera_export(model, options):
    model.view = ViewInfo(name="3D", eye=(1.0, 2.0, 3.0), forward=(0.0, 1.0, 0.0), up=(0.0, 0.0, 1.0))
    loose_element(model, 1, square())
    doc = _export(model, replace(options, export_cameras=True)).document

    assert doc.cameras[0].type == "perspective"
    assert doc.cameras[0].perspective.yfov == 1.0
    camera_node = next(n for n in doc.nodes if n.camera is not None)
    assert camera_node.camera == 0
    assert camera_node.translation == pytest.approx([1.0, 3.0, -2.0])
    assert camera_node.rotation == pytest.approx([0.0, 0.0, 0.0, 1.0], abs=1e-7)
    assert camera_node.extras["target"] == pytest.approx([1.0, 3.0, -(2.0 + 500.05)])


def test_orthographic_camera(model, options):
    model.view = ViewInfo(is_perspective=False, vertical_extent=20.0)
    doc = _export(model, replace(options, export_cameras=True)).document
    ortho = doc.cameras[0].orthographic
    assert (ortho.xmag, ortho.ymag, ortho.znear) == (10.0, 10.0, 0.0)


def test_unbaked_coordinates_put_conversion_on_root(model):
    loose_element(model, 1, square())
    options = replace(SceneGraphBuilder().options, unit_scale=0.3048, bake_coordinates=False, export_textures=False)
    result = _export(model, options)
    assert result.document.nodes[0].matrix == pytest.approx(CoordinateTransform().conversion_matrix())
    positions = result.document.accessors[result.document.meshes[0].primitives[0].attributes["POSITION"]]
    assert positions.max == [1.0, 1.0, 0.0]


def test_linked_document_geometry_carries_link_transform(model, options):
    linked = SceneModel()
    loose_element(linked, 50, square())
    model.links.append(SceneLink(model=linked, transform=translation(0, 0, 5)))
    doc = _export(model, options).document
    node = doc.nodes[doc.nodes[0].children[0]]
    assert node.extras["ElementID"] == 50
    assert node.matrix[12:15] == pytest.approx([0.0, 5.0, 0.0])


def test_link_opened_inside_element_resumes_host(model, options):
    from buildgltf.scene_events import LinkInfo

    linked = SceneModel()
    guest = loose_element(linked, 50, square())
    host = loose_element(model, 1, square(2.0))
    builder = SceneGraphBuilder(options)
    builder.start(model)
    builder.on_element_begin(1)
    builder.on_material(GREY)
    builder.on_polymesh(host.pieces[0].mesh)
    link = LinkInfo(document=linked, transform=translation(0, 0, 5))
    builder.on_link_begin(link)
    builder.on_element_begin(50)
    builder.on_material(GREY)
    builder.on_polymesh(guest.pieces[0].mesh)
    builder.on_element_end(50)
    builder.on_link_end(link)
    builder.on_element_end(1)
    builder.finish()

    root = builder.document.nodes[0]
    ids = [builder.document.nodes[i].extras["ElementID"] for i in root.children]
    assert ids == [50, 1]
    assert builder.document.nodes[root.children[1]].matrix is None


def test_textures_are_embedded_after_geometry(model, options, tmp_path):
    (tmp_path / "maps").mkdir()
    image = b"\x89PNG-not-really"
    (tmp_path / "maps" / "oak.png").write_bytes(image)
    model.materials[1] = "Oak"
    oak = MaterialInfo(material_id=1, texture_reference="maps\\oak.png|0|1")
    loose_element(model, 1, square(uvs=True), material=oak)
    loose_element(model, 2, square(3, uvs=True), material=oak)

    result = _export(
        model,
        replace(options, export_textures=True),
        texture_resolver=TextureResolver(tmp_path),
    )
    doc = result.document
    assert len(doc.images) == 1 and len(doc.textures) == 1 and len(doc.samplers) == 1
    assert doc.images[0].mime_type == "image/png"
    assert doc.images[0].name == "oak"
    sampler = doc.samplers[0]
    assert (sampler.mag_filter, sampler.min_filter, sampler.wrap_s, sampler.wrap_t) == (9729, 9987, 10497, 10497)
    view = doc.buffer_views[doc.images[0].buffer_view]
    assert view.byte_offset + view.byte_length == len(result.payload)
    assert result.payload[view.byte_offset :] == image
    pbr = doc.materials[0].pbr_metallic_roughness
    assert pbr.base_color_texture.index == 0
    assert pbr.base_color_factor is None


def test_missing_texture_raises(model, options, tmp_path):
    model.materials[1] = "Brick"
    loose_element(model, 1, square(), material=MaterialInfo(material_id=1, texture_reference="brick.jpg"))
    with pytest.raises(MissingTextureError) as info:
        _export(model, replace(options, export_textures=True), texture_resolver=TextureResolver(tmp_path))
    assert isinstance(info.value, FileNotFoundError)


def test_customizer_renames_and_mutates(model, options):
    class Custom(ExportCustomizer):
        def material_name(self, material, default):
            return default.replace("Basic", "Paint")

        def mutate(self, document):
            document.asset.extras = {"project": "demo"}

    loose_element(model, 1, square())
    result = _export(model, options, customizer=Custom())
    assert result.document.materials[0].name.startswith("Paint ")
    glb_json = json.loads(result.data[20 : 20 + struct.unpack_from("<I", result.data, 12)[0]])
    assert glb_json["asset"]["extras"] == {"project": "demo"}


def test_cancelled_before_start(model, options):
    loose_element(model, 1, square())
    event = threading.Event()
    event.set()
    with pytest.raises(ExportCancelledError):
        _export(model, options, cancel_event=event)


def test_cancel_during_walk_stops_export(model, options):
    event = threading.Event()

    class CancellingModel(SceneModel):
        def get_element(self, element_id):
            event.set()
            return super().get_element(element_id)

    cancelling = CancellingModel()
    loose_element(cancelling, 1, square())
    loose_element(cancelling, 2, square(2))
    builder = SceneGraphBuilder(options, cancel_event=event)
    with pytest.raises(ExportCancelledError):
        SceneModelWalker(cancelling).walk(builder)
    assert builder.payload is None


def test_traversal_order_is_enforced(model, options):
    builder = SceneGraphBuilder(options)
    with pytest.raises(RuntimeError):
        builder.on_element_begin(1)


def test_walker_must_finish(model, options):
    class HalfWalker:
        def walk(self, context):
            context.start(model)

    from buildgltf.errors import ExportError

    with pytest.raises(ExportError):
        export_scene(HalfWalker(), options)


def test_glb_output_is_consistent(model, options):
    loose_element(model, 1, square())
    result = _export(model, options)
    data = result.data
    magic, version, total = struct.unpack_from("<III", data, 0)
    assert (magic, version, total) == (0x46546C67, 2, len(data))
    json_len = struct.unpack_from("<I", data, 12)[0]
    parsed = json.loads(data[20 : 20 + json_len])
    assert parsed["buffers"] == [{"byteLength": 60}]
    assert parsed["scene"] == 0
    bin_len = struct.unpack_from("<I", data, 20 + json_len)[0]
    assert data[28 + json_len : 28 + json_len + 60] == result.payload
    assert bin_len == 60


def test_save_separate_files(model, options, tmp_path):
    loose_element(model, 1, square())
    result = _export(model, replace(options, glb=False), output_name="tower")
    assert json.loads(result.data)["buffers"][0]["uri"] == "tower.bin"
    target = result.save(tmp_path / "tower.gltf")
    assert (tmp_path / "tower.bin").read_bytes() == result.payload
    assert json.loads(target.read_text(encoding="utf-8"))["buffers"][0]["uri"] == "tower.bin"


def test_export_without_geometry_has_no_buffer(model, options, tmp_path):
    loose_element(model, 1, square(), category="Grids")
    result = _export(model, options)
    assert result.payload == b""
    assert result.document.buffers == []
    assert "buffers" not in json.loads(result.data[20:].decode("utf-8").rstrip())
    assert len(result.data) == struct.unpack_from("<I", result.data, 8)[0]

    separate = _export(model, replace(options, glb=False), output_name="empty")
    target = separate.save(tmp_path / "empty.gltf")
    assert target.exists()
    assert not (tmp_path / "empty.bin").exists()
