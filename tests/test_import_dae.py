import asyncio
import math

import pytest

from conftest import QUAD_NORMALS, index_element, quad_geometry, vec_source

from dae_pbr.dae_format.dae_reader import SceneParseError
from dae_pbr.importer.import_dae import (
    EntityTreeBuilder, build_entity_tree, build_entity_tree_async,
    build_merged_entity, collect_all_descriptors, collect_all_materials,
    convert_scene, load_dae, load_dae_async,
)
from dae_pbr.importer.mesh_builder import DescriptorMeshFactory, MeshResource
from dae_pbr.scene_graph.sg_classes import SceneGraph, Transform
from dae_pbr.scene_graph.sg_geometry import Geometry
from dae_pbr.scene_graph.sg_materials import ReflectanceMaterial, ScalarValue


METAL = ReflectanceMaterial(name="metal", metalness=ScalarValue(1.0))


def three_level_graph():
    """root -> A -> B, each with its own transform; A and B carry geometry."""
    graph = SceneGraph()
    graph.nodes[graph.root].transform = Transform((0.0, 0.0, 1.0))
    a = graph.add_node(
        "A", Transform((1.0, 2.0, 3.0), scale=(2.0, 2.0, 2.0)),
        geometry=quad_geometry("a_mesh", materials=[METAL]),
        parent=graph.root,
    )
    half = math.sqrt(0.5)
    b = graph.add_node(
        "B", Transform((0.0, 5.0, 0.0), rotation=(half, 0.0, 0.0, half)),
        geometry=quad_geometry("b_mesh"),
        parent=a,
    )
    return graph, a, b


class RecordingFactory(DescriptorMeshFactory):
    def __init__(self):
        self.received = []

    def build_mesh(self, descriptors, name=None):
        self.received.append(descriptors)
        return super().build_mesh(descriptors, name)


class FailingFactory:
    def build_mesh(self, descriptors, name=None):
        raise RuntimeError("GPU unavailable")


class AsyncFactory(DescriptorMeshFactory):
    def __init__(self):
        self.awaited = 0

    async def build_mesh_async(self, descriptors, name=None):
        self.awaited += 1
        await asyncio.sleep(0)
        return self.build_mesh(descriptors, name)


def test_tree_keeps_local_transforms_and_order():
    graph, a, b = three_level_graph()
    extra = graph.add_node("C", Transform((9.0, 0.0, 0.0)), parent=graph.root)

    root = build_entity_tree(graph)

    assert [c.name for c in root.children] == ["A", "C"]
    entity_a = root.children[0]
    entity_b = entity_a.children[0]
    assert root.transform == graph.node(graph.root).transform
    assert entity_a.transform == graph.node(a).transform
    assert entity_b.transform == graph.node(b).transform
    assert root.children[1].transform == graph.node(extra).transform
    assert root.model is None
    assert isinstance(entity_a.model.mesh, MeshResource)
    assert entity_a.model.materials[0].metallic == ScalarValue(1.0)
    assert entity_b.model.materials == [None]


def test_world_matrices_compose_down_the_tree():
    graph, _, _ = three_level_graph()
    root = build_entity_tree(graph)

    worlds = {e.name: m for e, m in root.world_matrices()}

    # B sits 5 units up A's Y axis, which A scales by 2
    assert tuple(worlds["B"].translation) == pytest.approx((1.0, 12.0, 4.0))


def test_non_recursive_omits_children():
    graph, a, _ = three_level_graph()

    entity = build_entity_tree(graph, node=a, recursive=False)

    assert entity.name == "A"
    assert entity.children == []
    assert entity.model is not None


def test_mesh_factory_failure_leaves_node_without_model(sink):
    graph, _, _ = three_level_graph()

    root = build_entity_tree(graph, mesh_factory=FailingFactory(), sink=sink)

    assert all(e.model is None for e in root.iter_entities())
    assert sink.codes.count("mesh-failed") == 2


def test_positionless_geometry_leaves_siblings_intact(sink):
    graph = SceneGraph()
    broken = Geometry(
        name="broken_mesh",
        sources=[vec_source("normal", QUAD_NORMALS)],
        elements=[index_element([0, 1, 2])],
    )
    graph.add_node("broken", geometry=broken, parent=graph.root)
    graph.add_node("ok", geometry=quad_geometry("ok_mesh"), parent=graph.root)

    root = build_entity_tree(graph, sink=sink)

    assert [(e.name, e.model is not None) for e in root.children] == [
        ("broken", False), ("ok", True)]
    assert sink.codes == ["missing-positions"]


def test_build_model_for_planned_node():
    graph, a, _ = three_level_graph()
    builder = EntityTreeBuilder()
    plan = builder.plan(graph, a, recursive=False)

    model = builder.build_model(plan.nodes[0])

    assert isinstance(model.mesh, MeshResource)
    assert [m.name for m in model.materials] == ["metal"]
    assert builder.build_model(builder.plan(graph).nodes[0]) is None


def test_factory_receives_frozen_snapshots():
    graph, _, _ = three_level_graph()
    factory = RecordingFactory()

    build_entity_tree(graph, mesh_factory=factory)

    assert len(factory.received) == 2
    assert all(isinstance(batch, tuple) for batch in factory.received)


def test_plan_is_factory_free():
    graph, _, _ = three_level_graph()
    builder = EntityTreeBuilder(mesh_factory=FailingFactory())

    plan = builder.plan(graph)

    assert [p.name for p in plan.nodes] == ["root", "A", "B"]
    assert plan.nodes[0].children == [1]
    assert len(plan.descriptors) == 2


def test_flattening_collects_every_geometry():
    graph, _, _ = three_level_graph()

    descriptors = collect_all_descriptors(graph)
    materials = collect_all_materials(graph)

    assert [d.name for d in descriptors] == ["a_mesh_0", "b_mesh_0"]
    assert [m.name for m in materials] == ["metal"]


def test_merged_entity_has_one_mesh():
    graph, _, _ = three_level_graph()

    merged = build_merged_entity(graph)

    assert merged.children == []
    assert merged.model.mesh.submesh_count == 2
    assert len(merged.model.materials) == 2


def test_node_materials_override_geometry_materials():
    graph = SceneGraph()
    override = ReflectanceMaterial(name="override", specular=ScalarValue(0.1))
    graph.add_node("n", geometry=quad_geometry(materials=[METAL]),
                   materials=[override], parent=graph.root)

    root = build_entity_tree(graph)

    assert root.children[0].model.materials[0].name == "override"


def test_scene_without_geometry_converts_to_none(sink):
    graph = SceneGraph()
    graph.add_node("empty", parent=graph.root)

    assert convert_scene(graph, sink=sink) is None
    assert sink.codes == ["no-geometry"]


def test_debug_dump_via_environment(monkeypatch, sink):
    monkeypatch.setenv("DAE_PBR_DEBUG", "1")
    graph, _, _ = three_level_graph()

    convert_scene(graph, sink=sink)

    assert len(sink.by_code("scene-dump")) == 5


def test_async_tree_awaits_factory():
    graph, _, _ = three_level_graph()
    factory = AsyncFactory()

    root = asyncio.run(build_entity_tree_async(graph, mesh_factory=factory))

    assert factory.awaited == 2
    assert root.children[0].children[0].model is not None


def test_async_tree_with_sync_factory():
    graph, _, _ = three_level_graph()

    root = asyncio.run(build_entity_tree_async(graph))

    assert root.children[0].model.mesh.triangle_count == 2


class BrokenParser:
    def parse(self, data):
        raise SceneParseError("not COLLADA")


class GraphParser:
    def __init__(self, graph):
        self.graph = graph

    def parse(self, data):
        return self.graph


def test_load_dae_parse_failure_is_none(sink):
    assert load_dae(b"<nope/>", parser=BrokenParser(), sink=sink) is None
    assert sink.codes == ["parse-failed"]


def test_load_dae_with_custom_parser():
    graph, _, _ = three_level_graph()

    root = load_dae(b"ignored", parser=GraphParser(graph))

    assert root.find("B") is not None


def test_load_dae_async_with_custom_parser():
    graph, _, _ = three_level_graph()

    root = asyncio.run(load_dae_async(b"ignored", parser=GraphParser(graph)))

    assert [e.name for e in root.iter_entities()] == ["root", "A", "B"]


def test_load_dae_rejects_garbage_bytes(sink):
    assert load_dae(b"definitely not xml", sink=sink) is None
    assert "parse-failed" in sink.codes
