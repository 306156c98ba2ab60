"""Convert a DAE scene graph into a tree of render entities.

Conversion runs in two stages:

    plan     pure and synchronous: walk the scene graph, assemble frozen
             mesh descriptors and resolve materials for every node
    realize  hand each node's descriptor snapshot to the mesh factory and
             link the resulting entities into a tree mirroring the graph

Only realize touches a mesh factory, so only realize has an async
variant. Local transforms are copied unchanged onto the entities;
world_matrices() composes them for consumers that need world space.

Entry points:
    convert_scene(graph)            SceneGraph -> RenderEntity | None
    load_dae(data) / load_dae_file  DAE bytes / path -> RenderEntity | None
    load_dae_async(data)            same, awaiting an async mesh factory
    build_merged_entity(graph)      every geometry as one mesh resource
    collect_all_descriptors(graph)  flat MeshDescriptor list
    collect_all_materials(graph)    flat PBMaterial list
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from mathutils import Matrix

from ..conversion_profiles import resolve_profile
from ..dae_format.dae_reader import ColladaSceneParser, SceneParseError
from ..scene_graph.sg_classes import Transform
from ..utils.diagnostics import debug_dump_enabled, report
from .material_builder import MaterialResolver
from .mesh_builder import (
    DescriptorMeshFactory, build_descriptors, freeze_descriptors,
)


_log = logging.getLogger("dae_pbr.import")


@dataclass
class ModelComponent:
    """Mesh resource plus materials index-aligned with its submeshes."""

    mesh: object
    materials: List[object] = field(default_factory=list)


@dataclass
class RenderEntity:
    """Output node: local transform, optional model, ordered children."""

    name: Optional[str] = None
    transform: Transform = field(default_factory=Transform)
    model: Optional[ModelComponent] = None
    children: List["RenderEntity"] = field(default_factory=list)

    def iter_entities(self):
        """Yield this entity and every descendant, depth-first."""
        stack = [self]
        while stack:
            entity = stack.pop()
            yield entity
            stack.extend(reversed(entity.children))

    def world_matrices(self, parent_matrix=None):
        """Return [(entity, world Matrix)] depth-first.

        Each world matrix is the parent's world matrix times the entity's
        local transform matrix.
        """
        if parent_matrix is None:
            parent_matrix = Matrix.Identity(4)
        result = []
        stack = [(self, parent_matrix)]
        while stack:
            entity, parent_world = stack.pop()
            world = parent_world @ entity.transform.to_matrix()
            result.append((entity, world))
            for child in reversed(entity.children):
                stack.append((child, world))
        return result

    def find(self, name):
        """First entity in depth-first order with the given name, or None."""
        for entity in self.iter_entities():
            if entity.name == name:
                return entity
        return None


@dataclass
class PlannedNode:
    """Factory-free conversion result for one scene node."""

    index: int
    name: Optional[str]
    transform: Transform
    mesh_name: str = ""
    descriptors: tuple = ()
    materials: tuple = ()        # aligned with descriptors, entries may be None
    children: List[int] = field(default_factory=list)  # positions in the plan


@dataclass
class ConversionPlan:
    """Planned nodes in depth-first order; nodes[0] is the subtree root."""

    nodes: List[PlannedNode] = field(default_factory=list)

    @property
    def descriptors(self):
        return [d for p in self.nodes for d in p.descriptors]

    @property
    def materials(self):
        """Aligned materials across every node (entries may be None)."""
        return [m for p in self.nodes for m in p.materials]


class EntityTreeBuilder:
    """Walk a SceneGraph and build RenderEntity trees.

    Usage:
        builder = EntityTreeBuilder(mesh_factory=DescriptorMeshFactory())
        plan = builder.plan(graph)
        root = builder.realize(plan)
    """

    def __init__(self, mesh_factory=None, texture_factory=None,
                 profile=None, sink=None):
        self.profile = resolve_profile(profile)
        self.mesh_factory = (mesh_factory if mesh_factory is not None
                             else DescriptorMeshFactory())
        self.resolver = MaterialResolver(texture_factory=texture_factory,
                                         profile=self.profile, sink=sink)
        self.sink = sink

    # -- plan ----------------------------------------------------------------

    def plan(self, graph, node=None, recursive=True):
        """Assemble descriptors and materials for a subtree.

        Args:
            graph: SceneGraph
            node: starting arena index (defaults to the root)
            recursive: when False only the starting node is planned

        Returns:
            ConversionPlan
        """
        start = graph.root if node is None else node
        plan = ConversionPlan()

        # (arena index, position of the parent in plan.nodes)
        stack = [(start, None)]
        while stack:
            index, parent_pos = stack.pop()
            scene_node = graph.node(index)
            planned = self._plan_node(index, scene_node)
            plan.nodes.append(planned)
            if parent_pos is not None:
                plan.nodes[parent_pos].children.append(len(plan.nodes) - 1)
            if recursive:
                pos = len(plan.nodes) - 1
                for child in reversed(scene_node.children):
                    stack.append((child, pos))

        return plan

    def _plan_node(self, index, scene_node):
        planned = PlannedNode(index=index, name=scene_node.name,
                              transform=scene_node.transform)
        geometry = scene_node.geometry
        if geometry is None:
            return planned

        descriptors = build_descriptors(geometry, self.profile, self.sink)
        planned.mesh_name = (scene_node.name or geometry.name
                             or self.profile.geometry.default_name)
        planned.descriptors = freeze_descriptors(descriptors)

        source_materials = bound_materials(scene_node)[:len(descriptors)]
        resolved = self.resolver.resolve_all(source_materials)
        resolved.extend([None] * (len(descriptors) - len(resolved)))
        planned.materials = tuple(resolved)
        return planned

    # -- realize -------------------------------------------------------------

    def realize(self, plan):
        """Build mesh resources and link entities. Returns the root entity."""
        models = [self.build_model(p) for p in plan.nodes]
        return _link_entities(plan, models)

    async def realize_async(self, plan):
        """As realize(), awaiting the mesh factory for each node in turn."""
        models = []
        for planned in plan.nodes:
            models.append(await self._build_model_async(planned))
        return _link_entities(plan, models)

    def build_model(self, planned):
        """ModelComponent for one PlannedNode, or None (no geometry or mesh failure)."""
        if not planned.descriptors:
            return None
        try:
            mesh = self.mesh_factory.build_mesh(planned.descriptors,
                                                name=planned.mesh_name)
        except Exception as e:
            self._mesh_failed(planned, e)
            return None
        return self._model_for(planned, mesh)

    async def _build_model_async(self, planned):
        if not planned.descriptors:
            return None
        build_async = getattr(self.mesh_factory, 'build_mesh_async', None)
        try:
            if build_async is not None:
                mesh = await build_async(planned.descriptors,
                                         name=planned.mesh_name)
            else:
                mesh = await asyncio.to_thread(self.mesh_factory.build_mesh,
                                               planned.descriptors,
                                               name=planned.mesh_name)
        except Exception as e:
            self._mesh_failed(planned, e)
            return None
        return self._model_for(planned, mesh)

    def _model_for(self, planned, mesh):
        if mesh is None:
            self._mesh_failed(planned, "factory returned no mesh")
            return None
        return ModelComponent(mesh=mesh, materials=list(planned.materials))

    def _mesh_failed(self, planned, reason):
        report(self.sink, "mesh-failed",
               f"No mesh for node '{planned.name or planned.mesh_name}': {reason}",
               index=planned.index)


def _link_entities(plan, models):
    entities = [
        RenderEntity(name=p.name, transform=p.transform, model=model)
        for p, model in zip(plan.nodes, models)
    ]
    for planned, entity in zip(plan.nodes, entities):
        entity.children = [entities[pos] for pos in planned.children]
    return entities[0]


def bound_materials(scene_node):
    """Materials bound to a node: its own list, else its geometry's."""
    if scene_node.materials:
        return list(scene_node.materials)
    if scene_node.geometry is not None:
        return list(scene_node.geometry.materials)
    return []


# ---------------------------------------------------------------------------
# Walker entry points
# ---------------------------------------------------------------------------

def build_entity_tree(graph, node=None, recursive=True, mesh_factory=None,
                      texture_factory=None, profile=None, sink=None):
    """Convert a subtree into a RenderEntity tree (local transforms kept)."""
    builder = EntityTreeBuilder(mesh_factory, texture_factory, profile, sink)
    return builder.realize(builder.plan(graph, node, recursive))


async def build_entity_tree_async(graph, node=None, recursive=True,
                                  mesh_factory=None, texture_factory=None,
                                  profile=None, sink=None):
    builder = EntityTreeBuilder(mesh_factory, texture_factory, profile, sink)
    plan = builder.plan(graph, node, recursive)
    return await builder.realize_async(plan)


def collect_all_descriptors(graph, node=None, profile=None, sink=None):
    """Descriptors of every geometry-bearing node in the subtree, flattened."""
    descriptors = []
    for _, scene_node, _ in graph.iter_depth_first(node):
        if scene_node.geometry is not None:
            descriptors.extend(
                build_descriptors(scene_node.geometry, profile, sink))
    return descriptors


def collect_all_materials(graph, node=None, texture_factory=None,
                          profile=None, sink=None):
    """Resolved materials of every geometry-bearing node, flattened.

    Materials that resolve to nothing are left out.
    """
    resolver = MaterialResolver(texture_factory=texture_factory,
                                profile=profile, sink=sink)
    materials = []
    for _, scene_node, _ in graph.iter_depth_first(node):
        if scene_node.geometry is None:
            continue
        for resolved in resolver.resolve_all(bound_materials(scene_node)):
            if resolved is not None:
                materials.append(resolved)
    return materials


# ---------------------------------------------------------------------------
# Conversion facade
# ---------------------------------------------------------------------------

def _check_scene(graph, sink):
    """Dump the graph if requested; False when it holds no geometry."""
    if debug_dump_enabled():
        graph.dump(sink)
    if not graph.geometry_nodes():
        report(sink, "no-geometry", "Scene contains no geometry",
               nodes=len(graph))
        return False
    return True


def convert_scene(graph, recursive=True, mesh_factory=None,
                  texture_factory=None, profile=None, sink=None):
    """Convert a parsed scene into a RenderEntity tree.

    Returns:
        root RenderEntity, or None when the scene has no geometry
    """
    if not _check_scene(graph, sink):
        return None

    start_time = time.time()
    root = build_entity_tree(graph, recursive=recursive,
                             mesh_factory=mesh_factory,
                             texture_factory=texture_factory,
                             profile=profile, sink=sink)
    elapsed = time.time() - start_time
    _log.info("Converted %d entities in %.2fs",
              sum(1 for _ in root.iter_entities()), elapsed)
    return root


def build_merged_entity(graph, node=None, mesh_factory=None,
                        texture_factory=None, profile=None, sink=None):
    """Build a single entity whose mesh holds every geometry of the subtree.

    Node transforms are not applied; the merged submeshes keep their
    geometry-local vertex positions.

    Returns:
        RenderEntity, or None when there is nothing to build
    """
    if not _check_scene(graph, sink):
        return None

    builder = EntityTreeBuilder(mesh_factory, texture_factory, profile, sink)
    plan = builder.plan(graph, node, recursive=True)
    start = plan.nodes[0]
    merged = PlannedNode(
        index=start.index,
        name=start.name,
        transform=start.transform,
        mesh_name=start.name or builder.profile.geometry.default_name,
        descriptors=tuple(plan.descriptors),
        materials=tuple(plan.materials),
    )
    model = builder.build_model(merged)
    if model is None:
        return None
    return RenderEntity(name=merged.name, transform=merged.transform,
                        model=model)


def _parse(source, parser, profile, sink, from_file=False):
    if parser is None:
        parser = ColladaSceneParser(profile=profile, sink=sink)
    try:
        if from_file:
            return parser.parse_file(source)
        return parser.parse(source)
    except SceneParseError as e:
        report(sink, "parse-failed", f"Could not parse DAE document: {e}",
               level=logging.ERROR)
        return None


def load_dae(data, recursive=True, parser=None, mesh_factory=None,
             texture_factory=None, profile=None, sink=None):
    """Parse DAE bytes and convert them. Returns RenderEntity or None."""
    graph = _parse(data, parser, profile, sink)
    if graph is None:
        return None
    return convert_scene(graph, recursive, mesh_factory, texture_factory,
                         profile, sink)


def load_dae_file(filepath, recursive=True, parser=None, mesh_factory=None,
                  texture_factory=None, profile=None, sink=None):
    """Parse a .dae file and convert it. Returns RenderEntity or None.

    Image paths in the document resolve relative to the file's directory.
    """
    graph = _parse(filepath, parser, profile, sink, from_file=True)
    if graph is None:
        return None
    return convert_scene(graph, recursive, mesh_factory, texture_factory,
                         profile, sink)


async def load_dae_async(data, recursive=True, parser=None, mesh_factory=None,
                         texture_factory=None, profile=None, sink=None):
    """Async load_dae(): parsing and planning inline, mesh building awaited."""
    graph = _parse(data, parser, profile, sink)
    if graph is None or not _check_scene(graph, sink):
        return None
    return await build_entity_tree_async(graph, recursive=recursive,
                                         mesh_factory=mesh_factory,
                                         texture_factory=texture_factory,
                                         profile=profile, sink=sink)
