"""Convert DAE (COLLADA) scenes into mesh descriptors, PBR materials and
render entity trees.

    from dae_pbr import load_dae_file
    root = load_dae_file("model.dae")
    for entity in root.iter_entities():
        ...

The Blender factories live in dae_pbr.importer.blender_builder and need bpy.
"""

__version__ = "0.3.0"

from .conversion_profiles import (
    ConversionProfile, CoordinateConfig, GeometryConfig, MaterialConfig,
    get_profile, get_profile_items, register_profile,
)
from .dae_format.dae_reader import ColladaSceneParser, SceneParseError
from .importer.import_dae import (
    EntityTreeBuilder, ModelComponent, RenderEntity, build_entity_tree,
    build_entity_tree_async, build_merged_entity, collect_all_descriptors,
    collect_all_materials, convert_scene, load_dae, load_dae_async,
    load_dae_file,
)
from .importer.material_builder import (
    MaterialResolver, PBMaterial, PillowTextureFactory, TextureReference,
    TextureResourceError,
)
from .importer.mesh_builder import (
    DescriptorMeshFactory, MeshDescriptor, MeshResourceError,
    build_descriptors,
)
from .scene_graph.sg_classes import SceneGraph, SceneNode, Transform
from .scene_graph.sg_geometry import (
    Geometry, GeometryElement, GeometrySource, decode_indices, decode_vec2,
    decode_vec3,
)
from .scene_graph.sg_materials import (
    ColorValue, ImageData, ImageValue, ReflectanceMaterial, ScalarValue,
)
from .utils.diagnostics import CollectingSink, Diagnostic, LoggingSink, NullSink
