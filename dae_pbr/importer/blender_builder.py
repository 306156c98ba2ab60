"""Build Blender data from converted DAE scenes.

Blender-backed factories and linking for the converter output:
- BlenderMeshFactory: mesh descriptors -> one bpy Mesh, one material slot
  per submesh
- BlenderTextureFactory: ImageData -> packed bpy Image
- build_blender_material: PBMaterial -> Principled BSDF material
- link_entity_tree: RenderEntity tree -> parented Blender objects

Requires bpy (Blender, or the bpy module from PyPI).
"""

import logging
import os

import bpy

from ..scene_graph.sg_materials import ColorValue, ScalarValue
from ..utils.diagnostics import debug_dump_enabled
from ..utils.image_convert import convert_image_to_rgba, rgba_to_float_pixels
from .material_builder import (
    TEXTURE_SEMANTIC_COLOR, TextureReference, TextureResourceError,
)
from .mesh_builder import MeshResourceError


_log = logging.getLogger("dae_pbr.blender")


# Principled BSDF socket names changed in Blender 4.0; first match wins.
_SPECULAR_INPUTS = ('Specular IOR Level', 'Specular')
_COAT_INPUTS = ('Coat Weight', 'Clearcoat')


class BlenderMeshFactory:
    """Build a bpy Mesh from descriptor snapshots.

    Submeshes are appended one after another; each polygon's
    material_index is the index of the descriptor it came from.
    """

    def build_mesh(self, descriptors, name=None):
        if not descriptors:
            raise MeshResourceError("No mesh descriptors")
        if name is None:
            name = descriptors[0].name

        positions = []
        normals = []
        uvs = []
        loop_indices = []
        material_indices = []
        has_normals = all(d.normals is not None for d in descriptors)
        has_uvs = all(d.texture_coordinates is not None for d in descriptors)

        for slot, desc in enumerate(descriptors):
            if not desc.positions:
                raise MeshResourceError(f"Descriptor '{desc.name}' has no positions")
            base = len(positions)
            positions.extend(desc.positions)
            if has_normals:
                normals.extend(desc.normals)
            if has_uvs:
                uvs.extend(desc.texture_coordinates)
            if desc.primitives is None:
                continue
            if max(desc.primitives, default=-1) >= len(desc.positions):
                raise MeshResourceError(
                    f"Descriptor '{desc.name}' references missing vertices")
            loop_indices.extend(base + i for i in desc.primitives)
            material_indices.extend([slot] * (len(desc.primitives) // 3))

        num_tris = len(loop_indices) // 3

        mesh = bpy.data.meshes.new(name)
        mesh.vertices.add(len(positions))
        mesh.vertices.foreach_set("co", [c for v in positions for c in v])

        mesh.loops.add(num_tris * 3)
        mesh.loops.foreach_set("vertex_index", loop_indices[:num_tris * 3])

        mesh.polygons.add(num_tris)
        mesh.polygons.foreach_set("loop_start", [i * 3 for i in range(num_tris)])
        mesh.polygons.foreach_set("loop_total", [3] * num_tris)
        mesh.polygons.foreach_set("material_index", material_indices)

        mesh.update()

        # UVs before validate; DAE texcoords are already bottom-left origin
        if has_uvs and num_tris:
            uv_layer = mesh.uv_layers.new(name="UVMap")
            uv_data = uv_layer.data
            for i in range(min(len(loop_indices), len(uv_data))):
                uv_data[i].uv = uvs[loop_indices[i]]

        mesh.validate(clean_customdata=False)
        mesh.update()

        if has_normals and num_tris:
            loop_normals = [normals[loop.vertex_index] for loop in mesh.loops]
            mesh.normals_split_custom_set(loop_normals)

        if debug_dump_enabled():
            _log.debug("Blender mesh '%s': %d verts, %d tris, %d slots",
                       mesh.name, len(positions), num_tris, len(descriptors))
        return mesh


class BlenderTextureFactory:
    """Decode ImageData into packed bpy Images, one per image and semantic."""

    def __init__(self):
        self._cache = {}

    def build_texture(self, image, semantic):
        key = (image, semantic)
        name = self._cache.get(key)
        if name is not None and name in bpy.data.images:
            return bpy.data.images[name]

        decoded = convert_image_to_rgba(image)
        if decoded is None:
            raise TextureResourceError(
                f"Cannot decode image {image.base_name or '<embedded>'}")

        bl_image = _new_blender_image(
            os.path.splitext(image.base_name)[0] or "dae_image",
            decoded, semantic)
        self._cache[key] = bl_image.name
        return bl_image


def _new_blender_image(name, decoded, semantic):
    bl_image = bpy.data.images.new(
        name=name,
        width=decoded.width,
        height=decoded.height,
        alpha=True,
    )
    # Blender expects float pixels 0.0-1.0, bottom-to-top row order
    bl_image.pixels.foreach_set(rgba_to_float_pixels(decoded))
    if semantic != TEXTURE_SEMANTIC_COLOR:
        bl_image.colorspace_settings.name = 'Non-Color'
    bl_image.pack()
    return bl_image


def _blender_image(texture, semantic):
    """bpy Image for a texture built by any factory."""
    if isinstance(texture, bpy.types.Image):
        return texture
    rgba = getattr(texture, 'rgba', None)
    if rgba is None:
        return None
    return _new_blender_image(getattr(texture, 'name', "dae_image"), texture,
                              semantic)


def _find_input(bsdf, names):
    for input_name in names:
        if input_name in bsdf.inputs:
            return bsdf.inputs[input_name]
    return None


def build_blender_material(pbmaterial, name=None):
    """Create a Principled BSDF material from a PBMaterial.

    Args:
        pbmaterial: PBMaterial from material_builder (None -> None)
        name: material name (defaults to the PBMaterial's name)

    Returns:
        bpy.types.Material or None
    """
    if pbmaterial is None:
        return None

    mat = bpy.data.materials.new(name=name or pbmaterial.name or "DAE_Material")
    mat.use_nodes = True
    nodes = mat.node_tree.nodes
    links = mat.node_tree.links

    nodes.clear()

    output_node = nodes.new(type='ShaderNodeOutputMaterial')
    output_node.location = (400, 0)

    bsdf = nodes.new(type='ShaderNodeBsdfPrincipled')
    bsdf.location = (0, 0)
    links.new(bsdf.outputs['BSDF'], output_node.inputs['Surface'])

    uv_node = None
    row = 0

    def texture_node(ref):
        nonlocal uv_node, row
        bl_image = _blender_image(ref.texture, ref.semantic)
        if bl_image is None:
            return None
        tex_node = nodes.new(type='ShaderNodeTexImage')
        tex_node.location = (-400, -300 * row)
        tex_node.image = bl_image
        row += 1
        if uv_node is None:
            uv_node = nodes.new(type='ShaderNodeUVMap')
            uv_node.location = (-700, 0)
            uv_node.uv_map = "UVMap"
        links.new(uv_node.outputs['UV'], tex_node.inputs['Vector'])
        return tex_node

    def apply(value, names):
        socket = _find_input(bsdf, names)
        if socket is None or value is None:
            return
        if isinstance(value, ScalarValue):
            socket.default_value = value.value
        elif isinstance(value, ColorValue):
            socket.default_value = value.rgba
        elif isinstance(value, TextureReference):
            tex_node = texture_node(value)
            if tex_node is not None:
                links.new(tex_node.outputs['Color'], socket)

    base = pbmaterial.base_color
    if isinstance(base, ColorValue):
        bsdf.inputs['Base Color'].default_value = base.rgba
        if base.rgba[3] < 1.0:
            bsdf.inputs['Alpha'].default_value = base.rgba[3]
    elif isinstance(base, TextureReference):
        tex_node = texture_node(base)
        if tex_node is not None:
            links.new(tex_node.outputs['Color'], bsdf.inputs['Base Color'])

    apply(pbmaterial.roughness, ('Roughness',))
    apply(pbmaterial.metallic, ('Metallic',))
    apply(pbmaterial.specular, _SPECULAR_INPUTS)
    apply(pbmaterial.clearcoat, _COAT_INPUTS)

    normal = pbmaterial.normal
    if isinstance(normal, TextureReference):
        tex_node = texture_node(normal)
        if tex_node is not None:
            normal_map = nodes.new(type='ShaderNodeNormalMap')
            normal_map.location = (-200, -300)
            links.new(tex_node.outputs['Color'], normal_map.inputs['Color'])
            links.new(normal_map.outputs['Normal'], bsdf.inputs['Normal'])

    return mat


def link_entity_tree(root, collection=None, material_cache=None):
    """Create Blender objects for a RenderEntity tree.

    Entities become objects parented like the tree, with local
    location / quaternion rotation / scale. Entities without a model become
    empties. Model meshes must be bpy Meshes (BlenderMeshFactory).

    Args:
        root: RenderEntity
        collection: target collection (defaults to the scene collection)
        material_cache: dict id(PBMaterial) -> bpy Material, shared across calls

    Returns:
        list of created objects, depth-first, root first
    """
    if collection is None:
        collection = bpy.context.scene.collection
    if material_cache is None:
        material_cache = {}

    created = []
    stack = [(root, None)]
    while stack:
        entity, parent_obj = stack.pop()

        data = None
        if entity.model is not None and isinstance(entity.model.mesh, bpy.types.Mesh):
            data = entity.model.mesh
            for pbm in entity.model.materials:
                data.materials.append(_material_for(pbm, material_cache))

        obj = bpy.data.objects.new(entity.name or "DAE_Node", data)
        collection.objects.link(obj)
        if parent_obj is not None:
            obj.parent = parent_obj

        t = entity.transform
        obj.location = t.translation
        obj.rotation_mode = 'QUATERNION'
        obj.rotation_quaternion = t.rotation
        obj.scale = t.scale

        created.append(obj)
        for child in reversed(entity.children):
            stack.append((child, obj))

    return created


def _material_for(pbm, cache):
    if pbm is None:
        return None
    key = id(pbm)
    if key not in cache:
        cache[key] = build_blender_material(pbm)
    return cache[key]
