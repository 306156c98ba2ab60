"""DAE (COLLADA) document reader.

Reads a DAE document with pycollada and produces the SceneGraph arena the
converter consumes.

Geometry is repacked per DAE <geometry>: every distinct
(position, normal, texcoord) index combination becomes one vertex of a
single interleaved little-endian float32 buffer

    position xyz | normal xyz (optional) | texcoord uv (optional)

shared by all elements of the geometry. Index buffers are 16-bit when every
index fits (and the profile allows it), 32-bit otherwise. Polylists and
polygons are triangulated by pycollada; line sets become "line" elements
without indices.

The document's <up_axis> is normalised to the profile's axis by a rotation
on the synthetic root node.

Usage:
    parser = ColladaSceneParser()
    graph = parser.parse(dae_bytes)       # or parser.parse_file(path)
"""

import io
import logging
import math

import numpy as np
import collada
from collada import lineset, polylist, triangleset
from collada.common import DaeBrokenRefError, DaeError, DaeUnsupportedError
from collada.material import Map
from collada.scene import (
    CameraNode, ControllerNode, ExtraNode, GeometryNode, LightNode, Node,
    NodeNode,
)
from mathutils import Matrix

from ..conversion_profiles import resolve_profile
from ..scene_graph.sg_classes import SceneGraph, Transform
from ..scene_graph.sg_geometry import (
    FLOAT_SIZE, PRIM_LINE, PRIM_TRIANGLES, SEMANTIC_NORMAL, SEMANTIC_POSITION,
    SEMANTIC_TEXCOORD, Geometry, GeometryElement, GeometrySource,
)
from ..scene_graph.sg_materials import (
    ColorValue, ImageData, ImageValue, ReflectanceMaterial, ScalarValue,
)
from ..utils.diagnostics import report


_log = logging.getLogger("dae_pbr.reader")


class SceneParseError(ValueError):
    """The document could not be read as COLLADA."""


# (document axis, target axis) -> (angle, rotation axis) for the root node
UP_AXIS_ROTATIONS = {
    ("Z", "Y"): (-math.pi / 2, 'X'),
    ("Y", "Z"): (math.pi / 2, 'X'),
    ("X", "Y"): (math.pi / 2, 'Z'),
    ("Y", "X"): (-math.pi / 2, 'Z'),
    ("X", "Z"): (-math.pi / 2, 'Y'),
    ("Z", "X"): (math.pi / 2, 'Y'),
}

# Errors pycollada may report for parts of a document it can still load
_IGNORED_ERRORS = [DaeUnsupportedError, DaeBrokenRefError]


def up_axis_transform(source_axis, target_axis):
    """Root transform rotating a ``source_axis``-up scene to ``target_axis``-up."""
    if source_axis == target_axis:
        return Transform()
    angle, axis = UP_AXIS_ROTATIONS[(source_axis, target_axis)]
    return Transform.from_matrix(Matrix.Rotation(angle, 4, axis))


class ColladaSceneParser:
    """Parse DAE documents into SceneGraph arenas."""

    def __init__(self, profile=None, sink=None):
        self.profile = resolve_profile(profile)
        self.sink = sink
        self._geometry_cache = {}   # id(collada geometry) -> (sources, elements, symbols)
        self._material_cache = {}   # id(collada material) -> ReflectanceMaterial

    def parse(self, data):
        """Parse DAE (or zipped .zae) bytes.

        Relative image paths cannot be resolved without a file location;
        use parse_file() when the document references external textures.
        """
        if not data:
            raise SceneParseError("Empty DAE document")
        try:
            doc = collada.Collada(io.BytesIO(data), ignore=_IGNORED_ERRORS)
        except Exception as e:
            raise SceneParseError(f"Invalid DAE document: {e}") from e
        return self.build_graph(doc)

    def parse_file(self, filepath):
        """Parse a .dae / .zae file; images resolve relative to it."""
        try:
            doc = collada.Collada(filepath, ignore=_IGNORED_ERRORS)
        except Exception as e:
            raise SceneParseError(f"Cannot read {filepath}: {e}") from e
        return self.build_graph(doc)

    # -- scene ---------------------------------------------------------------

    def build_graph(self, doc):
        """Build a SceneGraph from a loaded collada.Collada document."""
        self._geometry_cache = {}
        self._material_cache = {}

        graph = SceneGraph(root_name="root")
        coord = self.profile.coordinate
        source_axis = _document_up_axis(doc)
        if coord.convert_up_axis and source_axis != coord.up_axis:
            _log.debug("Rotating %s-up document to %s-up", source_axis,
                       coord.up_axis)
            graph.nodes[graph.root].transform = up_axis_transform(
                source_axis, coord.up_axis)

        if doc.scene is None:
            return graph

        # (collada node, parent arena index, ids of instantiated ancestors)
        stack = [(n, graph.root, frozenset()) for n in reversed(doc.scene.nodes)]
        while stack:
            dae_node, parent, ancestors = stack.pop()

            if isinstance(dae_node, GeometryNode):
                self._attach_geometry(graph, parent, dae_node)
                continue

            if isinstance(dae_node, (ControllerNode, CameraNode, LightNode)):
                report(self.sink, "unsupported-node",
                       f"Skipping {type(dae_node).__name__} under node "
                       f"'{graph.node(parent).name}'", level=logging.INFO)
                continue

            if isinstance(dae_node, ExtraNode) or not isinstance(dae_node, Node):
                continue

            target = dae_node.node if isinstance(dae_node, NodeNode) else dae_node
            if target is None:
                continue
            if id(target) in ancestors:
                report(self.sink, "node-cycle",
                       f"Instanced node '{target.id}' contains itself; "
                       f"skipped")
                continue

            index = graph.add_node(
                name=getattr(target, 'name', None) or target.id,
                transform=Transform.from_matrix(dae_node.matrix),
                parent=parent,
            )
            inner = ancestors | {id(target)}
            for child in reversed(list(target.children)):
                stack.append((child, index, inner))

        return graph

    def _attach_geometry(self, graph, parent, geom_node):
        """Put an instanced geometry on ``parent``, or on a new child if taken."""
        geometry = self._geometry_for(geom_node)
        if geometry is None:
            return
        node = graph.node(parent)
        if node.geometry is None and parent != graph.root:
            node.geometry = geometry
        else:
            graph.add_node(name=geometry.name, geometry=geometry, parent=parent)

    # -- geometry ------------------------------------------------------------

    def _geometry_for(self, geom_node):
        dae_geom = geom_node.geometry
        if dae_geom is None:
            return None

        cached = self._geometry_cache.get(id(dae_geom))
        if cached is None:
            cached = self._pack_geometry(dae_geom)
            self._geometry_cache[id(dae_geom)] = cached
        sources, elements, symbols = cached

        # Material binding is per instance
        bound = {}
        for mat_node in getattr(geom_node, 'materials', None) or []:
            bound[mat_node.symbol] = mat_node.target
        materials = [
            self._material_for(bound.get(symbol)) for symbol in symbols
        ]

        return Geometry(
            name=getattr(dae_geom, 'name', None) or dae_geom.id,
            sources=list(sources),
            elements=list(elements),
            materials=materials,
        )

    def _pack_geometry(self, dae_geom):
        """Repack a collada geometry into one interleaved vertex buffer."""
        label = getattr(dae_geom, 'name', None) or dae_geom.id

        prims = []
        for prim in dae_geom.primitives:
            if isinstance(prim, polylist.Polylist):
                prim = prim.triangleset()
            prims.append(prim)

        tri_sets = [p for p in prims
                    if isinstance(p, triangleset.TriangleSet) and len(p) > 0]
        with_normals = bool(tri_sets) and all(
            p.normal_index is not None for p in tri_sets)
        with_uvs = bool(tri_sets) and all(
            len(p.texcoord_indexset) > 0 for p in tri_sets)

        vertex_map = {}
        rows = []
        element_indices = []
        for prim in prims:
            if isinstance(prim, triangleset.TriangleSet):
                element_indices.append(
                    (PRIM_TRIANGLES, len(prim),
                     self._pack_corners(prim, vertex_map, rows,
                                        with_normals, with_uvs)))
            elif isinstance(prim, lineset.LineSet):
                element_indices.append((PRIM_LINE, len(prim), []))
            else:
                report(self.sink, "unsupported-primitive",
                       f"Skipping {type(prim).__name__} in '{label}'")
                continue

        sources = self._vertex_sources(rows, with_normals, with_uvs)

        all_indices = [i for _, _, indices in element_indices for i in indices]
        index_dtype = '<u4'
        if self.profile.geometry.compact_indices and (
                not all_indices or max(all_indices) <= 0xFFFF):
            index_dtype = '<u2'
        width = np.dtype(index_dtype).itemsize

        elements = []
        for prim_type, count, indices in element_indices:
            elements.append(GeometryElement(
                primitive_type=prim_type,
                bytes_per_index=width,
                data=np.asarray(indices, dtype=index_dtype).tobytes(),
                primitive_count=count,
            ))

        symbols = [getattr(p, 'material', None) for p in prims
                   if isinstance(p, (triangleset.TriangleSet, lineset.LineSet))]

        _log.debug("Geometry '%s': %d vertices, %d elements, %d-bit indices",
                   label, len(rows), len(elements), width * 8)
        return sources, elements, symbols

    @staticmethod
    def _pack_corners(prim, vertex_map, rows, with_normals, with_uvs):
        """Map every triangle corner to a deduplicated vertex row."""
        if len(prim) == 0:
            return []

        positions = prim.vertex
        vi = prim.vertex_index.reshape(-1)
        normals = prim.normal if with_normals else None
        ni = prim.normal_index.reshape(-1) if with_normals else None
        uvs = prim.texcoordset[0] if with_uvs else None
        ti = prim.texcoord_indexset[0].reshape(-1) if with_uvs else None

        # Keys include the source arrays so primitives with different
        # inputs never share a vertex.
        pos_key = id(positions)
        nrm_key = id(normals)
        uv_key = id(uvs)

        indices = []
        for corner in range(len(vi)):
            key = (pos_key, int(vi[corner]),
                   nrm_key, int(ni[corner]) if ni is not None else -1,
                   uv_key, int(ti[corner]) if ti is not None else -1)
            index = vertex_map.get(key)
            if index is None:
                row = list(positions[vi[corner]][:3])
                if normals is not None:
                    row.extend(normals[ni[corner]][:3])
                if uvs is not None:
                    row.extend(uvs[ti[corner]][:2])
                index = len(rows)
                rows.append(row)
                vertex_map[key] = index
            indices.append(index)
        return indices

    @staticmethod
    def _vertex_sources(rows, with_normals, with_uvs):
        floats = 3 + (3 if with_normals else 0) + (2 if with_uvs else 0)
        stride = floats * FLOAT_SIZE
        data = np.asarray(rows, dtype='<f4').reshape(-1, floats).tobytes()
        count = len(rows)

        sources = [GeometrySource(SEMANTIC_POSITION, data, count, 3,
                                  data_offset=0, data_stride=stride)]
        offset = 3 * FLOAT_SIZE
        if with_normals:
            sources.append(GeometrySource(SEMANTIC_NORMAL, data, count, 3,
                                          data_offset=offset,
                                          data_stride=stride))
            offset += 3 * FLOAT_SIZE
        if with_uvs:
            sources.append(GeometrySource(SEMANTIC_TEXCOORD, data, count, 2,
                                          data_offset=offset,
                                          data_stride=stride))
        return sources

    # -- materials -----------------------------------------------------------

    def _material_for(self, dae_material):
        if dae_material is None:
            return None
        cached = self._material_cache.get(id(dae_material))
        if cached is not None:
            return cached

        effect = dae_material.effect
        name = getattr(dae_material, 'name', None) or dae_material.id
        if effect is None:
            material = ReflectanceMaterial(name=name)
        else:
            reflective = self._channel(effect.reflective)
            if reflective is None:
                reflective = self._channel(getattr(effect, 'reflectivity', None))
            material = ReflectanceMaterial(
                name=name,
                diffuse=self._channel(effect.diffuse),
                specular=self._channel(effect.specular),
                reflective=reflective,
                emission=self._channel(effect.emission),
                transparent=self._channel(effect.transparent),
                normal=self._channel(getattr(effect, 'bumpmap', None)),
                shininess=_float_or(effect.shininess, 0.0),
                transparency=_float_or(effect.transparency, 1.0),
            )
        self._material_cache[id(dae_material)] = material
        return material

    def _channel(self, value):
        """Convert an effect parameter into a channel value (or None)."""
        if value is None:
            return None
        if isinstance(value, Map):
            return self._image_value(value)
        if isinstance(value, (int, float)):
            return ScalarValue(float(value))
        try:
            comps = [float(c) for c in value]
        except (TypeError, ValueError):
            return None
        if len(comps) == 3:
            comps.append(1.0)
        if len(comps) != 4:
            return None
        return ColorValue(tuple(comps))

    def _image_value(self, tex_map):
        try:
            image = tex_map.sampler.surface.image
            data = image.getData()
        except (AttributeError, DaeError, OSError) as e:
            report(self.sink, "texture-missing",
                   f"Texture map has no readable image: {e}")
            return None
        if not isinstance(data, bytes) or not data:
            report(self.sink, "texture-missing",
                   f"Image '{getattr(image, 'path', '')}' could not be loaded")
            return None
        return ImageValue(ImageData(data=data, name=getattr(image, 'path', '') or ""))


def _document_up_axis(doc):
    """'X', 'Y' or 'Z' from <asset><up_axis>, defaulting to Y."""
    asset = getattr(doc, 'assetInfo', None)
    upaxis = getattr(asset, 'upaxis', None) if asset is not None else None
    if not upaxis:
        return "Y"
    return str(upaxis)[0].upper()


def _float_or(value, default):
    if isinstance(value, (int, float)):
        return float(value)
    return default
