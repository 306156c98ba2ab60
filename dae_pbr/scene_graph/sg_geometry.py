"""Geometry containers and binary decoders for DAE geometry.

A Geometry holds one GeometrySource per vertex attribute channel and one
GeometryElement per submesh. Sources and elements are raw byte buffers plus
layout metadata as reported by the SceneParser; the decoders here treat that
metadata as untrusted and validate it before unpacking.

Vertex sources (GeometrySource):
    vector_count vectors of components_per_vector little-endian float32
    components, the first at data_offset, each following one data_stride
    bytes later. Interleaved buffers simply have a stride larger than the
    tightly packed vector; the trailing bytes of each stride are ignored.

        position / normal  -> 3 components (decode_vec3)
        texcoord           -> 2 components (decode_vec2)

Index buffers (GeometryElement):
    index_count unsigned indices, 2 or 4 bytes each, widened to 32-bit.
    index_count is derived from the primitive topology:
        triangles -> primitive_count * 3
        polygon   -> primitive_count
        others    -> 0 (strips, lines and points have no flat index list)

Every rejection returns an empty list and reports a diagnostic; nothing
here raises for malformed buffers.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import List, Optional

from ..utils.diagnostics import report


# Source semantics
SEMANTIC_POSITION = "position"
SEMANTIC_NORMAL = "normal"
SEMANTIC_TEXCOORD = "texcoord"
SEMANTIC_COLOR = "color"

VEC3_SEMANTICS = (SEMANTIC_POSITION, SEMANTIC_NORMAL)
VEC2_SEMANTICS = (SEMANTIC_TEXCOORD,)

# Primitive topologies
PRIM_TRIANGLES = "triangles"
PRIM_POLYGON = "polygon"
PRIM_TRIANGLE_STRIP = "triangleStrip"
PRIM_LINE = "line"
PRIM_POINT = "point"
PRIM_UNKNOWN = "unknown"

PRIMITIVE_TYPES = (
    PRIM_TRIANGLES, PRIM_POLYGON, PRIM_TRIANGLE_STRIP,
    PRIM_LINE, PRIM_POINT, PRIM_UNKNOWN,
)

# Component width of float32 vertex data
FLOAT_SIZE = 4

# bytes_per_index -> struct format character (unsigned, no sign extension)
INDEX_FORMATS = {
    2: "H",
    4: "I",
}


@dataclass(frozen=True)
class GeometrySource:
    """One vertex attribute channel backed by a (possibly shared) byte buffer."""

    semantic: str
    data: bytes
    vector_count: int
    components_per_vector: int
    bytes_per_component: int = FLOAT_SIZE
    data_offset: int = 0
    data_stride: int = 0
    uses_float: bool = True


@dataclass(frozen=True)
class GeometryElement:
    """One submesh: topology, index width, index bytes, primitive count."""

    primitive_type: str
    bytes_per_index: int
    data: bytes
    primitive_count: int

    @property
    def index_count(self):
        if self.primitive_type == PRIM_TRIANGLES:
            return self.primitive_count * 3
        if self.primitive_type == PRIM_POLYGON:
            return self.primitive_count
        return 0


@dataclass
class Geometry:
    """Named geometry: attribute sources, submesh elements, bound materials.

    materials is index-aligned with elements; an entry may be None when the
    submesh has no material bound.
    """

    name: Optional[str] = None
    sources: List[GeometrySource] = field(default_factory=list)
    elements: List[GeometryElement] = field(default_factory=list)
    materials: List[object] = field(default_factory=list)

    def source_for(self, semantic):
        """First source with the given semantic, or None."""
        for source in self.sources:
            if source.semantic == semantic:
                return source
        return None


# ---------------------------------------------------------------------------
# Vertex buffer decoding
# ---------------------------------------------------------------------------

def decode_vec3(source, sink=None):
    """Unpack (x, y, z) float tuples from a position or normal source.

    Returns:
        list of 3-tuples, or [] if the semantic or layout is unsuitable
    """
    if source.semantic not in VEC3_SEMANTICS:
        report(sink, "vertex-semantic",
               f"Source '{source.semantic}' does not hold 3-component vectors")
        return []
    return _decode_vectors(source, 3, sink)


def decode_vec2(source, sink=None):
    """Unpack (u, v) float tuples from a texcoord source.

    Returns:
        list of 2-tuples, or [] if the semantic or layout is unsuitable
    """
    if source.semantic not in VEC2_SEMANTICS:
        report(sink, "vertex-semantic",
               f"Source '{source.semantic}' does not hold 2-component vectors")
        return []
    return _decode_vectors(source, 2, sink)


def decode_source(source, sink=None):
    """Decode a source with the arity its semantic implies."""
    if source.semantic in VEC2_SEMANTICS:
        return decode_vec2(source, sink)
    return decode_vec3(source, sink)


def _decode_vectors(source, arity, sink):
    """Walk a strided float buffer, reading ``arity`` floats per vector."""
    tight = FLOAT_SIZE * arity
    if (source.components_per_vector != arity
            or source.data_stride < tight
            or source.bytes_per_component != FLOAT_SIZE
            or not source.uses_float):
        report(sink, "vertex-layout",
               f"Unexpected data format for {arity}-component "
               f"'{source.semantic}' source",
               componentsPerVector=source.components_per_vector,
               dataStride=source.data_stride,
               bytesPerComponent=source.bytes_per_component,
               expected=(arity, tight, FLOAT_SIZE))
        return []

    count = source.vector_count
    if count <= 0:
        return []

    data = source.data
    offset = source.data_offset
    stride = source.data_stride
    last_end = offset + (count - 1) * stride + tight
    if offset < 0 or last_end > len(data):
        report(sink, "vertex-bounds",
               f"'{source.semantic}' source reads past the end of its buffer",
               dataOffset=offset, needed=last_end, available=len(data))
        return []

    fmt = "<" + "f" * arity
    result = []
    for i in range(count):
        result.append(struct.unpack_from(fmt, data, offset + i * stride))
    return result


# ---------------------------------------------------------------------------
# Index decoding
# ---------------------------------------------------------------------------

def decode_indices(element, sink=None):
    """Unpack an element's index buffer into a list of 32-bit ints.

    16-bit indices are widened without sign extension. Topologies without a
    flat index list (index_count == 0) yield [].
    """
    count = element.index_count
    if count <= 0:
        return []

    fmt_char = INDEX_FORMATS.get(element.bytes_per_index)
    if fmt_char is None:
        report(sink, "index-width",
               f"bytesPerIndex {element.bytes_per_index} not supported "
               f"for unpacking indices")
        return []

    needed = count * element.bytes_per_index
    if needed > len(element.data):
        report(sink, "index-bounds",
               "Index buffer is shorter than the element's index count",
               indexCount=count, needed=needed, available=len(element.data))
        return []

    result = list(struct.unpack_from(f"<{count}{fmt_char}", element.data, 0))

    report(sink, "index-summary",
           f"indices.count: {len(result)}, range {min(result)} ... {max(result)}",
           level=logging.DEBUG)
    return result
