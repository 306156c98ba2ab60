import io
import struct

import pytest
from PIL import Image

from dae_pbr.scene_graph.sg_geometry import (
    Geometry, GeometryElement, GeometrySource, PRIM_TRIANGLES,
)
from dae_pbr.scene_graph.sg_materials import ImageData
from dae_pbr.utils.diagnostics import CollectingSink


def pack_floats(vectors, stride=None, offset=0):
    """Pack float tuples little-endian, padding each vector to ``stride``."""
    arity = len(vectors[0])
    tight = 4 * arity
    stride = stride or tight
    buf = bytearray(offset + stride * len(vectors))
    for i, vec in enumerate(vectors):
        struct.pack_into("<" + "f" * arity, buf, offset + i * stride, *vec)
        # recognisable garbage in the padding
        for pad in range(offset + i * stride + tight, offset + (i + 1) * stride):
            buf[pad] = 0xAB
    return bytes(buf)


def vec_source(semantic, vectors, stride=None, offset=0, **kwargs):
    arity = len(vectors[0])
    stride = stride or 4 * arity
    return GeometrySource(
        semantic=semantic,
        data=pack_floats(vectors, stride, offset),
        vector_count=len(vectors),
        components_per_vector=arity,
        data_offset=offset,
        data_stride=stride,
        **kwargs,
    )


def index_element(indices, width=2, primitive_type=PRIM_TRIANGLES, count=None):
    fmt = "<" + ("H" if width == 2 else "I") * len(indices)
    if count is None:
        count = len(indices) // 3
    return GeometryElement(
        primitive_type=primitive_type,
        bytes_per_index=width,
        data=struct.pack(fmt, *indices),
        primitive_count=count,
    )


QUAD_POSITIONS = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (1.0, 1.0, 0.0)]
QUAD_NORMALS = [(0.0, 0.0, 1.0)] * 4
QUAD_UVS = [(0.0, 0.0), (1.0, 0.0), (0.0, 1.0), (1.0, 1.0)]


def quad_geometry(name="quad", materials=None):
    return Geometry(
        name=name,
        sources=[
            vec_source("position", QUAD_POSITIONS),
            vec_source("normal", QUAD_NORMALS),
            vec_source("texcoord", QUAD_UVS),
        ],
        elements=[index_element([0, 1, 2, 1, 2, 3])],
        materials=list(materials or []),
    )


def png_bytes(size=(2, 2), color=(255, 0, 0, 255)):
    out = io.BytesIO()
    Image.new("RGBA", size, color).save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def png_image():
    return ImageData(data=png_bytes(), name="textures/red.png")
