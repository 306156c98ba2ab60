"""Assemble mesh descriptors from decoded DAE geometry.

Converts a Geometry (raw sources + elements) into one MeshDescriptor per
element:
- Positions, normals and texture coordinates decoded once per geometry
- Normals / UVs dropped when their count differs from the position count
- Triangle elements become an indexed triangle list; every other topology
  yields a descriptor with vertex data but no faces

Descriptors are frozen and hold only tuples, so a descriptor list can be
handed to a mesh factory running elsewhere without sharing mutable state.
The default DescriptorMeshFactory keeps everything in memory; the Blender
factory lives in blender_builder.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..conversion_profiles import resolve_profile
from ..scene_graph.sg_geometry import (
    PRIM_TRIANGLES, SEMANTIC_NORMAL, SEMANTIC_POSITION, SEMANTIC_TEXCOORD,
    decode_indices, decode_vec2, decode_vec3,
)
from ..utils.diagnostics import report


_log = logging.getLogger("dae_pbr.mesh")


class MeshResourceError(RuntimeError):
    """Raised by a mesh factory that cannot build a resource."""


@dataclass(frozen=True)
class MeshDescriptor:
    """One submesh ready for a mesh factory."""

    name: str
    positions: Tuple[Tuple[float, float, float], ...]
    normals: Optional[Tuple[Tuple[float, float, float], ...]] = None
    texture_coordinates: Optional[Tuple[Tuple[float, float], ...]] = None
    primitives: Optional[Tuple[int, ...]] = None  # flat triangle list

    @property
    def vertex_count(self):
        return len(self.positions)

    @property
    def triangle_count(self):
        if self.primitives is None:
            return 0
        return len(self.primitives) // 3


def build_descriptors(geometry, profile=None, sink=None):
    """Build one MeshDescriptor per element of ``geometry``.

    Args:
        geometry: Geometry from sg_geometry
        profile: ConversionProfile, profile id, or None for the default
        sink: diagnostics sink (defaults to logging)

    Returns:
        list of MeshDescriptor; [] when the geometry has no usable positions
    """
    profile = resolve_profile(profile)
    gconf = profile.geometry
    geom_label = geometry.name or gconf.default_name

    position_source = geometry.source_for(SEMANTIC_POSITION)
    if position_source is None:
        report(sink, "missing-positions",
               f"Geometry '{geom_label}' has no position source")
        return []

    positions = tuple(decode_vec3(position_source, sink))
    if not positions:
        report(sink, "missing-positions",
               f"Geometry '{geom_label}' has no decodable positions")
        return []

    normals = None
    if gconf.import_normals:
        normals = _decode_attribute(geometry, SEMANTIC_NORMAL, decode_vec3,
                                    len(positions), geom_label, sink)

    uvs = None
    if gconf.import_uvs:
        uvs = _decode_attribute(geometry, SEMANTIC_TEXCOORD, decode_vec2,
                                len(positions), geom_label, sink)

    descriptors = []
    for index, element in enumerate(geometry.elements):
        primitives = None
        if element.primitive_type == PRIM_TRIANGLES:
            indices = decode_indices(element, sink)
            if indices:
                primitives = tuple(indices)
        else:
            report(sink, "topology",
                   f"Element {index} of '{geom_label}' is "
                   f"'{element.primitive_type}'; only triangles produce faces",
                   primitiveCount=element.primitive_count)

        descriptors.append(MeshDescriptor(
            name=f"{geom_label}_{index}",
            positions=positions,
            normals=normals,
            texture_coordinates=uvs,
            primitives=primitives,
        ))

    return descriptors


def _decode_attribute(geometry, semantic, decoder, expected, label, sink):
    """Decode an optional attribute; None if absent, broken or mis-sized."""
    source = geometry.source_for(semantic)
    if source is None:
        return None
    values = decoder(source, sink)
    if not values:
        return None
    if len(values) != expected:
        report(sink, "attribute-count",
               f"Dropping {semantic} of '{label}': {len(values)} values "
               f"for {expected} positions")
        return None
    return tuple(values)


def freeze_descriptors(descriptors):
    """Deep-copied, immutable snapshot of a descriptor sequence.

    The result shares nothing with the input and is what crosses into a
    mesh factory.
    """
    return tuple(copy.deepcopy(d) for d in descriptors)


# ---------------------------------------------------------------------------
# Default in-memory mesh factory
# ---------------------------------------------------------------------------

class MeshResource:
    """In-memory mesh resource: validated descriptors plus bounds."""

    def __init__(self, name, descriptors):
        self.name = name
        self.descriptors = tuple(descriptors)

        points = np.array(
            [p for d in self.descriptors for p in d.positions],
            dtype=np.float64,
        ).reshape(-1, 3)
        self.bounds_min = tuple(float(v) for v in points.min(axis=0))
        self.bounds_max = tuple(float(v) for v in points.max(axis=0))

    @property
    def submesh_count(self):
        return len(self.descriptors)

    @property
    def triangle_count(self):
        return sum(d.triangle_count for d in self.descriptors)

    @property
    def bounds(self):
        return self.bounds_min, self.bounds_max

    @property
    def extents(self):
        return tuple(hi - lo for lo, hi in zip(self.bounds_min, self.bounds_max))

    def __repr__(self):
        return (f"MeshResource({self.name!r}, submeshes={self.submesh_count}, "
                f"triangles={self.triangle_count})")


class DescriptorMeshFactory:
    """Build MeshResource objects from descriptor snapshots.

    Faceless descriptors are accepted; a descriptor list that is empty, has
    no vertices, or references vertices it does not have is rejected with
    MeshResourceError.
    """

    def build_mesh(self, descriptors, name=None):
        if not descriptors:
            raise MeshResourceError("No mesh descriptors")

        for desc in descriptors:
            count = len(desc.positions)
            if count == 0:
                raise MeshResourceError(f"Descriptor '{desc.name}' has no positions")
            if desc.primitives is None:
                continue
            if len(desc.primitives) % 3 != 0:
                raise MeshResourceError(
                    f"Descriptor '{desc.name}' index count "
                    f"{len(desc.primitives)} is not a multiple of 3")
            if desc.primitives and max(desc.primitives) >= count:
                raise MeshResourceError(
                    f"Descriptor '{desc.name}' references vertex "
                    f"{max(desc.primitives)} of {count}")

        if name is None:
            name = descriptors[0].name.rsplit("_", 1)[0]

        _log.debug("Mesh '%s': %d submeshes", name, len(descriptors))
        return MeshResource(name, descriptors)
