"""Conversion profiles for DAE scene conversion.

A ConversionProfile describes how the converter should shape its output for
one consumer: which vertex attributes to keep, how legacy shininess maps to
roughness, and which axis the target runtime treats as "up". The DAE format
itself is self-describing, but the conventions of the renderer that receives
the meshes are not.

Profiles are registered in a global dict and can be selected by id, e.g.
``get_profile("blender")``.

Adding a new target:
    1. Decide which attributes the target can consume (normals, UVs)
    2. Pick the up axis the target's scene root expects
    3. Create a ConversionProfile with those parameters
    4. Call register_profile() to add it to the registry
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, List


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------

@dataclass
class GeometryConfig:
    """Configuration for mesh descriptor assembly."""

    # Keep vertex normals / texture coordinates when the geometry has them.
    import_normals: bool = True
    import_uvs: bool = True

    # Name prefix for descriptors of geometries that carry no name.
    # Descriptors are named "<name>_<element index>".
    default_name: str = "dae"

    # SceneParser emits 16-bit index buffers when every index fits,
    # 32-bit otherwise. When False, index buffers are always 32-bit.
    compact_indices: bool = True


@dataclass
class MaterialConfig:
    """Configuration for legacy -> physically based material resolution."""

    # Shininess value that maps to roughness 0.0.
    # DAE exporters write shininess in 0-1000+; OpenGL-style 0-128
    # range would use 128 here.
    shininess_range: float = 1000.0

    # Build texture resources for image channels. When False, image
    # channels are treated as unresolved and their chains fall through.
    import_textures: bool = True


@dataclass
class CoordinateConfig:
    """Configuration for coordinate system handling."""

    # Up axis expected by the target runtime: "X", "Y" or "Z".
    up_axis: str = "Y"

    # Rotate the scene root so the document's <up_axis> matches up_axis.
    convert_up_axis: bool = True


@dataclass
class ConversionProfile:
    """Complete conversion settings for one target runtime."""

    # Display info
    profile_id: str = "realitykit"
    name: str = "RealityKit / SceneKit (Y-up)"

    # Sub-configs
    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    material: MaterialConfig = field(default_factory=MaterialConfig)
    coordinate: CoordinateConfig = field(default_factory=CoordinateConfig)

    # Short description shown in tool tips / listings.
    notes: str = ""


# ---------------------------------------------------------------------------
# Profile registry
# ---------------------------------------------------------------------------

CONVERSION_PROFILES: Dict[str, ConversionProfile] = {}

DEFAULT_PROFILE_ID = "realitykit"


def register_profile(profile: ConversionProfile) -> None:
    """Register a conversion profile in the global registry."""
    CONVERSION_PROFILES[profile.profile_id] = profile


def get_profile(profile_id: str) -> Optional[ConversionProfile]:
    """Look up a profile by its profile_id string."""
    return CONVERSION_PROFILES.get(profile_id)


def default_profile() -> ConversionProfile:
    return CONVERSION_PROFILES[DEFAULT_PROFILE_ID]


def resolve_profile(profile) -> ConversionProfile:
    """Accept a ConversionProfile, a profile id, or None (default profile)."""
    if profile is None:
        return default_profile()
    if isinstance(profile, ConversionProfile):
        return profile
    found = get_profile(profile)
    if found is None:
        raise KeyError(f"Unknown conversion profile: {profile!r}")
    return found


def get_profile_items() -> List[Tuple[str, str, str]]:
    """Return (identifier, name, description) tuples for UI listings."""
    return [
        (pid, prof.name, prof.notes)
        for pid, prof in CONVERSION_PROFILES.items()
    ]


# ---------------------------------------------------------------------------
# Built-in profiles
# ---------------------------------------------------------------------------

register_profile(ConversionProfile(
    profile_id="realitykit",
    name="RealityKit / SceneKit (Y-up)",
    geometry=GeometryConfig(default_name="dae"),
    material=MaterialConfig(shininess_range=1000.0),
    coordinate=CoordinateConfig(up_axis="Y"),
    notes="Y-up scene root, shininess 0-1000",
))

register_profile(ConversionProfile(
    profile_id="blender",
    name="Blender (Z-up)",
    geometry=GeometryConfig(default_name="dae"),
    material=MaterialConfig(shininess_range=1000.0),
    coordinate=CoordinateConfig(up_axis="Z"),
    notes="Z-up scene root, Principled BSDF materials via bpy",
))
