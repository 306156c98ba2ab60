"""Resolve legacy DAE reflectance materials into physically based materials.

Each PBMaterial channel is fed by an ordered chain over the legacy
channel(s); the first entry that produces a value wins:

    base_color  <- diffuse color, diffuse texture
    normal      <- normal texture
    roughness   <- roughness scalar, roughness color (red), roughness
                   texture, 1 - specular scalar (only with no roughness
                   signal and no shininess)
    specular    <- specular scalar, specular color (red), specular texture
    clearcoat   <- reflective scalar, reflective color (red), reflective texture
    metallic    <- metalness scalar, metalness color (red), metalness texture

After all chains, a positive shininess overwrites roughness with
1 - min(shininess / shininess_range, 1), whatever the roughness chain
produced.

Textures are built by a texture factory with a semantic tag ("color" for
base color, "normal" for normal maps, "raw" for linear data). A factory
failure leaves that chain entry unresolved and the chain moves on.
"""

import logging
from dataclasses import dataclass, fields
from typing import Optional, Union

from ..conversion_profiles import resolve_profile
from ..scene_graph.sg_materials import ColorValue, ImageValue, ScalarValue
from ..utils.diagnostics import report
from ..utils.image_convert import convert_image_to_rgba


_log = logging.getLogger("dae_pbr.material")


# Texture semantics
TEXTURE_SEMANTIC_COLOR = "color"
TEXTURE_SEMANTIC_NORMAL = "normal"
TEXTURE_SEMANTIC_RAW = "raw"


class TextureResourceError(RuntimeError):
    """Raised by a texture factory that cannot build a texture."""


@dataclass(frozen=True)
class TextureReference:
    """A factory-built texture plus the semantic it was built for."""

    texture: object
    semantic: str


PBValue = Union[ScalarValue, ColorValue, TextureReference]


@dataclass(frozen=True)
class PBMaterial:
    """Physically based parameter set; absent channels are None."""

    name: str = ""
    base_color: Optional[PBValue] = None
    normal: Optional[PBValue] = None
    roughness: Optional[PBValue] = None
    metallic: Optional[PBValue] = None
    specular: Optional[PBValue] = None
    clearcoat: Optional[PBValue] = None

    @property
    def has_any(self):
        return any(
            getattr(self, f.name) is not None
            for f in fields(self) if f.name != "name"
        )


class MaterialResolver:
    """Map ReflectanceMaterial channels onto a PBMaterial.

    Usage:
        resolver = MaterialResolver(texture_factory=PillowTextureFactory())
        pbm = resolver.resolve(reflectance_material)   # PBMaterial or None
    """

    def __init__(self, texture_factory=None, profile=None, sink=None):
        self.profile = resolve_profile(profile)
        self.texture_factory = (texture_factory if texture_factory is not None
                                else PillowTextureFactory())
        self.sink = sink

    def resolve(self, material):
        """Resolve one legacy material.

        Returns:
            PBMaterial, or None when no channel resolved (or material is None)
        """
        if material is None:
            return None

        base_color = self._first(
            self._color(material.diffuse),
            lambda: self._texture(material.diffuse, TEXTURE_SEMANTIC_COLOR,
                                  material, "diffuse"),
        )

        normal = self._texture(material.normal, TEXTURE_SEMANTIC_NORMAL,
                               material, "normal")

        roughness = self._grayscale_chain(material, "roughness")
        if roughness is None and material.shininess <= 0:
            if isinstance(material.specular, ScalarValue):
                roughness = ScalarValue(1.0 - material.specular.value)

        specular = self._grayscale_chain(material, "specular")
        clearcoat = self._grayscale_chain(material, "reflective")
        metallic = self._grayscale_chain(material, "metalness")

        # Applied last; overrides the roughness chain.
        if material.shininess > 0:
            shininess_range = self.profile.material.shininess_range
            roughness = ScalarValue(
                1.0 - min(material.shininess / shininess_range, 1.0))

        result = PBMaterial(
            name=material.name,
            base_color=base_color,
            normal=normal,
            roughness=roughness,
            metallic=metallic,
            specular=specular,
            clearcoat=clearcoat,
        )
        if not result.has_any:
            report(self.sink, "material-empty",
                   f"Material '{material.name or 'unnamed'}' resolved no "
                   f"channels", level=logging.INFO)
            return None
        return result

    def resolve_all(self, materials):
        """Resolve a material list, keeping positions (entries may be None)."""
        return [self.resolve(m) for m in materials]

    # -- chain entries -------------------------------------------------------

    @staticmethod
    def _first(value, *fallbacks):
        if value is not None:
            return value
        for fallback in fallbacks:
            value = fallback()
            if value is not None:
                return value
        return None

    def _grayscale_chain(self, material, channel):
        """scalar -> color red component -> raw texture."""
        value = getattr(material, channel)
        if isinstance(value, ScalarValue):
            return value
        if isinstance(value, ColorValue):
            return ScalarValue(value.luminance)
        return self._texture(value, TEXTURE_SEMANTIC_RAW, material, channel)

    @staticmethod
    def _color(value):
        if isinstance(value, ColorValue):
            return value
        return None

    def _texture(self, value, semantic, material, channel):
        if not isinstance(value, ImageValue):
            return None
        if not self.profile.material.import_textures:
            return None
        try:
            texture = self.texture_factory.build_texture(value.image, semantic)
        except Exception as e:
            report(self.sink, "texture-failed",
                   f"Texture for {channel} of '{material.name or 'unnamed'}' "
                   f"failed: {e}",
                   image=value.image.base_name, semantic=semantic)
            return None
        if texture is None:
            report(self.sink, "texture-failed",
                   f"Texture factory returned nothing for {channel} of "
                   f"'{material.name or 'unnamed'}'",
                   image=value.image.base_name, semantic=semantic)
            return None
        return TextureReference(texture=texture, semantic=semantic)


# ---------------------------------------------------------------------------
# Default Pillow-backed texture factory
# ---------------------------------------------------------------------------

class TextureResource:
    """Decoded RGBA8888 texture in memory."""

    def __init__(self, name, width, height, rgba, semantic):
        self.name = name
        self.width = width
        self.height = height
        self.rgba = rgba
        self.semantic = semantic

    def __repr__(self):
        return (f"TextureResource({self.name!r}, {self.width}x{self.height}, "
                f"{self.semantic})")


class PillowTextureFactory:
    """Decode ImageData with Pillow into TextureResource objects.

    Identical images requested with the same semantic share one resource.
    """

    def __init__(self):
        self._cache = {}

    def clear_cache(self):
        self._cache = {}

    def build_texture(self, image, semantic):
        key = (image, semantic)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        decoded = convert_image_to_rgba(image)
        if decoded is None:
            raise TextureResourceError(
                f"Cannot decode image {image.base_name or '<embedded>'}")

        texture = TextureResource(
            name=image.base_name or "texture",
            width=decoded.width,
            height=decoded.height,
            rgba=decoded.rgba,
            semantic=semantic,
        )
        self._cache[key] = texture
        _log.debug("Texture %s: %dx%d (%s)", texture.name, texture.width,
                   texture.height, semantic)
        return texture
