"""Legacy reflectance material data from the DAE scene graph.

COLLADA common-profile effects (phong / blinn / lambert / constant) describe
surfaces with diffuse / specular / shininess style parameters. Each named
channel holds exactly one of:

    None           channel absent
    ScalarValue    a single float
    ColorValue     an RGBA color, components 0.0-1.0
    ImageValue     encoded image bytes (PNG, JPEG, ...) still to be decoded

Channels (ReflectanceMaterial attribute names):
    diffuse, specular, reflective, emission, transparent, metalness,
    roughness, normal, ambient_occlusion, self_illumination, multiply

plus the scalar shininess and transparency values.
"""

import os
from dataclasses import dataclass, fields
from typing import Optional, Tuple, Union


CHANNEL_NAMES = (
    "diffuse", "specular", "reflective", "emission", "transparent",
    "metalness", "roughness", "normal", "ambient_occlusion",
    "self_illumination", "multiply",
)


@dataclass(frozen=True)
class ScalarValue:
    value: float


@dataclass(frozen=True)
class ColorValue:
    """RGBA color, 0.0-1.0 per component."""

    rgba: Tuple[float, float, float, float]

    @property
    def red(self):
        return self.rgba[0]

    @property
    def luminance(self):
        """Grayscale value of an achromatic color (its red component)."""
        return self.rgba[0]


@dataclass(frozen=True)
class ImageData:
    """Encoded image bytes plus the path they were loaded from (if any)."""

    data: bytes
    name: str = ""

    @property
    def base_name(self):
        """Get just the filename without path."""
        if not self.name:
            return ""
        return os.path.basename(self.name.replace("\\", "/"))


@dataclass(frozen=True)
class ImageValue:
    image: ImageData


ChannelValue = Union[ScalarValue, ColorValue, ImageValue]


@dataclass(frozen=True)
class ReflectanceMaterial:
    """Legacy material as read from a DAE effect."""

    name: str = ""
    diffuse: Optional[ChannelValue] = None
    specular: Optional[ChannelValue] = None
    reflective: Optional[ChannelValue] = None
    emission: Optional[ChannelValue] = None
    transparent: Optional[ChannelValue] = None
    metalness: Optional[ChannelValue] = None
    roughness: Optional[ChannelValue] = None
    normal: Optional[ChannelValue] = None
    ambient_occlusion: Optional[ChannelValue] = None
    self_illumination: Optional[ChannelValue] = None
    multiply: Optional[ChannelValue] = None
    shininess: float = 0.0
    transparency: float = 1.0

    def channel(self, name):
        if name not in CHANNEL_NAMES:
            raise KeyError(f"Unknown material channel: {name!r}")
        return getattr(self, name)

    def describe(self):
        """Return {channel: short description} for debug dumps."""
        out = {}
        for f in fields(self):
            if f.name == "name":
                continue
            out[f.name] = _describe_value(getattr(self, f.name))
        return out


def _describe_value(value):
    if isinstance(value, ScalarValue):
        return f"scalar {value.value:g}"
    if isinstance(value, ColorValue):
        return "color (" + ", ".join(f"{c:.3f}" for c in value.rgba) + ")"
    if isinstance(value, ImageValue):
        return f"image {value.image.base_name or '<embedded>'} ({len(value.image.data)} bytes)"
    if value is None:
        return "absent"
    return repr(value)
