"""Image decoding utilities for DAE textures.

DAE documents reference textures as ordinary image files (PNG, JPEG, TGA,
BMP, ...). Decoding is delegated to Pillow; everything is normalized to
RGBA8888, row 0 at the top.

Blender wants float pixels 0.0-1.0 with row 0 at the bottom, so
rgba_to_float_pixels() also flips vertically.
"""

import io
import logging

import numpy as np
from PIL import Image, UnidentifiedImageError


_log = logging.getLogger("dae_pbr.image")


class DecodedImage:
    """RGBA8888 pixel data decoded from an ImageData."""

    __slots__ = ('width', 'height', 'rgba', 'name', 'source_mode')

    def __init__(self, width, height, rgba, name="", source_mode="RGBA"):
        self.width = width
        self.height = height
        self.rgba = rgba              # bytes, width*height*4, top row first
        self.name = name
        self.source_mode = source_mode  # Pillow mode before conversion

    @property
    def has_alpha(self):
        return self.source_mode in ("RGBA", "LA", "PA", "RGBa", "La")


def convert_image_to_rgba(image_data):
    """Decode an ImageData into RGBA8888 pixels.

    Args:
        image_data: ImageData from sg_materials

    Returns:
        DecodedImage, or None if the bytes are empty or not a readable image
    """
    if image_data is None or not image_data.data:
        return None

    try:
        with Image.open(io.BytesIO(image_data.data)) as img:
            img.load()
            source_mode = img.mode
            rgba = img.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        _log.info("Could not decode image %s: %s",
                  image_data.base_name or "<embedded>", e)
        return None

    w, h = rgba.size
    if w == 0 or h == 0:
        return None

    return DecodedImage(w, h, rgba.tobytes(), name=image_data.name,
                        source_mode=source_mode)


def rgba_to_float_pixels(decoded, flip_vertical=True):
    """Convert RGBA8888 bytes into a flat list of floats 0.0-1.0.

    With flip_vertical the rows are reversed (bottom-to-top), the order
    Blender's Image.pixels expects.
    """
    arr = np.frombuffer(decoded.rgba, dtype=np.uint8)
    arr = arr.reshape(decoded.height, decoded.width, 4)
    if flip_vertical:
        arr = arr[::-1]
    return (arr.astype(np.float32) / 255.0).ravel()
