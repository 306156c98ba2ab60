import io

from PIL import Image

from conftest import png_bytes

from dae_pbr.scene_graph.sg_materials import ImageData
from dae_pbr.utils.image_convert import convert_image_to_rgba, rgba_to_float_pixels


def test_png_decodes_to_rgba():
    decoded = convert_image_to_rgba(ImageData(png_bytes((3, 2), (0, 255, 0, 128)), "a.png"))

    assert (decoded.width, decoded.height) == (3, 2)
    assert len(decoded.rgba) == 3 * 2 * 4
    assert decoded.rgba[:4] == bytes((0, 255, 0, 128))
    assert decoded.has_alpha


def test_rgb_bitmap_gains_opaque_alpha():
    out = io.BytesIO()
    Image.new("RGB", (4, 4), (10, 20, 30)).save(out, format="BMP")

    decoded = convert_image_to_rgba(ImageData(out.getvalue(), "b.bmp"))

    assert decoded.rgba[3] == 255
    assert not decoded.has_alpha


def test_undecodable_bytes():
    assert convert_image_to_rgba(ImageData(b"\x00\x01garbage")) is None
    assert convert_image_to_rgba(ImageData(b"")) is None
    assert convert_image_to_rgba(None) is None


def test_float_pixels_flip_rows():
    img = Image.new("RGBA", (1, 2))
    img.putpixel((0, 0), (255, 0, 0, 255))   # top
    img.putpixel((0, 1), (0, 0, 255, 255))   # bottom
    out = io.BytesIO()
    img.save(out, format="PNG")
    decoded = convert_image_to_rgba(ImageData(out.getvalue()))

    pixels = list(rgba_to_float_pixels(decoded))

    assert pixels[:4] == [0.0, 0.0, 1.0, 1.0]
    assert pixels[4:] == [1.0, 0.0, 0.0, 1.0]
    assert list(rgba_to_float_pixels(decoded, flip_vertical=False))[:4] == [1.0, 0.0, 0.0, 1.0]


def test_image_data_base_name():
    assert ImageData(b"", "C:\\textures\\wood.png").base_name == "wood.png"
    assert ImageData(b"").base_name == ""
