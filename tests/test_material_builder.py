import pytest

from dae_pbr.conversion_profiles import ConversionProfile, MaterialConfig
from dae_pbr.importer.material_builder import (
    MaterialResolver, PillowTextureFactory, TextureReference,
    TextureResourceError, TEXTURE_SEMANTIC_COLOR, TEXTURE_SEMANTIC_NORMAL,
    TEXTURE_SEMANTIC_RAW,
)
from dae_pbr.scene_graph.sg_materials import (
    ColorValue, ImageData, ImageValue, ReflectanceMaterial, ScalarValue,
)


class FailingTextureFactory:
    def __init__(self):
        self.calls = []

    def build_texture(self, image, semantic):
        self.calls.append(semantic)
        raise TextureResourceError("unsupported encoding")


class RecordingTextureFactory:
    def build_texture(self, image, semantic):
        return ("texture", image.name, semantic)


def test_shininess_overrides_roughness_scalar():
    material = ReflectanceMaterial(roughness=ScalarValue(0.3), shininess=500.0)

    result = MaterialResolver().resolve(material)

    assert result.roughness == ScalarValue(0.5)


def test_shininess_clamped_at_range():
    material = ReflectanceMaterial(shininess=4000.0)

    assert MaterialResolver().resolve(material).roughness == ScalarValue(0.0)


def test_shininess_range_from_profile():
    profile = ConversionProfile(profile_id="gl-exponent",
                                material=MaterialConfig(shininess_range=128.0))
    material = ReflectanceMaterial(shininess=64.0)

    assert MaterialResolver(profile=profile).resolve(material).roughness == ScalarValue(0.5)


def test_all_channels_absent_resolves_to_none(sink):
    assert MaterialResolver(sink=sink).resolve(ReflectanceMaterial(name="blank")) is None
    assert sink.codes == ["material-empty"]


def test_unmapped_channels_alone_resolve_to_none():
    material = ReflectanceMaterial(emission=ColorValue((1.0, 1.0, 1.0, 1.0)),
                                   multiply=ScalarValue(1.0))

    assert MaterialResolver().resolve(material) is None


def test_base_color_prefers_color_over_texture():
    material = ReflectanceMaterial(diffuse=ColorValue((0.2, 0.4, 0.6, 1.0)))

    result = MaterialResolver(RecordingTextureFactory()).resolve(material)

    assert result.base_color == ColorValue((0.2, 0.4, 0.6, 1.0))


def test_texture_semantics(png_image):
    material = ReflectanceMaterial(
        diffuse=ImageValue(png_image),
        normal=ImageValue(png_image),
        metalness=ImageValue(png_image),
    )

    result = MaterialResolver(RecordingTextureFactory()).resolve(material)

    assert result.base_color.semantic == TEXTURE_SEMANTIC_COLOR
    assert result.normal.semantic == TEXTURE_SEMANTIC_NORMAL
    assert result.metallic.semantic == TEXTURE_SEMANTIC_RAW
    assert result.base_color.texture == ("texture", png_image.name, "color")


def test_normal_ignores_non_texture_values():
    material = ReflectanceMaterial(normal=ColorValue((0.5, 0.5, 1.0, 1.0)),
                                   metalness=ScalarValue(1.0))

    result = MaterialResolver().resolve(material)

    assert result.normal is None
    assert result.metallic == ScalarValue(1.0)


def test_grayscale_channels_take_red_component():
    material = ReflectanceMaterial(
        roughness=ColorValue((0.7, 0.1, 0.1, 1.0)),
        specular=ColorValue((0.25, 0.25, 0.25, 1.0)),
        reflective=ColorValue((0.9, 0.0, 0.0, 1.0)),
    )

    result = MaterialResolver().resolve(material)

    assert result.roughness == ScalarValue(0.7)
    assert result.specular == ScalarValue(0.25)
    assert result.clearcoat == ScalarValue(0.9)


def test_roughness_derived_from_specular_without_shininess():
    material = ReflectanceMaterial(specular=ScalarValue(0.25))

    result = MaterialResolver().resolve(material)

    assert result.roughness == ScalarValue(0.75)
    assert result.specular == ScalarValue(0.25)


def test_shininess_overrides_specular_derived_roughness():
    material = ReflectanceMaterial(specular=ScalarValue(0.25), shininess=200.0)

    result = MaterialResolver().resolve(material)

    assert result.roughness == ScalarValue(0.8)
    assert result.specular == ScalarValue(0.25)


def test_specular_derivation_skipped_when_roughness_present():
    material = ReflectanceMaterial(roughness=ScalarValue(0.3),
                                   specular=ScalarValue(0.25))

    assert MaterialResolver().resolve(material).roughness == ScalarValue(0.3)


def test_texture_failure_falls_through(sink, png_image):
    factory = FailingTextureFactory()
    material = ReflectanceMaterial(diffuse=ImageValue(png_image),
                                   specular=ScalarValue(0.5))

    result = MaterialResolver(factory, sink=sink).resolve(material)

    assert result.base_color is None
    assert result.specular == ScalarValue(0.5)
    assert factory.calls == [TEXTURE_SEMANTIC_COLOR]
    assert sink.codes == ["texture-failed"]


def test_failed_texture_only_channel_is_absent(sink, png_image):
    material = ReflectanceMaterial(diffuse=ImageValue(png_image))

    assert MaterialResolver(FailingTextureFactory(), sink=sink).resolve(material) is None
    assert sink.codes == ["texture-failed", "material-empty"]


def test_textures_disabled_by_profile(png_image):
    profile = ConversionProfile(profile_id="flat",
                                material=MaterialConfig(import_textures=False))
    material = ReflectanceMaterial(diffuse=ImageValue(png_image),
                                   metalness=ScalarValue(0.0))

    result = MaterialResolver(RecordingTextureFactory(), profile=profile).resolve(material)

    assert result.base_color is None
    assert result.metallic == ScalarValue(0.0)


def test_resolve_all_keeps_alignment():
    materials = [ReflectanceMaterial(), None,
                 ReflectanceMaterial(metalness=ScalarValue(1.0))]

    resolved = MaterialResolver().resolve_all(materials)

    assert resolved[0] is None
    assert resolved[1] is None
    assert resolved[2].metallic == ScalarValue(1.0)


def test_pillow_factory_decodes_and_caches(png_image):
    factory = PillowTextureFactory()

    first = factory.build_texture(png_image, TEXTURE_SEMANTIC_COLOR)
    second = factory.build_texture(png_image, TEXTURE_SEMANTIC_COLOR)

    assert first is second
    assert (first.width, first.height) == (2, 2)
    assert first.rgba[:4] == bytes((255, 0, 0, 255))
    assert first.name == "red.png"


def test_pillow_factory_rejects_garbage():
    with pytest.raises(TextureResourceError):
        PillowTextureFactory().build_texture(ImageData(b"not an image"), "raw")


def test_default_factory_end_to_end(png_image):
    material = ReflectanceMaterial(diffuse=ImageValue(png_image))

    result = MaterialResolver().resolve(material)

    assert isinstance(result.base_color, TextureReference)
    assert result.base_color.texture.width == 2
