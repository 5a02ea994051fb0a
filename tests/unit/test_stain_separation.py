"""
Tests unitaires pour le module morphoscore.preprocessing.stain_separation.

- Construction et validation des RawImage
- Conversion RGB -> densité optique
- Matrice de déconvolution (2 ou 3 colorants)
- StainUnmixer: déterminisme, canal alpha ignoré, pixels blancs
"""

import pytest
import numpy as np

from morphoscore.constants import DEFAULT_CHANNEL_NAMES, HEMATOXYLIN_VECTOR, EOSIN_VECTOR
from morphoscore.errors import ConfigurationError, InputValidationError
from morphoscore.preprocessing.stain_separation import (
    RawImage,
    StainChannel,
    StainUnmixer,
    build_unmixing_matrix,
    rgb_to_od,
    validate_raw_image,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def unmixer():
    return StainUnmixer()


@pytest.fixture
def lavender_image():
    """Uniform 4x4 RGBA image (200, 150, 230, 255)."""
    return RawImage.from_array(np.full((4, 4, 4), [200, 150, 230, 255], dtype=np.uint8))


@pytest.fixture
def white_image():
    return RawImage.from_array(np.full((16, 16, 4), 255, dtype=np.uint8))


# ============================================================================
# TESTS: RAW IMAGE
# ============================================================================

class TestRawImage:
    """Tests for RawImage construction."""

    def test_from_buffer_bytes(self):
        """A bytes buffer of length w*h*4 is accepted."""
        image = RawImage.from_buffer(2, 3, bytes(range(24)))
        assert image.width == 2
        assert image.height == 3
        assert image.pixels.dtype == np.uint8
        assert image.pixels.size == 24

    def test_from_buffer_list(self):
        """Plain integer lists are accepted."""
        image = RawImage.from_buffer(1, 1, [10, 20, 30, 255])
        assert list(image.pixels) == [10, 20, 30, 255]

    def test_pixels_read_only(self):
        """Pixel buffer cannot be modified after construction."""
        image = RawImage.from_buffer(1, 1, [10, 20, 30, 255])
        with pytest.raises(ValueError):
            image.pixels[0] = 0

    def test_buffer_is_copied(self):
        """Later changes to the source array do not leak into the image."""
        source = np.full(16, 100, dtype=np.uint8)
        image = RawImage.from_buffer(2, 2, source)
        source[:] = 0
        assert int(image.pixels[0]) == 100

    def test_from_array_rgb_adds_alpha(self):
        """RGB arrays get an opaque alpha channel."""
        image = RawImage.from_array(np.zeros((3, 5, 3), dtype=np.uint8))
        assert (image.width, image.height) == (5, 3)
        rgba = image.pixels.reshape(3, 5, 4)
        assert np.all(rgba[:, :, 3] == 255)

    def test_rgb_view_drops_alpha(self):
        image = RawImage.from_array(np.full((2, 2, 4), [1, 2, 3, 4], dtype=np.uint8))
        rgb = image.rgb()
        assert rgb.shape == (2, 2, 3)
        assert np.all(rgb == [1, 2, 3])

    def test_missing_buffer(self):
        with pytest.raises(InputValidationError, match="Missing"):
            RawImage.from_buffer(2, 2, None)

    @pytest.mark.parametrize("width,height", [(0, 2), (2, -1), (1.5, 2), (True, 2)])
    def test_invalid_dimensions(self, width, height):
        """Non-integer or non-positive dimensions are rejected."""
        with pytest.raises(InputValidationError):
            RawImage.from_buffer(width, height, bytes(16))

    def test_wrong_buffer_length(self):
        with pytest.raises(InputValidationError, match="expected 16"):
            RawImage.from_buffer(2, 2, bytes(15))

    def test_out_of_range_values(self):
        with pytest.raises(InputValidationError):
            RawImage.from_buffer(1, 1, [0, 0, 300, 255])

    @pytest.mark.parametrize("pixels", [
        [np.nan, 0, 0, 0],
        [0, np.inf, 0, 255],
        [12.9, 0.5, 255.0, 3.3],
        ["a", "b", "c", "d"],
    ])
    def test_non_integer_values(self, pixels):
        """NaN, inf and fractional values are rejected before the uint8 cast."""
        with pytest.raises(InputValidationError):
            RawImage.from_buffer(1, 1, pixels)

    def test_integral_floats_accepted(self):
        image = RawImage.from_buffer(1, 1, np.array([12.0, 0.0, 255.0, 3.0]))
        assert list(image.pixels) == [12, 0, 255, 3]

    def test_from_array_bad_shape(self):
        with pytest.raises(InputValidationError):
            RawImage.from_array(np.zeros((4, 4), dtype=np.uint8))

    def test_input_errors_are_value_errors(self):
        """InputValidationError stays catchable as ValueError."""
        with pytest.raises(ValueError):
            RawImage.from_buffer(0, 0, b"")


# ============================================================================
# TESTS: OPTICAL DENSITY
# ============================================================================

class TestOpticalDensity:
    """Tests for rgb_to_od."""

    def test_white_is_zero(self):
        od = rgb_to_od(np.full((2, 2, 3), 255, dtype=np.uint8))
        assert np.allclose(od, 0.0)

    def test_black_is_bounded(self):
        """Black pixels are floored at epsilon, not infinite."""
        od = rgb_to_od(np.zeros((1, 1, 3), dtype=np.uint8), epsilon=1e-6)
        assert np.all(np.isfinite(od))
        assert np.allclose(od, 6.0)

    def test_darker_means_denser(self):
        od = rgb_to_od(np.array([[[200, 200, 200], [100, 100, 100]]], dtype=np.uint8))
        assert np.all(od[0, 1] > od[0, 0])


# ============================================================================
# TESTS: UNMIXING MATRIX
# ============================================================================

class TestUnmixingMatrix:
    """Tests for build_unmixing_matrix."""

    def test_three_stains_is_inverse(self):
        """For 3 stains the unmixing matrix inverts the normalised stain matrix."""
        vectors = np.array([HEMATOXYLIN_VECTOR, EOSIN_VECTOR, (0.268, 0.570, 0.776)])
        normalized = vectors / np.linalg.norm(vectors, axis=1, keepdims=True)
        matrix = build_unmixing_matrix(vectors)
        assert matrix.shape == (3, 3)
        assert np.allclose(normalized @ matrix, np.eye(3), atol=1e-10)

    def test_two_stains(self):
        matrix = build_unmixing_matrix([HEMATOXYLIN_VECTOR, EOSIN_VECTOR])
        assert matrix.shape == (3, 2)

    @pytest.mark.parametrize("vectors", [
        [(1.0, 0.0, 0.0)],                                  # N = 1
        [(1.0, 0.0), (0.0, 1.0)],                           # not N x 3
        [(1.0, 0.0, 0.0), (0.0, 0.0, 0.0)],                 # zero vector
        [(1.0, 1.0, 0.0), (2.0, 2.0, 0.0)],                 # dependent
    ])
    def test_invalid_matrices(self, vectors):
        with pytest.raises(ConfigurationError):
            build_unmixing_matrix(vectors)


# ============================================================================
# TESTS: STAIN UNMIXER
# ============================================================================

class TestStainUnmixer:
    """Tests for StainUnmixer."""

    def test_channel_names_and_shapes(self, unmixer, lavender_image):
        channels = unmixer.unmix(lavender_image)
        assert tuple(channels) == DEFAULT_CHANNEL_NAMES
        for channel in channels.values():
            assert isinstance(channel, StainChannel)
            assert channel.shape == (4, 4)

    def test_white_image_near_zero(self, unmixer, white_image):
        """Pure white has zero optical density in every channel."""
        for channel in unmixer.unmix(white_image).values():
            assert channel.max == pytest.approx(0.0, abs=1e-9)

    def test_lavender_channel_values(self, unmixer, lavender_image):
        """
        (200, 150, 230) absorbs mostly in green (eosin-like) but also in red,
        so Ruifrok deconvolution assigns it a comparable hematoxylin share.

        OD = (0.1055, 0.2304, 0.0448) -> primary 0.1547, secondary 0.1324,
        residual -0.017 clamped to 0.
        """
        channels = unmixer.unmix(lavender_image)
        primary = channels["primary"]
        secondary = channels["secondary"]
        residual = channels["residual"]

        assert primary.mean == pytest.approx(0.1547, abs=1e-3)
        assert secondary.mean == pytest.approx(0.1324, abs=1e-3)
        assert residual.max == 0.0
        assert 0.8 < secondary.mean / primary.mean < 0.9
        for channel in channels.values():
            assert channel.std == pytest.approx(0.0, abs=1e-12)
            assert np.isfinite(channel.mean)

    def test_lavender_reconstructs_od(self, unmixer, lavender_image):
        """Primary and secondary stain vectors rebuild the green OD."""
        channels = unmixer.unmix(lavender_image)
        eosin = np.asarray(EOSIN_VECTOR) / np.linalg.norm(EOSIN_VECTOR)
        hematoxylin = np.asarray(HEMATOXYLIN_VECTOR) / np.linalg.norm(HEMATOXYLIN_VECTOR)
        green_od = -np.log10(150 / 255)
        # secondary alone carries more than half of the green absorption
        assert eosin[1] * channels["secondary"].mean > 0.5 * green_od
        assert hematoxylin[1] * channels["primary"].mean < 0.5 * green_od

    def test_deterministic(self, unmixer, lavender_image):
        first = unmixer.unmix(lavender_image)
        second = StainUnmixer().unmix(lavender_image)
        for name in first:
            assert np.array_equal(first[name].values, second[name].values)

    def test_alpha_ignored(self, unmixer):
        rgb = np.random.RandomState(0).randint(0, 256, size=(8, 8, 3)).astype(np.uint8)
        opaque = np.concatenate([rgb, np.full((8, 8, 1), 255, np.uint8)], axis=2)
        transparent = np.concatenate([rgb, np.zeros((8, 8, 1), np.uint8)], axis=2)
        a = unmixer.unmix(RawImage.from_array(opaque))
        b = unmixer.unmix(RawImage.from_array(transparent))
        for name in a:
            assert np.array_equal(a[name].values, b[name].values)

    def test_values_clamped(self, unmixer):
        """Intensities stay in [0, max_density]."""
        rgb = np.random.RandomState(1).randint(0, 256, size=(16, 16, 3)).astype(np.uint8)
        channels = unmixer.unmix(RawImage.from_array(rgb))
        for channel in channels.values():
            assert channel.min >= 0.0
            assert channel.max <= unmixer.max_density

    def test_two_stain_configuration(self):
        unmixer = StainUnmixer([HEMATOXYLIN_VECTOR, EOSIN_VECTOR], ["hematoxylin", "eosin"])
        channels = unmixer.unmix(RawImage.from_array(np.full((2, 2, 3), 128, np.uint8)))
        assert list(channels) == ["hematoxylin", "eosin"]

    def test_name_count_mismatch(self):
        with pytest.raises(ConfigurationError):
            StainUnmixer(channel_names=["a", "b"])

    def test_duplicate_names(self):
        with pytest.raises(ConfigurationError):
            StainUnmixer(channel_names=["a", "a", "b"])

    @pytest.mark.parametrize("epsilon", [0.0, 1.0, -1e-3])
    def test_invalid_epsilon(self, epsilon):
        with pytest.raises(ConfigurationError):
            StainUnmixer(epsilon=epsilon)

    def test_rejects_non_image(self, unmixer):
        with pytest.raises(InputValidationError):
            unmixer.unmix(None)
        with pytest.raises(InputValidationError):
            validate_raw_image(np.zeros((2, 2, 4)))


# ============================================================================
# TESTS: STAIN CHANNEL
# ============================================================================

class TestStainChannel:
    """Tests for StainChannel statistics."""

    def test_stats(self):
        channel = StainChannel("primary", np.array([[0.0, 1.0], [1.0, 2.0]]))
        assert channel.mean == pytest.approx(1.0)
        assert channel.min == 0.0
        assert channel.max == 2.0
        assert channel.stats()["std"] == pytest.approx(np.std([0, 1, 1, 2]))

    def test_with_values_keeps_name(self):
        channel = StainChannel("secondary", np.zeros((2, 2)))
        updated = channel.with_values(np.ones((2, 2)))
        assert updated.name == "secondary"
        assert updated.mean == 1.0
        assert channel.mean == 0.0
