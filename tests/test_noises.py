import numpy as np
import pytest

from noise_atlas.config import GenerationConfig
from noise_atlas.errors import ConfigurationError
from noise_atlas.noises import (
    NoiseParams,
    build_perm_table,
    domain_warp,
    fbm3d,
    mulberry32,
    octave_periods,
    pnoise3d,
)

PERM = build_perm_table(42)

# dyadic values: x + period is exact, so periodicity can be checked with ==
DYADIC = np.array([0.0, 0.25, 0.5, 1.75, -0.75, 2.125, 5.5])


def make_params(**overrides):
    config = GenerationConfig(**overrides)
    return NoiseParams.from_config(config)


def test_mulberry32_known_sequence():
    rng = mulberry32(42)
    assert rng() == 2581720956 / 4294967296
    assert rng() == 1925393290 / 4294967296
    assert rng() == 3661312704 / 4294967296

    rng = mulberry32(0)
    assert rng() == 1144304738 / 4294967296
    assert rng() == 1416247 / 4294967296


def test_mulberry32_range_and_seed_wrap():
    rng = mulberry32(7)
    values = [rng() for _ in range(2000)]
    assert all(0.0 <= v < 1.0 for v in values), "PRNG left [0, 1)."

    a = mulberry32(-1)
    b = mulberry32(0xFFFFFFFF)
    assert [a() for _ in range(10)] == [b() for _ in range(10)], "Seeds should wrap modulo 2**32."


def test_perm_table_known_shuffle():
    perm = build_perm_table(42)
    assert list(perm[:16]) == [79, 208, 113, 244, 223, 165, 38, 9, 182, 5, 2, 108, 57, 25, 210, 177]
    assert list(perm[240:256]) == [120, 47, 74, 181, 253, 61, 116, 214, 155, 68, 132, 44, 169, 216, 114, 153]


def test_perm_table_structure():
    perm = build_perm_table(1234)
    assert perm.shape == (512,)
    assert perm.dtype == np.uint16
    assert sorted(perm[:256].tolist()) == list(range(256)), "First half must be a permutation of 0..255."
    assert np.array_equal(perm[256:], perm[:256]), "Second half must mirror the first."
    with pytest.raises(ValueError):
        perm[0] = 1


def test_perm_table_deterministic():
    assert np.array_equal(build_perm_table(99), build_perm_table(99))
    assert not np.array_equal(build_perm_table(99), build_perm_table(100))


@pytest.mark.parametrize("period", [1, 3, 4, 7, 300])
def test_pnoise3d_exact_periodicity(period):
    x, y, z = np.meshgrid(DYADIC, DYADIC, DYADIC, indexing="ij")
    base = pnoise3d(x, y, z, period, period, period, PERM)
    assert np.array_equal(base, pnoise3d(x + period, y, z, period, period, period, PERM))
    assert np.array_equal(base, pnoise3d(x, y + period, z, period, period, period, PERM))
    assert np.array_equal(base, pnoise3d(x, y, z + period, period, period, period, PERM))
    assert np.array_equal(base, pnoise3d(x - 2 * period, y, z, period, period, period, PERM))


def test_pnoise3d_independent_axis_periods():
    x, y, z = 0.25, 1.5, 2.75
    base = pnoise3d(x, y, z, 2, 3, 5, PERM)
    assert pnoise3d(x + 2, y + 3, z + 5, 2, 3, 5, PERM) == base


def test_pnoise3d_zero_on_lattice():
    assert pnoise3d(2.0, 3.0, 1.0, 8, 8, 8, PERM) == 0.0
    assert pnoise3d(-4.0, 0.0, 7.0, 8, 8, 8, PERM) == 0.0


def test_pnoise3d_scalar_and_array():
    value = pnoise3d(0.3, 0.6, 0.9, 4, 4, 4, PERM)
    assert isinstance(value, float)

    arr = pnoise3d(np.array([0.3, 1.3]), 0.6, 0.9, 4, 4, 4, PERM)
    assert arr.shape == (2,)
    assert arr[0] == value


def test_pnoise3d_range():
    rng = np.random.default_rng(0)
    pts = rng.uniform(-10, 10, size=(3, 5000))
    values = pnoise3d(pts[0], pts[1], pts[2], 16, 16, 16, PERM)
    assert np.all(np.abs(values) <= 1.5)
    assert values.std() > 0.05, "Noise should not be flat."


def test_pnoise3d_clamps_degenerate_period():
    x = np.array([0.3, 2.7, -1.2])
    assert np.array_equal(pnoise3d(x, 0.5, 0.5, 0, -3, 1, PERM), pnoise3d(x, 0.5, 0.5, 1, 1, 1, PERM))


def test_pnoise3d_large_coordinates_stay_in_table():
    x = np.linspace(0, 5000, 97)
    values = pnoise3d(x, x * 0.5, x * 0.25, 1000, 1000, 1000, PERM)
    assert np.all(np.isfinite(values))


def test_octave_periods():
    assert octave_periods(make_params(frequency=4, octaves=3, lacunarity=2.0)) == [4, 8, 16]
    # half-up rounding: 4.5 -> 5
    assert octave_periods(make_params(frequency=3, octaves=4, lacunarity=1.5)) == [3, 5, 7, 10]
    assert octave_periods(make_params(frequency=0, octaves=2)) == [1, 1]


def test_octave_periods_overflow():
    params = make_params(frequency=4, octaves=8, lacunarity=1e200)
    with pytest.raises(ConfigurationError):
        octave_periods(params)


def test_fbm_single_octave_is_kernel():
    params = make_params(frequency=4, octaves=1)
    for x, y, z in [(0.1, 0.2, 0.3), (0.9, 0.05, 0.5)]:
        assert fbm3d(x, y, z, params) == pnoise3d(x * 4, y * 4, z * 4, 4, 4, 4, params.perm)


@pytest.mark.parametrize("lacunarity", [2.0, 3.0])
def test_fbm_tiles_on_unit_cube(lacunarity):
    params = make_params(frequency=3, octaves=5, lacunarity=lacunarity)
    a, b = np.meshgrid(np.linspace(0, 1, 9, endpoint=False), np.linspace(0, 1, 9, endpoint=False))
    assert np.array_equal(fbm3d(0.0, a, b, params), fbm3d(1.0, a, b, params))
    assert np.array_equal(fbm3d(a, 0.0, b, params), fbm3d(a, 1.0, b, params))
    assert np.array_equal(fbm3d(a, b, 0.0, params), fbm3d(a, b, 1.0, params))


def test_fbm_fractional_lacunarity_leaves_a_seam():
    # 3 * 1.5 = 4.5 samples past its wrap period of 5
    params = make_params(frequency=3, octaves=4, lacunarity=1.5)
    a, b = np.meshgrid(np.linspace(0, 1, 9, endpoint=False), np.linspace(0, 1, 9, endpoint=False))
    seam = np.abs(fbm3d(0.0, a, b, params) - fbm3d(1.0, a, b, params))
    assert seam.max() > 1e-3


def test_fbm_known_values():
    params = make_params(seed=42, frequency=4, octaves=3, lacunarity=2.0)
    assert fbm3d(0.3, 0.6, 0.9, params) == pytest.approx(0.2312199868720274, abs=1e-12)

    params = make_params(seed=42, frequency=3, octaves=4, lacunarity=1.5)
    assert fbm3d(0.3, 0.6, 0.9, params) == pytest.approx(-0.13921079100696662, abs=1e-12)


def test_fbm_zero_frequency_is_flat():
    # the period is clamped to 1 but the sample point is still scaled by 0
    params = make_params(frequency=0, octaves=1)
    assert fbm3d(0.3, 0.6, 0.9, params) == 0.0
    values = fbm3d(np.array([0.1, 0.5, 0.77]), 0.2, 0.9, make_params(frequency=0, octaves=3))
    assert np.array_equal(values, np.zeros(3))


def test_fbm_normalized_range():
    params = make_params(frequency=4, octaves=6, gain=0.9)
    rng = np.random.default_rng(1)
    pts = rng.random((3, 2000))
    values = fbm3d(pts[0], pts[1], pts[2], params)
    assert np.all(np.abs(values) <= 1.5)


def test_fbm_degenerate_amplitude_sum():
    # 1 + (-1) == 0: falls back to normalizing by |amplitudes|
    params = make_params(octaves=2, gain=-1.0)
    value = fbm3d(0.3, 0.4, 0.5, params)
    assert np.isfinite(value)
    assert abs(value) <= 1.5


def test_fbm_rejects_zero_octaves():
    with pytest.raises(ConfigurationError):
        make_params(octaves=0)


def test_domain_warp_identity_when_disabled():
    params = make_params()
    x, y, z = np.array([0.1]), np.array([0.2]), np.array([0.3])
    wx, wy, wz = domain_warp(x, y, z, 0.0, params)
    assert wx is x and wy is y and wz is z


def test_domain_warp_displaces_deterministically():
    params = make_params()
    first = domain_warp(0.1, 0.2, 0.3, 0.5, params)
    second = domain_warp(0.1, 0.2, 0.3, 0.5, params)
    assert first == second
    assert first != (0.1, 0.2, 0.3)
