"""
noises.py

Seeded, periodic 3D gradient noise for tileable volume textures.

The building blocks, leaf first:
  - mulberry32: 32-bit seeded PRNG producing floats in [0, 1)
  - build_perm_table: Fisher-Yates shuffled 256-entry table, doubled to 512
  - pnoise3d: Perlin noise with an explicit integer period per axis
  - fbm3d: normalized multi-octave summation where every octave wraps on the unit cube
  - domain_warp: coordinate displacement from decorrelated fBm lookups

All noise functions accept Python floats or numpy arrays (broadcast elementwise)
and evaluate in float64.
"""

import math
import logging
from dataclasses import dataclass
from typing import Callable, List, Tuple

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_MASK32 = 0xFFFFFFFF

# 12 edge gradients of the unit cube
GRAD3 = np.array([
    [1, 1, 0], [-1, 1, 0], [1, -1, 0], [-1, -1, 0],
    [1, 0, 1], [-1, 0, 1], [1, 0, -1], [-1, 0, -1],
    [0, 1, 1], [0, -1, 1], [0, 1, -1], [0, -1, -1],
], dtype=np.float64)

# Offsets added to all three coordinates for the x, y and z warp lookups.
WARP_OFFSETS = (5.2, 1.3, 9.7)

# Below this the signed amplitude sum is treated as zero.
MIN_AMPLITUDE_SUM = 1e-9


# ------------------------------------------------------------------------
# PRNG + permutation table
# ------------------------------------------------------------------------

def _imul(a: int, b: int) -> int:
    """Low 32 bits of a 32x32 bit product."""
    return (a * b) & _MASK32


def mulberry32(seed: int) -> Callable[[], float]:
    """
    Mulberry32 generator.

    Parameters:
    -----------
    seed : int
        Any integer; reduced modulo 2**32.

    Returns:
    --------
    callable
        Each call returns the next float in [0, 1). The same seed always
        yields the same sequence.
    """
    state = seed & _MASK32

    def rng() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & _MASK32
        t = _imul(state ^ (state >> 15), 1 | state)
        t = ((t + _imul(t ^ (t >> 7), 61 | t)) & _MASK32) ^ t
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296.0

    return rng


def build_perm_table(seed: int) -> np.ndarray:
    """
    Build the 512-entry permutation table for a seed.

    Entries 0-255 are a Fisher-Yates shuffle of 0..255 driven by mulberry32;
    entries 256-511 mirror them. The returned array is read-only.
    """
    rng = mulberry32(seed)
    p = list(range(256))
    for i in range(255, 0, -1):
        j = int(rng() * (i + 1))
        p[i], p[j] = p[j], p[i]

    perm = np.array(p + p, dtype=np.uint16)
    perm.flags.writeable = False
    return perm


# ------------------------------------------------------------------------
# Periodic Perlin kernel
# ------------------------------------------------------------------------

def fade(t):
    """Quintic fade curve 6t^5 - 15t^4 + 10t^3."""
    return t * t * t * (t * (t * 6 - 15) + 10)


def lerp(a, b, t):
    return a + t * (b - a)


def _grad_dot(h, x, y, z):
    g = GRAD3[h]
    return g[..., 0] * x + g[..., 1] * y + g[..., 2] * z


def _hash(perm, xi, yi, zi):
    # every indirection is masked to 0..255 so periods above 256 stay in bounds
    return perm[(perm[(perm[xi & 255] + yi) & 255] + zi) & 255] % 12


def pnoise3d(x, y, z, px: int, py: int, pz: int, perm: np.ndarray):
    """
    Periodic 3D Perlin noise.

    Lattice coordinates are wrapped with a true modulo before hashing, so the
    result at x and at x + px is identical (likewise for y and z).

    Parameters:
    -----------
    x, y, z    : float or np.ndarray
        Sample coordinates (broadcastable).
    px, py, pz : int
        Period on each axis; values below 1 are clamped to 1.
    perm       : np.ndarray
        512-entry permutation table from build_perm_table().

    Returns:
    --------
    float or np.ndarray
        Noise value, approximately in [-1, 1].
    """
    px = max(1, int(px))
    py = max(1, int(py))
    pz = max(1, int(pz))

    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    z = np.asarray(z, dtype=np.float64)

    xi = np.floor(x)
    yi = np.floor(y)
    zi = np.floor(z)

    xf = x - xi
    yf = y - yi
    zf = z - zi

    xi0 = np.mod(xi.astype(np.int64), px)
    yi0 = np.mod(yi.astype(np.int64), py)
    zi0 = np.mod(zi.astype(np.int64), pz)
    xi1 = (xi0 + 1) % px
    yi1 = (yi0 + 1) % py
    zi1 = (zi0 + 1) % pz

    u = fade(xf)
    v = fade(yf)
    w = fade(zf)

    n000 = _grad_dot(_hash(perm, xi0, yi0, zi0), xf, yf, zf)
    n100 = _grad_dot(_hash(perm, xi1, yi0, zi0), xf - 1, yf, zf)
    n010 = _grad_dot(_hash(perm, xi0, yi1, zi0), xf, yf - 1, zf)
    n110 = _grad_dot(_hash(perm, xi1, yi1, zi0), xf - 1, yf - 1, zf)
    n001 = _grad_dot(_hash(perm, xi0, yi0, zi1), xf, yf, zf - 1)
    n101 = _grad_dot(_hash(perm, xi1, yi0, zi1), xf - 1, yf, zf - 1)
    n011 = _grad_dot(_hash(perm, xi0, yi1, zi1), xf, yf - 1, zf - 1)
    n111 = _grad_dot(_hash(perm, xi1, yi1, zi1), xf - 1, yf - 1, zf - 1)

    nx00 = lerp(n000, n100, u)
    nx10 = lerp(n010, n110, u)
    nx01 = lerp(n001, n101, u)
    nx11 = lerp(n011, n111, u)
    nxy0 = lerp(nx00, nx10, v)
    nxy1 = lerp(nx01, nx11, v)
    result = lerp(nxy0, nxy1, w)

    if np.ndim(result) == 0:
        return float(result)
    return result


# ------------------------------------------------------------------------
# fBm + domain warp
# ------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class NoiseParams:
    frequency: float
    octaves: int
    lacunarity: float
    gain: float
    perm: np.ndarray

    @classmethod
    def from_config(cls, config) -> "NoiseParams":
        """
        Derive the noise parameters of a GenerationConfig. Both the volume
        generator and the tileability verifier go through here.
        """
        if int(config.octaves) < 1:
            raise ConfigurationError(f"octaves must be >= 1, got {config.octaves}")
        return cls(
            frequency=config.frequency,
            octaves=int(config.octaves),
            lacunarity=config.lacunarity,
            gain=config.gain,
            perm=build_perm_table(config.seed),
        )


def octave_periods(params: NoiseParams) -> List[int]:
    """
    Integer wrap period of every octave: the running frequency
    frequency * lacunarity**i rounded half-up, at least 1. Only the wrap uses
    it; samples are still taken at the unrounded frequency.
    """
    periods = []
    freq = float(params.frequency)
    for i in range(params.octaves):
        if not math.isfinite(freq):
            raise ConfigurationError(
                f"octave {i} frequency overflows (frequency={params.frequency}, lacunarity={params.lacunarity})"
            )
        periods.append(max(1, math.floor(freq + 0.5)))
        freq *= params.lacunarity
    return periods


def fbm3d(x, y, z, params: NoiseParams):
    """
    Fractal Brownian Motion over periodic Perlin noise.

    Coordinates are normalized to the unit cube. Octave i samples the kernel at
    the point scaled by the running frequency frequency * lacunarity**i and
    wraps with that frequency rounded to an integer period. The sum tiles
    exactly on [0, 1) when every running frequency is an integer; otherwise the
    seam shows up as a measured error in verify_tileability.

    Parameters:
    -----------
    x, y, z : float or np.ndarray
        Normalized coordinates.
    params  : NoiseParams
        Frequency, octaves, lacunarity, gain and permutation table.

    Returns:
    --------
    float or np.ndarray
        Sum of octaves divided by the summed amplitudes, approximately in [-1, 1].
    """
    if params.octaves < 1:
        raise ConfigurationError(f"octaves must be >= 1, got {params.octaves}")

    value = 0.0
    amplitude = 1.0
    max_amplitude = 0.0
    abs_amplitude = 0.0

    freq = float(params.frequency)
    for period in octave_periods(params):
        value = value + amplitude * pnoise3d(
            x * freq, y * freq, z * freq,
            period, period, period,
            params.perm
        )
        max_amplitude += amplitude
        abs_amplitude += abs(amplitude)
        amplitude *= params.gain
        freq *= params.lacunarity

    if abs(max_amplitude) < MIN_AMPLITUDE_SUM:
        # signed amplitudes cancel out (negative gain); fall back to magnitudes
        logger.debug(f"Degenerate amplitude sum {max_amplitude}, normalizing by {abs_amplitude}")
        max_amplitude = abs_amplitude

    return value / max_amplitude


def domain_warp(x, y, z, warp_strength: float, params: NoiseParams) -> Tuple:
    """
    Displace coordinates by three decorrelated fBm lookups.

    The displaced coordinates are not periodic any more: the offset lookups are
    not equal at 0 and 1, so warped volumes only tile approximately.

    Returns:
    --------
    tuple
        (x, y, z) warped; the inputs unchanged when warp_strength is 0.
    """
    if warp_strength == 0:
        return x, y, z

    ox, oy, oz = WARP_OFFSETS
    wx = fbm3d(x + ox, y + ox, z + ox, params)
    wy = fbm3d(x + oy, y + oy, z + oy, params)
    wz = fbm3d(x + oz, y + oz, z + oz, params)

    return (
        x + wx * warp_strength,
        y + wy * warp_strength,
        z + wz * warp_strength,
    )
