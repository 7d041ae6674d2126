"""
volume.py

Generates the N x N x N density volume from periodic fBm noise, applies the
density remap, and writes single-slice previews (PNG or TIFF).
"""

import os
import logging
from typing import Callable, Optional

import numpy as np
from PIL import Image

from .errors import ConfigurationError
from .noises import NoiseParams, domain_warp, fbm3d

logger = logging.getLogger(__name__)

ProgressSink = Callable[[float], None]


def apply_remap(d, config):
    """
    Density post-processing, applied in this exact order:
    threshold, contrast, brightness, clamp >= 0, gamma, clamp to [0, 1].

    Parameters:
    -----------
    d      : float or np.ndarray
        Density in [0, 1].
    config : GenerationConfig
        Supplies threshold, contrast, brightness and gamma.

    Returns:
    --------
    float or np.ndarray
        Remapped density in [0, 1].
    """
    scalar = np.ndim(d) == 0
    d = np.asarray(d, dtype=np.float64)

    d = np.where(d < config.threshold, 0.0, d)
    d = (d - 0.5) * config.contrast + 0.5
    d = d + config.brightness
    d = np.maximum(d, 0.0)
    if config.gamma != 1.0:
        d = np.power(d, config.gamma)
    d = np.clip(d, 0.0, 1.0)

    if scalar:
        return float(d)
    return d


def generate_slice(z: int, config, params: NoiseParams) -> np.ndarray:
    """
    Density values of slice z as an (N, N) float32 array indexed [y, x].
    """
    n = config.resolution
    inv_n = 1.0 / n
    coords = np.arange(n, dtype=np.float64) * inv_n
    ty, tx = np.meshgrid(coords, coords, indexing="ij")
    tz = np.full_like(tx, z * inv_n)

    sx, sy, sz = tx, ty, tz
    if config.warp_strength > 0:
        sx, sy, sz = domain_warp(tx, ty, tz, config.warp_strength, params)

    density = fbm3d(sx, sy, sz, params)
    density = density * 0.5 + 0.5
    density = apply_remap(density, config)
    return density.astype(np.float32)


def check_resolution(resolution) -> int:
    """The core accepts any N >= 1; anything else is rejected before work starts."""
    if isinstance(resolution, bool) or int(resolution) != resolution or resolution < 1:
        raise ConfigurationError(f"resolution must be a positive integer, got {resolution!r}")
    return int(resolution)


def generate_volume(config, on_progress: Optional[ProgressSink] = None) -> np.ndarray:
    """
    Generate a tileable density volume.

    Parameters:
    -----------
    config      : GenerationConfig
        Resolution, seed, noise and remap parameters.
    on_progress : callable or None
        Called with (z + 1) / N * 100 after each finished z-slice.

    Returns:
    --------
    np.ndarray
        Read-only flat float32 array of N**3 densities in [0, 1],
        index = z * N * N + y * N + x.
    """
    n = check_resolution(config.resolution)
    params = NoiseParams.from_config(config)

    logger.debug(
        f"Generating {n}^3 volume: seed={config.seed} frequency={config.frequency} "
        f"octaves={config.octaves} warp={config.warp_strength}"
    )

    volume = np.zeros((n, n, n), dtype=np.float32)
    for z in range(n):
        volume[z] = generate_slice(z, config, params)
        if on_progress:
            on_progress((z + 1) / n * 100)

    volume = volume.reshape(-1)
    volume.flags.writeable = False
    return volume


def volume_slice(volume: np.ndarray, resolution: int, z: int) -> np.ndarray:
    """2D [y, x] view of slice z of a flat volume."""
    if not 0 <= z < resolution:
        raise IndexError(f"slice {z} out of range for resolution {resolution}")
    return volume.reshape(resolution, resolution, resolution)[z]


def save_slice_preview(volume: np.ndarray, resolution: int, z: int, filename: str = "slice.png") -> str:
    """
    Save one slice (values in [0,1]) as an 8-bit grayscale image (PNG or TIFF).
    """
    plane = np.clip(volume_slice(volume, resolution, z), 0.0, 1.0)
    plane_8u = np.floor(plane * 255 + 0.5).astype(np.uint8)
    img = Image.fromarray(plane_8u)

    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    ext = os.path.splitext(filename)[1].lower()
    if ext in (".tif", ".tiff"):
        img.save(filename, format="TIFF")
    else:
        img.save(filename, format="PNG")

    if not os.path.exists(filename):
        raise IOError(f"File not found after saving: {filename}")

    logger.debug(f"Saved slice {z} preview to: {filename}")
    return filename
