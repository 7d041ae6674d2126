"""
atlas.py

Packs a density volume into a 2D slice atlas (16-bit big-endian samples, ready
for PNG encoding) or a flat little-endian RAW volume, and builds the metadata
record describing the atlas.
"""

import math
import logging
from dataclasses import dataclass
from typing import Dict, Any, Tuple

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

FORMAT_NAME = "3D Noise Atlas"
FORMAT_VERSION = "1.0"
SLICE_ORDER = "row-major, Z=0 at top-left, Z increases left-to-right then top-to-bottom"


@dataclass(frozen=True)
class AtlasLayout:
    tiles_x: int
    tiles_y: int
    atlas_width: int
    atlas_height: int
    total_tiles: int

    def tile_origin(self, slice_index: int, resolution: int) -> Tuple[int, int]:
        """Pixel (x, y) of the top-left corner of a slice's tile."""
        col = slice_index % self.tiles_x
        row = slice_index // self.tiles_x
        return col * resolution, row * resolution

    def to_dict(self) -> Dict[str, int]:
        return {
            "tilesX": self.tiles_x,
            "tilesY": self.tiles_y,
            "atlasWidth": self.atlas_width,
            "atlasHeight": self.atlas_height,
            "totalTiles": self.total_tiles,
        }


def compute_atlas_layout(resolution: int) -> AtlasLayout:
    """
    Near-square exact-fit tiling of N slices of N x N pixels.

    tiles_y is the largest divisor of N not above sqrt(N) and tiles_x = N / tiles_y,
    e.g. 64 -> 8 x 8, 128 -> 16 x 8, 17 -> 17 x 1.
    """
    if isinstance(resolution, bool) or int(resolution) != resolution or resolution < 1:
        raise ConfigurationError(f"resolution must be a positive integer, got {resolution!r}")
    n = int(resolution)

    tiles_y = 1
    for i in range(math.isqrt(n), 0, -1):
        if n % i == 0:
            tiles_y = i
            break
    tiles_x = n // tiles_y

    return AtlasLayout(
        tiles_x=tiles_x,
        tiles_y=tiles_y,
        atlas_width=tiles_x * n,
        atlas_height=tiles_y * n,
        total_tiles=tiles_x * tiles_y,
    )


def quantize16(values) -> np.ndarray:
    """Densities in [0, 1] to uint16 via round(d * 65535), clamped to [0, 65535]."""
    scaled = np.floor(np.asarray(values, dtype=np.float64) * 65535.0 + 0.5)
    return np.clip(scaled, 0, 65535).astype(np.uint16)


def _check_volume(volume: np.ndarray, resolution: int) -> np.ndarray:
    volume = np.asarray(volume)
    if volume.size != resolution ** 3:
        raise ConfigurationError(
            f"volume has {volume.size} samples, expected {resolution}^3 = {resolution ** 3}"
        )
    return volume.reshape(resolution, resolution, resolution)


def volume_to_atlas16(volume: np.ndarray, resolution: int) -> Tuple[bytes, AtlasLayout]:
    """
    Lay the slices of a volume out as tiles of one grayscale atlas.

    Slice s goes to tile (s mod tiles_x, s div tiles_x). Each pixel is written as
    a 16-bit big-endian sample; cells without a slice stay zero.

    Returns:
    --------
    tuple
        (atlas bytes of length width * height * 2, AtlasLayout)
    """
    layout = compute_atlas_layout(resolution)
    n = layout.atlas_width // layout.tiles_x
    slices = quantize16(_check_volume(volume, n))

    atlas = np.zeros((layout.atlas_height, layout.atlas_width), dtype=">u2")
    for s in range(n):
        x0, y0 = layout.tile_origin(s, n)
        atlas[y0:y0 + n, x0:x0 + n] = slices[s]

    logger.debug(
        f"Packed {n} slices into {layout.atlas_width}x{layout.atlas_height} atlas "
        f"({layout.tiles_x}x{layout.tiles_y} tiles)"
    )
    return atlas.tobytes(), layout


def volume_to_raw16(volume: np.ndarray, resolution: int) -> bytes:
    """Flat little-endian 16-bit samples in z * N * N + y * N + x order, no header."""
    flat = _check_volume(volume, resolution).reshape(-1)
    return quantize16(flat).astype("<u2").tobytes()


def read_atlas_slice(buffer: bytes, layout: AtlasLayout, resolution: int, slice_index: int) -> np.ndarray:
    """
    Decode slice s of an atlas buffer back to float densities ([y, x] array).
    """
    if not 0 <= slice_index < resolution:
        raise IndexError(f"slice {slice_index} out of range for resolution {resolution}")
    expected = layout.atlas_width * layout.atlas_height * 2
    if len(buffer) != expected:
        raise ValueError(f"atlas buffer has {len(buffer)} bytes, expected {expected}")

    atlas = np.frombuffer(buffer, dtype=">u2").reshape(layout.atlas_height, layout.atlas_width)
    x0, y0 = layout.tile_origin(slice_index, resolution)
    tile = atlas[y0:y0 + resolution, x0:x0 + resolution]
    return tile.astype(np.float64) / 65535.0


def generate_metadata(config, layout: AtlasLayout, verification=None) -> Dict[str, Any]:
    """
    Descriptive record of an atlas: layout, sample format, the noise parameters
    that produced it and import steps for Unreal Engine volume textures.
    """
    n = config.resolution
    params = config.to_dict()
    params.pop("resolution")

    metadata = {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "volumeResolution": n,
        "atlasWidth": layout.atlas_width,
        "atlasHeight": layout.atlas_height,
        "tilesX": layout.tiles_x,
        "tilesY": layout.tiles_y,
        "sliceCount": n,
        "sliceOrder": SLICE_ORDER,
        "bitDepth": 16,
        "colorType": "grayscale",
        "rawByteOrder": "little-endian",
        "noiseParams": params,
        "unrealImport": {
            "instructions": [
                "1. Import the PNG atlas into UE Content Browser",
                "2. Double-click the imported texture to open Texture Editor",
                "3. In the Details panel, find 'Volume Texture' section",
                f"4. Set 'Tile Size X' = {n}",
                f"5. Set 'Tile Size Y' = {n}",
                "6. Right-click the texture asset > Create Volume Texture",
                "7. Set compression to VectorDisplacementmap (HDR) or Grayscale for best quality",
                f"8. The resulting Volume Texture will be {n}x{n}x{n}",
            ]
        },
    }
    if verification is not None:
        metadata["tileability"] = {
            "status": verification.status,
            "maxError": verification.max_error,
        }
    return metadata
