#!/usr/bin/env python3
"""
Storage Module

Writes generation results to disk: the 16-bit PNG atlas, the RAW volume and
the JSON metadata record, and builds the output filenames.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Optional

from .errors import EncodingError

logger = logging.getLogger(__name__)


class ExportFormat(Enum):
    PNG = "png"
    RAW = "raw"
    JSON = "json"


ALL_FORMATS = [fmt.value for fmt in ExportFormat]


def build_output_filename(resolution: int, ext: str, prefix: str = "noise3d") -> str:
    """e.g. build_output_filename(64, "png") -> "noise3d_64.png"."""
    return f"{prefix}_{resolution}.{ext.lstrip('.')}"


def _prepare(output_dir, resolution: int, ext: str, prefix: str) -> Path:
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    return directory / build_output_filename(resolution, ext, prefix)


def save_png(result, output_dir, prefix: str = "noise3d", compress=None, level: int = 9) -> Path:
    """Encode the atlas as a 16-bit grayscale PNG and write it."""
    path = _prepare(output_dir, result.resolution, ExportFormat.PNG.value, prefix)
    data = result.png(compress=compress, level=level)
    path.write_bytes(data)
    logger.debug(f"Saved PNG atlas to {path} ({len(data)} bytes)")
    return path


def save_raw(result, output_dir, prefix: str = "noise3d") -> Path:
    """Write the volume as flat little-endian uint16, 2 * N**3 bytes, no header."""
    path = _prepare(output_dir, result.resolution, ExportFormat.RAW.value, prefix)
    data = result.raw16()
    path.write_bytes(data)
    logger.debug(f"Saved RAW volume to {path} ({len(data)} bytes)")
    return path


def save_metadata(result, output_dir, prefix: str = "noise3d") -> Path:
    path = _prepare(output_dir, result.resolution, ExportFormat.JSON.value, prefix)
    with open(path, "w") as f:
        json.dump(result.metadata, f, indent=2)
    logger.debug(f"Saved metadata to {path}")
    return path


def export_all(result, output_dir, formats: Optional[Iterable[str]] = None,
               prefix: str = "noise3d", compress=None, level: int = 9) -> Dict[str, Path]:
    """
    Write every requested format. RAW and JSON do not depend on the PNG encoder:
    if PNG encoding fails the other files are still written and the
    EncodingError is re-raised afterwards.

    Returns:
    --------
    dict
        Format name -> written path.
    """
    formats = list(formats) if formats is not None else list(ALL_FORMATS)
    unknown = [fmt for fmt in formats if fmt not in ALL_FORMATS]
    if unknown:
        raise ValueError(f"Unknown export format(s): {', '.join(unknown)}")

    written: Dict[str, Path] = {}
    png_error: Optional[EncodingError] = None

    if ExportFormat.RAW.value in formats:
        written[ExportFormat.RAW.value] = save_raw(result, output_dir, prefix)
    if ExportFormat.JSON.value in formats:
        written[ExportFormat.JSON.value] = save_metadata(result, output_dir, prefix)
    if ExportFormat.PNG.value in formats:
        try:
            written[ExportFormat.PNG.value] = save_png(result, output_dir, prefix, compress=compress, level=level)
        except EncodingError as e:
            logger.error(f"PNG export failed, other formats were written: {e}")
            png_error = e

    for fmt, path in written.items():
        logger.info(f"Wrote {fmt.upper()}: {path}")

    if png_error is not None:
        raise png_error
    return written
