"""
png.py

Minimal PNG writer for single-channel 16-bit grayscale images.

Only the DEFLATE step is delegated (to zlib by default, or any
`compress(bytes) -> bytes` callable producing a zlib stream); the signature,
chunk framing, CRC-32 and scanline filtering are done here.
"""

import struct
import zlib
import logging
from typing import Callable, Iterator, List, Optional, Tuple

import numpy as np

from .errors import EncodingError

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

BIT_DEPTH = 16
COLOR_TYPE_GRAYSCALE = 0

FAST_CRC_MIN = 1 << 16

Compressor = Callable[[bytes], bytes]


def _make_crc_table() -> List[int]:
    table = []
    for n in range(256):
        c = n
        for _ in range(8):
            if c & 1:
                c = 0xEDB88320 ^ (c >> 1)
            else:
                c >>= 1
        table.append(c)
    return table


CRC_TABLE = _make_crc_table()


def table_crc32(data: bytes, crc: int = 0) -> int:
    """CRC-32 as used by PNG and zlib; `crc` continues a running checksum."""
    c = crc ^ 0xFFFFFFFF
    for byte in data:
        c = CRC_TABLE[(c ^ byte) & 0xFF] ^ (c >> 8)
    return c ^ 0xFFFFFFFF


def crc32(data: bytes, crc: int = 0) -> int:
    """
    Same checksum as table_crc32. Inputs of FAST_CRC_MIN bytes or more (IDAT
    of large atlases) go through zlib.crc32, which uses the same table in C.
    """
    if len(data) >= FAST_CRC_MIN:
        return zlib.crc32(data, crc)
    return table_crc32(data, crc)


def png_chunk(chunk_type: bytes, data: bytes) -> bytes:
    """length (BE) + type + data + CRC-32 of type and data (BE)."""
    if len(chunk_type) != 4:
        raise EncodingError(f"chunk type must be 4 bytes, got {chunk_type!r}")
    chunk_len = struct.pack(">I", len(data))
    chunk_crc = struct.pack(">I", crc32(data, crc32(chunk_type)))
    return chunk_len + chunk_type + data + chunk_crc


def frame_scanlines(buffer: bytes, width: int, height: int, bytes_per_pixel: int = 2) -> bytes:
    """Prefix every row with filter type 0 (None)."""
    stride = width * bytes_per_pixel
    if len(buffer) != stride * height:
        raise EncodingError(
            f"buffer has {len(buffer)} bytes, expected {stride * height} for {width}x{height}"
        )
    rows = np.frombuffer(buffer, dtype=np.uint8).reshape(height, stride)
    framed = np.zeros((height, stride + 1), dtype=np.uint8)
    framed[:, 1:] = rows
    return framed.tobytes()


def encode_png16(buffer: bytes, width: int, height: int,
                 compress: Optional[Compressor] = None, level: int = 9) -> bytes:
    """
    Encode a 16-bit big-endian grayscale buffer as a PNG file.

    Parameters:
    -----------
    buffer   : bytes
        width * height * 2 bytes, rows top to bottom, high byte first.
    width, height : int
        Image size in pixels.
    compress : callable or None
        zlib-wrapped DEFLATE compressor; zlib.compress at `level` when None.

    Returns:
    --------
    bytes
        Signature, IHDR, one IDAT and IEND.
    """
    if width < 1 or height < 1:
        raise EncodingError(f"invalid image size {width}x{height}")

    raw = frame_scanlines(buffer, width, height, 2)

    if compress is None:
        def compress(data):
            return zlib.compress(data, level)

    try:
        compressed = compress(raw)
    except Exception as e:
        logger.error(f"Compression failed for {width}x{height} image: {e}")
        raise EncodingError(f"compressor failed: {e}") from e
    if not isinstance(compressed, (bytes, bytearray)):
        raise EncodingError(f"compressor returned {type(compressed).__name__}, expected bytes")

    ihdr = struct.pack(">IIBBBBB", width, height, BIT_DEPTH, COLOR_TYPE_GRAYSCALE, 0, 0, 0)

    png = b"".join([
        PNG_SIGNATURE,
        png_chunk(b"IHDR", ihdr),
        png_chunk(b"IDAT", bytes(compressed)),
        png_chunk(b"IEND", b""),
    ])
    logger.debug(f"Encoded {width}x{height} 16-bit PNG: {len(raw)} raw -> {len(png)} bytes")
    return png


def iter_chunks(data: bytes) -> Iterator[Tuple[bytes, bytes, int]]:
    """
    Walk the chunks of a PNG byte stream, yielding (type, data, stored_crc).
    """
    if not data.startswith(PNG_SIGNATURE):
        raise EncodingError("missing PNG signature")
    pos = len(PNG_SIGNATURE)
    while pos < len(data):
        if pos + 8 > len(data):
            raise EncodingError(f"truncated chunk header at offset {pos}")
        (length,) = struct.unpack(">I", data[pos:pos + 4])
        chunk_type = data[pos + 4:pos + 8]
        end = pos + 8 + length
        if end + 4 > len(data):
            raise EncodingError(f"truncated {chunk_type!r} chunk at offset {pos}")
        (stored_crc,) = struct.unpack(">I", data[end:end + 4])
        yield chunk_type, data[pos + 8:end], stored_crc
        pos = end + 4
