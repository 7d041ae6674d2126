import io
import struct
import zlib
from unittest.mock import Mock

import numpy as np
import pytest
from PIL import Image

from noise_atlas.errors import EncodingError
from noise_atlas.png import (
    PNG_SIGNATURE,
    FAST_CRC_MIN,
    crc32,
    encode_png16,
    frame_scanlines,
    iter_chunks,
    png_chunk,
    table_crc32,
)


def make_buffer(width, height, seed=0):
    values = np.random.default_rng(seed).integers(0, 65536, size=(height, width), dtype=np.uint16)
    return values, values.astype(">u2").tobytes()


@pytest.mark.parametrize("data", [b"", b"IEND", b"123456789", bytes(range(256)) * 3])
def test_crc32_matches_zlib(data):
    assert crc32(data) == zlib.crc32(data)


def test_crc32_continues_running_checksum():
    assert crc32(b"IDAT" + b"payload") == crc32(b"payload", crc32(b"IDAT"))
    assert crc32(b"123456789") == 0xCBF43926


def test_large_inputs_agree_with_table_crc():
    data = np.random.default_rng(3).integers(0, 256, size=FAST_CRC_MIN + 17, dtype=np.uint8).tobytes()
    assert crc32(data) == table_crc32(data)
    # running checksum handed from the table path to the zlib path
    assert crc32(data, table_crc32(b"IDAT")) == table_crc32(b"IDAT" + data)


def test_iend_chunk_bytes():
    assert png_chunk(b"IEND", b"") == b"\x00\x00\x00\x00IEND\xaeB`\x82"


def test_png_chunk_rejects_bad_type():
    with pytest.raises(EncodingError):
        png_chunk(b"IHD", b"")


def test_frame_scanlines():
    framed = frame_scanlines(bytes(range(8)), 2, 2)
    assert framed == b"\x00" + bytes(range(4)) + b"\x00" + bytes(range(4, 8))


def test_frame_scanlines_length_mismatch():
    with pytest.raises(EncodingError):
        frame_scanlines(bytes(7), 2, 2)


def test_encode_png16_structure():
    width, height = 5, 3
    _, buffer = make_buffer(width, height)
    png = encode_png16(buffer, width, height)

    assert png.startswith(PNG_SIGNATURE)
    chunks = list(iter_chunks(png))
    assert [c[0] for c in chunks] == [b"IHDR", b"IDAT", b"IEND"]

    for chunk_type, data, stored_crc in chunks:
        assert stored_crc == zlib.crc32(chunk_type + data), f"CRC mismatch in {chunk_type!r}"

    ihdr = chunks[0][1]
    assert ihdr == struct.pack(">IIBBBBB", width, height, 16, 0, 0, 0, 0)
    assert zlib.decompress(chunks[1][1]) == frame_scanlines(buffer, width, height)
    assert chunks[2][1] == b""


def test_encode_png16_decodes_with_pillow():
    width, height = 64, 48
    values, buffer = make_buffer(width, height, seed=5)
    png = encode_png16(buffer, width, height)

    with Image.open(io.BytesIO(png)) as img:
        assert img.size == (width, height)
        assert img.format == "PNG"
        assert img.mode in ("I", "I;16", "I;16B")
        for x, y in [(0, 0), (63, 0), (10, 20), (63, 47)]:
            assert img.getpixel((x, y)) == int(values[y, x])


def test_encode_png16_uses_given_compressor():
    compress = Mock(side_effect=lambda data: zlib.compress(data, 1))
    _, buffer = make_buffer(4, 4)
    png = encode_png16(buffer, 4, 4, compress=compress)

    compress.assert_called_once_with(frame_scanlines(buffer, 4, 4))
    idat = [data for chunk_type, data, _ in iter_chunks(png) if chunk_type == b"IDAT"][0]
    assert idat == zlib.compress(frame_scanlines(buffer, 4, 4), 1)


def test_encode_png16_compressor_failure():
    def broken(data):
        raise zlib.error("out of memory")

    with pytest.raises(EncodingError) as excinfo:
        encode_png16(bytes(32), 4, 4, compress=broken)
    assert excinfo.value.stage == "png"


def test_encode_png16_compressor_returns_garbage():
    with pytest.raises(EncodingError):
        encode_png16(bytes(32), 4, 4, compress=lambda data: None)


def test_encode_png16_rejects_empty_image():
    with pytest.raises(EncodingError):
        encode_png16(b"", 0, 0)


def test_iter_chunks_rejects_non_png():
    with pytest.raises(EncodingError):
        list(iter_chunks(b"GIF89a"))


def test_iter_chunks_rejects_truncated():
    png = encode_png16(bytes(32), 4, 4)
    with pytest.raises(EncodingError):
        list(iter_chunks(png[:-6]))
