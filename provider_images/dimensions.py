"""Read image dimensions from the first few KB of a PNG, GIF, JPEG or WebP file."""

from __future__ import annotations

import struct
from typing import NamedTuple, Optional


class Dimensions(NamedTuple):
    width: int
    height: int


PNG_SIGNATURE = b"\x89PNG"
GIF_SIGNATURE = b"GIF"
JPEG_SIGNATURE = b"\xff\xd8"

_JPEG_SOF_MARKERS = (0xC0, 0xC2)  # baseline, progressive
_JPEG_EOI = 0xD9


def _png(buf: bytes) -> Optional[Dimensions]:
    # IHDR is always the first chunk: width/height right after its type tag
    if len(buf) < 24:
        return None
    width, height = struct.unpack_from(">II", buf, 16)
    return Dimensions(width, height)


def _gif(buf: bytes) -> Optional[Dimensions]:
    if len(buf) < 10:
        return None
    width, height = struct.unpack_from("<HH", buf, 6)
    return Dimensions(width, height)


def _jpeg(buf: bytes) -> Optional[Dimensions]:
    offset = 2
    while offset + 9 <= len(buf):
        if buf[offset] != 0xFF:
            return None
        marker = buf[offset + 1]
        if marker in _JPEG_SOF_MARKERS:
            height, width = struct.unpack_from(">HH", buf, offset + 5)
            return Dimensions(width, height)
        if marker == _JPEG_EOI:
            return None
        if 0xD0 <= marker <= 0xD7:
            # RSTn markers have no length field
            offset += 2
            continue
        (segment_length,) = struct.unpack_from(">H", buf, offset + 2)
        offset += 2 + segment_length
    return None


def _webp(buf: bytes) -> Optional[Dimensions]:
    chunk = buf[12:16]
    if chunk == b"VP8 " and len(buf) >= 30:
        width, height = struct.unpack_from("<HH", buf, 26)
        return Dimensions(width & 0x3FFF, height & 0x3FFF)
    if chunk == b"VP8L" and len(buf) >= 25:
        (bits,) = struct.unpack_from("<I", buf, 21)
        return Dimensions((bits & 0x3FFF) + 1, ((bits >> 14) & 0x3FFF) + 1)
    return None


def parse_dimensions(buf: bytes) -> Optional[Dimensions]:
    """
    Return (width, height) for a PNG, GIF, JPEG or WebP byte prefix.

    Returns None when the format is not recognised or the prefix is too short
    to contain the size fields. Never raises.
    """
    if len(buf) < 8:
        return None

    if buf[:4] == PNG_SIGNATURE:
        return _png(buf)
    if buf[:3] == GIF_SIGNATURE:
        return _gif(buf)
    if buf[:2] == JPEG_SIGNATURE:
        return _jpeg(buf)
    if buf[:4] == b"RIFF" and buf[8:12] == b"WEBP":
        return _webp(buf)
    return None
