"""Binary header sniffing for PNG / JPEG / WEBP.

Dimensions are read straight from the container headers; nothing is decoded.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from ..config import ValidatorLimits

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}

# SOFn markers carry the frame size; C4 (DHT), C8 (JPG) and CC (DAC) share the range but do not.
_JPEG_SOF_MARKERS = frozenset(range(0xC0, 0xD0)) - {0xC4, 0xC8, 0xCC}
# Markers without a length field.
_JPEG_STANDALONE = frozenset([0x01, *range(0xD0, 0xD8)])


@dataclass
class ImageValidation:
    valid: bool
    width: Optional[int] = None
    height: Optional[int] = None
    content_type: Optional[str] = None
    file_size: int = 0
    error: Optional[str] = None

    @property
    def extension(self) -> str:
        return CONTENT_TYPE_EXTENSIONS.get(self.content_type or "", "bin")


def _png_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    if len(data) < 24 or data[12:16] != b"IHDR":
        return None
    width, height = struct.unpack(">II", data[16:24])
    return width, height


def _jpeg_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    offset = 2
    size = len(data)
    while offset + 4 <= size:
        if data[offset] != 0xFF:
            return None
        # Fill bytes: any number of 0xFF may precede a marker.
        while offset + 1 < size and data[offset + 1] == 0xFF:
            offset += 1
        if offset + 1 >= size:
            return None
        marker = data[offset + 1]
        if marker in _JPEG_STANDALONE:
            offset += 2
            continue
        if marker in (0xD8, 0xD9, 0xDA):
            # Restart of image, end of image or start of scan before any frame header.
            return None
        if offset + 4 > size:
            return None
        (seg_len,) = struct.unpack(">H", data[offset + 2:offset + 4])
        if seg_len < 2:
            return None
        if marker in _JPEG_SOF_MARKERS:
            if offset + 9 > size:
                return None
            height, width = struct.unpack(">HH", data[offset + 5:offset + 9])
            return width, height
        offset += 2 + seg_len
    return None


def _webp_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    if len(data) < 16:
        return None
    chunk = data[12:16]
    if chunk == b"VP8 ":
        if len(data) < 30 or data[23:26] != b"\x9d\x01\x2a":
            return None
        w, h = struct.unpack("<HH", data[26:30])
        return w & 0x3FFF, h & 0x3FFF
    if chunk == b"VP8L":
        if len(data) < 25 or data[20] != 0x2F:
            return None
        (bits,) = struct.unpack("<I", data[21:25])
        return (bits & 0x3FFF) + 1, ((bits >> 14) & 0x3FFF) + 1
    if chunk == b"VP8X":
        if len(data) < 30:
            return None
        w = int.from_bytes(data[24:27], "little") + 1
        h = int.from_bytes(data[27:30], "little") + 1
        return w, h
    return None


def sniff_dimensions(data: bytes) -> Optional[Tuple[str, int, int]]:
    """Return (content_type, width, height) from the header, or None.

    None covers both unknown signatures and truncated/corrupt headers.
    """
    if not data:
        return None
    if data.startswith(PNG_SIGNATURE):
        dims = _png_dimensions(data)
        return ("image/png", *dims) if dims else None
    if data[:2] == b"\xff\xd8":
        dims = _jpeg_dimensions(data)
        return ("image/jpeg", *dims) if dims else None
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        dims = _webp_dimensions(data)
        return ("image/webp", *dims) if dims else None
    return None


def validate_image(data: bytes, limits: Optional[ValidatorLimits] = None) -> ImageValidation:
    """Accept or reject downloaded bytes as a usable reference image.

    Byte-size and pixel thresholds are inclusive: a payload of exactly
    `min_bytes` or exactly `min_dimension` pixels wide passes.
    """
    limits = limits or ValidatorLimits()
    size = len(data or b"")
    if size < limits.min_bytes:
        return ImageValidation(False, file_size=size, error=f"File too small: {size} bytes (min {limits.min_bytes})")
    if size > limits.max_bytes:
        return ImageValidation(False, file_size=size, error=f"File too large: {size} bytes (max {limits.max_bytes})")

    sniffed = sniff_dimensions(data)
    if sniffed is None:
        return ImageValidation(False, file_size=size, error="Unrecognized or corrupt image header")
    content_type, width, height = sniffed

    if width < limits.min_dimension or height < limits.min_dimension:
        return ImageValidation(
            False,
            width=width,
            height=height,
            content_type=content_type,
            file_size=size,
            error=f"Image too small: {width}x{height} (min {limits.min_dimension}x{limits.min_dimension})",
        )
    return ImageValidation(True, width=width, height=height, content_type=content_type, file_size=size)
