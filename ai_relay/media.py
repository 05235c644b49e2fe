"""Base64, data URL and image type helpers."""

from __future__ import annotations

import base64
import binascii
from typing import Optional, Tuple

DEFAULT_IMAGE_MIME = "image/jpeg"

# Prefixes of the base64 text, so no decoding is needed to sniff.
_BASE64_SIGNATURES = (
    ("iVBORw0KGgo", "image/png"),
    ("/9j/", "image/jpeg"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
)

_BYTE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}


def split_data_url(value: str) -> Tuple[Optional[str], str]:
    """Return ``(mime, payload)``; mime is None when ``value`` is not a data URL."""
    if not value.startswith("data:") or "," not in value:
        return None, value
    header, payload = value[5:].split(",", 1)
    mime = header.split(";", 1)[0].strip() or None
    return mime, payload


def sniff_base64_mime(payload: str) -> Optional[str]:
    for prefix, mime in _BASE64_SIGNATURES:
        if payload.startswith(prefix):
            return mime
    return None


def sniff_bytes_mime(data: bytes) -> Optional[str]:
    for prefix, mime in _BYTE_SIGNATURES:
        if data.startswith(prefix):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def decode_base64(payload: str) -> bytes:
    """Decode base64 text, tolerating whitespace and missing padding.

    Raises ValueError on anything that is not base64.
    """
    compact = "".join(payload.split())
    if not compact:
        raise ValueError("empty base64 payload")
    compact += "=" * (-len(compact) % 4)
    try:
        return base64.b64decode(compact, validate=True)
    except binascii.Error as exc:
        raise ValueError(str(exc)) from exc


def decode_image(value: str, name: str) -> Tuple[str, bytes, str]:
    """Decode a bare base64 string or data URL into a multipart file tuple."""
    mime, payload = split_data_url(value.strip())
    data = decode_base64(payload)
    mime = mime or sniff_base64_mime(payload.strip()) or sniff_bytes_mime(data) or "image/png"
    return f"{name}.{_EXTENSIONS.get(mime, 'png')}", data, mime


def image_file(data: bytes, name: str, content_type: Optional[str] = None) -> Tuple[str, bytes, str]:
    mime = content_type.split(";", 1)[0].strip() if content_type else ""
    if not mime.startswith("image/"):
        mime = sniff_bytes_mime(data) or "image/png"
    return f"{name}.{_EXTENSIONS.get(mime, 'png')}", data, mime


def to_data_url(value: str, mime: str = DEFAULT_IMAGE_MIME) -> str:
    trimmed = value.strip()
    if trimmed.startswith("data:"):
        return trimmed
    return f"data:{mime};base64,{trimmed}"
