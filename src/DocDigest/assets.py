"""
Helpers for image assets after their bytes have been fetched.

Normalization names every image ``assets/images/<token>.bin`` because the real type
is unknown until download; ``apply_downloaded_asset`` fixes the extension and mime.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Optional

from .model import Asset

IMAGES_DIR = "assets/images"

_MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
}

_EXTENSION_MIMES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".bin": "application/octet-stream",
}


def guess_extension(content_type: Optional[str], data: bytes = b"") -> str:
    """Extension from the response content type, else from the leading bytes."""
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime in _MIME_EXTENSIONS:
            return _MIME_EXTENSIONS[mime]

    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return ".png"
    if data.startswith(b"\xff\xd8\xff"):
        return ".jpg"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ".webp"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return ".gif"
    head = data[:512].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return ".svg"
    return ".bin"


def apply_downloaded_asset(asset: Asset, data: bytes, content_type: Optional[str] = None) -> str:
    """Set the asset's final filename and mime from the downloaded bytes; returns the filename."""
    extension = guess_extension(content_type, data)
    stem = PurePosixPath(asset.filename).stem or asset.id
    asset.filename = f"{IMAGES_DIR}/{stem}{extension}"
    asset.mime = _EXTENSION_MIMES[extension]
    return asset.filename
