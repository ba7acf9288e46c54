"""Image optimizer service.

Provides a small OOP wrapper around Pillow that shrinks an uploaded image to
fit within a bounding box and re-encodes it as WebP for the public site.

Public class: `ImageOptimizer`

Example:
    optimizer = ImageOptimizer(max_size=(1600, 1600))
    webp_bytes = optimizer.optimize(raw_bytes)
"""
from __future__ import annotations

import io
from typing import Tuple

from PIL import Image, ImageOps


class ImageOptimizer:
    """Resize and transcode raw image bytes to WebP.

    Images already inside `max_size` keep their dimensions; larger ones are
    scaled down preserving aspect ratio. EXIF orientation is applied before
    resizing so phone photos are not stored sideways.

    Args:
        max_size: Maximum width and height. Defaults to (1600, 1600).
        quality: WebP quality passed to Pillow.
    """

    extension = ".webp"

    def __init__(self, max_size: Tuple[int, int] = (1600, 1600), quality: int = 82):
        self.max_size = max_size
        self.quality = quality

    def optimize(self, data: bytes) -> bytes:
        """Return WebP-encoded bytes for `data`.

        Raises:
            ValueError: If the bytes cannot be opened as an image.
        """
        if not data:
            raise ValueError("Image bytes are required.")
        try:
            src = Image.open(io.BytesIO(data))
            src.load()
        except Exception as exc:
            raise ValueError("Downloaded bytes are not a supported image format") from exc

        src = ImageOps.exif_transpose(src)
        if src.mode not in ("RGB", "RGBA"):
            src = src.convert("RGBA")

        src.thumbnail(self.max_size, Image.LANCZOS)

        out_io = io.BytesIO()
        src.save(out_io, format="WEBP", quality=self.quality, method=4)
        return out_io.getvalue()
