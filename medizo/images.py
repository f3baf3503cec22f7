"""
Compression of uploaded profile images, clinic logos and signatures.
"""

from __future__ import annotations

import io
import logging

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_DIMENSION = 800
SIGNATURE_WIDTH = 400
JPEG_QUALITY = 70


def compress_image(data: bytes, mime_type: str) -> tuple[bytes, str]:
    """
    Shrink an upload so the longest side is at most 800px.

    PNG input stays PNG (transparency); everything else is re-encoded as
    JPEG. Returns ``(bytes, mime_type)``; undecodable input is returned as-is.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.width > MAX_DIMENSION or img.height > MAX_DIMENSION:
                img.thumbnail((MAX_DIMENSION, MAX_DIMENSION))
            buf = io.BytesIO()
            if mime_type == "image/png":
                img.save(buf, format="PNG", optimize=True)
                return buf.getvalue(), "image/png"
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(buf, format="JPEG", quality=JPEG_QUALITY, optimize=True)
            return buf.getvalue(), "image/jpeg"
    except (UnidentifiedImageError, OSError) as e:
        logger.error("Image compression error: %s", e)
        return data, mime_type


def prepare_signature(data: bytes) -> bytes:
    """Resize a signature to at most 400px wide and store it as PNG."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.width > SIGNATURE_WIDTH:
                height = max(1, round(img.height * SIGNATURE_WIDTH / img.width))
                img = img.resize((SIGNATURE_WIDTH, height))
            buf = io.BytesIO()
            img.save(buf, format="PNG", optimize=True)
            return buf.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        logger.error("Error processing signature image: %s", e)
        compressed, _ = compress_image(data, "image/png")
        return compressed
