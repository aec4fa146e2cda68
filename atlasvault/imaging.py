# -*- coding: utf-8 -*-
"""Image codec helpers (Pillow).

Photos are re-encoded as JPEG before storage, signatures as PNG so strokes
stay lossless. Any decode/encode failure surfaces as ``EncodeError``.
"""

from __future__ import annotations

from io import BytesIO
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import EncodeError


def open_image(image_bytes: bytes) -> Image.Image:
    if not image_bytes:
        raise EncodeError("empty image payload")
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise EncodeError(f"cannot decode image: {exc}") from exc
    # Camera output carries orientation in EXIF; bake it in before re-encoding.
    return ImageOps.exif_transpose(img)


def encode_jpeg(image_bytes: bytes, quality: int = 95) -> bytes:
    img = open_image(image_bytes)
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        # JPEG has no alpha; flatten onto white.
        rgba = img.convert("RGBA")
        flat = Image.new("RGB", rgba.size, (255, 255, 255))
        flat.paste(rgba, mask=rgba.getchannel("A"))
        img = flat
    elif img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    buf = BytesIO()
    try:
        img.save(buf, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise EncodeError(f"cannot encode JPEG: {exc}") from exc
    return buf.getvalue()


def encode_png(image_bytes: bytes) -> bytes:
    img = open_image(image_bytes)
    buf = BytesIO()
    try:
        img.save(buf, format="PNG")
    except (OSError, ValueError) as exc:
        raise EncodeError(f"cannot encode PNG: {exc}") from exc
    return buf.getvalue()


def image_size(image_bytes: bytes) -> Tuple[int, int]:
    return open_image(image_bytes).size
