# -*- coding: utf-8 -*-
"""Share/export — watermark a decrypted photo and hand it out as a temp PNG."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from uuid import uuid4

from PIL import Image, ImageDraw, ImageFont

from .errors import EncodeError, StoreIOError
from .imaging import open_image

_PAD = 12
_BOX_HEIGHT = 100


@dataclass(frozen=True)
class Watermark:
    provider: str
    clinic: str
    case_title: str

    def text(self) -> str:
        header = " - ".join(part for part in (self.provider, self.clinic) if part)
        lines = [header, self.case_title, "For patient use only"]
        return "\n".join(line for line in lines if line)


class ShareService:
    def __init__(self, export_dir: Path | None = None) -> None:
        self.export_dir = Path(export_dir or tempfile.gettempdir())

    def watermarked(self, image_bytes: bytes, wm: Watermark) -> Image.Image:
        base = open_image(image_bytes).convert("RGBA")
        width, height = base.size
        overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        top = max(0, height - _BOX_HEIGHT - _PAD)
        if width > 2 * _PAD and height > 2 * _PAD:
            box = (_PAD - 8, top - 8, width - _PAD + 8, height - _PAD + 8)
            draw.rounded_rectangle(box, radius=8, fill=(0, 0, 0, 90))
        font = ImageFont.load_default()
        text = wm.text()
        bbox = draw.multiline_textbbox((0, 0), text, font=font, align="right")
        text_width = bbox[2] - bbox[0]
        draw.multiline_text(
            (max(_PAD, width - _PAD - text_width), top),
            text,
            font=font,
            fill=(255, 255, 255, 255),
            align="right",
        )
        return Image.alpha_composite(base, overlay).convert("RGB")

    def write_temp_png(self, image: Image.Image) -> Path:
        buf = BytesIO()
        try:
            image.save(buf, format="PNG")
        except (OSError, ValueError) as exc:
            raise EncodeError(f"cannot encode export: {exc}") from exc
        path = self.export_dir / f"{uuid4()}.png"
        try:
            self.export_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(buf.getvalue())
        except OSError as exc:
            raise StoreIOError(f"cannot write export {path}: {exc}") from exc
        return path
