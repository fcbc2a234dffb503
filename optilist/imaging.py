"""Listing image processing: square canvas compositing, watermark, data URI codec."""

import base64
import binascii
import io
import os
import re
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image

CANVAS_SIZE = 1600
JPEG_QUALITY = 95
WATERMARK_PADDING = 20
# Watermark width as a fraction of the canvas
WATERMARK_SCALE = 0.25

WATERMARK_PATH = os.getenv("WATERMARK_PATH", "")

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]+)*?);base64,(?P<data>.*)$", re.S)


def decode_data_uri(uri: str) -> Tuple[str, bytes]:
    """
    Split a base64 data URI into (mime type, bytes).

    Raises ValueError for anything that is not a base64 data URI or whose
    payload does not decode.
    """
    if not isinstance(uri, str):
        raise ValueError("data URI must be a string")
    match = _DATA_URI.match(uri.strip())
    if not match:
        raise ValueError("not a base64 data URI")
    mime = (match.group("mime") or "application/octet-stream").lower()
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64 payload: {e}") from e
    if not data:
        raise ValueError("empty payload")
    return mime, data


def encode_data_uri(data: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def load_watermark(path: Union[str, Path, None] = None) -> Optional[Image.Image]:
    """Open the watermark image, or None when no watermark is configured."""
    path = path if path is not None else WATERMARK_PATH
    if not path or not Path(path).exists():
        return None
    with Image.open(path) as img:
        return img.convert("RGBA")


def composite_square(raw: bytes, watermark: Optional[Image.Image] = None, size: int = CANVAS_SIZE) -> Image.Image:
    """
    Fit an image inside a white size×size canvas without distortion, centered.
    The watermark, if any, goes in the bottom-right corner at a quarter of the width.
    """
    with Image.open(io.BytesIO(raw)) as src:
        img = src.convert("RGBA")

    scale = min(size / img.width, size / img.height)
    draw_w = max(1, round(img.width * scale))
    draw_h = max(1, round(img.height * scale))
    img = img.resize((draw_w, draw_h), Image.LANCZOS)

    canvas = Image.new("RGB", (size, size), (255, 255, 255))
    canvas.paste(img, ((size - draw_w) // 2, (size - draw_h) // 2), img)

    if watermark is not None:
        mark_w = int(size * WATERMARK_SCALE)
        mark_h = max(1, round(watermark.height / watermark.width * mark_w))
        mark = watermark.resize((mark_w, mark_h), Image.LANCZOS)
        position = (size - mark_w - WATERMARK_PADDING, size - mark_h - WATERMARK_PADDING)
        canvas.paste(mark, position, mark)

    return canvas


def to_jpeg_data_uri(img: Image.Image, quality: int = JPEG_QUALITY) -> str:
    if img.mode != "RGB":
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return encode_data_uri(buf.getvalue(), "image/jpeg")


def process_listing_image(raw: bytes, watermark: Optional[Image.Image] = None) -> str:
    """Composite onto the listing canvas and export as a JPEG data URI."""
    return to_jpeg_data_uri(composite_square(raw, watermark))
