"""Image payload decoding and preparation for OCR/vision backends."""

from __future__ import annotations

import base64
import binascii
import hashlib
import io
import re
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from divemetrics.config.settings import ImageConfig
from divemetrics.ingestion.errors import UnsupportedImageFormat

_DATA_URL_RX = re.compile(r"^data:(?P<mime>image/[a-z0-9.+-]+);base64,", re.IGNORECASE)


@dataclass(frozen=True)
class PreparedImage:
    """An image re-encoded for a backend, plus where it came from."""

    data: bytes
    mime_type: str
    source_image_id: str
    original_format: str
    width: int
    height: int


def decode_image_payload(payload: bytes | str) -> tuple[bytes, str | None]:
    """Return (raw bytes, declared MIME type) for bytes, base64 or a data URL."""
    if isinstance(payload, bytes):
        return payload, None

    text = payload.strip()
    declared_mime: str | None = None
    match = _DATA_URL_RX.match(text)
    if match:
        declared_mime = match.group("mime").lower()
        text = text[match.end():]
    try:
        return base64.b64decode("".join(text.split()), validate=True), declared_mime
    except (binascii.Error, ValueError) as exc:
        raise UnsupportedImageFormat("image data is not valid base64") from exc


def prepare_image(
    payload: bytes | str,
    config: ImageConfig,
    source_image_id: str | None = None,
) -> PreparedImage:
    """Validate an upload and downscale it to a JPEG the backends accept.

    Raises:
        UnsupportedImageFormat: empty, oversized, undecodable, or not JPEG/PNG/WEBP.
    """
    data, _declared_mime = decode_image_payload(payload)
    if not data:
        raise UnsupportedImageFormat("image payload is empty")
    if len(data) > config.max_bytes:
        raise UnsupportedImageFormat(
            f"image is {len(data)} bytes, limit is {config.max_bytes} bytes"
        )

    try:
        with Image.open(io.BytesIO(data)) as opened:
            original_format = (opened.format or "").upper()
            if original_format not in config.allowed_formats:
                raise UnsupportedImageFormat(
                    f"unsupported image format: {original_format or 'unknown'}"
                )
            image = opened.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise UnsupportedImageFormat("image data could not be decoded") from exc

    # thumbnail() only ever shrinks and keeps the aspect ratio
    image.thumbnail((config.max_width, config.max_height))
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=config.jpeg_quality, optimize=True)

    return PreparedImage(
        data=out.getvalue(),
        mime_type="image/jpeg",
        source_image_id=source_image_id or hashlib.sha256(data).hexdigest(),
        original_format=original_format,
        width=image.width,
        height=image.height,
    )
