"""Tests for image decoding and preparation."""

import base64
import hashlib
import io

import pytest
from PIL import Image

from divemetrics.config.settings import ImageConfig
from divemetrics.ingestion.errors import UnsupportedImageFormat
from divemetrics.ingestion.images import decode_image_payload, prepare_image


def _encode(fmt: str, size=(64, 48), mode="RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color=0).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def config():
    return ImageConfig()


class TestDecodePayload:
    def test_raw_bytes_pass_through(self):
        assert decode_image_payload(b"abc") == (b"abc", None)

    def test_plain_base64(self):
        assert decode_image_payload(base64.b64encode(b"abc").decode()) == (b"abc", None)

    def test_data_url(self):
        data, mime = decode_image_payload("data:image/png;base64," + base64.b64encode(b"abc").decode())
        assert data == b"abc"
        assert mime == "image/png"

    def test_invalid_base64(self):
        with pytest.raises(UnsupportedImageFormat):
            decode_image_payload("not base64 at all!!")


class TestPrepareImage:
    def test_png_reencoded_as_jpeg(self, config):
        original = _encode("PNG")
        prepared = prepare_image(original, config)
        assert prepared.mime_type == "image/jpeg"
        assert prepared.original_format == "PNG"
        assert prepared.data[:2] == b"\xff\xd8"
        assert prepared.source_image_id == hashlib.sha256(original).hexdigest()

    def test_large_image_downscaled_keeping_aspect(self, config):
        prepared = prepare_image(_encode("JPEG", size=(4000, 3000)), config)
        assert (prepared.width, prepared.height) == (1440, 1080)

    def test_small_image_not_enlarged(self, config):
        prepared = prepare_image(_encode("JPEG", size=(320, 240)), config)
        assert (prepared.width, prepared.height) == (320, 240)

    def test_rgba_png_accepted(self, config):
        prepared = prepare_image(_encode("PNG", mode="RGBA"), config)
        assert prepared.mime_type == "image/jpeg"

    def test_data_url_payload(self, config):
        payload = "data:image/png;base64," + base64.b64encode(_encode("PNG")).decode()
        assert prepare_image(payload, config, source_image_id="photo-1").source_image_id == "photo-1"

    def test_gif_rejected(self, config):
        with pytest.raises(UnsupportedImageFormat):
            prepare_image(_encode("GIF", mode="P"), config)

    def test_garbage_rejected(self, config):
        with pytest.raises(UnsupportedImageFormat):
            prepare_image(b"definitely not an image", config)

    def test_empty_rejected(self, config):
        with pytest.raises(UnsupportedImageFormat):
            prepare_image(b"", config)

    def test_oversized_rejected(self):
        with pytest.raises(UnsupportedImageFormat):
            prepare_image(_encode("PNG"), ImageConfig(max_bytes=16))
