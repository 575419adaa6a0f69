"""Tests for the SVG wrapper encoder."""

import asyncio
import base64
import xml.etree.ElementTree as ET

import pytest

from svgwrap.core.conversion.svg_encoder import (
    EncodedImage,
    SvgEncoder,
    call_encoder,
    is_async_encoder,
    render_svg,
    to_data_uri,
    with_deadline,
)
from svgwrap.core.exceptions import EncodeError, EncodeErrorKind

SVG_NS = "{http://www.w3.org/2000/svg}"


@pytest.fixture
def encoder():
    return SvgEncoder()


class TestSvgEncoder:
    """Test measuring and wrapping images."""

    def test_png_is_wrapped_with_its_dimensions(self, encoder, png_bytes):
        result = encoder.encode(png_bytes, "image/png")

        assert (result.width, result.height) == (4, 3)
        root = ET.fromstring(result.document.encode("utf-8"))
        assert root.get("width") == "4"
        assert root.get("viewBox") == "0 0 4 3"
        image = root.find(f"{SVG_NS}image")
        assert image.get("href") == to_data_uri(png_bytes, "image/png")

    def test_embedded_data_round_trips(self, encoder, jpeg_bytes):
        result = encoder(jpeg_bytes, "image/jpeg")

        href = ET.fromstring(result.document.encode("utf-8")).find(f"{SVG_NS}image").get("href")
        prefix = "data:image/jpeg;base64,"
        assert href.startswith(prefix)
        assert base64.b64decode(href[len(prefix):]) == jpeg_bytes
        assert (result.width, result.height) == (8, 6)

    def test_jpg_alias_uses_registered_type(self, encoder, jpeg_bytes):
        result = encoder.encode(jpeg_bytes, "image/jpg")

        assert "data:image/jpeg;base64," in result.document

    def test_svg_input_measured_from_attributes(self, encoder, svg_bytes):
        result = encoder.encode(svg_bytes, "image/svg+xml")

        assert (result.width, result.height) == (120, 80)

    def test_svg_input_measured_from_viewbox(self, encoder):
        svg = b'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 32.4 16"/>'

        result = encoder.encode(svg, "image/svg+xml")

        assert (result.width, result.height) == (32, 16)

    def test_svg_without_size_fails(self, encoder):
        svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="100%"/>'

        with pytest.raises(EncodeError) as exc_info:
            encoder.encode(svg, "image/svg+xml")

        assert exc_info.value.kind == EncodeErrorKind.DECODE_FAILURE

    def test_malformed_svg_fails(self, encoder):
        with pytest.raises(EncodeError) as exc_info:
            encoder.encode(b"<svg", "image/svg+xml")

        assert exc_info.value.kind == EncodeErrorKind.DECODE_FAILURE

    def test_unsupported_format(self, encoder):
        with pytest.raises(EncodeError) as exc_info:
            encoder.encode(b"II*\x00", "image/tiff")

        assert exc_info.value.kind == EncodeErrorKind.UNSUPPORTED_FORMAT
        assert exc_info.value.error_code == "SVG101"

    def test_empty_content(self, encoder):
        with pytest.raises(EncodeError) as exc_info:
            encoder.encode(b"", "image/png")

        assert exc_info.value.kind == EncodeErrorKind.READ_FAILURE

    def test_corrupt_raster(self, encoder):
        with pytest.raises(EncodeError) as exc_info:
            encoder.encode(b"definitely not a png", "image/png")

        assert exc_info.value.kind == EncodeErrorKind.DECODE_FAILURE

    def test_restricted_types(self, png_bytes):
        encoder = SvgEncoder(supported_mime_types=["image/gif"])

        with pytest.raises(EncodeError):
            encoder.encode(png_bytes, "image/png")

    def test_render_svg_substitutes_every_placeholder(self):
        document = render_svg(10, 20, "data:image/png;base64,AAAA")

        assert "{" not in document
        assert 'width="10" height="20"' in document
        assert 'enable-background="new 0 0 10 20"' in document


class TestEncoderCalling:
    """Test sync/async dispatch and deadlines."""

    def test_is_async_encoder(self, encoder):
        async def async_encode(image_bytes, mime_type):
            pass

        assert is_async_encoder(async_encode)
        assert not is_async_encoder(encoder)

    @pytest.mark.asyncio
    async def test_call_encoder_sync(self, encoder, png_bytes):
        result = await call_encoder(encoder, png_bytes, "image/png")

        assert isinstance(result, EncodedImage)

    @pytest.mark.asyncio
    async def test_call_encoder_async(self, fake_encoder):
        result = await call_encoder(fake_encoder, b"label", "image/png")

        assert result.document == "<svg>label</svg>"

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self):
        async def slow(image_bytes, mime_type):
            await asyncio.sleep(5)

        encode = with_deadline(slow, 0.05)

        with pytest.raises(EncodeError) as exc_info:
            await encode(b"x", "image/png")

        assert exc_info.value.kind == EncodeErrorKind.READ_FAILURE
        assert exc_info.value.details["timeout_seconds"] == 0.05

    @pytest.mark.asyncio
    async def test_deadline_passes_result_through(self, encoder, png_bytes):
        encode = with_deadline(encoder, 5)

        result = await encode(png_bytes, "image/png")

        assert result.width == 4
