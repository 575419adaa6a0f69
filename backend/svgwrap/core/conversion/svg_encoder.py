"""Wrap raster images into a minimal SVG document."""

import asyncio
import base64
import inspect
import io
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Protocol, Tuple, Union

from PIL import Image, UnidentifiedImageError

from svgwrap.core.constants import SUPPORTED_MIME_TYPES, SVG_TEMPLATE
from svgwrap.core.exceptions import EncodeError, EncodeErrorKind
from svgwrap.utils.logging import get_logger

logger = get_logger(__name__)

_LENGTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(px)?\s*$")


@dataclass(frozen=True)
class EncodedImage:
    """Result of a successful encode."""

    document: str
    width: int
    height: int


class Encoder(Protocol):
    """Anything that turns image bytes into an :class:`EncodedImage`.

    Implementations may be plain or ``async`` callables and signal failure by
    raising :class:`EncodeError`.
    """

    def __call__(
        self, image_bytes: bytes, mime_type: str
    ) -> Union[EncodedImage, Awaitable[EncodedImage]]: ...


def to_data_uri(image_bytes: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def render_svg(width: int, height: int, href: str) -> str:
    return SVG_TEMPLATE.format(width=width, height=height, href=href)


class SvgEncoder:
    """Measure an image and embed it in the SVG wrapper template.

    Raster formats are measured with Pillow; SVG inputs are measured from the
    root element's ``width``/``height`` or ``viewBox``.
    """

    def __init__(self, supported_mime_types: Optional[Iterable[str]] = None):
        self.supported_mime_types = frozenset(
            m.lower() for m in (supported_mime_types or SUPPORTED_MIME_TYPES)
        )

    def __call__(self, image_bytes: bytes, mime_type: str) -> EncodedImage:
        return self.encode(image_bytes, mime_type)

    def encode(self, image_bytes: bytes, mime_type: str) -> EncodedImage:
        mime_type = (mime_type or "").lower()
        if mime_type not in self.supported_mime_types:
            raise EncodeError(
                f"Unsupported image format: {mime_type or 'unknown'}",
                kind=EncodeErrorKind.UNSUPPORTED_FORMAT,
                details={"mime_type": mime_type},
            )
        if not image_bytes:
            raise EncodeError(
                "Image content is empty",
                kind=EncodeErrorKind.READ_FAILURE,
                details={"mime_type": mime_type, "size": 0},
            )

        if mime_type == "image/svg+xml":
            width, height = self._measure_svg(image_bytes)
        else:
            width, height = self._measure_raster(image_bytes)

        # image/jpg is not a registered type; browsers expect image/jpeg
        uri_type = "image/jpeg" if mime_type == "image/jpg" else mime_type
        document = render_svg(width, height, to_data_uri(image_bytes, uri_type))

        logger.debug(
            "Image wrapped",
            mime_type=mime_type,
            width=width,
            height=height,
            input_size=len(image_bytes),
        )
        return EncodedImage(document=document, width=width, height=height)

    def _measure_raster(self, image_bytes: bytes) -> Tuple[int, int]:
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                return img.size
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise EncodeError(
                f"Could not decode image: {e}",
                kind=EncodeErrorKind.DECODE_FAILURE,
                details={"size": len(image_bytes)},
            ) from e

    def _measure_svg(self, image_bytes: bytes) -> Tuple[int, int]:
        try:
            root = ET.fromstring(image_bytes)
        except ET.ParseError as e:
            raise EncodeError(
                f"Could not parse SVG: {e}",
                kind=EncodeErrorKind.DECODE_FAILURE,
                details={"mime_type": "image/svg+xml", "size": len(image_bytes)},
            ) from e

        width = _parse_length(root.get("width"))
        height = _parse_length(root.get("height"))
        if width is None or height is None:
            view_box = (root.get("viewBox") or "").replace(",", " ").split()
            if len(view_box) == 4:
                try:
                    width = width or round(float(view_box[2]))
                    height = height or round(float(view_box[3]))
                except ValueError:
                    pass

        if not width or not height:
            raise EncodeError(
                "SVG has no usable width/height or viewBox",
                kind=EncodeErrorKind.DECODE_FAILURE,
                details={"mime_type": "image/svg+xml"},
            )
        return width, height


def _parse_length(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = _LENGTH_RE.match(value)
    if not match:
        return None
    return round(float(match.group(1)))


def is_async_encoder(encoder: Callable) -> bool:
    return inspect.iscoroutinefunction(encoder) or inspect.iscoroutinefunction(
        getattr(encoder, "__call__", None)
    )


async def call_encoder(
    encoder: Callable, image_bytes: bytes, mime_type: str
) -> EncodedImage:
    """Invoke an encoder, moving synchronous ones onto a worker thread."""
    if is_async_encoder(encoder):
        return await encoder(image_bytes, mime_type)
    return await asyncio.to_thread(encoder, image_bytes, mime_type)


def with_deadline(
    encoder: Callable, timeout: float
) -> Callable[[bytes, str], Awaitable[EncodedImage]]:
    """Wrap an encoder so a single call fails after ``timeout`` seconds.

    Synchronous encoders run on a worker thread; the thread itself is not
    interrupted, only abandoned.
    """

    async def encode(image_bytes: bytes, mime_type: str) -> EncodedImage:
        try:
            return await asyncio.wait_for(
                call_encoder(encoder, image_bytes, mime_type), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise EncodeError(
                f"Encode timed out after {timeout:g}s",
                kind=EncodeErrorKind.READ_FAILURE,
                details={"mime_type": mime_type, "timeout_seconds": timeout},
            ) from e

    return encode
