"""Pytest fixtures for svgwrap tests."""

import asyncio
import io
from typing import Iterable, List

import pytest
from PIL import Image

from svgwrap.core.batch.manager import BatchOrchestrator
from svgwrap.core.batch.models import ImageInput
from svgwrap.core.conversion.svg_encoder import EncodedImage
from svgwrap.core.exceptions import EncodeError, EncodeErrorKind
from svgwrap.services.batch_history_service import BatchHistoryService


def make_image_bytes(width: int = 4, height: int = 3, fmt: str = "PNG") -> bytes:
    """Render a tiny solid image in the given format."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 40, 40)).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeEncoder:
    """Async encoder double.

    Inputs are identified by their content. Contents in ``fail_on`` raise a
    decode failure, contents in ``gate_on`` block until :meth:`release`.
    """

    def __init__(
        self,
        fail_on: Iterable[bytes] = (),
        gate_on: Iterable[bytes] = (),
        delay: float = 0.0,
    ):
        self.fail_on = set(fail_on)
        self.gate_on = set(gate_on)
        self.delay = delay
        self.gate = asyncio.Event()
        self.calls: List[bytes] = []
        self.in_flight = 0
        self.peak = 0

    def release(self) -> None:
        self.gate.set()

    async def __call__(self, image_bytes: bytes, mime_type: str) -> EncodedImage:
        self.calls.append(image_bytes)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if image_bytes in self.gate_on:
                await self.gate.wait()
            if image_bytes in self.fail_on:
                raise EncodeError(
                    f"Cannot decode {image_bytes.decode()}",
                    kind=EncodeErrorKind.DECODE_FAILURE,
                )
            return EncodedImage(
                document=f"<svg>{image_bytes.decode()}</svg>", width=2, height=1
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def png_bytes():
    return make_image_bytes(4, 3, "PNG")


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes(8, 6, "JPEG")


@pytest.fixture
def svg_bytes():
    return (
        b'<svg xmlns="http://www.w3.org/2000/svg" width="120px" height="80">'
        b'<rect width="10" height="10"/></svg>'
    )


@pytest.fixture
def encoder_factory():
    return FakeEncoder


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def make_inputs():
    """Build PNG-typed inputs whose content is their own label."""

    def _make(*labels: str) -> List[ImageInput]:
        return [
            ImageInput(name=f"{label}.png", mime_type="image/png", content=label.encode())
            for label in labels
        ]

    return _make


@pytest.fixture
def orchestrator_factory():
    def _make(encoder, concurrency_limit: int = 2, **kwargs) -> BatchOrchestrator:
        return BatchOrchestrator(encoder, concurrency_limit=concurrency_limit, **kwargs)

    return _make


@pytest.fixture
def history_db_path(tmp_path):
    return str(tmp_path / "data" / "history.db")


@pytest.fixture
def history_service(history_db_path):
    return BatchHistoryService(db_path=history_db_path, record_size_estimate=1000)
