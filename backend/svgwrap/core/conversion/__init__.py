"""Image-to-SVG encoding."""

from .svg_encoder import (
    EncodedImage,
    Encoder,
    SvgEncoder,
    call_encoder,
    with_deadline,
)

__all__ = [
    "EncodedImage",
    "Encoder",
    "SvgEncoder",
    "call_encoder",
    "with_deadline",
]
