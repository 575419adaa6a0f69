"""Batch image-to-SVG wrapping with a persistent conversion history."""

__version__ = "0.1.0"
