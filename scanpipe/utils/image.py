"""Pillow-backed rotation and TIFF conversion steps."""

from __future__ import annotations

from pathlib import Path

from PIL import Image

from scanpipe.utils.log_utils import logger


_RIGHT_ANGLES = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


def rotate_image(source: Path, destination: Path, degrees: int) -> Path:
    """Rotate ``source`` clockwise by ``degrees`` and write ``destination``."""
    degrees %= 360
    with Image.open(source) as image:
        image.load()
        image_format = image.format or "PPM"
        if degrees in _RIGHT_ANGLES:
            rotated = image.transpose(_RIGHT_ANGLES[degrees])
        elif degrees == 0:
            rotated = image.copy()
        else:
            # Pillow rotates counter-clockwise; pad with white paper.
            fill = 1 if image.mode == "1" else "white"
            rotated = image.rotate(-degrees, expand=True, fillcolor=fill)
        rotated.save(destination, format=image_format)
    logger.debug(f"Rotated {source.name} by {degrees} degrees -> {destination.name}")
    return destination


def convert_to_tiff(source: Path, destination: Path, *, mode: str, resolution: int) -> Path:
    """Write one TIFF page suitable for concatenation and PDF encoding.

    Lineart pages are stored bi-level with CCITT Group 4; gray and color
    pages keep their tones with lossless Deflate.
    """
    with Image.open(source) as image:
        if mode == "lineart":
            page = image if image.mode == "1" else image.convert("1")
            compression = "group4"
        elif mode == "gray":
            page = image if image.mode == "L" else image.convert("L")
            compression = "tiff_adobe_deflate"
        else:
            page = image if image.mode == "RGB" else image.convert("RGB")
            compression = "tiff_adobe_deflate"
        page.save(
            destination,
            format="TIFF",
            compression=compression,
            dpi=(resolution, resolution),
        )
    logger.debug(f"Converted {source.name} -> {destination.name} ({compression})")
    return destination


__all__ = ["convert_to_tiff", "rotate_image"]
