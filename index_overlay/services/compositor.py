"""Alpha compositing primitives shared by the composite renderer.

All functions take and return Pillow images and never mutate their inputs. The
arithmetic is done with numpy on float64 copies and rounded half-up back to
8 bits, so results match the closed-form formulas exactly:

* opacity: ``alpha' = round(alpha * opacity)``
* mask: ``alpha'' = round(alpha' * mask / 255)``
* over: ``out = overlay * a + base * (1 - a)`` for an opaque base
"""

from __future__ import annotations

import io
from typing import Any, Iterable, Tuple

import numpy as np
from PIL import Image, ImageDraw

from ..models import DEFAULT_STROKE_COLOR, BoundingBox
from .errors import CompositeError
from .geometry import normalize_polygon, project_polygon

MIN_STROKE_WIDTH = 3
STROKE_WIDTH_DIVISOR = 300


def _as_rgba(image: Image.Image) -> Image.Image:
    return image if image.mode == "RGBA" else image.convert("RGBA")


def _round_to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)


def _require_same_size(first: Image.Image, second: Image.Image, what: str) -> None:
    if first.size != second.size:
        raise CompositeError(
            f"Cannot combine {what}: sizes differ ({first.size[0]}x{first.size[1]} "
            f"vs {second.size[0]}x{second.size[1]})."
        )


def decode_image(data: bytes, *, label: str = "image") -> Image.Image:
    """Decode encoded image bytes into an RGBA image."""

    if not data:
        raise CompositeError(f"The {label} is empty.")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except Exception as exc:
        raise CompositeError(f"The {label} could not be decoded: {exc}") from exc
    return _as_rgba(image)


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    _as_rgba(image).save(buffer, format="PNG")
    return buffer.getvalue()


def resize_to(raster: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Stretch ``raster`` to ``size`` without preserving the aspect ratio."""

    raster = _as_rgba(raster)
    if raster.size == tuple(size):
        return raster
    return raster.resize(tuple(size), Image.LANCZOS)


def apply_opacity(raster: Image.Image, opacity: float) -> Image.Image:
    opacity = min(max(float(opacity), 0.0), 1.0)
    pixels = np.array(_as_rgba(raster), dtype=np.uint8)
    pixels[..., 3] = _round_to_uint8(pixels[..., 3].astype(np.float64) * opacity)
    return Image.fromarray(pixels)


def apply_mask(raster: Image.Image, mask: Image.Image) -> Image.Image:
    """Scale the alpha channel by ``mask / 255``; colour channels are untouched."""

    raster = _as_rgba(raster)
    _require_same_size(raster, mask, "raster and mask")
    pixels = np.array(raster, dtype=np.uint8)
    weights = np.asarray(mask.convert("L"), dtype=np.float64) / 255.0
    pixels[..., 3] = _round_to_uint8(pixels[..., 3].astype(np.float64) * weights)
    return Image.fromarray(pixels)


def blend_over(base: Image.Image, overlay: Image.Image) -> Image.Image:
    """Porter-Duff "over": ``overlay`` on top of ``base``."""

    base = _as_rgba(base)
    overlay = _as_rgba(overlay)
    _require_same_size(base, overlay, "base and overlay")

    below = np.asarray(base, dtype=np.float64)
    above = np.asarray(overlay, dtype=np.float64)
    alpha_above = above[..., 3:4] / 255.0
    alpha_below = below[..., 3:4] / 255.0

    alpha_out = alpha_above + alpha_below * (1.0 - alpha_above)
    weighted = above[..., :3] * alpha_above + below[..., :3] * alpha_below * (1.0 - alpha_above)
    with np.errstate(divide="ignore", invalid="ignore"):
        colour = np.where(alpha_out > 0, weighted / alpha_out, 0.0)

    result = np.empty(below.shape, dtype=np.uint8)
    result[..., :3] = _round_to_uint8(colour)
    result[..., 3] = _round_to_uint8(alpha_out[..., 0] * 255.0)
    return Image.fromarray(result)


def default_stroke_width(width: int) -> int:
    return max(MIN_STROKE_WIDTH, int(round(width / STROKE_WIDTH_DIVISOR)))


def draw_polygon_outline(
    raster: Image.Image,
    polygon: Iterable[Any],
    bounds: BoundingBox,
    color: str = DEFAULT_STROKE_COLOR,
    stroke_width: int | None = None,
) -> Image.Image:
    """Stroke the closed polygon border on top of ``raster`` with round joins."""

    raster = _as_rgba(raster)
    width, height = raster.size
    if stroke_width is None:
        stroke_width = default_stroke_width(width)

    vertices = normalize_polygon(polygon)
    points = project_polygon(vertices, bounds, width, height)

    layer = Image.new("RGBA", raster.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    draw.line(points + [points[0]], fill=color, width=stroke_width, joint="curve")
    # ``joint`` only rounds interior vertices; close the seam at the first one.
    radius = stroke_width / 2.0
    first_x, first_y = points[0]
    draw.ellipse(
        (first_x - radius, first_y - radius, first_x + radius, first_y + radius),
        fill=color,
    )
    return blend_over(raster, layer)


def composite_layers(
    base: Image.Image, overlay: Image.Image, mask: Image.Image, opacity: float
) -> Image.Image:
    """Blend ``overlay`` over ``base`` at ``opacity``, only where ``mask`` is set."""

    masked = apply_mask(apply_opacity(overlay, opacity), mask)
    return blend_over(base, masked)
