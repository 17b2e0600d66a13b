"""Browser-free fallback: blend the index thumbnail over the base thumbnail.

Both thumbnails must have been produced by the geospatial service for the
bounding box obtained from the polygon with the *same* padding percentage that
is passed here. The images carry no georeference, so a caller that requested
them with a different padding gets a silently misaligned overlay.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Tuple

from PIL import Image

from ..config import RenderSettings, load_settings
from ..models import DEFAULT_OPACITY, DEFAULT_PADDING_PERCENT, DEFAULT_STROKE_COLOR, RenderRequest
from .compositor import composite_layers, decode_image, draw_polygon_outline, resize_to
from .errors import CompositeError
from .geometry import bounding_box, normalize_polygon
from .imagery import fetch_image_bytes, fetch_source_images
from .rasterize import rasterize_polygon

logger = logging.getLogger(__name__)


def composite_index_overlay(
    base_image: bytes,
    overlay_image: bytes,
    polygon: Iterable[Any],
    *,
    opacity: float = DEFAULT_OPACITY,
    stroke_color: str = DEFAULT_STROKE_COLOR,
    padding_percent: float = DEFAULT_PADDING_PERCENT,
    stroke_width: int | None = None,
) -> Image.Image:
    vertices = normalize_polygon(polygon)
    base = decode_image(base_image, label="base image")
    overlay = decode_image(overlay_image, label="overlay image")

    width, height = base.size
    if overlay.size != base.size:
        logger.debug(
            "Resizing overlay from %sx%s to %sx%s", overlay.width, overlay.height, width, height
        )
        overlay = resize_to(overlay, base.size)

    bounds = bounding_box(vertices, padding_percent)
    mask = rasterize_polygon(vertices, bounds, width, height)
    composed = composite_layers(base, overlay, mask, opacity)
    return draw_polygon_outline(composed, vertices, bounds, stroke_color, stroke_width)


class RasterCompositeRenderer:
    """Renderer that composites the static thumbnails supplied with a request."""

    name = "composite"

    def __init__(self, settings: RenderSettings | None = None) -> None:
        self.settings = settings or load_settings()

    def supports(self, request: RenderRequest) -> bool:
        return request.has_thumbnails

    async def render(self, request: RenderRequest) -> Image.Image:
        vertices = normalize_polygon(request.polygon)
        base_image, overlay_image = await self._source_images(request)

        image = await asyncio.to_thread(
            composite_index_overlay,
            base_image,
            overlay_image,
            vertices,
            opacity=request.opacity,
            stroke_color=request.stroke_color,
            padding_percent=request.padding_percent,
        )
        target = (request.width, request.height)
        if image.size != target:
            image = resize_to(image, target)
        return image

    async def _source_images(self, request: RenderRequest) -> Tuple[bytes, bytes]:
        base_image = request.base_image
        overlay_image = request.overlay_image

        if base_image is None and overlay_image is None:
            if not (request.base_image_url and request.overlay_image_url):
                raise CompositeError("Composite rendering requires base and overlay thumbnails.")
            return await fetch_source_images(
                request.base_image_url, request.overlay_image_url, settings=self.settings
            )

        if base_image is None:
            if not request.base_image_url:
                raise CompositeError("Composite rendering requires a base thumbnail.")
            base_image = await fetch_image_bytes(
                request.base_image_url, settings=self.settings, label="base image"
            )
        if overlay_image is None:
            if not request.overlay_image_url:
                raise CompositeError("Composite rendering requires an overlay thumbnail.")
            overlay_image = await fetch_image_bytes(
                request.overlay_image_url, settings=self.settings, label="overlay image"
            )
        return base_image, overlay_image
