"""Primary renderer: screenshot a live basemap with the index tiles drawn on top.

The page is generated from ``templates/live_map.html``. Everything the page
needs (centre, zoom, tile URLs, polygon in world pixels) is computed here with
the geometry kernel and handed over as one JSON blob, so the browser side has
no state of its own beyond the tiles it is drawing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from fastapi.templating import Jinja2Templates
from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import RenderSettings
from ..models import (
    DEFAULT_DIMENSION,
    DEFAULT_OPACITY,
    DEFAULT_PADDING_PERCENT,
    DEFAULT_STROKE_COLOR,
    RenderRequest,
)
from .browser import BrowserPool
from .compositor import decode_image, default_stroke_width, resize_to
from .errors import ConfigurationError, NetworkError, RenderError, RenderTimeoutError
from .geometry import (
    MAX_ZOOM,
    TILE_SIZE,
    bounding_box,
    mercator_center,
    normalize_polygon,
    select_zoom,
    visible_tiles,
    world_pixel,
)
from .imagery import resolve_tile_urls

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent
PAGE_TEMPLATE = "live_map.html"

templates = Jinja2Templates(directory=BASE_DIR / "templates")


class LiveOverlayRenderer:
    """Builds the live map page for one polygon and one tile source."""

    def __init__(
        self,
        tile_url_template: str,
        polygon: Iterable[Any],
        *,
        opacity: float = DEFAULT_OPACITY,
        stroke_color: str = DEFAULT_STROKE_COLOR,
        width: int = DEFAULT_DIMENSION,
        height: int = DEFAULT_DIMENSION,
        padding_percent: float = DEFAULT_PADDING_PERCENT,
        stroke_width: int | None = None,
        settle_seconds: float = 2.0,
        hard_timeout_seconds: float = 10.0,
    ) -> None:
        self.tile_url_template = tile_url_template
        self.polygon = normalize_polygon(polygon)
        self.opacity = min(max(float(opacity), 0.0), 1.0)
        self.stroke_color = stroke_color
        self.width = width
        self.height = height
        self.stroke_width = stroke_width or default_stroke_width(width)
        self.settle_seconds = settle_seconds
        self.hard_timeout_seconds = hard_timeout_seconds

        self.bounds = bounding_box(self.polygon, padding_percent)
        self.zoom = select_zoom(self.bounds, width, height)
        self.center = mercator_center(self.bounds)
        self.tiles = visible_tiles(self.center, self.zoom, width, height)
        self.tile_urls = resolve_tile_urls(tile_url_template, self.tiles)

    def page_config(self) -> Dict[str, Any]:
        polygon_pixels: List[List[float]] = []
        for point in self.polygon:
            x, y = world_pixel(point.lat, point.lng, self.zoom)
            polygon_pixels.append([round(x, 3), round(y, 3)])

        return {
            "center": {"lat": self.center.lat, "lng": self.center.lng},
            "zoom": self.zoom,
            "maxZoom": MAX_ZOOM,
            "tileSize": TILE_SIZE,
            "tileUrls": self.tile_urls,
            "polygon": [{"lat": point.lat, "lng": point.lng} for point in self.polygon],
            "polygonPixels": polygon_pixels,
            "opacity": self.opacity,
            "strokeColor": self.stroke_color,
            "strokeWidth": self.stroke_width,
            "settleMs": int(self.settle_seconds * 1000),
            "hardTimeoutMs": int(self.hard_timeout_seconds * 1000),
        }

    def render_html(self, api_key: str) -> str:
        template = templates.get_template(PAGE_TEMPLATE)
        return template.render(
            api_key=api_key,
            width=self.width,
            height=self.height,
            config=self.page_config(),
        )


class LiveTileRenderer:
    """Renderer that screenshots the basemap widget with the index tiles overlaid."""

    name = "live"

    def __init__(self, pool: BrowserPool, settings: RenderSettings | None = None) -> None:
        self.pool = pool
        self.settings = settings or pool.settings

    def supports(self, request: RenderRequest) -> bool:
        return bool(request.tile_url_template)

    async def render(self, request: RenderRequest) -> Image.Image:
        api_key = self.settings.basemap_api_key
        if not api_key:
            raise ConfigurationError(
                "Live rendering requires the BASEMAP_API_KEY environment variable to be set."
            )
        if not request.tile_url_template:
            raise ConfigurationError("Live rendering requires a tile URL template.")

        overlay = LiveOverlayRenderer(
            request.tile_url_template,
            request.polygon,
            opacity=request.opacity,
            stroke_color=request.stroke_color,
            width=request.width,
            height=request.height,
            padding_percent=request.padding_percent,
            settle_seconds=self.settings.settle_seconds,
            hard_timeout_seconds=self.settings.hard_timeout_seconds,
        )
        html = overlay.render_html(api_key)
        logger.info(
            "Rendering %s live at zoom %s with %s overlay tiles",
            request.description,
            overlay.zoom,
            len(overlay.tiles),
        )

        wait_ms = self.settings.wait_timeout_seconds * 1000
        try:
            async with self.pool.page(request.width, request.height) as page:
                await page.set_content(html, wait_until="domcontentloaded", timeout=wait_ms)
                await page.wait_for_function("window.renderComplete === true", timeout=wait_ms)
                state = await page.evaluate(
                    "() => ({error: window.renderError, reason: window.renderReason,"
                    " stats: window.renderStats})"
                )
                state = state or {}
                if state.get("error"):
                    raise NetworkError(f"Basemap failed to load: {state['error']}")
                screenshot = await page.screenshot(
                    type="png",
                    clip={"x": 0, "y": 0, "width": request.width, "height": request.height},
                )
        except PlaywrightTimeoutError as exc:
            raise RenderTimeoutError(
                f"Live render did not complete within {self.settings.wait_timeout_seconds:.0f}s"
            ) from exc
        except PlaywrightError as exc:
            raise RenderError(f"Live render failed: {exc}") from exc

        stats = state.get("stats") or {}
        logger.info(
            "Live render finished (%s): %s/%s overlay tiles loaded, %s failed",
            state.get("reason"),
            stats.get("loaded", 0),
            stats.get("requested", 0),
            stats.get("failed", 0),
        )

        image = decode_image(screenshot, label="screenshot")
        target = (request.width, request.height)
        if image.size != target:
            image = resize_to(image, target)
        return image
