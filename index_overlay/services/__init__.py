"""Service utilities exposed by the ``index_overlay.services`` package."""

from .browser import BrowserPool
from .composite import RasterCompositeRenderer, composite_index_overlay
from .errors import CompositeError, ConfigurationError, NetworkError, RenderError, RenderTimeoutError
from .orchestrator import RenderOrchestrator, build_orchestrator
from .tile_renderer import LiveOverlayRenderer, LiveTileRenderer

__all__ = [
    "BrowserPool",
    "CompositeError",
    "ConfigurationError",
    "LiveOverlayRenderer",
    "LiveTileRenderer",
    "NetworkError",
    "RasterCompositeRenderer",
    "RenderError",
    "RenderOrchestrator",
    "RenderTimeoutError",
    "build_orchestrator",
    "composite_index_overlay",
]
