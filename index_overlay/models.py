from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple, Union

DEFAULT_OPACITY = 0.7
DEFAULT_STROKE_COLOR = "#5db815"
DEFAULT_DIMENSION = 1200
DEFAULT_PADDING_PERCENT = 5.0


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 coordinate in degrees."""

    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude {self.lat} is outside the range -90..90.")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"Longitude {self.lng} is outside the range -180..180.")


Polygon = Tuple[GeoPoint, ...]


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lng rectangle enclosing a polygon plus padding."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def __post_init__(self) -> None:
        if not self.min_lat < self.max_lat:
            raise ValueError("Bounding box requires min_lat < max_lat.")
        if not self.min_lng < self.max_lng:
            raise ValueError("Bounding box requires min_lng < max_lng.")

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lng_span(self) -> float:
        return self.max_lng - self.min_lng

    def contains(self, point: GeoPoint) -> bool:
        return (
            self.min_lat < point.lat < self.max_lat
            and self.min_lng < point.lng < self.max_lng
        )


@dataclass(frozen=True)
class TileCoordinate:
    """Web Mercator slippy-map tile index."""

    x: int
    y: int
    z: int

    @property
    def key(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


@dataclass
class RenderRequest:
    """Everything needed to produce one report image.

    ``tile_url_template`` feeds the live renderer. ``base_image_url`` and
    ``overlay_image_url`` (or the already downloaded ``base_image`` and
    ``overlay_image`` bytes) feed the composite fallback. Both thumbnails must
    have been requested for the bounding box obtained with ``padding_percent``.
    """

    polygon: Sequence[GeoPoint]
    tile_url_template: str | None = None
    base_image_url: str | None = None
    overlay_image_url: str | None = None
    base_image: bytes | None = field(default=None, repr=False)
    overlay_image: bytes | None = field(default=None, repr=False)
    opacity: float = DEFAULT_OPACITY
    stroke_color: str = DEFAULT_STROKE_COLOR
    width: int = DEFAULT_DIMENSION
    height: int = DEFAULT_DIMENSION
    padding_percent: float = DEFAULT_PADDING_PERCENT
    label: str | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Target width and height must be positive.")
        if self.padding_percent < 0:
            raise ValueError("Padding percentage cannot be negative.")

    @property
    def description(self) -> str:
        return self.label or f"{len(self.polygon)}-point polygon"

    @property
    def has_thumbnails(self) -> bool:
        has_base = self.base_image is not None or bool(self.base_image_url)
        has_overlay = self.overlay_image is not None or bool(self.overlay_image_url)
        return has_base and has_overlay


@dataclass(frozen=True)
class Rendered:
    """A successfully rendered PNG and the renderer that produced it."""

    png: bytes = field(repr=False)
    renderer: str
    width: int
    height: int

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed:
    """No image is available for a request; ``errors`` lists each attempt's failure."""

    reason: str
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False


RenderOutcome = Union[Rendered, Failed]
