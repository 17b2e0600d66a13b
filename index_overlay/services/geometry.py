"""Bounding boxes, projections and slippy-map tile math.

Two projections live here. :func:`project_to_pixel` is the linear lat/lng
normalisation used to frame static thumbnails in the composite fallback. The
``tile_*``/``world_pixel`` helpers use spherical Web Mercator and only serve the
live renderer, which has to agree with the basemap widget about which tiles
are on screen.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from ..models import DEFAULT_PADDING_PERCENT, BoundingBox, GeoPoint, Polygon, TileCoordinate
from .errors import CompositeError

LATITUDE_LIMIT = 85.05112878
TILE_SIZE = 256
MAX_ZOOM = 21
MIN_ZOOM = 0
AREA_EPSILON = 1e-12


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(min(value, maximum), minimum)


def _coerce_point(value: Any) -> GeoPoint:
    if isinstance(value, GeoPoint):
        return value
    if isinstance(value, Mapping):
        lat = value.get("lat", value.get("latitude"))
        lng = value.get("lng", value.get("longitude"))
        if lat is None or lng is None:
            raise CompositeError(f"Polygon vertex {dict(value)!r} is missing lat/lng.")
    else:
        try:
            lat, lng = value
        except (TypeError, ValueError) as exc:
            raise CompositeError(f"Polygon vertex {value!r} is not a (lat, lng) pair.") from exc
    try:
        return GeoPoint(float(lat), float(lng))
    except (TypeError, ValueError) as exc:
        raise CompositeError(f"Invalid polygon vertex {value!r}: {exc}") from exc


def signed_area(points: Sequence[GeoPoint]) -> float:
    """Shoelace area in square degrees; positive for counter-clockwise rings."""

    total = 0.0
    count = len(points)
    for index in range(count):
        current = points[index]
        following = points[(index + 1) % count]
        total += current.lng * following.lat - following.lng * current.lat
    return total / 2.0


def normalize_polygon(points: Iterable[Any]) -> Polygon:
    """Return the vertices as an implicitly closed tuple of :class:`GeoPoint`.

    Accepts ``GeoPoint`` instances, ``{"lat", "lng"}`` mappings or ``(lat, lng)``
    pairs. A trailing vertex repeating the first one is dropped. Raises
    :class:`CompositeError` for rings with fewer than three vertices or zero area.
    """

    vertices = [_coerce_point(point) for point in points]
    if len(vertices) > 3 and vertices[0] == vertices[-1]:
        vertices.pop()
    if len(vertices) < 3:
        raise CompositeError(
            f"Polygon requires at least 3 points, received {len(vertices)}."
        )
    if abs(signed_area(vertices)) <= AREA_EPSILON:
        raise CompositeError("Polygon is degenerate (zero enclosed area).")
    return tuple(vertices)


def bounding_box(
    polygon: Iterable[Any], padding_percent: float = DEFAULT_PADDING_PERCENT
) -> BoundingBox:
    """Min/max of the vertices expanded by ``padding_percent`` of each axis' range."""

    vertices = normalize_polygon(polygon)
    lats = [point.lat for point in vertices]
    lngs = [point.lng for point in vertices]
    min_lat, max_lat = min(lats), max(lats)
    min_lng, max_lng = min(lngs), max(lngs)

    lat_padding = (max_lat - min_lat) * (padding_percent / 100.0)
    lng_padding = (max_lng - min_lng) * (padding_percent / 100.0)

    return BoundingBox(
        min_lat=min_lat - lat_padding,
        max_lat=max_lat + lat_padding,
        min_lng=min_lng - lng_padding,
        max_lng=max_lng + lng_padding,
    )


def project_to_pixel(
    point: GeoPoint, bounds: BoundingBox, width: int, height: int
) -> Tuple[float, float]:
    normalized_x = (point.lng - bounds.min_lng) / bounds.lng_span
    # Image rows grow downwards while latitude grows upwards.
    normalized_y = (bounds.max_lat - point.lat) / bounds.lat_span
    return normalized_x * width, normalized_y * height


def pixel_to_point(x: float, y: float, bounds: BoundingBox, width: int, height: int) -> GeoPoint:
    lng = bounds.min_lng + (x / width) * bounds.lng_span
    lat = bounds.max_lat - (y / height) * bounds.lat_span
    return GeoPoint(lat, lng)


def project_polygon(
    polygon: Sequence[GeoPoint], bounds: BoundingBox, width: int, height: int
) -> List[Tuple[float, float]]:
    return [project_to_pixel(point, bounds, width, height) for point in polygon]


def _lng_to_unit_x(lng: float) -> float:
    return (lng + 180.0) / 360.0


def _lat_to_unit_y(lat: float) -> float:
    clamped = _clamp(lat, -LATITUDE_LIMIT, LATITUDE_LIMIT)
    sin_lat = math.sin(math.radians(clamped))
    return 0.5 - math.log((1 + sin_lat) / (1 - sin_lat)) / (4 * math.pi)


def _unit_y_to_lat(unit_y: float) -> float:
    return math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * unit_y))))


def world_pixel(lat: float, lng: float, zoom: int) -> Tuple[float, float]:
    """Web Mercator pixel coordinates of a point at ``zoom`` with 256 px tiles."""

    scale = TILE_SIZE * float(2 ** zoom)
    return _lng_to_unit_x(lng) * scale, _lat_to_unit_y(lat) * scale


def tile_for_latlng(lat: float, lng: float, zoom: int) -> Tuple[int, int]:
    tiles = 2 ** zoom
    x = int(math.floor(_lng_to_unit_x(lng) * tiles))
    y = int(math.floor(_lat_to_unit_y(lat) * tiles))
    return min(max(x, 0), tiles - 1), min(max(y, 0), tiles - 1)


def tile_to_latlng(x: float, y: float, zoom: int) -> GeoPoint:
    """North-west corner of tile ``(x, y)``; fractional indices are allowed."""

    tiles = float(2 ** zoom)
    lng = x / tiles * 360.0 - 180.0
    lat = _unit_y_to_lat(y / tiles)
    return GeoPoint(_clamp(lat, -90.0, 90.0), _clamp(lng, -180.0, 180.0))


def select_zoom(bounds: BoundingBox, pixel_width: int, pixel_height: int) -> int:
    """Largest zoom at which ``bounds`` fits inside ``pixel_width`` x ``pixel_height``.

    The latitude axis is measured in Mercator units so that the vertical
    stretching away from the equator is accounted for.
    """

    lng_units = bounds.lng_span / 360.0
    lat_units = abs(_lat_to_unit_y(bounds.min_lat) - _lat_to_unit_y(bounds.max_lat))

    candidates = [float(MAX_ZOOM)]
    if lng_units > 0:
        candidates.append(math.log2(pixel_width / (TILE_SIZE * lng_units)))
    if lat_units > 0:
        candidates.append(math.log2(pixel_height / (TILE_SIZE * lat_units)))

    zoom = int(math.floor(min(candidates)))
    return max(MIN_ZOOM, min(zoom, MAX_ZOOM))


def projected_span(bounds: BoundingBox, zoom: int) -> Tuple[float, float]:
    """Pixel width and height covered by ``bounds`` at ``zoom``."""

    west, north = world_pixel(bounds.max_lat, bounds.min_lng, zoom)
    east, south = world_pixel(bounds.min_lat, bounds.max_lng, zoom)
    return east - west, south - north


def mercator_center(bounds: BoundingBox) -> GeoPoint:
    """Centre of ``bounds`` in Mercator space, which is what a map widget centres on."""

    unit_y = (_lat_to_unit_y(bounds.min_lat) + _lat_to_unit_y(bounds.max_lat)) / 2.0
    return GeoPoint(_unit_y_to_lat(unit_y), (bounds.min_lng + bounds.max_lng) / 2.0)


def visible_tiles(center: GeoPoint, zoom: int, width: int, height: int) -> List[TileCoordinate]:
    """Tiles intersecting a ``width`` x ``height`` viewport centred on ``center``."""

    tiles = 2 ** zoom
    center_x, center_y = world_pixel(center.lat, center.lng, zoom)
    left = center_x - width / 2.0
    top = center_y - height / 2.0
    eps = 1e-9

    x_start = int(math.floor(left / TILE_SIZE))
    x_end = int(math.floor((left + width - eps) / TILE_SIZE))
    y_start = int(math.floor(top / TILE_SIZE))
    y_end = int(math.floor((top + height - eps) / TILE_SIZE))

    result: List[TileCoordinate] = []
    seen = set()
    for y in range(y_start, y_end + 1):
        if y < 0 or y >= tiles:
            continue
        for x in range(x_start, x_end + 1):
            wrapped = x % tiles
            if (wrapped, y) in seen:
                continue
            seen.add((wrapped, y))
            result.append(TileCoordinate(x=wrapped, y=y, z=zoom))
    return result
