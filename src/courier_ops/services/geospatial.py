"""Geospatial helper functions."""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, Sequence

import numpy as np
from shapely.geometry import Point, Polygon

from ..models.domain import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_km_many(origin: Coordinate, points: Sequence[Coordinate]) -> list[float]:
    """Distances in km from ``origin`` to each of ``points`` in a single vectorized pass."""

    if not points:
        return []
    lons = np.radians(np.array([point.longitude for point in points], dtype=float))
    lats = np.radians(np.array([point.latitude for point in points], dtype=float))
    lat0 = math.radians(origin.latitude)
    lon0 = math.radians(origin.longitude)

    d_phi = lats - lat0
    d_lambda = lons - lon0
    a = np.sin(d_phi / 2) ** 2 + math.cos(lat0) * np.cos(lats) * np.sin(d_lambda / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    return [float(value) for value in EARTH_RADIUS_KM * c]


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _valid(longitude: float | None, latitude: float | None) -> Coordinate | None:
    if longitude is None or latitude is None:
        return None
    if not -180.0 <= longitude <= 180.0 or not -90.0 <= latitude <= 90.0:
        return None
    return Coordinate(longitude=longitude, latitude=latitude)


def _lookup(value: Any, *names: str) -> Any:
    for name in names:
        if isinstance(value, Mapping):
            if name in value and value[name] is not None:
                return value[name]
        elif getattr(value, name, None) is not None:
            return getattr(value, name)
    return None


def _from_pair(value: Any) -> Coordinate | None:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence) or len(value) < 2:
        return None
    return _valid(_to_float(value[0]), _to_float(value[1]))


def _from_shape(value: Any) -> Coordinate | None:
    if isinstance(value, Coordinate):
        return _valid(_to_float(value.longitude), _to_float(value.latitude))
    pair = _from_pair(value)
    if pair is not None or isinstance(value, Sequence):
        return pair

    coordinates = _lookup(value, "coordinates")
    if coordinates is not None:
        return _from_pair(coordinates)

    latitude = _lookup(value, "latitude", "lat")
    longitude = _lookup(value, "longitude", "lng", "lon")
    if latitude is None or longitude is None:
        return None
    return _valid(_to_float(longitude), _to_float(latitude))


def normalize_coordinate(value: Any) -> Coordinate | None:
    """Extract a canonical (longitude, latitude) pair from any accepted input shape.

    Accepted shapes are an ordered ``[lng, lat]`` pair, a ``{latitude, longitude}``
    or ``{lat, lng}`` mapping, a GeoJSON-like ``{coordinates: [lng, lat]}`` mapping,
    and any of those nested one level under ``location``. Returns ``None`` when no
    valid numeric pair can be extracted.
    """

    if value is None:
        return None
    direct = _from_shape(value)
    if direct is not None:
        return direct
    nested = _lookup(value, "location")
    if nested is None or nested is value:
        return None
    return _from_shape(nested)


def is_null_island(coordinate: Coordinate) -> bool:
    """(0, 0) is what uninitialized devices report; treat it as no fix."""

    return coordinate.longitude == 0 and coordinate.latitude == 0


def distance_km(a: Any, b: Any) -> float | None:
    """Great-circle distance in km between two inputs of any accepted shape, or None."""

    first = normalize_coordinate(a)
    second = normalize_coordinate(b)
    if first is None or second is None:
        return None
    if first == second:
        return 0.0
    return max(0.0, haversine_km(first.latitude, first.longitude, second.latitude, second.longitude))


def point_in_polygon(coordinate: Coordinate, polygon_coords: Sequence[Coordinate]) -> bool:
    """Return True if the point lies inside the polygon given as (lng, lat) pairs."""

    if len(polygon_coords) < 3:
        return False
    polygon = Polygon([(point.longitude, point.latitude) for point in polygon_coords])
    return polygon.contains(Point(coordinate.longitude, coordinate.latitude))
