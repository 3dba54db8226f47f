"""
Geometry helpers for claim intake.

Coordinate parsing (decimal and degree-minute-second), conversion between
GeoJSON and Shapely geometries, and metric area/distance on WGS84 lon/lat.
"""

import math
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import shapely
from shapely.geometry import Point, Polygon, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.errors import ShapelyError
from shapely.validation import explain_validity

from .errors import MalformedGeometry

EARTH_RADIUS_M = 6_371_008.8
METRES_PER_DEGREE = math.pi * EARTH_RADIUS_M / 180.0
SQ_METRES_PER_HECTARE = 10_000.0

_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_HEMISPHERE = re.compile(r"[NSEW]")
_HEMISPHERE_PART = re.compile(r"[^NSEW]+[NSEW]")


# ============================================================================
# Coordinate parsing
# ============================================================================


def parse_dms(text: Any) -> float:
    """
    Convert a single coordinate to decimal degrees.

    Accepts decimal degrees ("22.7583", "-77.5") and degree-minute-second
    forms such as 22°45'30"N, 22 45 30 N or 22:45:30.5 N.
    """
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text)

    s = str(text).strip().upper()
    numbers = _NUMBER.findall(s)
    if not numbers or len(numbers) > 3:
        raise MalformedGeometry(f"Cannot parse coordinate: {text!r}")

    parts = [float(n) for n in numbers] + [0.0, 0.0]
    degrees, minutes, seconds = parts[0], parts[1], parts[2]
    if minutes >= 60 or seconds >= 60:
        raise MalformedGeometry(f"Minutes/seconds out of range in {text!r}")
    if len(numbers) > 1 and not degrees.is_integer():
        raise MalformedGeometry(f"Fractional degrees with minutes in {text!r}")

    value = degrees + minutes / 60.0 + seconds / 3600.0
    hemisphere = _HEMISPHERE.search(s)
    negative = s.startswith("-") or (hemisphere is not None and hemisphere.group() in "SW")
    return -value if negative else value


def _check_range(lat: float, lon: float) -> Tuple[float, float]:
    if not -90.0 <= lat <= 90.0:
        raise MalformedGeometry(f"Latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise MalformedGeometry(f"Longitude out of range: {lon}")
    return lat, lon


def parse_point_text(text: str) -> Tuple[float, float]:
    """Parse a "lat, lon" string (decimal or DMS) into (lat, lon)."""
    s = str(text).strip().upper()

    if _HEMISPHERE.search(s):
        parts = [p.strip(" ,;") for p in _HEMISPHERE_PART.findall(s)]
        if len(parts) != 2:
            raise MalformedGeometry(f"Expected a latitude and a longitude in {text!r}")
        lat_part = next((p for p in parts if p[-1] in "NS"), None)
        lon_part = next((p for p in parts if p[-1] in "EW"), None)
        if lat_part is None or lon_part is None:
            raise MalformedGeometry(f"Ambiguous hemispheres in {text!r}")
        return _check_range(parse_dms(lat_part), parse_dms(lon_part))

    if "," in s or ";" in s:
        parts = [p.strip() for p in re.split(r"[,;]", s) if p.strip()]
    else:
        parts = s.split()
    if len(parts) != 2:
        raise MalformedGeometry(f"Expected a latitude and a longitude in {text!r}")
    return _check_range(parse_dms(parts[0]), parse_dms(parts[1]))


def _parse_pair(pair: Any) -> Tuple[float, float]:
    if isinstance(pair, str):
        return parse_point_text(pair)
    if isinstance(pair, (list, tuple)) and len(pair) == 2:
        return _check_range(parse_dms(pair[0]), parse_dms(pair[1]))
    if isinstance(pair, dict) and "lat" in pair and ("lon" in pair or "lng" in pair):
        return _check_range(parse_dms(pair["lat"]), parse_dms(pair.get("lon", pair.get("lng"))))
    raise MalformedGeometry(f"Cannot parse coordinate pair: {pair!r}")


def coordinates_to_geometry(value: Any) -> BaseGeometry:
    """
    Build a geometry from extracted coordinates.

    Documents give (lat, lon) order; GeoJSON dicts keep their (lon, lat) order.
    A single pair becomes a Point, three or more pairs a Polygon.
    """
    if isinstance(value, dict) and "type" in value:
        return geojson_to_geometry(value)

    if isinstance(value, str):
        if ";" in value or "\n" in value:
            pairs: List[Any] = [p for p in re.split(r"[;\n]", value) if p.strip()]
        else:
            lat, lon = parse_point_text(value)
            return Point(lon, lat)
    elif isinstance(value, (list, tuple)):
        pairs = list(value)
    else:
        raise MalformedGeometry(f"Unsupported coordinate value: {type(value).__name__}")

    if len(pairs) == 2 and all(_is_single_coordinate(p) for p in pairs):
        lat, lon = _check_range(parse_dms(pairs[0]), parse_dms(pairs[1]))
        return Point(lon, lat)

    points = [_parse_pair(p) for p in pairs]
    if len(points) == 1:
        lat, lon = points[0]
        return Point(lon, lat)
    if len(points) < 3:
        raise MalformedGeometry(f"Polygon needs at least 3 vertices, got {len(points)}")

    polygon = Polygon([(lon, lat) for lat, lon in points])
    return _require_valid(polygon)


def _is_single_coordinate(item: Any) -> bool:
    """True for 22.75, "22.75" or "22°45'N"; False for anything holding a pair."""
    if isinstance(item, bool):
        return False
    if isinstance(item, (int, float)):
        return True
    if not isinstance(item, str):
        return False
    s = item.strip().upper()
    if "," in s or ";" in s:
        return False
    hemispheres = len(_HEMISPHERE.findall(s))
    if hemispheres == 1:
        return True
    return hemispheres == 0 and re.fullmatch(r"-?\d+(?:\.\d+)?", s) is not None


# ============================================================================
# GeoJSON conversion
# ============================================================================


def geojson_to_geometry(data: Dict[str, Any]) -> BaseGeometry:
    """Convert a GeoJSON geometry dict to a valid Shapely geometry."""
    try:
        geom = shape(data)
    except (KeyError, TypeError, ValueError, AttributeError, ShapelyError) as e:
        raise MalformedGeometry(f"Invalid GeoJSON geometry: {e}") from e
    if geom.is_empty:
        raise MalformedGeometry("Empty geometry")
    return _require_valid(geom)


def geometry_to_geojson(geom: Optional[BaseGeometry]) -> Optional[Dict[str, Any]]:
    """Convert a Shapely geometry to a JSON-serializable GeoJSON dict."""
    if geom is None:
        return None
    data = mapping(geom)
    return _listify(data)


def _listify(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _listify(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_listify(v) for v in obj]
    return obj


def _require_valid(geom: BaseGeometry) -> BaseGeometry:
    if not geom.is_valid:
        raise MalformedGeometry(f"Invalid geometry: {explain_validity(geom)}")
    return geom


# ============================================================================
# Metric measurements
# ============================================================================


def to_local_metres(geom: BaseGeometry, origin: Optional[Tuple[float, float]] = None) -> BaseGeometry:
    """
    Project lon/lat to a local equirectangular plane in metres.

    Areas are accurate to well under 1% for claim-sized parcels. Pass the same
    origin when comparing areas of related geometries.
    """
    if origin is None:
        c = geom.centroid
        origin = (c.x, c.y)
    lon0, lat0 = origin
    k = math.cos(math.radians(lat0))

    def _project(coords):
        out = coords.copy()
        out[:, 0] = (coords[:, 0] - lon0) * METRES_PER_DEGREE * k
        out[:, 1] = (coords[:, 1] - lat0) * METRES_PER_DEGREE
        return out

    return shapely.transform(geom, _project)


def area_hectares(geom: BaseGeometry, origin: Optional[Tuple[float, float]] = None) -> float:
    """Planar area of a lon/lat geometry in hectares."""
    if geom.is_empty or geom.area == 0:
        return 0.0
    return to_local_metres(geom, origin).area / SQ_METRES_PER_HECTARE


def distance_metres(a: Sequence[float], b: Sequence[float]) -> float:
    """Haversine distance between two (lon, lat) points in metres."""
    lon1, lat1 = math.radians(a[0]), math.radians(a[1])
    lon2, lat2 = math.radians(b[0]), math.radians(b[1])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def centroid_of(geom: BaseGeometry) -> Tuple[float, float]:
    """(lon, lat) of the geometric centre."""
    point = geom.centroid
    return (point.x, point.y)
