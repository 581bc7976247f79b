from typing import Iterable, List, Tuple, Union

from geopy.distance import geodesic

from .errors import InputError
from .models import LatLng

Point = Union[LatLng, Tuple[float, float]]


def _as_latlng(point: Point) -> LatLng:
    if isinstance(point, LatLng):
        return point
    lat, lng = point
    return LatLng(float(lat), float(lng))


def calculate_centroid(locations: Iterable[Point]) -> LatLng:
    """Componentwise arithmetic mean of the given coordinates"""
    points: List[LatLng] = [_as_latlng(p) for p in locations]
    if not points:
        raise InputError("No valid user locations")
    if len(points) == 1:
        return points[0]

    lat = sum(p.lat for p in points) / len(points)
    lng = sum(p.lng for p in points) / len(points)
    return LatLng(lat, lng)


def distance_m(a: Point, b: Point) -> float:
    """Geodesic distance in meters"""
    a, b = _as_latlng(a), _as_latlng(b)
    return geodesic((a.lat, a.lng), (b.lat, b.lng)).meters
