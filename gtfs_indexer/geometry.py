"""Geometry primitives on latitude/longitude coordinates. Distances are in kilometres."""

import math
from collections.abc import Sequence
from dataclasses import dataclass

from gtfs_indexer.gtfs.models import Waypoint

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Point:
    latitude: float
    longitude: float

    def coords(self) -> tuple[float, float]:
        """GeoJSON ordering: (lon, lat)."""
        return (self.longitude, self.latitude)


@dataclass(frozen=True)
class Segment:
    """Directed line between consecutive waypoints."""

    start: Point
    end: Point
    start_dist_along: float  # km from the path start to ``start``


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate haversine distance between two points in kilometres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_km(a: Point, b: Point) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def project_point_to_segment(point: Point, segment: Segment) -> Point:
    """
    Closest point of ``segment`` to ``point``.

    Uses a local equirectangular plane around the segment.
    """
    start, end = segment.start, segment.end
    scale = math.cos(math.radians((start.latitude + end.latitude) / 2))

    dx = (end.longitude - start.longitude) * scale
    dy = end.latitude - start.latitude
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return start

    px = (point.longitude - start.longitude) * scale
    py = point.latitude - start.latitude
    t = max(0.0, min(1.0, (px * dx + py * dy) / length_sq))

    return Point(
        latitude=start.latitude + t * (end.latitude - start.latitude),
        longitude=start.longitude + t * (end.longitude - start.longitude),
    )


def distance_along_path(segment: Segment, snapped: Point) -> float:
    """Cumulative path distance of a point lying on ``segment``."""
    return segment.start_dist_along + distance_km(segment.start, snapped)


def path_segments(waypoints: Sequence[Waypoint]) -> list[Segment]:
    """Segments between consecutive waypoints, tagged with their start distance."""
    return [
        Segment(
            start=Point(prev.latitude, prev.longitude),
            end=Point(curr.latitude, curr.longitude),
            start_dist_along=prev.dist_traveled,
        )
        for prev, curr in zip(waypoints, waypoints[1:])
    ]
