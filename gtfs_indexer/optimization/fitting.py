"""
Stop-to-shape fitting.

Every stop of a trip is snapped onto one segment of the trip's shape so that
the snapped positions never move backwards along the path. A greedy pass
(closest segment per stop) solves most trips; when it backtracks, a dynamic
program finds the assignment with the least total squared deviation that
respects the ordering.
"""

import bisect
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

from gtfs_indexer.geometry import (
    Point,
    Segment,
    distance_along_path,
    distance_km,
    path_segments,
    project_point_to_segment,
)
from gtfs_indexer.gtfs.models import FEET_PER_KM, StopProjection, TripProjections, Waypoint

logger = logging.getLogger(__name__)

SIMPLE = "simple"
LEAST_SQUARES = "least_squares"


@dataclass(frozen=True)
class FitResult:
    """Outcome of fitting one stop sequence to one shape."""

    projections: list[StopProjection] | None
    method: str | None  # SIMPLE, LEAST_SQUARES, or None when nothing was attempted


def build_candidate_table(
    stop_ids: Sequence[str], stop_points: Sequence[Point], segments: Sequence[Segment]
) -> list[list[StopProjection]]:
    """Projection of every stop onto every segment: table[stop][segment]."""
    table = []
    for stop_id, stop_pt in zip(stop_ids, stop_points):
        row = []
        for segment_num, segment in enumerate(segments):
            snapped = project_point_to_segment(stop_pt, segment)
            row.append(
                StopProjection(
                    segment_num=segment_num,
                    stop_id=stop_id,
                    stop_coords=stop_pt.coords(),
                    snapped_coords=snapped.coords(),
                    snapped_dist_along_km=distance_along_path(segment, snapped),
                    deviation=distance_km(stop_pt, snapped),
                )
            )
        table.append(row)
    return table


def is_monotonic(projections: Sequence[StopProjection]) -> bool:
    """True if along-path distances never decrease."""
    return all(
        a.snapped_dist_along_km <= b.snapped_dist_along_km
        for a, b in zip(projections, projections[1:])
    )


def try_simple_fit(table: list[list[StopProjection]]) -> list[StopProjection] | None:
    """Closest segment per stop, accepted only if it does not backtrack."""
    best = [min(row, key=lambda c: (c.deviation, c.snapped_dist_along_km)) for row in table]
    return best if is_monotonic(best) else None


def fit_least_squares(table: list[list[StopProjection]]) -> list[StopProjection] | None:
    """
    Minimum total squared deviation subject to non-decreasing along-path distance.

    cost(s, w) = deviation(s, w)^2 + min{cost(s-1, v) : dist(s-1, v) <= dist(s, w)}

    The previous row is sorted by distance once and turned into a running
    minimum, so each cell is resolved with a binary search: O(S W log W).

    Returns:
        The optimal projections, or None if no non-decreasing assignment exists
    """
    if not table or not table[0]:
        return None

    cost = [c.deviation * c.deviation for c in table[0]]
    back: list[list[int]] = []

    for s in range(1, len(table)):
        prev_row = table[s - 1]
        order = sorted(
            range(len(prev_row)),
            key=lambda w: (prev_row[w].snapped_dist_along_km, w),
        )
        dists = [prev_row[w].snapped_dist_along_km for w in order]

        # running_best[i] = cheapest finite cell among order[0..i]
        running_best: list[int] = []
        best = -1
        for w in order:
            if cost[w] < math.inf and (best < 0 or cost[w] < cost[best]):
                best = w
            running_best.append(best)

        row_cost = []
        row_back = []
        for cell in table[s]:
            i = bisect.bisect_right(dists, cell.snapped_dist_along_km) - 1
            src = running_best[i] if i >= 0 else -1
            if src < 0:
                row_cost.append(math.inf)
            else:
                row_cost.append(cost[src] + cell.deviation * cell.deviation)
            row_back.append(src)

        cost = row_cost
        back.append(row_back)

    end = min(range(len(cost)), key=lambda w: cost[w])
    if cost[end] == math.inf:
        return None

    path = [end]
    for row_back in reversed(back):
        path.append(row_back[path[-1]])
    path.reverse()

    return [table[s][w] for s, w in enumerate(path)]


def fit_stops_to_path(
    stop_ids: Sequence[str],
    stop_coords: Sequence[tuple[float, float] | None],
    waypoints: Sequence[Waypoint],
) -> FitResult:
    """
    Snap a trip's stops onto its shape.

    Args:
        stop_ids: stop ids in travel order
        stop_coords: (lat, lon) per stop, None when the stop has no location
        waypoints: the trip's shape path

    Returns:
        FitResult; ``projections`` is None when the trip cannot be projected
    """
    if not stop_ids or len(waypoints) < 2 or any(c is None for c in stop_coords):
        return FitResult(projections=None, method=None)

    stop_points = [Point(lat, lon) for lat, lon in stop_coords]  # type: ignore[misc]
    table = build_candidate_table(stop_ids, stop_points, path_segments(waypoints))

    projections = try_simple_fit(table)
    if projections is not None:
        return FitResult(projections=projections, method=SIMPLE)

    return FitResult(projections=fit_least_squares(table), method=LEAST_SQUARES)


def find_anomalies(
    projections: Sequence[StopProjection], threshold_ft: float
) -> dict[str, dict[str, Any]]:
    """Stops whose snapped position is farther than ``threshold_ft`` from the stop."""
    anomalies: dict[str, dict[str, Any]] = {}
    for projection in projections:
        deviation_ft = projection.deviation * FEET_PER_KM
        if deviation_ft > threshold_ft:
            anomalies[projection.stop_id] = {
                "deviationInFt": deviation_ft,
                "stop_coords": list(projection.stop_coords),
                "snapped_coords": list(projection.snapped_coords),
            }
    return anomalies


def build_trip_projections(projections: Sequence[StopProjection], shape_id: str) -> TripProjections:
    """Back-link each projection to the previous stop and attach trip metadata."""
    linked: dict[str, StopProjection] = {}
    previous_stop_id = None
    for projection in projections:
        linked[projection.stop_id] = replace(projection, previous_stop_id=previous_stop_id)
        previous_stop_id = projection.stop_id

    return TripProjections(
        projections=linked,
        origin_stop_id=projections[0].stop_id if projections else None,
        destination_stop_id=projections[-1].stop_id if projections else None,
        shape_id=shape_id,
    )
