"""Tests for shape path construction."""

import math

import pytest

from gtfs_indexer.geometry import EARTH_RADIUS_KM
from gtfs_indexer.transform.shapes import build_shape_paths

KM = 180 / (math.pi * EARTH_RADIUS_KM)


def _row(shape_id: str, seq: str, east_km: float) -> dict[str, str]:
    return {
        "shape_id": shape_id,
        "shape_pt_lat": "0",
        "shape_pt_lon": repr(east_km * KM),
        "shape_pt_sequence": seq,
    }


def test_cumulative_distance() -> None:
    """Test waypoints carry the running path length."""
    rows = [_row("S1", "1", 0.0), _row("S1", "2", 1.0), _row("S1", "3", 3.0)]

    shapes = build_shape_paths(rows)

    assert list(shapes) == ["S1"]
    dists = [wp.dist_traveled for wp in shapes["S1"]]
    assert dists[0] == 0.0
    assert dists[1] == pytest.approx(1.0)
    assert dists[2] == pytest.approx(3.0)


def test_distances_non_decreasing_with_repeated_point() -> None:
    """Test a repeated waypoint adds no distance."""
    rows = [_row("S1", "1", 0.0), _row("S1", "2", 0.5), _row("S1", "3", 0.5), _row("S1", "4", 2.0)]

    dists = [wp.dist_traveled for wp in build_shape_paths(rows)["S1"]]

    assert dists == sorted(dists)
    assert dists[1] == dists[2]


def test_shape_id_change_starts_new_path() -> None:
    """Test interleaved shapes are separated by shape_id."""
    rows = [
        _row("S1", "1", 0.0),
        _row("S1", "2", 1.0),
        _row("S2", "1", 5.0),
        _row("S2", "2", 7.0),
    ]

    shapes = build_shape_paths(rows)

    assert len(shapes["S1"]) == 2
    assert len(shapes["S2"]) == 2
    assert shapes["S2"][0].dist_traveled == 0.0
    assert shapes["S2"][1].dist_traveled == pytest.approx(2.0)


def test_sequence_decrease_restarts_path() -> None:
    """Test a decreasing shape_pt_sequence replaces the earlier points."""
    rows = [
        _row("S1", "1", 0.0),
        _row("S1", "2", 1.0),
        _row("S1", "1", 10.0),
        _row("S1", "2", 12.0),
    ]

    path = build_shape_paths(rows)["S1"]

    assert len(path) == 2
    assert path[0].longitude == pytest.approx(10.0 * KM)
    assert path[1].dist_traveled == pytest.approx(2.0)


def test_malformed_rows_skipped() -> None:
    """Test rows with unparseable coordinates are dropped."""
    bad = _row("S1", "2", 0.0)
    bad["shape_pt_lat"] = "north"
    rows = [_row("S1", "1", 0.0), bad, _row("S1", "3", 1.0)]

    path = build_shape_paths(rows)["S1"]

    assert len(path) == 2
    assert path[1].dist_traveled == pytest.approx(1.0)


def test_missing_shapes_table() -> None:
    """Test an absent shapes table yields no shapes."""
    assert build_shape_paths(None) == {}
    assert build_shape_paths([]) == {}
