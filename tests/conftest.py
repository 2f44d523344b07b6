"""Pytest configuration and fixtures."""

import csv
import math
import shutil
from collections.abc import Callable
from pathlib import Path

import pytest

# Degrees of arc per kilometre on the equator
KM = 180 / (math.pi * 6371.0)

FeedTables = dict[str, list[dict[str, str]]]


def _stop(stop_id: str, east_km: float, north_km: float) -> dict[str, str]:
    return {
        "stop_id": stop_id,
        "stop_name": f"Stop {stop_id}",
        "stop_lat": repr(north_km * KM),
        "stop_lon": repr(east_km * KM),
    }


def _shape_point(shape_id: str, seq: int, east_km: float, north_km: float) -> dict[str, str]:
    return {
        "shape_id": shape_id,
        "shape_pt_lat": repr(north_km * KM),
        "shape_pt_lon": repr(east_km * KM),
        "shape_pt_sequence": str(seq),
    }


def _stop_time(trip_id: str, seq: int, stop_id: str, time: str) -> dict[str, str]:
    return {
        "trip_id": trip_id,
        "arrival_time": time,
        "departure_time": time,
        "stop_id": stop_id,
        "stop_sequence": str(seq),
    }


def minimal_feed() -> FeedTables:
    """
    Small feed exercising every indexing path.

    - S1: straight 3 km line heading east; T1 and T2 share its stop pattern
    - S2: 1 km out-and-back loop 20 m wide; T5's closest-segment fit backtracks
    - T3 has no shape, T4 references a shape that does not exist
    - T1 numbers its stops 1, 3, 4
    """
    return {
        "agency": [
            {
                "agency_id": "AG",
                "agency_name": "Test Transit",
                "agency_url": "https://example.com",
                "agency_timezone": "UTC",
            }
        ],
        "calendar": [
            {
                "service_id": "WK",
                "monday": "1",
                "tuesday": "1",
                "wednesday": "1",
                "thursday": "1",
                "friday": "1",
                "saturday": "0",
                "sunday": "0",
                "start_date": "20250101",
                "end_date": "20251231",
            }
        ],
        "routes": [
            {"route_id": "R1", "agency_id": "AG", "route_short_name": "1", "route_type": "3"},
            {"route_id": "R2", "agency_id": "AG", "route_short_name": "2", "route_type": "3"},
        ],
        "stops": [
            _stop("A", 0.1, 0.001),
            _stop("B", 1.5, -0.001),
            _stop("C", 2.5, 0.001),
            _stop("P1", 0.1, -0.005),
            _stop("P2", 0.5, 0.015),
            _stop("P3", 0.9, -0.005),
        ],
        "trips": [
            {"route_id": "R1", "service_id": "WK", "trip_id": "T1", "shape_id": "S1"},
            {"route_id": "R1", "service_id": "WK", "trip_id": "T2", "shape_id": "S1"},
            {"route_id": "R1", "service_id": "WK", "trip_id": "T3", "shape_id": ""},
            {"route_id": "R1", "service_id": "WK", "trip_id": "T4", "shape_id": "MISSING"},
            {"route_id": "R2", "service_id": "WK", "trip_id": "T5", "shape_id": "S2"},
        ],
        "stop_times": [
            _stop_time("T1", 1, "A", "08:00:00"),
            _stop_time("T1", 3, "B", "08:05:00"),
            _stop_time("T1", 4, "C", "08:10:00"),
            _stop_time("T2", 1, "A", "09:00:00"),
            _stop_time("T2", 2, "B", "09:05:00"),
            _stop_time("T2", 3, "C", "09:10:00"),
            _stop_time("T3", 1, "A", "10:00:00"),
            _stop_time("T3", 2, "B", "10:05:00"),
            _stop_time("T3", 3, "C", "10:10:00"),
            _stop_time("T4", 1, "A", "11:00:00"),
            _stop_time("T4", 2, "B", "11:05:00"),
            _stop_time("T4", 3, "C", "11:10:00"),
            _stop_time("T5", 1, "P1", "12:00:00"),
            _stop_time("T5", 2, "P2", "12:02:00"),
            _stop_time("T5", 3, "P3", "25:04:00"),
        ],
        "shapes": [
            _shape_point("S1", 1, 0.0, 0.0),
            _shape_point("S1", 2, 1.0, 0.0),
            _shape_point("S1", 3, 2.0, 0.0),
            _shape_point("S1", 4, 3.0, 0.0),
            _shape_point("S2", 1, 0.0, 0.0),
            _shape_point("S2", 2, 1.0, 0.0),
            _shape_point("S2", 3, 1.0, 0.02),
            _shape_point("S2", 4, 0.0, 0.02),
        ],
    }


def write_feed_tables(directory: Path, tables: FeedTables) -> Path:
    """Write each table as ``<name>.txt`` with a header row."""
    directory.mkdir(parents=True, exist_ok=True)
    for name, rows in tables.items():
        fieldnames: list[str] = []
        for row in rows:
            fieldnames.extend(key for key in row if key not in fieldnames)
        with open(directory / f"{name}.txt", "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            writer.writerows(rows)
    return directory


@pytest.fixture
def feed_tables() -> FeedTables:
    """Fresh copy of the minimal feed tables, safe to modify."""
    return minimal_feed()


@pytest.fixture
def write_feed(tmp_path: Path) -> Callable[..., Path]:
    """Write feed tables into a directory under tmp_path."""

    def _write(tables: FeedTables, name: str = "gtfs") -> Path:
        return write_feed_tables(tmp_path / name, tables)

    return _write


@pytest.fixture
def gtfs_minimal(write_feed: Callable[..., Path]) -> Path:
    """Path to the minimal GTFS feed."""
    return write_feed(minimal_feed(), "gtfs_minimal")


@pytest.fixture
def tmp_output(tmp_path: Path) -> Path:
    """Temporary output directory."""
    output_dir = tmp_path / "gtfs_data"
    output_dir.mkdir()
    yield output_dir
    # Cleanup
    if output_dir.exists():
        shutil.rmtree(output_dir)
