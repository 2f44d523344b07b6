"""Tests for the schedule index."""

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from gtfs_indexer.errors import TableParseError
from gtfs_indexer.events import ProgressEvent
from gtfs_indexer.gtfs.models import IndexerConfig, TripKeyMutator
from gtfs_indexer.indexing.schedule import build_schedule_index, index_table, run_schedule_indexer


def _config(gtfs_dir: Path, output: Path, **kwargs: object) -> IndexerConfig:
    return IndexerConfig(
        gtfs_dir=str(gtfs_dir),
        schedule_index_path=str(output / "indexedScheduleData.json"),
        spatial_index_path=str(output / "indexedSpatialData.json"),
        statistics_path=str(output / "indexingStatistics.json"),
        **kwargs,  # type: ignore[arg-type]
    )


def test_schedule_index_minimal(gtfs_minimal: Path, tmp_output: Path) -> None:
    """Test every table is keyed by its primary key."""
    index = build_schedule_index(_config(gtfs_minimal, tmp_output))

    assert set(index.tables) == {"agency", "calendar", "routes", "stops", "trips"}
    assert list(index.tables["agency"]) == ["AG"]
    assert list(index.tables["calendar"]) == ["WK"]
    assert list(index.tables["routes"]) == ["R1", "R2"]
    assert len(index.tables["stops"]) == 6
    assert index.tables["trips"]["T5"]["shape_id"] == "S2"

    assert index.stop_times is not None
    assert set(index.stop_times) == {"T1", "T2", "T3", "T4", "T5"}


def test_missing_table_is_absent(gtfs_minimal: Path, tmp_output: Path) -> None:
    """Test a missing optional table is left out of the index."""
    (gtfs_minimal / "calendar.txt").unlink()

    index = build_schedule_index(_config(gtfs_minimal, tmp_output))

    assert "calendar" not in index.tables
    assert "routes" in index.tables


def test_malformed_table_raises(gtfs_minimal: Path, tmp_output: Path) -> None:
    """Test a structurally broken table fails the build."""
    with open(gtfs_minimal / "routes.txt", "a", encoding="utf-8") as f:
        f.write("R3,AG,3,3,unexpected\n")

    with pytest.raises(TableParseError) as excinfo:
        build_schedule_index(_config(gtfs_minimal, tmp_output))

    assert excinfo.value.table == "routes"


def test_missing_primary_key_column(
    feed_tables: dict, write_feed: Callable[..., Path], tmp_output: Path
) -> None:
    """Test a table without its primary key column fails the build."""
    for row in feed_tables["stops"]:
        del row["stop_id"]
    gtfs_dir = write_feed(feed_tables)

    with pytest.raises(TableParseError, match="stop_id"):
        build_schedule_index(_config(gtfs_dir, tmp_output))


def test_duplicate_key_keeps_last_row() -> None:
    """Test a repeated primary key keeps the row read last."""
    rows = [
        {"route_id": "R1", "route_short_name": "old"},
        {"route_id": "R1", "route_short_name": "new"},
    ]

    indexed = index_table("routes", rows)

    assert indexed == {"R1": {"route_id": "R1", "route_short_name": "new"}}


def test_agency_without_id() -> None:
    """Test a single-agency feed may omit agency_id."""
    rows = [{"agency_name": "Solo Transit", "agency_url": "https://example.com"}]

    assert index_table("agency", rows) == {"": rows[0]}


def test_stop_times_disabled(gtfs_minimal: Path, tmp_output: Path) -> None:
    """Test stop_times.txt is skipped when not requested."""
    config = _config(gtfs_minimal, tmp_output, index_stop_times=False)

    run_schedule_indexer(config)

    index = build_schedule_index(config)
    assert index.stop_times is None
    with open(tmp_output / "indexedScheduleData.json") as f:
        assert "stop_times" not in json.load(f)


def test_trip_key_mutator(gtfs_minimal: Path, tmp_output: Path) -> None:
    """Test trips and stop times are keyed by trip key."""
    config = _config(gtfs_minimal, tmp_output, trip_key_mutator=TripKeyMutator("^T", "trip-"))

    index = build_schedule_index(config)

    assert list(index.tables["trips"]) == ["trip-1", "trip-2", "trip-3", "trip-4", "trip-5"]
    assert index.tables["trips"]["trip-1"]["trip_id"] == "T1"
    assert index.stop_times is not None
    assert set(index.stop_times) == {"trip-1", "trip-2", "trip-3", "trip-4", "trip-5"}


def test_run_schedule_indexer_writes_json(gtfs_minimal: Path, tmp_output: Path) -> None:
    """Test the serialized stop times resolve (trip key, stop_sequence) lookups."""
    events: list[ProgressEvent] = []

    run_schedule_indexer(_config(gtfs_minimal, tmp_output), events.append)

    with open(tmp_output / "indexedScheduleData.json") as f:
        data = json.load(f)

    assert data["routes"]["R2"]["route_short_name"] == "2"
    trip = data["stop_times"]["T1"]
    assert trip["stopInfoBySequenceNumber"] == [
        None,
        {
            "stop_id": "A",
            "arrival_time": "08:00:00",
            "departure_time": "08:00:00",
            "nextStop": 3,
        },
        None,
        {
            "stop_id": "B",
            "arrival_time": "08:05:00",
            "departure_time": "08:05:00",
            "nextStop": 4,
        },
        {
            "stop_id": "C",
            "arrival_time": "08:10:00",
            "departure_time": "08:10:00",
            "nextStop": None,
        },
    ]
    assert trip["stopIdToSequenceNumbersTable"] == {"A": [1], "B": [3], "C": [4]}
    assert "stopInfoByIrregularSequenceNumber" not in trip

    last = data["stop_times"]["T5"]["stopInfoBySequenceNumber"][3]
    assert last["arrival_time"] == "25:04:00"

    messages = [event.message for event in events]
    assert messages[-1] == "Successfully wrote the indexed GTFS schedule data to disk."
