"""JSON serialization of the indices and atomic file publication."""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from gtfs_indexer.gtfs.models import (
    IndexingStatistics,
    ScheduleIndex,
    SpatialIndex,
    StopProjection,
    StopVisit,
    TripProjections,
    TripStopTimes,
)

logger = logging.getLogger(__name__)


def stop_visit_to_dict(visit: StopVisit) -> dict[str, Any]:
    return {
        "stop_id": visit.stop_id,
        "arrival_time": visit.arrival_time,
        "departure_time": visit.departure_time,
        "nextStop": visit.next_stop.stop_sequence if visit.next_stop is not None else None,
    }


def dense_sequence_limit(num_visits: int) -> int:
    """Largest stop_sequence kept in the dense list for a trip of ``num_visits`` stops."""
    return 4 * num_visits + 16


def trip_stop_times_to_dict(trip: TripStopTimes) -> dict[str, Any]:
    """
    Serialize one trip's stop times.

    Small non-negative integer sequence numbers index
    ``stopInfoBySequenceNumber`` directly, with ``null`` holes for gaps. Any
    other sequence value goes to ``stopInfoByIrregularSequenceNumber`` under
    its string form. A trip whose largest sequence number exceeds
    ``dense_sequence_limit`` is written entirely to the irregular mapping.
    """
    visits = trip.stop_info_by_sequence_number
    regular = {seq: visit for seq, visit in visits.items() if isinstance(seq, int) and seq >= 0}

    limit = dense_sequence_limit(len(visits))
    if regular and max(regular) > limit:
        logger.warning(
            f"stop_sequence {max(regular)} exceeds {limit} for a trip of {len(visits)} stops, "
            "writing its stop times to stopInfoByIrregularSequenceNumber"
        )
        regular = {}

    irregular = {
        str(seq): stop_visit_to_dict(visit) for seq, visit in visits.items() if seq not in regular
    }

    by_sequence: list[dict[str, Any] | None] = [None] * (max(regular, default=-1) + 1)
    for seq, visit in regular.items():
        by_sequence[seq] = stop_visit_to_dict(visit)

    data: dict[str, Any] = {
        "stopInfoBySequenceNumber": by_sequence,
        "stopIdToSequenceNumbersTable": {
            stop_id: list(seqs) for stop_id, seqs in trip.stop_id_to_sequence_numbers.items()
        },
    }
    if irregular:
        data["stopInfoByIrregularSequenceNumber"] = irregular
    return data


def schedule_index_to_dict(index: ScheduleIndex) -> dict[str, Any]:
    data: dict[str, Any] = {name: dict(table) for name, table in index.tables.items()}
    if index.stop_times is not None:
        data["stop_times"] = {
            key: trip_stop_times_to_dict(trip) for key, trip in index.stop_times.items()
        }
    return data


def stop_projection_to_dict(projection: StopProjection) -> dict[str, Any]:
    return {
        "segmentNum": projection.segment_num,
        "stop_id": projection.stop_id,
        "stop_coords": list(projection.stop_coords),
        "snapped_coords": list(projection.snapped_coords),
        "snapped_dist_along_km": projection.snapped_dist_along_km,
        "deviation": projection.deviation,
        "previous_stop_id": projection.previous_stop_id,
    }


def trip_projections_to_dict(record: TripProjections) -> dict[str, Any]:
    data: dict[str, Any] = {
        stop_id: stop_projection_to_dict(projection)
        for stop_id, projection in record.projections.items()
    }
    data["__originStopID"] = record.origin_stop_id
    data["__destinationStopID"] = record.destination_stop_id
    data["__shapeID"] = record.shape_id
    return data


def spatial_index_to_dict(index: SpatialIndex) -> dict[str, Any]:
    return {
        "shapes": {
            shape_id: [
                {
                    "latitude": wp.latitude,
                    "longitude": wp.longitude,
                    "dist_traveled": wp.dist_traveled,
                }
                for wp in waypoints
            ]
            for shape_id, waypoints in index.shapes.items()
        },
        "stopProjectionsTable": [
            trip_projections_to_dict(record) for record in index.stop_projections_table
        ],
        "tripKeyToProjectionsTableIndex": dict(index.trip_key_to_projections_table_index),
    }


def statistics_to_dict(stats: IndexingStatistics) -> dict[str, Any]:
    return {
        "summaryStatistics": {
            "simpleFittingCases": stats.simple_fitting_cases,
            "leastSquaresCases": stats.least_squares_cases,
        },
        "tripsWithAnomalies": stats.trips_with_anomalies,
        "tripsWithoutProjections": stats.trips_without_projections,
        "tripsRequiringRegression": stats.trips_requiring_regression,
    }


def write_json(path: str | Path, data: Any, indent: int | None = None) -> None:
    """
    Write ``data`` as JSON, replacing ``path`` atomically.

    Keys are sorted so identical inputs give byte-identical files.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        os.chmod(tmp_name, 0o644)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            if indent is None:
                json.dump(data, f, sort_keys=True, separators=(",", ":"))
            else:
                json.dump(data, f, indent=indent, sort_keys=True)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info(f"Wrote {path}")


def write_schedule_index(path: str | Path, index: ScheduleIndex) -> None:
    write_json(path, schedule_index_to_dict(index))


def write_spatial_index(path: str | Path, index: SpatialIndex) -> None:
    write_json(path, spatial_index_to_dict(index))


def write_statistics(path: str | Path, stats: IndexingStatistics) -> None:
    write_json(path, statistics_to_dict(stats), indent=2)


def publish_files(sources: list[Path], dest_dir: Path) -> list[Path]:
    """Publish ``sources`` into ``dest_dir`` under their own names, all-or-nothing."""
    return publish([(source, dest_dir / source.name) for source in sources])


def publish(pairs: list[tuple[Path, Path]]) -> list[Path]:
    """
    Move finished outputs to their destinations all-or-nothing.

    Every source is first copied next to its destination under a temporary
    name; only when all copies succeed are they renamed over the previous
    files. On failure the temporaries are removed and the previous files are
    left untouched.

    Returns:
        The published paths
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for source, dest in pairs:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=dest.parent, prefix=f".{dest.name}.", suffix=".tmp"
            )
            os.close(fd)
            staged.append((Path(tmp_name), dest))
            os.chmod(tmp_name, 0o644)
            shutil.copyfile(source, tmp_name)
    except BaseException:
        for tmp_path, _ in staged:
            tmp_path.unlink(missing_ok=True)
        raise

    published = []
    for tmp_path, dest in staged:
        os.replace(tmp_path, dest)
        published.append(dest)
        logger.info(f"Published {dest}")
    return published
