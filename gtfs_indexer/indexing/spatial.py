"""Spatial index: every scheduled stop projected onto its trip's shape."""

import logging
import os
from collections.abc import Callable, Iterable
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from gtfs_indexer.events import DEBUG, ERROR, INFO, ProgressSink, emit
from gtfs_indexer.gtfs.models import (
    IndexerConfig,
    IndexingStatistics,
    SpatialIndex,
    TableRow,
    Waypoint,
    trip_key,
)
from gtfs_indexer.gtfs.reader import SHAPES, STOP_TIMES, STOPS, TRIPS, GTFSReader, require_columns
from gtfs_indexer.optimization.fitting import (
    LEAST_SQUARES,
    SIMPLE,
    FitResult,
    build_trip_projections,
    find_anomalies,
    fit_stops_to_path,
)
from gtfs_indexer.output.json import write_spatial_index, write_statistics
from gtfs_indexer.transform.shapes import build_shape_paths

logger = logging.getLogger(__name__)

# (shape_id, stop ids in travel order): trips sharing it share one fitting problem
MemoKey = tuple[str, tuple[str, ...]]


@dataclass(frozen=True)
class FittingProblem:
    """One distinct (stops, shape) pair, owned by the first trip that uses it."""

    owner_trip_id: str
    shape_id: str
    stop_ids: tuple[str, ...]
    stop_coords: tuple[tuple[float, float] | None, ...]
    waypoints: tuple[Waypoint, ...]


def solve_problem(problem: FittingProblem) -> FitResult:
    return fit_stops_to_path(problem.stop_ids, problem.stop_coords, problem.waypoints)


def solve_problems(problems: list[FittingProblem], jobs: int = 1) -> list[FitResult]:
    """
    Fit every problem, in order.

    Args:
        problems: distinct fitting problems
        jobs: worker processes; 1 fits in the calling thread, 0 uses one per core
    """
    workers = jobs or os.cpu_count() or 1
    if workers == 1 or len(problems) < 2:
        return [solve_problem(problem) for problem in problems]

    workers = min(workers, len(problems))
    chunksize = max(1, len(problems) // (workers * 4))
    logger.info(f"Fitting {len(problems)} stop patterns on {workers} worker processes")
    with ProcessPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(solve_problem, problems, chunksize=chunksize))


def load_trip_shapes(rows: list[TableRow] | None) -> list[tuple[str, str]]:
    """(trip_id, shape_id) pairs in trips.txt order; shape_id may be empty."""
    if rows is None:
        return []
    require_columns(TRIPS, rows, ["trip_id"])
    return [(row["trip_id"], row.get("shape_id", "").strip()) for row in rows]


def load_trip_stop_ids(rows: list[TableRow] | None) -> dict[str, list[str]]:
    """trip_id -> stop ids in stop_times.txt row order."""
    if rows is None:
        return {}
    require_columns(STOP_TIMES, rows, ["trip_id", "stop_id"])
    trip_stops: dict[str, list[str]] = {}
    for row in rows:
        trip_stops.setdefault(row["trip_id"], []).append(row["stop_id"])
    return trip_stops


def load_stop_coords(rows: list[TableRow] | None) -> dict[str, tuple[float, float]]:
    """stop_id -> (lat, lon); stops with unusable coordinates are left out."""
    if rows is None:
        return {}
    require_columns(STOPS, rows, ["stop_id"])
    coords: dict[str, tuple[float, float]] = {}
    for row in rows:
        try:
            coords[row["stop_id"]] = (float(row["stop_lat"]), float(row["stop_lon"]))
        except (KeyError, ValueError):
            logger.warning(f"Stop {row['stop_id']} has no usable coordinates")
    return coords


def _read_and_parse(
    reader: GTFSReader, table: str, parse: Callable[[list[TableRow] | None], Any]
) -> Any:
    return parse(reader.read_optional(table))


def build_spatial_index(
    config: IndexerConfig, sink: ProgressSink | None = None
) -> tuple[SpatialIndex, IndexingStatistics]:
    """Project the stops of every trip onto its shape."""
    reader = GTFSReader(config.gtfs_dir)

    emit(sink, DEBUG, "Reading trips.txt, stop_times.txt, stops.txt and shapes.txt")
    parsers = {
        SHAPES: build_shape_paths,
        TRIPS: load_trip_shapes,
        STOP_TIMES: load_trip_stop_ids,
        STOPS: load_stop_coords,
    }
    with ThreadPoolExecutor(max_workers=len(parsers)) as executor:
        futures = {
            table: executor.submit(_read_and_parse, reader, table, parse)
            for table, parse in parsers.items()
        }
        results = {table: future.result() for table, future in futures.items()}

    shapes: dict[str, list[Waypoint]] = results[SHAPES]
    trip_shapes: list[tuple[str, str]] = results[TRIPS]
    trip_stop_ids: dict[str, list[str]] = results[STOP_TIMES]
    stop_coords: dict[str, tuple[float, float]] = results[STOPS]

    emit(sink, INFO, "Indexing the GTFS spatial data.")
    start_time = datetime.now(UTC)

    problems: list[FittingProblem] = []
    problem_index: dict[MemoKey, int] = {}
    assignments: list[tuple[str, MemoKey | None]] = []

    for trip_id, shape_id in trip_shapes:
        if not shape_id or shape_id not in shapes:
            if shape_id:
                logger.debug(f"Trip {trip_id} references unknown shape {shape_id}")
            assignments.append((trip_id, None))
            continue

        stop_ids = tuple(trip_stop_ids.get(trip_id, ()))
        memo_key = (shape_id, stop_ids)
        if memo_key not in problem_index:
            problem_index[memo_key] = len(problems)
            problems.append(
                FittingProblem(
                    owner_trip_id=trip_id,
                    shape_id=shape_id,
                    stop_ids=stop_ids,
                    stop_coords=tuple(stop_coords.get(stop_id) for stop_id in stop_ids),
                    waypoints=tuple(shapes[shape_id]),
                )
            )
        assignments.append((trip_id, memo_key))

    fit_results = solve_problems(problems, config.jobs)

    index = SpatialIndex(shapes=shapes)
    stats = IndexingStatistics()
    memo_table_index = _merge_fit_results(
        problems, fit_results, index, stats, config.deviation_threshold_ft
    )

    for trip_id, memo_key in assignments:
        table_index = memo_table_index.get(memo_key) if memo_key is not None else None
        if table_index is None:
            stats.trips_without_projections.append(trip_id)
        else:
            index.trip_key_to_projections_table_index[
                trip_key(trip_id, config.trip_key_mutator)
            ] = table_index

    elapsed = (datetime.now(UTC) - start_time).total_seconds()
    logger.info(
        f"Fitted {len(problems)} stop patterns for {len(assignments)} trips in {elapsed:.2f}s: "
        f"{stats.simple_fitting_cases} simple, {stats.least_squares_cases} least squares, "
        f"{len(stats.trips_without_projections)} trips without projections"
    )
    emit(sink, INFO, "Completed indexing the GTFS spatial data.")

    return index, stats


def _merge_fit_results(
    problems: Iterable[FittingProblem],
    fit_results: Iterable[FitResult],
    index: SpatialIndex,
    stats: IndexingStatistics,
    threshold_ft: float,
) -> dict[MemoKey, int | None]:
    """Append fitted records to the projections table in problem order."""
    memo_table_index: dict[MemoKey, int | None] = {}

    for problem, result in zip(problems, fit_results, strict=True):
        if result.method == SIMPLE:
            stats.simple_fitting_cases += 1
        elif result.method == LEAST_SQUARES:
            stats.least_squares_cases += 1
            stats.trips_requiring_regression.append(problem.owner_trip_id)

        memo_key = (problem.shape_id, problem.stop_ids)
        if not result.projections:
            memo_table_index[memo_key] = None
            continue

        anomalies = find_anomalies(result.projections, threshold_ft)
        if anomalies:
            stats.trips_with_anomalies[problem.owner_trip_id] = anomalies

        memo_table_index[memo_key] = len(index.stop_projections_table)
        index.stop_projections_table.append(
            build_trip_projections(result.projections, problem.shape_id)
        )

    return memo_table_index


def run_spatial_indexer(config: IndexerConfig, sink: ProgressSink | None = None) -> None:
    """Build the spatial index and write it, with the statistics, to disk."""
    config.validate()
    index, stats = build_spatial_index(config, sink)

    with ThreadPoolExecutor(max_workers=2) as executor:
        futures = [executor.submit(_write_index, config, index, sink)]
        if config.log_indexing_statistics and config.statistics_path:
            futures.append(
                executor.submit(_write_statistics, config.statistics_path, stats, sink)
            )
        else:
            emit(sink, INFO, "GTFS spatial data indexing statistics not logged (by configuration).")
        for future in futures:
            future.result()


def _write_index(config: IndexerConfig, index: SpatialIndex, sink: ProgressSink | None) -> None:
    emit(sink, DEBUG, "Writing the indexed GTFS spatial data to disk.")
    try:
        write_spatial_index(config.spatial_index_path, index)
    except OSError:
        emit(sink, ERROR, "Error writing the indexed GTFS spatial data to disk.")
        raise
    emit(sink, INFO, "Successfully wrote the indexed GTFS spatial data to disk.")


def _write_statistics(path: str, stats: IndexingStatistics, sink: ProgressSink | None) -> None:
    emit(sink, DEBUG, "Writing the GTFS spatial data indexing statistics to disk.")
    try:
        write_statistics(path, stats)
    except OSError:
        emit(sink, ERROR, "Error writing the GTFS spatial data indexing statistics to disk.")
        raise
    emit(sink, INFO, "Successfully wrote the GTFS spatial data indexing statistics to disk.")
