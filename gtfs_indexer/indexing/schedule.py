"""Schedule index: GTFS tables keyed by primary key, plus per-trip stop times."""

import logging

from gtfs_indexer.events import DEBUG, ERROR, INFO, ProgressSink, emit
from gtfs_indexer.gtfs.models import IndexerConfig, ScheduleIndex, TableRow, TripKeyMutator, trip_key
from gtfs_indexer.gtfs.reader import (
    AGENCY,
    CALENDAR,
    ROUTES,
    STOP_TIMES,
    STOPS,
    TRIPS,
    GTFSReader,
    require_columns,
)
from gtfs_indexer.output.json import write_schedule_index
from gtfs_indexer.transform.stop_times import build_stop_times_table

logger = logging.getLogger(__name__)

TABLE_PRIMARY_KEYS = {
    AGENCY: "agency_id",
    CALENDAR: "service_id",
    ROUTES: "route_id",
    STOPS: "stop_id",
    TRIPS: "trip_id",
}


def index_table(
    table: str, rows: list[TableRow], mutator: TripKeyMutator | None = None
) -> dict[str, TableRow]:
    """Key rows by the table's primary key; trips are keyed by trip key."""
    pk = TABLE_PRIMARY_KEYS[table]
    # agency_id is optional in single-agency feeds
    if table != AGENCY:
        require_columns(table, rows, [pk])

    indexed: dict[str, TableRow] = {}
    for row in rows:
        key = row.get(pk, "")
        if table == TRIPS:
            key = trip_key(key, mutator)
        if key in indexed:
            logger.warning(f"Duplicate {pk} {key!r} in {table}.txt, keeping the last row")
        indexed[key] = row
    return indexed


def build_schedule_index(config: IndexerConfig, sink: ProgressSink | None = None) -> ScheduleIndex:
    """Parse and key the schedule tables of the feed."""
    reader = GTFSReader(config.gtfs_dir)

    tables = list(TABLE_PRIMARY_KEYS)
    if config.index_stop_times:
        tables.append(STOP_TIMES)

    emit(sink, DEBUG, f"Reading {', '.join(f'{t}.txt' for t in tables)}")
    parsed = reader.read_tables(tables)

    emit(sink, INFO, "Indexing the GTFS schedule data.")
    index = ScheduleIndex()
    for table in TABLE_PRIMARY_KEYS:
        rows = parsed[table]
        if rows is None:
            continue
        index.tables[table] = index_table(table, rows, config.trip_key_mutator)
        logger.info(f"Indexed {len(index.tables[table])} rows of {table}.txt")

    if config.index_stop_times:
        rows = parsed[STOP_TIMES]
        if rows is not None:
            require_columns(STOP_TIMES, rows, ["trip_id", "stop_id", "stop_sequence"])
            index.stop_times = build_stop_times_table(rows, config.trip_key_mutator)

    emit(sink, INFO, "Completed indexing the GTFS schedule data.")
    return index


def run_schedule_indexer(config: IndexerConfig, sink: ProgressSink | None = None) -> None:
    """Build the schedule index and write it to disk."""
    config.validate()
    index = build_schedule_index(config, sink)

    emit(sink, DEBUG, "Writing the indexed GTFS schedule data to disk.")
    try:
        write_schedule_index(config.schedule_index_path, index)
    except OSError:
        emit(sink, ERROR, "Error writing the indexed GTFS schedule data to disk.")
        raise
    emit(sink, INFO, "Successfully wrote the indexed GTFS schedule data to disk.")
