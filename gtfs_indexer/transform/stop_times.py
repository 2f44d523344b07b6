"""Per-trip stop time tables built from stop_times.txt rows."""

import logging

from gtfs_indexer.gtfs.models import (
    SequenceNumber,
    StopVisit,
    TableRow,
    TripKeyMutator,
    TripStopTimes,
    trip_key,
)

logger = logging.getLogger(__name__)


def parse_stop_sequence(value: str) -> SequenceNumber | None:
    """Integer stop_sequence, or None if the value is not an integer."""
    try:
        return int(value.strip())
    except ValueError:
        pass
    try:
        as_float = float(value)
    except ValueError:
        return None
    if as_float.is_integer():
        return int(as_float)
    return None


def build_stop_times_table(
    rows: list[TableRow], mutator: TripKeyMutator | None = None
) -> dict[str, TripStopTimes]:
    """
    Index stop_times rows by trip key and stop_sequence.

    Rows are linked in file order: each visit's ``next_stop`` is the visit
    created by the following row of the same trip. Feeds list a trip's stop
    times in travel order, so no re-sorting happens here.
    """
    logger.info("Building stop times table")

    table: dict[str, TripStopTimes] = {}
    last_visit: dict[str, StopVisit] = {}
    anomalies = 0

    for row in rows:
        key = trip_key(row["trip_id"], mutator)
        raw_seq = row["stop_sequence"]

        seq = parse_stop_sequence(raw_seq)
        if seq is None:
            anomalies += 1
            logger.warning(f"Trip {row['trip_id']} has non-integer stop_sequence {raw_seq!r}")
            seq = raw_seq

        visit = StopVisit(
            stop_id=row["stop_id"],
            arrival_time=row.get("arrival_time", ""),
            departure_time=row.get("departure_time", ""),
            stop_sequence=seq,
        )

        trip_table = table.get(key)
        if trip_table is None:
            trip_table = table[key] = TripStopTimes()

        if seq in trip_table.stop_info_by_sequence_number:
            logger.warning(f"Trip {row['trip_id']} repeats stop_sequence {seq}")
        trip_table.stop_info_by_sequence_number[seq] = visit
        trip_table.stop_id_to_sequence_numbers.setdefault(visit.stop_id, []).append(seq)

        prev = last_visit.get(key)
        if prev is not None:
            prev.next_stop = visit
        last_visit[key] = visit

    if anomalies:
        logger.warning(f"{anomalies} stop_times rows have a non-integer stop_sequence")
    logger.info(f"Built stop times for {len(table)} trips")
    return table
