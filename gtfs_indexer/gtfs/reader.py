"""GTFS table reader."""

import csv
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from gtfs_indexer.errors import TableParseError
from gtfs_indexer.gtfs.models import TableRow

logger = logging.getLogger(__name__)

AGENCY = "agency"
CALENDAR = "calendar"
ROUTES = "routes"
STOPS = "stops"
TRIPS = "trips"
STOP_TIMES = "stop_times"
SHAPES = "shapes"


class GTFSReader:
    """Read raw GTFS tables from an extracted feed directory."""

    def __init__(self, gtfs_path: str) -> None:
        """Initialize reader with GTFS directory path."""
        self.gtfs_path = Path(gtfs_path)
        if not self.gtfs_path.is_dir():
            raise FileNotFoundError(f"GTFS path not found or not a directory: {gtfs_path}")

    def table_path(self, table: str) -> Path:
        return self.gtfs_path / f"{table}.txt"

    def read_table(self, table: str) -> list[TableRow]:
        """
        Read ``<table>.txt`` into a list of rows, keeping every value as a string.

        Raises:
            FileNotFoundError: the table file does not exist
            TableParseError: the file is not a well-formed delimited table
        """
        file_path = self.table_path(table)
        logger.debug(f"Reading {file_path.name}")

        rows: list[TableRow] = []
        try:
            with open(file_path, encoding="utf-8-sig", newline="") as f:
                reader = csv.DictReader(f, strict=True)
                if reader.fieldnames is None:
                    raise TableParseError(table, "missing header row")
                reader.fieldnames = [name.strip() for name in reader.fieldnames]

                for row in reader:
                    if None in row:
                        raise TableParseError(
                            table, f"line {reader.line_num} has more fields than the header"
                        )
                    rows.append({k: (v if v is not None else "") for k, v in row.items()})
        except csv.Error as e:
            raise TableParseError(table, str(e)) from e
        except UnicodeDecodeError as e:
            raise TableParseError(table, f"not valid UTF-8: {e}") from e

        logger.debug(f"Read {len(rows)} rows from {file_path.name}")
        return rows

    def read_tables(self, tables: list[str]) -> dict[str, list[TableRow] | None]:
        """
        Read several tables concurrently.

        A missing file maps to ``None``; any other failure propagates.
        """
        results: dict[str, list[TableRow] | None] = {}
        with ThreadPoolExecutor(max_workers=max(1, len(tables))) as executor:
            futures = {table: executor.submit(self.read_optional, table) for table in tables}
            for table, future in futures.items():
                results[table] = future.result()
        return results

    def read_optional(self, table: str) -> list[TableRow] | None:
        """Read a table, mapping a missing file to None."""
        try:
            return self.read_table(table)
        except FileNotFoundError:
            logger.warning(f"{table}.txt not found, skipping")
            return None


def require_columns(table: str, rows: list[TableRow], columns: list[str]) -> None:
    """Raise TableParseError if the table lacks any of ``columns``."""
    if not rows:
        return
    missing = [column for column in columns if column not in rows[0]]
    if missing:
        raise TableParseError(table, f"missing required columns {missing}")
