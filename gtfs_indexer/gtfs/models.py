"""Data models for GTFS tables and the produced indices."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gtfs_indexer.errors import ConfigError

# Raw CSV row: column name -> string value
TableRow = dict[str, str]

# GTFS stop_sequence; non-integer values are kept as their raw string
SequenceNumber = int | str

FEET_PER_KM = 3280.84


@dataclass(frozen=True)
class TripKeyMutator:
    """Derive trip keys from trip ids by replacing the first match of ``pattern``."""

    pattern: str
    replacement: str

    def __post_init__(self) -> None:
        try:
            re.compile(self.pattern)
        except re.error as e:
            raise ConfigError(f"Invalid trip key pattern {self.pattern!r}: {e}") from e

    def __call__(self, trip_id: str) -> str:
        return re.sub(self.pattern, self.replacement, trip_id, count=1)


def trip_key(trip_id: str, mutator: TripKeyMutator | None = None) -> str:
    """Map a GTFS trip_id to the key used in the output indices."""
    if mutator is None:
        return trip_id
    return mutator(trip_id)


@dataclass(eq=False)
class StopVisit:
    """A trip's visit to a stop, linked to the next visit of the same trip."""

    stop_id: str
    arrival_time: str
    departure_time: str
    stop_sequence: SequenceNumber
    next_stop: "StopVisit | None" = field(default=None, repr=False)


@dataclass
class TripStopTimes:
    """Stop visits of one trip addressable by stop_sequence."""

    stop_info_by_sequence_number: dict[SequenceNumber, StopVisit] = field(default_factory=dict)
    stop_id_to_sequence_numbers: dict[str, list[SequenceNumber]] = field(default_factory=dict)

    def get(self, stop_sequence: SequenceNumber) -> StopVisit | None:
        return self.stop_info_by_sequence_number.get(stop_sequence)

    def visits(self) -> list[StopVisit]:
        """Visits following ``next_stop`` links from the first one inserted."""
        if not self.stop_info_by_sequence_number:
            return []
        visit: StopVisit | None = next(iter(self.stop_info_by_sequence_number.values()))
        ordered = []
        while visit is not None:
            ordered.append(visit)
            visit = visit.next_stop
        return ordered


@dataclass(frozen=True)
class Waypoint:
    """Shape point with cumulative distance (km) from the start of the path."""

    latitude: float
    longitude: float
    dist_traveled: float


@dataclass(frozen=True)
class StopProjection:
    """A stop snapped onto one segment of its trip's shape."""

    segment_num: int
    stop_id: str
    stop_coords: tuple[float, float]  # (lon, lat)
    snapped_coords: tuple[float, float]  # (lon, lat)
    snapped_dist_along_km: float
    deviation: float  # km
    previous_stop_id: str | None = None


@dataclass(frozen=True)
class TripProjections:
    """Stop projections of one fitting problem plus trip-level metadata."""

    projections: dict[str, StopProjection]
    origin_stop_id: str | None
    destination_stop_id: str | None
    shape_id: str


@dataclass
class SpatialIndex:
    """Shapes, memoized stop projections, and the trip key lookup into them."""

    shapes: dict[str, list[Waypoint]] = field(default_factory=dict)
    stop_projections_table: list[TripProjections] = field(default_factory=list)
    trip_key_to_projections_table_index: dict[str, int] = field(default_factory=dict)


@dataclass
class IndexingStatistics:
    """Feed quality signals collected while fitting stops to shapes."""

    simple_fitting_cases: int = 0
    least_squares_cases: int = 0
    trips_with_anomalies: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    trips_without_projections: list[str] = field(default_factory=list)
    trips_requiring_regression: list[str] = field(default_factory=list)


@dataclass
class ScheduleIndex:
    """Keyed schedule tables and, optionally, the per-trip stop times."""

    tables: dict[str, dict[str, TableRow]] = field(default_factory=dict)
    stop_times: dict[str, TripStopTimes] | None = None


@dataclass
class IndexerConfig:
    """Configuration for indexing a GTFS directory."""

    gtfs_dir: str
    schedule_index_path: str
    spatial_index_path: str
    statistics_path: str | None = None
    trip_key_mutator: TripKeyMutator | None = None
    index_stop_times: bool = True
    log_indexing_statistics: bool = True
    deviation_threshold_ft: float = 5.0
    jobs: int = 1  # 0 = one worker per core

    def validate(self) -> None:
        """Raise ConfigError on settings that would fail later."""
        if not self.gtfs_dir:
            raise ConfigError("gtfs_dir is required")
        if not self.schedule_index_path or not self.spatial_index_path:
            raise ConfigError("schedule_index_path and spatial_index_path are required")
        if self.log_indexing_statistics and not self.statistics_path:
            raise ConfigError("statistics_path is required when logging indexing statistics")
        if self.deviation_threshold_ft < 0:
            raise ConfigError(
                f"deviation_threshold_ft must be non-negative, got {self.deviation_threshold_ft}"
            )
        if self.jobs < 0:
            raise ConfigError(f"jobs must be >= 0, got {self.jobs}")


@dataclass
class PipelineConfig:
    """Configuration for a full staged feed update."""

    work_dir: str
    data_dir: str
    feed_url: str | None = None
    schedule_index_file_name: str = "indexedScheduleData.json"
    spatial_index_file_name: str = "indexedSpatialData.json"
    statistics_file_name: str = "indexingStatistics.json"
    trip_key_mutator: TripKeyMutator | None = None
    index_stop_times: bool = True
    log_indexing_statistics: bool = True
    deviation_threshold_ft: float = 5.0
    jobs: int = 1
    keep_work_dir: bool = False
    download_timeout: float = 60.0  # seconds

    def validate(self) -> None:
        """Raise ConfigError on settings that would fail later."""
        if not self.work_dir or not self.data_dir:
            raise ConfigError("work_dir and data_dir are required")
        if Path(self.work_dir).resolve() == Path(self.data_dir).resolve():
            raise ConfigError("work_dir and data_dir must be different directories")
        names = [
            self.schedule_index_file_name,
            self.spatial_index_file_name,
            self.statistics_file_name,
        ]
        if len(set(names)) != len(names):
            raise ConfigError(f"Output file names must be distinct: {names}")
        for name in names:
            if not name or Path(name).name != name:
                raise ConfigError(f"Output file name must be a bare file name: {name!r}")
        if self.download_timeout <= 0:
            raise ConfigError(f"download_timeout must be positive, got {self.download_timeout}")
        self.indexer_config().validate()

    def output_file_names(self) -> list[str]:
        """File names published to the data directory."""
        names = [self.schedule_index_file_name, self.spatial_index_file_name]
        if self.log_indexing_statistics:
            names.append(self.statistics_file_name)
        return names

    def indexer_config(self) -> IndexerConfig:
        """Indexer settings writing every output inside the working directory."""
        work_dir = Path(self.work_dir)
        return IndexerConfig(
            gtfs_dir=str(work_dir),
            schedule_index_path=str(work_dir / self.schedule_index_file_name),
            spatial_index_path=str(work_dir / self.spatial_index_file_name),
            statistics_path=str(work_dir / self.statistics_file_name),
            trip_key_mutator=self.trip_key_mutator,
            index_stop_times=self.index_stop_times,
            log_indexing_statistics=self.log_indexing_statistics,
            deviation_threshold_ft=self.deviation_threshold_ft,
            jobs=self.jobs,
        )
