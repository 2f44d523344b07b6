"""Command-line interface for gtfs-indexer."""

import argparse
import logging
import sys
from pathlib import Path

from gtfs_indexer.api import index_feed, update_feed
from gtfs_indexer.errors import ConfigError
from gtfs_indexer.events import logging_sink
from gtfs_indexer.gtfs.models import IndexerConfig, PipelineConfig, TripKeyMutator
from gtfs_indexer.version import VERSION


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _mutator(args: argparse.Namespace) -> TripKeyMutator | None:
    if args.trip_key_pattern is None:
        return None
    return TripKeyMutator(args.trip_key_pattern, args.trip_key_replacement)


def cmd_index(args: argparse.Namespace) -> int:
    """Execute index command."""
    setup_logging(args.verbose)

    try:
        config = IndexerConfig(
            gtfs_dir=args.input,
            schedule_index_path=str(Path(args.output) / args.schedule_file),
            spatial_index_path=str(Path(args.output) / args.spatial_file),
            statistics_path=str(Path(args.output) / args.statistics_file),
            trip_key_mutator=_mutator(args),
            index_stop_times=args.index_stop_times,
            log_indexing_statistics=args.log_statistics,
            deviation_threshold_ft=args.deviation_threshold,
            jobs=args.jobs,
        )
        files = index_feed(args.input, args.output, config, sink=logging_sink)
        print("\nIndexing successful!")
        for name, path in files.items():
            print(f"{name}: {path}")
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        logging.exception("Indexing failed")
        return 1


def cmd_update(args: argparse.Namespace) -> int:
    """Execute update command."""
    setup_logging(args.verbose)

    try:
        config = PipelineConfig(
            work_dir=args.work_dir,
            data_dir=args.data_dir,
            feed_url=args.source,
            schedule_index_file_name=args.schedule_file,
            spatial_index_file_name=args.spatial_file,
            statistics_file_name=args.statistics_file,
            trip_key_mutator=_mutator(args),
            index_stop_times=args.index_stop_times,
            log_indexing_statistics=args.log_statistics,
            deviation_threshold_ft=args.deviation_threshold,
            jobs=args.jobs,
            keep_work_dir=args.keep_work_dir,
        )
        result = update_feed(config, staged=args.staged, sink=logging_sink)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if result.ok:
        print("\nGTFS data update complete.")
        for path in result.published:
            print(f"Published: {path}")
    else:
        stage = result.failed_stage.value if result.failed_stage else "unknown"
        print(f"Error during {stage}: {result.error}", file=sys.stderr)
    return result.exit_code


def _add_indexing_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--schedule-file",
        default="indexedScheduleData.json",
        help="Schedule index file name (default: indexedScheduleData.json)",
    )
    parser.add_argument(
        "--spatial-file",
        default="indexedSpatialData.json",
        help="Spatial index file name (default: indexedSpatialData.json)",
    )
    parser.add_argument(
        "--statistics-file",
        default="indexingStatistics.json",
        help="Indexing statistics file name (default: indexingStatistics.json)",
    )
    parser.add_argument(
        "--trip-key-pattern",
        default=None,
        help="Regular expression rewritten in trip_id to form trip keys",
    )
    parser.add_argument(
        "--trip-key-replacement",
        default="",
        help="Replacement for --trip-key-pattern (default: empty string)",
    )
    parser.add_argument(
        "--index-stop-times",
        type=lambda x: x.lower() == "true",
        default=True,
        help="Index stop_times.txt into the schedule index (default: true)",
    )
    parser.add_argument(
        "--log-statistics",
        type=lambda x: x.lower() == "true",
        default=True,
        help="Write the indexing statistics file (default: true)",
    )
    parser.add_argument(
        "--deviation-threshold",
        type=float,
        default=5.0,
        help="Stop-to-shape deviation in feet reported as an anomaly (default: 5)",
    )
    parser.add_argument(
        "--jobs",
        type=int,
        default=1,
        help="Worker processes for stop fitting, 0 for one per core (default: 1)",
    )


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="gtfs-indexer",
        description="Build schedule and spatial indices from a static GTFS feed",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Index command
    index_parser = subparsers.add_parser("index", help="Index an extracted GTFS directory")
    index_parser.add_argument("--input", required=True, help="Path to GTFS directory")
    index_parser.add_argument(
        "--output", default="./gtfs_data", help="Output directory (default: ./gtfs_data)"
    )
    _add_indexing_arguments(index_parser)
    index_parser.set_defaults(func=cmd_index)

    # Update command
    update_parser = subparsers.add_parser(
        "update", help="Fetch, index and publish a feed archive"
    )
    update_parser.add_argument(
        "--source", default=None, help="Feed archive URL or local path to the archive"
    )
    update_parser.add_argument(
        "--work-dir", required=True, help="Scratch directory, cleared on every run"
    )
    update_parser.add_argument(
        "--data-dir", required=True, help="Directory the indices are published to"
    )
    update_parser.add_argument(
        "--staged",
        action="store_true",
        help="The feed is already extracted in --work-dir; skip download and extraction",
    )
    update_parser.add_argument(
        "--keep-work-dir",
        action="store_true",
        help="Keep the working directory after a successful run",
    )
    _add_indexing_arguments(update_parser)
    update_parser.set_defaults(func=cmd_update)

    # Parse and execute
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
