"""Public API for gtfs-indexer."""

import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

from gtfs_indexer.events import ProgressSink
from gtfs_indexer.gtfs.models import IndexerConfig, PipelineConfig
from gtfs_indexer.indexing.schedule import run_schedule_indexer
from gtfs_indexer.indexing.spatial import run_spatial_indexer
from gtfs_indexer.output.json import publish
from gtfs_indexer.pipeline import FeedUpdatePipeline, PipelineResult

logger = logging.getLogger(__name__)

SCHEDULE_INDEX_FILE = "indexedScheduleData.json"
SPATIAL_INDEX_FILE = "indexedSpatialData.json"
STATISTICS_FILE = "indexingStatistics.json"


def index_feed(
    input_path: str,
    output_path: str,
    config: IndexerConfig | None = None,
    sink: ProgressSink | None = None,
) -> dict[str, str]:
    """
    Build the schedule and spatial indices of an extracted GTFS directory.

    Args:
        input_path: Path to GTFS directory
        output_path: Path to output directory
        config: Optional indexing configuration; its output paths take
            precedence over ``output_path``
        sink: Optional progress event sink

    Returns:
        Mapping of output name to written file path
    """
    output_dir = Path(output_path)
    if config is None:
        config = IndexerConfig(
            gtfs_dir=input_path,
            schedule_index_path=str(output_dir / SCHEDULE_INDEX_FILE),
            spatial_index_path=str(output_dir / SPATIAL_INDEX_FILE),
            statistics_path=str(output_dir / STATISTICS_FILE),
        )
    config.validate()

    logger.info(f"Starting indexing: {input_path} -> {output_path}")
    start_time = datetime.now(UTC)

    outputs = {
        "schedule_index": Path(config.schedule_index_path),
        "spatial_index": Path(config.spatial_index_path),
    }
    if config.log_indexing_statistics and config.statistics_path:
        outputs["statistics"] = Path(config.statistics_path)

    # Both builders write into a staging directory; nothing is published
    # unless both complete.
    output_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(dir=output_dir, prefix=".staging-") as staging_dir:
        staged = {name: Path(staging_dir) / f"{name}.json" for name in outputs}
        staged_config = replace(
            config,
            schedule_index_path=str(staged["schedule_index"]),
            spatial_index_path=str(staged["spatial_index"]),
            statistics_path=str(staged["statistics"]) if "statistics" in staged else None,
        )

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(run_schedule_indexer, staged_config, sink),
                executor.submit(run_spatial_indexer, staged_config, sink),
            ]
            for future in futures:
                future.result()

        publish([(staged[name], outputs[name]) for name in outputs])

    elapsed = (datetime.now(UTC) - start_time).total_seconds()
    logger.info(f"Indexing completed in {elapsed:.2f}s")
    return {name: str(path) for name, path in outputs.items()}


def update_feed(
    config: PipelineConfig,
    source: str | None = None,
    staged: bool = False,
    sink: ProgressSink | None = None,
) -> PipelineResult:
    """Run the staged update pipeline and publish fresh indices to ``config.data_dir``."""
    return FeedUpdatePipeline(config, sink=sink).run(source=source, staged=staged)
