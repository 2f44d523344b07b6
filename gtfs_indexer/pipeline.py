"""Staged feed update: stage, acquire, extract, index, publish."""

import logging
import shutil
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TypeVar

from gtfs_indexer.errors import AcquisitionError, ConfigError, PipelineCancelled
from gtfs_indexer.events import DEBUG, ERROR, INFO, ProgressSink, emit
from gtfs_indexer.feed import acquire_archive, extract_archive
from gtfs_indexer.gtfs.models import PipelineConfig
from gtfs_indexer.indexing.schedule import run_schedule_indexer
from gtfs_indexer.indexing.spatial import run_spatial_indexer
from gtfs_indexer.output.json import publish_files

logger = logging.getLogger(__name__)

# (source, work_dir) -> path of the archive placed in work_dir
Fetcher = Callable[[str, Path], Path]

T = TypeVar("T")


class PipelineState(Enum):
    INIT = "init"
    STAGING = "staging"
    ACQUIRING = "acquiring"
    EXTRACTING = "extracting"
    INDEXING = "indexing"
    PUBLISHING = "publishing"
    DONE = "done"
    CLEANUP = "cleanup"
    FAILED = "failed"


@dataclass
class PipelineResult:
    """Outcome of one run."""

    state: PipelineState
    error: Exception | None = None
    failed_stage: PipelineState | None = None
    published: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


class FeedUpdatePipeline:
    """
    Rebuild both indices from a feed archive and publish them.

    The previously published indices stay in place until every output of the
    new run has been built; publication then replaces all of them together.
    Any failure removes the working directory and reports a single terminal
    error event.
    """

    def __init__(
        self,
        config: PipelineConfig,
        sink: ProgressSink | None = None,
        fetcher: Fetcher | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self.sink = sink
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.fetcher = fetcher or self._default_fetcher
        self.state = PipelineState.INIT
        self.work_dir = Path(config.work_dir)
        self.data_dir = Path(config.data_dir)

    def cancel(self) -> None:
        """Abort the run at the next stage boundary or download chunk."""
        self.cancel_event.set()

    def run(self, source: str | None = None, staged: bool = False) -> PipelineResult:
        """
        Execute the update.

        Args:
            source: archive URL or local path; defaults to ``config.feed_url``
            staged: the feed is already extracted in the working directory,
                so acquisition and extraction are skipped
        """
        source = source or self.config.feed_url
        if not staged and not source:
            raise ConfigError("A feed URL or archive path is required unless the feed is staged")

        start_time = datetime.now(UTC)
        self.state = PipelineState.INIT
        published: list[str] = []

        try:
            self._run_stage(PipelineState.STAGING, lambda: self._stage_work_dir(staged))
            if staged:
                emit(self.sink, DEBUG, "Feed already staged, skipping acquisition and extraction.")
            else:
                archive = self._run_stage(PipelineState.ACQUIRING, lambda: self._acquire(source))
                self._run_stage(
                    PipelineState.EXTRACTING, lambda: extract_archive(archive, self.work_dir)
                )
            self._run_stage(PipelineState.INDEXING, self._index)
            published = self._run_stage(PipelineState.PUBLISHING, self._publish)
        except Exception as e:
            return self._fail(e)

        if not self.config.keep_work_dir:
            shutil.rmtree(self.work_dir, ignore_errors=True)

        self._transition(PipelineState.DONE)
        elapsed = (datetime.now(UTC) - start_time).total_seconds()
        emit(self.sink, INFO, f"GTFS data update complete in {elapsed:.2f}s.")
        return PipelineResult(state=PipelineState.DONE, published=published)

    def _run_stage(self, state: PipelineState, action: Callable[[], T]) -> T:
        if self.cancel_event.is_set():
            raise PipelineCancelled(f"Run cancelled before {state.value}")
        self._transition(state)
        emit(self.sink, INFO, f"Stage {state.value} started.")
        result = action()
        emit(self.sink, DEBUG, f"Stage {state.value} finished.")
        return result

    def _transition(self, state: PipelineState) -> None:
        logger.debug(f"Pipeline {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, error: Exception) -> PipelineResult:
        failed_stage = self.state
        logger.error(f"Feed update failed during {failed_stage.value}: {error}", exc_info=error)

        self._transition(PipelineState.CLEANUP)
        shutil.rmtree(self.work_dir, ignore_errors=True)

        self._transition(PipelineState.FAILED)
        emit(
            self.sink,
            ERROR,
            f"GTFS data update failed during {failed_stage.value}: "
            f"{type(error).__name__}: {error}",
        )
        return PipelineResult(state=PipelineState.FAILED, error=error, failed_stage=failed_stage)

    def _stage_work_dir(self, staged: bool) -> None:
        if staged:
            if not self.work_dir.is_dir():
                raise AcquisitionError(f"Staged feed directory not found: {self.work_dir}")
            return
        if self.work_dir.exists():
            shutil.rmtree(self.work_dir)
        self.work_dir.mkdir(parents=True)

    def _acquire(self, source: str | None) -> Path:
        if not source:
            raise ConfigError("A feed URL or archive path is required to acquire the feed")
        return self.fetcher(source, self.work_dir)

    def _default_fetcher(self, source: str, work_dir: Path) -> Path:
        return acquire_archive(
            source,
            work_dir,
            timeout=self.config.download_timeout,
            cancel_event=self.cancel_event,
        )

    def _index(self) -> None:
        indexer_config = self.config.indexer_config()
        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(run_schedule_indexer, indexer_config, self.sink),
                executor.submit(run_spatial_indexer, indexer_config, self.sink),
            ]
            for future in futures:
                future.result()

    def _publish(self) -> list[str]:
        sources = [self.work_dir / name for name in self.config.output_file_names()]
        return [str(path) for path in publish_files(sources, self.data_dir)]
