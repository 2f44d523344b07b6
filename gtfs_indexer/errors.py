"""Exception types raised by the indexer."""


class IndexerError(Exception):
    """Base class for indexer failures."""


class ConfigError(IndexerError):
    """Invalid configuration, detected before any I/O."""


class TableParseError(IndexerError):
    """A GTFS table could not be parsed structurally."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table


class AcquisitionError(IndexerError):
    """The feed archive could not be retrieved or unpacked."""


class PipelineCancelled(IndexerError):
    """The run was aborted by the caller."""
