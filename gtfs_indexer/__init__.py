"""GTFS indexer - build schedule and spatial indices from static GTFS feeds."""

from gtfs_indexer.api import index_feed, update_feed
from gtfs_indexer.version import VERSION

__version__ = VERSION
__all__ = ["VERSION", "index_feed", "update_feed"]
