"""Shape path construction from shapes.txt rows."""

import logging

from gtfs_indexer.geometry import haversine_km
from gtfs_indexer.gtfs.models import TableRow, Waypoint

logger = logging.getLogger(__name__)


def build_shape_paths(rows: list[TableRow] | None) -> dict[str, list[Waypoint]]:
    """
    Build shape_id -> waypoints annotated with cumulative distance (km).

    Rows are consumed in file order. A new path starts whenever the shape_id
    changes or shape_pt_sequence decreases.
    """
    if rows is None:
        logger.warning("No shapes table, trips will have no stop projections")
        return {}

    logger.info("Building shape paths")

    shapes: dict[str, list[Waypoint]] = {}
    current_id: str | None = None
    current_path: list[Waypoint] = []
    last_seq = float("inf")

    for row in rows:
        shape_id = row.get("shape_id", "")
        try:
            lat = float(row["shape_pt_lat"])
            lon = float(row["shape_pt_lon"])
            seq = float(row["shape_pt_sequence"])
        except (KeyError, ValueError):
            logger.warning(f"Skipping malformed shape point for shape {shape_id!r}: {row}")
            continue

        if shape_id != current_id or seq < last_seq:
            if shape_id in shapes:
                logger.warning(
                    f"Shape {shape_id} restarts at sequence {row['shape_pt_sequence']}, "
                    "replacing previously read points"
                )
            current_id = shape_id
            current_path = []
            shapes[shape_id] = current_path
            dist = 0.0
        else:
            prev = current_path[-1]
            dist = prev.dist_traveled + haversine_km(prev.latitude, prev.longitude, lat, lon)

        current_path.append(Waypoint(latitude=lat, longitude=lon, dist_traveled=dist))
        last_seq = seq

    logger.info(f"Built {len(shapes)} shape paths")
    return shapes
