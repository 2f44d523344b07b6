"""Retrieval and extraction of the GTFS feed archive."""

import logging
import shutil
import threading
import zipfile
from pathlib import Path
from urllib.parse import urlparse

import requests

from gtfs_indexer.errors import AcquisitionError, PipelineCancelled

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "gtfs.zip"
CHUNK_SIZE = 1 << 16


def is_url(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


def download_archive(
    url: str,
    dest: Path,
    timeout: float = 60.0,
    cancel_event: threading.Event | None = None,
) -> Path:
    """Stream ``url`` to ``dest``, checking ``cancel_event`` between chunks."""
    logger.info(f"Downloading {url}")
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if cancel_event is not None and cancel_event.is_set():
                        raise PipelineCancelled(f"Download of {url} cancelled")
                    f.write(chunk)
    except requests.RequestException as e:
        raise AcquisitionError(f"Failed to download {url}: {e}") from e

    logger.info(f"Downloaded {dest.stat().st_size} bytes to {dest}")
    return dest


def copy_archive(path: str, dest: Path) -> Path:
    """Copy a pre-downloaded archive into the working directory."""
    source = Path(path)
    if not source.is_file():
        raise AcquisitionError(f"Feed archive not found: {path}")
    shutil.copyfile(source, dest)
    logger.info(f"Copied {source} to {dest}")
    return dest


def acquire_archive(
    source: str,
    work_dir: Path,
    timeout: float = 60.0,
    cancel_event: threading.Event | None = None,
) -> Path:
    """Place the feed archive from a URL or a local path into ``work_dir``."""
    dest = work_dir / ARCHIVE_NAME
    if is_url(source):
        return download_archive(source, dest, timeout=timeout, cancel_event=cancel_event)
    return copy_archive(source, dest)


def extract_archive(archive: Path, dest_dir: Path) -> list[str]:
    """
    Unpack the feed archive into ``dest_dir``.

    Returns:
        Names of the extracted files
    """
    dest_root = dest_dir.resolve()
    try:
        with zipfile.ZipFile(archive) as zf:
            for member in zf.namelist():
                target = (dest_dir / member).resolve()
                if not target.is_relative_to(dest_root):
                    raise AcquisitionError(f"Archive member escapes the working directory: {member}")
            zf.extractall(dest_dir)
            names = [info.filename for info in zf.infolist() if not info.is_dir()]
    except zipfile.BadZipFile as e:
        raise AcquisitionError(f"Not a valid feed archive: {archive}: {e}") from e

    logger.info(f"Extracted {len(names)} files from {archive.name}")
    return names
