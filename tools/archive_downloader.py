from __future__ import annotations

import hashlib
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3 import Retry

from configuration import Configuration as Config
from models.download import DownloadOutcome, DownloadSummary, DownloadTask
from utils import format_package_list
from loggers.archive_downloader_logger import archive_downloader_logger as logger


# ----------------------------
# Filename derivation
# ----------------------------

def filename_from_url(url: str) -> str:
    """
    Derive the archive filename for a URL.

    Uses the last non-empty path segment, falling back to the host (or "download")
    when the path is empty. Names without a recognized tarball suffix get ".tar.gz"
    appended; that only normalizes the name, the bytes are stored as served.
    """
    try:
        parsed = urlparse(url)
        path, host = parsed.path, parsed.hostname
    except ValueError:
        # unparseable netloc; split the raw string by hand
        path, host = url.split("#", 1)[0].split("?", 1)[0], None

    segments = [s for s in path.split("/") if s]
    if segments:
        filename = segments[-1]
    else:
        filename = host or "download"

    if not filename.lower().endswith(Config.tarball_suffixes):
        filename = filename + Config.default_tarball_suffix
    return filename


def _url_digest(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:12]


def plan_destinations(tasks: Sequence[DownloadTask], destination_dir: Path) -> Dict[str, Path]:
    """
    Assign every task URL a distinct destination path under destination_dir.

    When two URLs derive the same filename (compared case-insensitively), every
    later one is prefixed with a short hash of its URL so nothing is overwritten.
    If that name is taken too, a counter is added after the hash.
    """
    destinations: Dict[str, Path] = {}
    claimed: Dict[str, str] = {}

    for task in tasks:
        if task.url in destinations:
            continue
        filename = filename_from_url(task.url)
        key = filename.lower()
        if key in claimed:
            digest = _url_digest(task.url)
            renamed = f"{digest}-{filename}"
            n = 1
            while renamed.lower() in claimed:
                renamed = f"{digest}-{n}-{filename}"
                n += 1
            logger.warning(
                "Filename collision: %s and %s both map to %s; saving the latter as %s",
                claimed[key], task.url, filename, renamed,
            )
            filename = renamed
            key = filename.lower()
        claimed[key] = task.url
        destinations[task.url] = Path(destination_dir, filename)

    return destinations


# ----------------------------
# HTTP client
# ----------------------------

class ArchiveDownloader:
    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        pool_size: int = 10,
        timeout_seconds: Optional[float] = None,
        chunk_size: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        self.timeout = Config.http_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.chunk_size = chunk_size or Config.download_chunk_size

        if session is None:
            retries = Retry(
                total=Config.download_max_retries if max_retries is None else max_retries,
                backoff_factor=0.5,
                status_forcelist=(429, 500, 502, 503, 504),
                allowed_methods=frozenset(["GET"]),
                raise_on_status=False,
            )
            # one pooled connection per worker so none are discarded under load
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=retries)
            session = requests.Session()
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            session.headers.update({"User-Agent": Config.user_agent})
        self.session = session

    def fetch(self, url: str, dest: Path) -> None:
        """
        Stream url into dest.

        Raises:
            RuntimeError: on a non-2xx status or a transport/write failure;
                          a partially written dest is removed first
        """
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                if not 200 <= resp.status_code < 300:
                    raise RuntimeError(f"bad status: {resp.status_code} {resp.reason or ''}".rstrip())
                try:
                    with open(dest, "wb") as f:
                        for chunk in resp.iter_content(chunk_size=self.chunk_size):
                            if chunk:
                                f.write(chunk)
                except requests.RequestException as e:
                    _remove_partial(dest)
                    raise RuntimeError(f"failed to save file: {e}") from e
                except OSError as e:
                    _remove_partial(dest)
                    raise RuntimeError(f"failed to create file {dest}: {e}") from e
        except requests.RequestException as e:
            raise RuntimeError(f"failed to download: {e}") from e

    def download_task(self, task: DownloadTask, dest: Path, index: int = 0, total: int = 0) -> DownloadOutcome:
        """Worker body: always returns an outcome, never raises."""
        logger.info("Starting download (%d/%d): %s [%s]", index, total, dest.name, format_package_list(task.packages))
        try:
            self.fetch(task.url, dest)
        except RuntimeError as e:
            return DownloadOutcome(url=task.url, packages=task.packages, path=dest, error=str(e))
        return DownloadOutcome(url=task.url, packages=task.packages, path=dest)

    def close(self) -> None:
        self.session.close()


def _remove_partial(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial download %s: %s", path, e)


# ----------------------------
# Collection
# ----------------------------

def download_concurrently(
    tasks: Sequence[DownloadTask],
    destination_dir: Path,
    concurrency: Optional[int] = None,
    *,
    session: Optional[requests.Session] = None,
) -> DownloadSummary:
    """
    Download every task into destination_dir using at most `concurrency` workers.

    destination_dir must already exist. Exactly one DownloadOutcome is recorded per
    task; failures are isolated to their task and never retried unless retries are
    configured. Successful files are listed in completion order.
    """
    concurrency = Config.download_concurrency if concurrency is None else concurrency
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    destination_dir = Path(destination_dir)
    summary = DownloadSummary()
    if not tasks:
        return summary

    destinations = plan_destinations(tasks, destination_dir)
    downloader = ArchiveDownloader(session=session, pool_size=concurrency)
    total = len(tasks)

    try:
        with ThreadPoolExecutor(max_workers=concurrency) as ex:
            fut_map = {
                ex.submit(downloader.download_task, task, destinations[task.url], i, total): task
                for i, task in enumerate(tasks, start=1)
            }
            for fut in as_completed(fut_map):
                outcome: DownloadOutcome = fut.result()
                summary.record(outcome)
                if outcome.ok:
                    logger.info(
                        "Downloaded (%d/%d): %s [%s]",
                        summary.total, total, outcome.path.name, format_package_list(outcome.packages),
                    )
                else:
                    logger.error("Error downloading %s: %s", outcome.url, outcome.error)
    finally:
        if session is None:
            downloader.close()

    return summary


def failed_outcomes(summary: DownloadSummary) -> List[DownloadOutcome]:
    return [o for o in summary.outcomes if not o.ok]
