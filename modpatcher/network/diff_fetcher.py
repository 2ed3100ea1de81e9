"""Downloads diff payloads with bounded retry and throttled progress reporting."""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Protocol, Tuple, Union

import requests

from ..exceptions import DiffDownloadError
from ..models import Diff

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DIFF_DOWNLOAD_ATTEMPTS = 3

ProgressCallback = Callable[[float], None]


class DiffSource(Protocol):
    def get_diff_reader(self, diff: Diff) -> Tuple[BinaryIO, Optional[int]]:
        ...


def copy_stream_progress(
    reader: BinaryIO,
    writer: BinaryIO,
    on_chunk: Callable[[int], None],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Copy ``reader`` into ``writer``, calling ``on_chunk`` with the running byte count."""
    copied = 0
    while True:
        chunk = reader.read(chunk_size)
        if not chunk:
            break
        writer.write(chunk)
        copied += len(chunk)
        on_chunk(copied)
    return copied


def _log_progress(percent: float) -> None:
    logger.info("Progress: %.2f%%", percent)


class DiffFetcher:
    """Fetches diffs one at a time from a ``DiffSource``."""

    def __init__(
        self,
        source: DiffSource,
        attempts: int = DIFF_DOWNLOAD_ATTEMPTS,
        progress_interval: float = 2.0,
        on_progress: Optional[ProgressCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.attempts = max(1, attempts)
        self.progress_interval = progress_interval
        self.on_progress = on_progress or _log_progress
        self.clock = clock

    def download_diff(self, diff: Diff, to_dir: Union[str, Path]) -> Path:
        """Download ``diff`` to ``to_dir / diff.file_name``."""
        target = Path(to_dir) / diff.file_name
        try:
            with open(target, "wb") as output:
                resp, length = self.source.get_diff_reader(diff)
                try:
                    if length:
                        last_update = self.clock()

                        def report(bytes_copied: int) -> None:
                            nonlocal last_update
                            now = self.clock()
                            if now - last_update >= self.progress_interval:
                                last_update = now
                                self.on_progress(bytes_copied / length * 100.0)

                        copy_stream_progress(resp, output, report)
                    else:
                        logger.warning(
                            "Diff repository returned no Content-Length for %s, so cannot show download progress",
                            diff.diff_name,
                        )
                        shutil.copyfileobj(resp, output, DEFAULT_CHUNK_SIZE)
                finally:
                    close = getattr(resp, "close", None)
                    if close is not None:
                        close()
        except (OSError, requests.RequestException) as exc:
            raise DiffDownloadError(f"Failed to download diff {diff.diff_name}: {exc}", diff_name=diff.diff_name) from exc
        return target

    def download_diff_retry(self, diff: Diff, to_dir: Union[str, Path]) -> Path:
        """Attempt the download up to ``attempts`` times; the final failure propagates unchanged."""
        attempt = 1
        while True:
            try:
                return self.download_diff(diff, to_dir)
            except DiffDownloadError as err:
                if attempt >= self.attempts:
                    raise
                logger.error("Failed to download %s: %s. Trying again...", diff.diff_name, err)
            attempt += 1
