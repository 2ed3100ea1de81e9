"""
Remote resources used by the patcher: the diff index, diff payloads and the
unstripped libunity.so builds.
"""

import logging
from typing import BinaryIO, Dict, List, Optional, Tuple

import requests
from pydantic import TypeAdapter, ValidationError

from ..config.models import ResourceUrls
from ..exceptions import ResourceFetchError
from ..models import Diff, VersionDiffs

logger = logging.getLogger(__name__)

_VERSION_DIFFS_LIST = TypeAdapter(List[VersionDiffs])


class ExternalResources:
    """Network collaborator for diff metadata and payload streams."""

    def __init__(self, urls: ResourceUrls, session: Optional[requests.Session] = None):
        self.urls = urls
        self.session = session or requests.Session()

    def _get_json(self, url: str):
        try:
            resp = self.session.get(url, timeout=self.urls.timeout_sec)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ResourceFetchError(f"Failed to fetch {url}: {exc}", url=url) from exc

    def _open_stream(self, url: str) -> Tuple[BinaryIO, Optional[int]]:
        resp = self.session.get(url, stream=True, timeout=self.urls.timeout_sec)
        try:
            resp.raise_for_status()
        except requests.RequestException:
            resp.close()
            raise
        # Undo any transfer encoding so the byte count matches Content-Length
        resp.raw.decode_content = True

        length_header = resp.headers.get("Content-Length")
        length = int(length_header) if length_header and length_header.isdigit() else None
        return resp.raw, length

    def get_diff_index(self) -> List[VersionDiffs]:
        payload = self._get_json(self.urls.diff_index)
        try:
            return _VERSION_DIFFS_LIST.validate_python(payload)
        except ValidationError as exc:
            raise ResourceFetchError(
                f"Diff index was malformed: {exc}", url=self.urls.diff_index
            ) from exc

    def get_version_diffs(self, from_version: str, to_version: str) -> Optional[VersionDiffs]:
        for version_diffs in self.get_diff_index():
            if version_diffs.from_version == from_version and version_diffs.to_version == to_version:
                return version_diffs
        return None

    def get_diff_reader(self, diff: Diff) -> Tuple[BinaryIO, Optional[int]]:
        """Open a stream for a diff payload. Returns ``(stream, content_length)``.

        Network failures propagate as ``requests.RequestException``; the
        fetcher turns them into ``DiffDownloadError``.
        """
        url = self.urls.diff_download.format(diff_name=diff.diff_name)
        logger.debug("Opening diff stream %s", url)
        return self._open_stream(url)

    def get_libunity_stream(self, app_id: str, app_version: str) -> Optional[BinaryIO]:
        """Stream the unstripped libunity.so for this game version, or None if there isn't one."""
        index: Dict[str, Dict[str, str]] = self._get_json(self.urls.libunity_index) or {}
        unity_version = (index.get(app_id) or {}).get(app_version)
        if unity_version is None:
            logger.info("No unstripped libunity.so available for %s %s", app_id, app_version)
            return None

        url = self.urls.libunity_download.format(unity_version=unity_version)
        try:
            stream, _ = self._open_stream(url)
        except requests.RequestException as exc:
            raise ResourceFetchError(f"Failed to download libunity.so: {exc}", url=url) from exc
        return stream
