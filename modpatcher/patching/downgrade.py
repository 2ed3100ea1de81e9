"""Downgrade an installation with the diffs for a (from, to) version pair."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Union

from ..exceptions import PatchError
from ..models import VersionDiffs
from ..network.diff_fetcher import DiffFetcher
from .patcher import apply_diff

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class Downgrader:
    """Sequences diff download and application.

    Downloads run strictly one after another; the first failure aborts the
    downgrade and payloads that were already fetched stay on disk.
    """

    def __init__(self, fetcher: DiffFetcher):
        self.fetcher = fetcher

    def download_diffs(self, version_diffs: VersionDiffs, to_dir: PathLike) -> None:
        to_dir = Path(to_dir)
        to_dir.mkdir(parents=True, exist_ok=True)

        for diff in version_diffs.obb_diffs:
            logger.info("Downloading diff for OBB (this may take a long time) %s", diff.file_name)
            self.fetcher.download_diff_retry(diff, to_dir)

        logger.info("Downloading diff for APK (this may take a long time)")
        self.fetcher.download_diff_retry(version_diffs.apk_diff, to_dir)

    def apply_diffs(
        self,
        version_diffs: VersionDiffs,
        apk_source: PathLike,
        apk_dest: PathLike,
        obb_backups: Dict[Path, Path],
        diffs_dir: PathLike,
    ) -> Dict[Path, Path]:
        """Patch the APK and the backed-up OBBs.

        ``obb_backups`` maps original OBB paths to their backup copies. OBB
        diffs are applied to the backup copies in place (renamed when the diff
        names a different output file). The mapping is updated after every
        diff, so after a failure it still names the files on disk to restore.
        Returns the same mapping.
        """
        logger.info("Downgrading APK %s -> %s", version_diffs.from_version, version_diffs.to_version)
        apply_diff(apk_source, apk_dest, version_diffs.apk_diff, diffs_dir)

        by_name = {original.name: (original, backup) for original, backup in obb_backups.items()}

        for diff in version_diffs.obb_diffs:
            source_name = diff.source_file_name
            if source_name is None or source_name not in by_name:
                raise PatchError(
                    f"No backed up OBB matches diff {diff.diff_name} (expected {source_name!r})",
                    diff_name=diff.diff_name,
                )

            original, backup = by_name[source_name]
            output_name = diff.output_file_name or source_name
            patched_backup = backup.with_name(output_name)

            logger.info("Downgrading OBB %s", source_name)
            apply_diff(backup, patched_backup, diff, diffs_dir)
            del obb_backups[original]
            obb_backups[original.with_name(output_name)] = patched_backup
            if patched_backup != backup:
                backup.unlink()

        return obb_backups
