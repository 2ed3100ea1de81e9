"""Moves OBB files and player data out of the way while the app is reinstalled.

The install locations and the backup directory may sit on different mount
points, so a move is always a copy followed by deleting the original.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..exceptions import FileOperationError
from ..utils.result import attempt, is_err

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _copy_file(src: Path, dst: Path, operation: str) -> None:
    try:
        shutil.copyfile(src, dst)
    except OSError as exc:
        raise FileOperationError(
            f"Failed to copy {src} to {dst}: {exc}", file_path=str(src), operation=operation
        ) from exc


def save_obbs(
    obb_dir: PathLike,
    backup_dir: PathLike,
    extension: str = ".obb",
    backups: Optional[Dict[Path, Path]] = None,
) -> Dict[Path, Path]:
    """Move every ``extension`` file from ``obb_dir`` into ``backup_dir``.

    Returns an ordered mapping of original path to backup path. Files
    without an extension (DLC) are left in place: they are large and can be
    redownloaded.

    Entries are added to ``backups`` as each file is moved, so a caller that
    passes its own mapping still sees what was moved if a later file fails.
    """
    obb_dir = Path(obb_dir)
    backup_dir = Path(backup_dir)
    if backups is None:
        backups = {}

    if not obb_dir.is_dir():
        logger.info("No OBB directory at %s", obb_dir)
        return backups

    backup_dir.mkdir(parents=True, exist_ok=True)
    for path in sorted(obb_dir.iterdir()):
        if not path.is_file() or path.suffix != extension:
            continue

        backup_path = backup_dir / path.name
        _copy_file(path, backup_path, "backup")
        try:
            path.unlink()
        except OSError as exc:
            raise FileOperationError(
                f"Failed to remove original OBB {path}: {exc}", file_path=str(path), operation="backup"
            ) from exc
        logger.debug("Backed up %s to %s", path, backup_path)
        backups[path] = backup_path

    return backups


def restore_obbs(restore_dir: PathLike, backups: Dict[Path, Path]) -> List[Path]:
    """Copy each backup to ``restore_dir`` under its original name, then delete the backup.

    Every entry is attempted even if an earlier one fails; the failures are
    raised together as one ``FileOperationError`` at the end. Entries whose
    backup was restored and deleted are removed from ``backups``, so the
    mapping left behind names every backup still on disk.

    Returns the backups that could not be deleted afterwards; those are
    logged but do not fail the restore.
    """
    restore_dir = Path(restore_dir)
    restore_dir.mkdir(parents=True, exist_ok=True)
    leaked: List[Path] = []
    failed: List[FileOperationError] = []
    total = len(backups)

    for original, backup_path in list(backups.items()):
        logger.info("Restoring %s", original.name)
        try:
            _copy_file(backup_path, restore_dir / original.name, "restore")
        except FileOperationError as exc:
            logger.error("%s", exc)
            failed.append(exc)
            continue

        removed = attempt(os.remove, backup_path,
                          context=f"Failed to delete OBB backup {backup_path} after restoring it")
        if is_err(removed):
            removed.log(logger)
            leaked.append(backup_path)
        else:
            del backups[original]

    if failed:
        raise FileOperationError(
            f"Failed to restore {len(failed)} of {total} OBB files: "
            + "; ".join(str(exc) for exc in failed),
            operation="restore",
            details={"failed_files": [exc.details.get("file_path") for exc in failed]},
        )
    return leaked


def backup_player_data(data_file: PathLike, backup_file: PathLike) -> bool:
    """Copy the player data file to ``backup_file``. Returns False if there was nothing to back up."""
    data_file = Path(data_file)
    backup_file = Path(backup_file)
    if not data_file.exists():
        logger.info("No player data to save")
        return False

    logger.info("Backing up player data")
    backup_file.parent.mkdir(parents=True, exist_ok=True)
    _copy_file(data_file, backup_file, "backup")
    return True


def restore_player_data(backup_file: PathLike, data_file: PathLike) -> None:
    data_file = Path(data_file)
    logger.info("Restoring player data")
    data_file.parent.mkdir(parents=True, exist_ok=True)
    _copy_file(Path(backup_file), data_file, "restore")
