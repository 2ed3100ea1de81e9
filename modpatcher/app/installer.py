"""
End-to-end modding of the installed app.

The order of operations is fixed: the app's assets and player data must be
moved aside before the vanilla app is uninstalled (uninstalling deletes
them) and put back only after the modded APK is installed. Every step that
changes device state registers an undo, so a failure part way through puts
the backups back where they came from before the error is reported.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Optional, TypeVar

from ..apk.container import ApkContainer
from ..apk.mutation import get_modloader_installed, patch_apk_in_place
from ..backup import backup_player_data, restore_obbs, restore_player_data, save_obbs
from ..config.models import PatcherConfig
from ..exceptions import BaseError, FileOperationError, PatchError, PipelineStageError
from ..logging_config import LoggingTimer
from ..models import AppInfo, AppInfoStatus, BackupSet
from ..network.diff_fetcher import DiffFetcher
from ..network.external_res import ExternalResources
from ..patching.downgrade import Downgrader
from ..utils.platform_tools import PlatformTools
from ..utils.result import attempt, is_err
from .rollback import CompensationStack

logger = logging.getLogger(__name__)

T = TypeVar("T")

TEMP_APK_NAME = "mbf-tmp.apk"
DOWNGRADED_APK_NAME = "mbf-downgraded.apk"
LIBUNITY_NAME = "libunity.so"
PLAYER_DATA_BACKUP_NAME = "PlayerData.backup"

UNDO_RESTORE_OBBS = "restore asset bundles"
UNDO_RESTORE_PLAYER_DATA = "restore player data"


def _discard(func: Callable[..., object], path: Path, what: str) -> None:
    """Remove a temporary file or directory, logging instead of raising on failure."""
    removed = attempt(func, path, context=f"Failed to delete {what} {path}")
    if is_err(removed):
        removed.log(logger)


class ModInstaller:
    def __init__(
        self,
        config: PatcherConfig,
        platform: PlatformTools,
        resources: ExternalResources,
        fetcher: Optional[DiffFetcher] = None,
    ):
        self.config = config
        self.platform = platform
        self.resources = resources
        self.fetcher = fetcher or DiffFetcher(
            resources,
            attempts=config.diff_download_attempts,
            progress_interval=config.progress_interval_sec,
        )
        self.downgrader = Downgrader(self.fetcher)

    # -------------------------------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------------------------------

    def get_app_info(self) -> Optional[AppInfo]:
        return self.platform.get_app_info(self.config.app_id)

    def get_mod_status(self) -> Optional[AppInfoStatus]:
        app_info = self.get_app_info()
        if app_info is None:
            return None

        with ApkContainer.open(app_info.path) as apk:
            loader = get_modloader_installed(apk)
        return AppInfoStatus(version=app_info.version, is_modded=loader is not None, loader=loader)

    # -------------------------------------------------------------------------------------------------
    # Modloader
    # -------------------------------------------------------------------------------------------------

    def get_modloader_path(self) -> Path:
        modloader_dir = self.config.modloader_dir
        try:
            modloader_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FileOperationError(
                f"Could not create {modloader_dir}: {exc}", file_path=str(modloader_dir), operation="mkdir"
            ) from exc
        return modloader_dir / self.config.modloader_file_name

    def install_modloader(self) -> Path:
        """Copy the bundled modloader to the app's ModData directory."""
        loader_path = self.get_modloader_path()
        logger.info("Installing modloader to %s", loader_path)
        payload = self.config.read_bundled("modloader_path")
        try:
            loader_path.write_bytes(payload)
        except OSError as exc:
            raise FileOperationError(
                f"Could not write modloader: {exc}", file_path=str(loader_path), operation="write"
            ) from exc
        return loader_path

    # -------------------------------------------------------------------------------------------------
    # Patching
    # -------------------------------------------------------------------------------------------------

    def _save_libunity(self, temp_dir: Path, app_info: AppInfo) -> Optional[Path]:
        stream = self.resources.get_libunity_stream(self.config.app_id, app_info.version)
        if stream is None:
            return None

        libunity_path = temp_dir / LIBUNITY_NAME
        try:
            with open(libunity_path, "wb") as handle:
                shutil.copyfileobj(stream, handle)
        finally:
            stream.close()
        return libunity_path

    def _downgrade(self, app_info: AppInfo, downgrade_to: str, temp_apk: Path, backups: BackupSet) -> None:
        version_diffs = self.resources.get_version_diffs(app_info.version, downgrade_to)
        if version_diffs is None:
            raise PatchError(f"No diffs available to downgrade {app_info.version} to {downgrade_to}")

        diffs_dir = self.config.paths.diffs_dir
        self.downgrader.download_diffs(version_diffs, diffs_dir)

        downgraded = temp_apk.with_name(DOWNGRADED_APK_NAME)
        backups.obb_backups = self.downgrader.apply_diffs(
            version_diffs, temp_apk, downgraded, backups.obb_backups, diffs_dir
        )
        downgraded.replace(temp_apk)
        _discard(shutil.rmtree, Path(diffs_dir), "diffs directory")

    def mod_current_apk(self, app_info: AppInfo, downgrade_to: Optional[str] = None) -> None:
        """Patch the installed app and reinstall it, keeping its assets and player data."""
        paths = self.config.paths
        temp_dir = Path(paths.temp_dir)
        temp_apk = temp_dir / TEMP_APK_NAME
        obb_dir = Path(paths.obb_dir)
        player_data = paths.player_data_path
        player_backup = temp_dir / PLAYER_DATA_BACKUP_NAME
        backups = BackupSet()
        stage = "stage workspace"

        def run(name: str, func: Callable[..., T], *args) -> T:
            nonlocal stage
            stage = name
            with LoggingTimer(name, logger):
                return func(*args)

        compensation = CompensationStack()
        try:
            with compensation:
                run("stage workspace", lambda: temp_dir.mkdir(parents=True, exist_ok=True))

                logger.info("Downloading unstripped libunity.so (this could take a minute)")
                libunity_path = run("fetch libunity", self._save_libunity, temp_dir, app_info)

                logger.info("Copying APK to temporary location")
                run("copy APK", shutil.copyfile, app_info.path, temp_apk)

                logger.info("Saving OBB files")
                compensation.push(UNDO_RESTORE_OBBS, lambda: restore_obbs(obb_dir, backups.obb_backups))
                run("back up asset bundles", save_obbs, obb_dir, paths.obb_backup_dir,
                    self.config.asset_extension, backups.obb_backups)

                backups.player_data_backup = player_backup
                backups.player_data_backed_up = run("back up player data", backup_player_data,
                                                    player_data, player_backup)
                if backups.player_data_backed_up:
                    compensation.push(UNDO_RESTORE_PLAYER_DATA,
                                      lambda: restore_player_data(player_backup, player_data))

                if downgrade_to is not None:
                    logger.info("Downgrading %s to %s", app_info.version, downgrade_to)
                    run("downgrade", self._downgrade, app_info, downgrade_to, temp_apk, backups)

                logger.info("Patching APK at %s", temp_apk)
                run("patch APK", patch_apk_in_place, temp_apk, self.config, libunity_path)
                if libunity_path is not None:
                    _discard(os.remove, libunity_path, "unstripped libunity")

                logger.info("Reinstalling modded app")
                run("uninstall", self.platform.uninstall, self.config.app_id)
                run("install", self.platform.install, str(temp_apk))
                run("grant storage permission", self.platform.grant_manage_storage,
                    self.config.app_id, self.config.appops_storage_op)

                logger.info("Restoring OBB files")
                run("restore asset bundles", restore_obbs, obb_dir, backups.obb_backups)
                compensation.discard(UNDO_RESTORE_OBBS)

                run("delete temp APK", temp_apk.unlink)

                if backups.player_data_backed_up:
                    run("restore player data", restore_player_data, player_backup, player_data)
                    compensation.discard(UNDO_RESTORE_PLAYER_DATA)
                    _discard(os.remove, player_backup, "player data backup")

                compensation.commit()
        except (BaseError, OSError) as exc:
            report = compensation.report
            message = f"Modding failed during '{stage}': {exc}"
            if report is not None and report.errors:
                message += f" (rollback incomplete: {'; '.join(report.errors)})"
            raise PipelineStageError(message, stage=stage, rollback=report) from exc

        logger.info("Modding complete")
