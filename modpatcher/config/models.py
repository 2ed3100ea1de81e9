from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import ConfigurationError

PACKAGE_DIR = Path(__file__).resolve().parents[1]


class _FrozenConfigModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class PathsConfig(_FrozenConfigModel):
    app_data_dir: str = "/sdcard/Android/data/com.beatgames.beatsaber/files"
    obb_dir: str = "/sdcard/Android/obb/com.beatgames.beatsaber"
    temp_dir: str = "/data/local/tmp/mbf-tmp"
    mod_data_root: str = "/sdcard/ModData"
    player_data_file: str = "PlayerData.dat"

    @property
    def player_data_path(self) -> Path:
        return Path(self.app_data_dir) / self.player_data_file

    @property
    def obb_backup_dir(self) -> Path:
        return Path(self.temp_dir) / "obbs"

    @property
    def diffs_dir(self) -> Path:
        return Path(self.temp_dir) / "diffs"


class ResourceUrls(_FrozenConfigModel):
    diff_index: str = "https://raw.githubusercontent.com/Lauriethefish/mbf-diffs/main/index.json"
    diff_download: str = "https://github.com/Lauriethefish/mbf-diffs/releases/download/1.0.0/{diff_name}"
    libunity_index: str = "https://raw.githubusercontent.com/Lauriethefish/QuestUnstrippedUnity/main/index.json"
    libunity_download: str = (
        "https://raw.githubusercontent.com/Lauriethefish/QuestUnstrippedUnity/main/versions/{unity_version}.so"
    )
    timeout_sec: float = 30.0


class PatcherConfig(_FrozenConfigModel):
    """Deployment-fixed parameters, built once at start-up and passed to every component."""

    app_id: str = "com.beatgames.beatsaber"
    native_abi: str = "arm64-v8a"
    asset_extension: str = ".obb"
    diff_download_attempts: int = Field(default=3, ge=1)
    progress_interval_sec: float = Field(default=2.0, ge=0.0)

    patcher_name: str = "ModsBeforeFriday"
    patcher_version: Optional[str] = "0.1.0"
    modloader_name: str = "Scotland2"
    modloader_file_name: str = "libsl2.so"

    libmain_path: str = str(PACKAGE_DIR / "libs" / "libmain.so")
    modloader_path: str = str(PACKAGE_DIR / "libs" / "libsl2.so")
    debug_cert_path: str = str(PACKAGE_DIR / "apk" / "resources" / "debug_cert.pem")

    storage_permission: str = "android.permission.MANAGE_EXTERNAL_STORAGE"
    appops_storage_op: str = "MANAGE_EXTERNAL_STORAGE"

    paths: PathsConfig = Field(default_factory=PathsConfig)
    urls: ResourceUrls = Field(default_factory=ResourceUrls)

    @property
    def lib_dir(self) -> str:
        return f"lib/{self.native_abi}"

    @property
    def libmain_entry(self) -> str:
        return f"{self.lib_dir}/libmain.so"

    @property
    def libunity_entry(self) -> str:
        return f"{self.lib_dir}/libunity.so"

    @property
    def modloader_dir(self) -> Path:
        return Path(self.paths.mod_data_root) / self.app_id / "Modloader"

    def read_bundled(self, attr: str) -> bytes:
        """Read one of the bundled binary payloads (``libmain_path``, ``modloader_path``, ...)."""
        path = Path(getattr(self, attr))
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ConfigurationError(
                f"Bundled payload {attr} could not be read: {exc}", file_path=str(path)
            ) from exc


def validate_config(payload: Dict[str, Any], file_path: Optional[str] = None) -> PatcherConfig:
    try:
        return PatcherConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}", file_path=file_path) from exc
