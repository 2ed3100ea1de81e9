"""Data model shared by the patching pipeline.

Wire types (diff metadata, the mod tag stored in the APK, agent status)
are pydantic models since they are parsed from JSON; pipeline-internal
state uses plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ModLoader(str, Enum):
    """Modloader detected inside an APK. ``None`` is used for "not installed"."""

    QUEST_LOADER = "QuestLoader"
    SCOTLAND2 = "Scotland2"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class AppInfo:
    """The installed target application."""

    version: str
    path: str


class Diff(BaseModel):
    """One binary patch."""

    model_config = ConfigDict(frozen=True)

    diff_name: str
    file_name: str
    file_crc: int
    source_file_name: Optional[str] = None
    output_file_name: Optional[str] = None
    output_crc: Optional[int] = None


class VersionDiffs(BaseModel):
    """Patches that take an install from ``from_version`` to ``to_version``."""

    model_config = ConfigDict(frozen=True)

    from_version: str
    to_version: str
    apk_diff: Diff
    obb_diffs: List[Diff] = []


class ModTag(BaseModel):
    """Provenance record written to ``modded.json`` inside a patched APK."""

    patcher_name: str
    patcher_version: Optional[str] = None
    modloader_name: str
    modloader_version: Optional[str] = None

    def to_bytes(self) -> bytes:
        return self.model_dump_json(indent=2).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "ModTag":
        return cls.model_validate_json(data)


class AppInfoStatus(BaseModel):
    version: str
    is_modded: bool
    loader: Optional[ModLoader] = None


@dataclass
class BackupSet:
    """Transient backups for one pipeline run."""

    obb_backups: Dict[Path, Path] = field(default_factory=dict)
    player_data_backup: Optional[Path] = None
    player_data_backed_up: bool = False
