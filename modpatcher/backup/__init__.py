"""Backup and restore of state that a reinstall would wipe."""

from .asset_backup import (
    backup_player_data,
    restore_obbs,
    restore_player_data,
    save_obbs,
)

__all__ = [
    "backup_player_data",
    "restore_obbs",
    "restore_player_data",
    "save_obbs",
]
