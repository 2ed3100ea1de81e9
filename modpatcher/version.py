"""Version of the patcher, as reported by ``--version``."""

from __future__ import annotations

import json
from importlib import metadata
from pathlib import Path

DISTRIBUTION = "modpatcher"
UNKNOWN_VERSION = "0.0.0"


def _bundled_version() -> str:
    config_path = Path(__file__).resolve().parent / "config.json"
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return UNKNOWN_VERSION
    meta = data.get("_metadata", {}) if isinstance(data, dict) else {}
    return str(meta.get("version") or "").strip() or UNKNOWN_VERSION


def load_version() -> str:
    """Installed distribution version; a source checkout falls back to ``config.json``."""
    try:
        return metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return _bundled_version()
