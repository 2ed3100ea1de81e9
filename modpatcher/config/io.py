"""Config I/O utilities."""

from __future__ import annotations

import json
import os
import logging
from typing import Any, Dict, Optional

from ..exceptions import ConfigurationError
from .models import PACKAGE_DIR, PatcherConfig, validate_config

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MODPATCHER_CONFIG"


def get_config_path() -> str:
    return str(PACKAGE_DIR / "config.json")


def _read_json(config_path: str) -> Dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read config: {exc}", file_path=config_path) from exc
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be an object", file_path=config_path)
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config_data(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load the bundled defaults, then any override file on top of them.

    The override comes from ``config_path`` or, if not given, the
    ``MODPATCHER_CONFIG`` environment variable.
    """
    data = _read_json(get_config_path())
    data.pop("_metadata", None)

    override_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if override_path:
        override = _read_json(override_path)
        override.pop("_metadata", None)
        logger.debug("Applying config override from %s", override_path)
        data = _deep_merge(data, override)
    return data


def load_config(config_path: Optional[str] = None) -> PatcherConfig:
    data = load_config_data(config_path)
    return validate_config(data, file_path=config_path)
