"""Configuration package: frozen pydantic models plus JSON loading."""

from .models import PatcherConfig, PathsConfig, ResourceUrls, validate_config
from .io import get_config_path, load_config, load_config_data

__all__ = [
    "PatcherConfig",
    "PathsConfig",
    "ResourceUrls",
    "validate_config",
    "get_config_path",
    "load_config",
    "load_config_data",
]
