"""Network access: diff metadata, diff payloads and auxiliary downloads."""

from .diff_fetcher import DiffFetcher, copy_stream_progress
from .external_res import ExternalResources

__all__ = ["DiffFetcher", "ExternalResources", "copy_stream_progress"]
