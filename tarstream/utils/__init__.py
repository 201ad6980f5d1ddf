"""Utility functions for tarstream."""

from tarstream.utils.cache_dir import (
    CACHE_DIR_ENV_VAR,
    DEFAULT_CACHE_DIR,
    get_cache_base,
    get_remote_cache_dir,
)
from tarstream.utils.remote import is_remote_path, resolve_path

__all__ = [
    # Cache directory utilities
    "get_cache_base",
    "get_remote_cache_dir",
    "CACHE_DIR_ENV_VAR",
    "DEFAULT_CACHE_DIR",
    # Remote paths
    "is_remote_path",
    "resolve_path",
]
