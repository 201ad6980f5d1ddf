"""Cache directory utilities for tarstream.

Remote archives and index files (s3://, gs://, ...) are downloaded once and
kept in a local cache so every worker on the machine maps the same file.

Environment variable:
    TARSTREAM_CACHE_DIR: Override the default cache directory.
                         Default: ~/.tarstream/

Usage on cluster:
    export TARSTREAM_CACHE_DIR=/mnt/fast-storage/tarstream-cache
"""

import os
from pathlib import Path

# Environment variable name for cache directory override
CACHE_DIR_ENV_VAR = "TARSTREAM_CACHE_DIR"

# Default cache directory (in user's home)
DEFAULT_CACHE_DIR = Path.home() / ".tarstream"


def get_cache_base() -> Path:
    """Get the base directory for locally cached remote files.

    Returns the cache base directory, checking in order:
    1. TARSTREAM_CACHE_DIR environment variable (if set)
    2. ~/.tarstream/ (default)

    Example:
        >>> get_cache_base()
        PosixPath('/home/user/.tarstream')

        >>> os.environ['TARSTREAM_CACHE_DIR'] = '/mnt/fast/cache'
        >>> get_cache_base()
        PosixPath('/mnt/fast/cache')
    """
    env_path = os.environ.get(CACHE_DIR_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser().resolve()
    return DEFAULT_CACHE_DIR


def get_remote_cache_dir(remote_path: str, url_hash: str) -> Path:
    """Directory holding the local copy of one remote file.

    Args:
        remote_path: The remote URL, used for its file stem.
        url_hash: Short hash of the full URL, keeps same-named files apart.

    Returns:
        Path like ~/.tarstream/remote/{stem}-{hash}/
    """
    filename = remote_path.rstrip("/").rsplit("/", 1)[-1]
    return get_cache_base() / "remote" / f"{Path(filename).stem}-{url_hash}"


__all__ = ["get_cache_base", "get_remote_cache_dir", "CACHE_DIR_ENV_VAR", "DEFAULT_CACHE_DIR"]
