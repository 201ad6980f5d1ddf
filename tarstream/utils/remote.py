"""Resolve archive and index paths that live in object storage.

Local paths are returned untouched. Remote URLs (s3://, gs://, https://, ...)
are downloaded once with fsspec into the tarstream cache directory and the
local copy is returned, so archives can always be memory-mapped.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

from tarstream.utils.cache_dir import get_remote_cache_dir


def is_remote_path(path: str) -> bool:
    """True for URLs with a scheme other than file://."""
    return "://" in path and not path.startswith("file://")


def _download_fsspec(
    remote_path: str,
    local_path: Path,
    *,
    file_size: int | None = None,
    verbose: bool = True,
) -> None:
    """Download a file using fsspec (streaming, with tqdm progress bar)."""
    import fsspec

    fs, resolved_path = fsspec.core.url_to_fs(remote_path)

    if verbose and file_size:
        from tqdm import tqdm

        with (
            fs.open(resolved_path, "rb") as remote_f,
            open(local_path, "wb") as local_f,
            tqdm(total=file_size, unit="B", unit_scale=True,
                 desc=f"  Downloading {local_path.name}") as pbar,
        ):
            chunk_size = 64 * 1024 * 1024  # 64 MB
            while True:
                chunk = remote_f.read(chunk_size)
                if not chunk:
                    break
                local_f.write(chunk)
                pbar.update(len(chunk))
    else:
        fs.get(resolved_path, str(local_path))


def resolve_path(path: str | Path, verbose: bool = False) -> Path:
    """Resolve a local or remote path to a local file.

    Remote files are stored under ``get_cache_base()/remote/<stem>-<hash>/``
    and reused on later calls. Downloads go to a temp file that is renamed
    into place, so an interrupted download never looks complete.

    Returns:
        Path to the local file.
    """
    path = str(path)
    if not is_remote_path(path):
        return Path(path.removeprefix("file://"))

    import fsspec

    url_hash = hashlib.sha256(path.encode()).hexdigest()[:12]
    local_dir = get_remote_cache_dir(path, url_hash)
    local_dir.mkdir(parents=True, exist_ok=True)
    local_path = local_dir / path.rstrip("/").rsplit("/", 1)[-1]

    if local_path.exists():
        if verbose:
            print(f"Using cached copy of {path}: {local_path}")
        return local_path

    fs, resolved_path = fsspec.core.url_to_fs(path)
    file_size = fs.info(resolved_path).get("size", 0) or 0

    if verbose:
        print(f"Downloading {path}")
        print(f"  → {local_path}")

    tmp_path = local_path.with_suffix(local_path.suffix + ".tmp")
    try:
        _download_fsspec(path, tmp_path, file_size=file_size or None, verbose=verbose)
        os.rename(tmp_path, local_path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise

    return local_path


__all__ = ["is_remote_path", "resolve_path"]
