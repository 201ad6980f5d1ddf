#!/usr/bin/env python3
"""Create index files for tar archives.

Scans an uncompressed tar archive once and writes the sidecar index that
TarIndexLoader reads. Files are grouped into samples the webdataset way:
consecutive members sharing the same key (the path up to the first dot of
the file name) form one sample, and the rest of the file name is the
component's extension.

    train/000001.jpg  }
    train/000001.cls  }  sample "train/000001": jpg, cls
    train/000002.jpg  }
    train/000002.cls  }  sample "train/000002": jpg, cls

Usage:
    tarstream-index train-000.tar                     # writes train-000.idx
    tarstream-index train-*.tar                       # one index per archive
    tarstream-index train-000.tar -o /tmp/train-000.idx
"""

from __future__ import annotations

import argparse
import sys
import tarfile
from pathlib import Path
from typing import Sequence

from tqdm import tqdm

from tarstream.index import INDEX_VERSION


def split_member_name(name: str) -> tuple[str, str]:
    """Split a tar member name into ``(key, extension)``.

    The extension starts after the first dot of the last path element, so
    ``"a/b.seg.png"`` gives ``("a/b", "seg.png")``. Names without a dot have
    an empty extension.
    """
    dirname, sep, basename = name.rpartition("/")
    stem, dot, ext = basename.partition(".")
    if not dot:
        return name, ""
    return f"{dirname}{sep}{stem}", ext


def collect_samples(tar_path: str | Path) -> list[list[tuple[str, int, int]]]:
    """Group the regular files of an archive into samples.

    Returns:
        One list of ``(extension, data_offset, size)`` per sample, in
        archive order.

    Raises:
        tarfile.ReadError: If the archive is compressed or not a tar file.
        ValueError: If an extension contains whitespace.
    """
    samples: list[list[tuple[str, int, int]]] = []
    current_key = None

    # "r:" refuses compressed archives, whose offsets cannot be seeked to
    with tarfile.open(tar_path, "r:") as tar:
        for member in tar:
            if not member.isfile():
                continue
            key, ext = split_member_name(member.name)
            if not ext:
                continue
            if any(c.isspace() for c in ext):
                raise ValueError(
                    f"Extension '{ext}' of {member.name} in {tar_path} contains "
                    "whitespace and cannot be written to an index file"
                )
            if key != current_key:
                samples.append([])
                current_key = key
            samples[-1].append((ext, member.offset_data, member.size))

    return samples


def create_index(
    tar_path: str | Path,
    index_path: str | Path | None = None,
    verbose: bool = False,
) -> Path:
    """Write the index file for one tar archive.

    Args:
        tar_path: Uncompressed tar archive.
        index_path: Output path. Defaults to the archive path with an
            ``.idx`` suffix.
        verbose: Print a summary.

    Returns:
        Path of the written index.

    Raises:
        ValueError: If the archive holds no samples.
    """
    tar_path = Path(tar_path)
    index_path = Path(index_path) if index_path is not None else tar_path.with_suffix(".idx")

    samples = collect_samples(tar_path)
    if not samples:
        raise ValueError(f"No samples found in {tar_path}")

    lines = [f"{INDEX_VERSION} {len(samples)}"]
    for components in samples:
        lines.append(" ".join(f"{ext} {offset} {size}" for ext, offset, size in components))
    index_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    if verbose:
        num_components = sum(len(components) for components in samples)
        print(f"{tar_path.name}: {len(samples):,} samples, "
              f"{num_components:,} components → {index_path}")
    return index_path


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create index files for tar archives")
    parser.add_argument("archives", nargs="+", help="Uncompressed tar archives")
    parser.add_argument(
        "-o", "--output",
        help="Index path (only with a single archive; default: <archive>.idx)",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="No progress output")
    args = parser.parse_args(argv)

    if args.output and len(args.archives) > 1:
        parser.error("--output can only be used with a single archive")

    verbose = not args.quiet
    for archive in tqdm(args.archives, desc="Indexing", disable=not verbose or len(args.archives) == 1):
        try:
            create_index(archive, args.output, verbose=verbose)
        except (tarfile.ReadError, ValueError, OSError) as e:
            print(f"error: {archive}: {e}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
