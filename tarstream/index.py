"""Reader for tar archive index files.

Every tar archive is paired with a small text index listing where the files
of each sample start and how long they are, so samples can be read with one
seek per component instead of walking the tar headers.

File Format:
    Line 0:      <version> <sample_count>
    Lines 1..N:  <ext> <offset> <size> [<ext> <offset> <size> ...]

    - One line per sample, one triple per component (file) of the sample.
    - ``offset`` is the byte offset of the file *data* inside the archive and
      is always a multiple of the tar block size (512).
    - ``version`` must be exactly INDEX_VERSION.

Example:
    v1.1 2
    jpg 512 10838 cls 11776 3
    jpg 12800 9716 cls 23040 3

Usage:
    from tarstream.index import read_index

    samples, components = read_index("/data/train-000.idx")
    for sample in samples:
        for component in sample.components:
            print(component.ext, component.offset, component.size)
"""

from __future__ import annotations

from pathlib import Path

from tarstream.descriptors import ComponentDesc, Range, SampleDesc

# =============================================================================
# Format Constants
# =============================================================================

INDEX_VERSION = "v1.1"

# Tar archives are laid out in blocks of this many bytes
TAR_BLOCK_SIZE = 512


# =============================================================================
# Errors
# =============================================================================

class IndexFileError(ValueError):
    """An index file (or the archive it describes) is malformed.

    Attributes:
        path: Path of the offending index file.
        line: Line number, 0 for the header and 1-based for samples.
        cause: Human-readable description of the problem.
    """

    def __init__(self, path: str | Path, line: int, cause: str) -> None:
        self.path = str(path)
        self.line = line
        self.cause = cause
        super().__init__(f'Malformed index file at "{self.path}" line {line} - {cause}')


# =============================================================================
# Parsing
# =============================================================================

def _decode_line(index_path: str, raw: bytes, line_number: int) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise IndexFileError(
            index_path, line_number, f"line is not valid UTF-8 ({e.reason})"
        ) from None


def _parse_header(index_path: str, header: str) -> int:
    tokens = header.split()
    if not tokens:
        raise IndexFileError(index_path, 0, "no version signature found")
    if tokens[0] != INDEX_VERSION:
        raise IndexFileError(
            index_path, 0,
            "the version of the index file does not match the expected version "
            f"(expected: {INDEX_VERSION} actual: {tokens[0]})",
        )
    try:
        num_samples = int(tokens[1])
    except (IndexError, ValueError):
        raise IndexFileError(index_path, 0, "no sample count found") from None
    if num_samples <= 0:
        raise IndexFileError(index_path, 0, "sample count must be positive")
    return num_samples


def _parse_sample_line(
    index_path: str,
    line: str,
    line_number: int,
    components: list[ComponentDesc],
) -> int:
    """Append the components of one sample line, return how many were added."""
    tokens = line.split()
    if len(tokens) % 3:
        raise IndexFileError(
            index_path, line_number,
            "size or offset corresponding to the extension not found",
        )

    added = 0
    for i in range(0, len(tokens), 3):
        ext = tokens[i]
        try:
            offset = int(tokens[i + 1])
            size = int(tokens[i + 2])
        except ValueError:
            raise IndexFileError(
                index_path, line_number,
                "size or offset corresponding to the extension not found",
            ) from None
        if offset < 0 or size < 0:
            raise IndexFileError(
                index_path, line_number,
                f"negative offset or size for extension '{ext}'",
            )
        if offset % TAR_BLOCK_SIZE != 0:
            raise IndexFileError(
                index_path, line_number,
                f"tar offset is not a multiple of tar block size ({TAR_BLOCK_SIZE}), "
                "perhaps the size value is exported before offset?",
            )
        components.append(ComponentDesc(ext=ext, offset=offset, size=size))
        added += 1

    if not added:
        raise IndexFileError(index_path, line_number, "no extensions provided for the sample")
    return added


def parse_index_file(
    index_path: str | Path,
    samples: list[SampleDesc],
    components: list[ComponentDesc],
) -> int:
    """Parse an index file, appending to the given sample and component lists.

    Args:
        index_path: Path to the index file.
        samples: List receiving one SampleDesc per sample line.
        components: List receiving the components; each new sample's
            ``components`` range points into it.

    Returns:
        Number of samples appended.

    Raises:
        FileNotFoundError: If the index file doesn't exist.
        IndexFileError: On any structural problem, with path and line number.
    """
    index_path = str(index_path)
    if not Path(index_path).exists():
        raise FileNotFoundError(f"Index file not found: {index_path}")

    with open(index_path, "rb") as f:
        num_samples = _parse_header(index_path, _decode_line(index_path, f.readline(), 0))

        for line_number in range(1, num_samples + 1):
            # A truncated file reads as empty lines and fails on the first one
            sample = SampleDesc(
                components=Range(components, len(components)),
                line_number=line_number,
            )
            sample.components.count = _parse_sample_line(
                index_path, _decode_line(index_path, f.readline(), line_number),
                line_number, components,
            )
            samples.append(sample)

    return num_samples


def read_index(index_path: str | Path) -> tuple[list[SampleDesc], list[ComponentDesc]]:
    """Parse a single index file into fresh sample and component lists."""
    samples: list[SampleDesc] = []
    components: list[ComponentDesc] = []
    parse_index_file(index_path, samples, components)
    return samples, components


__all__ = [
    "INDEX_VERSION",
    "TAR_BLOCK_SIZE",
    "IndexFileError",
    "parse_index_file",
    "read_index",
]
