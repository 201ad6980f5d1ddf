"""TarIndexLoader: sample reader over indexed tar archives.

The loader reads training samples out of sharded tar archives using one
sidecar index file per archive (see ``tarstream.index``). It combines:

- Index parsing and validation for every archive
- Binding of archive components to declared outputs by extension
- Static partitioning of the samples across ``num_shards`` workers
- Zero-copy reads from memory-mapped archives, or explicit copies when
  mapping is disabled or unavailable

Usage:
    from tarstream import TarIndexLoader

    loader = TarIndexLoader(
        paths=["train-000.tar", "train-001.tar"],
        index_paths=["train-000.idx", "train-001.idx"],
        ext=["jpg;png", "cls"],
        dtypes=["uint8", "uint8"],
        missing_component_behavior="skip",
        shard_id=rank,
        num_shards=world_size,
    )

    with loader:
        image, label = loader.read_sample()   # OutputBuffers
        for image_bytes, label_bytes in loader:  # one pass over this worker's samples
            ...

Each call fills one sample and moves the cursor forward; the loader is not
meant to be shared between threads. Run one loader per worker instead.
"""

from __future__ import annotations

from contextlib import ExitStack
from pathlib import Path
from typing import Iterator, Sequence

import numpy as np
from tqdm import tqdm

from tarstream.archive import ArchiveFile, ArchiveReadError, MappingReserver
from tarstream.descriptors import ComponentDesc, SampleDesc
from tarstream.index import IndexFileError, read_index
from tarstream.outputs import OutputBuffer, SourceMeta, resolve_dtype
from tarstream.resolver import (
    MissingComponentBehavior,
    OutputResolver,
    SampleTable,
    parse_missing_component_behavior,
    split_extension_groups,
)
from tarstream.sharding import ShardCursor
from tarstream.skip_cache import SkipCache, SkipCacheProtocol
from tarstream.utils.remote import resolve_path

# Default storage reserved per output buffer in copy mode
DEFAULT_TENSOR_INIT_BYTES = 1 << 20


class TarIndexLoader:
    """Reads samples from tar archives described by index files.

    Args:
        paths: Archive paths, local or fsspec URLs (s3://, gs://, ...).
        index_paths: One index file per archive, in the same order.
        ext: One extension group per output; the extensions of a group are
            joined with ``;`` (e.g. ``"jpg;png"``).
        dtypes: Element type per output (default uint8 for every output).
        missing_component_behavior: ``"empty"`` (or ``""``) fills missing
            outputs with empty arrays, ``"skip"`` drops the sample,
            ``"error"`` fails the load.
        dont_use_mmap: Always read by copying, never map the archives.
        shard_id: This worker's id, in ``[0, num_shards)``.
        num_shards: Number of workers splitting the samples.
        stick_to_shard: Wrap around inside this worker's partition instead
            of walking into the other workers' samples.
        read_ahead: Ask the OS to prefetch the archives into the page cache.
        skip_cached_images: Consult ``skip_cache`` before reading a component.
        skip_cache: Cache of source descriptors to skip. A fresh SkipCache
            is created when ``skip_cached_images`` is set and none is given.
        lazy_init: Defer reading the index files to the first use.
        tensor_init_bytes: Storage reserved per output by ``prepare_empty()``
            in copy mode.
        verbose: Print a summary and progress bars while preparing.

    Raises:
        ValueError: On an invalid configuration.
        IndexFileError: On malformed index files (unless ``lazy_init``).
    """

    def __init__(
        self,
        paths: Sequence[str | Path],
        index_paths: Sequence[str | Path],
        ext: Sequence[str],
        dtypes: Sequence[np.dtype | type | str] | None = None,
        missing_component_behavior: str = "",
        dont_use_mmap: bool = False,
        shard_id: int = 0,
        num_shards: int = 1,
        stick_to_shard: bool = True,
        read_ahead: bool = False,
        skip_cached_images: bool = False,
        skip_cache: SkipCacheProtocol | None = None,
        lazy_init: bool = False,
        tensor_init_bytes: int = DEFAULT_TENSOR_INIT_BYTES,
        verbose: bool = False,
    ) -> None:
        self.paths = [str(p) for p in paths]
        self.index_paths = [str(p) for p in index_paths]
        self.missing_component_behavior = parse_missing_component_behavior(
            missing_component_behavior
        )

        if len(self.paths) != len(self.index_paths):
            raise ValueError(
                "Number of tar archives does not match the number of index files"
            )
        if not self.paths:
            raise ValueError("No tar archives provided")
        if self.missing_component_behavior is MissingComponentBehavior.INVALID:
            raise ValueError(
                f"Invalid value for missing_component_behavior '{missing_component_behavior}' "
                "possible values are: skip, error, empty"
            )

        if isinstance(ext, str):
            ext = [ext]
        self.extensions = split_extension_groups(ext)
        if not self.extensions:
            raise ValueError("At least one output extension group is required")

        if dtypes is None:
            self.dtypes = [np.dtype(np.uint8)] * len(self.extensions)
        else:
            self.dtypes = [resolve_dtype(dtype) for dtype in dtypes]
        if len(self.dtypes) != len(self.extensions):
            raise ValueError(
                "Number of extensions does not match the number of provided types"
            )

        self.dont_use_mmap = dont_use_mmap
        self.read_ahead = read_ahead
        self.tensor_init_bytes = tensor_init_bytes
        self.verbose = verbose

        if skip_cached_images and skip_cache is None:
            skip_cache = SkipCache()
        self.skip_cached_images = skip_cached_images
        self.skip_cache = skip_cache

        self._cursor = ShardCursor(shard_id, num_shards, stick_to_shard)
        self._resolver = OutputResolver(
            self.extensions, self.dtypes, self.missing_component_behavior
        )

        self._table = SampleTable()
        self._archives: list[ArchiveFile] = []
        self._exit_stack: ExitStack | None = None
        self._copy_read_data = True
        self._prepared = False
        self.num_declared_samples = 0

        if not lazy_init:
            self.prepare_metadata()

    # -------------------------------------------------------------------------
    # Metadata preparation
    # -------------------------------------------------------------------------

    def prepare_metadata(self) -> None:
        """Open the archives and build the sample table.

        Safe to call more than once; only the first call does any work. If
        anything fails, every archive opened so far is closed and the mapping
        reservation is released before the error propagates.
        """
        if self._prepared:
            return

        with ExitStack() as stack:
            copy_read_data = self.dont_use_mmap
            reserver = None
            if not self.dont_use_mmap:
                reserver = stack.enter_context(MappingReserver(len(self.paths)))
                copy_read_data = not reserver.can_share_mapped_data

            archives: list[ArchiveFile] = []
            for path in tqdm(self.paths, desc="Opening archives", disable=not self.verbose):
                archive = ArchiveFile.open(
                    resolve_path(path, verbose=self.verbose),
                    use_mmap=not copy_read_data,
                    read_ahead=self.read_ahead,
                )
                stack.callback(archive.close)
                archives.append(archive)

            if not copy_read_data and not all(archive.can_share for archive in archives):
                copy_read_data = True
            if copy_read_data and reserver is not None:
                for archive in archives:
                    archive.unmap()
                reserver.release()

            table = SampleTable()
            num_declared = 0
            for archive_index, index_path in enumerate(
                tqdm(self.index_paths, desc="Reading index files", disable=not self.verbose)
            ):
                parsed_samples, _ = read_index(resolve_path(index_path, verbose=self.verbose))
                num_declared += len(parsed_samples)
                self._resolver.resolve(parsed_samples, archive_index, index_path, table)

            if len(table) < self._cursor.num_shards:
                raise ValueError(
                    f"The number of input samples: {len(table)}, needs to be at least "
                    f"equal to the requested number of shards: {self._cursor.num_shards}"
                )

            self._exit_stack = stack.pop_all()

        self._archives = archives
        self._table = table
        self._copy_read_data = copy_read_data
        self.num_declared_samples = num_declared
        self._cursor.bind(len(table))
        self._prepared = True

        if self.verbose:
            print(f"TarIndexLoader: {len(self.paths)} archive(s)")
            print(f"  Samples: {len(table):,} ({self.num_skipped_samples:,} skipped)")
            print(f"  Outputs: {self._outputs_str()}")
            print(f"  Read mode: {'copy' if copy_read_data else 'shared (mmap)'}")
            print(f"  Shard {self.shard_id}/{self.num_shards}: "
                  f"samples [{self._cursor.start}, {self._cursor.end})")

    def _ensure_prepared(self) -> None:
        if not self._prepared:
            self.prepare_metadata()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def num_outputs(self) -> int:
        return len(self.extensions)

    @property
    def shard_id(self) -> int:
        return self._cursor.shard_id

    @property
    def num_shards(self) -> int:
        return self._cursor.num_shards

    @property
    def copy_read_data(self) -> bool:
        """True if samples are read by copying, False for zero-copy views."""
        self._ensure_prepared()
        return self._copy_read_data

    @property
    def samples(self) -> list[SampleDesc]:
        self._ensure_prepared()
        return self._table.samples

    @property
    def sample_index(self) -> int:
        """Index of the next sample to read."""
        self._ensure_prepared()
        return self._cursor.current()

    @property
    def num_skipped_samples(self) -> int:
        return self.num_declared_samples - len(self._table)

    def __len__(self) -> int:
        """Total number of retained samples across all workers."""
        self._ensure_prepared()
        return len(self._table)

    def shard_size(self) -> int:
        """Number of samples in this worker's partition."""
        self._ensure_prepared()
        return self._cursor.shard_size()

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def reset(self, wrap_to_shard: bool = True) -> None:
        """Move the cursor to this worker's first sample, or to sample 0."""
        self._ensure_prepared()
        self._cursor.reset(wrap_to_shard)

    def prepare_empty(self) -> list[OutputBuffer]:
        """Fresh output buffers, one per declared output."""
        reserve = self.tensor_init_bytes if self.copy_read_data else 0
        return [OutputBuffer(dtype, reserve_bytes=reserve) for dtype in self.dtypes]

    def _source_info(self, sample: SampleDesc, component: ComponentDesc) -> str:
        return (
            f"archive {self.paths[sample.archive_index]} "
            f'index file "{self.index_paths[sample.archive_index]}" '
            f"line {sample.line_number} component offset {component.offset}"
        )

    def _should_skip(self, source_info: str) -> bool:
        return self.skip_cached_images and self.skip_cache.should_skip(source_info)

    def read_sample(self, outputs: list[OutputBuffer] | None = None) -> list[OutputBuffer]:
        """Fill one buffer per output with the sample at the cursor.

        Args:
            outputs: Buffers to fill, e.g. from ``prepare_empty()``. Reusing
                the same buffers across calls avoids reallocating in copy
                mode. New buffers are created if omitted.

        Returns:
            The filled buffers. Outputs without a component in this sample
            (EMPTY behavior) are empty arrays of their declared dtype.

        Raises:
            IndexFileError: If a component starts beyond the end of its archive.
            ArchiveReadError: If the archive is shorter than the index claims.
        """
        self._ensure_prepared()
        if outputs is None:
            outputs = self.prepare_empty()
        elif len(outputs) != self.num_outputs:
            raise ValueError(
                f"Expected {self.num_outputs} output buffers, got {len(outputs)}"
            )

        sample = self._table.samples[self._cursor.current()]
        archive = self._archives[sample.archive_index]

        for component in sample.components:
            # Checking that the index agrees with the archive on disk
            if component.offset >= archive.size():
                raise IndexFileError(
                    self.index_paths[sample.archive_index], sample.line_number,
                    "offset is outside of the archive file",
                )
            archive.seek(component.offset)

            meta = SourceMeta(source_info=self._source_info(sample, component))
            if self._should_skip(meta.source_info):
                meta.skip_sample = True
                for output in component.outputs:
                    outputs[output].reset()
                    outputs[output].set_meta(meta)
                    outputs[output].resize(0, self.dtypes[output])
                continue

            if self._copy_read_data:
                self._read_copy(archive, sample, component, outputs, meta)
            else:
                self._read_shared(archive, sample, component, outputs, meta)

        for output in sample.empty_outputs:
            outputs[output].reset()
            outputs[output].resize(0, self.dtypes[output])

        self._cursor.advance()
        return outputs

    def _read_copy(
        self,
        archive: ArchiveFile,
        sample: SampleDesc,
        component: ComponentDesc,
        outputs: list[OutputBuffer],
        meta: SourceMeta,
    ) -> None:
        # The first output owns the bytes, the others alias them
        shared_bytes = None
        for output in component.outputs:
            dtype = self.dtypes[output]
            if shared_bytes is None:
                data = outputs[output].resize(component.size // dtype.itemsize, dtype)
                shared_bytes = data.view(np.uint8)
            else:
                outputs[output].share_data(shared_bytes, dtype)
            outputs[output].set_meta(meta)

        if archive.read_into(shared_bytes) != component.size:
            raise ArchiveReadError(
                f"Error reading from a file {self.paths[sample.archive_index]}: "
                f"expected {component.size} bytes at offset {component.offset}"
            )

    def _read_shared(
        self,
        archive: ArchiveFile,
        sample: SampleDesc,
        component: ComponentDesc,
        outputs: list[OutputBuffer],
        meta: SourceMeta,
    ) -> None:
        view = archive.get(component.size)
        if len(view) != component.size:
            raise ArchiveReadError(
                f"Error reading from a file {self.paths[sample.archive_index]}: "
                f"expected {component.size} bytes at offset {component.offset}"
            )
        for output in component.outputs:
            outputs[output].share_data(view, self.dtypes[output])
            outputs[output].set_meta(meta)

    def __iter__(self) -> Iterator[list[np.ndarray]]:
        """One pass over this worker's partition, starting at the cursor.

        Yields a list with one array per output. Each sample gets fresh
        buffers, so yielded arrays stay valid after the next step.
        """
        for _ in range(self.shard_size()):
            yield [output.data for output in self.read_sample()]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the archives and release the mapping reservation."""
        if self._exit_stack is not None:
            self._exit_stack.close()
            self._exit_stack = None
        self._archives = []

    def __enter__(self) -> TarIndexLoader:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __del__(self) -> None:
        """Cleanup on deletion."""
        if getattr(self, "_exit_stack", None) is not None:
            self.close()

    def _outputs_str(self) -> str:
        return ", ".join(
            f"{';'.join(group)}:{dtype.name}"
            for group, dtype in zip(self.extensions, self.dtypes)
        )

    def __repr__(self) -> str:
        num_samples = f"{len(self._table):,}" if self._prepared else "?"
        mode = "?" if not self._prepared else ("copy" if self._copy_read_data else "shared")
        return (
            f"TarIndexLoader(\n"
            f"    archives={len(self.paths)},\n"
            f"    num_samples={num_samples},\n"
            f"    outputs=[{self._outputs_str()}],\n"
            f"    missing_component_behavior={self.missing_component_behavior.value},\n"
            f"    shard={self.shard_id}/{self.num_shards},\n"
            f"    read_mode={mode},\n"
            f")"
        )


__all__ = ["TarIndexLoader", "DEFAULT_TENSOR_INIT_BYTES"]
