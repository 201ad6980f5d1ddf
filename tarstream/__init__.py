"""tarstream: Indexed reads from sharded tar datasets.

Training sets are often stored as many tar archives ("shards") of samples,
where each sample is a handful of files sharing a key (``000001.jpg``,
``000001.cls``). tarstream pairs every archive with a small index file giving
the offset and size of each file, so samples are read with one seek per
component, zero-copy from memory-mapped archives where possible.

Example:
    from tarstream import TarIndexLoader, create_index

    # One-time: index the archives
    for tar_path in tar_paths:
        create_index(tar_path)  # writes <archive>.idx

    loader = TarIndexLoader(
        paths=tar_paths,
        index_paths=[p.with_suffix(".idx") for p in tar_paths],
        ext=["jpg;png", "cls"],
        missing_component_behavior="skip",
        shard_id=rank,
        num_shards=world_size,
    )

    for image_bytes, label_bytes in loader:
        ...  # 1-D numpy arrays

PyTorch:
    from torch.utils.data import DataLoader
    from tarstream import TarIndexIterableDataset

    dataset = TarIndexIterableDataset(tar_paths, index_paths, ext=["jpg", "cls"])
    loader = DataLoader(dataset, batch_size=None, num_workers=8)
"""

__version__ = "0.1.0"

# Archive access
from tarstream.archive import (
    ArchiveFile,
    ArchiveReadError,
    MappingReserver,
)

# Descriptors
from tarstream.descriptors import (
    ComponentDesc,
    Range,
    SampleDesc,
)

# Index files
from tarstream.index import (
    INDEX_VERSION,
    TAR_BLOCK_SIZE,
    IndexFileError,
    parse_index_file,
    read_index,
)

# Loader
from tarstream.loader import TarIndexLoader

# Outputs
from tarstream.outputs import (
    SUPPORTED_DTYPES,
    OutputBuffer,
    SourceMeta,
)

# Output binding
from tarstream.resolver import (
    MissingComponentBehavior,
    OutputResolver,
    SampleTable,
    parse_missing_component_behavior,
)

# Worker partitioning
from tarstream.sharding import ShardCursor, shard_bounds, start_index
from tarstream.skip_cache import SkipCache

# Index creation
from tarstream.tools.make_index import create_index

# PyTorch integration
from tarstream.torch_dataset import TarIndexIterableDataset

__all__ = [
    "__version__",
    # Loader
    "TarIndexLoader",
    "TarIndexIterableDataset",
    # Index files
    "INDEX_VERSION",
    "TAR_BLOCK_SIZE",
    "IndexFileError",
    "parse_index_file",
    "read_index",
    "create_index",
    # Descriptors
    "ComponentDesc",
    "Range",
    "SampleDesc",
    # Output binding
    "MissingComponentBehavior",
    "OutputResolver",
    "SampleTable",
    "parse_missing_component_behavior",
    # Outputs
    "SUPPORTED_DTYPES",
    "OutputBuffer",
    "SourceMeta",
    "SkipCache",
    # Archives
    "ArchiveFile",
    "ArchiveReadError",
    "MappingReserver",
    # Worker partitioning
    "ShardCursor",
    "shard_bounds",
    "start_index",
]
