"""Test that all public imports work.

Run after any refactor to verify nothing broke.
"""


class TestTopLevelImports:
    """All symbols exported from tarstream.__init__."""

    def test_loader(self):
        from tarstream import TarIndexLoader, TarIndexIterableDataset

    def test_index(self):
        from tarstream import INDEX_VERSION, TAR_BLOCK_SIZE, IndexFileError
        from tarstream import parse_index_file, read_index, create_index

    def test_descriptors(self):
        from tarstream import ComponentDesc, Range, SampleDesc

    def test_resolver(self):
        from tarstream import MissingComponentBehavior, OutputResolver, SampleTable
        from tarstream import parse_missing_component_behavior

    def test_outputs(self):
        from tarstream import SUPPORTED_DTYPES, OutputBuffer, SourceMeta, SkipCache

    def test_archives(self):
        from tarstream import ArchiveFile, ArchiveReadError, MappingReserver

    def test_sharding(self):
        from tarstream import ShardCursor, shard_bounds, start_index

    def test_all_is_complete(self):
        import tarstream
        for name in tarstream.__all__:
            assert hasattr(tarstream, name), name


class TestCanonicalImports:
    """Import from canonical module locations."""

    def test_utils(self):
        from tarstream.utils import get_cache_base, resolve_path, is_remote_path
        from tarstream.utils.cache_dir import CACHE_DIR_ENV_VAR, DEFAULT_CACHE_DIR

    def test_tools(self):
        from tarstream.tools import collect_samples, create_index, split_member_name
        from tarstream.tools.make_index import main

    def test_resolver_module(self):
        from tarstream.resolver import EXT_DELIMITER, split_extension_groups
        assert EXT_DELIMITER == ";"
