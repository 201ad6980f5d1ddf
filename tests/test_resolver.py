"""Tests for binding components to outputs and the missing-component policy."""

import warnings
from pathlib import Path

import numpy as np
import pytest

from tarstream.index import INDEX_VERSION, IndexFileError, read_index
from tarstream.resolver import (
    MissingComponentBehavior,
    OutputResolver,
    SampleTable,
    build_extension_map,
    parse_missing_component_behavior,
    split_extension_groups,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse(tmp_path: Path, lines: list[str], name: str = "a.idx"):
    path = tmp_path / name
    path.write_text(f"{INDEX_VERSION} {len(lines)}\n" + "\n".join(lines) + "\n")
    samples, _ = read_index(path)
    return samples, str(path)


def _resolve(
    tmp_path: Path,
    lines: list[str],
    groups: list[str],
    behavior: MissingComponentBehavior = MissingComponentBehavior.EMPTY,
    dtypes=None,
) -> tuple[SampleTable, int]:
    extensions = split_extension_groups(groups)
    dtypes = dtypes or [np.dtype(np.uint8)] * len(extensions)
    resolver = OutputResolver(extensions, [np.dtype(d) for d in dtypes], behavior)
    samples, index_path = _parse(tmp_path, lines)
    table = SampleTable()
    retained = resolver.resolve(samples, 0, index_path, table)
    return table, retained


def _bound_outputs(sample) -> list[int]:
    return [output for component in sample.components for output in component.outputs]


# ---------------------------------------------------------------------------
# Tests: configuration parsing
# ---------------------------------------------------------------------------

class TestParseMissingComponentBehavior:
    @pytest.mark.parametrize("value,expected", [
        ("", MissingComponentBehavior.EMPTY),
        (None, MissingComponentBehavior.EMPTY),
        ("empty", MissingComponentBehavior.EMPTY),
        ("Empty", MissingComponentBehavior.EMPTY),
        ("skip", MissingComponentBehavior.SKIP),
        ("SKIP", MissingComponentBehavior.SKIP),
        ("error", MissingComponentBehavior.RAISE),
        ("Error", MissingComponentBehavior.RAISE),
    ])
    def test_known_values(self, value, expected):
        assert parse_missing_component_behavior(value) is expected

    @pytest.mark.parametrize("value", ["raise", "ignore", " skip", "emptyy"])
    def test_unknown_values_are_invalid(self, value):
        assert parse_missing_component_behavior(value) is MissingComponentBehavior.INVALID

    def test_resolver_rejects_invalid(self):
        with pytest.raises(ValueError):
            OutputResolver([["jpg"]], [np.dtype(np.uint8)], MissingComponentBehavior.INVALID)


class TestExtensionGroups:
    def test_split_and_dedupe(self):
        assert split_extension_groups(["jpg;png;jpg", "cls"]) == [["jpg", "png"], ["cls"]]

    def test_extension_map(self):
        ext_map = build_extension_map([["jpg", "png"], ["cls"], ["jpg"]])
        assert ext_map == {"jpg": [0, 2], "png": [0], "cls": [1]}


# ---------------------------------------------------------------------------
# Tests: binding
# ---------------------------------------------------------------------------

class TestBinding:
    def test_full_sample(self, tmp_path):
        table, retained = _resolve(tmp_path, ["jpg 0 10 cls 512 3"], ["jpg", "cls"])
        assert retained == 1
        sample = table.samples[0]
        assert sorted(_bound_outputs(sample)) == [0, 1]
        assert len(sample.empty_outputs) == 0

    def test_unmatched_components_are_dropped(self, tmp_path):
        table, _ = _resolve(
            tmp_path, ["json 0 10 jpg 512 10 txt 1024 5 cls 1536 3"], ["jpg", "cls"]
        )
        assert [c.ext for c in table.components] == ["jpg", "cls"]
        assert len(table.samples[0].components) == 2

    def test_one_component_feeds_several_outputs(self, tmp_path):
        table, _ = _resolve(tmp_path, ["jpg 0 10"], ["jpg", "jpg;png"])
        component = table.samples[0].components[0]
        assert component.outputs.to_list() == [0, 1]
        assert len(table.components) == 1

    def test_alternative_extensions(self, tmp_path):
        table, _ = _resolve(tmp_path, ["png 0 10 cls 512 1"], ["jpg;png", "cls"])
        assert table.samples[0].components[0].ext == "png"
        assert table.samples[0].components[0].outputs.to_list() == [0]

    def test_ranges_index_shared_tables(self, tmp_path):
        table, _ = _resolve(
            tmp_path, ["jpg 0 10 cls 512 1", "jpg 1024 10 cls 1536 1"], ["jpg", "cls"]
        )
        second = table.samples[1]
        assert second.components.start == 2
        assert [c.offset for c in second.components] == [1024, 1536]
        assert len(table.output_bindings) == 4

    def test_size_must_fit_dtype(self, tmp_path):
        with pytest.raises(IndexFileError, match="component size and dtype incompatible") as exc:
            _resolve(tmp_path, ["bin 0 6"], ["bin"], dtypes=[np.float32])
        assert exc.value.line == 1

    def test_size_fits_dtype(self, tmp_path):
        table, _ = _resolve(tmp_path, ["bin 0 8"], ["bin"], dtypes=[np.float32])
        assert len(table) == 1


class TestDuplicateMatches:
    def test_first_component_wins(self, tmp_path):
        with pytest.warns(UserWarning, match="Multiple components matching output 0"):
            table, _ = _resolve(tmp_path, ["jpg 0 10 jpg 512 20"], ["jpg"])
        component = table.samples[0].components[0]
        assert component.offset == 0
        assert len(table.samples[0].components) == 1

    def test_warns_once_per_run(self, tmp_path):
        lines = [f"jpg {i * 1024} 10 png {i * 1024 + 512} 10" for i in range(20)]
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            table, _ = _resolve(tmp_path, lines, ["jpg;png"])
        duplicates = [w for w in caught if "Multiple components" in str(w.message)]
        assert len(duplicates) == 1
        assert "line 1" in str(duplicates[0].message)
        assert all(s.components[0].ext == "jpg" for s in table.samples)

    def test_warns_once_across_archives(self, tmp_path):
        extensions = split_extension_groups(["jpg"])
        resolver = OutputResolver(extensions, [np.dtype(np.uint8)])
        table = SampleTable()
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            for i, name in enumerate(["a.idx", "b.idx"]):
                samples, path = _parse(tmp_path, ["jpg 0 1 jpg 512 1"], name=name)
                resolver.resolve(samples, i, path, table)
        assert len([w for w in caught if "Multiple components" in str(w.message)]) == 1


# ---------------------------------------------------------------------------
# Tests: missing-component behavior
# ---------------------------------------------------------------------------

class TestMissingComponentBehavior:
    LINES = ["jpg 0 10 cls 512 1", "jpg 1024 10", "cls 1536 1", "jpg 2048 10 cls 2560 1"]

    def test_empty_records_missing_outputs(self, tmp_path):
        table, retained = _resolve(tmp_path, self.LINES, ["jpg", "cls"])
        assert retained == 4
        assert table.samples[1].empty_outputs.to_list() == [1]
        assert table.samples[2].empty_outputs.to_list() == [0]

    def test_empty_covers_every_output(self, tmp_path):
        table, _ = _resolve(tmp_path, self.LINES, ["jpg", "cls", "txt"])
        for sample in table.samples:
            covered = _bound_outputs(sample) + sample.empty_outputs.to_list()
            assert sorted(covered) == [0, 1, 2]

    def test_skip_drops_underfull_samples(self, tmp_path):
        table, retained = _resolve(
            tmp_path, self.LINES, ["jpg", "cls"], MissingComponentBehavior.SKIP
        )
        assert retained == 2
        assert [s.line_number for s in table.samples] == [1, 4]

    def test_skip_rolls_back_tables(self, tmp_path):
        table, _ = _resolve(
            tmp_path, self.LINES, ["jpg", "cls"], MissingComponentBehavior.SKIP
        )
        assert [c.offset for c in table.components] == [0, 512, 2048, 2560]
        assert table.output_bindings == [0, 1, 0, 1]
        assert table.empty_outputs == []
        assert table.samples[1].components.start == 2

    def test_raise_fails_with_line(self, tmp_path):
        with pytest.raises(IndexFileError, match="Underful sample detected") as exc:
            _resolve(tmp_path, self.LINES, ["jpg", "cls"], MissingComponentBehavior.RAISE)
        assert exc.value.line == 2

    def test_sample_with_no_matches(self, tmp_path):
        table, retained = _resolve(
            tmp_path, ["txt 0 1", "jpg 512 1"], ["jpg"], MissingComponentBehavior.SKIP
        )
        assert retained == 1
        assert table.samples[0].line_number == 2

    def test_duplicates_do_not_count_as_bound(self, tmp_path):
        """Two jpg files do not make up for a missing cls."""
        with pytest.warns(UserWarning):
            table, retained = _resolve(
                tmp_path, ["jpg 0 1 jpg 512 1"], ["jpg", "cls"], MissingComponentBehavior.SKIP
            )
        assert retained == 0
        assert table.components == []
        assert table.output_bindings == []
