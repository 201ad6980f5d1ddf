"""Binding archive components to declared outputs.

Outputs are declared as groups of acceptable extensions, e.g.
``["jpg;png", "cls"]`` declares two outputs: the image (a ``jpg`` or a
``png`` file) and the label. For every sample the resolver walks the
components in file order and binds each one to the outputs that accept its
extension:

- An output takes the first matching component of the sample. Later matches
  are ignored and reported once per resolver with a UserWarning.
- A component that binds no output is dropped.
- A sample left with unbound outputs is handled by the missing-component
  behavior: filled with empty outputs (EMPTY), dropped (SKIP) or rejected
  (RAISE).

The resolved descriptors are appended to a SampleTable: flat lists shared by
all samples through ranges.
"""

from __future__ import annotations

import threading
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

import numpy as np

from tarstream.descriptors import ComponentDesc, Range, SampleDesc
from tarstream.index import IndexFileError

# Separator between the extensions of one output group
EXT_DELIMITER = ";"


class MissingComponentBehavior(Enum):
    """What to do with a sample that lacks a component for some output."""

    EMPTY = "empty"
    SKIP = "skip"
    RAISE = "error"
    INVALID = "invalid"


def parse_missing_component_behavior(value: str | None) -> MissingComponentBehavior:
    """Parse a user-facing behavior name (case-insensitive).

    ``""`` and ``"empty"`` map to EMPTY, ``"skip"`` to SKIP and ``"error"``
    to RAISE. Anything else yields INVALID, which callers must reject.
    """
    value = (value or "").lower()
    if value in ("", "empty"):
        return MissingComponentBehavior.EMPTY
    if value == "skip":
        return MissingComponentBehavior.SKIP
    if value == "error":
        return MissingComponentBehavior.RAISE
    return MissingComponentBehavior.INVALID


def split_extension_groups(groups: Sequence[str]) -> list[list[str]]:
    """Split ``;``-joined extension groups, de-duplicating within each group."""
    return [
        list(dict.fromkeys(ext for ext in group.split(EXT_DELIMITER)))
        for group in groups
    ]


def build_extension_map(extensions: Sequence[Sequence[str]]) -> dict[str, list[int]]:
    """Map each extension to the indices of the outputs accepting it."""
    ext_map: dict[str, list[int]] = {}
    for output_index, group in enumerate(extensions):
        for ext in group:
            ext_map.setdefault(ext, []).append(output_index)
    return ext_map


@dataclass
class SampleTable:
    """Resolved descriptors of all retained samples."""

    samples: list[SampleDesc] = field(default_factory=list)
    components: list[ComponentDesc] = field(default_factory=list)
    output_bindings: list[int] = field(default_factory=list)
    empty_outputs: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.samples)


class OutputResolver:
    """Binds parsed components to outputs and applies the missing behavior.

    Args:
        extensions: One list of accepted extensions per output.
        dtypes: One dtype per output; a bound component's size must be a
            multiple of its output's itemsize.
        missing_component_behavior: Policy for under-full samples.
    """

    def __init__(
        self,
        extensions: Sequence[Sequence[str]],
        dtypes: Sequence[np.dtype],
        missing_component_behavior: MissingComponentBehavior = MissingComponentBehavior.EMPTY,
    ) -> None:
        if missing_component_behavior is MissingComponentBehavior.INVALID:
            raise ValueError("missing_component_behavior must be resolved before use")
        self.num_outputs = len(extensions)
        self.ext_map = build_extension_map(extensions)
        self.dtype_sizes = [np.dtype(dtype).itemsize for dtype in dtypes]
        self.missing_component_behavior = missing_component_behavior
        self._warn_lock = threading.Lock()
        self._warned_duplicate = False

    def _warn_duplicate(self, output: int, line_number: int, index_path: str) -> None:
        with self._warn_lock:
            if self._warned_duplicate:
                return
            self._warned_duplicate = True
        warnings.warn(
            f"Multiple components matching output {output} at line {line_number} "
            f'file "{index_path}".',
            UserWarning,
            stacklevel=3,
        )

    def resolve(
        self,
        parsed_samples: Sequence[SampleDesc],
        archive_index: int,
        index_path: str,
        table: SampleTable,
    ) -> int:
        """Resolve the parsed samples of one archive into ``table``.

        Returns:
            Number of samples retained.

        Raises:
            IndexFileError: On a size/dtype mismatch, or an under-full sample
                under RAISE.
        """
        retained = 0
        was_output_set = [False] * self.num_outputs

        for parsed in parsed_samples:
            sample = SampleDesc(
                components=Range(table.components, len(table.components)),
                empty_outputs=Range(table.empty_outputs, len(table.empty_outputs)),
                archive_index=archive_index,
                line_number=parsed.line_number,
            )
            start_bindings = len(table.output_bindings)
            num_bound = 0

            for parsed_component in parsed.components:
                outputs = Range(table.output_bindings, len(table.output_bindings))
                for output in self.ext_map.get(parsed_component.ext, ()):
                    if was_output_set[output]:
                        self._warn_duplicate(output, parsed.line_number, index_path)
                        continue
                    if parsed_component.size % self.dtype_sizes[output] != 0:
                        raise IndexFileError(
                            index_path, parsed.line_number,
                            "component size and dtype incompatible",
                        )
                    table.output_bindings.append(output)
                    outputs.count += 1
                    was_output_set[output] = True
                    num_bound += 1
                if outputs.count:
                    table.components.append(ComponentDesc(
                        ext=parsed_component.ext,
                        offset=parsed_component.offset,
                        size=parsed_component.size,
                        outputs=outputs,
                    ))
                    sample.components.count += 1

            if num_bound < self.num_outputs:
                if self._apply_missing_behavior(sample, was_output_set, start_bindings,
                                                index_path, table):
                    table.samples.append(sample)
                    retained += 1
            else:
                table.samples.append(sample)
                retained += 1

            was_output_set = [False] * self.num_outputs

        return retained

    def _apply_missing_behavior(
        self,
        sample: SampleDesc,
        was_output_set: list[bool],
        start_bindings: int,
        index_path: str,
        table: SampleTable,
    ) -> bool:
        """Handle an under-full sample; return whether to keep it."""
        behavior = self.missing_component_behavior
        if behavior is MissingComponentBehavior.EMPTY:
            for output, is_set in enumerate(was_output_set):
                if not is_set:
                    table.empty_outputs.append(output)
                    sample.empty_outputs.count += 1
            return True
        if behavior is MissingComponentBehavior.SKIP:
            del table.components[sample.components.start:]
            del table.output_bindings[start_bindings:]
            return False
        if behavior is MissingComponentBehavior.RAISE:
            raise IndexFileError(
                index_path, sample.line_number, "Underful sample detected",
            )
        raise AssertionError(f"unhandled missing component behavior {behavior}")


__all__ = [
    "EXT_DELIMITER",
    "MissingComponentBehavior",
    "OutputResolver",
    "SampleTable",
    "build_extension_map",
    "parse_missing_component_behavior",
    "split_extension_groups",
]
