"""Sample and component descriptors.

Samples never own their components. All descriptors of a loader live in a few
flat append-only lists (components, output bindings, empty outputs) and each
sample refers to its part of them through a ``Range``. Dropping a sample that
is still being built is then just a truncation of those lists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


@dataclass
class Range(Generic[T]):
    """A ``(start, count)`` window over a shared list.

    Attributes:
        table: The list the window looks into.
        start: Index of the first element.
        count: Number of elements.
    """

    table: list[T] = field(repr=False)
    start: int = 0
    count: int = 0

    def __len__(self) -> int:
        return self.count

    def __iter__(self) -> Iterator[T]:
        for i in range(self.start, self.start + self.count):
            yield self.table[i]

    def __getitem__(self, idx: int) -> T:
        if idx < 0:
            idx += self.count
        if not 0 <= idx < self.count:
            raise IndexError(f"range index {idx} out of bounds for {self.count} elements")
        return self.table[self.start + idx]

    def to_list(self) -> list[T]:
        return self.table[self.start:self.start + self.count]


@dataclass
class ComponentDesc:
    """One named file of a sample inside a tar archive.

    ``offset`` points at the file data (not its tar header) and is always a
    multiple of the tar block size. ``outputs`` is filled when the component
    is bound to declared outputs.
    """

    ext: str
    offset: int
    size: int
    outputs: Range[int] | None = None


@dataclass
class SampleDesc:
    """One training sample: its components and the outputs it leaves empty."""

    components: Range[ComponentDesc]
    empty_outputs: Range[int] | None = None
    archive_index: int = 0
    line_number: int = 0


__all__ = ["Range", "ComponentDesc", "SampleDesc"]
