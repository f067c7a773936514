from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Protocol, Sequence


@dataclass(frozen=True, slots=True)
class RawBatch:
    """
    One delivery from the exchange side: raw records of one category.

    `category` is the fallback applied to records that do not name their own.
    """

    category: str
    records: Sequence[Mapping[str, Any]] = field(default_factory=tuple)


class RawBatchSource(Protocol):
    """
    A deterministic stream of RawBatch items.
    """

    def __iter__(self) -> Iterator[RawBatch]:
        ...


@dataclass(frozen=True)
class InMemoryBatchSource:
    """
    Simple in-memory source for tests and fixtures.
    """

    items: Sequence[RawBatch]

    def __iter__(self) -> Iterator[RawBatch]:
        yield from self.items
