"""
Candidate values and the result aggregator.

A CandidateSet is ordered by discovery and deduplicated by value. An empty
set means "could not be statically determined".
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Iterator, List, Sequence, overload


class Provenance(Enum):
    """How a candidate value was obtained."""
    LITERAL = "literal"
    QUALIFIED_CONSTANT = "qualified-constant"
    TRACED_VARIABLE = "traced-variable"
    TRACED_RETURN = "traced-return"


@dataclass(frozen=True)
class Candidate:
    """A string judged to be a possible run-time value of an expression."""
    value: str
    provenance: Provenance

    def retag(self, provenance: Provenance) -> "Candidate":
        return replace(self, provenance=provenance)

    def __str__(self) -> str:
        return f"{self.value!r} ({self.provenance.value})"


class CandidateSet(Sequence[Candidate]):
    """
    Ordered, value-deduplicated sequence of candidates.

    The first candidate discovered for a value wins; later duplicates (same
    value reached through another branch) are dropped.
    """

    __slots__ = ("_items",)

    def __init__(self, candidates: Iterable[Candidate] = ()):
        self._items: List[Candidate] = []
        self.extend(candidates)

    def add(self, candidate: Candidate) -> bool:
        if any(existing.value == candidate.value for existing in self._items):
            return False
        self._items.append(candidate)
        return True

    def extend(self, candidates: Iterable[Candidate]):
        for candidate in candidates:
            self.add(candidate)

    def retagged(self, provenance: Provenance) -> "CandidateSet":
        return CandidateSet(candidate.retag(provenance) for candidate in self._items)

    def values(self) -> List[str]:
        return [candidate.value for candidate in self._items]

    @property
    def resolved(self) -> bool:
        return bool(self._items)

    @overload
    def __getitem__(self, index: int) -> Candidate: ...

    @overload
    def __getitem__(self, index: slice) -> List[Candidate]: ...

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._items)

    def __eq__(self, other) -> bool:
        if isinstance(other, CandidateSet):
            return self._items == other._items
        return NotImplemented

    def __repr__(self) -> str:
        return f"CandidateSet({self.values()!r})"
