"""Bounded best-performance history per user and muscle.

A muscle's score is computed from its best few historical performances, not
from the latest session alone, which smooths out single-session spikes and
slumps. The log keeps at most ``capacity`` entries ordered by performance
level, highest first.
"""

from __future__ import annotations

from bisect import insort_right
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from .utils import to_float

DEFAULT_CAPACITY = 5


@dataclass(frozen=True)
class PerformanceEntry:
    performance_level: float
    normalized_score: float
    contribution_weight: float

    def to_dict(self) -> dict[str, float]:
        return {
            "pl_value": self.performance_level,
            "sps_score": self.normalized_score,
            "mcw_weight": self.contribution_weight,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerformanceEntry | None":
        level = to_float(data.get("pl_value"))
        score = to_float(data.get("sps_score"))
        weight = to_float(data.get("mcw_weight"))
        if level is None or score is None or weight is None:
            return None
        return cls(performance_level=level, normalized_score=score, contribution_weight=weight)


def _sort_key(entry: PerformanceEntry) -> float:
    return -entry.performance_level


class MusclePerformanceLog:
    """Fixed-capacity container kept sorted descending by performance level.

    Insertion is stable: an entry that ties an existing one lands after it,
    so on truncation older entries win ties.
    """

    __slots__ = ("capacity", "_entries")

    def __init__(
        self,
        entries: Iterable[PerformanceEntry] = (),
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: list[PerformanceEntry] = []
        self.extend(entries)

    @classmethod
    def from_json(cls, raw: Any, capacity: int = DEFAULT_CAPACITY) -> "MusclePerformanceLog":
        """Rebuild a log from its stored JSON array. Malformed items are dropped."""
        items = raw if isinstance(raw, list) else []
        entries = [
            entry
            for entry in (PerformanceEntry.from_dict(item) for item in items if isinstance(item, dict))
            if entry is not None
        ]
        return cls(entries, capacity=capacity)

    def add(self, entry: PerformanceEntry) -> None:
        insort_right(self._entries, entry, key=_sort_key)
        del self._entries[self.capacity:]

    def extend(self, entries: Iterable[PerformanceEntry]) -> None:
        for entry in entries:
            self.add(entry)

    def merged(self, entries: Iterable[PerformanceEntry]) -> "MusclePerformanceLog":
        """Return a new log holding the top entries of this log plus ``entries``."""
        log = MusclePerformanceLog(self._entries, capacity=self.capacity)
        log.extend(entries)
        return log

    @property
    def entries(self) -> tuple[PerformanceEntry, ...]:
        return tuple(self._entries)

    def to_json(self) -> list[dict[str, float]]:
        return [entry.to_dict() for entry in self._entries]

    def __iter__(self) -> Iterator[PerformanceEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MusclePerformanceLog):
            return NotImplemented
        return self.capacity == other.capacity and self._entries == other._entries

    def __repr__(self) -> str:
        return f"MusclePerformanceLog(capacity={self.capacity}, entries={self._entries!r})"
