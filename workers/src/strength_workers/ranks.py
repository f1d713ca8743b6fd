"""Rank resolution against the ordered rank-threshold table."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

UNKNOWN_RANK_NAME = "Unknown Rank"


@dataclass(frozen=True)
class RankTier:
    rank_id: int | None
    rank_name: str
    min_score: float


UNRANKED = RankTier(rank_id=None, rank_name="Unranked", min_score=0)


class RankThresholds:
    """Rank tiers sorted ascending by minimum score.

    Minimum scores must be strictly increasing, which makes resolution total
    and deterministic. Equal minimums raise ValueError.
    """

    def __init__(self, tiers: Iterable[RankTier]) -> None:
        ordered = sorted(tiers, key=lambda tier: tier.min_score)
        for lower, upper in zip(ordered, ordered[1:]):
            if upper.min_score <= lower.min_score:
                raise ValueError(
                    f"Rank thresholds must be strictly increasing: rank {lower.rank_id!r} "
                    f"and rank {upper.rank_id!r} share min_score={upper.min_score}"
                )
        ids = [tier.rank_id for tier in ordered]
        if None in ids:
            raise ValueError("Rank thresholds must not contain the Unranked sentinel")
        if len(set(ids)) != len(ids):
            raise ValueError("Rank ids must be unique within the threshold table")
        self._tiers: tuple[RankTier, ...] = tuple(ordered)
        self._mins: list[float] = [tier.min_score for tier in ordered]
        self._index_by_id: dict[int | None, int] = {
            tier.rank_id: idx for idx, tier in enumerate(ordered)
        }

    def __iter__(self) -> Iterator[RankTier]:
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    @property
    def tiers(self) -> tuple[RankTier, ...]:
        return self._tiers

    def get(self, rank_id: int | None) -> RankTier | None:
        if rank_id is None:
            return None
        idx = self._index_by_id.get(rank_id)
        return self._tiers[idx] if idx is not None else None

    def name_for(self, rank_id: int | None) -> str | None:
        if rank_id is None:
            return None
        tier = self.get(rank_id)
        return tier.rank_name if tier is not None else UNKNOWN_RANK_NAME

    def resolve(self, score: float) -> RankTier:
        """Return the tier with the greatest min_score <= score, or UNRANKED."""
        idx = bisect_right(self._mins, score) - 1
        if idx < 0:
            return UNRANKED
        return self._tiers[idx]

    def next_rank(self, tier: RankTier) -> RankTier | None:
        """Return the tier directly above ``tier``; None at the top tier."""
        if tier.rank_id is None:
            return self._tiers[0] if self._tiers else None
        idx = self._index_by_id.get(tier.rank_id)
        if idx is None or idx + 1 >= len(self._tiers):
            return None
        return self._tiers[idx + 1]
