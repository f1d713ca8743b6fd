"""Before/after progression summaries.

Overall and muscle-group scores are reported as a continuous bar (percent of
the way to the next tier). Individual muscles are reported as discrete
rank-change events with no percentage.
"""

from __future__ import annotations

from .models import MuscleRankChange, Progression, RankInfo
from .ranks import UNRANKED, RankThresholds
from .utils import round_cents


def percent_to_next_rank(
    final_score: float, current_min: float, next_min: float | None
) -> float:
    """Share of the current tier already covered, clamped to [0, 1].

    1.0 when there is no next tier; 0.0 when the span is empty or no progress
    has been made.
    """
    if next_min is None:
        return 1.0
    span = next_min - current_min
    if span <= 0:
        return 0.0
    progress = max(0.0, final_score - current_min) / span
    return float(round_cents(min(1.0, max(0.0, progress))))


def build_progression(
    initial_score: int, final_score: int, thresholds: RankThresholds
) -> Progression:
    initial_rank = thresholds.resolve(initial_score)
    current_rank = thresholds.resolve(final_score)
    next_rank = thresholds.next_rank(current_rank)
    percent = percent_to_next_rank(
        final_score,
        current_rank.min_score,
        next_rank.min_score if next_rank is not None else None,
    )
    return Progression(
        initial_score=initial_score,
        final_score=final_score,
        initial_rank=RankInfo.from_tier(initial_rank),
        current_rank=RankInfo.from_tier(current_rank),
        next_rank=RankInfo.from_tier(next_rank) if next_rank is not None else None,
        percent_to_next_rank=percent,
    )


def build_muscle_rank_change(
    muscle_id: str,
    muscle_name: str,
    old_score: int | None,
    old_rank_id: int | None,
    new_score: int,
    thresholds: RankThresholds,
) -> MuscleRankChange | None:
    """Return a change record when the score or the rank moved, else None."""
    new_rank = thresholds.resolve(new_score)
    rank_changed = new_rank.rank_id != old_rank_id
    if old_score == new_score and not rank_changed:
        return None

    old_rank: RankInfo | None = None
    if old_score is not None or old_rank_id is not None:
        old_tier = thresholds.get(old_rank_id)
        if old_tier is not None:
            old_rank = RankInfo.from_tier(old_tier)
        elif old_rank_id is None:
            old_rank = RankInfo.from_tier(UNRANKED)
        else:
            old_rank = RankInfo(
                rank_id=old_rank_id,
                rank_name=thresholds.name_for(old_rank_id) or "",
                min_score=0,
            )

    return MuscleRankChange(
        id=muscle_id,
        name=muscle_name,
        old_score=old_score,
        new_score=new_score,
        old_rank=old_rank,
        new_rank=RankInfo.from_tier(new_rank),
        rank_changed=rank_changed,
    )
