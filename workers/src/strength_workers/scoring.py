"""Three-tier weighted score aggregation: muscle → muscle group → overall.

Scores are always recomputed from the full set of stored performance logs,
never patched incrementally, so running the aggregation twice over the same
logs gives the same snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import EngineSettings
from .performance_log import MusclePerformanceLog
from .reference_data import ReferenceData
from .utils import round_half_up, safe_weighted_average


@dataclass(frozen=True)
class ScoreSnapshot:
    muscle_scores: dict[str, int]
    group_scores: dict[str, int]
    overall_score: int
    overall_group_ids: tuple[str, ...] = ()


def muscle_score(log: MusclePerformanceLog) -> int:
    """Contribution-weighted mean of the log's normalized scores; 0 if empty."""
    return round_half_up(
        safe_weighted_average(
            [(entry.normalized_score, entry.contribution_weight) for entry in log]
        )
    )


def _group_pairs(
    group_id: str, muscle_scores: dict[str, int], reference: ReferenceData
) -> list[tuple[float, float]]:
    # Every known muscle of the group with a group weight counts in the
    # denominator; muscles without a log score 0.
    return [
        (muscle_scores.get(muscle.id, 0), muscle.group_weight)
        for muscle in reference.muscles_by_group.get(group_id, ())
        if muscle.group_weight > 0
    ]


def group_score(group_id: str, muscle_scores: dict[str, int], reference: ReferenceData) -> int:
    return round_half_up(safe_weighted_average(_group_pairs(group_id, muscle_scores, reference)))


def _group_has_contribution(
    group_id: str, muscle_scores: dict[str, int], reference: ReferenceData
) -> bool:
    return sum(score * weight for score, weight in _group_pairs(group_id, muscle_scores, reference)) > 0


def compute_scores(
    logs_by_muscle: dict[str, MusclePerformanceLog],
    reference: ReferenceData,
    settings: EngineSettings | None = None,
) -> ScoreSnapshot:
    settings = settings or EngineSettings()

    muscle_scores = {
        muscle_id: muscle_score(log) for muscle_id, log in sorted(logs_by_muscle.items())
    }

    scored_groups: set[str] = set()
    for muscle_id, log in logs_by_muscle.items():
        muscle = reference.muscles.get(muscle_id)
        if log and muscle is not None and muscle.muscle_group_id is not None:
            scored_groups.add(muscle.muscle_group_id)

    group_scores = {
        group_id: group_score(group_id, muscle_scores, reference)
        for group_id in sorted(scored_groups)
    }

    if settings.overall_scope == "all_weighted":
        overall_ids = sorted(
            gid for gid, group in reference.muscle_groups.items() if group.overall_weight > 0
        )
    else:
        overall_ids = sorted(
            gid
            for gid in group_scores
            if gid in reference.muscle_groups
            and reference.muscle_groups[gid].overall_weight > 0
            and _group_has_contribution(gid, muscle_scores, reference)
        )

    overall = round_half_up(
        safe_weighted_average(
            [
                (group_scores.get(gid, 0), reference.muscle_groups[gid].overall_weight)
                for gid in overall_ids
            ]
        )
    )
    return ScoreSnapshot(
        muscle_scores=muscle_scores,
        group_scores=group_scores,
        overall_score=overall,
        overall_group_ids=tuple(overall_ids),
    )
