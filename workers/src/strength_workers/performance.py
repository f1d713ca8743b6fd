"""Performance calculator: session sets → per-muscle performance candidates.

For every exercise in a session only the strongest set (highest estimated
1RM) counts. Its 1RM-to-bodyweight ratio is scaled into an integer
normalized score and divided by the exercise's elite benchmark to give a
performance level that is comparable across exercises. The result is fanned
out to every primary muscle of the exercise together with that muscle's
contribution weight.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from .config import EngineSettings
from .reference_data import ReferenceData
from .utils import as_decimal, round_cents, round_half_up, to_float, to_int

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSet:
    exercise_id: str
    reps: int
    weight_kg: float


@dataclass(frozen=True)
class BestSet:
    exercise_id: str
    reps: int
    weight_kg: float
    estimated_1rm: float


@dataclass(frozen=True)
class MuscleCandidate:
    muscle_id: str
    exercise_id: str
    performance_level: float
    normalized_score: int
    contribution_weight: float


def epley_1rm(weight_kg: float | None, reps: int | None) -> float:
    """Estimate 1RM using the Epley formula. Returns 0 for invalid inputs.

    The estimate is kept at two decimals.
    """
    weight_kg = to_float(weight_kg)
    reps = to_int(reps)
    if weight_kg is None or reps is None or reps <= 0 or weight_kg <= 0:
        return 0.0
    estimate = weight_kg if reps == 1 else weight_kg * (1 + reps / 30)
    if not math.isfinite(estimate):
        return 0.0
    return float(round_cents(estimate))


def strength_to_weight_ratio(estimated_1rm: float, bodyweight_kg: float | None) -> float | None:
    bodyweight_kg = to_float(bodyweight_kg)
    if bodyweight_kg is None or bodyweight_kg <= 0 or estimated_1rm <= 0:
        return None
    return estimated_1rm / bodyweight_kg


def normalized_score(estimated_1rm: float, bodyweight_kg: float, scale: int = 4000) -> int:
    """round((e1RM / bodyweight) * scale), evaluated in exact decimal arithmetic.

    Non-finite or non-positive inputs give 0.
    """
    estimated_1rm = to_float(estimated_1rm)
    bodyweight_kg = to_float(bodyweight_kg)
    if estimated_1rm is None or bodyweight_kg is None or bodyweight_kg <= 0 or estimated_1rm <= 0:
        return 0
    ratio = as_decimal(estimated_1rm) / as_decimal(bodyweight_kg)
    return round_half_up(ratio * scale)


def coerce_session_set(raw: Any) -> SessionSet | None:
    """Accept a SessionSet, a pydantic SetRecord or a plain mapping.

    Missing or negative reps/weight are clamped to 0 (zero contribution).
    """
    if isinstance(raw, SessionSet):
        return raw
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        return None
    exercise_id = raw.get("exercise_id")
    if exercise_id is None or not str(exercise_id).strip():
        return None
    reps = to_int(raw.get("reps"))
    weight = to_float(raw.get("weight_kg"))
    return SessionSet(
        exercise_id=str(exercise_id).strip(),
        reps=max(reps or 0, 0),
        weight_kg=max(weight or 0.0, 0.0),
    )


def select_best_sets(sets: list[SessionSet]) -> dict[str, BestSet]:
    """Best set per exercise by estimated 1RM. Ties keep the first occurrence.

    Sets with no valid 1RM estimate are never selected.
    """
    best: dict[str, BestSet] = {}
    for session_set in sets:
        e1rm = epley_1rm(session_set.weight_kg, session_set.reps)
        if e1rm <= 0:
            continue
        current = best.get(session_set.exercise_id)
        if current is None or e1rm > current.estimated_1rm:
            best[session_set.exercise_id] = BestSet(
                exercise_id=session_set.exercise_id,
                reps=session_set.reps,
                weight_kg=session_set.weight_kg,
                estimated_1rm=e1rm,
            )
    return best


def compute_candidates(
    sets: list[Any],
    bodyweight_kg: float | None,
    reference: ReferenceData,
    settings: EngineSettings | None = None,
) -> list[MuscleCandidate]:
    """Convert a session's sets into per-muscle performance candidates.

    Returns an empty list when bodyweight is unknown. Exercises without a
    benchmark or without primary muscles are skipped.
    """
    settings = settings or EngineSettings()
    bodyweight_kg = to_float(bodyweight_kg)
    if bodyweight_kg is None or bodyweight_kg <= 0:
        return []

    session_sets = [s for s in (coerce_session_set(raw) for raw in sets) if s is not None]
    candidates: list[MuscleCandidate] = []
    for exercise_id, best in select_best_sets(session_sets).items():
        elite = reference.elite_benchmarks.get(exercise_id)
        if elite is None:
            logger.info("No elite benchmark for exercise %s, skipping", exercise_id)
            continue
        primary_muscles = reference.primary_muscles_by_exercise.get(exercise_id)
        if not primary_muscles:
            logger.debug("Exercise %s has no primary muscle mapping, skipping", exercise_id)
            continue

        score = normalized_score(best.estimated_1rm, bodyweight_kg, settings.score_scale)
        level = score / elite
        for mapping in primary_muscles:
            candidates.append(
                MuscleCandidate(
                    muscle_id=mapping.muscle_id,
                    exercise_id=exercise_id,
                    performance_level=level,
                    normalized_score=score,
                    contribution_weight=mapping.weight,
                )
            )
    return candidates
