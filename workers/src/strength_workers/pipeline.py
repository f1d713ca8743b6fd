"""Ranking pipeline: one sequential run per completed workout session.

    sets → candidates → per-muscle log merge (one upsert each)
         → [all log writes done] → full score recompute → ranks
         → best-effort score/rank upserts → RankingResult

Log writes for different muscles are independent of each other; the
aggregation step only starts after every one of them has finished. Score
writes are best-effort: a failed write is logged and counted, the remaining
writes still go through and nothing is rolled back.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Any

import psycopg

from .config import EngineSettings
from .metrics import record_ranking_computed, record_ranking_skipped, record_write_failure
from .models import MuscleGroupProgression, MuscleRankChange, RankingResult
from .performance import MuscleCandidate, compute_candidates
from .performance_log import PerformanceEntry
from .persistence import RankingStore, UserScoreState
from .progression import build_muscle_rank_change, build_progression
from .reference_data import ReferenceData, ReferenceDataCache, reference_cache
from .scoring import ScoreSnapshot, compute_scores
from .utils import to_float

logger = logging.getLogger(__name__)


async def _best_effort(label: str, user_id: str, write: Awaitable[Any]) -> bool:
    try:
        await write
        return True
    except Exception:
        record_write_failure()
        logger.exception(
            "Ranking write failed (%s) for user=%s, continuing",
            label, user_id,
            extra={"rank_user_id": user_id, "rank_write": label},
        )
        return False


def _entries_by_muscle(candidates: list[MuscleCandidate]) -> dict[str, list[PerformanceEntry]]:
    grouped: dict[str, list[PerformanceEntry]] = defaultdict(list)
    for candidate in candidates:
        grouped[candidate.muscle_id].append(
            PerformanceEntry(
                performance_level=candidate.performance_level,
                normalized_score=candidate.normalized_score,
                contribution_weight=candidate.contribution_weight,
            )
        )
    return grouped


async def _update_logs(
    store: RankingStore,
    user_id: str,
    candidates: list[MuscleCandidate],
    settings: EngineSettings,
) -> None:
    for muscle_id, entries in sorted(_entries_by_muscle(candidates).items()):
        await _best_effort(
            f"muscle_log:{muscle_id}",
            user_id,
            store.update_muscle_log(user_id, muscle_id, entries, settings.log_capacity),
        )


async def _persist_scores(
    store: RankingStore,
    user_id: str,
    snapshot: ScoreSnapshot,
    reference: ReferenceData,
) -> None:
    thresholds = reference.thresholds
    calculated_at = datetime.now(timezone.utc)

    await _best_effort(
        "overall",
        user_id,
        store.upsert_overall_score(
            user_id,
            snapshot.overall_score,
            thresholds.resolve(snapshot.overall_score).rank_id,
            calculated_at,
        ),
    )
    for group_id, score in snapshot.group_scores.items():
        await _best_effort(
            f"muscle_group:{group_id}",
            user_id,
            store.upsert_group_score(
                user_id, group_id, score, thresholds.resolve(score).rank_id, calculated_at
            ),
        )
    for muscle_id, score in snapshot.muscle_scores.items():
        await _best_effort(
            f"muscle:{muscle_id}",
            user_id,
            store.upsert_muscle_score(
                user_id, muscle_id, score, thresholds.resolve(score).rank_id, calculated_at
            ),
        )


def build_ranking_result(
    previous: UserScoreState,
    snapshot: ScoreSnapshot,
    reference: ReferenceData,
) -> RankingResult:
    thresholds = reference.thresholds

    initial_overall = previous.overall.score if previous.overall and previous.overall.score else 0
    overall = build_progression(initial_overall, snapshot.overall_score, thresholds)

    group_progressions = []
    for group_id, score in snapshot.group_scores.items():
        old = previous.groups.get(group_id)
        group_progressions.append(
            MuscleGroupProgression(
                id=group_id,
                name=reference.group_name(group_id),
                progression=build_progression((old.score or 0) if old else 0, score, thresholds),
            )
        )

    muscle_changes: list[MuscleRankChange] = []
    for muscle_id, score in snapshot.muscle_scores.items():
        old = previous.muscles.get(muscle_id)
        change = build_muscle_rank_change(
            muscle_id,
            reference.muscle_name(muscle_id),
            old.score if old else None,
            old.rank_id if old else None,
            score,
            thresholds,
        )
        if change is not None:
            muscle_changes.append(change)

    return RankingResult(
        overall_progression=overall,
        muscle_group_progressions=group_progressions,
        muscle_rank_changes=muscle_changes,
    )


async def compute_ranking(
    conn: psycopg.AsyncConnection[Any],
    user_id: str,
    bodyweight_kg: float | None,
    sets: list[Any],
    *,
    gender: str | None = None,
    cache: ReferenceDataCache | None = None,
    settings: EngineSettings | None = None,
    store: RankingStore | None = None,
) -> RankingResult:
    """Run the full ranking pipeline for one completed session.

    ``gender`` is accepted for interface stability; benchmarks are unisex.
    Reference data or user state read failures propagate to the caller.
    """
    settings = settings or EngineSettings()
    cache = cache or reference_cache
    store = store or RankingStore(conn)
    bodyweight = to_float(bodyweight_kg)

    if bodyweight is None or bodyweight <= 0:
        record_ranking_skipped()
        logger.warning(
            "User %s has no bodyweight, skipping rank calculation", user_id,
            extra={"rank_user_id": user_id},
        )
        return RankingResult.empty()

    t0 = time.monotonic()
    reference = await cache.get(conn)
    candidates = compute_candidates(sets, bodyweight, reference, settings)

    await store.acquire_user_lock(user_id)
    previous = await store.load_user_scores(user_id)

    await _update_logs(store, user_id, candidates, settings)

    logs = await store.load_all_logs(user_id, settings.log_capacity)
    snapshot = compute_scores(logs, reference, settings)

    await _persist_scores(store, user_id, snapshot, reference)

    result = build_ranking_result(previous, snapshot, reference)
    record_ranking_computed()
    logger.info(
        "Ranking computed for user=%s (candidates=%d, muscles=%d, groups=%d, overall=%d)",
        user_id,
        len(candidates),
        len(snapshot.muscle_scores),
        len(snapshot.group_scores),
        snapshot.overall_score,
        extra={
            "rank_user_id": user_id,
            "rank_duration_ms": round((time.monotonic() - t0) * 1000, 1),
        },
    )
    return result


async def compute_ranking_safely(
    conn: psycopg.AsyncConnection[Any],
    user_id: str,
    bodyweight_kg: float | None,
    sets: list[Any],
    **kwargs: Any,
) -> RankingResult:
    """compute_ranking for callers that must never fail because of ranking.

    Runs inside a savepoint so a failed run leaves the caller's transaction
    (e.g. the persisted workout session) usable. Any error degrades to an
    empty result.
    """
    try:
        async with conn.transaction():
            return await compute_ranking(conn, user_id, bodyweight_kg, sets, **kwargs)
    except Exception:
        logger.exception(
            "Ranking failed for user=%s, returning empty result", user_id,
            extra={"rank_user_id": user_id},
        )
        return RankingResult.empty()
