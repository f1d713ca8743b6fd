"""Read-through cache of the immutable ranking reference data.

Muscles, muscle groups, primary exercise→muscle weights, elite performance
benchmarks and rank thresholds are seeded outside the engine and never change
while it runs. They are loaded once per process into typed mappings and
shared read-only by every ranking run.

Population semantics:
- first ``get()`` (or ``prewarm()``) loads everything in one pass;
- concurrent callers wait on the same load (single flight);
- entries expire after ``ttl_seconds`` and are reloaded on the next miss;
- ``invalidate()`` drops the snapshot (administrator refresh);
- ``notify_reference_change()`` tells every other worker process to drop
  theirs; the TTL bounds staleness if a notification is missed.

A failed load raises ReferenceDataError and leaves the previous snapshot
untouched; the run that triggered it is aborted.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import psycopg
from psycopg.rows import dict_row

from .metrics import record_cache_hit, record_cache_load, record_cache_miss
from .ranks import RankThresholds, RankTier
from .utils import to_float, to_int

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
PRIMARY_INTENSITY = "primary"

# Every worker LISTENs here and drops its snapshot on a notification that did
# not originate from itself.
REFERENCE_CHANGED_CHANNEL = "reference_data_changed"
PROCESS_TOKEN = uuid.uuid4().hex


class ReferenceDataError(RuntimeError):
    """Reference data could not be read or is inconsistent. Fatal for a run."""


@dataclass(frozen=True)
class Muscle:
    id: str
    name: str
    muscle_group_id: str | None
    group_weight: float


@dataclass(frozen=True)
class MuscleGroup:
    id: str
    name: str
    overall_weight: float


@dataclass(frozen=True)
class ExerciseMuscleWeight:
    exercise_id: str
    muscle_id: str
    weight: float
    intensity: str = PRIMARY_INTENSITY


@dataclass(frozen=True)
class ReferenceData:
    muscles: dict[str, Muscle]
    muscle_groups: dict[str, MuscleGroup]
    primary_muscles_by_exercise: dict[str, tuple[ExerciseMuscleWeight, ...]]
    elite_benchmarks: dict[str, float]
    thresholds: RankThresholds
    muscles_by_group: dict[str, tuple[Muscle, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.muscles_by_group:
            grouped: dict[str, list[Muscle]] = defaultdict(list)
            for muscle in self.muscles.values():
                if muscle.muscle_group_id is not None:
                    grouped[muscle.muscle_group_id].append(muscle)
            object.__setattr__(
                self,
                "muscles_by_group",
                {gid: tuple(sorted(ms, key=lambda m: m.id)) for gid, ms in grouped.items()},
            )

    def muscle_name(self, muscle_id: str) -> str:
        muscle = self.muscles.get(muscle_id)
        return muscle.name if muscle is not None else "Unknown Muscle"

    def group_name(self, group_id: str) -> str:
        group = self.muscle_groups.get(group_id)
        return group.name if group is not None else "Unknown Group"


def build_reference_data(
    *,
    muscles: list[dict[str, Any]],
    muscle_groups: list[dict[str, Any]],
    exercise_muscles: list[dict[str, Any]],
    benchmarks: list[dict[str, Any]],
    ranks: list[dict[str, Any]],
) -> ReferenceData:
    """Turn raw table rows into typed, id-keyed mappings."""
    muscle_map: dict[str, Muscle] = {}
    for row in muscles:
        muscle_id = str(row["id"])
        group_id = row.get("muscle_group_id")
        muscle_map[muscle_id] = Muscle(
            id=muscle_id,
            name=str(row.get("name") or ""),
            muscle_group_id=str(group_id) if group_id is not None else None,
            group_weight=to_float(row.get("muscle_group_weight")) or 0.0,
        )

    group_map: dict[str, MuscleGroup] = {}
    for row in muscle_groups:
        group_id = str(row["id"])
        group_map[group_id] = MuscleGroup(
            id=group_id,
            name=str(row.get("name") or ""),
            overall_weight=to_float(row.get("overall_weight")) or 0.0,
        )

    by_exercise: dict[str, list[ExerciseMuscleWeight]] = defaultdict(list)
    for row in exercise_muscles:
        intensity = str(row.get("muscle_intensity") or "").strip().lower()
        if intensity != PRIMARY_INTENSITY:
            continue
        weight = to_float(row.get("exercise_muscle_weight"))
        if weight is None or weight <= 0:
            continue
        exercise_id = str(row["exercise_id"])
        by_exercise[exercise_id].append(
            ExerciseMuscleWeight(
                exercise_id=exercise_id,
                muscle_id=str(row["muscle_id"]),
                weight=weight,
            )
        )

    benchmark_map: dict[str, float] = {}
    for row in benchmarks:
        elite = to_float(row.get("sps_elite_value"))
        if elite is None or elite <= 0:
            logger.warning("Ignoring non-positive elite benchmark for exercise %s", row.get("exercise_id"))
            continue
        benchmark_map[str(row["exercise_id"])] = elite

    tiers: list[RankTier] = []
    for row in ranks:
        min_score = to_float(row.get("min_score"))
        rank_id = to_int(row.get("id"))
        if min_score is None or rank_id is None:
            continue
        tiers.append(RankTier(rank_id=rank_id, rank_name=str(row.get("rank_name") or ""), min_score=min_score))
    try:
        thresholds = RankThresholds(tiers)
    except ValueError as exc:
        raise ReferenceDataError(str(exc)) from exc

    return ReferenceData(
        muscles=muscle_map,
        muscle_groups=group_map,
        primary_muscles_by_exercise={k: tuple(v) for k, v in by_exercise.items()},
        elite_benchmarks=benchmark_map,
        thresholds=thresholds,
    )


async def _fetch_all(
    conn: psycopg.AsyncConnection[Any], query: str
) -> list[dict[str, Any]]:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(query)
        return await cur.fetchall()


async def load_reference_data(conn: psycopg.AsyncConnection[Any]) -> ReferenceData:
    """Read every reference table. Any database error is fatal."""
    try:
        muscles = await _fetch_all(
            conn, "SELECT id, name, muscle_group_id, muscle_group_weight FROM muscles"
        )
        muscle_groups = await _fetch_all(
            conn, "SELECT id, name, overall_weight FROM muscle_groups"
        )
        exercise_muscles = await _fetch_all(
            conn,
            """
            SELECT exercise_id, muscle_id, exercise_muscle_weight, muscle_intensity
            FROM exercise_muscles
            WHERE muscle_intensity = 'primary'
            """,
        )
        benchmarks = await _fetch_all(
            conn, "SELECT exercise_id, sps_elite_value FROM exercise_performance_benchmarks"
        )
        ranks = await _fetch_all(
            conn,
            """
            SELECT id, rank_name, min_score
            FROM ranks
            WHERE min_score IS NOT NULL
            ORDER BY min_score ASC
            """,
        )
    except psycopg.Error as exc:
        raise ReferenceDataError(f"Failed to read reference data: {exc}") from exc

    return build_reference_data(
        muscles=muscles,
        muscle_groups=muscle_groups,
        exercise_muscles=exercise_muscles,
        benchmarks=benchmarks,
        ranks=ranks,
    )


Loader = Callable[[psycopg.AsyncConnection[Any]], Awaitable[ReferenceData]]


class ReferenceDataCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        loader: Loader = load_reference_data,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._loader = loader
        self._clock = clock
        self._snapshot: ReferenceData | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _fresh(self) -> ReferenceData | None:
        if self._snapshot is not None and self._clock() < self._expires_at:
            return self._snapshot
        return None

    @property
    def is_populated(self) -> bool:
        return self._fresh() is not None

    async def get(self, conn: psycopg.AsyncConnection[Any]) -> ReferenceData:
        snapshot = self._fresh()
        if snapshot is not None:
            record_cache_hit()
            return snapshot

        async with self._lock:
            # Another caller may have loaded while we waited
            snapshot = self._fresh()
            if snapshot is not None:
                record_cache_hit()
                return snapshot
            record_cache_miss()
            return await self._load(conn)

    async def _load(self, conn: psycopg.AsyncConnection[Any]) -> ReferenceData:
        t0 = time.monotonic()
        try:
            snapshot = await self._loader(conn)
        except ReferenceDataError:
            logger.exception("Reference data load failed")
            raise
        except Exception as exc:
            logger.exception("Reference data load failed")
            raise ReferenceDataError(f"Failed to load reference data: {exc}") from exc
        self._snapshot = snapshot
        self._expires_at = self._clock() + self.ttl_seconds
        record_cache_load()
        logger.info(
            "Reference data loaded (muscles=%d, groups=%d, exercises=%d, benchmarks=%d, ranks=%d)",
            len(snapshot.muscles),
            len(snapshot.muscle_groups),
            len(snapshot.primary_muscles_by_exercise),
            len(snapshot.elite_benchmarks),
            len(snapshot.thresholds),
            extra={"rank_duration_ms": round((time.monotonic() - t0) * 1000, 1)},
        )
        return snapshot

    def invalidate(self) -> None:
        self._snapshot = None
        self._expires_at = 0.0
        logger.info("Reference data cache invalidated")

    async def refresh(self, conn: psycopg.AsyncConnection[Any]) -> ReferenceData:
        """Reload unconditionally. On failure the previous snapshot is kept."""
        async with self._lock:
            return await self._load(conn)

    async def prewarm(self, conn: psycopg.AsyncConnection[Any]) -> None:
        await self.get(conn)


# Process-wide instance shared by every ranking run
reference_cache = ReferenceDataCache()


async def notify_reference_change(conn: psycopg.AsyncConnection[Any]) -> None:
    """Broadcast a reference data change. Delivered when the transaction commits."""
    await conn.execute(
        "SELECT pg_notify(%s, %s)", (REFERENCE_CHANGED_CHANNEL, PROCESS_TOKEN)
    )
