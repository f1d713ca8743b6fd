"""Persistence adapter: the only component of the engine that writes.

Every write runs in its own savepoint (``conn.transaction()`` on an already
open transaction), so one failed write rolls back alone and its siblings
still commit with the enclosing job transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json

from .models import RankingResult
from .performance_log import MusclePerformanceLog, PerformanceEntry
from .utils import to_float, to_int

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredScore:
    score: int | None
    rank_id: int | None


@dataclass
class UserScoreState:
    """Scores persisted before the current run."""

    overall: StoredScore | None = None
    groups: dict[str, StoredScore] = field(default_factory=dict)
    muscles: dict[str, StoredScore] = field(default_factory=dict)


def _stored(row: dict[str, Any]) -> StoredScore:
    return StoredScore(score=to_int(row.get("strength_score")), rank_id=to_int(row.get("rank_id")))


class RankingStore:
    def __init__(self, conn: psycopg.AsyncConnection[Any]) -> None:
        self.conn = conn

    async def acquire_user_lock(self, user_id: str) -> None:
        """Serialize ranking runs for the same user until the transaction ends."""
        await self.conn.execute(
            "SELECT pg_advisory_xact_lock(hashtext(%s)::bigint)",
            (f"ranking:{user_id}",),
        )

    # --- reads ---

    async def load_user_scores(self, user_id: str) -> UserScoreState:
        state = UserScoreState()
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                "SELECT strength_score, rank_id FROM user_ranks WHERE user_id = %s",
                (user_id,),
            )
            row = await cur.fetchone()
            if row is not None:
                state.overall = _stored(row)

            await cur.execute(
                """
                SELECT muscle_group_id, strength_score, rank_id
                FROM muscle_group_ranks
                WHERE user_id = %s
                """,
                (user_id,),
            )
            for row in await cur.fetchall():
                state.groups[str(row["muscle_group_id"])] = _stored(row)

            await cur.execute(
                "SELECT muscle_id, strength_score, rank_id FROM muscle_ranks WHERE user_id = %s",
                (user_id,),
            )
            for row in await cur.fetchall():
                state.muscles[str(row["muscle_id"])] = _stored(row)
        return state

    async def load_muscle_log(
        self, user_id: str, muscle_id: str, capacity: int
    ) -> MusclePerformanceLog:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT entries
                FROM user_muscle_performance
                WHERE user_id = %s AND muscle_id = %s
                """,
                (user_id, muscle_id),
            )
            row = await cur.fetchone()
        return MusclePerformanceLog.from_json(row["entries"] if row else [], capacity=capacity)

    async def load_all_logs(
        self, user_id: str, capacity: int
    ) -> dict[str, MusclePerformanceLog]:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                "SELECT muscle_id, entries FROM user_muscle_performance WHERE user_id = %s",
                (user_id,),
            )
            rows = await cur.fetchall()
        return {
            str(row["muscle_id"]): MusclePerformanceLog.from_json(row["entries"], capacity=capacity)
            for row in rows
        }

    async def load_session_sets(self, session_id: str) -> list[dict[str, Any]]:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT exercise_id, actual_reps AS reps, actual_weight_kg AS weight_kg
                FROM workout_session_sets
                WHERE workout_session_id = %s
                  AND exercise_id IS NOT NULL
                  AND NOT COALESCE(deleted, FALSE)
                ORDER BY set_order, id
                """,
                (session_id,),
            )
            return await cur.fetchall()

    async def load_latest_bodyweight(self, user_id: str) -> float | None:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT value
                FROM body_measurements
                WHERE user_id = %s AND measurement_type = 'body_weight'
                ORDER BY measured_at DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = await cur.fetchone()
        return to_float(row["value"]) if row else None

    # --- writes ---

    async def update_muscle_log(
        self,
        user_id: str,
        muscle_id: str,
        new_entries: list[PerformanceEntry],
        capacity: int,
    ) -> MusclePerformanceLog:
        """Merge new entries into the stored log and replace it in one upsert."""
        async with self.conn.transaction():
            current = await self.load_muscle_log(user_id, muscle_id, capacity)
            updated = current.merged(new_entries)
            await self.conn.execute(
                """
                INSERT INTO user_muscle_performance (user_id, muscle_id, entries, updated_at)
                VALUES (%s, %s, %s, NOW())
                ON CONFLICT (user_id, muscle_id) DO UPDATE SET
                    entries = EXCLUDED.entries,
                    updated_at = NOW()
                """,
                (user_id, muscle_id, Json(updated.to_json())),
            )
        return updated

    async def upsert_overall_score(
        self, user_id: str, score: int, rank_id: int | None, calculated_at: datetime
    ) -> None:
        async with self.conn.transaction():
            await self.conn.execute(
                """
                INSERT INTO user_ranks (user_id, strength_score, rank_id, last_calculated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE SET
                    strength_score = EXCLUDED.strength_score,
                    rank_id = EXCLUDED.rank_id,
                    last_calculated_at = EXCLUDED.last_calculated_at
                """,
                (user_id, score, rank_id, calculated_at),
            )

    async def upsert_group_score(
        self,
        user_id: str,
        group_id: str,
        score: int,
        rank_id: int | None,
        calculated_at: datetime,
    ) -> None:
        async with self.conn.transaction():
            await self.conn.execute(
                """
                INSERT INTO muscle_group_ranks (
                    user_id, muscle_group_id, strength_score, rank_id, last_calculated_at
                )
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, muscle_group_id) DO UPDATE SET
                    strength_score = EXCLUDED.strength_score,
                    rank_id = EXCLUDED.rank_id,
                    last_calculated_at = EXCLUDED.last_calculated_at
                """,
                (user_id, group_id, score, rank_id, calculated_at),
            )

    async def upsert_muscle_score(
        self,
        user_id: str,
        muscle_id: str,
        score: int,
        rank_id: int | None,
        calculated_at: datetime,
    ) -> None:
        async with self.conn.transaction():
            await self.conn.execute(
                """
                INSERT INTO muscle_ranks (
                    user_id, muscle_id, strength_score, rank_id, last_calculated_at
                )
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, muscle_id) DO UPDATE SET
                    strength_score = EXCLUDED.strength_score,
                    rank_id = EXCLUDED.rank_id,
                    last_calculated_at = EXCLUDED.last_calculated_at
                """,
                (user_id, muscle_id, score, rank_id, calculated_at),
            )

    async def save_ranking_result(
        self, user_id: str, session_id: str, result: RankingResult
    ) -> None:
        """Store the advisory result for notification/UI collaborators."""
        await self.conn.execute(
            """
            INSERT INTO ranking_results (user_id, session_id, result, created_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id, session_id) DO UPDATE SET
                result = EXCLUDED.result,
                created_at = EXCLUDED.created_at
            """,
            (user_id, session_id, Json(result.model_dump(mode="json")), datetime.now(timezone.utc)),
        )
