"""Pipeline tests against an in-memory store."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from strength_workers.config import EngineSettings
from strength_workers.metrics import get_metrics
from strength_workers.performance_log import MusclePerformanceLog
from strength_workers.persistence import StoredScore, UserScoreState
from strength_workers.pipeline import compute_ranking, compute_ranking_safely
from strength_workers.reference_data import ReferenceDataCache, ReferenceDataError

USER = "user-1"

SESSION = [
    {"exercise_id": "bench_press", "reps": 8, "weight_kg": 90},
    {"exercise_id": "bench_press", "reps": 5, "weight_kg": 100},
    {"exercise_id": "squat", "reps": 5, "weight_kg": 140},
    {"exercise_id": "deadlift", "reps": 5, "weight_kg": 180},
]


class _FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class InMemoryStore:
    """Same interface as RankingStore, backed by dicts."""

    def __init__(self, fail_writes: set[str] | None = None) -> None:
        self.logs: dict[str, MusclePerformanceLog] = {}
        self.scores = UserScoreState()
        self.fail_writes = fail_writes or set()
        self.locked: list[str] = []

    async def acquire_user_lock(self, user_id):
        self.locked.append(user_id)

    async def load_user_scores(self, user_id):
        return UserScoreState(
            overall=self.scores.overall,
            groups=dict(self.scores.groups),
            muscles=dict(self.scores.muscles),
        )

    async def update_muscle_log(self, user_id, muscle_id, new_entries, capacity):
        if f"muscle_log:{muscle_id}" in self.fail_writes:
            raise RuntimeError("write failed")
        current = self.logs.get(muscle_id, MusclePerformanceLog(capacity=capacity))
        self.logs[muscle_id] = current.merged(new_entries)
        return self.logs[muscle_id]

    async def load_all_logs(self, user_id, capacity):
        return dict(self.logs)

    async def upsert_overall_score(self, user_id, score, rank_id, calculated_at):
        if "overall" in self.fail_writes:
            raise RuntimeError("write failed")
        self.scores.overall = StoredScore(score, rank_id)

    async def upsert_group_score(self, user_id, group_id, score, rank_id, calculated_at):
        if f"muscle_group:{group_id}" in self.fail_writes:
            raise RuntimeError("write failed")
        self.scores.groups[group_id] = StoredScore(score, rank_id)

    async def upsert_muscle_score(self, user_id, muscle_id, score, rank_id, calculated_at):
        if f"muscle:{muscle_id}" in self.fail_writes:
            raise RuntimeError("write failed")
        self.scores.muscles[muscle_id] = StoredScore(score, rank_id)


@pytest.fixture
def conn():
    conn = AsyncMock()
    conn.transaction = MagicMock(return_value=_FakeTransaction())
    return conn


@pytest.fixture
def cache(reference):
    return ReferenceDataCache(loader=AsyncMock(return_value=reference))


class TestComputeRanking:
    async def test_first_session(self, conn, cache):
        store = InMemoryStore()
        result = await compute_ranking(conn, USER, 80, SESSION, cache=cache, store=store)

        assert store.locked == [USER]
        assert set(store.logs) == {"pectoralis", "anterior_deltoid", "quadriceps", "glutes"}

        overall = result.overall_progression
        assert overall.initial_score == 0
        assert overall.final_score == 7292
        assert overall.current_rank.rank_name == "Elite"
        assert overall.next_rank is None
        assert overall.percent_to_next_rank == 1.0

        groups = {g.id: g for g in result.muscle_group_progressions}
        assert set(groups) == {"chest", "legs"}
        chest = groups["chest"]
        assert chest.name == "Chest"
        assert chest.progression.final_score == 5834
        assert chest.progression.current_rank.rank_name == "Gold"
        assert chest.progression.next_rank.rank_name == "Elite"
        assert chest.progression.percent_to_next_rank == 0.42

        changes = {c.id: c for c in result.muscle_rank_changes}
        assert set(changes) == {"pectoralis", "anterior_deltoid", "quadriceps", "glutes"}
        assert changes["pectoralis"].old_score is None
        assert changes["pectoralis"].new_score == 5834
        assert changes["pectoralis"].new_rank.rank_name == "Gold"
        assert changes["pectoralis"].rank_changed is True

        assert store.scores.overall == StoredScore(7292, 4)
        assert store.scores.groups["chest"] == StoredScore(5834, 3)
        assert store.scores.muscles["quadriceps"] == StoredScore(8167, 4)

    async def test_no_bodyweight_skips(self, conn, cache):
        store = InMemoryStore()
        skipped_before = get_metrics()["rankings_skipped"]

        result = await compute_ranking(conn, USER, None, SESSION, cache=cache, store=store)

        assert result.is_empty
        assert store.logs == {}
        assert store.locked == []
        assert get_metrics()["rankings_skipped"] == skipped_before + 1

    @pytest.mark.parametrize("bodyweight", [float("nan"), float("inf"), "NaN"])
    async def test_unusable_bodyweight_skips(self, conn, cache, bodyweight):
        store = InMemoryStore()
        result = await compute_ranking(conn, USER, bodyweight, SESSION, cache=cache, store=store)
        assert result.is_empty
        assert store.locked == []

    async def test_non_finite_set_is_ignored(self, conn, cache):
        store = InMemoryStore()
        sets = SESSION + [{"exercise_id": "squat", "reps": 5, "weight_kg": float("inf")}]
        result = await compute_ranking(conn, USER, 80, sets, cache=cache, store=store)
        assert result.overall_progression.final_score == 7292

    async def test_gender_is_ignored(self, conn, cache):
        a = await compute_ranking(conn, USER, 80, SESSION, cache=cache, store=InMemoryStore())
        b = await compute_ranking(
            conn, USER, 80, SESSION, gender="female", cache=cache, store=InMemoryStore()
        )
        assert a == b

    async def test_rerun_with_no_new_sets_is_stable(self, conn, cache):
        store = InMemoryStore()
        await compute_ranking(conn, USER, 80, SESSION, cache=cache, store=store)
        snapshot = (store.scores.overall, dict(store.scores.groups), dict(store.scores.muscles))

        result = await compute_ranking(conn, USER, 80, [], cache=cache, store=store)

        assert (store.scores.overall, store.scores.groups, store.scores.muscles) == snapshot
        assert result.overall_progression.initial_score == 7292
        assert result.overall_progression.final_score == 7292
        assert result.muscle_rank_changes == []

    async def test_second_session_adds_history(self, conn, cache):
        store = InMemoryStore()
        await compute_ranking(conn, USER, 80, SESSION, cache=cache, store=store)
        # a weaker bench day: 80 x 6 -> 96.0 -> 4800
        result = await compute_ranking(
            conn, USER, 80,
            [{"exercise_id": "bench_press", "reps": 6, "weight_kg": 80}],
            cache=cache, store=store,
        )

        assert len(store.logs["pectoralis"]) == 2
        assert [e.normalized_score for e in store.logs["pectoralis"]] == [5834, 4800]
        # weighted mean of 5834 and 4800, both weight 0.6
        changes = {c.id: c for c in result.muscle_rank_changes}
        assert changes["pectoralis"].old_score == 5834
        assert changes["pectoralis"].new_score == 5317
        assert changes["pectoralis"].rank_changed is False
        # untouched muscles are not reported
        assert "quadriceps" not in changes

    async def test_log_write_failure_is_isolated(self, conn, cache):
        store = InMemoryStore(fail_writes={"muscle_log:pectoralis"})
        failures_before = get_metrics()["write_failures"]

        result = await compute_ranking(conn, USER, 80, SESSION, cache=cache, store=store)

        assert "pectoralis" not in store.logs
        assert "anterior_deltoid" in store.logs
        assert get_metrics()["write_failures"] == failures_before + 1
        groups = {g.id: g for g in result.muscle_group_progressions}
        # pectoralis still weighs into the chest denominator with 0
        assert groups["chest"].progression.final_score == 1750

    async def test_score_write_failure_does_not_abort(self, conn, cache):
        store = InMemoryStore(fail_writes={"overall", "muscle_group:chest"})

        result = await compute_ranking(conn, USER, 80, SESSION, cache=cache, store=store)

        assert store.scores.overall is None
        assert "chest" not in store.scores.groups
        assert store.scores.groups["legs"] == StoredScore(8167, 4)
        assert store.scores.muscles["pectoralis"] == StoredScore(5834, 3)
        assert result.overall_progression.final_score == 7292

    async def test_all_weighted_scope(self, conn, cache):
        result = await compute_ranking(
            conn, USER, 80, SESSION,
            cache=cache, store=InMemoryStore(),
            settings=EngineSettings(overall_scope="all_weighted"),
        )
        assert result.overall_progression.final_score == 5834

    async def test_reference_failure_propagates(self, conn):
        cache = ReferenceDataCache(loader=AsyncMock(side_effect=ReferenceDataError("bad")))
        with pytest.raises(ReferenceDataError):
            await compute_ranking(conn, USER, 80, SESSION, cache=cache, store=InMemoryStore())


class TestComputeRankingSafely:
    async def test_returns_result(self, conn, cache):
        result = await compute_ranking_safely(
            conn, USER, 80, SESSION, cache=cache, store=InMemoryStore()
        )
        assert result.overall_progression.final_score == 7292
        conn.transaction.assert_called_once()

    async def test_failure_degrades_to_empty(self, conn):
        cache = ReferenceDataCache(loader=AsyncMock(side_effect=ReferenceDataError("bad")))
        result = await compute_ranking_safely(
            conn, USER, 80, SESSION, cache=cache, store=InMemoryStore()
        )
        assert result.is_empty
