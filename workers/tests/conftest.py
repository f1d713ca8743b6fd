"""Shared fixtures: a small but complete reference data set."""

import pytest

from strength_workers.reference_data import ReferenceData, build_reference_data

MUSCLE_GROUPS = [
    {"id": "chest", "name": "Chest", "overall_weight": 0.3},
    {"id": "legs", "name": "Legs", "overall_weight": 0.5},
    {"id": "back", "name": "Back", "overall_weight": 0.2},
]

MUSCLES = [
    {"id": "pectoralis", "name": "Pectoralis Major", "muscle_group_id": "chest", "muscle_group_weight": 0.7},
    {"id": "anterior_deltoid", "name": "Anterior Deltoid", "muscle_group_id": "chest", "muscle_group_weight": 0.3},
    {"id": "quadriceps", "name": "Quadriceps", "muscle_group_id": "legs", "muscle_group_weight": 0.6},
    {"id": "glutes", "name": "Glutes", "muscle_group_id": "legs", "muscle_group_weight": 0.4},
    {"id": "lats", "name": "Latissimus Dorsi", "muscle_group_id": "back", "muscle_group_weight": 1.0},
]

EXERCISE_MUSCLES = [
    {"exercise_id": "bench_press", "muscle_id": "pectoralis", "exercise_muscle_weight": 0.6, "muscle_intensity": "primary"},
    {"exercise_id": "bench_press", "muscle_id": "anterior_deltoid", "exercise_muscle_weight": 0.2, "muscle_intensity": "primary"},
    {"exercise_id": "bench_press", "muscle_id": "lats", "exercise_muscle_weight": 0.1, "muscle_intensity": "secondary"},
    {"exercise_id": "squat", "muscle_id": "quadriceps", "exercise_muscle_weight": 0.7, "muscle_intensity": "primary"},
    {"exercise_id": "squat", "muscle_id": "glutes", "exercise_muscle_weight": 0.5, "muscle_intensity": "primary"},
    {"exercise_id": "deadlift", "muscle_id": "glutes", "exercise_muscle_weight": 0.5, "muscle_intensity": "primary"},
    {"exercise_id": "deadlift", "muscle_id": "lats", "exercise_muscle_weight": 0.3, "muscle_intensity": "primary"},
]

BENCHMARKS = [
    {"exercise_id": "bench_press", "sps_elite_value": 7000},
    {"exercise_id": "squat", "sps_elite_value": 8000},
]

RANKS = [
    {"id": 1, "rank_name": "Bronze", "min_score": 1000},
    {"id": 2, "rank_name": "Silver", "min_score": 3000},
    {"id": 3, "rank_name": "Gold", "min_score": 5000},
    {"id": 4, "rank_name": "Elite", "min_score": 7000},
]


def make_reference(**overrides) -> ReferenceData:
    tables = {
        "muscles": MUSCLES,
        "muscle_groups": MUSCLE_GROUPS,
        "exercise_muscles": EXERCISE_MUSCLES,
        "benchmarks": BENCHMARKS,
        "ranks": RANKS,
    }
    tables.update(overrides)
    return build_reference_data(**tables)


@pytest.fixture
def reference() -> ReferenceData:
    return make_reference()


@pytest.fixture
def reference_factory():
    """Build reference data with some tables replaced."""
    return make_reference
