from hypothesis import given
from hypothesis import strategies as st

import pytest

from strength_workers.performance_log import MusclePerformanceLog, PerformanceEntry


def _entry(level: float, score: float = 1000, weight: float = 0.5) -> PerformanceEntry:
    return PerformanceEntry(performance_level=level, normalized_score=score, contribution_weight=weight)


_entries = st.lists(
    st.builds(
        PerformanceEntry,
        performance_level=st.floats(min_value=0, max_value=3, allow_nan=False),
        normalized_score=st.integers(min_value=0, max_value=20000),
        contribution_weight=st.floats(min_value=0.01, max_value=1, allow_nan=False),
    ),
    max_size=30,
)


class TestMusclePerformanceLog:
    def test_merge_truncates_to_top_five(self):
        log = MusclePerformanceLog([_entry(v) for v in (0.9, 0.8, 0.7, 0.6, 0.5)])
        merged = log.merged([_entry(0.95), _entry(0.55)])
        assert [e.performance_level for e in merged] == [0.95, 0.9, 0.8, 0.7, 0.6]

    def test_merged_leaves_original_untouched(self):
        log = MusclePerformanceLog([_entry(0.5)])
        log.merged([_entry(0.9)])
        assert [e.performance_level for e in log] == [0.5]

    def test_weak_candidates_dropped_from_full_log(self):
        log = MusclePerformanceLog([_entry(v) for v in (0.9, 0.8, 0.7, 0.6, 0.5)])
        merged = log.merged([_entry(0.1)])
        assert merged == log

    def test_ties_keep_existing_entry_first(self):
        old = _entry(0.5, score=1000)
        new = _entry(0.5, score=2000)
        log = MusclePerformanceLog([old], capacity=1)
        assert log.merged([new]).entries == (old,)

    def test_custom_capacity(self):
        log = MusclePerformanceLog([_entry(v) for v in (0.1, 0.2, 0.3)], capacity=2)
        assert [e.performance_level for e in log] == [0.3, 0.2]

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            MusclePerformanceLog(capacity=0)

    def test_empty_log_is_falsy(self):
        assert not MusclePerformanceLog()
        assert len(MusclePerformanceLog()) == 0

    @given(_entries, _entries)
    def test_bounded_and_sorted(self, existing, candidates):
        merged = MusclePerformanceLog(existing).merged(candidates)
        levels = [e.performance_level for e in merged]
        assert len(merged) == min(5, len(existing) + len(candidates))
        assert levels == sorted(levels, reverse=True)
        everything = sorted(
            (e.performance_level for e in existing + candidates), reverse=True
        )
        assert levels == everything[:5]


class TestSerialization:
    def test_to_json_uses_stored_keys(self):
        log = MusclePerformanceLog([_entry(0.8, score=5834, weight=0.6)])
        assert log.to_json() == [{"pl_value": 0.8, "sps_score": 5834, "mcw_weight": 0.6}]

    def test_from_json_restores_order(self):
        raw = [
            {"pl_value": 0.2, "sps_score": 1000, "mcw_weight": 0.5},
            {"pl_value": 0.9, "sps_score": 6000, "mcw_weight": 0.5},
        ]
        log = MusclePerformanceLog.from_json(raw)
        assert [e.performance_level for e in log] == [0.9, 0.2]

    def test_from_json_drops_malformed_items(self):
        raw = [
            {"pl_value": 0.9, "sps_score": 6000, "mcw_weight": 0.5},
            {"pl_value": "x", "sps_score": 6000, "mcw_weight": 0.5},
            {"sps_score": 6000},
            "garbage",
        ]
        assert len(MusclePerformanceLog.from_json(raw)) == 1

    def test_from_json_non_list(self):
        assert len(MusclePerformanceLog.from_json(None)) == 0
        assert len(MusclePerformanceLog.from_json({"pl_value": 1})) == 0
