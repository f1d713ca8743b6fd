"""In-memory worker metrics.

Asyncio is single-threaded, so plain dicts need no locking.
"""

import time

_start_time = time.monotonic()

_metrics: dict = {
    "jobs_processed": 0,
    "jobs_failed": 0,
    "jobs_dead": 0,
    "rankings_computed": 0,
    "rankings_skipped": 0,
    "write_failures": 0,
    "reference_cache": {"hits": 0, "misses": 0, "loads": 0},
    "handlers": {},
}


def record_handler_invocation(handler_name: str, duration_ms: float, success: bool) -> None:
    """Record a single handler invocation with timing."""
    h = _metrics["handlers"].setdefault(handler_name, {
        "invocations": 0,
        "successes": 0,
        "failures": 0,
        "total_duration_ms": 0.0,
    })
    h["invocations"] += 1
    h["total_duration_ms"] += duration_ms
    if success:
        h["successes"] += 1
    else:
        h["failures"] += 1


def record_job_completed() -> None:
    _metrics["jobs_processed"] += 1


def record_job_failed() -> None:
    _metrics["jobs_failed"] += 1


def record_job_dead() -> None:
    _metrics["jobs_dead"] += 1


def record_ranking_computed() -> None:
    _metrics["rankings_computed"] += 1


def record_ranking_skipped() -> None:
    _metrics["rankings_skipped"] += 1


def record_write_failure() -> None:
    _metrics["write_failures"] += 1


def record_cache_hit() -> None:
    _metrics["reference_cache"]["hits"] += 1


def record_cache_miss() -> None:
    _metrics["reference_cache"]["misses"] += 1


def record_cache_load() -> None:
    _metrics["reference_cache"]["loads"] += 1


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "jobs_processed": _metrics["jobs_processed"],
        "jobs_failed": _metrics["jobs_failed"],
        "jobs_dead": _metrics["jobs_dead"],
        "rankings_computed": _metrics["rankings_computed"],
        "rankings_skipped": _metrics["rankings_skipped"],
        "write_failures": _metrics["write_failures"],
        "reference_cache": dict(_metrics["reference_cache"]),
        "handlers": {
            name: dict(stats)
            for name, stats in _metrics["handlers"].items()
        },
    }
