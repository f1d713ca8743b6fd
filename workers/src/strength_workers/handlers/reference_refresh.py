"""reference_data.refresh job handler (administrator action).

Enqueued after muscles, groups, benchmarks, exercise weights or rank
thresholds were edited. Reloads this process's reference cache, then
broadcasts the change so every other worker replica drops its snapshot and
reloads on its next run. If the reload fails the previous snapshot stays in
place, nothing is broadcast and the job is retried.
"""

import logging
from typing import Any

import psycopg

from ..reference_data import notify_reference_change, reference_cache
from ..registry import register

logger = logging.getLogger(__name__)


@register("reference_data.refresh")
async def handle_reference_refresh(
    conn: psycopg.AsyncConnection[Any], payload: dict[str, Any]
) -> None:
    logger.info("Refreshing reference data (requested_by=%s)", payload.get("requested_by", "?"))
    await reference_cache.refresh(conn)
    await notify_reference_change(conn)
