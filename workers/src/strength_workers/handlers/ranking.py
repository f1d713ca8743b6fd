"""ranking.compute job handler.

Enqueued by the session-completion workflow after a workout session and its
sets have been persisted. Loads the session's sets, runs the ranking
pipeline and stores the advisory RankingResult for notification/UI
consumers.

Payload: {user_id, session_id, bodyweight_kg?, gender?}. Without an explicit
bodyweight the latest body_weight measurement is used.
"""

import logging
from typing import Any

import psycopg

from ..pipeline import compute_ranking
from ..persistence import RankingStore
from ..registry import InvalidPayloadError, register
from ..runtime import get_engine_settings
from ..utils import to_float

logger = logging.getLogger(__name__)


@register("ranking.compute")
async def handle_ranking_compute(
    conn: psycopg.AsyncConnection[Any], payload: dict[str, Any]
) -> None:
    user_id = payload.get("user_id")
    session_id = payload.get("session_id")
    if not user_id:
        raise InvalidPayloadError("Missing user_id in ranking.compute payload")
    if not session_id:
        raise InvalidPayloadError(f"Missing session_id in ranking.compute payload (user={user_id})")
    user_id = str(user_id)
    session_id = str(session_id)

    store = RankingStore(conn)
    bodyweight = to_float(payload.get("bodyweight_kg"))
    if bodyweight is None:
        bodyweight = await store.load_latest_bodyweight(user_id)

    sets = await store.load_session_sets(session_id)
    logger.info(
        "Ranking session %s for user %s (%d sets)", session_id, user_id, len(sets),
        extra={"rank_user_id": user_id},
    )

    result = await compute_ranking(
        conn,
        user_id,
        bodyweight,
        sets,
        gender=payload.get("gender"),
        settings=get_engine_settings(),
        store=store,
    )
    await store.save_ranking_result(user_id, session_id, result)
