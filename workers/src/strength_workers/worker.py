"""Ranking job worker.

Runs ``ranking.compute`` and ``reference_data.refresh`` jobs from
``background_jobs``, each in its own transaction. One LISTEN connection
serves two channels:

- ``ranking_jobs``: a new job was enqueued; wake the drain loop early.
- ``reference_data_changed``: another replica refreshed reference data;
  drop the local snapshot so the next run reloads it.

The drain loop also wakes every ``poll_interval_seconds`` so jobs are picked
up when a notification is missed. Only one batch runs at a time per process.
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass
from typing import Any

import psycopg
from psycopg.rows import dict_row

from .config import Config
from .logging import job_context
from .metrics import (
    record_handler_invocation,
    record_job_completed,
    record_job_dead,
    record_job_failed,
)
from .reference_data import PROCESS_TOKEN, REFERENCE_CHANGED_CHANNEL, reference_cache
from .registry import InvalidPayloadError, get_handler, registered_types

logger = logging.getLogger(__name__)

JOBS_CHANNEL = "ranking_jobs"
RECONNECT_DELAY_SECONDS = 5.0

_CLAIM_SQL = """
    UPDATE background_jobs
    SET status = 'processing', started_at = NOW(), attempt = attempt + 1
    WHERE id IN (
        SELECT id FROM background_jobs
        WHERE status = 'pending'
          AND scheduled_for <= NOW()
          AND job_type = ANY(%s)
        ORDER BY priority DESC, scheduled_for, id
        LIMIT %s
        FOR UPDATE SKIP LOCKED
    )
    RETURNING id, user_id, job_type, payload, attempt, max_retries
"""

_COMPLETE_SQL = """
    UPDATE background_jobs
    SET status = 'completed', completed_at = NOW(), error_message = NULL
    WHERE id = %s
"""

_RESCHEDULE_SQL = """
    UPDATE background_jobs
    SET status = 'pending',
        error_message = %s,
        scheduled_for = NOW() + make_interval(secs => %s)
    WHERE id = %s
"""

_BURY_SQL = """
    UPDATE background_jobs
    SET status = 'dead', error_message = %s, completed_at = NOW()
    WHERE id = %s
"""


@dataclass(frozen=True)
class Job:
    id: int
    job_type: str
    user_id: str | None
    payload: dict[str, Any]
    attempt: int
    max_retries: int

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Job":
        payload = row.get("payload") or {}
        user_id = row.get("user_id") or payload.get("user_id")
        return cls(
            id=row["id"],
            job_type=row["job_type"],
            user_id=str(user_id) if user_id else None,
            payload=payload,
            attempt=row["attempt"],
            max_retries=row["max_retries"],
        )

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries

    @property
    def backoff_seconds(self) -> float:
        return float(2**self.attempt)


class Worker:
    def __init__(self, config: Config) -> None:
        self.config = config
        self._shutdown = asyncio.Event()
        self._wakeup = asyncio.Event()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._request_shutdown)

        logger.info(
            "Worker starting (poll_interval=%.1fs, batch_size=%d, job_types=%s)",
            self.config.poll_interval_seconds,
            self.config.batch_size,
            registered_types(),
        )
        await self._prewarm_reference_data()

        async with asyncio.TaskGroup() as tg:
            tg.create_task(self._listen_loop())
            tg.create_task(self._drain_loop())

    def _request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown.set()
        self._wakeup.set()

    async def _prewarm_reference_data(self) -> None:
        # A cold cache is loaded by the first ranking run instead
        try:
            async with await psycopg.AsyncConnection.connect(self.config.database_url) as conn:
                await reference_cache.prewarm(conn)
        except Exception as exc:
            logger.warning("Reference data prewarm skipped: %s", exc)

    def handle_notification(self, channel: str, payload: str) -> None:
        if channel == REFERENCE_CHANGED_CHANNEL:
            if payload != PROCESS_TOKEN:
                reference_cache.invalidate()
            return
        self._wakeup.set()

    async def _listen_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                async with await psycopg.AsyncConnection.connect(
                    self.config.listen_database_url, autocommit=True
                ) as conn:
                    await conn.execute(f"LISTEN {JOBS_CHANNEL}")
                    await conn.execute(f"LISTEN {REFERENCE_CHANGED_CHANNEL}")
                    logger.info("Listening on %s, %s", JOBS_CHANNEL, REFERENCE_CHANGED_CHANNEL)

                    # Timeouts only re-check shutdown; the connection is kept
                    while not self._shutdown.is_set():
                        async for notify in conn.notifies(
                            timeout=self.config.poll_interval_seconds
                        ):
                            self.handle_notification(notify.channel, notify.payload)
            except psycopg.OperationalError:
                if self._shutdown.is_set():
                    break
                logger.warning(
                    "LISTEN connection lost, reconnecting in %.0fs", RECONNECT_DELAY_SECONDS
                )
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)

        logger.info("Listen loop stopped")

    async def _drain_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(
                    self._wakeup.wait(), timeout=self.config.poll_interval_seconds
                )
            except TimeoutError:
                pass
            self._wakeup.clear()
            if self._shutdown.is_set():
                break
            await self._process_batch()

        logger.info("Drain loop stopped")

    async def _process_batch(self) -> None:
        try:
            async with await psycopg.AsyncConnection.connect(self.config.database_url) as conn:
                jobs = await self._claim_jobs(conn)
                # Claims survive a crash mid-batch
                await conn.commit()
                for job in jobs:
                    await self._run_job(conn, job)
        except Exception:
            logger.exception("Job batch failed")

    async def _claim_jobs(self, conn: psycopg.AsyncConnection[Any]) -> list[Job]:
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(_CLAIM_SQL, (registered_types(), self.config.batch_size))
            rows = await cur.fetchall()
        return [Job.from_row(row) for row in rows]

    async def _run_job(self, conn: psycopg.AsyncConnection[Any], job: Job) -> None:
        with job_context(job_id=job.id, job_type=job.job_type, user_id=job.user_id):
            handler = get_handler(job.job_type)
            if handler is None:
                await self._bury(conn, job, f"No handler for job_type={job.job_type}")
                return

            t0 = time.monotonic()
            try:
                # Handler writes and the completion mark commit together
                async with conn.transaction():
                    await handler(conn, job.payload)
                    await conn.execute(_COMPLETE_SQL, (job.id,))
            except Exception as exc:
                record_handler_invocation(job.job_type, (time.monotonic() - t0) * 1000, success=False)
                logger.exception("Job %d failed (attempt %d/%d)", job.id, job.attempt, job.max_retries)
                # The transaction rolled back as a whole, so a retry never
                # merges the same session into the logs twice.
                if isinstance(exc, InvalidPayloadError) or job.exhausted:
                    await self._bury(conn, job, str(exc))
                else:
                    await self._reschedule(conn, job, str(exc))
                return

            record_handler_invocation(job.job_type, (time.monotonic() - t0) * 1000, success=True)
            record_job_completed()
            logger.info("Job %d completed", job.id)

    async def _reschedule(self, conn: psycopg.AsyncConnection[Any], job: Job, error: str) -> None:
        record_job_failed()
        logger.info("Job %d retrying in %.0fs", job.id, job.backoff_seconds)
        await conn.execute(_RESCHEDULE_SQL, (error, job.backoff_seconds, job.id))
        await conn.commit()

    async def _bury(self, conn: psycopg.AsyncConnection[Any], job: Job, error: str) -> None:
        record_job_dead()
        logger.error("Job %d is dead: %s", job.id, error)
        await conn.execute(_BURY_SQL, (error, job.id))
        await conn.commit()
