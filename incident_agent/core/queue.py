"""Durable job queue and its bounded worker pool.

Jobs live in the ``jobs`` table keyed by incident id, which makes
scheduling idempotent: enqueueing an id that already has a job is a no-op.
Delivery is at-least-once. A failed job is retried with exponential
backoff until ``max_attempts`` is reached; a job whose worker stops
heartbeating is requeued after ``stall_timeout_seconds`` and marked
permanently failed once it has stalled more than ``max_stalled_count``
times.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import timedelta
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incident_agent.core.config import Settings
from incident_agent.core.logging import bind_job_context, get_logger
from incident_agent.core.models import Job, JobStatus, utcnow
from incident_agent.db import repository
from incident_agent.db.engine import StoreUnavailableError, session_scope

logger = get_logger("queue")

JobHandler = Callable[[Job], Awaitable[None]]

STALLED_ERROR = "job stalled more than allowable limit"


class JobQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        name: str = "incident-processing",
        job_name: str = "process-incident",
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        stall_timeout_seconds: float = 30.0,
        max_stalled_count: int = 2,
        clock: Callable = utcnow,
    ) -> None:
        self.name = name
        self.job_name = job_name
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.stall_timeout_seconds = stall_timeout_seconds
        self.max_stalled_count = max_stalled_count
        self._session_factory = session_factory
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ) -> "JobQueue":
        return cls(
            session_factory,
            name=settings.queue_name,
            max_attempts=settings.queue_max_attempts,
            backoff_seconds=settings.queue_backoff_seconds,
            stall_timeout_seconds=settings.queue_stall_timeout_seconds,
            max_stalled_count=settings.queue_max_stalled_count,
        )

    # ── Producer side ────────────────────────────────────────────

    async def enqueue(self, incident_id: str) -> bool:
        """Schedule processing for ``incident_id``.

        Returns False, and changes nothing, when a job with that id already
        exists in any state.
        """
        now = self._clock()
        try:
            async with session_scope(self._session_factory) as session:
                await repository.insert_job(
                    session,
                    id=incident_id,
                    queue=self.name,
                    name=self.job_name,
                    payload={"incident_id": incident_id},
                    status=JobStatus.WAITING.value,
                    attempts_made=0,
                    max_attempts=self.max_attempts,
                    stalled_count=0,
                    run_at=now,
                    created_at=now,
                )
        except IntegrityError:
            logger.info("job_duplicate_ignored", job_id=incident_id)
            return False
        logger.info("job_enqueued", job_id=incident_id, queue=self.name)
        return True

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with session_scope(self._session_factory) as session:
            record = await repository.get_job(session, job_id)
        return Job.model_validate(record) if record is not None else None

    async def counts(self) -> dict[str, int]:
        async with session_scope(self._session_factory) as session:
            found = await repository.count_jobs_by_status(session, self.name)
        return {status.value: found.get(status.value, 0) for status in JobStatus}

    # ── Consumer side ────────────────────────────────────────────

    async def claim_next(self) -> Optional[Job]:
        """Atomically move the next due waiting job to active.

        The returned job carries a fresh ``lock_token``; heartbeat, complete
        and fail only take effect while the stored token still matches.
        """
        now = self._clock()
        async with session_scope(self._session_factory) as session:
            candidates = await repository.list_due_job_ids(session, self.name, now=now)

        for job_id in candidates:
            async with session_scope(self._session_factory) as session:
                claimed = await repository.update_job(
                    session,
                    job_id,
                    expected_status=JobStatus.WAITING.value,
                    status=JobStatus.ACTIVE.value,
                    heartbeat_at=now,
                    lock_token=uuid4().hex,
                )
            if claimed:
                return await self.get_job(job_id)
        return None

    async def heartbeat(self, job: Job) -> bool:
        """Refresh the claim. False means the lock was lost to a stall requeue."""
        async with session_scope(self._session_factory) as session:
            touched = await repository.update_job(
                session,
                job.id,
                expected_status=JobStatus.ACTIVE.value,
                expected_token=job.lock_token,
                heartbeat_at=self._clock(),
            )
        return bool(touched)

    async def complete(self, job: Job) -> bool:
        async with session_scope(self._session_factory) as session:
            touched = await repository.update_job(
                session,
                job.id,
                expected_status=JobStatus.ACTIVE.value,
                expected_token=job.lock_token,
                status=JobStatus.COMPLETED.value,
                finished_at=self._clock(),
                lock_token=None,
            )
        return bool(touched)

    async def fail(self, job: Job, error: str) -> Optional[Job]:
        """Record a failed attempt: reschedule with backoff or fail for good.

        Returns None, and records nothing, when ``job`` no longer holds the lock.
        """
        stored = await self.get_job(job.id)
        if stored is None or stored.lock_token != job.lock_token:
            return None

        now = self._clock()
        attempts = stored.attempts_made + 1
        if attempts < stored.max_attempts:
            values = {
                "status": JobStatus.WAITING.value,
                "run_at": now + timedelta(seconds=self.backoff_delay(attempts)),
                "heartbeat_at": None,
            }
        else:
            values = {"status": JobStatus.FAILED.value, "finished_at": now}

        async with session_scope(self._session_factory) as session:
            touched = await repository.update_job(
                session,
                job.id,
                expected_status=JobStatus.ACTIVE.value,
                expected_token=job.lock_token,
                attempts_made=attempts,
                last_error=error,
                lock_token=None,
                **values,
            )
        if not touched:
            return None
        return await self.get_job(job.id)

    def backoff_delay(self, attempts_made: int) -> float:
        """Delay before the retry that follows attempt number ``attempts_made``."""
        return self.backoff_seconds * 2 ** (attempts_made - 1)

    async def recover_stalled(self) -> list[str]:
        """Requeue (or permanently fail) active jobs with a stale heartbeat."""
        now = self._clock()
        cutoff = now - timedelta(seconds=self.stall_timeout_seconds)
        async with session_scope(self._session_factory) as session:
            stalled_ids = await repository.list_stalled_job_ids(
                session, self.name, heartbeat_before=cutoff
            )

        recovered = []
        for job_id in stalled_ids:
            job = await self.get_job(job_id)
            if job is None or job.status != JobStatus.ACTIVE:
                continue
            stalled_count = job.stalled_count + 1
            if stalled_count > self.max_stalled_count:
                values = {
                    "status": JobStatus.FAILED.value,
                    "last_error": STALLED_ERROR,
                    "finished_at": now,
                    "lock_token": None,
                }
            else:
                values = {
                    "status": JobStatus.WAITING.value,
                    "run_at": now,
                    "heartbeat_at": None,
                    "lock_token": None,
                }
            async with session_scope(self._session_factory) as session:
                touched = await repository.update_job(
                    session,
                    job_id,
                    expected_status=JobStatus.ACTIVE.value,
                    expected_token=job.lock_token,
                    stalled_count=stalled_count,
                    **values,
                )
            if not touched:
                continue
            recovered.append(job_id)
            if values["status"] == JobStatus.FAILED.value:
                logger.error("job_failed", job_id=job_id, error=STALLED_ERROR)
            else:
                logger.warning("job_stalled", job_id=job_id, stalled_count=stalled_count)
        return recovered


class QueueWorker:
    """Runs ``concurrency`` slots, each processing one job at a time."""

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        *,
        concurrency: int = 2,
        poll_interval: float = 0.5,
        heartbeat_interval: float = 5.0,
        stall_check_interval: Optional[float] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._handler = handler
        self.concurrency = concurrency
        self._poll_interval = poll_interval
        self._heartbeat_interval = heartbeat_interval
        self._stall_check_interval = (
            stall_check_interval
            if stall_check_interval is not None
            else queue.stall_timeout_seconds / 2
        )
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._active: set[str] = set()

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def active_job_ids(self) -> frozenset[str]:
        return frozenset(self._active)

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(self._slot_loop(slot), name=f"{self._queue.name}-slot-{slot}")
            for slot in range(self.concurrency)
        ]
        self._tasks.append(
            asyncio.create_task(self._stall_loop(), name=f"{self._queue.name}-stall-check")
        )
        logger.info("worker_started", queue=self._queue.name, concurrency=self.concurrency)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop taking jobs and wait for in-flight ones (cancel after ``timeout``)."""
        self._stop_event.set()
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_stopped", queue=self._queue.name)

    async def drain(self) -> int:
        """Process due jobs one by one until none is left. Returns the count."""
        processed = 0
        while True:
            job = await self._queue.claim_next()
            if job is None:
                return processed
            await self.process_job(job)
            processed += 1

    async def process_job(self, job: Job) -> None:
        self._active.add(job.id)
        heartbeat = asyncio.create_task(self._heartbeat_loop(job))
        try:
            with bind_job_context(job_id=job.id, incident_id=job.incident_id):
                logger.info("job_started", attempt=job.attempts_made + 1)
                try:
                    await self._handler(job)
                except Exception as exc:
                    await self._record_failure(job, exc)
                else:
                    if await self._queue.complete(job):
                        logger.info("job_completed")
                    else:
                        logger.warning("job_lock_lost", outcome="completed")
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            self._active.discard(job.id)

    async def _record_failure(self, job: Job, exc: Exception) -> None:
        error = str(exc) or exc.__class__.__name__
        updated = await self._queue.fail(job, error)
        if updated is None:
            logger.warning("job_lock_lost", outcome="failed", error=error)
        elif updated.status == JobStatus.FAILED:
            logger.error("job_failed", attempts=updated.attempts_made, error=error)
        else:
            logger.warning(
                "job_retry_scheduled",
                attempts=updated.attempts_made,
                run_at=updated.run_at.isoformat(),
                error=error,
            )

    async def _slot_loop(self, slot: int) -> None:
        while not self._stop_event.is_set():
            try:
                job = await self._queue.claim_next()
                if job is not None:
                    await self.process_job(job)
                    continue
            except StoreUnavailableError as exc:
                # The job, if any, stays active and is recovered as stalled.
                logger.error("queue_unavailable", slot=slot, error=str(exc))
            await self._wait(self._poll_interval)

    async def _heartbeat_loop(self, job: Job) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                if not await self._queue.heartbeat(job):
                    # Requeued as stalled; the new owner heartbeats from here on.
                    logger.warning("job_lock_lost", job_id=job.id, outcome="heartbeat")
                    return
            except StoreUnavailableError as exc:
                logger.warning("heartbeat_failed", job_id=job.id, error=str(exc))

    async def _stall_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._queue.recover_stalled()
            except StoreUnavailableError as exc:
                logger.error("stall_check_failed", error=str(exc))
            await self._wait(self._stall_check_interval)

    async def _wait(self, seconds: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
