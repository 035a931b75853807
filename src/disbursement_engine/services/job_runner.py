"""Durable job queue and worker loop.

Jobs live in the disbursement_job table, so any number of worker
processes can share the queue. A worker claims a job with a conditional
UPDATE (QUEUED → RUNNING); losing the race simply means trying the next
candidate. While it holds a job the worker retries the batch with
tenacity (exponential backoff, retryable error filtering, attempt
counting). The job is DEAD once tenacity gives up.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import partial
from typing import Awaitable, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from disbursement_engine.config import JobConfig
from disbursement_engine.errors import AuthError, NotFoundError, ValidationError
from disbursement_engine.models import DisbursementJob
from disbursement_engine.services.orchestrator import BatchOrchestrator, ExecutionResult

logger = logging.getLogger(__name__)

PROCESS_BATCH = "process_batch"

# Retrying these cannot succeed without operator action
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (ValidationError, NotFoundError, AuthError)

# How many due jobs a worker looks at per claim attempt
CLAIM_CANDIDATES = 5


class JobStatus(str, Enum):
    """Job status values."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    DEAD = "dead"


ACTIVE_JOB_STATUSES = frozenset({JobStatus.QUEUED.value, JobStatus.RUNNING.value})


@dataclass(frozen=True)
class ClaimedJob:
    """A job this worker holds the lease on.

    attempts counts tries made before this claim; it is only non-zero for
    a job recovered from a crashed worker.
    """

    id: int
    batch_id: int
    kind: str
    attempts: int
    max_attempts: int

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempts, 0)


@dataclass(frozen=True)
class JobRunResult:
    """Outcome of running one job."""

    job_id: int
    batch_id: int
    status: JobStatus
    attempts: int = 0
    execution: ExecutionResult | None = None
    error: str | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def is_retryable(error: BaseException) -> bool:
    """Gateway outages and unexpected errors are retried; bad input is not."""
    return isinstance(error, Exception) and not isinstance(error, NON_RETRYABLE_ERRORS)


def retrying(
    config: JobConfig,
    *,
    max_attempts: int,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    """Tenacity controller for one claimed job.

    The final error is re-raised as is once attempts run out.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(
            initial=config.backoff_base_seconds,
            max=config.backoff_max_seconds,
            exp_base=config.backoff_factor,
            jitter=config.backoff_jitter_seconds,
        ),
        retry=retry_if_exception(is_retryable),
        sleep=sleep,
        before_sleep=before_sleep,
        reraise=True,
    )


class JobQueue:
    """Job rows in the ledger database."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: JobConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.config = config
        self._clock = clock

    async def enqueue(self, batch_id: int, *, kind: str = PROCESS_BATCH) -> DisbursementJob:
        """Schedule a job to run as soon as a worker is free."""
        async with self._session_factory.begin() as session:
            job = DisbursementJob(
                batch_id=batch_id,
                kind=kind,
                status=JobStatus.QUEUED.value,
                attempts=0,
                max_attempts=self.config.max_attempts,
                next_run_at=self._clock(),
            )
            session.add(job)
            await session.flush()

        logger.info("Enqueued %s job %d for batch %d", kind, job.id, batch_id)
        return job

    async def claim(self, worker_id: str) -> ClaimedJob | None:
        """Take the oldest due QUEUED job, or None if there is none."""
        now = self._clock()
        async with self._session_factory.begin() as session:
            candidates = (
                await session.execute(
                    select(DisbursementJob.id)
                    .where(
                        DisbursementJob.status == JobStatus.QUEUED.value,
                        DisbursementJob.next_run_at <= now,
                    )
                    .order_by(DisbursementJob.next_run_at, DisbursementJob.id)
                    .limit(CLAIM_CANDIDATES)
                )
            ).scalars().all()

            for job_id in candidates:
                result = await session.execute(
                    update(DisbursementJob)
                    .where(
                        DisbursementJob.id == job_id,
                        DisbursementJob.status == JobStatus.QUEUED.value,
                    )
                    .values(status=JobStatus.RUNNING.value, locked_at=now, locked_by=worker_id)
                    .execution_options(synchronize_session=False)
                )
                if not result.rowcount:
                    continue

                row = (
                    await session.execute(
                        select(
                            DisbursementJob.batch_id,
                            DisbursementJob.kind,
                            DisbursementJob.attempts,
                            DisbursementJob.max_attempts,
                        ).where(DisbursementJob.id == job_id)
                    )
                ).one()
                return ClaimedJob(
                    id=job_id,
                    batch_id=row.batch_id,
                    kind=row.kind,
                    attempts=row.attempts,
                    max_attempts=row.max_attempts,
                )
        return None

    async def record_attempt(self, job: ClaimedJob, attempts: int) -> None:
        """Store the running attempt count and renew the lease."""
        async with self._session_factory.begin() as session:
            await session.execute(
                update(DisbursementJob)
                .where(
                    DisbursementJob.id == job.id,
                    DisbursementJob.status == JobStatus.RUNNING.value,
                )
                .values(attempts=attempts, locked_at=self._clock())
                .execution_options(synchronize_session=False)
            )

    async def complete(self, job: ClaimedJob) -> None:
        await self._finish(job, JobStatus.SUCCEEDED, last_error=None)

    async def dead_letter(self, job: ClaimedJob, error: str, *, attempts: int) -> None:
        """Give up on a job. It stays in the table for inspection."""
        await self._finish(job, JobStatus.DEAD, last_error=error)
        logger.error(
            "Job %d (batch %d) is dead after %d attempt(s): %s",
            job.id,
            job.batch_id,
            attempts,
            error,
        )

    async def _finish(self, job: ClaimedJob, status: JobStatus, *, last_error: str | None) -> None:
        async with self._session_factory.begin() as session:
            await session.execute(
                update(DisbursementJob)
                .where(
                    DisbursementJob.id == job.id,
                    DisbursementJob.status == JobStatus.RUNNING.value,
                )
                .values(status=status.value, locked_at=None, locked_by=None, last_error=last_error)
                .execution_options(synchronize_session=False)
            )

    async def release_stale(self, lease_seconds: int | None = None) -> int:
        """Recover jobs held by workers that died mid-run.

        RUNNING jobs locked longer ago than the lease go back to QUEUED,
        or to DEAD if they have no attempts left.

        Returns:
            Number of jobs released
        """
        lease = lease_seconds if lease_seconds is not None else self.config.lease_seconds
        now = self._clock()
        cutoff = now - timedelta(seconds=lease)
        stale = (
            DisbursementJob.status == JobStatus.RUNNING.value,
            DisbursementJob.locked_at < cutoff,
        )

        async with self._session_factory.begin() as session:
            dead = await session.execute(
                update(DisbursementJob)
                .where(*stale, DisbursementJob.attempts >= DisbursementJob.max_attempts)
                .values(
                    status=JobStatus.DEAD.value,
                    locked_at=None,
                    locked_by=None,
                    last_error="Worker lease expired",
                )
                .execution_options(synchronize_session=False)
            )
            requeued = await session.execute(
                update(DisbursementJob)
                .where(*stale)
                .values(
                    status=JobStatus.QUEUED.value,
                    next_run_at=now,
                    locked_at=None,
                    locked_by=None,
                    last_error="Worker lease expired",
                )
                .execution_options(synchronize_session=False)
            )

        released = (dead.rowcount or 0) + (requeued.rowcount or 0)
        if released:
            logger.warning(
                "Released %d stale job(s): %d re-queued, %d dead",
                released,
                requeued.rowcount or 0,
                dead.rowcount or 0,
            )
        return released

    async def has_active_job(self, batch_id: int) -> bool:
        """True if a job for the batch is queued or running."""
        async with self._session_factory() as session:
            count = (
                await session.execute(
                    select(func.count(DisbursementJob.id)).where(
                        DisbursementJob.batch_id == batch_id,
                        DisbursementJob.status.in_(ACTIVE_JOB_STATUSES),
                    )
                )
            ).scalar_one()
        return count > 0

    async def get_job(self, job_id: int) -> DisbursementJob | None:
        async with self._session_factory() as session:
            return await session.get(DisbursementJob, job_id)

    async def list_jobs(self, batch_id: int) -> list[DisbursementJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DisbursementJob)
                .where(DisbursementJob.batch_id == batch_id)
                .order_by(DisbursementJob.id)
            )
            return list(result.scalars().all())


class JobRunner:
    """Worker executing queued jobs through the orchestrator."""

    def __init__(
        self,
        queue: JobQueue,
        orchestrator: BatchOrchestrator,
        *,
        worker_id: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.queue = queue
        self.orchestrator = orchestrator
        self.worker_id = worker_id or default_worker_id()
        self._sleep = sleep

    async def run_once(self) -> JobRunResult | None:
        """Claim and run one due job. Returns None if the queue is idle."""
        job = await self.queue.claim(self.worker_id)
        if job is None:
            return None

        logger.info(
            "Worker %s running job %d for batch %d (%d of %d attempts used)",
            self.worker_id,
            job.id,
            job.batch_id,
            job.attempts,
            job.max_attempts,
        )

        attempts = job.attempts + 1
        if job.kind != PROCESS_BATCH:
            error = f"Unknown job kind {job.kind}"
            await self.queue.record_attempt(job, attempts)
            await self.queue.dead_letter(job, error, attempts=attempts)
            return JobRunResult(
                job_id=job.id,
                batch_id=job.batch_id,
                status=JobStatus.DEAD,
                attempts=attempts,
                error=error,
            )

        controller = retrying(
            self.queue.config,
            max_attempts=max(job.attempts_left, 1),
            sleep=self._sleep,
            before_sleep=partial(self._log_retry, job),
        )
        try:
            async for attempt in controller:
                with attempt:
                    attempts = job.attempts + attempt.retry_state.attempt_number
                    await self.queue.record_attempt(job, attempts)
                    execution = await self.orchestrator.execute(job.batch_id)
        except Exception as e:
            message = str(e) or type(e).__name__
            if is_retryable(e):
                logger.debug("Job %d raised", job.id, exc_info=True)
            await self.queue.dead_letter(job, message, attempts=attempts)
            return JobRunResult(
                job_id=job.id,
                batch_id=job.batch_id,
                status=JobStatus.DEAD,
                attempts=attempts,
                error=message,
            )

        await self.queue.complete(job)
        return JobRunResult(
            job_id=job.id,
            batch_id=job.batch_id,
            status=JobStatus.SUCCEEDED,
            attempts=attempts,
            execution=execution,
        )

    def _log_retry(self, job: ClaimedJob, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Job %d (batch %d) attempt %d/%d failed, retrying in %.1fs: %s",
            job.id,
            job.batch_id,
            job.attempts + retry_state.attempt_number,
            job.max_attempts,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
            error,
        )

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Poll the queue until stop_event is set."""
        poll_interval = self.queue.config.poll_interval_seconds
        logger.info("Worker %s started", self.worker_id)

        while not stop_event.is_set():
            try:
                await self.queue.release_stale()
                result = await self.run_once()
            except Exception:
                logger.exception("Worker %s loop error", self.worker_id)
                result = None

            if result is None:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass

        logger.info("Worker %s stopped", self.worker_id)
