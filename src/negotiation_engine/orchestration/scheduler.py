"""Job Scheduler — recurring background jobs with a database-backed lock.

Handlers are registered in-process; their run state lives in the
scheduler_jobs table so that every API process sees the same schedule:

    scheduler = JobScheduler(get_session_factory())
    scheduler.register("premium-conversion-metrics", 3600, refresh_premium_metrics)
    scheduler.start()            # polls run_due_jobs() every poll interval
    ...
    await scheduler.stop()

Each execution:
    1. Acquire: conditional UPDATE is_running=true, committed on its own
    2. Run the handler in a fresh session (it commits its own work)
    3. Record the outcome: next_run_at, attempt counter, execution log
    4. Release is_running in ``finally``

Failures back off exponentially (capped at the job interval) and a job is
disabled after MAX_JOB_ATTEMPTS consecutive failures.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from negotiation_engine.domain.clock import as_utc, utcnow
from negotiation_engine.domain.enums import JobRunStatus
from negotiation_engine.domain.exceptions import (
    JobAlreadyRunningError,
    JobFailedError,
    JobNotRegisteredError,
    ValidationFailedError,
)
from negotiation_engine.infrastructure.database.orm_models import JobExecutionLog
from negotiation_engine.infrastructure.database.repositories import SchedulerJobRepository
from negotiation_engine.infrastructure.database.unit_of_work import atomic
from negotiation_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    JobHandler = Callable[[AsyncSession], Awaitable[dict[str, Any] | None]]

logger = get_logger(__name__)

MAX_JOB_ATTEMPTS = 5
RETRY_BASE_DELAY_SECONDS = 60


def compute_retry_delay(interval_seconds: int, failures: int) -> int:
    """Backoff after ``failures`` consecutive failures, never longer than the interval."""
    backoff = RETRY_BASE_DELAY_SECONDS * 2 ** max(failures - 1, 0)
    return min(interval_seconds, backoff)


def derive_backlog(
    interval_seconds: int,
    next_run_at: datetime | None,
    reference: datetime,
) -> tuple[int, float]:
    """Return (missed runs, seconds overdue) for a job at ``reference``."""
    if next_run_at is None:
        return 0, 0.0
    overdue = max(0.0, (reference - as_utc(next_run_at)).total_seconds())
    if overdue == 0 or interval_seconds <= 0:
        return 0, overdue
    return max(1, math.ceil(overdue / interval_seconds)), overdue


@dataclass
class RegisteredJob:
    name: str
    interval_seconds: int
    handler: JobHandler
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobRunResult:
    job_name: str
    status: JobRunStatus
    attempt: int
    started_at: datetime
    finished_at: datetime
    result: dict[str, Any] | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is JobRunStatus.SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "job_name": self.job_name,
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": self.result,
        }


class JobScheduler:
    """Runs registered jobs when due, at most one execution per job name."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poll_interval_seconds: float = 30.0,
        stale_after_seconds: int = 3600,
    ) -> None:
        self._session_factory = session_factory
        self._poll_interval = poll_interval_seconds
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._jobs: dict[str, RegisteredJob] = {}
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        interval_seconds: int,
        handler: JobHandler,
        metadata: dict[str, Any] | None = None,
    ) -> RegisteredJob:
        """Register (or replace) the handler for ``name``."""
        if interval_seconds <= 0:
            raise ValidationFailedError(
                "interval_seconds must be greater than zero",
                details={"fields": ["interval_seconds"]},
            )
        job = RegisteredJob(
            name=name,
            interval_seconds=interval_seconds,
            handler=handler,
            metadata=dict(metadata or {}),
        )
        self._jobs[name] = job
        logger.info("scheduler.job_registered", job=name, interval_seconds=interval_seconds)
        return job

    @property
    def registered_jobs(self) -> list[str]:
        return sorted(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sync_jobs(self) -> None:
        """Create missing scheduler_jobs rows for every registered job."""
        now = utcnow()
        async with self._session_factory() as session, atomic(session):
            repo = SchedulerJobRepository(session)
            for job in self._jobs.values():
                await repo.ensure(
                    job.name,
                    job.interval_seconds,
                    next_run_at=now + timedelta(seconds=job.interval_seconds),
                )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def trigger(self, name: str) -> JobRunResult:
        """Run a job now, regardless of its schedule.

        Raises:
            JobNotRegisteredError: No handler is registered under ``name``.
            JobAlreadyRunningError: Another execution holds the job.
            JobFailedError: The handler raised.
        """
        job = self._jobs.get(name)
        if job is None:
            raise JobNotRegisteredError(name)

        await self.sync_jobs()
        run = await self._execute(job)
        if run is None:
            raise JobAlreadyRunningError(name)
        if not run.succeeded:
            raise JobFailedError(name, run.error or "unknown error")
        return run

    async def run_due_jobs(self, reference: datetime | None = None) -> list[JobRunResult]:
        """Run every active job whose next_run_at is at or before ``reference``.

        A job held by another execution is skipped. A failed job does not
        stop the remaining ones.
        """
        reference = reference or utcnow()
        await self.sync_jobs()

        async with self._session_factory() as session:
            due = await SchedulerJobRepository(session).list_due(reference)
            names = [row.name for row in due if row.name in self._jobs]

        results: list[JobRunResult] = []
        for name in names:
            run = await self._execute(self._jobs[name])
            if run is None:
                logger.info("scheduler.job_skipped", job=name, reason="already_running")
                continue
            results.append(run)
        return results

    async def _execute(self, job: RegisteredJob) -> JobRunResult | None:
        """Run one execution. Returns None when the lock is held elsewhere."""
        started_at = utcnow()
        async with self._session_factory() as session:
            repo = SchedulerJobRepository(session)
            async with atomic(session):
                acquired = await repo.try_acquire(
                    job.name, started_at, stale_before=started_at - self._stale_after
                )
            if not acquired:
                return None
            row = await repo.get(job.name)
            attempt = (row.attempt if row else 0) + 1

        log = logger.bind(job=job.name, attempt=attempt)
        log.info("scheduler.job_started")

        result: dict[str, Any] | None = None
        error: str | None = None
        try:
            try:
                async with self._session_factory() as job_session:
                    result = await job.handler(job_session)
                    await job_session.commit()
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                log.exception("scheduler.job_failed", error=error)

            run = JobRunResult(
                job_name=job.name,
                status=JobRunStatus.FAILED if error else JobRunStatus.SUCCEEDED,
                attempt=attempt,
                started_at=started_at,
                finished_at=utcnow(),
                result=result,
                error=error,
            )
            await self._record_outcome(job, run)
        finally:
            await self._release(job.name)

        if run.succeeded:
            log.info(
                "scheduler.job_succeeded",
                duration_ms=int((run.finished_at - run.started_at).total_seconds() * 1000),
            )
        return run

    async def _record_outcome(self, job: RegisteredJob, run: JobRunResult) -> None:
        async with self._session_factory() as session, atomic(session):
            repo = SchedulerJobRepository(session)
            row = await repo.get(job.name)
            metadata = {**job.metadata, **(row.metadata_json or {})}
            row.last_run_at = run.started_at

            if run.succeeded:
                row.attempt = 0
                row.last_error = None
                row.next_run_at = run.started_at + timedelta(seconds=job.interval_seconds)
                metadata.update(
                    last_success_at=run.started_at.isoformat(),
                    last_result=run.result,
                    last_error=None,
                )
            else:
                failures = row.attempt + 1
                row.attempt = failures
                row.last_error = run.error
                delay = compute_retry_delay(job.interval_seconds, failures)
                row.next_run_at = run.started_at + timedelta(seconds=delay)
                metadata.update(last_error=run.error, last_error_at=run.started_at.isoformat())
                if failures >= MAX_JOB_ATTEMPTS:
                    row.is_active = False
                    metadata["disabled_at"] = run.started_at.isoformat()
                    logger.error("scheduler.job_disabled", job=job.name, failures=failures)

            row.metadata_json = metadata
            await repo.add_log(
                JobExecutionLog(
                    job_name=job.name,
                    status=run.status.value,
                    attempt=run.attempt,
                    started_at=run.started_at,
                    finished_at=run.finished_at,
                    error=run.error,
                    metadata_json=run.result,
                )
            )

    async def _release(self, name: str) -> None:
        async with self._session_factory() as session, atomic(session):
            await SchedulerJobRepository(session).release(name, utcnow())

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._poll(), name="job-scheduler")
        logger.info(
            "scheduler.started",
            poll_interval_seconds=self._poll_interval,
            jobs=self.registered_jobs,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._stopping is not None:
            self._stopping.set()
        await self._task
        self._task = None
        logger.info("scheduler.stopped")

    async def _poll(self) -> None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            try:
                await self.run_due_jobs()
            except Exception:
                logger.exception("scheduler.poll_failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
            except TimeoutError:
                continue

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def get_job_health(self, reference: datetime | None = None) -> list[dict[str, Any]]:
        """Per-job schedule state, backlog and the most recent executions."""
        reference = reference or utcnow()
        async with self._session_factory() as session:
            repo = SchedulerJobRepository(session)
            health = []
            for row in await repo.list_all():
                backlog, overdue = derive_backlog(row.interval_seconds, row.next_run_at, reference)
                logs = await repo.recent_logs(row.name)
                health.append(
                    {
                        "name": row.name,
                        "registered": row.name in self._jobs,
                        "is_active": row.is_active,
                        "is_running": row.is_running,
                        "attempt": row.attempt,
                        "interval_seconds": row.interval_seconds,
                        "last_run_at": as_utc(row.last_run_at) if row.last_run_at else None,
                        "next_run_at": as_utc(row.next_run_at),
                        "overdue_seconds": overdue,
                        "backlog": backlog,
                        "last_error": row.last_error,
                        "recent_runs": [
                            {
                                "status": log.status,
                                "attempt": log.attempt,
                                "started_at": as_utc(log.started_at),
                                "finished_at": as_utc(log.finished_at),
                                "error": log.error,
                            }
                            for log in logs
                        ],
                    }
                )
        return health
