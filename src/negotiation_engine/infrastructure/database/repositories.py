"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_, select, update

from negotiation_engine.domain.enums import PremiumTier
from negotiation_engine.infrastructure.database.orm_models import (
    ContractIntentMetric,
    ContractRevision,
    JobExecutionLog,
    Negotiation,
    NegotiationEvent,
    PremiumConversionEvent,
    RevisionComment,
    SchedulerJob,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.enums import (
        ContractIntentEventType,
        NegotiationEventType,
        PremiumConversionEventType,
    )


class NegotiationRepository:
    """Data access for negotiations and their owned offers, escrow and contract."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, negotiation: Negotiation) -> Negotiation:
        """Insert a new negotiation together with its initial offer."""
        self._session.add(negotiation)
        await self._session.flush()
        return negotiation

    async def get_by_id(self, negotiation_id: str, for_update: bool = False) -> Negotiation | None:
        """Fetch a negotiation, refreshing any stale copy held by the session.

        ``for_update`` takes a row lock on backends that support it.
        """
        stmt = (
            select(Negotiation)
            .where(Negotiation.id == negotiation_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_open_with_deadline_before(
        self, cutoff: datetime, closed_statuses: Iterable[str]
    ) -> list[Negotiation]:
        """Negotiations with a response deadline at or before ``cutoff``."""
        result = await self._session.execute(
            select(Negotiation)
            .where(
                Negotiation.expires_at.is_not(None),
                Negotiation.expires_at <= cutoff,
                Negotiation.status.not_in(list(closed_statuses)),
            )
            .order_by(Negotiation.expires_at.asc())
        )
        return list(result.scalars().all())


class NegotiationEventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        negotiation_id: str,
        event_type: NegotiationEventType,
        old_status: str | None,
        new_status: str,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> NegotiationEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = NegotiationEvent(
            negotiation_id=negotiation_id,
            event_type=event_type.value,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        return evt

    async def get_by_negotiation(self, negotiation_id: str) -> list[NegotiationEvent]:
        """Fetch all events for a negotiation in chronological order."""
        result = await self._session.execute(
            select(NegotiationEvent)
            .where(NegotiationEvent.negotiation_id == negotiation_id)
            .order_by(NegotiationEvent.created_at.asc(), NegotiationEvent.id.asc())
        )
        return list(result.scalars().all())

    async def negotiation_ids_with_event(
        self, negotiation_ids: list[str], event_type: NegotiationEventType
    ) -> set[str]:
        if not negotiation_ids:
            return set()
        result = await self._session.execute(
            select(NegotiationEvent.negotiation_id)
            .where(
                NegotiationEvent.negotiation_id.in_(negotiation_ids),
                NegotiationEvent.event_type == event_type.value,
            )
            .distinct()
        )
        return set(result.scalars().all())


class ContractRevisionRepository:
    """Data access for contract revisions and their comments."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, revision: ContractRevision) -> ContractRevision:
        self._session.add(revision)
        await self._session.flush()
        return revision

    async def get_by_id(self, revision_id: str) -> ContractRevision | None:
        result = await self._session.execute(
            select(ContractRevision).where(ContractRevision.id == revision_id)
        )
        return result.scalar_one_or_none()

    async def get_latest(self, contract_id: str) -> ContractRevision | None:
        """Fetch the highest version for a contract."""
        result = await self._session.execute(
            select(ContractRevision)
            .where(ContractRevision.contract_id == contract_id)
            .order_by(ContractRevision.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_negotiation(self, negotiation_id: str) -> list[ContractRevision]:
        result = await self._session.execute(
            select(ContractRevision)
            .where(ContractRevision.negotiation_id == negotiation_id)
            .order_by(ContractRevision.version.asc())
        )
        return list(result.scalars().all())

    async def clear_current(self, contract_id: str, keep_revision_id: str) -> None:
        """Unset is_current on every revision of the contract but one."""
        await self._session.execute(
            update(ContractRevision)
            .where(
                ContractRevision.contract_id == contract_id,
                ContractRevision.id != keep_revision_id,
                ContractRevision.is_current.is_(True),
            )
            .values(is_current=False)
            .execution_options(synchronize_session="fetch")
        )

    async def add_comment(self, comment: RevisionComment) -> RevisionComment:
        self._session.add(comment)
        await self._session.flush()
        return comment

    async def get_comment(self, comment_id: str) -> RevisionComment | None:
        result = await self._session.execute(
            select(RevisionComment).where(RevisionComment.id == comment_id)
        )
        return result.scalar_one_or_none()


class ContractIntentMetricRepository:
    """Data access for the append-only contract intent analytics table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, metric: ContractIntentMetric) -> ContractIntentMetric:
        """Insert one metric row. A reused idempotency_key raises IntegrityError."""
        self._session.add(metric)
        await self._session.flush()
        return metric

    async def get_by_idempotency_key(self, key: str) -> ContractIntentMetric | None:
        result = await self._session.execute(
            select(ContractIntentMetric).where(ContractIntentMetric.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def list_events(
        self,
        negotiation_id: str | None = None,
        event_type: ContractIntentEventType | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[ContractIntentMetric]:
        stmt = select(ContractIntentMetric)
        if negotiation_id is not None:
            stmt = stmt.where(ContractIntentMetric.negotiation_id == negotiation_id)
        if event_type is not None:
            stmt = stmt.where(ContractIntentMetric.event_type == event_type.value)
        if since is not None:
            stmt = stmt.where(ContractIntentMetric.occurred_at >= since)
        if until is not None:
            stmt = stmt.where(ContractIntentMetric.occurred_at < until)
        result = await self._session.execute(
            stmt.order_by(ContractIntentMetric.occurred_at.asc())
        )
        return list(result.scalars().all())


class PremiumConversionRepository:
    """Data access for premium funnel events."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        user_id: str,
        event_type: PremiumConversionEventType,
        occurred_at: datetime,
        negotiation_id: str | None = None,
        tier: str | None = None,
        metadata: dict | None = None,
    ) -> PremiumConversionEvent:
        evt = PremiumConversionEvent(
            user_id=user_id,
            event_type=event_type.value,
            negotiation_id=negotiation_id,
            tier=tier,
            metadata_json=metadata,
            occurred_at=occurred_at,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def list_between(
        self,
        since: datetime,
        until: datetime,
        tier: PremiumTier | None = None,
    ) -> list[PremiumConversionEvent]:
        """Fetch events in ``[since, until)``.

        Events recorded without a tier count as PREMIUM.
        """
        stmt = select(PremiumConversionEvent).where(
            PremiumConversionEvent.occurred_at >= since,
            PremiumConversionEvent.occurred_at < until,
        )
        if tier is PremiumTier.PREMIUM:
            stmt = stmt.where(
                or_(
                    PremiumConversionEvent.tier == tier.value,
                    PremiumConversionEvent.tier.is_(None),
                )
            )
        elif tier is not None:
            stmt = stmt.where(PremiumConversionEvent.tier == tier.value)
        result = await self._session.execute(
            stmt.order_by(PremiumConversionEvent.occurred_at.asc())
        )
        return list(result.scalars().all())


class SchedulerJobRepository:
    """Data access for job run state and execution logs."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, name: str) -> SchedulerJob | None:
        return await self._session.get(SchedulerJob, name, populate_existing=True)

    async def ensure(
        self,
        name: str,
        interval_seconds: int,
        next_run_at: datetime,
    ) -> SchedulerJob:
        """Create the job row if missing, otherwise refresh its interval."""
        job = await self.get(name)
        if job is None:
            job = SchedulerJob(
                name=name,
                interval_seconds=interval_seconds,
                next_run_at=next_run_at,
                is_active=True,
                is_running=False,
                attempt=0,
            )
            self._session.add(job)
        else:
            job.interval_seconds = interval_seconds
        await self._session.flush()
        return job

    async def list_all(self) -> list[SchedulerJob]:
        result = await self._session.execute(select(SchedulerJob).order_by(SchedulerJob.name))
        return list(result.scalars().all())

    async def list_due(self, reference: datetime) -> list[SchedulerJob]:
        result = await self._session.execute(
            select(SchedulerJob)
            .where(SchedulerJob.is_active.is_(True), SchedulerJob.next_run_at <= reference)
            .order_by(SchedulerJob.next_run_at.asc())
        )
        return list(result.scalars().all())

    async def try_acquire(self, name: str, now: datetime, stale_before: datetime) -> bool:
        """Mark the job running unless another execution holds it.

        A lock whose holder started before ``stale_before`` is taken over.
        Returns True when this caller won the lock.
        """
        result = await self._session.execute(
            update(SchedulerJob)
            .where(
                SchedulerJob.name == name,
                or_(
                    SchedulerJob.is_running.is_(False),
                    SchedulerJob.last_started_at < stale_before,
                ),
            )
            .values(is_running=True, last_started_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, name: str, now: datetime) -> None:
        await self._session.execute(
            update(SchedulerJob)
            .where(SchedulerJob.name == name)
            .values(is_running=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def add_log(self, log: JobExecutionLog) -> JobExecutionLog:
        self._session.add(log)
        await self._session.flush()
        return log

    async def recent_logs(self, name: str, limit: int = 5) -> list[JobExecutionLog]:
        result = await self._session.execute(
            select(JobExecutionLog)
            .where(JobExecutionLog.job_name == name)
            .order_by(JobExecutionLog.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
