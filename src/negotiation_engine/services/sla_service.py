"""Negotiation response deadline watch.

Negotiations may carry an ``expires_at`` deadline. The scan writes one
NEGOTIATION_SLA_WARNING audit event when the deadline falls inside the
warning window and one NEGOTIATION_SLA_BREACHED event once it has passed.
Each event is written at most once per negotiation. The scan only observes:
status and version of the negotiation are left alone.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from negotiation_engine.config import get_settings
from negotiation_engine.domain.clock import as_utc, utcnow
from negotiation_engine.domain.enums import NegotiationEventType, NegotiationStatus
from negotiation_engine.domain.events import NegotiationDomainEvent
from negotiation_engine.infrastructure.database.repositories import (
    NegotiationEventRepository,
    NegotiationRepository,
)
from negotiation_engine.infrastructure.database.unit_of_work import atomic
from negotiation_engine.infrastructure.event_publisher import (
    get_event_publisher,
    publish_after_commit,
)
from negotiation_engine.logging_config import get_logger

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.events import EventPublisher

logger = get_logger(__name__)

SLA_ACTOR = "SYSTEM"
CLOSED_STATUSES = (NegotiationStatus.COMPLETED.value, NegotiationStatus.CANCELLED.value)


async def scan_negotiation_sla_windows(
    session: AsyncSession,
    reference: datetime | None = None,
    warning_hours: int | None = None,
    publisher: EventPublisher | None = None,
) -> dict[str, Any]:
    """Emit warning and breach events for open negotiations near or past their deadline.

    Returns a summary with the ids that received a warning or a breach event.
    """
    reference = as_utc(reference) if reference else utcnow()
    if warning_hours is None:
        warning_hours = get_settings().negotiation_sla_warning_hours
    publisher = publisher or get_event_publisher()

    negotiation_repo = NegotiationRepository(session)
    event_repo = NegotiationEventRepository(session)
    warned: list[str] = []
    breached: list[str] = []

    async with atomic(session):
        candidates = await negotiation_repo.list_open_with_deadline_before(
            reference + timedelta(hours=warning_hours), CLOSED_STATUSES
        )
        ids = [n.id for n in candidates]
        already_warned = await event_repo.negotiation_ids_with_event(
            ids, NegotiationEventType.NEGOTIATION_SLA_WARNING
        )
        already_breached = await event_repo.negotiation_ids_with_event(
            ids, NegotiationEventType.NEGOTIATION_SLA_BREACHED
        )

        for negotiation in candidates:
            expires_at = as_utc(negotiation.expires_at)
            if expires_at < reference:
                if negotiation.id in already_breached:
                    continue
                event_type = NegotiationEventType.NEGOTIATION_SLA_BREACHED
                breached.append(negotiation.id)
            else:
                if negotiation.id in already_warned:
                    continue
                event_type = NegotiationEventType.NEGOTIATION_SLA_WARNING
                warned.append(negotiation.id)

            payload = {
                "expires_at": expires_at.isoformat(),
                "reference": reference.isoformat(),
            }
            await event_repo.record(
                negotiation_id=negotiation.id,
                event_type=event_type,
                old_status=negotiation.status,
                new_status=negotiation.status,
                actor=SLA_ACTOR,
                metadata=payload,
            )
            publish_after_commit(
                session,
                publisher,
                NegotiationDomainEvent(
                    type=event_type,
                    negotiation_id=negotiation.id,
                    triggered_by=SLA_ACTOR,
                    status=negotiation.status,
                    payload=payload,
                    occurred_at=reference,
                ),
            )

    if warned or breached:
        logger.info(
            "negotiation.sla_scanned",
            warned=len(warned),
            breached=len(breached),
            reference=reference.isoformat(),
        )
    return {"warned": warned, "breached": breached, "warning_hours": warning_hours}
