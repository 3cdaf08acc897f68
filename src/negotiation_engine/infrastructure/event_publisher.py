"""Event publisher implementations and the post-commit publishing helper.

The default publisher writes each domain event as a structured log line,
which a log shipper can forward to the message bus. A broker-backed
implementation can be supplied through the ``get_publisher`` dependency.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from negotiation_engine.infrastructure.database.unit_of_work import after_commit
from negotiation_engine.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.events import EventPublisher, NegotiationDomainEvent

logger = get_logger(__name__)


class LoggingEventPublisher:
    """Publishes domain events to the structured log stream."""

    async def publish(self, event: NegotiationDomainEvent) -> None:
        logger.info("domain_event.published", **event.to_dict())


_publisher: EventPublisher | None = None


def get_event_publisher() -> EventPublisher:
    """Return the process-wide publisher, defaulting to the logging publisher."""
    global _publisher
    if _publisher is None:
        _publisher = LoggingEventPublisher()
    return _publisher


async def publish_safely(publisher: EventPublisher, event: NegotiationDomainEvent) -> None:
    """Publish ``event``, logging instead of raising on failure."""
    try:
        await publisher.publish(event)
    except Exception:
        logger.exception(
            "domain_event.publish_failed",
            event_type=event.type.value,
            negotiation_id=event.negotiation_id,
        )


def publish_after_commit(
    session: AsyncSession,
    publisher: EventPublisher,
    event: NegotiationDomainEvent,
) -> None:
    """Schedule ``event`` for publication once the current unit of work commits."""

    async def _publish() -> None:
        await publish_safely(publisher, event)

    after_commit(session, _publish)
