"""Domain events and the Event Publisher protocol.

Services publish one NegotiationDomainEvent per committed change. The
publisher is a Protocol (structural subtyping) so a message-bus adapter,
the structlog publisher or a test recorder can be injected interchangeably.

The domain layer has no imports from any broker or transport library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from negotiation_engine.domain.enums import NegotiationEventType  # noqa: TC001


@dataclass(frozen=True)
class NegotiationDomainEvent:
    """A committed change to a negotiation or its contract.

    Attributes:
        type: What happened.
        negotiation_id: The negotiation the change belongs to.
        triggered_by: Id of the acting user, or SYSTEM for webhooks and jobs.
        status: Negotiation status after the change.
        payload: Event-specific context (amounts, revision ids, roles).
        occurred_at: When the change was committed.
    """

    type: NegotiationEventType
    negotiation_id: str
    triggered_by: str
    status: str
    payload: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        """Serialize for transport or structured logging."""
        return {
            "type": self.type.value,
            "negotiation_id": self.negotiation_id,
            "triggered_by": self.triggered_by,
            "status": self.status,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


@runtime_checkable
class EventPublisher(Protocol):
    """Protocol that event publisher implementations must satisfy.

    Implementations:
        - infrastructure/event_publisher.py  (structlog line per event)
        - tests/conftest.py                  (in-memory recorder)
    """

    async def publish(self, event: NegotiationDomainEvent) -> None:
        """Hand the event to the transport.

        Called only after the originating transaction committed. Raising is
        allowed; callers log the failure and carry on.
        """
        ...
