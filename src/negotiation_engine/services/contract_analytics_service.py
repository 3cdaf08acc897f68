"""Contract Intent Analytics Recorder.

Appends one contract_intent_metrics row per e-signature lifecycle event.
There is no deduplication at this layer: callers that need exactly-once
semantics pass an idempotency_key, whose unique constraint rejects repeats.
Persistence errors propagate to the caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from negotiation_engine.domain.clock import as_utc, utcnow
from negotiation_engine.domain.enums import ContractIntentEventType
from negotiation_engine.domain.exceptions import ValidationFailedError
from negotiation_engine.infrastructure.database.orm_models import ContractIntentMetric
from negotiation_engine.infrastructure.database.repositories import (
    ContractIntentMetricRepository,
)
from negotiation_engine.infrastructure.database.unit_of_work import atomic
from negotiation_engine.logging_config import get_logger
from negotiation_engine.schemas.common import describe_validation_error
from negotiation_engine.schemas.contracts import ContractIntentEventInput

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.enums import ParticipantRole

logger = get_logger(__name__)


class ContractIntentRecorder:
    """Writes contract intent analytics rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = ContractIntentMetricRepository(session)

    async def record_contract_intent_event(
        self,
        data: ContractIntentEventInput | Mapping[str, Any],
    ) -> ContractIntentMetric:
        """Validate and append one analytics row.

        ``occurred_at`` defaults to now and may be an ISO-8601 string.

        Raises:
            ValidationFailedError: negotiation_id, contract_id or event_type is
                missing, or a field is malformed.
        """
        event = self._parse(data)
        metric = ContractIntentMetric(
            negotiation_id=event.negotiation_id,
            contract_id=event.contract_id,
            event_type=event.event_type.value,
            participant_role=event.participant_role.value if event.participant_role else None,
            metadata_json=event.metadata,
            idempotency_key=event.idempotency_key,
            occurred_at=as_utc(event.occurred_at) if event.occurred_at else utcnow(),
        )
        async with atomic(self._session):
            await self._repo.create(metric)

        logger.info(
            "contract_intent.recorded",
            negotiation_id=metric.negotiation_id,
            contract_id=metric.contract_id,
            event_type=metric.event_type,
            participant_role=metric.participant_role,
        )
        return metric

    async def record_participant_signature_event(
        self,
        negotiation_id: str,
        contract_id: str,
        participant_role: ParticipantRole | str | None,
        signed_at: datetime | str | None,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> ContractIntentMetric:
        """Record that one participant signed. Role and signing time are required."""
        missing = [
            name
            for name, value in (("participant_role", participant_role), ("signed_at", signed_at))
            if not value
        ]
        if missing:
            raise ValidationFailedError(
                f"Participant signature event requires {', '.join(missing)}",
                details={"fields": missing},
            )
        return await self.record_contract_intent_event(
            {
                "negotiation_id": negotiation_id,
                "contract_id": contract_id,
                "event_type": ContractIntentEventType.PARTICIPANT_SIGNED,
                "participant_role": participant_role,
                "occurred_at": signed_at,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )

    async def record_envelope_event(
        self,
        negotiation_id: str,
        contract_id: str,
        event_type: ContractIntentEventType,
        participant_role: ParticipantRole | str | None = None,
        occurred_at: datetime | None = None,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> ContractIntentMetric:
        """Record an envelope-level event (issued, completed, declined)."""
        if event_type is ContractIntentEventType.PARTICIPANT_SIGNED:
            raise ValidationFailedError(
                "Use record_participant_signature_event for signatures",
                details={"fields": ["event_type"]},
            )
        return await self.record_contract_intent_event(
            {
                "negotiation_id": negotiation_id,
                "contract_id": contract_id,
                "event_type": event_type,
                "participant_role": participant_role,
                "occurred_at": occurred_at,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )

    async def list_events(
        self,
        negotiation_id: str | None = None,
        event_type: ContractIntentEventType | None = None,
        since: datetime | None = None,
    ) -> list[ContractIntentMetric]:
        return await self._repo.list_events(
            negotiation_id=negotiation_id, event_type=event_type, since=since
        )

    @staticmethod
    def _parse(data: ContractIntentEventInput | Mapping[str, Any]) -> ContractIntentEventInput:
        if isinstance(data, ContractIntentEventInput):
            return data
        try:
            return ContractIntentEventInput.model_validate(dict(data))
        except ValidationError as exc:
            message, fields = describe_validation_error(exc)
            raise ValidationFailedError(
                f"Invalid contract intent event: {message}",
                details={"fields": fields},
            ) from exc
