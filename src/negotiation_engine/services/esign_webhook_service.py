"""E-Signature Webhook Handler.

Applies provider deliveries to the contract signature flow:

    1. Validate the payload (INVALID_WEBHOOK, no side effects on failure)
    2. Map the provider status to issued / signed / declined
    3. Deduplicate on (negotiation, contract, participant, status):
       Redis fast path first, then the unique idempotency_key column
    4. Record the analytics row and apply the contract change in ONE unit of work

Providers redeliver freely, so a repeat is acknowledged with duplicate=True
and changes nothing. A signature for a participant the contract already
records as signed (SIGNED followed by COMPLETED) counts as a repeat too.
The handler never retries on its own.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from negotiation_engine.domain.clock import utcnow
from negotiation_engine.domain.enums import (
    ContractIntentEventType,
    ContractStatus,
    ParticipantSignatureStatus,
)
from negotiation_engine.domain.exceptions import (
    InvalidWebhookError,
    NegotiationEngineError,
    WebhookProcessingError,
)
from negotiation_engine.domain.fingerprint import build_webhook_idempotency_key
from negotiation_engine.infrastructure.database.repositories import (
    ContractIntentMetricRepository,
)
from negotiation_engine.infrastructure.database.unit_of_work import atomic
from negotiation_engine.infrastructure.redis_client import check_idempotency, set_idempotency
from negotiation_engine.logging_config import get_logger
from negotiation_engine.schemas.common import describe_validation_error
from negotiation_engine.schemas.contracts import ESignatureWebhookPayload, ProviderSignatureStatus
from negotiation_engine.services.contract_analytics_service import ContractIntentRecorder
from negotiation_engine.services.negotiation_service import NegotiationService

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.enums import ParticipantRole
    from negotiation_engine.domain.events import EventPublisher
    from negotiation_engine.infrastructure.database.orm_models import DealContract

logger = get_logger(__name__)


def _participant_status(contract: DealContract, role: ParticipantRole) -> str | None:
    return (contract.participant_states or {}).get(role.value, {}).get("status")


class WebhookOutcomeKind(enum.StrEnum):
    ISSUED = "issued"
    SIGNED = "signed"
    DECLINED = "declined"


_STATUS_OUTCOMES: dict[ProviderSignatureStatus, WebhookOutcomeKind] = {
    ProviderSignatureStatus.ISSUED: WebhookOutcomeKind.ISSUED,
    ProviderSignatureStatus.SENT: WebhookOutcomeKind.ISSUED,
    ProviderSignatureStatus.DELIVERED: WebhookOutcomeKind.ISSUED,
    ProviderSignatureStatus.SIGNED: WebhookOutcomeKind.SIGNED,
    ProviderSignatureStatus.COMPLETED: WebhookOutcomeKind.SIGNED,
    ProviderSignatureStatus.DECLINED: WebhookOutcomeKind.DECLINED,
}


@dataclass(frozen=True)
class WebhookOutcome:
    ok: bool
    duplicate: bool
    idempotency_key: str
    outcome: WebhookOutcomeKind | None = None


class ESignatureWebhookService:
    """Handles inbound e-signature provider deliveries."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher | None = None,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self._session = session
        self._redis = redis
        self._metrics = ContractIntentMetricRepository(session)
        self._recorder = ContractIntentRecorder(session)
        self._negotiations = NegotiationService(session, publisher)

    async def handle(self, payload: Mapping[str, Any] | None) -> WebhookOutcome:
        """Validate, deduplicate and apply one delivery.

        Raises:
            InvalidWebhookError: Missing or malformed fields.
            WebhookProcessingError: The delivery was valid but could not be applied.
        """
        event = self._parse(payload)
        key = build_webhook_idempotency_key(
            event.negotiation_id,
            event.contract_id,
            event.participant.id,
            event.status.value,
        )
        log = logger.bind(
            negotiation_id=event.negotiation_id,
            contract_id=event.contract_id,
            participant_id=event.participant.id,
            provider_status=event.status.value,
        )

        if await self._seen_in_redis(key):
            log.info("webhook.duplicate", source="redis")
            return WebhookOutcome(ok=True, duplicate=True, idempotency_key=key)
        if await self._metrics.get_by_idempotency_key(key) is not None:
            log.info("webhook.duplicate", source="database")
            await self._remember(key)
            return WebhookOutcome(ok=True, duplicate=True, idempotency_key=key)

        outcome = _STATUS_OUTCOMES[event.status]
        try:
            async with atomic(self._session):
                applied = await self._apply(event, outcome, key)
        except IntegrityError as exc:
            if await self._metrics.get_by_idempotency_key(key) is None:
                log.error(
                    "webhook.processing_failed",
                    outcome=outcome.value,
                    error=str(exc.orig),
                    error_type=type(exc).__name__,
                )
                raise WebhookProcessingError(
                    f"Could not apply {event.status.value} for contract {event.contract_id}: "
                    f"integrity error {exc.orig}"
                ) from exc
            # a concurrent delivery with the same key committed first
            log.info("webhook.duplicate", source="unique_constraint")
            await self._remember(key)
            return WebhookOutcome(ok=True, duplicate=True, idempotency_key=key)
        except (NegotiationEngineError, SQLAlchemyError) as exc:
            log.error(
                "webhook.processing_failed",
                outcome=outcome.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise WebhookProcessingError(
                f"Could not apply {event.status.value} for contract {event.contract_id}: {exc}"
            ) from exc

        await self._remember(key)
        if not applied:
            log.info("webhook.duplicate", source="contract_state")
            return WebhookOutcome(ok=True, duplicate=True, idempotency_key=key)
        log.info("webhook.processed", outcome=outcome.value)
        return WebhookOutcome(ok=True, duplicate=False, idempotency_key=key, outcome=outcome)

    async def _apply(
        self,
        event: ESignatureWebhookPayload,
        outcome: WebhookOutcomeKind,
        key: str,
    ) -> bool:
        """Apply one delivery. Returns False when the contract already reflects it."""
        role = event.participant.role
        metadata = {"provider_status": event.status.value, "participant_id": event.participant.id}

        if outcome is WebhookOutcomeKind.SIGNED:
            contract = await self._negotiations.load_contract(
                event.negotiation_id, event.contract_id, event.participant.id, role
            )
            if _participant_status(contract, role) == ParticipantSignatureStatus.SIGNED:
                return False
            was_signed = contract.status == ContractStatus.SIGNED.value

            signed_at = event.signed_at or utcnow()
            await self._recorder.record_participant_signature_event(
                event.negotiation_id,
                event.contract_id,
                participant_role=role,
                signed_at=signed_at,
                metadata=metadata,
                idempotency_key=key,
            )
            contract = await self._negotiations.record_participant_signature(
                event.negotiation_id,
                event.contract_id,
                event.participant.id,
                role,
                signed_at=signed_at,
            )
            if not was_signed and contract.status == ContractStatus.SIGNED.value:
                await self._recorder.record_envelope_event(
                    event.negotiation_id,
                    event.contract_id,
                    ContractIntentEventType.ENVELOPE_COMPLETED,
                    occurred_at=signed_at,
                )
        elif outcome is WebhookOutcomeKind.ISSUED:
            await self._recorder.record_envelope_event(
                event.negotiation_id,
                event.contract_id,
                ContractIntentEventType.ENVELOPE_ISSUED,
                participant_role=role,
                metadata=metadata,
                idempotency_key=key,
            )
            await self._negotiations.mark_signature_requested(
                event.negotiation_id, event.contract_id, event.participant.id, role
            )
        else:
            await self._recorder.record_envelope_event(
                event.negotiation_id,
                event.contract_id,
                ContractIntentEventType.ENVELOPE_DECLINED,
                participant_role=role,
                metadata=metadata,
                idempotency_key=key,
            )
            await self._negotiations.record_signature_declined(
                event.negotiation_id, event.contract_id, event.participant.id, role
            )
        return True

    async def _seen_in_redis(self, key: str) -> bool:
        if self._redis is None:
            return False
        try:
            return await check_idempotency(self._redis, key)
        except RedisError as exc:
            logger.warning("webhook.redis_unavailable", error=str(exc))
            return False

    async def _remember(self, key: str) -> None:
        if self._redis is None:
            return
        try:
            await set_idempotency(self._redis, key)
        except RedisError as exc:
            logger.warning("webhook.redis_unavailable", error=str(exc))

    @staticmethod
    def _parse(payload: Mapping[str, Any] | None) -> ESignatureWebhookPayload:
        if not isinstance(payload, Mapping):
            raise InvalidWebhookError("Webhook body must be a JSON object")
        try:
            return ESignatureWebhookPayload.model_validate(dict(payload))
        except ValidationError as exc:
            message, fields = describe_validation_error(exc)
            raise InvalidWebhookError(f"Invalid webhook payload: {message}", fields=fields) from exc
