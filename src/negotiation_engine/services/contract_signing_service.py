"""In-app contract signing.

A party (or an admin) signs from inside the application instead of through
the provider's signing page. The envelope is issued on first use; the
signature, the analytics rows and the contract change commit together.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from negotiation_engine.domain.clock import utcnow
from negotiation_engine.domain.enums import (
    ContractIntentEventType,
    ContractStatus,
    ParticipantRole,
    ParticipantSignatureStatus,
)
from negotiation_engine.domain.exceptions import ContractSignatureConflictError, ForbiddenError
from negotiation_engine.infrastructure.database.unit_of_work import atomic
from negotiation_engine.logging_config import get_logger
from negotiation_engine.services.access_service import NegotiationAccessResolver
from negotiation_engine.services.contract_analytics_service import ContractIntentRecorder
from negotiation_engine.services.esign_provider import EnvelopeParticipant, get_esign_provider
from negotiation_engine.services.negotiation_service import NegotiationService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.events import EventPublisher
    from negotiation_engine.infrastructure.database.orm_models import DealContract
    from negotiation_engine.services.access_service import NegotiationAccess
    from negotiation_engine.services.esign_provider import ESignatureProvider

logger = get_logger(__name__)


def resolve_signature_role(
    access: NegotiationAccess,
    intent: ParticipantRole | None = None,
) -> ParticipantRole:
    """Pick the role the viewer signs as.

    An explicit intent wins when the viewer holds that role; otherwise buyer
    before seller before admin.
    """
    holds = {
        ParticipantRole.BUYER: access.is_buyer,
        ParticipantRole.SELLER: access.is_seller,
        ParticipantRole.ADMIN: access.is_admin,
    }
    if intent is not None and holds[intent]:
        return intent
    for role in (ParticipantRole.BUYER, ParticipantRole.SELLER, ParticipantRole.ADMIN):
        if holds[role]:
            return role
    raise ForbiddenError("Not allowed to sign this contract")


@dataclass(frozen=True)
class SignatureResult:
    contract: DealContract
    role: ParticipantRole
    envelope_issued: bool

    @property
    def completed(self) -> bool:
        return self.contract.status == ContractStatus.SIGNED.value


class ContractSigningService:
    """Signs deal contracts on behalf of the current viewer."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher | None = None,
        provider: ESignatureProvider | None = None,
    ) -> None:
        self._session = session
        self._provider = provider or get_esign_provider()
        self._access = NegotiationAccessResolver(session)
        self._recorder = ContractIntentRecorder(session)
        self._negotiations = NegotiationService(session, publisher, esign_provider=self._provider)

    async def sign_contract(
        self,
        negotiation_id: str,
        actor_id: str,
        is_admin: bool = False,
        intent: ParticipantRole | None = None,
    ) -> SignatureResult:
        """Record the viewer's signature, issuing the envelope first if needed.

        Raises:
            ContractSignatureConflictError: No contract yet, the contract is
                signed or voided, or this role already signed.
            ForbiddenError: The viewer holds no role that may sign.
        """
        async with atomic(self._session):
            access = await self._access.get_negotiation_with_access(
                negotiation_id, actor_id, is_admin=is_admin, for_update=True
            )
            negotiation = access.negotiation
            contract = negotiation.contract
            if contract is None:
                raise ContractSignatureConflictError(negotiation_id, "contract not drafted yet")
            if contract.status == ContractStatus.SIGNED.value:
                raise ContractSignatureConflictError(negotiation_id, "contract already signed")
            if contract.status == ContractStatus.VOID.value:
                raise ContractSignatureConflictError(negotiation_id, "contract was voided")

            role = resolve_signature_role(access, intent)
            state = (contract.participant_states or {}).get(role.value, {})
            if state.get("status") == ParticipantSignatureStatus.SIGNED.value:
                raise ContractSignatureConflictError(
                    negotiation_id, f"{role.value} already signed"
                )

            contract_id = contract.id
            participant = EnvelopeParticipant(actor_id, role)
            envelope_id = contract.provider_envelope_id
            issued = envelope_id is None
            if issued:
                participants = [
                    EnvelopeParticipant(negotiation.buyer_id, ParticipantRole.BUYER),
                    EnvelopeParticipant(negotiation.seller_id, ParticipantRole.SELLER),
                ]
                if role is ParticipantRole.ADMIN:
                    participants.append(participant)
                receipt = await self._provider.issue_envelope(
                    negotiation_id, contract_id, participants, terms=contract.draft_terms
                )
                await self._negotiations.mark_signature_requested(
                    negotiation_id, contract_id, actor_id, role, receipt=receipt
                )
                await self._recorder.record_envelope_event(
                    negotiation_id,
                    contract_id,
                    ContractIntentEventType.ENVELOPE_ISSUED,
                    participant_role=role,
                    metadata={"provider": receipt.provider, "envelope_id": receipt.envelope_id},
                )
                envelope_id = receipt.envelope_id

            receipt = await self._provider.submit_signature(envelope_id, participant)
            signed_at = utcnow()
            metadata = {"provider": receipt.provider, "source": "in_app", "participant_id": actor_id}
            await self._recorder.record_participant_signature_event(
                negotiation_id,
                contract_id,
                participant_role=role,
                signed_at=signed_at,
                metadata=metadata,
            )
            contract = await self._negotiations.record_participant_signature(
                negotiation_id, contract_id, actor_id, role, signed_at=signed_at
            )
            if contract.status == ContractStatus.SIGNED.value:
                await self._recorder.record_envelope_event(
                    negotiation_id,
                    contract_id,
                    ContractIntentEventType.ENVELOPE_COMPLETED,
                    occurred_at=signed_at,
                    metadata={"provider": receipt.provider},
                )

        logger.info(
            "contract.signed_in_app",
            negotiation_id=negotiation_id,
            contract_id=contract_id,
            role=role.value,
            envelope_issued=issued,
            contract_status=contract.status,
        )
        return SignatureResult(contract=contract, role=role, envelope_issued=issued)
