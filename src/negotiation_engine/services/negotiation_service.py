"""Negotiation Service — core business logic for the negotiation lifecycle.

This is the application layer that coordinates between:
    - Access resolver (who may see and act on a negotiation)
    - Domain state machine (transition guard)
    - Repositories (data access) and the audit event log
    - Event publisher (one domain event per committed change)

REST routes, the e-signature webhook handler and the simulation all call
into this service, so every business rule lives in one place.

Each public operation runs in one ``atomic`` unit of work. The negotiation
row is loaded FOR UPDATE and carries an optimistic version counter; a writer
that lost a race fails with ConcurrentTransitionError and changes nothing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.orm.exc import StaleDataError
from statemachine.exceptions import TransitionNotAllowed

from negotiation_engine.config import get_settings
from negotiation_engine.domain.clock import as_utc, utcnow
from negotiation_engine.domain.enums import (
    ContractStatus,
    EnvelopeStatus,
    EscrowStatus,
    EscrowTransactionType,
    NegotiationEventType,
    NegotiationStatus,
    OfferType,
    ParticipantRole,
    ParticipantSignatureStatus,
    PremiumConversionEventType,
)
from negotiation_engine.domain.events import NegotiationDomainEvent
from negotiation_engine.domain.exceptions import (
    ConcurrentTransitionError,
    ContractNotFoundError,
    EscrowOverfundedError,
    ForbiddenError,
    InvalidStateTransitionError,
    ValidationFailedError,
)
from negotiation_engine.domain.state_machine import NegotiationStateMachine
from negotiation_engine.infrastructure.database.orm_models import (
    DealContract,
    EscrowAccount,
    EscrowTransaction,
    Negotiation,
    Offer,
)
from negotiation_engine.infrastructure.database.repositories import (
    NegotiationEventRepository,
    NegotiationRepository,
    PremiumConversionRepository,
)
from negotiation_engine.infrastructure.database.unit_of_work import after_commit, atomic
from negotiation_engine.infrastructure.event_publisher import (
    get_event_publisher,
    publish_after_commit,
)
from negotiation_engine.logging_config import get_logger
from negotiation_engine.services.access_service import (
    NegotiationAccess,
    NegotiationAccessResolver,
)
from negotiation_engine.services.esign_provider import get_esign_provider

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.enums import PremiumTier
    from negotiation_engine.domain.events import EventPublisher
    from negotiation_engine.infrastructure.database.orm_models import NegotiationEvent
    from negotiation_engine.services.esign_provider import ESignatureProvider, EnvelopeReceipt

logger = get_logger(__name__)

SYSTEM_ACTOR = "SYSTEM"
CENTS = Decimal("0.01")


def _require_positive(value: Decimal | int | None, field: str) -> None:
    if value is None or value <= 0:
        raise ValidationFailedError(f"{field} must be greater than zero", details={"fields": [field]})


class NegotiationService:
    """Manages the negotiation, escrow and contract signature lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher | None = None,
        esign_provider: ESignatureProvider | None = None,
    ) -> None:
        self._session = session
        self._publisher = publisher or get_event_publisher()
        self._esign_provider = esign_provider or get_esign_provider()
        self._access = NegotiationAccessResolver(session)
        self._negotiation_repo = NegotiationRepository(session)
        self._event_repo = NegotiationEventRepository(session)
        self._premium_repo = PremiumConversionRepository(session)

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    async def open_negotiation(
        self,
        listing_id: str,
        buyer_id: str,
        seller_id: str,
        price: Decimal,
        quantity: int = 1,
        currency: str | None = None,
        premium_tier: PremiumTier | None = None,
        message: str | None = None,
        expires_at: datetime | None = None,
    ) -> Negotiation:
        """Create a negotiation in CREATED with the buyer's initial offer.

        ``expires_at`` is the optional response deadline watched by the SLA scan.
        """
        if buyer_id == seller_id:
            raise ValidationFailedError(
                "Buyer and seller must be different users",
                details={"fields": ["seller_id"]},
            )
        _require_positive(price, "price")
        _require_positive(quantity, "quantity")

        negotiation = Negotiation(
            listing_id=listing_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            status=NegotiationStatus.CREATED.value,
            currency=(currency or get_settings().default_currency).upper(),
            premium_tier=premium_tier.value if premium_tier else None,
            expires_at=as_utc(expires_at) if expires_at else None,
            offers=[
                Offer(
                    sequence=1,
                    author_id=buyer_id,
                    offer_type=OfferType.INITIAL.value,
                    price=price,
                    quantity=quantity,
                    message=message,
                )
            ],
            escrow_account=None,
            contract=None,
        )

        async with atomic(self._session):
            negotiation = await self._negotiation_repo.create(negotiation)
            await self._record_event(
                negotiation,
                NegotiationEventType.NEGOTIATION_CREATED,
                old_status=None,
                actor=buyer_id,
                payload={
                    "listing_id": listing_id,
                    "price": str(price),
                    "quantity": quantity,
                    "expires_at": as_utc(expires_at).isoformat() if expires_at else None,
                },
            )

        logger.info(
            "negotiation.created",
            negotiation_id=negotiation.id,
            listing_id=listing_id,
            price=str(price),
        )
        return negotiation

    # ------------------------------------------------------------------
    # Bargaining
    # ------------------------------------------------------------------

    async def submit_counter_offer(
        self,
        negotiation_id: str,
        actor_id: str,
        price: Decimal,
        quantity: int | None = None,
        message: str | None = None,
        is_admin: bool = False,
    ) -> Negotiation:
        """Append a counter offer. CREATED/COUNTERED -> COUNTERED."""
        _require_positive(price, "price")
        if quantity is not None:
            _require_positive(quantity, "quantity")

        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin)
            access.ensure_party()
            negotiation = access.negotiation
            new_status = self._fire_transition(negotiation, "counter")

            last = negotiation.last_offer
            offer = Offer(
                sequence=len(negotiation.offers) + 1,
                author_id=actor_id,
                offer_type=OfferType.COUNTER.value,
                price=price,
                quantity=quantity or (last.quantity if last else 1),
                message=message,
            )
            negotiation.offers.append(offer)

            await self._apply(
                negotiation,
                NegotiationEventType.NEGOTIATION_COUNTER_SUBMITTED,
                actor=actor_id,
                event_name="counter",
                new_status=new_status,
                payload={
                    "sequence": offer.sequence,
                    "price": str(offer.price),
                    "quantity": offer.quantity,
                },
            )

        logger.info(
            "negotiation.countered",
            negotiation_id=negotiation_id,
            by=actor_id,
            price=str(price),
        )
        return negotiation

    async def accept_offer(
        self,
        negotiation_id: str,
        actor_id: str,
        is_admin: bool = False,
        agreed_price: Decimal | None = None,
        note: str | None = None,
    ) -> Negotiation:
        """Accept the latest offer. CREATED/COUNTERED -> ACCEPTED.

        Only the counterparty of the latest offer may accept. Acceptance fixes
        the agreed terms, opens the escrow account and drafts the contract.
        When ``agreed_price`` is given it must match the latest offer.
        """
        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin)
            access.ensure_party()
            negotiation = access.negotiation
            new_status = self._fire_transition(negotiation, "accept")
            access.ensure_counterparty()

            accepted = negotiation.last_offer
            if agreed_price is not None and Decimal(agreed_price) != Decimal(accepted.price):
                raise ValidationFailedError(
                    "agreed_price does not match the latest offer",
                    details={"fields": ["agreed_price"], "latest_price": str(accepted.price)},
                )
            negotiation.offers.append(
                Offer(
                    sequence=len(negotiation.offers) + 1,
                    author_id=actor_id,
                    offer_type=OfferType.FINAL.value,
                    price=accepted.price,
                    quantity=accepted.quantity,
                    message=note,
                )
            )
            negotiation.agreed_price = accepted.price
            negotiation.agreed_quantity = accepted.quantity

            expected = (Decimal(accepted.price) * accepted.quantity).quantize(CENTS)
            negotiation.escrow_account = EscrowAccount(
                status=EscrowStatus.AWAITING_FUNDS.value,
                currency=negotiation.currency,
                expected_amount=expected,
                funded_amount=Decimal("0"),
                released_amount=Decimal("0"),
                refunded_amount=Decimal("0"),
                release_approvals=[],
                refund_approvals=[],
                transactions=[],
            )
            negotiation.contract = DealContract(
                status=ContractStatus.DRAFT.value,
                participant_states={
                    ParticipantRole.BUYER.value: {"status": ParticipantSignatureStatus.PENDING.value},
                    ParticipantRole.SELLER.value: {"status": ParticipantSignatureStatus.PENDING.value},
                },
                draft_terms={
                    "listing_id": negotiation.listing_id,
                    "price": str(accepted.price),
                    "quantity": accepted.quantity,
                    "currency": negotiation.currency,
                },
            )

            await self._apply(
                negotiation,
                NegotiationEventType.NEGOTIATION_ACCEPTED,
                actor=actor_id,
                event_name="accept",
                new_status=new_status,
                payload={
                    "accepted_offer_sequence": accepted.sequence,
                    "agreed_price": str(accepted.price),
                    "agreed_quantity": accepted.quantity,
                    "escrow_expected_amount": str(expected),
                },
            )

        logger.info(
            "negotiation.accepted",
            negotiation_id=negotiation_id,
            by=actor_id,
            price=str(negotiation.agreed_price),
        )
        return negotiation

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    async def fund_escrow(
        self,
        negotiation_id: str,
        actor_id: str,
        amount: Decimal,
        reference: str | None = None,
        is_admin: bool = False,
    ) -> Negotiation:
        """Record a deposit. Reaching the expected amount moves ACCEPTED -> ESCROW_FUNDED.

        Partial deposits only raise funded_amount. A deposit that would exceed
        the expected amount is rejected.
        """
        _require_positive(amount, "amount")

        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin)
            if not (access.is_buyer or access.is_admin):
                raise ForbiddenError("Only the buyer or an admin may fund escrow")
            negotiation = access.negotiation
            self._guard(negotiation, "fund_escrow")
            escrow = self._escrow_or_raise(negotiation, "fund_escrow")

            new_total = escrow.funded_amount + amount
            if new_total > escrow.expected_amount:
                raise EscrowOverfundedError(
                    negotiation_id,
                    expected=str(escrow.expected_amount),
                    attempted_total=str(new_total),
                )
            escrow.funded_amount = new_total
            self._append_ledger(escrow, EscrowTransactionType.FUND, amount, actor_id, reference)

            payload = {
                "amount": str(amount),
                "funded_amount": str(new_total),
                "expected_amount": str(escrow.expected_amount),
                "reference": reference,
            }
            if escrow.expected_amount - new_total <= get_settings().escrow_amount_tolerance:
                new_status = self._fire_transition(negotiation, "fund_escrow")
                escrow.status = EscrowStatus.FUNDED.value
                await self._apply(
                    negotiation,
                    NegotiationEventType.ESCROW_FUNDED,
                    actor=actor_id,
                    event_name="fund_escrow",
                    new_status=new_status,
                    payload=payload,
                )
            else:
                await self._apply(
                    negotiation,
                    NegotiationEventType.ESCROW_DEPOSIT_RECORDED,
                    actor=actor_id,
                    event_name="fund_escrow",
                    payload=payload,
                )

        logger.info(
            "escrow.deposit_recorded",
            negotiation_id=negotiation_id,
            amount=str(amount),
            funded=str(new_total),
            status=negotiation.status,
        )
        return negotiation

    async def release_escrow(
        self,
        negotiation_id: str,
        actor_id: str,
        is_admin: bool = False,
        reason: str | None = None,
    ) -> Negotiation:
        """Release escrowed funds to the seller. ESCROW_FUNDED -> ESCROW_RELEASED.

        An admin releases immediately. Otherwise each party records an
        approval and the release happens once buyer and seller both approved.
        """
        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin)
            negotiation = access.negotiation
            self._guard(negotiation, "release_escrow")
            escrow = self._escrow_or_raise(negotiation, "release_escrow")

            approvals, changed = self._approve(access, escrow.release_approvals)
            if access.is_admin or self._both_parties_approved(negotiation, approvals):
                new_status = self._fire_transition(negotiation, "release_escrow")
                released = escrow.outstanding_amount
                escrow.released_amount = escrow.released_amount + released
                self._append_ledger(
                    escrow, EscrowTransactionType.RELEASE, released, actor_id, reason
                )
                escrow.release_approvals = approvals
                escrow.status = EscrowStatus.RELEASED.value
                await self._apply(
                    negotiation,
                    NegotiationEventType.ESCROW_RELEASED,
                    actor=actor_id,
                    event_name="release_escrow",
                    new_status=new_status,
                    payload={"released_amount": str(released), "reason": reason},
                )
                logger.info(
                    "escrow.released",
                    negotiation_id=negotiation_id,
                    amount=str(released),
                    by=actor_id,
                )
            elif changed:
                escrow.release_approvals = approvals
                await self._apply(
                    negotiation,
                    NegotiationEventType.ESCROW_RELEASE_APPROVED,
                    actor=actor_id,
                    event_name="release_escrow",
                    payload={"approvals": approvals, "reason": reason},
                )
                logger.info("escrow.release_approved", negotiation_id=negotiation_id, by=actor_id)

        return negotiation

    async def refund_escrow(
        self,
        negotiation_id: str,
        actor_id: str,
        is_admin: bool = False,
        reason: str | None = None,
    ) -> Negotiation:
        """Return escrowed funds to the buyer. ACCEPTED/ESCROW_FUNDED -> ESCROW_REFUNDED.

        Same approval rule as release: admin immediately, otherwise both parties.
        """
        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin)
            negotiation = access.negotiation
            self._guard(negotiation, "refund_escrow")
            escrow = self._escrow_or_raise(negotiation, "refund_escrow")

            approvals, changed = self._approve(access, escrow.refund_approvals)
            if access.is_admin or self._both_parties_approved(negotiation, approvals):
                new_status = self._fire_transition(negotiation, "refund_escrow")
                refunded = escrow.outstanding_amount
                escrow.refunded_amount = escrow.refunded_amount + refunded
                self._append_ledger(
                    escrow, EscrowTransactionType.REFUND, refunded, actor_id, reason
                )
                escrow.refund_approvals = approvals
                escrow.status = EscrowStatus.REFUNDED.value
                await self._apply(
                    negotiation,
                    NegotiationEventType.ESCROW_REFUNDED,
                    actor=actor_id,
                    event_name="refund_escrow",
                    new_status=new_status,
                    payload={"refunded_amount": str(refunded), "reason": reason},
                )
                logger.info(
                    "escrow.refunded",
                    negotiation_id=negotiation_id,
                    amount=str(refunded),
                    by=actor_id,
                )
            elif changed:
                escrow.refund_approvals = approvals
                await self._apply(
                    negotiation,
                    NegotiationEventType.ESCROW_REFUND_APPROVED,
                    actor=actor_id,
                    event_name="refund_escrow",
                    payload={"approvals": approvals, "reason": reason},
                )
                logger.info("escrow.refund_approved", negotiation_id=negotiation_id, by=actor_id)

        return negotiation

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    async def complete_negotiation(
        self,
        negotiation_id: str,
        actor_id: str,
        is_admin: bool = False,
    ) -> Negotiation:
        """Close out a released deal. ESCROW_RELEASED -> COMPLETED."""
        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin)
            negotiation = access.negotiation
            new_status = self._fire_transition(negotiation, "complete")

            if negotiation.escrow_account is not None:
                negotiation.escrow_account.status = EscrowStatus.CLOSED.value

            if negotiation.premium_tier:
                await self._premium_repo.record(
                    user_id=negotiation.buyer_id,
                    event_type=PremiumConversionEventType.PREMIUM_NEGOTIATION_COMPLETED,
                    occurred_at=utcnow(),
                    negotiation_id=negotiation.id,
                    tier=negotiation.premium_tier,
                    metadata={"seller_id": negotiation.seller_id},
                )

            await self._apply(
                negotiation,
                NegotiationEventType.NEGOTIATION_COMPLETED,
                actor=actor_id,
                event_name="complete",
                new_status=new_status,
                payload={"premium_tier": negotiation.premium_tier},
            )

        logger.info("negotiation.completed", negotiation_id=negotiation_id, by=actor_id)
        return negotiation

    async def cancel_negotiation(
        self,
        negotiation_id: str,
        actor_id: str,
        is_admin: bool = False,
        reason: str | None = None,
    ) -> Negotiation:
        """Cancel before release. Outstanding escrow funds go back to the buyer."""
        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin)
            negotiation = access.negotiation
            new_status = self._fire_transition(negotiation, "cancel")

            refunded = Decimal("0")
            escrow = negotiation.escrow_account
            if escrow is not None:
                refunded = escrow.outstanding_amount
                if refunded > 0:
                    escrow.refunded_amount = escrow.refunded_amount + refunded
                    self._append_ledger(
                        escrow,
                        EscrowTransactionType.REFUND,
                        refunded,
                        actor_id,
                        reason or "negotiation_cancelled",
                    )
                    escrow.status = EscrowStatus.REFUNDED.value
                elif escrow.status == EscrowStatus.AWAITING_FUNDS.value:
                    escrow.status = EscrowStatus.CLOSED.value

            contract = negotiation.contract
            if contract is not None and contract.status != ContractStatus.SIGNED.value:
                contract.status = ContractStatus.VOID.value
                if contract.envelope_status is not None:
                    contract.envelope_status = EnvelopeStatus.VOID.value
                if contract.provider_envelope_id:
                    self._void_envelope_after_commit(contract.provider_envelope_id, reason)

            await self._apply(
                negotiation,
                NegotiationEventType.NEGOTIATION_CANCELLED,
                actor=actor_id,
                event_name="cancel",
                new_status=new_status,
                payload={"reason": reason, "refunded_amount": str(refunded)},
            )

        logger.info(
            "negotiation.cancelled",
            negotiation_id=negotiation_id,
            by=actor_id,
            refunded=str(refunded),
        )
        return negotiation

    # ------------------------------------------------------------------
    # Contract signatures (driven by the e-signature webhook)
    # ------------------------------------------------------------------

    async def mark_signature_requested(
        self,
        negotiation_id: str,
        contract_id: str,
        participant_id: str,
        participant_role: ParticipantRole,
        receipt: EnvelopeReceipt | None = None,
    ) -> DealContract:
        """Note that the provider issued the envelope to a participant.

        ``receipt`` carries the provider and envelope id when we issued the
        envelope ourselves.
        """
        async with atomic(self._session):
            access, contract = await self._load_contract(
                negotiation_id, contract_id, participant_id, participant_role
            )
            negotiation = access.negotiation
            self._guard(negotiation, "sign_contract")

            if contract.status == ContractStatus.DRAFT.value:
                contract.status = ContractStatus.PENDING_SIGNATURES.value
            if contract.envelope_status is None:
                contract.envelope_status = EnvelopeStatus.ISSUED.value
            if receipt is not None:
                contract.provider = receipt.provider
                contract.provider_envelope_id = receipt.envelope_id

            payload = {"contract_id": contract.id, "role": participant_role.value}
            if receipt is not None:
                payload["provider"] = receipt.provider
                payload["envelope_id"] = receipt.envelope_id
            await self._apply(
                negotiation,
                NegotiationEventType.CONTRACT_SIGNATURE_REQUESTED,
                actor=participant_id,
                event_name="sign_contract",
                payload=payload,
            )
        return contract

    async def record_participant_signature(
        self,
        negotiation_id: str,
        contract_id: str,
        participant_id: str,
        participant_role: ParticipantRole,
        signed_at: datetime | None = None,
    ) -> DealContract:
        """Record one participant's signature via the sign_contract self-transition.

        Once buyer and seller have both signed the contract becomes SIGNED.
        """
        signed_at = as_utc(signed_at) if signed_at else utcnow()

        async with atomic(self._session):
            access, contract = await self._load_contract(
                negotiation_id, contract_id, participant_id, participant_role
            )
            negotiation = access.negotiation
            new_status = self._fire_transition(negotiation, "sign_contract")

            states = dict(contract.participant_states or {})
            states[participant_role.value] = {
                "status": ParticipantSignatureStatus.SIGNED.value,
                "participant_id": participant_id,
                "signed_at": signed_at.isoformat(),
            }
            contract.participant_states = states
            if participant_role is ParticipantRole.BUYER:
                contract.buyer_signed_at = signed_at
            elif participant_role is ParticipantRole.SELLER:
                contract.seller_signed_at = signed_at

            if contract.buyer_signed_at and contract.seller_signed_at:
                contract.status = ContractStatus.SIGNED.value
                contract.envelope_status = EnvelopeStatus.COMPLETED.value
                contract.finalized_at = signed_at
                event_type = NegotiationEventType.CONTRACT_SIGNATURE_COMPLETED
            else:
                contract.status = ContractStatus.PENDING_SIGNATURES.value
                contract.envelope_status = EnvelopeStatus.PARTIALLY_SIGNED.value
                event_type = NegotiationEventType.CONTRACT_PARTICIPANT_SIGNED

            await self._apply(
                negotiation,
                event_type,
                actor=participant_id,
                event_name="sign_contract",
                new_status=new_status,
                payload={
                    "contract_id": contract.id,
                    "role": participant_role.value,
                    "signed_at": signed_at.isoformat(),
                    "contract_status": contract.status,
                },
            )

        logger.info(
            "contract.participant_signed",
            negotiation_id=negotiation_id,
            contract_id=contract_id,
            role=participant_role.value,
            contract_status=contract.status,
        )
        return contract

    async def record_signature_declined(
        self,
        negotiation_id: str,
        contract_id: str,
        participant_id: str,
        participant_role: ParticipantRole,
    ) -> DealContract:
        """Mark the contract rejected after a participant declined to sign."""
        async with atomic(self._session):
            access, contract = await self._load_contract(
                negotiation_id, contract_id, participant_id, participant_role
            )
            negotiation = access.negotiation
            self._guard(negotiation, "sign_contract")

            states = dict(contract.participant_states or {})
            states[participant_role.value] = {
                "status": ParticipantSignatureStatus.DECLINED.value,
                "participant_id": participant_id,
            }
            contract.participant_states = states
            contract.status = ContractStatus.REJECTED.value
            contract.envelope_status = EnvelopeStatus.FAILED.value
            contract.last_error = f"Signature declined by {participant_role.value}"

            await self._apply(
                negotiation,
                NegotiationEventType.CONTRACT_SIGNATURE_DECLINED,
                actor=participant_id,
                event_name="sign_contract",
                payload={"contract_id": contract.id, "role": participant_role.value},
            )

        logger.warning(
            "contract.signature_declined",
            negotiation_id=negotiation_id,
            contract_id=contract_id,
            role=participant_role.value,
        )
        return contract

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_negotiation(
        self,
        negotiation_id: str,
        viewer_id: str,
        is_admin: bool = False,
    ) -> NegotiationAccess:
        return await self._access.get_negotiation_with_access(
            negotiation_id, viewer_id, is_admin=is_admin
        )

    async def list_events(
        self,
        negotiation_id: str,
        viewer_id: str,
        is_admin: bool = False,
    ) -> list[NegotiationEvent]:
        """Get the audit trail."""
        await self._access.get_negotiation_with_access(negotiation_id, viewer_id, is_admin=is_admin)
        return await self._event_repo.get_by_negotiation(negotiation_id)

    async def load_contract(
        self,
        negotiation_id: str,
        contract_id: str,
        participant_id: str,
        participant_role: ParticipantRole,
    ) -> DealContract:
        """Lock the negotiation and return its contract, checking the participant's side."""
        _, contract = await self._load_contract(
            negotiation_id, contract_id, participant_id, participant_role
        )
        return contract

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load(self, negotiation_id: str, actor_id: str, is_admin: bool) -> NegotiationAccess:
        return await self._access.get_negotiation_with_access(
            negotiation_id, actor_id, is_admin=is_admin, for_update=True
        )

    async def _load_contract(
        self,
        negotiation_id: str,
        contract_id: str,
        participant_id: str,
        participant_role: ParticipantRole,
    ) -> tuple[NegotiationAccess, DealContract]:
        access = await self._load(
            negotiation_id,
            participant_id,
            is_admin=participant_role is ParticipantRole.ADMIN,
        )
        if participant_role is ParticipantRole.BUYER and not access.is_buyer:
            raise ForbiddenError("Participant is not the buyer of this negotiation")
        if participant_role is ParticipantRole.SELLER and not access.is_seller:
            raise ForbiddenError("Participant is not the seller of this negotiation")

        contract = access.negotiation.contract
        if contract is None or contract.id != contract_id:
            raise ContractNotFoundError(contract_id)
        return access, contract

    @staticmethod
    def _escrow_or_raise(negotiation: Negotiation, event_name: str) -> EscrowAccount:
        if negotiation.escrow_account is None:
            raise InvalidStateTransitionError(negotiation.status, event_name)
        return negotiation.escrow_account

    @staticmethod
    def _append_ledger(
        escrow: EscrowAccount,
        tx_type: EscrowTransactionType,
        amount: Decimal,
        actor: str,
        reference: str | None,
    ) -> None:
        if amount <= 0:
            return
        escrow.transactions.append(
            EscrowTransaction(
                type=tx_type.value,
                amount=amount,
                reference=reference,
                actor=actor,
                occurred_at=utcnow(),
            )
        )

    def _void_envelope_after_commit(self, envelope_id: str, reason: str | None) -> None:
        provider = self._esign_provider

        async def _void() -> None:
            await provider.void_envelope(envelope_id, reason=reason)

        after_commit(self._session, _void)

    @staticmethod
    def _approve(access: NegotiationAccess, current: list | None) -> tuple[list[str], bool]:
        """Add the viewer to an approval list. Returns the new list and whether it changed."""
        approvals = list(current or [])
        if access.viewer_id in approvals:
            return approvals, False
        approvals.append(access.viewer_id)
        return approvals, True

    @staticmethod
    def _both_parties_approved(negotiation: Negotiation, approvals: list[str]) -> bool:
        return negotiation.buyer_id in approvals and negotiation.seller_id in approvals

    def _guard(self, negotiation: Negotiation, event_name: str) -> None:
        """Check that ``event_name`` may fire without firing it."""
        if not NegotiationStateMachine(current_status=negotiation.status).is_allowed(event_name):
            raise InvalidStateTransitionError(negotiation.status, event_name)

    def _fire_transition(self, negotiation: Negotiation, event_name: str) -> str:
        """Validate and fire a state machine transition, returning the new status.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        sm = NegotiationStateMachine(current_status=negotiation.status)
        event_method = getattr(sm, event_name, None)
        if event_method is None:
            raise InvalidStateTransitionError(negotiation.status, event_name)
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(negotiation.status, event_name) from err
        return sm.status

    async def _apply(
        self,
        negotiation: Negotiation,
        event_type: NegotiationEventType,
        actor: str,
        event_name: str,
        new_status: str | None = None,
        payload: dict | None = None,
    ) -> None:
        """Write a change: status, version bump, audit row and queued domain event.

        The instance must not be touched once the flush failed: the session
        is unusable until the enclosing unit of work rolls back.
        """
        negotiation_id = negotiation.id
        old_status = negotiation.status
        if new_status is not None:
            negotiation.status = new_status
        negotiation.updated_at = utcnow()

        await self._record_event(negotiation, event_type, old_status, actor, payload)
        try:
            await self._session.flush()
        except StaleDataError as err:
            logger.warning(
                "negotiation.concurrent_modification",
                negotiation_id=negotiation_id,
                attempted=event_name,
            )
            raise ConcurrentTransitionError(negotiation_id, event_name) from err

    async def _record_event(
        self,
        negotiation: Negotiation,
        event_type: NegotiationEventType,
        old_status: str | None,
        actor: str,
        payload: dict | None = None,
    ) -> None:
        payload = payload or {}
        await self._event_repo.record(
            negotiation_id=negotiation.id,
            event_type=event_type,
            old_status=old_status,
            new_status=negotiation.status,
            actor=actor,
            metadata=payload,
        )
        publish_after_commit(
            self._session,
            self._publisher,
            NegotiationDomainEvent(
                type=event_type,
                negotiation_id=negotiation.id,
                triggered_by=actor,
                status=negotiation.status,
                payload=payload,
            ),
        )
