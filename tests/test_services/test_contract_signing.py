"""Tests for in-app contract signing through the e-signature provider."""

from __future__ import annotations

import pytest
from conftest import ADMIN, BUYER, OUTSIDER, SELLER, accepted_negotiation, open_negotiation

from negotiation_engine.domain.enums import ContractStatus, EnvelopeStatus, ParticipantRole
from negotiation_engine.domain.exceptions import ContractSignatureConflictError, ForbiddenError
from negotiation_engine.services.contract_analytics_service import ContractIntentRecorder
from negotiation_engine.services.contract_signing_service import (
    ContractSigningService,
    resolve_signature_role,
)
from negotiation_engine.services.esign_provider import (
    SIMULATED_PROVIDER_ID,
    EnvelopeReceipt,
    SimulatedESignatureProvider,
)


class CountingProvider(SimulatedESignatureProvider):
    def __init__(self) -> None:
        super().__init__()
        self.issued: list[str] = []
        self.signatures: list[tuple[str, str]] = []

    async def issue_envelope(self, negotiation_id, contract_id, participants, terms=None):
        receipt = await super().issue_envelope(negotiation_id, contract_id, participants, terms)
        self.issued.append(receipt.envelope_id)
        return receipt

    async def submit_signature(self, envelope_id, participant) -> EnvelopeReceipt:
        self.signatures.append((envelope_id, participant.role.value))
        return await super().submit_signature(envelope_id, participant)


@pytest.fixture
def provider() -> CountingProvider:
    return CountingProvider()


@pytest.fixture
def signing(session, publisher, provider) -> ContractSigningService:
    return ContractSigningService(session, publisher, provider)


class TestSignContract:
    @pytest.mark.asyncio
    async def test_first_signature_issues_envelope(self, session, service, signing, provider) -> None:
        negotiation = await accepted_negotiation(service)

        result = await signing.sign_contract(negotiation.id, BUYER)

        assert result.role is ParticipantRole.BUYER
        assert result.envelope_issued
        assert not result.completed
        assert result.contract.provider == SIMULATED_PROVIDER_ID
        assert result.contract.provider_envelope_id == provider.issued[0]
        assert result.contract.envelope_status == EnvelopeStatus.PARTIALLY_SIGNED
        assert provider.signatures == [(provider.issued[0], "BUYER")]

        rows = await ContractIntentRecorder(session).list_events(negotiation_id=negotiation.id)
        assert [r.event_type for r in rows] == ["ENVELOPE_ISSUED", "PARTICIPANT_SIGNED"]

    @pytest.mark.asyncio
    async def test_both_parties_complete_the_contract(
        self, session, service, signing, provider, publisher
    ) -> None:
        negotiation = await accepted_negotiation(service)
        await signing.sign_contract(negotiation.id, BUYER)

        result = await signing.sign_contract(negotiation.id, SELLER)

        assert not result.envelope_issued
        assert result.completed
        assert result.contract.status == ContractStatus.SIGNED
        assert len(provider.issued) == 1
        rows = await ContractIntentRecorder(session).list_events(negotiation_id=negotiation.id)
        assert sorted(r.event_type for r in rows) == [
            "ENVELOPE_COMPLETED",
            "ENVELOPE_ISSUED",
            "PARTICIPANT_SIGNED",
            "PARTICIPANT_SIGNED",
        ]
        assert publisher.types[-1] == "CONTRACT_SIGNATURE_COMPLETED"

    @pytest.mark.asyncio
    async def test_signed_contract_is_a_conflict(self, service, signing) -> None:
        negotiation = await accepted_negotiation(service)
        negotiation_id = negotiation.id
        await signing.sign_contract(negotiation_id, BUYER)
        await signing.sign_contract(negotiation_id, SELLER)

        with pytest.raises(ContractSignatureConflictError) as exc_info:
            await signing.sign_contract(negotiation_id, BUYER)
        assert exc_info.value.code == "CONTRACT_SIGNATURE_CONFLICT"

    @pytest.mark.asyncio
    async def test_signing_twice_is_a_conflict(self, service, signing) -> None:
        negotiation = await accepted_negotiation(service)
        negotiation_id = negotiation.id
        await signing.sign_contract(negotiation_id, BUYER)

        with pytest.raises(ContractSignatureConflictError):
            await signing.sign_contract(negotiation_id, BUYER)

    @pytest.mark.asyncio
    async def test_no_contract_before_acceptance(self, service, signing, provider) -> None:
        negotiation = await open_negotiation(service)

        with pytest.raises(ContractSignatureConflictError):
            await signing.sign_contract(negotiation.id, BUYER)
        assert provider.issued == []

    @pytest.mark.asyncio
    async def test_outsider_is_forbidden(self, service, signing) -> None:
        negotiation = await accepted_negotiation(service)
        with pytest.raises(ForbiddenError):
            await signing.sign_contract(negotiation.id, OUTSIDER)

    @pytest.mark.asyncio
    async def test_admin_signature_does_not_complete(self, service, signing) -> None:
        negotiation = await accepted_negotiation(service)

        result = await signing.sign_contract(
            negotiation.id, ADMIN, is_admin=True, intent=ParticipantRole.ADMIN
        )

        assert result.role is ParticipantRole.ADMIN
        assert result.contract.status == ContractStatus.PENDING_SIGNATURES
        assert result.contract.participant_states["ADMIN"]["status"] == "SIGNED"


class TestResolveSignatureRole:
    @pytest.mark.asyncio
    async def test_intent_must_match_a_held_role(self, service) -> None:
        negotiation = await accepted_negotiation(service)
        buyer_view = await service.get_negotiation(negotiation.id, BUYER)
        admin_buyer_view = await service.get_negotiation(negotiation.id, BUYER, is_admin=True)

        assert resolve_signature_role(buyer_view, ParticipantRole.SELLER) is ParticipantRole.BUYER
        assert resolve_signature_role(admin_buyer_view) is ParticipantRole.BUYER
        assert (
            resolve_signature_role(admin_buyer_view, ParticipantRole.ADMIN)
            is ParticipantRole.ADMIN
        )
