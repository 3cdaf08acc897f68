"""Tests for the negotiation access resolver."""

from __future__ import annotations

from decimal import Decimal

import pytest
from conftest import ADMIN, BUYER, OUTSIDER, SELLER, accepted_negotiation, open_negotiation

from negotiation_engine.domain.enums import ParticipantRole
from negotiation_engine.domain.exceptions import ForbiddenError, NegotiationNotFoundError
from negotiation_engine.services.access_service import NegotiationAccessResolver


class TestResolveAccess:
    @pytest.mark.asyncio
    async def test_buyer_view(self, session, service) -> None:
        negotiation = await open_negotiation(service)
        access = await NegotiationAccessResolver(session).get_negotiation_with_access(
            negotiation.id, BUYER
        )
        assert access.is_buyer and not access.is_seller
        assert access.viewer_role is ParticipantRole.BUYER
        assert access.escrow_funded_ratio is None
        assert access.outstanding_escrow == Decimal("0")
        assert set(access.allowed_events) == {"counter", "accept", "cancel"}

    @pytest.mark.asyncio
    async def test_admin_sees_everything(self, session, service) -> None:
        negotiation = await open_negotiation(service)
        access = await NegotiationAccessResolver(session).get_negotiation_with_access(
            negotiation.id, ADMIN, is_admin=True
        )
        assert access.viewer_role is ParticipantRole.ADMIN
        assert not access.is_party

    @pytest.mark.asyncio
    async def test_outsider_is_forbidden(self, session, service) -> None:
        negotiation = await open_negotiation(service)
        with pytest.raises(ForbiddenError):
            await NegotiationAccessResolver(session).get_negotiation_with_access(
                negotiation.id, OUTSIDER
            )

    @pytest.mark.asyncio
    async def test_unknown_negotiation(self, session) -> None:
        with pytest.raises(NegotiationNotFoundError):
            await NegotiationAccessResolver(session).get_negotiation_with_access(
                "missing", BUYER
            )

    @pytest.mark.asyncio
    async def test_funded_ratio_after_partial_deposit(self, session, service) -> None:
        negotiation = await accepted_negotiation(service)
        await service.fund_escrow(negotiation.id, BUYER, amount=Decimal("50.00"))

        access = await NegotiationAccessResolver(session).get_negotiation_with_access(
            negotiation.id, SELLER
        )
        assert access.escrow_funded_ratio == Decimal("0.2500")
        assert access.outstanding_escrow == Decimal("50.00")


class TestCounterpartyRule:
    @pytest.mark.asyncio
    async def test_author_of_latest_offer_cannot_accept(self, session, service) -> None:
        negotiation = await open_negotiation(service)
        access = await NegotiationAccessResolver(session).get_negotiation_with_access(
            negotiation.id, BUYER
        )
        with pytest.raises(ForbiddenError):
            access.ensure_counterparty()

    @pytest.mark.asyncio
    async def test_admin_is_not_a_party(self, session, service) -> None:
        negotiation = await open_negotiation(service)
        access = await NegotiationAccessResolver(session).get_negotiation_with_access(
            negotiation.id, ADMIN, is_admin=True
        )
        with pytest.raises(ForbiddenError):
            access.ensure_party()
