"""Negotiation Access Resolver.

The single gate every negotiation read or write passes through. It loads the
negotiation, decides whether the viewer may see it, and derives the
viewer-relative fields the services and API need (role, escrow funding
ratio, allowed events).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from negotiation_engine.domain.enums import ParticipantRole
from negotiation_engine.domain.exceptions import ForbiddenError, NegotiationNotFoundError
from negotiation_engine.domain.state_machine import NegotiationStateMachine
from negotiation_engine.infrastructure.database.repositories import NegotiationRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.infrastructure.database.orm_models import Negotiation, Offer


@dataclass(frozen=True)
class NegotiationAccess:
    """A negotiation as seen by one viewer."""

    negotiation: Negotiation
    viewer_id: str
    is_buyer: bool
    is_seller: bool
    is_admin: bool

    @property
    def is_party(self) -> bool:
        return self.is_buyer or self.is_seller

    @property
    def viewer_role(self) -> ParticipantRole:
        if self.is_buyer:
            return ParticipantRole.BUYER
        if self.is_seller:
            return ParticipantRole.SELLER
        return ParticipantRole.ADMIN

    @property
    def last_offer(self) -> Offer | None:
        return self.negotiation.last_offer

    @property
    def escrow_funded_ratio(self) -> Decimal | None:
        """funded / expected for the escrow account, None before acceptance."""
        escrow = self.negotiation.escrow_account
        if escrow is None or not escrow.expected_amount:
            return None
        return (escrow.funded_amount / escrow.expected_amount).quantize(Decimal("0.0001"))

    @property
    def outstanding_escrow(self) -> Decimal:
        escrow = self.negotiation.escrow_account
        if escrow is None:
            return Decimal("0")
        return escrow.outstanding_amount

    @property
    def allowed_events(self) -> list[str]:
        return NegotiationStateMachine(self.negotiation.status).get_allowed_events()

    def ensure_party(self) -> None:
        """Reject viewers acting on behalf of a side they are not on."""
        if not self.is_party:
            raise ForbiddenError("Only the buyer or the seller may perform this action")

    def ensure_counterparty(self) -> None:
        """Reject a party responding to their own latest offer."""
        self.ensure_party()
        last = self.last_offer
        if last is not None and last.author_id == self.viewer_id:
            raise ForbiddenError("A party cannot accept their own offer")


class NegotiationAccessResolver:
    """Loads negotiations on behalf of a viewer."""

    def __init__(self, session: AsyncSession) -> None:
        self._repo = NegotiationRepository(session)

    async def get_negotiation_with_access(
        self,
        negotiation_id: str,
        viewer_id: str,
        is_admin: bool = False,
        for_update: bool = False,
    ) -> NegotiationAccess:
        """Load a negotiation the viewer may see.

        Raises:
            NegotiationNotFoundError: No negotiation has this id.
            ForbiddenError: The viewer is neither a party nor an admin.
        """
        negotiation = await self._repo.get_by_id(negotiation_id, for_update=for_update)
        if negotiation is None:
            raise NegotiationNotFoundError(negotiation_id)

        is_buyer = negotiation.buyer_id == viewer_id
        is_seller = negotiation.seller_id == viewer_id
        if not (is_buyer or is_seller or is_admin):
            raise ForbiddenError()

        return NegotiationAccess(
            negotiation=negotiation,
            viewer_id=viewer_id,
            is_buyer=is_buyer,
            is_seller=is_seller,
            is_admin=is_admin,
        )
