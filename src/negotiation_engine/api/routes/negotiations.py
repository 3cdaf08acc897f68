"""Negotiation REST API routes.

These endpoints cover the bargaining, escrow and completion lifecycle. The
viewer comes from the X-User-Id / X-User-Role headers; every call goes
through NegotiationService, which enforces access and the state machine.

Routes:
    POST   /api/v1/negotiations                        — Open a negotiation
    GET    /api/v1/negotiations/{id}                   — Negotiation + viewer fields
    GET    /api/v1/negotiations/{id}/events            — Audit trail
    POST   /api/v1/negotiations/{id}/offers            — Counter offer
    POST   /api/v1/negotiations/{id}/accept            — Accept latest offer
    POST   /api/v1/negotiations/{id}/escrow/fund       — Record a deposit
    POST   /api/v1/negotiations/{id}/escrow/release    — Approve / execute release
    POST   /api/v1/negotiations/{id}/escrow/refund     — Approve / execute refund
    POST   /api/v1/negotiations/{id}/complete          — Complete a released deal
    POST   /api/v1/negotiations/{id}/cancel            — Cancel
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved at runtime by FastAPI

from negotiation_engine.api.deps import Viewer, get_db_session, get_publisher, get_viewer
from negotiation_engine.domain.events import EventPublisher  # noqa: TC001
from negotiation_engine.logging_config import get_logger
from negotiation_engine.schemas.negotiation import (
    AcceptOfferRequest,
    CancelNegotiationRequest,
    CounterOfferRequest,
    EscrowDecisionRequest,
    FundEscrowRequest,
    NegotiationDetailResponse,
    NegotiationEventResponse,
    NegotiationResponse,
    OpenNegotiationRequest,
)
from negotiation_engine.services.negotiation_service import NegotiationService

router = APIRouter(prefix="/api/v1/negotiations", tags=["Negotiations"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Open / read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=NegotiationResponse,
    status_code=201,
    summary="Open a negotiation on a listing",
)
async def open_negotiation(
    request: OpenNegotiationRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> NegotiationResponse:
    """The viewer opens the negotiation as the buyer with an initial offer."""
    svc = NegotiationService(session, publisher)
    negotiation = await svc.open_negotiation(
        listing_id=request.listing_id,
        buyer_id=viewer.user_id,
        seller_id=request.seller_id,
        price=request.price,
        quantity=request.quantity,
        currency=request.currency,
        premium_tier=request.premium_tier,
        message=request.message,
        expires_at=request.expires_at,
    )
    return NegotiationResponse.model_validate(negotiation)


@router.get(
    "/{negotiation_id}",
    response_model=NegotiationDetailResponse,
    summary="Get a negotiation as seen by the viewer",
)
async def get_negotiation(
    negotiation_id: str,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
) -> NegotiationDetailResponse:
    svc = NegotiationService(session)
    access = await svc.get_negotiation(negotiation_id, viewer.user_id, is_admin=viewer.is_admin)
    return NegotiationDetailResponse(
        negotiation=NegotiationResponse.model_validate(access.negotiation),
        viewer_role=access.viewer_role.value,
        escrow_funded_ratio=access.escrow_funded_ratio,
        outstanding_escrow=access.outstanding_escrow,
        allowed_events=access.allowed_events,
    )


@router.get(
    "/{negotiation_id}/events",
    response_model=list[NegotiationEventResponse],
    summary="Get negotiation audit trail",
)
async def get_negotiation_events(
    negotiation_id: str,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
) -> list[NegotiationEventResponse]:
    """Get the complete audit trail, oldest first."""
    svc = NegotiationService(session)
    events = await svc.list_events(negotiation_id, viewer.user_id, is_admin=viewer.is_admin)
    return [NegotiationEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Bargaining
# ---------------------------------------------------------------------------


@router.post(
    "/{negotiation_id}/offers",
    response_model=NegotiationResponse,
    status_code=201,
    summary="Submit a counter offer",
)
async def submit_counter_offer(
    negotiation_id: str,
    request: CounterOfferRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> NegotiationResponse:
    """CREATED/COUNTERED -> COUNTERED."""
    svc = NegotiationService(session, publisher)
    negotiation = await svc.submit_counter_offer(
        negotiation_id,
        viewer.user_id,
        price=request.price,
        quantity=request.quantity,
        message=request.message,
        is_admin=viewer.is_admin,
    )
    return NegotiationResponse.model_validate(negotiation)


@router.post(
    "/{negotiation_id}/accept",
    response_model=NegotiationResponse,
    summary="Accept the latest offer",
)
async def accept_offer(
    negotiation_id: str,
    request: AcceptOfferRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> NegotiationResponse:
    """CREATED/COUNTERED -> ACCEPTED. Opens escrow and drafts the contract."""
    svc = NegotiationService(session, publisher)
    negotiation = await svc.accept_offer(
        negotiation_id,
        viewer.user_id,
        is_admin=viewer.is_admin,
        agreed_price=request.agreed_price,
        note=request.note,
    )
    return NegotiationResponse.model_validate(negotiation)


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


@router.post(
    "/{negotiation_id}/escrow/fund",
    response_model=NegotiationResponse,
    summary="Record an escrow deposit",
)
async def fund_escrow(
    negotiation_id: str,
    request: FundEscrowRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> NegotiationResponse:
    """Partial deposits accumulate; the full amount moves ACCEPTED -> ESCROW_FUNDED."""
    svc = NegotiationService(session, publisher)
    negotiation = await svc.fund_escrow(
        negotiation_id,
        viewer.user_id,
        amount=request.amount,
        reference=request.reference,
        is_admin=viewer.is_admin,
    )
    return NegotiationResponse.model_validate(negotiation)


@router.post(
    "/{negotiation_id}/escrow/release",
    response_model=NegotiationResponse,
    summary="Approve or execute an escrow release",
)
async def release_escrow(
    negotiation_id: str,
    request: EscrowDecisionRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> NegotiationResponse:
    svc = NegotiationService(session, publisher)
    negotiation = await svc.release_escrow(
        negotiation_id, viewer.user_id, is_admin=viewer.is_admin, reason=request.reason
    )
    return NegotiationResponse.model_validate(negotiation)


@router.post(
    "/{negotiation_id}/escrow/refund",
    response_model=NegotiationResponse,
    summary="Approve or execute an escrow refund",
)
async def refund_escrow(
    negotiation_id: str,
    request: EscrowDecisionRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> NegotiationResponse:
    svc = NegotiationService(session, publisher)
    negotiation = await svc.refund_escrow(
        negotiation_id, viewer.user_id, is_admin=viewer.is_admin, reason=request.reason
    )
    return NegotiationResponse.model_validate(negotiation)


# ---------------------------------------------------------------------------
# Terminal
# ---------------------------------------------------------------------------


@router.post(
    "/{negotiation_id}/complete",
    response_model=NegotiationResponse,
    summary="Complete a released deal",
)
async def complete_negotiation(
    negotiation_id: str,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> NegotiationResponse:
    """ESCROW_RELEASED -> COMPLETED."""
    svc = NegotiationService(session, publisher)
    negotiation = await svc.complete_negotiation(
        negotiation_id, viewer.user_id, is_admin=viewer.is_admin
    )
    return NegotiationResponse.model_validate(negotiation)


@router.post(
    "/{negotiation_id}/cancel",
    response_model=NegotiationResponse,
    summary="Cancel a negotiation",
)
async def cancel_negotiation(
    negotiation_id: str,
    request: CancelNegotiationRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> NegotiationResponse:
    """Cancel before release. Outstanding escrow funds are refunded."""
    svc = NegotiationService(session, publisher)
    negotiation = await svc.cancel_negotiation(
        negotiation_id, viewer.user_id, is_admin=viewer.is_admin, reason=request.reason
    )
    logger.info("api.negotiation_cancelled", negotiation_id=negotiation_id)
    return NegotiationResponse.model_validate(negotiation)
