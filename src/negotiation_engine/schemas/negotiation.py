"""Pydantic schemas for the Negotiation API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to keep the API and database layers apart.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from negotiation_engine.domain.enums import PremiumTier  # noqa: TC001

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class OpenNegotiationRequest(BaseModel):
    """Request body for a buyer opening a negotiation on a listing."""

    listing_id: str = Field(..., min_length=1, max_length=64)
    seller_id: str = Field(..., min_length=1, max_length=64)
    price: Decimal = Field(..., gt=0, decimal_places=2, examples=["1250.00"])
    quantity: int = Field(default=1, ge=1, le=100_000)
    currency: str | None = Field(default=None, min_length=3, max_length=3, examples=["EUR"])
    premium_tier: PremiumTier | None = None
    message: str | None = Field(default=None, max_length=5000)
    expires_at: datetime | None = Field(
        default=None,
        description="Response deadline; the SLA scan warns before and flags after it",
    )


class CounterOfferRequest(BaseModel):
    price: Decimal = Field(..., gt=0, decimal_places=2)
    quantity: int | None = Field(default=None, ge=1, le=100_000)
    message: str | None = Field(default=None, max_length=5000)


class AcceptOfferRequest(BaseModel):
    agreed_price: Decimal | None = Field(
        default=None,
        gt=0,
        description="Price the caller believes it is accepting; rejected if stale",
    )
    note: str | None = Field(default=None, max_length=2000)


class FundEscrowRequest(BaseModel):
    """Request body for recording a deposit into escrow."""

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    reference: str | None = Field(
        default=None,
        max_length=128,
        description="Payment provider reference for the deposit",
    )


class EscrowDecisionRequest(BaseModel):
    """Request body for approving a release or refund."""

    reason: str | None = Field(default=None, max_length=2000)


class CancelNegotiationRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sequence: int
    author_id: str
    offer_type: str
    price: Decimal
    quantity: int
    message: str | None
    created_at: datetime


class EscrowTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    amount: Decimal
    reference: str | None
    actor: str
    occurred_at: datetime


class EscrowAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    currency: str
    expected_amount: Decimal
    funded_amount: Decimal
    released_amount: Decimal
    refunded_amount: Decimal
    release_approvals: list[str]
    refund_approvals: list[str]
    transactions: list[EscrowTransactionResponse]


class DealContractResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    envelope_status: str | None
    provider: str | None
    provider_envelope_id: str | None
    participant_states: dict
    buyer_signed_at: datetime | None
    seller_signed_at: datetime | None
    finalized_at: datetime | None


class NegotiationResponse(BaseModel):
    """Response schema for a negotiation and everything it owns."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    status: str
    premium_tier: str | None
    currency: str
    agreed_price: Decimal | None
    agreed_quantity: int | None
    expires_at: datetime | None
    version: int
    offers: list[OfferResponse]
    escrow_account: EscrowAccountResponse | None
    contract: DealContractResponse | None
    created_at: datetime
    updated_at: datetime


class NegotiationDetailResponse(BaseModel):
    """A negotiation plus the fields derived for the requesting viewer."""

    negotiation: NegotiationResponse
    viewer_role: str
    escrow_funded_ratio: Decimal | None
    outstanding_escrow: Decimal
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )


class NegotiationEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    negotiation_id: str
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class SignContractResponse(BaseModel):
    role: str
    envelope_issued: bool
    completed: bool
    contract: DealContractResponse
