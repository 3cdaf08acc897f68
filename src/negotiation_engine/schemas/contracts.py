"""Pydantic schemas for contract revisions, analytics input and e-signature webhooks."""

from __future__ import annotations

import enum
from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from negotiation_engine.domain.enums import (  # noqa: TC001
    ContractIntentEventType,
    ParticipantRole,
    RevisionStatus,
)

# ---------------------------------------------------------------------------
# Contract revisions
# ---------------------------------------------------------------------------


class CreateRevisionRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=200_000)
    summary: str | None = Field(default=None, max_length=5000)


class UpdateRevisionStatusRequest(BaseModel):
    status: RevisionStatus


class CreateCommentRequest(BaseModel):
    body: str = Field(..., max_length=10_000)
    anchor: dict[str, Any] | None = Field(
        default=None,
        description='Client anchor, e.g. {"clause_index": 3, "start": 10, "end": 42}',
    )


class RevisionCommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    revision_id: str
    author_id: str
    body: str
    anchor: dict | None
    status: str
    resolved_by: str | None
    resolved_at: datetime | None
    created_at: datetime


class ContractRevisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    negotiation_id: str
    contract_id: str
    version: int
    summary: str | None
    body: str
    fingerprint: str
    status: str
    is_current: bool
    created_by: str
    created_at: datetime
    comments: list[RevisionCommentResponse] = []


class ClauseDiffSegmentResponse(BaseModel):
    type: str
    base_index: int | None
    target_index: int | None
    base_text: str | None
    target_text: str | None


class ClauseDiffSummaryResponse(BaseModel):
    added: int
    removed: int
    modified: int
    unchanged: int


class RevisionComparisonResponse(BaseModel):
    base_revision_id: str
    target_revision_id: str
    base_version: int
    target_version: int
    segments: list[ClauseDiffSegmentResponse]
    summary: ClauseDiffSummaryResponse
    diff_fingerprint: str


# ---------------------------------------------------------------------------
# Contract intent analytics
# ---------------------------------------------------------------------------


def _aliases(snake: str, camel: str) -> AliasChoices:
    return AliasChoices(snake, camel)


class ContractIntentEventInput(BaseModel):
    """Validated input of ContractIntentRecorder.record_contract_intent_event."""

    model_config = ConfigDict(populate_by_name=True)

    negotiation_id: str = Field(
        ..., min_length=1, validation_alias=_aliases("negotiation_id", "negotiationId")
    )
    contract_id: str = Field(
        ..., min_length=1, validation_alias=_aliases("contract_id", "contractId")
    )
    event_type: ContractIntentEventType = Field(
        ..., validation_alias=_aliases("event_type", "eventType")
    )
    participant_role: ParticipantRole | None = Field(
        default=None, validation_alias=_aliases("participant_role", "participantRole")
    )
    metadata: dict[str, Any] | None = None
    occurred_at: datetime | None = Field(
        default=None, validation_alias=_aliases("occurred_at", "occurredAt")
    )
    idempotency_key: str | None = Field(
        default=None,
        max_length=80,
        validation_alias=_aliases("idempotency_key", "idempotencyKey"),
    )


# ---------------------------------------------------------------------------
# E-signature webhook
# ---------------------------------------------------------------------------


class ProviderSignatureStatus(enum.StrEnum):
    """Statuses the e-signature provider reports. Anything else is rejected."""

    ISSUED = "ISSUED"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    SIGNED = "SIGNED"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"


class WebhookParticipant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    role: ParticipantRole

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class ESignatureWebhookPayload(BaseModel):
    """Inbound delivery from the e-signature provider."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    negotiation_id: str = Field(
        ..., min_length=1, validation_alias=_aliases("negotiation_id", "negotiationId")
    )
    contract_id: str = Field(
        ..., min_length=1, validation_alias=_aliases("contract_id", "contractId")
    )
    participant: WebhookParticipant
    status: ProviderSignatureStatus
    signed_at: datetime | None = Field(
        default=None, validation_alias=_aliases("signed_at", "signedAt")
    )

    @field_validator("status", mode="before")
    @classmethod
    def _upper_status(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# In-app signing
# ---------------------------------------------------------------------------


class SignContractRequest(BaseModel):
    intent: ParticipantRole | None = Field(
        default=None,
        description="Role to sign as when the viewer holds more than one",
    )

    @field_validator("intent", mode="before")
    @classmethod
    def _upper_intent(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class WebhookAckResponse(BaseModel):
    ok: bool = True
    duplicate: bool = False
