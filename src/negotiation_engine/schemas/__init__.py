"""Pydantic API schemas."""

from negotiation_engine.schemas.contracts import (
    ContractIntentEventInput,
    ContractRevisionResponse,
    ESignatureWebhookPayload,
    RevisionCommentResponse,
    RevisionComparisonResponse,
    WebhookAckResponse,
)
from negotiation_engine.schemas.negotiation import (
    NegotiationDetailResponse,
    NegotiationEventResponse,
    NegotiationResponse,
    OpenNegotiationRequest,
)
from negotiation_engine.schemas.operations import (
    HealthResponse,
    PremiumMetricsResponse,
    SchedulerHealthResponse,
)

__all__ = [
    "ContractIntentEventInput",
    "ContractRevisionResponse",
    "ESignatureWebhookPayload",
    "RevisionCommentResponse",
    "RevisionComparisonResponse",
    "WebhookAckResponse",
    "NegotiationDetailResponse",
    "NegotiationEventResponse",
    "NegotiationResponse",
    "OpenNegotiationRequest",
    "HealthResponse",
    "PremiumMetricsResponse",
    "SchedulerHealthResponse",
]
