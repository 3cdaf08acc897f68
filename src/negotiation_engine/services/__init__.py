"""Application services — use case orchestration."""

from negotiation_engine.services.access_service import (
    NegotiationAccess,
    NegotiationAccessResolver,
)
from negotiation_engine.services.contract_analytics_service import ContractIntentRecorder
from negotiation_engine.services.contract_revision_service import ContractRevisionService
from negotiation_engine.services.esign_webhook_service import ESignatureWebhookService
from negotiation_engine.services.negotiation_service import NegotiationService
from negotiation_engine.services.premium_metrics_service import PremiumMetricsService

__all__ = [
    "ContractIntentRecorder",
    "ContractRevisionService",
    "ESignatureWebhookService",
    "NegotiationAccess",
    "NegotiationAccessResolver",
    "NegotiationService",
    "PremiumMetricsService",
]
