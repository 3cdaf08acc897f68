"""Inbound integration webhooks.

Routes:
    POST   /api/v1/integrations/esign/webhooks — E-signature provider deliveries

The body is taken as raw JSON so that a malformed delivery is reported as
INVALID_WEBHOOK rather than a generic request validation error.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from redis.asyncio import Redis  # noqa: TC002 - resolved at runtime by FastAPI
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from negotiation_engine.api.deps import get_db_session, get_publisher, get_redis_client
from negotiation_engine.domain.events import EventPublisher  # noqa: TC001
from negotiation_engine.schemas.contracts import WebhookAckResponse
from negotiation_engine.services.esign_webhook_service import ESignatureWebhookService

router = APIRouter(prefix="/api/v1/integrations", tags=["Integrations"])


@router.post(
    "/esign/webhooks",
    response_model=WebhookAckResponse,
    summary="Receive an e-signature provider delivery",
)
async def esign_webhook(
    payload: Any = Body(default=None),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
    redis: Redis | None = Depends(get_redis_client),
) -> WebhookAckResponse:
    """Apply a delivery. Redeliveries are acknowledged with duplicate=true."""
    svc = ESignatureWebhookService(session, publisher, redis=redis)
    outcome = await svc.handle(payload)
    return WebhookAckResponse(ok=outcome.ok, duplicate=outcome.duplicate)
