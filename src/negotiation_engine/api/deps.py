"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the requesting viewer, the event publisher, the e-signature provider, Redis
and the job scheduler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Depends, Header, Request

from negotiation_engine.domain.enums import ParticipantRole
from negotiation_engine.domain.exceptions import ForbiddenError
from negotiation_engine.infrastructure.database.engine import get_async_session
from negotiation_engine.infrastructure.event_publisher import get_event_publisher
from negotiation_engine.infrastructure.redis_client import get_optional_redis
from negotiation_engine.services.esign_provider import get_esign_provider

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.events import EventPublisher
    from negotiation_engine.orchestration.scheduler import JobScheduler
    from negotiation_engine.services.esign_provider import ESignatureProvider


@dataclass(frozen=True)
class Viewer:
    """The user a request acts for, as asserted by the upstream auth layer."""

    user_id: str
    is_admin: bool = False


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


async def get_viewer(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Viewer:
    """Identify the viewer from the X-User-Id / X-User-Role headers."""
    if not x_user_id or not x_user_id.strip():
        raise ForbiddenError("X-User-Id header is required")
    is_admin = (x_user_role or "").strip().upper() == ParticipantRole.ADMIN.value
    return Viewer(user_id=x_user_id.strip(), is_admin=is_admin)


async def get_admin_viewer(viewer: Viewer = Depends(get_viewer)) -> Viewer:
    if not viewer.is_admin:
        raise ForbiddenError("Admin role required")
    return viewer


def get_publisher() -> EventPublisher:
    """Provide the process-wide event publisher."""
    return get_event_publisher()


def get_signature_provider() -> ESignatureProvider:
    """Provide the e-signature provider used for in-app signing."""
    return get_esign_provider()


def get_redis_client() -> aioredis.Redis | None:
    """Provide the Redis client, or None when Redis is unavailable."""
    return get_optional_redis()


def get_scheduler(request: Request) -> JobScheduler:
    """Provide the scheduler created during application startup."""
    return request.app.state.scheduler
