"""Atomic units of work over an AsyncSession.

``atomic`` is re-entrant: nested scopes join the outermost one, and only the
outermost scope commits or rolls back. Callbacks registered with
``after_commit`` run once the outermost scope committed and are discarded on
rollback. Services use them to publish domain events.

    async with atomic(session):
        ...
        after_commit(session, lambda: publish(event))
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from negotiation_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_DEPTH_KEY = "atomic_depth"
_CALLBACKS_KEY = "after_commit_callbacks"


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run the enclosed block as one transaction."""
    depth = session.info.get(_DEPTH_KEY, 0)
    session.info[_DEPTH_KEY] = depth + 1
    try:
        yield session
        if depth == 0:
            await session.commit()
    except BaseException:
        if depth == 0:
            session.info.pop(_CALLBACKS_KEY, None)
            await session.rollback()
        raise
    finally:
        session.info[_DEPTH_KEY] = depth

    if depth == 0:
        await _run_after_commit(session)


def after_commit(session: AsyncSession, callback: Callable[[], Awaitable[None]]) -> None:
    """Queue ``callback`` to run after the outermost ``atomic`` scope commits."""
    session.info.setdefault(_CALLBACKS_KEY, []).append(callback)


async def _run_after_commit(session: AsyncSession) -> None:
    callbacks = session.info.pop(_CALLBACKS_KEY, [])
    for callback in callbacks:
        try:
            await callback()
        except Exception:
            logger.exception("unit_of_work.after_commit_failed")
