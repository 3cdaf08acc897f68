"""Database infrastructure — engine, ORM models, repositories and units of work."""

from negotiation_engine.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from negotiation_engine.infrastructure.database.orm_models import (
    Base,
    ContractIntentMetric,
    ContractRevision,
    DealContract,
    EscrowAccount,
    Negotiation,
    NegotiationEvent,
    Offer,
    PremiumConversionEvent,
    RevisionComment,
    SchedulerJob,
)
from negotiation_engine.infrastructure.database.unit_of_work import after_commit, atomic

__all__ = [
    "Base",
    "ContractIntentMetric",
    "ContractRevision",
    "DealContract",
    "EscrowAccount",
    "Negotiation",
    "NegotiationEvent",
    "Offer",
    "PremiumConversionEvent",
    "RevisionComment",
    "SchedulerJob",
    "after_commit",
    "atomic",
    "close_db",
    "get_async_session",
    "get_session_factory",
    "init_db",
]
