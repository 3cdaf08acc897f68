"""Domain layer — pure business logic with zero framework dependencies."""

from negotiation_engine.domain.clause_diff import (
    ClauseDiffSegment,
    ClauseDiffSummary,
    ClauseDiffType,
    compute_clause_diff,
    summarize_clause_diff,
)
from negotiation_engine.domain.enums import (
    NegotiationEventType,
    NegotiationStatus,
    ParticipantRole,
    PremiumTier,
)
from negotiation_engine.domain.events import EventPublisher, NegotiationDomainEvent
from negotiation_engine.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    NegotiationEngineError,
    NotFoundError,
    ValidationFailedError,
)
from negotiation_engine.domain.fingerprint import (
    build_diff_fingerprint,
    compute_negotiation_contract_fingerprint,
)
from negotiation_engine.domain.forecasts import (
    build_bucketed_series,
    detect_latest_anomaly,
    forecast_next_value,
)
from negotiation_engine.domain.state_machine import (
    NegotiationStateMachine,
    validate_transition,
)

__all__ = [
    "ClauseDiffSegment",
    "ClauseDiffSummary",
    "ClauseDiffType",
    "compute_clause_diff",
    "summarize_clause_diff",
    "NegotiationEventType",
    "NegotiationStatus",
    "ParticipantRole",
    "PremiumTier",
    "EventPublisher",
    "NegotiationDomainEvent",
    "ForbiddenError",
    "InvalidStateTransitionError",
    "NegotiationEngineError",
    "NotFoundError",
    "ValidationFailedError",
    "build_diff_fingerprint",
    "compute_negotiation_contract_fingerprint",
    "build_bucketed_series",
    "detect_latest_anomaly",
    "forecast_next_value",
    "NegotiationStateMachine",
    "validate_transition",
]
