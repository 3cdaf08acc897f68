"""Domain enumerations for the Negotiation Engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class NegotiationStatus(enum.StrEnum):
    """Lifecycle states of a negotiation.

    Transitions are enforced by the NegotiationStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    CREATED = "CREATED"
    COUNTERED = "COUNTERED"
    ACCEPTED = "ACCEPTED"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"


class OfferType(enum.StrEnum):
    INITIAL = "INITIAL"
    COUNTER = "COUNTER"
    FINAL = "FINAL"


class PremiumTier(enum.StrEnum):
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"
    CONCIERGE = "CONCIERGE"


class ParticipantRole(enum.StrEnum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class EscrowStatus(enum.StrEnum):
    """State of the escrow account attached to an accepted negotiation."""

    AWAITING_FUNDS = "AWAITING_FUNDS"
    FUNDED = "FUNDED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    CLOSED = "CLOSED"


class EscrowTransactionType(enum.StrEnum):
    FUND = "FUND"
    RELEASE = "RELEASE"
    REFUND = "REFUND"


class ContractStatus(enum.StrEnum):
    DRAFT = "DRAFT"
    PENDING_SIGNATURES = "PENDING_SIGNATURES"
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"
    VOID = "VOID"


class EnvelopeStatus(enum.StrEnum):
    """Status of the e-signature envelope as last reported by the provider."""

    ISSUED = "ISSUED"
    PARTIALLY_SIGNED = "PARTIALLY_SIGNED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    VOID = "VOID"


class ParticipantSignatureStatus(enum.StrEnum):
    PENDING = "PENDING"
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"


class RevisionStatus(enum.StrEnum):
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class CommentStatus(enum.StrEnum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class NegotiationEventType(enum.StrEnum):
    """Types of domain events published after a committed change.

    Every state transition publishes exactly one event. The same values are
    written to the negotiation_events audit table.
    """

    # Lifecycle events
    NEGOTIATION_CREATED = "NEGOTIATION_CREATED"
    NEGOTIATION_COUNTER_SUBMITTED = "NEGOTIATION_COUNTER_SUBMITTED"
    NEGOTIATION_ACCEPTED = "NEGOTIATION_ACCEPTED"
    NEGOTIATION_CANCELLED = "NEGOTIATION_CANCELLED"
    NEGOTIATION_COMPLETED = "NEGOTIATION_COMPLETED"

    # Response deadline events, written by the SLA scan job
    NEGOTIATION_SLA_WARNING = "NEGOTIATION_SLA_WARNING"
    NEGOTIATION_SLA_BREACHED = "NEGOTIATION_SLA_BREACHED"

    # Escrow events
    ESCROW_DEPOSIT_RECORDED = "ESCROW_DEPOSIT_RECORDED"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    ESCROW_RELEASE_APPROVED = "ESCROW_RELEASE_APPROVED"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    ESCROW_REFUND_APPROVED = "ESCROW_REFUND_APPROVED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"

    # Contract signature events
    CONTRACT_SIGNATURE_REQUESTED = "CONTRACT_SIGNATURE_REQUESTED"
    CONTRACT_PARTICIPANT_SIGNED = "CONTRACT_PARTICIPANT_SIGNED"
    CONTRACT_SIGNATURE_COMPLETED = "CONTRACT_SIGNATURE_COMPLETED"
    CONTRACT_SIGNATURE_DECLINED = "CONTRACT_SIGNATURE_DECLINED"

    # Contract revision events
    CONTRACT_REVISION_SUBMITTED = "CONTRACT_REVISION_SUBMITTED"
    CONTRACT_REVISION_STATUS_CHANGED = "CONTRACT_REVISION_STATUS_CHANGED"
    CONTRACT_REVISION_COMMENTED = "CONTRACT_REVISION_COMMENTED"
    CONTRACT_REVISION_COMMENT_RESOLVED = "CONTRACT_REVISION_COMMENT_RESOLVED"


class ContractIntentEventType(enum.StrEnum):
    """Analytics events recorded in the contract_intent_metrics table."""

    ENVELOPE_ISSUED = "ENVELOPE_ISSUED"
    PARTICIPANT_SIGNED = "PARTICIPANT_SIGNED"
    ENVELOPE_COMPLETED = "ENVELOPE_COMPLETED"
    ENVELOPE_DECLINED = "ENVELOPE_DECLINED"


class PremiumConversionEventType(enum.StrEnum):
    UPGRADE_CTA_VIEWED = "UPGRADE_CTA_VIEWED"
    TRIAL_STARTED = "TRIAL_STARTED"
    UPGRADE_CONFIRMED = "UPGRADE_CONFIRMED"
    PREMIUM_NEGOTIATION_COMPLETED = "PREMIUM_NEGOTIATION_COMPLETED"


class ForecastConfidence(enum.StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class JobRunStatus(enum.StrEnum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
