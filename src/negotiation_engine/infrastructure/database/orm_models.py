"""SQLAlchemy 2.0 ORM models for the Negotiation Engine.

Tables:
    1. negotiations              — Buyer/seller negotiations over a listing.
    2. offers                    — Append-only offer history per negotiation.
    3. escrow_accounts           — Funds held for an accepted negotiation (1:1).
    4. escrow_transactions       — Append-only ledger of escrow movements.
    5. deal_contracts            — Signature state of the deal contract (1:1).
    6. contract_revisions        — Versioned contract text snapshots.
    7. revision_comments         — Review comments anchored to a revision.
    8. negotiation_events        — Append-only audit log of every change.
    9. contract_intent_metrics   — Append-only e-signature analytics.
   10. premium_conversion_events — Premium funnel analytics.
   11. scheduler_jobs            — Registered jobs and their run state.
   12. job_execution_logs        — One row per job execution.

Design decisions:
    - UUID strings as primary keys (portable across PostgreSQL and SQLite).
    - Decimal for money (no floating point rounding errors).
    - negotiations.version is the mapper's version_id_col: every UPDATE checks
      and bumps it, so concurrent writers cannot both commit a transition.
    - Analytics tables reference negotiations by plain id (no foreign key) so
      they survive deletion of the negotiation.
    - JSONB on PostgreSQL, JSON elsewhere.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(18, 2)


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. negotiations
# ---------------------------------------------------------------------------
class Negotiation(Base):
    """A negotiation between a buyer and a seller over one listing."""

    __tablename__ = "negotiations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)

    # --- Participants ---
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="CREATED",
        comment="Current lifecycle state (guarded by NegotiationStateMachine)",
    )
    premium_tier: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        default=None,
        comment="PremiumTier of the negotiation, null for free negotiations",
    )

    # --- Agreed terms (set on acceptance) ---
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    agreed_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    agreed_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Response deadline watched by the SLA scan job",
    )

    # --- Optimistic lock ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    # --- Relationships ---
    offers: Mapped[list[Offer]] = relationship(
        "Offer",
        back_populates="negotiation",
        cascade="all, delete-orphan",
        order_by="Offer.sequence.asc()",
        lazy="selectin",
    )
    escrow_account: Mapped[EscrowAccount | None] = relationship(
        "EscrowAccount",
        back_populates="negotiation",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )
    contract: Mapped[DealContract | None] = relationship(
        "DealContract",
        back_populates="negotiation",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('CREATED', 'COUNTERED', 'ACCEPTED', 'ESCROW_FUNDED', "
            "'ESCROW_RELEASED', 'COMPLETED', 'CANCELLED', 'ESCROW_REFUNDED')",
            name="ck_negotiation_valid_status",
        ),
        CheckConstraint("buyer_id <> seller_id", name="ck_negotiation_distinct_parties"),
        Index("idx_negotiation_status", "status"),
        Index("idx_negotiation_buyer", "buyer_id"),
        Index("idx_negotiation_seller", "seller_id"),
        Index("idx_negotiation_listing", "listing_id"),
        Index("idx_negotiation_expires_at", "expires_at"),
    )

    @property
    def last_offer(self) -> Offer | None:
        return self.offers[-1] if self.offers else None

    def __repr__(self) -> str:
        return (
            f"<Negotiation id={self.id} status={self.status} "
            f"buyer={self.buyer_id} seller={self.seller_id} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 2. offers
# ---------------------------------------------------------------------------
class Offer(Base):
    """An immutable offer. Rows are only ever inserted."""

    __tablename__ = "offers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    negotiation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("negotiations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based submission order within the negotiation",
    )
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    offer_type: Mapped[str] = mapped_column(String(10), nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    negotiation: Mapped[Negotiation] = relationship("Negotiation", back_populates="offers")

    __table_args__ = (
        UniqueConstraint("negotiation_id", "sequence", name="uq_offer_sequence"),
        CheckConstraint("price > 0", name="ck_offer_positive_price"),
        CheckConstraint("quantity > 0", name="ck_offer_positive_quantity"),
    )

    def __repr__(self) -> str:
        return f"<Offer #{self.sequence} {self.offer_type} by={self.author_id} price={self.price}>"


# ---------------------------------------------------------------------------
# 3. escrow_accounts
# ---------------------------------------------------------------------------
class EscrowAccount(Base):
    """Funds held against an accepted negotiation."""

    __tablename__ = "escrow_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    negotiation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("negotiations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="AWAITING_FUNDS")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    expected_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    funded_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    released_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    refunded_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    release_approvals: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Party ids that approved releasing the funds",
    )
    refund_approvals: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Party ids that approved refunding the funds",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    negotiation: Mapped[Negotiation] = relationship(
        "Negotiation", back_populates="escrow_account"
    )
    transactions: Mapped[list[EscrowTransaction]] = relationship(
        "EscrowTransaction",
        back_populates="escrow_account",
        cascade="all, delete-orphan",
        order_by="EscrowTransaction.occurred_at.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("expected_amount > 0", name="ck_escrow_positive_expected"),
        CheckConstraint(
            "funded_amount >= 0 AND funded_amount <= expected_amount",
            name="ck_escrow_funded_bounds",
        ),
        CheckConstraint(
            "released_amount + refunded_amount <= funded_amount",
            name="ck_escrow_payout_bounds",
        ),
    )

    @property
    def outstanding_amount(self) -> Decimal:
        return self.funded_amount - self.released_amount - self.refunded_amount

    def __repr__(self) -> str:
        return (
            f"<EscrowAccount negotiation={self.negotiation_id} status={self.status} "
            f"funded={self.funded_amount}/{self.expected_amount}>"
        )


# ---------------------------------------------------------------------------
# 4. escrow_transactions (Append-Only Ledger)
# ---------------------------------------------------------------------------
class EscrowTransaction(Base):
    """One movement of escrowed money. Rows are only ever inserted."""

    __tablename__ = "escrow_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    escrow_account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("escrow_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="EscrowTransactionType value",
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reference: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Payment reference or the reason for a payout",
    )
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    escrow_account: Mapped[EscrowAccount] = relationship(
        "EscrowAccount", back_populates="transactions"
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_escrow_tx_positive_amount"),
        CheckConstraint(
            "type IN ('FUND', 'RELEASE', 'REFUND')",
            name="ck_escrow_tx_valid_type",
        ),
        Index("idx_escrow_tx_account", "escrow_account_id"),
    )

    def __repr__(self) -> str:
        return f"<EscrowTransaction {self.type} {self.amount} ref={self.reference}>"


# ---------------------------------------------------------------------------
# 5. deal_contracts
# ---------------------------------------------------------------------------
class DealContract(Base):
    """Signature state of the contract backing an accepted negotiation."""

    __tablename__ = "deal_contracts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    negotiation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("negotiations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    envelope_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    provider: Mapped[str | None] = mapped_column(String(40), nullable=True)
    provider_envelope_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Envelope id assigned by the e-signature provider on issuance",
    )
    participant_states: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment='Per role signature state, e.g. {"BUYER": {"status": "SIGNED", ...}}',
    )
    draft_terms: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    buyer_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    seller_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    negotiation: Mapped[Negotiation] = relationship("Negotiation", back_populates="contract")

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING_SIGNATURES', 'SIGNED', 'REJECTED', 'VOID')",
            name="ck_contract_valid_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<DealContract id={self.id} status={self.status} envelope={self.envelope_status}>"


# ---------------------------------------------------------------------------
# 6. contract_revisions / 7. revision_comments
# ---------------------------------------------------------------------------
class ContractRevision(Base):
    """A versioned snapshot of contract text."""

    __tablename__ = "contract_revisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    negotiation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("negotiations.id", ondelete="CASCADE"),
        nullable=False,
    )
    contract_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("deal_contracts.id", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    fingerprint: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="compute_negotiation_contract_fingerprint(body, summary)",
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    comments: Mapped[list[RevisionComment]] = relationship(
        "RevisionComment",
        back_populates="revision",
        cascade="all, delete-orphan",
        order_by="RevisionComment.created_at.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("contract_id", "version", name="uq_revision_version"),
        CheckConstraint(
            "status IN ('DRAFT', 'IN_REVIEW', 'ACCEPTED', 'REJECTED')",
            name="ck_revision_valid_status",
        ),
        Index("idx_revision_negotiation", "negotiation_id"),
        Index("idx_revision_fingerprint", "fingerprint"),
    )

    def __repr__(self) -> str:
        return f"<ContractRevision v{self.version} status={self.status} current={self.is_current}>"


class RevisionComment(Base):
    __tablename__ = "revision_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    revision_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("contract_revisions.id", ondelete="CASCADE"),
        nullable=False,
    )
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    anchor: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Opaque client anchor, e.g. clause index and character range",
    )
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="OPEN")
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    revision: Mapped[ContractRevision] = relationship(
        "ContractRevision", back_populates="comments"
    )

    __table_args__ = (Index("idx_comment_revision", "revision_id"),)


# ---------------------------------------------------------------------------
# 8. negotiation_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class NegotiationEvent(Base):
    """Immutable audit record of every change in a negotiation's lifecycle.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "negotiation_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    negotiation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("negotiations.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(
        String(48),
        nullable=False,
        comment="NegotiationEventType value",
    )
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False, default="SYSTEM")
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_event_negotiation", "negotiation_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<NegotiationEvent type={self.event_type} "
            f"{self.old_status}->{self.new_status} by={self.actor}>"
        )


# ---------------------------------------------------------------------------
# 9. contract_intent_metrics
# ---------------------------------------------------------------------------
class ContractIntentMetric(Base):
    """Append-only analytics row for an e-signature lifecycle event."""

    __tablename__ = "contract_intent_metrics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    negotiation_id: Mapped[str] = mapped_column(String(36), nullable=False)
    contract_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    participant_role: Mapped[str | None] = mapped_column(String(16), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(80),
        nullable=True,
        unique=True,
        comment="Dedup key of the webhook delivery that produced this row",
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_intent_negotiation", "negotiation_id"),
        Index("idx_intent_type_occurred", "event_type", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<ContractIntentMetric {self.event_type} contract={self.contract_id}>"


# ---------------------------------------------------------------------------
# 10. premium_conversion_events
# ---------------------------------------------------------------------------
class PremiumConversionEvent(Base):
    __tablename__ = "premium_conversion_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    negotiation_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_premium_type_occurred", "event_type", "occurred_at"),
        Index("idx_premium_user", "user_id"),
    )


# ---------------------------------------------------------------------------
# 11. scheduler_jobs / 12. job_execution_logs
# ---------------------------------------------------------------------------
class SchedulerJob(Base):
    """Persisted run state of a registered job, shared by every process."""

    __tablename__ = "scheduler_jobs"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Consecutive failed executions",
    )
    last_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    next_run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (Index("idx_job_due", "is_active", "next_run_at"),)

    def __repr__(self) -> str:
        return f"<SchedulerJob {self.name} running={self.is_running} next={self.next_run_at}>"


class JobExecutionLog(Base):
    __tablename__ = "job_execution_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    job_name: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("scheduler_jobs.name", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    __table_args__ = (Index("idx_job_log_name_started", "job_name", "started_at"),)
