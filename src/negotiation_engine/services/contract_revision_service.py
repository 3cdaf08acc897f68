"""Contract Revision Service — versioned drafts of a deal contract.

Parties submit revisions of the contract text, review them, comment on
clauses and compare any two versions clause by clause. Submitting text
identical to the latest revision returns that revision instead of creating
a new version.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from negotiation_engine.domain.clause_diff import compute_clause_diff, summarize_clause_diff
from negotiation_engine.domain.clock import utcnow
from negotiation_engine.domain.enums import CommentStatus, NegotiationEventType, RevisionStatus
from negotiation_engine.domain.events import NegotiationDomainEvent
from negotiation_engine.domain.exceptions import (
    CommentNotFoundError,
    InvalidStateTransitionError,
    NotFoundError,
    RevisionNotFoundError,
    ValidationFailedError,
)
from negotiation_engine.domain.fingerprint import (
    build_diff_fingerprint,
    compute_negotiation_contract_fingerprint,
)
from negotiation_engine.infrastructure.database.orm_models import (
    ContractRevision,
    RevisionComment,
)
from negotiation_engine.infrastructure.database.repositories import (
    ContractRevisionRepository,
    NegotiationEventRepository,
)
from negotiation_engine.infrastructure.database.unit_of_work import atomic
from negotiation_engine.infrastructure.event_publisher import (
    get_event_publisher,
    publish_after_commit,
)
from negotiation_engine.logging_config import get_logger
from negotiation_engine.services.access_service import NegotiationAccessResolver

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.domain.clause_diff import ClauseDiffSegment, ClauseDiffSummary
    from negotiation_engine.domain.events import EventPublisher
    from negotiation_engine.infrastructure.database.orm_models import DealContract, Negotiation
    from negotiation_engine.services.access_service import NegotiationAccess

logger = get_logger(__name__)

# Review flow: a decided revision (ACCEPTED or REJECTED) is immutable.
_REVISION_TRANSITIONS: dict[str, set[str]] = {
    RevisionStatus.DRAFT: {RevisionStatus.IN_REVIEW, RevisionStatus.ACCEPTED, RevisionStatus.REJECTED},
    RevisionStatus.IN_REVIEW: {RevisionStatus.DRAFT, RevisionStatus.ACCEPTED, RevisionStatus.REJECTED},
    RevisionStatus.ACCEPTED: set(),
    RevisionStatus.REJECTED: set(),
}


@dataclass(frozen=True)
class RevisionComparison:
    base: ContractRevision
    target: ContractRevision
    segments: list[ClauseDiffSegment]
    summary: ClauseDiffSummary
    diff_fingerprint: str

    def to_dict(self) -> dict:
        return {
            "base_revision_id": self.base.id,
            "target_revision_id": self.target.id,
            "base_version": self.base.version,
            "target_version": self.target.version,
            "segments": [segment.to_dict() for segment in self.segments],
            "summary": self.summary.to_dict(),
            "diff_fingerprint": self.diff_fingerprint,
        }


class ContractRevisionService:
    """Manages contract revisions and their review comments."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._session = session
        self._publisher = publisher or get_event_publisher()
        self._access = NegotiationAccessResolver(session)
        self._repo = ContractRevisionRepository(session)
        self._event_repo = NegotiationEventRepository(session)

    async def create_revision(
        self,
        negotiation_id: str,
        author_id: str,
        body: str,
        summary: str | None = None,
        is_admin: bool = False,
    ) -> ContractRevision:
        """Submit a new version of the contract text.

        Raises:
            ValidationFailedError: The body is blank.
            NotFoundError: The negotiation has no contract yet (not accepted).
        """
        if not body or not body.strip():
            raise ValidationFailedError("Revision body must not be empty", details={"fields": ["body"]})

        async with atomic(self._session):
            access = await self._load(negotiation_id, author_id, is_admin, for_update=True)
            contract = self._contract_or_raise(access.negotiation)

            fingerprint = compute_negotiation_contract_fingerprint(body, summary)
            latest = await self._repo.get_latest(contract.id)
            if latest is not None and latest.fingerprint == fingerprint:
                logger.info(
                    "contract_revision.unchanged",
                    negotiation_id=negotiation_id,
                    revision_id=latest.id,
                    version=latest.version,
                )
                return latest

            revision = ContractRevision(
                negotiation_id=negotiation_id,
                contract_id=contract.id,
                version=latest.version + 1 if latest else 1,
                summary=summary,
                body=body,
                fingerprint=fingerprint,
                status=RevisionStatus.DRAFT.value,
                is_current=False,
                created_by=author_id,
                comments=[],
            )
            await self._repo.create(revision)

            payload = {
                "revision_id": revision.id,
                "version": revision.version,
                "fingerprint": fingerprint,
            }
            if latest is not None:
                changes = summarize_clause_diff(compute_clause_diff(latest.body, body))
                payload["changes"] = changes.to_dict()

            await self._record(
                access.negotiation,
                NegotiationEventType.CONTRACT_REVISION_SUBMITTED,
                author_id,
                payload,
            )

        logger.info(
            "contract_revision.submitted",
            negotiation_id=negotiation_id,
            revision_id=revision.id,
            version=revision.version,
        )
        return revision

    async def update_revision_status(
        self,
        negotiation_id: str,
        revision_id: str,
        actor_id: str,
        status: RevisionStatus,
        is_admin: bool = False,
    ) -> ContractRevision:
        """Move a revision through review. Accepting it makes it the current one."""
        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin, for_update=True)
            revision = await self._revision_or_raise(negotiation_id, revision_id)

            old_status = revision.status
            if status == old_status:
                return revision
            if status not in _REVISION_TRANSITIONS[RevisionStatus(old_status)]:
                raise InvalidStateTransitionError(old_status, f"revision:{status.value}")

            revision.status = status.value
            revision.updated_at = utcnow()
            if status is RevisionStatus.ACCEPTED:
                await self._repo.clear_current(revision.contract_id, keep_revision_id=revision.id)
                revision.is_current = True
            await self._session.flush()

            await self._record(
                access.negotiation,
                NegotiationEventType.CONTRACT_REVISION_STATUS_CHANGED,
                actor_id,
                {
                    "revision_id": revision.id,
                    "version": revision.version,
                    "old_status": old_status,
                    "new_status": revision.status,
                },
            )

        logger.info(
            "contract_revision.status_changed",
            negotiation_id=negotiation_id,
            revision_id=revision_id,
            old=old_status,
            new=status.value,
        )
        return revision

    async def add_comment(
        self,
        negotiation_id: str,
        revision_id: str,
        author_id: str,
        body: str,
        anchor: dict | None = None,
        is_admin: bool = False,
    ) -> RevisionComment:
        if not body or not body.strip():
            raise ValidationFailedError("Comment body must not be empty", details={"fields": ["body"]})

        async with atomic(self._session):
            access = await self._load(negotiation_id, author_id, is_admin)
            revision = await self._revision_or_raise(negotiation_id, revision_id)

            comment = RevisionComment(
                author_id=author_id,
                body=body.strip(),
                anchor=anchor,
                status=CommentStatus.OPEN.value,
            )
            revision.comments.append(comment)
            await self._repo.add_comment(comment)

            await self._record(
                access.negotiation,
                NegotiationEventType.CONTRACT_REVISION_COMMENTED,
                author_id,
                {"revision_id": revision.id, "comment_id": comment.id},
            )

        logger.info(
            "contract_revision.commented",
            negotiation_id=negotiation_id,
            revision_id=revision_id,
            comment_id=comment.id,
        )
        return comment

    async def resolve_comment(
        self,
        negotiation_id: str,
        comment_id: str,
        actor_id: str,
        is_admin: bool = False,
    ) -> RevisionComment:
        """Mark a comment resolved. Resolving twice is a no-op."""
        async with atomic(self._session):
            access = await self._load(negotiation_id, actor_id, is_admin)
            comment = await self._repo.get_comment(comment_id)
            if comment is None:
                raise CommentNotFoundError(comment_id)
            # the comment must hang off a revision of this negotiation
            await self._revision_or_raise(negotiation_id, comment.revision_id)

            if comment.status == CommentStatus.RESOLVED.value:
                return comment

            comment.status = CommentStatus.RESOLVED.value
            comment.resolved_by = actor_id
            comment.resolved_at = utcnow()
            await self._session.flush()

            await self._record(
                access.negotiation,
                NegotiationEventType.CONTRACT_REVISION_COMMENT_RESOLVED,
                actor_id,
                {"revision_id": comment.revision_id, "comment_id": comment.id},
            )

        logger.info("contract_revision.comment_resolved", comment_id=comment_id, by=actor_id)
        return comment

    async def list_revisions(
        self,
        negotiation_id: str,
        viewer_id: str,
        is_admin: bool = False,
    ) -> list[ContractRevision]:
        await self._load(negotiation_id, viewer_id, is_admin)
        return await self._repo.list_for_negotiation(negotiation_id)

    async def compare_revisions(
        self,
        negotiation_id: str,
        base_revision_id: str,
        target_revision_id: str,
        viewer_id: str,
        is_admin: bool = False,
    ) -> RevisionComparison:
        """Clause-level diff from ``base`` to ``target`` with its summary and fingerprint."""
        await self._load(negotiation_id, viewer_id, is_admin)
        base = await self._revision_or_raise(negotiation_id, base_revision_id)
        target = await self._revision_or_raise(negotiation_id, target_revision_id)

        segments = compute_clause_diff(base.body, target.body)
        return RevisionComparison(
            base=base,
            target=target,
            segments=segments,
            summary=summarize_clause_diff(segments),
            diff_fingerprint=build_diff_fingerprint(segments),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load(
        self,
        negotiation_id: str,
        viewer_id: str,
        is_admin: bool,
        for_update: bool = False,
    ) -> NegotiationAccess:
        return await self._access.get_negotiation_with_access(
            negotiation_id, viewer_id, is_admin=is_admin, for_update=for_update
        )

    @staticmethod
    def _contract_or_raise(negotiation: Negotiation) -> DealContract:
        if negotiation.contract is None:
            raise NotFoundError("Contract for negotiation", negotiation.id)
        return negotiation.contract

    async def _revision_or_raise(self, negotiation_id: str, revision_id: str) -> ContractRevision:
        revision = await self._repo.get_by_id(revision_id)
        if revision is None or revision.negotiation_id != negotiation_id:
            raise RevisionNotFoundError(revision_id)
        return revision

    async def _record(
        self,
        negotiation: Negotiation,
        event_type: NegotiationEventType,
        actor: str,
        payload: dict,
    ) -> None:
        """Audit a contract change. The negotiation status is unchanged."""
        await self._event_repo.record(
            negotiation_id=negotiation.id,
            event_type=event_type,
            old_status=negotiation.status,
            new_status=negotiation.status,
            actor=actor,
            metadata=payload,
        )
        publish_after_commit(
            self._session,
            self._publisher,
            NegotiationDomainEvent(
                type=event_type,
                negotiation_id=negotiation.id,
                triggered_by=actor,
                status=negotiation.status,
                payload=payload,
            ),
        )
