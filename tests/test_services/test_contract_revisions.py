"""Tests for contract revisions, review status, comments and comparison."""

from __future__ import annotations

import pytest
from conftest import ADMIN, BUYER, OUTSIDER, SELLER, accepted_negotiation, open_negotiation

from negotiation_engine.domain.enums import CommentStatus, RevisionStatus
from negotiation_engine.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    RevisionNotFoundError,
    ValidationFailedError,
)
from negotiation_engine.services.contract_revision_service import ContractRevisionService

V1 = "1. Scope\nTwo laptops.\n2. Payment\nEscrow within 5 days."
V2 = "1. Scope\nTwo laptops with chargers.\n2. Payment\nEscrow within 3 days.\n3. Warranty\n90 days."


@pytest.fixture
def revisions(session, publisher) -> ContractRevisionService:
    return ContractRevisionService(session, publisher)


class TestCreateRevision:
    @pytest.mark.asyncio
    async def test_versions_increment(self, service, revisions, publisher) -> None:
        negotiation = await accepted_negotiation(service)
        first = await revisions.create_revision(negotiation.id, BUYER, V1, summary="draft")
        second = await revisions.create_revision(negotiation.id, SELLER, V2)

        assert (first.version, second.version) == (1, 2)
        assert first.contract_id == negotiation.contract.id
        assert second.status == RevisionStatus.DRAFT
        assert not second.is_current
        assert publisher.events[-1].type.value == "CONTRACT_REVISION_SUBMITTED"
        assert publisher.events[-1].payload["changes"] == {
            "added": 2,
            "removed": 0,
            "modified": 2,
            "unchanged": 2,
        }

    @pytest.mark.asyncio
    async def test_identical_text_returns_latest(self, service, revisions, publisher) -> None:
        negotiation = await accepted_negotiation(service)
        first = await revisions.create_revision(negotiation.id, BUYER, V1, summary="draft")
        count = len(publisher.events)

        again = await revisions.create_revision(negotiation.id, SELLER, V1, summary="draft")

        assert again.id == first.id
        assert len(publisher.events) == count
        assert len(await revisions.list_revisions(negotiation.id, BUYER)) == 1

    @pytest.mark.asyncio
    async def test_changed_summary_is_a_new_version(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        await revisions.create_revision(negotiation.id, BUYER, V1, summary="draft")
        second = await revisions.create_revision(negotiation.id, BUYER, V1, summary="final")
        assert second.version == 2

    @pytest.mark.asyncio
    async def test_blank_body_rejected(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        with pytest.raises(ValidationFailedError):
            await revisions.create_revision(negotiation.id, BUYER, "   \n")

    @pytest.mark.asyncio
    async def test_requires_contract(self, service, revisions) -> None:
        negotiation = await open_negotiation(service)
        with pytest.raises(NotFoundError):
            await revisions.create_revision(negotiation.id, BUYER, V1)

    @pytest.mark.asyncio
    async def test_outsider_forbidden(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        with pytest.raises(ForbiddenError):
            await revisions.create_revision(negotiation.id, OUTSIDER, V1)


class TestRevisionStatus:
    @pytest.mark.asyncio
    async def test_accepting_moves_current_flag(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        negotiation_id = negotiation.id
        first = await revisions.create_revision(negotiation_id, BUYER, V1)
        second = await revisions.create_revision(negotiation_id, SELLER, V2)

        await revisions.update_revision_status(
            negotiation_id, first.id, SELLER, RevisionStatus.ACCEPTED
        )
        await revisions.update_revision_status(
            negotiation_id, second.id, BUYER, RevisionStatus.IN_REVIEW
        )
        await revisions.update_revision_status(
            negotiation_id, second.id, BUYER, RevisionStatus.ACCEPTED
        )

        listed = await revisions.list_revisions(negotiation_id, BUYER)
        assert [(r.version, r.status, r.is_current) for r in listed] == [
            (1, "ACCEPTED", False),
            (2, "ACCEPTED", True),
        ]

    @pytest.mark.asyncio
    async def test_decided_revision_is_immutable(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        negotiation_id = negotiation.id
        revision = await revisions.create_revision(negotiation_id, BUYER, V1)
        revision_id = revision.id
        await revisions.update_revision_status(
            negotiation_id, revision_id, SELLER, RevisionStatus.REJECTED
        )

        with pytest.raises(InvalidStateTransitionError):
            await revisions.update_revision_status(
                negotiation_id, revision_id, SELLER, RevisionStatus.IN_REVIEW
            )

    @pytest.mark.asyncio
    async def test_revision_of_other_negotiation(self, service, revisions) -> None:
        first = await accepted_negotiation(service)
        other = await accepted_negotiation(service)
        revision = await revisions.create_revision(first.id, BUYER, V1)

        with pytest.raises(RevisionNotFoundError):
            await revisions.update_revision_status(
                other.id, revision.id, BUYER, RevisionStatus.ACCEPTED
            )


class TestComments:
    @pytest.mark.asyncio
    async def test_comment_and_resolve(self, service, revisions, publisher) -> None:
        negotiation = await accepted_negotiation(service)
        negotiation_id = negotiation.id
        revision = await revisions.create_revision(negotiation_id, BUYER, V1)

        comment = await revisions.add_comment(
            negotiation_id,
            revision.id,
            SELLER,
            "  Payment window is too short.  ",
            anchor={"clause_index": 3},
        )
        assert comment.body == "Payment window is too short."
        assert comment.status == CommentStatus.OPEN
        assert comment.anchor == {"clause_index": 3}

        resolved = await revisions.resolve_comment(negotiation_id, comment.id, BUYER)
        assert resolved.status == CommentStatus.RESOLVED
        assert resolved.resolved_by == BUYER
        assert resolved.resolved_at is not None

        count = len(publisher.events)
        await revisions.resolve_comment(negotiation_id, comment.id, SELLER)
        assert len(publisher.events) == count
        assert resolved.resolved_by == BUYER

    @pytest.mark.asyncio
    async def test_blank_comment_rejected(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        revision = await revisions.create_revision(negotiation.id, BUYER, V1)
        with pytest.raises(ValidationFailedError):
            await revisions.add_comment(negotiation.id, revision.id, SELLER, " ")

    @pytest.mark.asyncio
    async def test_admin_may_comment(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        revision = await revisions.create_revision(negotiation.id, BUYER, V1)
        comment = await revisions.add_comment(
            negotiation.id, revision.id, ADMIN, "Checked.", is_admin=True
        )
        assert comment.author_id == ADMIN


class TestCompareRevisions:
    @pytest.mark.asyncio
    async def test_compare(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        base = await revisions.create_revision(negotiation.id, BUYER, V1)
        target = await revisions.create_revision(negotiation.id, SELLER, V2)

        comparison = await revisions.compare_revisions(
            negotiation.id, base.id, target.id, BUYER
        )
        data = comparison.to_dict()

        assert data["base_version"] == 1
        assert data["target_version"] == 2
        assert data["summary"] == {"added": 2, "removed": 0, "modified": 2, "unchanged": 2}
        assert data["segments"][0] == {
            "type": "unchanged",
            "base_index": 0,
            "target_index": 0,
            "base_text": "1. Scope",
            "target_text": "1. Scope",
        }
        assert data["diff_fingerprint"].startswith("unchanged:1. Scope|modified:Two laptops")

    @pytest.mark.asyncio
    async def test_compare_is_deterministic(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        base = await revisions.create_revision(negotiation.id, BUYER, V1)
        target = await revisions.create_revision(negotiation.id, SELLER, V2)

        first = await revisions.compare_revisions(negotiation.id, base.id, target.id, BUYER)
        second = await revisions.compare_revisions(negotiation.id, base.id, target.id, SELLER)
        assert first.diff_fingerprint == second.diff_fingerprint

    @pytest.mark.asyncio
    async def test_unknown_revision(self, service, revisions) -> None:
        negotiation = await accepted_negotiation(service)
        base = await revisions.create_revision(negotiation.id, BUYER, V1)
        with pytest.raises(RevisionNotFoundError):
            await revisions.compare_revisions(negotiation.id, base.id, "missing", BUYER)
