"""Tests for the NegotiationStateMachine transition guard."""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from negotiation_engine.domain.state_machine import (
    NegotiationStateMachine,
    validate_transition,
)


class TestHappyPath:
    """Walk the full lifecycle from CREATED to COMPLETED."""

    def test_full_lifecycle(self) -> None:
        sm = NegotiationStateMachine("CREATED")
        sm.counter()
        assert sm.status == "COUNTERED"
        sm.counter()
        assert sm.status == "COUNTERED"
        sm.accept()
        assert sm.status == "ACCEPTED"
        sm.fund_escrow()
        assert sm.status == "ESCROW_FUNDED"
        sm.release_escrow()
        assert sm.status == "ESCROW_RELEASED"
        sm.complete()
        assert sm.status == "COMPLETED"

    def test_accept_opening_offer(self) -> None:
        sm = NegotiationStateMachine("CREATED")
        sm.accept()
        assert sm.status == "ACCEPTED"


class TestSignatures:
    """sign_contract never moves the lifecycle."""

    @pytest.mark.parametrize("status", ["ACCEPTED", "ESCROW_FUNDED", "ESCROW_RELEASED"])
    def test_sign_is_self_transition(self, status: str) -> None:
        sm = NegotiationStateMachine(status)
        sm.sign_contract()
        assert sm.status == status

    @pytest.mark.parametrize("status", ["CREATED", "COUNTERED", "COMPLETED", "CANCELLED"])
    def test_sign_outside_contract_window(self, status: str) -> None:
        sm = NegotiationStateMachine(status)
        with pytest.raises(TransitionNotAllowed):
            sm.sign_contract()


class TestRefundAndCancel:
    def test_refund_from_accepted(self) -> None:
        sm = NegotiationStateMachine("ACCEPTED")
        sm.refund_escrow()
        assert sm.status == "ESCROW_REFUNDED"

    def test_refund_from_funded(self) -> None:
        sm = NegotiationStateMachine("ESCROW_FUNDED")
        sm.refund_escrow()
        assert sm.status == "ESCROW_REFUNDED"

    def test_cancel_after_refund(self) -> None:
        sm = NegotiationStateMachine("ESCROW_REFUNDED")
        sm.cancel()
        assert sm.status == "CANCELLED"

    @pytest.mark.parametrize(
        "status", ["CREATED", "COUNTERED", "ACCEPTED", "ESCROW_FUNDED", "ESCROW_REFUNDED"]
    )
    def test_cancel_before_release(self, status: str) -> None:
        sm = NegotiationStateMachine(status)
        sm.cancel()
        assert sm.status == "CANCELLED"


class TestIllegalTransitions:
    """Verify that illegal transitions raise TransitionNotAllowed."""

    def test_created_to_completed(self) -> None:
        sm = NegotiationStateMachine("CREATED")
        with pytest.raises(TransitionNotAllowed):
            sm.complete()

    def test_accepted_cannot_be_accepted_again(self) -> None:
        sm = NegotiationStateMachine("ACCEPTED")
        with pytest.raises(TransitionNotAllowed):
            sm.accept()

    def test_no_counter_after_acceptance(self) -> None:
        sm = NegotiationStateMachine("ACCEPTED")
        with pytest.raises(TransitionNotAllowed):
            sm.counter()

    def test_released_cannot_be_cancelled(self) -> None:
        sm = NegotiationStateMachine("ESCROW_RELEASED")
        with pytest.raises(TransitionNotAllowed):
            sm.cancel()

    def test_released_cannot_be_refunded(self) -> None:
        sm = NegotiationStateMachine("ESCROW_RELEASED")
        with pytest.raises(TransitionNotAllowed):
            sm.refund_escrow()

    def test_completed_is_final(self) -> None:
        sm = NegotiationStateMachine("COMPLETED")
        assert sm.get_allowed_events() == []

    def test_cancelled_is_final(self) -> None:
        sm = NegotiationStateMachine("CANCELLED")
        assert sm.get_allowed_events() == []


class TestAllowedEvents:
    """Test the get_allowed_events / is_allowed helpers."""

    def test_created_allowed(self) -> None:
        allowed = NegotiationStateMachine("CREATED").get_allowed_events()
        assert set(allowed) == {"counter", "accept", "cancel"}

    def test_funded_allowed(self) -> None:
        allowed = NegotiationStateMachine("ESCROW_FUNDED").get_allowed_events()
        assert set(allowed) == {"release_escrow", "refund_escrow", "sign_contract", "cancel"}

    def test_is_allowed(self) -> None:
        sm = NegotiationStateMachine("ACCEPTED")
        assert sm.is_allowed("fund_escrow")
        assert not sm.is_allowed("complete")


class TestValidateTransitionFunction:
    """Test the convenience function."""

    def test_valid_transition(self) -> None:
        assert validate_transition("COUNTERED", "accept") == "ACCEPTED"

    def test_invalid_event_name(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("CREATED", "nonexistent_event")

    def test_illegal_event(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("CREATED", "release_escrow")

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            NegotiationStateMachine("INVALID_STATUS")
