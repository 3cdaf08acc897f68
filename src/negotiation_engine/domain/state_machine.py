"""Negotiation State Machine Guard.

Uses python-statemachine to enforce legal lifecycle transitions at the domain
level. Whatever the API or a webhook asks for, an illegal transition
(e.g. CREATED -> COMPLETED) raises TransitionNotAllowed before any row changes.

The machine is instantiated per negotiation at its persisted status and fired
before the ORM model's status field is updated.

Transition table:
    CREATED          -> COUNTERED          (counter)
    COUNTERED        -> COUNTERED          (counter)
    CREATED          -> ACCEPTED           (accept)
    COUNTERED        -> ACCEPTED           (accept)
    ACCEPTED         -> ESCROW_FUNDED      (fund_escrow)
    ACCEPTED         -> ACCEPTED           (sign_contract)
    ESCROW_FUNDED    -> ESCROW_FUNDED      (sign_contract)
    ESCROW_RELEASED  -> ESCROW_RELEASED    (sign_contract)
    ESCROW_FUNDED    -> ESCROW_RELEASED    (release_escrow)
    ESCROW_RELEASED  -> COMPLETED          (complete)
    ACCEPTED         -> ESCROW_REFUNDED    (refund_escrow)
    ESCROW_FUNDED    -> ESCROW_REFUNDED    (refund_escrow)
    CREATED, COUNTERED, ACCEPTED,
    ESCROW_FUNDED, ESCROW_REFUNDED -> CANCELLED   (cancel)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class NegotiationStateMachine(StateMachine):
    """State machine that guards negotiation lifecycle transitions.

    Usage:
        sm = NegotiationStateMachine(current_status="COUNTERED")
        sm.accept()          # transitions to ACCEPTED
        sm.status            # "ACCEPTED"
    """

    # --- States ---
    CREATED = State("CREATED", initial=True)
    COUNTERED = State("COUNTERED")
    ACCEPTED = State("ACCEPTED")
    ESCROW_FUNDED = State("ESCROW_FUNDED")
    ESCROW_RELEASED = State("ESCROW_RELEASED")
    COMPLETED = State("COMPLETED", final=True)
    CANCELLED = State("CANCELLED", final=True)
    ESCROW_REFUNDED = State("ESCROW_REFUNDED")

    # --- Events / Transitions ---

    # Bargaining
    counter = CREATED.to(COUNTERED) | COUNTERED.to.itself()
    accept = CREATED.to(ACCEPTED) | COUNTERED.to(ACCEPTED)

    # Escrow
    fund_escrow = ACCEPTED.to(ESCROW_FUNDED)
    release_escrow = ESCROW_FUNDED.to(ESCROW_RELEASED)
    refund_escrow = ACCEPTED.to(ESCROW_REFUNDED) | ESCROW_FUNDED.to(ESCROW_REFUNDED)

    # Contract signatures never move the lifecycle
    sign_contract = (
        ACCEPTED.to.itself() | ESCROW_FUNDED.to.itself() | ESCROW_RELEASED.to.itself()
    )

    # Terminal
    complete = ESCROW_RELEASED.to(COMPLETED)
    cancel = (
        CREATED.to(CANCELLED)
        | COUNTERED.to(CANCELLED)
        | ACCEPTED.to(CANCELLED)
        | ESCROW_FUNDED.to(CANCELLED)
        | ESCROW_REFUNDED.to(CANCELLED)
    )

    def __init__(self, current_status: str = "CREATED") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current NegotiationStatus value (e.g., "ACCEPTED").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches NegotiationStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]

    def is_allowed(self, event_name: str) -> bool:
        return event_name in self.get_allowed_events()


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a transition and return the resulting status.

    Args:
        current_status: Current NegotiationStatus value.
        event_name: The event to fire (e.g., "accept").

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = NegotiationStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_name not in {e.id for e in sm.events} or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
