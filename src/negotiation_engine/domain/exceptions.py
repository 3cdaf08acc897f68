"""Domain exceptions for the Negotiation Engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
Each carries a stable ``code`` which is the error taxonomy exposed to clients.
"""

from __future__ import annotations


class NegotiationEngineError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "NEGOTIATION_ENGINE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input Errors ---


class ValidationFailedError(NegotiationEngineError):
    """Raised when caller input is missing or malformed."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_FAILED")
        self.details = details or {}


class EscrowOverfundedError(ValidationFailedError):
    """Raised when a deposit would push funded_amount past expected_amount."""

    def __init__(self, negotiation_id: str, expected: str, attempted_total: str) -> None:
        super().__init__(
            message=(
                f"Deposit would overfund escrow for negotiation {negotiation_id}: "
                f"expected {expected}, would reach {attempted_total}"
            ),
            details={"expected": expected, "attempted_total": attempted_total},
        )
        self.negotiation_id = negotiation_id


# --- Lookup / Access Errors ---


class NotFoundError(NegotiationEngineError):
    """Raised when a referenced resource does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(message=f"{resource} not found: {resource_id}", code="NOT_FOUND")
        self.resource = resource
        self.resource_id = resource_id


class NegotiationNotFoundError(NotFoundError):
    def __init__(self, negotiation_id: str) -> None:
        super().__init__("Negotiation", negotiation_id)


class ContractNotFoundError(NotFoundError):
    def __init__(self, contract_id: str) -> None:
        super().__init__("Contract", contract_id)


class RevisionNotFoundError(NotFoundError):
    def __init__(self, revision_id: str) -> None:
        super().__init__("Contract revision", revision_id)


class CommentNotFoundError(NotFoundError):
    def __init__(self, comment_id: str) -> None:
        super().__init__("Revision comment", comment_id)


class JobNotRegisteredError(NotFoundError):
    def __init__(self, job_name: str) -> None:
        super().__init__("Job", job_name)
        self.job_name = job_name


class ForbiddenError(NegotiationEngineError):
    """Raised when the viewer may not see or act on a resource."""

    def __init__(self, message: str = "Access to this negotiation is forbidden") -> None:
        super().__init__(message=message, code="FORBIDDEN")


# --- State Machine Errors ---


class InvalidStateTransitionError(NegotiationEngineError):
    """Raised when an attempted transition is not allowed from the current state.

    Example: CREATED -> COMPLETED (must go through ACCEPTED and escrow first)
    """

    def __init__(self, current_state: str, attempted_event: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {attempted_event} is not allowed from {current_state}",
            code="INVALID_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_event = attempted_event


class ConcurrentTransitionError(InvalidStateTransitionError):
    """Raised when another writer changed the negotiation first."""

    def __init__(self, negotiation_id: str, attempted_event: str) -> None:
        super().__init__(current_state="STALE", attempted_event=attempted_event)
        self.message = (
            f"Negotiation {negotiation_id} was modified concurrently; "
            f"{attempted_event} was not applied"
        )
        self.args = (self.message,)
        self.negotiation_id = negotiation_id


class ContractSignatureConflictError(NegotiationEngineError):
    """Raised when a signature cannot be taken: no contract yet, or already signed."""

    def __init__(self, negotiation_id: str, reason: str) -> None:
        super().__init__(
            message=f"Cannot sign the contract of negotiation {negotiation_id}: {reason}",
            code="CONTRACT_SIGNATURE_CONFLICT",
        )
        self.negotiation_id = negotiation_id
        self.reason = reason


# --- Webhook Errors ---


class InvalidWebhookError(NegotiationEngineError):
    """Raised when an inbound webhook payload is missing fields or malformed."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message=message, code="INVALID_WEBHOOK")
        self.fields = fields or []


class WebhookProcessingError(NegotiationEngineError):
    """Raised when a well-formed webhook could not be applied."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="WEBHOOK_PROCESSING_FAILED")


# --- Scheduler Errors ---


class JobFailedError(NegotiationEngineError):
    """Raised when a scheduled job handler raised."""

    def __init__(self, job_name: str, error: str) -> None:
        super().__init__(message=f"Job {job_name} failed: {error}", code="JOB_FAILED")
        self.job_name = job_name
        self.error = error


class JobAlreadyRunningError(NegotiationEngineError):
    """Raised when a job is triggered while another execution holds it."""

    def __init__(self, job_name: str) -> None:
        super().__init__(
            message=f"Job {job_name} is already running",
            code="JOB_ALREADY_RUNNING",
        )
        self.job_name = job_name
