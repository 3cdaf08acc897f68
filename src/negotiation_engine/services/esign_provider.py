"""E-Signature Provider — issues, signs and voids contract envelopes.

The provider is a Protocol so a real signing service can replace the
simulated one without touching the services that call it:

    service = ContractSigningService(session, provider=MyProvider())
    provider = get_esign_provider()      # simulated default

The simulated provider generates envelope ids locally and only logs what a
real provider would send. Contract state lives in our database; providers
report back through the e-signature webhook.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from negotiation_engine.domain.enums import EnvelopeStatus
from negotiation_engine.logging_config import get_logger

if TYPE_CHECKING:
    from negotiation_engine.domain.enums import ParticipantRole

logger = get_logger(__name__)

SIMULATED_PROVIDER_ID = "simulated-esign"


@dataclass(frozen=True)
class EnvelopeParticipant:
    participant_id: str
    role: ParticipantRole


@dataclass(frozen=True)
class EnvelopeReceipt:
    """What the provider reported for an envelope."""

    provider: str
    envelope_id: str
    status: EnvelopeStatus


@runtime_checkable
class ESignatureProvider(Protocol):
    """Protocol that e-signature provider adapters must satisfy."""

    async def issue_envelope(
        self,
        negotiation_id: str,
        contract_id: str,
        participants: list[EnvelopeParticipant],
        terms: dict | None = None,
    ) -> EnvelopeReceipt: ...

    async def submit_signature(
        self,
        envelope_id: str,
        participant: EnvelopeParticipant,
    ) -> EnvelopeReceipt: ...

    async def void_envelope(self, envelope_id: str, reason: str | None = None) -> EnvelopeReceipt: ...


class SimulatedESignatureProvider:
    """Provider stand-in for development and tests. Nothing leaves the process."""

    def __init__(self, provider_id: str = SIMULATED_PROVIDER_ID) -> None:
        self._provider_id = provider_id

    async def issue_envelope(
        self,
        negotiation_id: str,
        contract_id: str,
        participants: list[EnvelopeParticipant],
        terms: dict | None = None,
    ) -> EnvelopeReceipt:
        envelope_id = f"env_{uuid.uuid4().hex}"
        logger.info(
            "esign.envelope_issued",
            provider=self._provider_id,
            envelope_id=envelope_id,
            negotiation_id=negotiation_id,
            contract_id=contract_id,
            participants=[p.role.value for p in participants],
            simulated=True,
        )
        return EnvelopeReceipt(self._provider_id, envelope_id, EnvelopeStatus.ISSUED)

    async def submit_signature(
        self,
        envelope_id: str,
        participant: EnvelopeParticipant,
    ) -> EnvelopeReceipt:
        logger.info(
            "esign.signature_submitted",
            provider=self._provider_id,
            envelope_id=envelope_id,
            role=participant.role.value,
            simulated=True,
        )
        return EnvelopeReceipt(self._provider_id, envelope_id, EnvelopeStatus.PARTIALLY_SIGNED)

    async def void_envelope(self, envelope_id: str, reason: str | None = None) -> EnvelopeReceipt:
        logger.info(
            "esign.envelope_voided",
            provider=self._provider_id,
            envelope_id=envelope_id,
            reason=reason,
            simulated=True,
        )
        return EnvelopeReceipt(self._provider_id, envelope_id, EnvelopeStatus.VOID)


_provider: ESignatureProvider | None = None


def get_esign_provider() -> ESignatureProvider:
    """Return the process-wide provider, defaulting to the simulated one."""
    global _provider
    if _provider is None:
        _provider = SimulatedESignatureProvider()
    return _provider
