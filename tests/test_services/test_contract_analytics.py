"""Tests for the contract intent analytics recorder."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy.exc import IntegrityError

from negotiation_engine.domain.enums import ContractIntentEventType
from negotiation_engine.domain.exceptions import ValidationFailedError
from negotiation_engine.services.contract_analytics_service import ContractIntentRecorder


@pytest.fixture
def recorder(session) -> ContractIntentRecorder:
    return ContractIntentRecorder(session)


class TestRecordContractIntentEvent:
    @pytest.mark.asyncio
    async def test_camel_case_input(self, recorder) -> None:
        metric = await recorder.record_contract_intent_event(
            {
                "negotiationId": "neg-1",
                "contractId": "con-1",
                "eventType": "ENVELOPE_ISSUED",
                "participantRole": "SELLER",
                "occurredAt": "2026-04-01T12:00:00Z",
                "metadata": {"provider": "acme-sign"},
            }
        )
        assert metric.event_type == "ENVELOPE_ISSUED"
        assert metric.participant_role == "SELLER"
        assert metric.occurred_at == datetime(2026, 4, 1, 12, tzinfo=UTC)
        assert metric.metadata_json == {"provider": "acme-sign"}

    @pytest.mark.asyncio
    async def test_occurred_at_defaults_to_now(self, recorder) -> None:
        metric = await recorder.record_contract_intent_event(
            {"negotiation_id": "neg-1", "contract_id": "con-1", "event_type": "ENVELOPE_COMPLETED"}
        )
        assert metric.occurred_at is not None

    @pytest.mark.asyncio
    async def test_missing_fields(self, recorder) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            await recorder.record_contract_intent_event({"negotiation_id": "neg-1"})
        fields = exc_info.value.details["fields"]
        assert "contract_id" in fields
        assert "event_type" in fields

    @pytest.mark.asyncio
    async def test_unknown_event_type(self, recorder) -> None:
        with pytest.raises(ValidationFailedError):
            await recorder.record_contract_intent_event(
                {"negotiation_id": "n", "contract_id": "c", "event_type": "OPENED"}
            )

    @pytest.mark.asyncio
    async def test_idempotency_key_is_unique(self, recorder) -> None:
        event = {
            "negotiation_id": "n",
            "contract_id": "c",
            "event_type": "ENVELOPE_DECLINED",
            "idempotency_key": "esign:abc",
        }
        await recorder.record_contract_intent_event(event)
        with pytest.raises(IntegrityError):
            await recorder.record_contract_intent_event(event)


class TestParticipantSignature:
    @pytest.mark.asyncio
    async def test_requires_role_and_time(self, recorder) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            await recorder.record_participant_signature_event("n", "c", None, None)
        assert exc_info.value.details["fields"] == ["participant_role", "signed_at"]

    @pytest.mark.asyncio
    async def test_records_signature(self, recorder) -> None:
        signed_at = datetime(2026, 4, 2, 9, 30, tzinfo=UTC)
        await recorder.record_participant_signature_event("n", "c", "BUYER", signed_at)

        rows = await recorder.list_events(
            negotiation_id="n", event_type=ContractIntentEventType.PARTICIPANT_SIGNED
        )
        assert len(rows) == 1
        assert rows[0].participant_role == "BUYER"

    @pytest.mark.asyncio
    async def test_envelope_event_rejects_signatures(self, recorder) -> None:
        with pytest.raises(ValidationFailedError):
            await recorder.record_envelope_event(
                "n", "c", ContractIntentEventType.PARTICIPANT_SIGNED
            )
