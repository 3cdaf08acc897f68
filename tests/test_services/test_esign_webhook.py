"""Tests for the e-signature webhook handler."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from conftest import BUYER, SELLER, accepted_negotiation, open_negotiation
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import IntegrityError

from negotiation_engine.domain.enums import ContractIntentEventType, ContractStatus
from negotiation_engine.domain.exceptions import InvalidWebhookError, WebhookProcessingError
from negotiation_engine.services.contract_analytics_service import ContractIntentRecorder
from negotiation_engine.services.esign_webhook_service import (
    ESignatureWebhookService,
    WebhookOutcomeKind,
)


def delivery(negotiation, participant_id: str, role: str, status: str, **extra) -> dict:
    return {
        "negotiationId": negotiation.id,
        "contractId": negotiation.contract.id if negotiation.contract else "no-contract",
        "participant": {"id": participant_id, "role": role},
        "status": status,
        **extra,
    }


def fake_redis(seen: bool = False) -> AsyncMock:
    redis = AsyncMock()
    redis.exists.return_value = 1 if seen else 0
    return redis


class TestSignedDeliveries:
    @pytest.mark.asyncio
    async def test_redelivery_is_a_duplicate(self, session, service, publisher) -> None:
        negotiation = await accepted_negotiation(service)
        handler = ESignatureWebhookService(session, publisher)
        payload = delivery(negotiation, BUYER, "buyer", "signed")

        first = await handler.handle(payload)
        count = len(publisher.events)
        second = await handler.handle(payload)

        assert (first.ok, first.duplicate, first.outcome) == (True, False, WebhookOutcomeKind.SIGNED)
        assert (second.ok, second.duplicate) == (True, True)
        assert second.idempotency_key == first.idempotency_key
        assert len(publisher.events) == count

        rows = await ContractIntentRecorder(session).list_events(negotiation_id=negotiation.id)
        assert [r.event_type for r in rows] == ["PARTICIPANT_SIGNED"]

    @pytest.mark.asyncio
    async def test_both_signatures_complete_envelope(self, session, service) -> None:
        negotiation = await accepted_negotiation(service)
        handler = ESignatureWebhookService(session)

        await handler.handle(
            delivery(negotiation, SELLER, "SELLER", "completed", signedAt="2026-04-01T10:00:00Z")
        )
        await handler.handle(delivery(negotiation, BUYER, "BUYER", "SIGNED"))

        access = await service.get_negotiation(negotiation.id, BUYER)
        assert access.negotiation.contract.status == ContractStatus.SIGNED
        assert access.negotiation.status == "ACCEPTED"

        rows = await ContractIntentRecorder(session).list_events(negotiation_id=negotiation.id)
        assert sorted(r.event_type for r in rows) == [
            "ENVELOPE_COMPLETED",
            "PARTICIPANT_SIGNED",
            "PARTICIPANT_SIGNED",
        ]

    @pytest.mark.asyncio
    async def test_completed_after_signed_counts_once(self, session, service, publisher) -> None:
        negotiation = await accepted_negotiation(service)
        handler = ESignatureWebhookService(session, publisher)

        outcomes = [
            await handler.handle(delivery(negotiation, participant, role, status))
            for participant, role, status in (
                (BUYER, "BUYER", "SIGNED"),
                (SELLER, "SELLER", "SIGNED"),
                (BUYER, "BUYER", "COMPLETED"),
                (SELLER, "SELLER", "COMPLETED"),
            )
        ]

        assert [o.duplicate for o in outcomes] == [False, False, True, True]
        rows = await ContractIntentRecorder(session).list_events(negotiation_id=negotiation.id)
        assert sorted(r.event_type for r in rows) == [
            "ENVELOPE_COMPLETED",
            "PARTICIPANT_SIGNED",
            "PARTICIPANT_SIGNED",
        ]
        assert publisher.types.count("CONTRACT_SIGNATURE_COMPLETED") == 1


class TestEnvelopeDeliveries:
    @pytest.mark.asyncio
    async def test_issued(self, session, service) -> None:
        negotiation = await accepted_negotiation(service)
        outcome = await ESignatureWebhookService(session).handle(
            delivery(negotiation, BUYER, "BUYER", "sent")
        )

        assert outcome.outcome is WebhookOutcomeKind.ISSUED
        access = await service.get_negotiation(negotiation.id, BUYER)
        assert access.negotiation.contract.status == ContractStatus.PENDING_SIGNATURES

    @pytest.mark.asyncio
    async def test_declined(self, session, service) -> None:
        negotiation = await accepted_negotiation(service)
        await ESignatureWebhookService(session).handle(
            delivery(negotiation, SELLER, "SELLER", "declined")
        )

        access = await service.get_negotiation(negotiation.id, SELLER)
        assert access.negotiation.contract.status == ContractStatus.REJECTED
        rows = await ContractIntentRecorder(session).list_events(
            event_type=ContractIntentEventType.ENVELOPE_DECLINED
        )
        assert len(rows) == 1


class TestInvalidDeliveries:
    @pytest.mark.asyncio
    async def test_missing_participant(self, session) -> None:
        with pytest.raises(InvalidWebhookError) as exc_info:
            await ESignatureWebhookService(session).handle(
                {"negotiationId": "n", "contractId": "c", "status": "SIGNED"}
            )
        assert "participant" in exc_info.value.fields

    @pytest.mark.asyncio
    async def test_unknown_status(self, session) -> None:
        with pytest.raises(InvalidWebhookError) as exc_info:
            await ESignatureWebhookService(session).handle(
                {
                    "negotiationId": "n",
                    "contractId": "c",
                    "participant": {"id": "p", "role": "BUYER"},
                    "status": "VOIDED",
                }
            )
        assert exc_info.value.fields == ["status"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, [], "signed"])
    async def test_body_must_be_object(self, session, payload) -> None:
        with pytest.raises(InvalidWebhookError):
            await ESignatureWebhookService(session).handle(payload)

    @pytest.mark.asyncio
    async def test_contract_not_drafted_yet(self, session, service) -> None:
        negotiation = await open_negotiation(service)
        payload = delivery(negotiation, BUYER, "BUYER", "SIGNED")

        with pytest.raises(WebhookProcessingError) as exc_info:
            await ESignatureWebhookService(session).handle(payload)
        assert exc_info.value.code == "WEBHOOK_PROCESSING_FAILED"

        rows = await ContractIntentRecorder(session).list_events(negotiation_id=payload["negotiationId"])
        assert rows == []


class TestRedisFastPath:
    @pytest.mark.asyncio
    async def test_seen_key_short_circuits(self, session, service) -> None:
        negotiation = await accepted_negotiation(service)
        redis = fake_redis(seen=True)

        outcome = await ESignatureWebhookService(session, redis=redis).handle(
            delivery(negotiation, BUYER, "BUYER", "SIGNED")
        )

        assert outcome.duplicate
        rows = await ContractIntentRecorder(session).list_events(negotiation_id=negotiation.id)
        assert rows == []

    @pytest.mark.asyncio
    async def test_key_is_remembered_after_success(self, session, service) -> None:
        negotiation = await accepted_negotiation(service)
        redis = fake_redis()

        outcome = await ESignatureWebhookService(session, redis=redis).handle(
            delivery(negotiation, BUYER, "BUYER", "SIGNED")
        )

        assert not outcome.duplicate
        redis.set.assert_awaited_once()
        assert redis.set.await_args.args[0] == f"idempotency:{outcome.idempotency_key}"

    @pytest.mark.asyncio
    async def test_redis_outage_falls_back_to_database(self, session, service) -> None:
        negotiation = await accepted_negotiation(service)
        redis = fake_redis()
        redis.exists.side_effect = RedisConnectionError("down")
        redis.set.side_effect = RedisConnectionError("down")
        handler = ESignatureWebhookService(session, redis=redis)
        payload = delivery(negotiation, BUYER, "BUYER", "SIGNED")

        assert not (await handler.handle(payload)).duplicate
        assert (await handler.handle(payload)).duplicate


class TestIntegrityErrors:
    @pytest.mark.asyncio
    async def test_constraint_violation_without_stored_key_is_not_a_duplicate(
        self, session, service
    ) -> None:
        negotiation = await accepted_negotiation(service)
        handler = ESignatureWebhookService(session)
        handler._recorder.record_envelope_event = AsyncMock(
            side_effect=IntegrityError(
                "INSERT INTO contract_intent_metrics", {}, Exception("CHECK constraint failed")
            )
        )

        with pytest.raises(WebhookProcessingError) as exc_info:
            await handler.handle(delivery(negotiation, BUYER, "BUYER", "SENT"))
        assert "integrity error" in exc_info.value.message

        access = await service.get_negotiation(negotiation.id, BUYER)
        assert access.negotiation.contract.status == ContractStatus.DRAFT

    @pytest.mark.asyncio
    async def test_key_stored_by_concurrent_delivery_is_a_duplicate(
        self, session, service
    ) -> None:
        negotiation = await accepted_negotiation(service)
        payload = delivery(negotiation, BUYER, "BUYER", "SENT")
        first = await ESignatureWebhookService(session).handle(payload)

        handler = ESignatureWebhookService(session)
        # the pre-check misses the row, as it would for a delivery racing the first
        handler._metrics.get_by_idempotency_key = AsyncMock(side_effect=[None, object()])
        handler._recorder.record_envelope_event = AsyncMock(
            side_effect=IntegrityError(
                "INSERT INTO contract_intent_metrics", {}, Exception("UNIQUE constraint failed")
            )
        )

        outcome = await handler.handle(payload)
        assert outcome.duplicate
        assert outcome.idempotency_key == first.idempotency_key
