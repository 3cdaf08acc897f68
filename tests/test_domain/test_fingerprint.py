"""Tests for diff, revision and webhook fingerprints."""

from __future__ import annotations

from negotiation_engine.domain.clause_diff import compute_clause_diff
from negotiation_engine.domain.fingerprint import (
    build_diff_fingerprint,
    build_webhook_idempotency_key,
    compute_negotiation_contract_fingerprint,
)


class TestDiffFingerprint:
    def test_format(self) -> None:
        diff = compute_clause_diff("keep\nold\ngone", "keep\nnew")
        assert build_diff_fingerprint(diff) == "unchanged:keep|modified:new|removed:gone"

    def test_equal_diffs_give_equal_fingerprints(self) -> None:
        first = build_diff_fingerprint(compute_clause_diff("a\nb", "a\nc\nd"))
        second = build_diff_fingerprint(compute_clause_diff("a\nb", "a\nc\nd"))
        assert first == second

    def test_empty_diff(self) -> None:
        assert build_diff_fingerprint([]) == ""


class TestContractFingerprint:
    def test_stable(self) -> None:
        first = compute_negotiation_contract_fingerprint("1. Scope\nLaptops", "v1")
        assert first == compute_negotiation_contract_fingerprint("1. Scope\nLaptops", "v1")
        assert len(first) == 64

    def test_body_change(self) -> None:
        assert compute_negotiation_contract_fingerprint(
            "body", "s"
        ) != compute_negotiation_contract_fingerprint("body!", "s")

    def test_summary_change(self) -> None:
        assert compute_negotiation_contract_fingerprint(
            "body", "s"
        ) != compute_negotiation_contract_fingerprint("body", "t")

    def test_missing_summary_equals_empty_summary(self) -> None:
        assert compute_negotiation_contract_fingerprint(
            "body", None
        ) == compute_negotiation_contract_fingerprint("body", "")

    def test_text_moved_between_fields(self) -> None:
        assert compute_negotiation_contract_fingerprint(
            "ab", "c"
        ) != compute_negotiation_contract_fingerprint("b", "ca")


class TestWebhookIdempotencyKey:
    def test_status_case_is_ignored(self) -> None:
        assert build_webhook_idempotency_key("n", "c", "p", "signed") == (
            build_webhook_idempotency_key("n", "c", "p", "SIGNED")
        )

    def test_each_field_matters(self) -> None:
        base = build_webhook_idempotency_key("n", "c", "p", "SIGNED")
        assert base.startswith("esign:")
        assert base != build_webhook_idempotency_key("n2", "c", "p", "SIGNED")
        assert base != build_webhook_idempotency_key("n", "c", "p2", "SIGNED")
        assert base != build_webhook_idempotency_key("n", "c", "p", "DECLINED")
