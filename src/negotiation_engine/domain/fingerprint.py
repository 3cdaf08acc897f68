"""Stable fingerprints for clause diffs, contract revisions and webhook deliveries."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from negotiation_engine.domain.clause_diff import ClauseDiffSegment

SEGMENT_SEPARATOR = "|"


def build_diff_fingerprint(diff: Iterable[ClauseDiffSegment]) -> str:
    """Serialize a clause diff as ``"<type>:<text>|<type>:<text>|..."``.

    Removed segments contribute their base text, every other type its target
    text. Equal diffs always serialize identically.
    """
    return SEGMENT_SEPARATOR.join(
        f"{segment.type.value}:{segment.primary_text}" for segment in diff
    )


def compute_negotiation_contract_fingerprint(body: str, summary: str | None = None) -> str:
    """Return a SHA-256 hex digest identifying one revision's content.

    Summary and body are length-prefixed before hashing so that moving text
    from one into the other changes the digest.
    """
    summary = summary or ""
    material = f"{len(summary)}:{summary}\n{len(body)}:{body}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def build_webhook_idempotency_key(
    negotiation_id: str,
    contract_id: str,
    participant_id: str,
    status: str,
) -> str:
    """Derive the deduplication key for one e-signature provider delivery."""
    material = "\x1f".join((negotiation_id, contract_id, participant_id, status.upper()))
    return "esign:" + hashlib.sha256(material.encode("utf-8")).hexdigest()
