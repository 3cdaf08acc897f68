"""Clause-level diffing of contract text.

Contract text is split into clause units, one per non-blank line, and two
versions are aligned index by index. Pairs that match byte for byte are
``unchanged`` and differing pairs are ``modified``. Units beyond the shorter
sequence are ``added`` (from the target) or ``removed`` (from the base).

Numbered headings ("1. Scope", "2.1 Fees", "IV. Term", "a) Notice") are
flagged on the unit. Alignment is positional only: there is no word-level
or fuzzy matching.
"""

from __future__ import annotations

import enum
import re
from dataclasses import asdict, dataclass
from itertools import zip_longest
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

HEADING_PATTERN = re.compile(
    r"^(?:\d+(?:\.\d+)*[.)]?|[IVXLCDM]+\.|[A-Za-z]\))\s+\S",
)


class ClauseDiffType(enum.StrEnum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class ClauseUnit:
    index: int
    text: str
    is_heading: bool = False


@dataclass(frozen=True, slots=True)
class ClauseDiffSegment:
    """One aligned position in a clause diff."""

    type: ClauseDiffType
    base_index: int | None
    target_index: int | None
    base_text: str | None
    target_text: str | None

    @property
    def primary_text(self) -> str:
        """Target text for added/modified/unchanged segments, base text for removed."""
        if self.type is ClauseDiffType.REMOVED:
            return self.base_text or ""
        return self.target_text or ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass(frozen=True, slots=True)
class ClauseDiffSummary:
    added: int = 0
    removed: int = 0
    modified: int = 0
    unchanged: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def segment_clauses(text: str | None) -> list[ClauseUnit]:
    """Split contract text into clause units."""
    units: list[ClauseUnit] = []
    for line in (text or "").splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        units.append(
            ClauseUnit(
                index=len(units),
                text=stripped,
                is_heading=bool(HEADING_PATTERN.match(stripped)),
            )
        )
    return units


def compute_clause_diff(base: str | None, target: str | None) -> list[ClauseDiffSegment]:
    """Compare two contract texts clause by clause.

    Args:
        base: The earlier contract text. ``None`` is treated as empty.
        target: The newer contract text. ``None`` is treated as empty.

    Returns:
        One segment per aligned position, ordered by position.
    """
    segments: list[ClauseDiffSegment] = []
    for base_unit, target_unit in zip_longest(segment_clauses(base), segment_clauses(target)):
        if base_unit is None:
            segments.append(
                ClauseDiffSegment(
                    type=ClauseDiffType.ADDED,
                    base_index=None,
                    target_index=target_unit.index,
                    base_text=None,
                    target_text=target_unit.text,
                )
            )
        elif target_unit is None:
            segments.append(
                ClauseDiffSegment(
                    type=ClauseDiffType.REMOVED,
                    base_index=base_unit.index,
                    target_index=None,
                    base_text=base_unit.text,
                    target_text=None,
                )
            )
        else:
            same = base_unit.text == target_unit.text
            segments.append(
                ClauseDiffSegment(
                    type=ClauseDiffType.UNCHANGED if same else ClauseDiffType.MODIFIED,
                    base_index=base_unit.index,
                    target_index=target_unit.index,
                    base_text=base_unit.text,
                    target_text=target_unit.text,
                )
            )
    return segments


def summarize_clause_diff(diff: Iterable[ClauseDiffSegment]) -> ClauseDiffSummary:
    """Count segments per diff type."""
    counts = dict.fromkeys(ClauseDiffType, 0)
    for segment in diff:
        counts[segment.type] += 1
    return ClauseDiffSummary(
        added=counts[ClauseDiffType.ADDED],
        removed=counts[ClauseDiffType.REMOVED],
        modified=counts[ClauseDiffType.MODIFIED],
        unchanged=counts[ClauseDiffType.UNCHANGED],
    )
