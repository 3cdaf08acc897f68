"""Helpers shared by the pydantic schemas."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pydantic import ValidationError


def describe_validation_error(exc: ValidationError) -> tuple[str, list[str]]:
    """Condense a pydantic ValidationError into a message and the offending fields."""
    fields: list[str] = []
    parts: list[str] = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "body"
        if field not in fields:
            fields.append(field)
        parts.append(f"{field}: {error['msg']}")
    return "; ".join(parts), fields
