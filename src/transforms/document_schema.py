"""Fixed document columns and scalar coercion.

This module declares which CSV columns become typed document fields and
how each raw string is coerced. Empty strings always become absent values.
"""

from __future__ import annotations

from dataclasses import dataclass
import math

from core.types import FieldKind


@dataclass(frozen=True)
class FieldSpec:
    """One fixed document column."""

    name: str
    kind: FieldKind


class CoercionError(ValueError):
    """Raised when a non-empty raw value cannot be coerced."""


def _fields(kind: FieldKind, *names: str) -> tuple[FieldSpec, ...]:
    return tuple(FieldSpec(name=name, kind=kind) for name in names)


DEFAULT_DOCUMENT_SCHEMA: tuple[FieldSpec, ...] = (
    *_fields("keyword", "token_address", "token_id", "owner"),
    *_fields("float", "base_price", "ended_price", "price", "ron_price"),
    *_fields("integer", "ended_at", "expired_at", "kind", "order_id", "started_at"),
    *_fields("keyword", "maker", "matcher", "payment_token", "state", "order_status"),
    *_fields("keyword", "name", "image", "video", "cdn_image", "animation_url", "description"),
    *_fields("integer", "metadata_last_updated", "ownership_block_number"),
    *_fields("integer", "ownership_log_index"),
    *_fields("boolean", "is_shown"),
)

# Payload strings that win over the CSV column of the same name.
DEFAULT_PAYLOAD_OVERRIDE_FIELDS: tuple[str, ...] = (
    "name",
    "image",
    "video",
    "animation_url",
    "description",
)

_TRUE_VALUES = frozenset({"t", "true"})
_FALSE_VALUES = frozenset({"f", "false"})


def coerce_field(raw_value: str | None, kind: FieldKind) -> object:
    """Coerce one raw column value.

    Args:
        raw_value: Raw string from the CSV row, or None when absent.
        kind: Target field kind.

    Returns:
        Coerced value, or None when the raw value is empty.

    Raises:
        CoercionError: If a non-empty value does not parse as ``kind``.
    """
    if raw_value is None:
        return None
    value = raw_value.strip()
    if not value:
        return None
    if kind == "keyword":
        return value
    if kind == "integer":
        try:
            return int(value)
        except ValueError as error:
            raise CoercionError(f"'{value}' is not an integer") from error
    if kind == "float":
        try:
            parsed = float(value)
        except ValueError as error:
            raise CoercionError(f"'{value}' is not a number") from error
        if not math.isfinite(parsed):
            raise CoercionError(f"'{value}' is not a finite number")
        return parsed
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise CoercionError(f"'{value}' is not a boolean")
