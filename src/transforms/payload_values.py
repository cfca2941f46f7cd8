"""Semi-structured payload parsing and value classification.

This module turns payload JSON into ordered key/value pairs (duplicate keys
preserved) and classifies each value into a tagged property kind with
explicit drop rules, independent of implicit host-language coercion.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import math
from typing import Sequence

from core.types import AnomalyKind, PropertyKind


class PayloadParseError(ValueError):
    """Raised when payload text is not a JSON object."""


class _ObjectPairs(list):
    """Ordered key/value pairs of one JSON object."""


@dataclass(frozen=True)
class ResolvedProperty:
    """Resolution of one payload key.

    Attributes:
        kind: Inferred kind, or None when the key yields no value.
        value: Normalized value (a list for grouped duplicates).
        anomaly: Anomaly kind when the key was skipped for a reason worth logging.
        detail: Human-readable anomaly detail.
    """

    kind: PropertyKind | None = None
    value: object = None
    anomaly: AnomalyKind | None = None
    detail: str = ""


_OMITTED = ResolvedProperty()


def parse_payload(text: str) -> list[tuple[str, object]]:
    """Parse payload JSON into top-level key/value pairs.

    Args:
        text: Raw payload text.

    Returns:
        Pairs in arrival order; repeated keys appear once per occurrence.

    Raises:
        PayloadParseError: If the text is not valid JSON or not an object.
    """
    try:
        parsed = json.loads(
            text,
            object_pairs_hook=_ObjectPairs,
            parse_constant=_reject_constant,
        )
    except ValueError as error:
        raise PayloadParseError(f"invalid JSON: {error}") from error
    if not isinstance(parsed, _ObjectPairs):
        raise PayloadParseError(f"expected JSON object, got {_json_type_name(parsed)}")
    return list(parsed)


def select_property_pairs(
    pairs: Sequence[tuple[str, object]],
    properties_key: str | None,
) -> list[tuple[str, object]]:
    """Return the pairs that hold extractable properties.

    Args:
        pairs: Top-level payload pairs.
        properties_key: Optional key whose object value holds the properties.

    Returns:
        The nested object's pairs, the top-level pairs, or an empty list when
        the configured key is absent.
    """
    if properties_key is None:
        return list(pairs)
    for key, value in pairs:
        if key == properties_key and isinstance(value, _ObjectPairs):
            return list(value)
    return []


def group_pairs(pairs: Sequence[tuple[str, object]]) -> dict[str, list[object]]:
    """Group pairs by key, keeping first-arrival key order."""
    grouped: dict[str, list[object]] = {}
    for key, value in pairs:
        grouped.setdefault(key, []).append(value)
    return grouped


def resolve_property(values: Sequence[object]) -> ResolvedProperty:
    """Resolve all occurrences of one payload key into a single property.

    Args:
        values: Raw JSON values for the key, in arrival order.

    Returns:
        Resolved property; ``kind`` is None when the key is dropped or omitted.
    """
    resolved = [_resolve_single(value) for value in values]
    for entry in resolved:
        if entry.anomaly is not None:
            return entry
    present = [entry for entry in resolved if entry.kind is not None]
    if not present:
        return _OMITTED
    if len(present) == 1:
        return present[0]
    kinds = {entry.kind for entry in present}
    if len(kinds) > 1:
        return ResolvedProperty(
            anomaly="duplicate_mixed_types",
            detail=f"repeated key with kinds {sorted(str(kind) for kind in kinds)}",
        )
    return ResolvedProperty(kind=present[0].kind, value=[entry.value for entry in present])


def classify_scalar(value: object) -> ResolvedProperty:
    """Classify a JSON scalar into a property kind.

    Integral floats are normalized to ``int`` and classified as integers.
    Numbers that overflow to infinity resolve to a ``non_finite_number``
    anomaly.
    """
    if value is None:
        return _OMITTED
    if isinstance(value, bool):
        return ResolvedProperty(kind="boolean", value=value)
    if isinstance(value, int):
        return ResolvedProperty(kind="integer", value=value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return ResolvedProperty(anomaly="non_finite_number", detail="number out of range")
        if value.is_integer():
            return ResolvedProperty(kind="integer", value=int(value))
        return ResolvedProperty(kind="float", value=value)
    if isinstance(value, str):
        return ResolvedProperty(kind="string", value=value)
    return ResolvedProperty(anomaly="nested_object", detail=f"unsupported {_json_type_name(value)}")


def is_json_object(value: object) -> bool:
    """Return whether a parsed value came from a JSON object."""
    return isinstance(value, _ObjectPairs)


def _resolve_single(value: object) -> ResolvedProperty:
    if isinstance(value, _ObjectPairs):
        return ResolvedProperty(anomaly="nested_object", detail="nested objects are not flattened")
    if isinstance(value, list):
        if not value:
            return ResolvedProperty(anomaly="empty_array", detail="empty array")
        first = value[0]
        if isinstance(first, (list, _ObjectPairs)):
            return ResolvedProperty(
                anomaly="nested_object",
                detail=f"array of {_json_type_name(first)} is not flattened",
            )
        return classify_scalar(first)
    return classify_scalar(value)


def _reject_constant(constant: str) -> object:
    raise ValueError(f"non-finite number {constant} is not allowed")


def _json_type_name(value: object) -> str:
    if isinstance(value, _ObjectPairs):
        return "object"
    if isinstance(value, list):
        return "array"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"
