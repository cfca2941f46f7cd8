"""Type-safe field readers for run-spec migration entries.

Each reader returns None for an absent field and raises
``SluiceRunSpecError`` naming the field when the value has the wrong type.
"""

from __future__ import annotations

from typing import Mapping, Sequence, cast, get_args

from core.errors import SluiceRunSpecError
from core.types import CollectionConfig, CollectionField, FieldKind


def required_string(entry: Mapping[str, object], field_name: str) -> str:
    """Read a required non-empty string field."""
    value = optional_string(entry, field_name)
    if value is None:
        raise SluiceRunSpecError(f"Run-spec migration is missing required field '{field_name}'.")
    return value


def optional_string(entry: Mapping[str, object], field_name: str) -> str | None:
    value = entry.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise SluiceRunSpecError(f"Run-spec field '{field_name}' must be a string when provided.")
    return value.strip() or None


def int_with_default(entry: Mapping[str, object], field_name: str, default_value: int) -> int:
    """Read an integer field, keeping explicit values such as zero for validation."""
    value = entry.get(field_name)
    if value is None:
        return default_value
    if isinstance(value, bool) or not isinstance(value, int):
        raise SluiceRunSpecError(f"Run-spec field '{field_name}' must be an integer.")
    return value


def float_with_default(entry: Mapping[str, object], field_name: str, default_value: float) -> float:
    value = entry.get(field_name)
    if value is None:
        return default_value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SluiceRunSpecError(f"Run-spec field '{field_name}' must be numeric.")
    return float(value)


def bool_with_default(entry: Mapping[str, object], field_name: str, default_value: bool) -> bool:
    value = entry.get(field_name)
    if value is None:
        return default_value
    if not isinstance(value, bool):
        raise SluiceRunSpecError(f"Run-spec field '{field_name}' must be true/false.")
    return value


def collection_configs(
    entry: Mapping[str, object],
    field_name: str,
) -> dict[str, CollectionConfig] | None:
    """Read collection configs keyed by lowercase address.

    Each list item holds ``address``, an optional ``name``, and ``fields``:
    a list of ``{source, field, kind}`` mappings.
    """
    value = entry.get(field_name)
    if value is None:
        return None
    configs: dict[str, CollectionConfig] = {}
    for position, raw_collection in enumerate(_mapping_list(value, field_name)):
        context = f"{field_name}[{position}]"
        address = required_string(raw_collection, "address").lower()
        raw_fields = raw_collection.get("fields")
        if raw_fields is None:
            raise SluiceRunSpecError(f"Run-spec field '{context}' is missing 'fields'.")
        fields = tuple(
            _collection_field(raw_field, f"{context}.fields")
            for raw_field in _mapping_list(raw_fields, f"{context}.fields")
        )
        configs[address] = CollectionConfig(
            address=address,
            name=optional_string(raw_collection, "name") or address,
            fields=fields,
        )
    return configs


def _collection_field(raw_field: Mapping[str, object], context: str) -> CollectionField:
    kind = required_string(raw_field, "kind")
    if kind not in get_args(FieldKind):
        raise SluiceRunSpecError(
            f"Run-spec field '{context}' has unknown kind '{kind}'. "
            f"Use one of: {', '.join(get_args(FieldKind))}."
        )
    source_key = required_string(raw_field, "source")
    return CollectionField(
        source_key=source_key,
        name=optional_string(raw_field, "field") or source_key,
        kind=cast(FieldKind, kind),
    )


def _mapping_list(value: object, field_name: str) -> list[Mapping[str, object]]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise SluiceRunSpecError(f"Run-spec field '{field_name}' must be a list.")
    items: list[Mapping[str, object]] = []
    for item in value:
        if not isinstance(item, Mapping):
            raise SluiceRunSpecError(f"Run-spec field '{field_name}' must list mappings.")
        items.append(item)
    return items
