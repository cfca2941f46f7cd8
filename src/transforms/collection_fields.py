"""Per-collection typed fields lifted out of payload properties.

Known collections, keyed by lowercase ``token_address``, name payload
properties worth querying directly. Each configured property is copied to a
top-level document field of a fixed kind; keyword values are lowercased to
match a lowercase keyword normalizer in the index.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from core.types import CollectionConfig, CollectionField, FieldKind
from transforms.document_schema import CoercionError, coerce_field
from transforms.payload_values import group_pairs, resolve_property


@dataclass(frozen=True)
class CollectionFieldError:
    """A configured property whose value could not be coerced."""

    field: CollectionField
    detail: str


def _config(address: str, name: str, *fields: tuple[str, str, FieldKind]) -> CollectionConfig:
    return CollectionConfig(
        address=address.lower(),
        name=name,
        fields=tuple(CollectionField(source, target, kind) for source, target, kind in fields),
    )


DEFAULT_COLLECTION_CONFIGS: Mapping[str, CollectionConfig] = {
    config.address: config
    for config in (
        _config(
            "0xa038c593115f6fcd673f6833e15462b475994879",
            "Wildforest Units",
            ("tier", "tier", "integer"),
            ("level", "level", "integer"),
            ("rarity", "rarity", "keyword"),
            ("type", "nft_type", "keyword"),
        ),
        _config(
            "0x32950db2a7164ae833121501c797d79e7b79d74c",
            "Axie",
            ("class", "class", "keyword"),
            ("body", "body_part", "keyword"),
            ("breedCount", "breed_count", "integer"),
        ),
        _config(
            "0x8c666c2fab1a27c49a01d608e23daa99dfa2b489",
            "Land",
            ("land_type", "land_type", "keyword"),
            ("col", "x_coordinate", "integer"),
            ("row", "y_coordinate", "integer"),
        ),
    )
}


def find_collection_config(
    configs: Mapping[str, CollectionConfig],
    token_address: object,
) -> CollectionConfig | None:
    """Return the config for a collection address, ignoring case."""
    if not isinstance(token_address, str):
        return None
    return configs.get(token_address.strip().lower())


def extract_collection_fields(
    pairs: Sequence[tuple[str, object]],
    config: CollectionConfig,
) -> tuple[dict[str, object], list[CollectionFieldError]]:
    """Copy configured properties into typed fields.

    Args:
        pairs: Property pairs selected from the payload.
        config: Collection whose fields are extracted.

    Returns:
        Extracted fields and the configured properties that failed coercion.
        Absent, null, and structurally skipped properties yield neither.
    """
    grouped = group_pairs(pairs)
    extracted: dict[str, object] = {}
    errors: list[CollectionFieldError] = []
    for field in config.fields:
        values = grouped.get(field.source_key)
        if values is None:
            continue
        resolved = resolve_property(values)
        if resolved.kind is None:
            continue
        value = resolved.value[0] if isinstance(resolved.value, list) else resolved.value
        try:
            coerced = coerce_field(_as_text(value), field.kind)
        except CoercionError as error:
            errors.append(CollectionFieldError(field, str(error)))
            continue
        if coerced is None:
            continue
        extracted[field.name] = str(coerced).lower() if field.kind == "keyword" else coerced
    return extracted, errors


def _as_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
