"""Unit tests for per-collection typed field extraction."""

from __future__ import annotations

from core.types import CollectionConfig, CollectionField
from transforms.collection_fields import (
    DEFAULT_COLLECTION_CONFIGS,
    extract_collection_fields,
    find_collection_config,
)
from transforms.payload_values import parse_payload

WILDFOREST = "0xa038c593115f6fcd673f6833e15462b475994879"


def test_find_collection_config_ignores_address_case() -> None:
    """Addresses should match regardless of hex digit case."""
    config = find_collection_config(DEFAULT_COLLECTION_CONFIGS, f" {WILDFOREST.upper()} ")

    assert config is not None and config.name == "Wildforest Units"


def test_find_collection_config_returns_none_for_unknown_address() -> None:
    """Unknown collections should get no typed fields."""
    assert find_collection_config(DEFAULT_COLLECTION_CONFIGS, "0xunknown") is None
    assert find_collection_config(DEFAULT_COLLECTION_CONFIGS, None) is None


def test_extract_collection_fields_renames_and_types_values() -> None:
    """Configured properties should land in typed, renamed fields."""
    pairs = parse_payload('{"tier": "3", "level": 5, "rarity": "Epic", "type": "Hero"}')

    extracted, errors = extract_collection_fields(pairs, DEFAULT_COLLECTION_CONFIGS[WILDFOREST])

    assert extracted == {"tier": 3, "level": 5, "rarity": "epic", "nft_type": "hero"}
    assert errors == []


def test_extract_collection_fields_reports_uncoercible_values() -> None:
    """A value that does not fit the field kind should be reported, not extracted."""
    pairs = parse_payload('{"tier": "high", "rarity": "Rare"}')

    extracted, errors = extract_collection_fields(pairs, DEFAULT_COLLECTION_CONFIGS[WILDFOREST])

    assert extracted == {"rarity": "rare"}
    assert [error.field.source_key for error in errors] == ["tier"]


def test_extract_collection_fields_skips_absent_and_structured_values() -> None:
    """Missing, null, and nested values should yield neither a field nor an error."""
    config = CollectionConfig(
        address="0xabc",
        name="Pets",
        fields=(
            CollectionField("a", "a", "integer"),
            CollectionField("b", "b", "integer"),
            CollectionField("c", "c", "keyword"),
        ),
    )
    pairs = parse_payload('{"b": null, "c": {"nested": 1}}')

    assert extract_collection_fields(pairs, config) == ({}, [])
