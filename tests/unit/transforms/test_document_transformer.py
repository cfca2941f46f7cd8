"""Unit tests for the raw record to document transform."""

from __future__ import annotations

import json

import pytest

from core.errors import RecordMalformedError
from core.types import RawRecord
from transforms.anomaly_log import AnomalyLog
from transforms.document_transformer import DocumentTransformer
from transforms.property_registry import PropertyTypeRegistry


def _transformer(
    properties_cap: int = 60,
    properties_key: str | None = None,
) -> tuple[DocumentTransformer, AnomalyLog]:
    anomaly_log = AnomalyLog("nft")
    transformer = DocumentTransformer(
        PropertyTypeRegistry("nft"),
        anomaly_log,
        id_field="token_id",
        payload_field="raw_metadata",
        properties_cap=properties_cap,
        properties_key=properties_key,
    )
    return transformer, anomaly_log


def _record(index: int, token_id: str, payload: str, **columns: str) -> RawRecord:
    return RawRecord(index=index, fields={"token_id": token_id, "raw_metadata": payload, **columns})


def test_transform_concrete_two_record_scenario() -> None:
    """A later string value for a numeric key should be dropped, other keys kept."""
    transformer, anomaly_log = _transformer()

    first = transformer.transform(
        _record(0, "409192", '{"tier":1,"level":5,"rarity":"Common"}')
    )
    second = transformer.transform(_record(1, "12345", '{"tier":"unknown","level":7}'))

    assert first.properties == {"tier": 1, "level": 5, "rarity": "Common"}
    assert second.properties == {"level": 7}
    assert [(anomaly.kind, anomaly.key) for anomaly in second.anomalies] == [
        ("type_mismatch", "tier")
    ]
    assert anomaly_log.counts() == {"type_mismatch": 1}


def test_transform_first_type_wins_keeps_other_keys() -> None:
    """Only the mismatched key should be absent from the later document."""
    transformer, _ = _transformer()
    transformer.transform(_record(0, "1", '{"speed": 10}'))

    document = transformer.transform(_record(1, "2", '{"speed": "fast", "color": "red"}'))

    assert document.properties == {"color": "red"}


def test_transform_enforces_properties_cap() -> None:
    """A 75-key payload should keep 60 properties and record 15 drops."""
    transformer, anomaly_log = _transformer()
    payload = json.dumps({f"key_{position:02d}": position for position in range(75)})

    document = transformer.transform(_record(0, "1", payload))

    assert len(document.properties) == 60
    assert "key_59" in document.properties and "key_60" not in document.properties
    cap_anomalies = [a for a in document.anomalies if a.kind == "properties_cap_exceeded"]
    assert [anomaly.dropped_count for anomaly in cap_anomalies] == [15]
    assert anomaly_log.dropped_property_values == 15


def test_transform_unparsable_payload_keeps_document() -> None:
    """Broken payload JSON should yield empty properties and one anomaly."""
    transformer, _ = _transformer()

    document = transformer.transform(_record(3, "9", "{not json"))

    assert document.properties == {}
    assert document.raw_payload == "{not json"
    assert [anomaly.kind for anomaly in document.anomalies] == ["payload_unparsable"]


def test_transform_empty_payload_has_no_anomaly() -> None:
    """An empty payload column should produce no properties and no anomaly."""
    transformer, _ = _transformer()

    document = transformer.transform(_record(0, "9", "  "))

    assert (document.properties, document.raw_payload, document.anomalies) == ({}, None, ())


def test_transform_missing_id_raises() -> None:
    """Rows without a document id cannot be upserted idempotently."""
    transformer, _ = _transformer()

    with pytest.raises(RecordMalformedError) as error_info:
        transformer.transform(_record(4, " ", "{}"))

    assert error_info.value.index == 4


def test_transform_coerces_fixed_columns() -> None:
    """Fixed columns should be typed and empty values omitted."""
    transformer, _ = _transformer()

    document = transformer.transform(
        _record(0, "1", "{}", price="12.5", is_shown="t", order_id="", owner=" 0xabc ")
    )

    assert document.fields == {"token_id": "1", "price": 12.5, "is_shown": True, "owner": "0xabc"}


def test_transform_logs_field_coercion_failures() -> None:
    """Unparsable fixed columns should be dropped with an anomaly."""
    transformer, _ = _transformer()

    document = transformer.transform(_record(0, "1", "{}", price="cheap"))

    assert "price" not in document.fields
    assert [(a.kind, a.key) for a in document.anomalies] == [("field_coercion_failed", "price")]


def test_transform_payload_strings_override_columns() -> None:
    """Payload name and image strings should win over CSV columns."""
    transformer, _ = _transformer()

    document = transformer.transform(
        _record(0, "1", '{"name": "Axie #1", "image": ""}', name="csv name", image="csv.png")
    )

    assert (document.fields["name"], document.fields["image"]) == ("Axie #1", "csv.png")


def test_transform_reads_properties_under_configured_key() -> None:
    """With a properties key only the nested object's keys are extracted."""
    transformer, _ = _transformer(properties_key="properties")

    document = transformer.transform(
        _record(0, "1", '{"name": "Axie", "properties": {"tier": 1, "class": "Aqua"}}')
    )

    assert document.properties == {"tier": 1, "class": "Aqua"}


def test_transform_sink_body_carries_payload_verbatim() -> None:
    """The sink body should include properties and the untouched payload text."""
    transformer, _ = _transformer()
    payload = '{"tier":1}'

    body = transformer.transform(_record(0, "1", payload)).to_sink_body("raw_metadata")

    assert (body["properties"], body["raw_metadata"]) == ({"tier": 1}, payload)


def test_transform_drops_out_of_range_number_only() -> None:
    """An overflowing number should drop its key and keep the rest of the document."""
    transformer, anomaly_log = _transformer()

    document = transformer.transform(_record(0, "1", '{"x": 1e400, "y": 1}'))

    assert document.properties == {"y": 1}
    assert [(anomaly.kind, anomaly.key) for anomaly in document.anomalies] == [
        ("non_finite_number", "x")
    ]
    assert anomaly_log.dropped_property_values == 1


def test_transform_lifts_collection_properties_into_fields() -> None:
    """Known collections should get typed top-level fields from their properties."""
    transformer, _ = _transformer()
    record = _record(
        0,
        "7",
        '{"col": 12, "row": "-4", "land_type": "Forest"}',
        token_address="0x8C666C2FAB1A27C49A01D608E23DAA99DFA2B489",
    )

    document = transformer.transform(record)

    assert (document.fields["x_coordinate"], document.fields["y_coordinate"]) == (12, -4)
    assert document.fields["land_type"] == "forest"
    assert document.properties == {"col": 12, "row": "-4", "land_type": "Forest"}


def test_transform_records_collection_coercion_failures() -> None:
    """An uncoercible collection property should be logged and left out of fields."""
    transformer, anomaly_log = _transformer()
    record = _record(
        0,
        "7",
        '{"breedCount": 2.5}',
        token_address="0x32950db2a7164ae833121501c797d79e7b79d74c",
    )

    document = transformer.transform(record)

    assert "breed_count" not in document.fields
    assert [(anomaly.kind, anomaly.key) for anomaly in document.anomalies] == [
        ("field_coercion_failed", "breed_count")
    ]
    assert anomaly_log.counts() == {"field_coercion_failed": 1}


def test_transform_ignores_collection_config_for_unknown_address() -> None:
    """Unknown collections keep only the fixed columns and properties."""
    transformer, _ = _transformer()

    document = transformer.transform(_record(0, "7", '{"col": 12}', token_address="0xother"))

    assert "x_coordinate" not in document.fields
    assert document.properties == {"col": 12}
