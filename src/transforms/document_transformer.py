"""Raw record to search document transform.

This module copies fixed columns with scalar coercion and lifts configured
collection properties into typed fields. Payload properties are extracted
under first-type-wins rules and capped per document. Every recovered
problem is recorded in the shared anomaly log; documents are always produced.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from core.errors import RecordMalformedError
from core.types import Anomaly, CollectionConfig, Document, RawRecord
from transforms.anomaly_log import AnomalyLog
from transforms.collection_fields import (
    DEFAULT_COLLECTION_CONFIGS,
    extract_collection_fields,
    find_collection_config,
)
from transforms.document_schema import (
    DEFAULT_DOCUMENT_SCHEMA,
    DEFAULT_PAYLOAD_OVERRIDE_FIELDS,
    CoercionError,
    FieldSpec,
    coerce_field,
)
from transforms.payload_values import (
    PayloadParseError,
    group_pairs,
    parse_payload,
    resolve_property,
    select_property_pairs,
)
from transforms.property_registry import PropertyTypeRegistry


class DocumentTransformer:
    """Build documents from raw records for one migration run."""

    def __init__(
        self,
        registry: PropertyTypeRegistry,
        anomaly_log: AnomalyLog,
        id_field: str,
        payload_field: str,
        properties_cap: int,
        properties_key: str | None = None,
        schema: Sequence[FieldSpec] = DEFAULT_DOCUMENT_SCHEMA,
        payload_override_fields: Iterable[str] = DEFAULT_PAYLOAD_OVERRIDE_FIELDS,
        collection_configs: Mapping[str, CollectionConfig] = DEFAULT_COLLECTION_CONFIGS,
    ) -> None:
        self._registry = registry
        self._anomaly_log = anomaly_log
        self._id_field = id_field
        self._payload_field = payload_field
        self._properties_cap = properties_cap
        self._properties_key = properties_key
        self._schema = tuple(spec for spec in schema if spec.name != payload_field)
        self._override_fields = frozenset(payload_override_fields)
        self._collection_configs = collection_configs

    def transform(self, record: RawRecord) -> Document:
        """Transform one raw record into a document.

        Args:
            record: Source row.

        Returns:
            Immutable document carrying the anomalies found while building it.

        Raises:
            RecordMalformedError: If the row has no document id.
        """
        document_id = (record.fields.get(self._id_field) or "").strip()
        if not document_id:
            raise RecordMalformedError(
                f"column '{self._id_field}' is empty; document id is required",
                record.index,
            )
        anomalies: list[Anomaly] = []
        fields = self._build_fields(record, document_id, anomalies)
        raw_payload = record.fields.get(self._payload_field)
        if raw_payload is not None and not raw_payload.strip():
            raw_payload = None
        properties: dict[str, object] = {}
        if raw_payload is not None:
            try:
                pairs = parse_payload(raw_payload)
            except PayloadParseError as error:
                anomalies.append(
                    Anomaly(
                        kind="payload_unparsable",
                        source_index=record.index,
                        document_id=document_id,
                        detail=str(error),
                    )
                )
            else:
                self._apply_payload_overrides(pairs, fields)
                property_pairs = select_property_pairs(pairs, self._properties_key)
                self._apply_collection_fields(property_pairs, fields, record.index, anomalies)
                properties = self._extract_properties(
                    property_pairs, record.index, document_id, anomalies
                )
        for anomaly in anomalies:
            self._anomaly_log.record(anomaly)
        return Document(
            document_id=document_id,
            source_index=record.index,
            fields=fields,
            properties=properties,
            raw_payload=raw_payload,
            anomalies=tuple(anomalies),
        )

    def _build_fields(
        self,
        record: RawRecord,
        document_id: str,
        anomalies: list[Anomaly],
    ) -> dict[str, object]:
        fields: dict[str, object] = {self._id_field: document_id}
        for spec in self._schema:
            if spec.name == self._id_field:
                continue
            try:
                value = coerce_field(record.fields.get(spec.name), spec.kind)
            except CoercionError as error:
                anomalies.append(
                    Anomaly(
                        kind="field_coercion_failed",
                        source_index=record.index,
                        document_id=document_id,
                        key=spec.name,
                        detail=f"{spec.kind}: {error}",
                    )
                )
                continue
            if value is not None:
                fields[spec.name] = value
        return fields

    def _apply_payload_overrides(
        self,
        pairs: Sequence[tuple[str, object]],
        fields: dict[str, object],
    ) -> None:
        applied: set[str] = set()
        for key, value in pairs:
            if key in self._override_fields and key not in applied:
                if isinstance(value, str) and value.strip():
                    fields[key] = value
                    applied.add(key)

    def _apply_collection_fields(
        self,
        pairs: Sequence[tuple[str, object]],
        fields: dict[str, object],
        source_index: int,
        anomalies: list[Anomaly],
    ) -> None:
        config = find_collection_config(self._collection_configs, fields.get("token_address"))
        if config is None:
            return
        extracted, errors = extract_collection_fields(pairs, config)
        extracted.pop(self._id_field, None)
        fields.update(extracted)
        for error in errors:
            anomalies.append(
                Anomaly(
                    kind="field_coercion_failed",
                    source_index=source_index,
                    document_id=str(fields[self._id_field]),
                    key=error.field.name,
                    detail=(
                        f"{config.name} property '{error.field.source_key}' "
                        f"as {error.field.kind}: {error.detail}"
                    ),
                )
            )

    def _extract_properties(
        self,
        pairs: Sequence[tuple[str, object]],
        source_index: int,
        document_id: str,
        anomalies: list[Anomaly],
    ) -> dict[str, object]:
        properties: dict[str, object] = {}
        overflow_keys: list[str] = []
        for key, values in group_pairs(pairs).items():
            resolved = resolve_property(values)
            if resolved.anomaly is not None:
                anomalies.append(
                    Anomaly(
                        kind=resolved.anomaly,
                        source_index=source_index,
                        document_id=document_id,
                        key=key,
                        detail=resolved.detail,
                    )
                )
                continue
            if resolved.kind is None:
                continue
            if len(properties) >= self._properties_cap:
                overflow_keys.append(key)
                continue
            if not self._registry.claim(key, resolved.kind):
                anomalies.append(
                    Anomaly(
                        kind="type_mismatch",
                        source_index=source_index,
                        document_id=document_id,
                        key=key,
                        detail=(
                            f"value kind {resolved.kind} != registered "
                            f"{self._registry.kind_of(key)}"
                        ),
                    )
                )
                continue
            properties[key] = resolved.value
        if overflow_keys:
            anomalies.append(
                Anomaly(
                    kind="properties_cap_exceeded",
                    source_index=source_index,
                    document_id=document_id,
                    detail=(
                        f"cap {self._properties_cap} reached; dropped "
                        f"{', '.join(overflow_keys)}"
                    ),
                    dropped_count=len(overflow_keys),
                )
            )
        return properties
