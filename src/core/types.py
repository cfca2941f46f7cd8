"""Shared typed models.

This module defines immutable data models passed between the record
source, transformer, batcher, writer pool, and migration coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping

from core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHECKPOINT_INTERVAL,
    DEFAULT_DRAIN_GRACE_SECONDS,
    DEFAULT_ID_FIELD,
    DEFAULT_MAX_RETRY_ATTEMPTS,
    DEFAULT_PAYLOAD_FIELD,
    DEFAULT_PROPERTIES_CAP,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_RETRY_MAX_DELAY_SECONDS,
    DEFAULT_WORKER_COUNT,
)

PropertyKind = Literal["boolean", "integer", "float", "string"]
FieldKind = Literal["keyword", "float", "integer", "boolean"]
OutcomeStatus = Literal["indexed", "rejected", "transport_failed"]
SinkItemStatus = Literal["indexed", "rejected", "not_attempted"]
MigrationState = Literal[
    "initializing",
    "resuming",
    "running",
    "draining",
    "completed",
    "interrupted",
]
AnomalyKind = Literal[
    "record_malformed",
    "missing_document_id",
    "field_coercion_failed",
    "payload_unparsable",
    "nested_object",
    "empty_array",
    "non_finite_number",
    "duplicate_mixed_types",
    "type_mismatch",
    "properties_cap_exceeded",
]


@dataclass(frozen=True)
class RawRecord:
    """One source row.

    Attributes:
        index: Zero-based data-row index within the source (header excluded).
        fields: Column name to raw string value, in header order.
    """

    index: int
    fields: Mapping[str, str]


@dataclass(frozen=True)
class Anomaly:
    """Recovered, attributable problem found while building a document."""

    kind: AnomalyKind
    source_index: int
    document_id: str | None = None
    key: str | None = None
    detail: str = ""
    dropped_count: int = 1


@dataclass(frozen=True)
class Document:
    """Structured sink document built from one raw record.

    Attributes:
        document_id: Stable identifier used as the sink upsert key.
        source_index: Data-row index the document was built from.
        fields: Fixed typed columns; absent values are omitted.
        properties: Extracted payload properties with per-key inferred types.
        raw_payload: Verbatim payload text kept for audit.
        anomalies: Anomalies recorded while building the document.
    """

    document_id: str
    source_index: int
    fields: Mapping[str, object]
    properties: Mapping[str, object]
    raw_payload: str | None = None
    anomalies: tuple[Anomaly, ...] = ()

    def to_sink_body(self, payload_field: str) -> dict[str, object]:
        """Render the JSON body sent to the sink."""
        body: dict[str, object] = dict(self.fields)
        body["properties"] = dict(self.properties)
        if self.raw_payload is not None:
            body[payload_field] = self.raw_payload
        return body


@dataclass(frozen=True)
class Batch:
    """Ordered group of documents covering a half-open source range."""

    batch_number: int
    start_index: int
    end_index: int
    documents: tuple[Document, ...]

    @property
    def size(self) -> int:
        """Number of documents carried by the batch."""
        return len(self.documents)


@dataclass(frozen=True)
class SinkItemResult:
    """Per-item answer of the sink bulk-write contract."""

    document_id: str
    status: SinkItemStatus
    reason: str | None = None


@dataclass(frozen=True)
class DocumentOutcome:
    """Final outcome of one document inside a batch write."""

    document_id: str
    status: OutcomeStatus
    reason: str | None = None


@dataclass(frozen=True)
class BatchResult:
    """Outcome of writing one batch to the sink.

    Attributes:
        batch: The batch that was written.
        outcomes: One outcome per document, in batch order.
        attempts: Number of bulk requests issued.
    """

    batch: Batch
    outcomes: tuple[DocumentOutcome, ...]
    attempts: int

    @property
    def indexed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == "indexed")

    @property
    def rejected_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == "rejected")

    @property
    def transport_failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == "transport_failed")

    @property
    def failed(self) -> bool:
        """Whether any document could not be delivered to the sink."""
        return self.transport_failed_count > 0


@dataclass(frozen=True)
class CollectionField:
    """One payload property copied to a typed top-level document field.

    Attributes:
        source_key: Property key in the payload.
        name: Destination document field.
        kind: Field kind the value is coerced to.
    """

    source_key: str
    name: str
    kind: FieldKind


@dataclass(frozen=True)
class CollectionConfig:
    """Typed fields extracted for one collection address."""

    address: str
    name: str
    fields: tuple[CollectionField, ...]


@dataclass(frozen=True)
class MigrationOptions:
    """Options for one migration run.

    Attributes:
        source_uri: Local CSV path or ``s3://bucket/key`` object.
        index_name: Destination index receiving documents.
        batch_size: Documents per bulk request.
        worker_count: Concurrent writer threads.
        max_retry_attempts: Bulk attempts per batch before it is failed.
        checkpoint_interval: Completed batches between checkpoint writes.
        properties_cap: Maximum extracted properties per document.
        id_field: Column holding the stable document identifier.
        payload_field: Column holding the semi-structured JSON payload.
        properties_key: Optional payload key whose object holds properties.
        retry_base_delay_seconds: First backoff delay between attempts.
        retry_max_delay_seconds: Upper bound for backoff delays.
        drain_grace_seconds: Wait for in-flight batches after interruption.
        fresh: Discard any existing checkpoint before running.
        collection_configs: Extra collections keyed by lowercase address,
            merged over the built-in ones; their configured properties are
            lifted into typed fields.
    """

    source_uri: str
    index_name: str
    batch_size: int = DEFAULT_BATCH_SIZE
    worker_count: int = DEFAULT_WORKER_COUNT
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL
    properties_cap: int = DEFAULT_PROPERTIES_CAP
    id_field: str = DEFAULT_ID_FIELD
    payload_field: str = DEFAULT_PAYLOAD_FIELD
    properties_key: str | None = None
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    retry_max_delay_seconds: float = DEFAULT_RETRY_MAX_DELAY_SECONDS
    drain_grace_seconds: float = DEFAULT_DRAIN_GRACE_SECONDS
    fresh: bool = False
    collection_configs: Mapping[str, CollectionConfig] | None = None


@dataclass(frozen=True)
class MigrationSummary:
    """Aggregate counts reported when a migration run ends."""

    state: MigrationState
    source_uri: str
    resume_index: int
    total_records: int | None
    records_read: int
    skipped_records: int
    successful_batches: int
    failed_batches: int
    indexed_documents: int
    rejected_documents: int
    dropped_property_values: int
    highest_contiguous_completed_index: int
    duration_seconds: float
    anomaly_counts: Mapping[str, int] = field(default_factory=dict)

    @property
    def fully_migrated(self) -> bool:
        """Whether every source row is covered by a completed batch."""
        return (
            self.total_records is not None
            and self.highest_contiguous_completed_index >= self.total_records
        )
