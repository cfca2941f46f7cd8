"""Shared log of recovered anomalies.

Every anomaly is logged with its record index, document id, and key so a
run can be audited afterwards; counts feed the migration summary.
"""

from __future__ import annotations

from collections import Counter
import threading

from core.logging_config import get_logger
from core.types import Anomaly, AnomalyKind

_LOGGER = get_logger(__name__)

_VALUE_DROP_KINDS: frozenset[AnomalyKind] = frozenset(
    {
        "nested_object",
        "non_finite_number",
        "duplicate_mixed_types",
        "type_mismatch",
        "properties_cap_exceeded",
    }
)
_RECORD_LEVEL_KINDS: frozenset[AnomalyKind] = frozenset(
    {"record_malformed", "missing_document_id", "payload_unparsable"}
)


class AnomalyLog:
    """Thread-safe anomaly counter that logs each entry."""

    def __init__(self, index_name: str) -> None:
        self._index_name = index_name
        self._counts: Counter[str] = Counter()
        self._dropped_property_values = 0
        self._lock = threading.Lock()

    def record(self, anomaly: Anomaly) -> None:
        """Count and log one anomaly."""
        with self._lock:
            self._counts[anomaly.kind] += 1
            if anomaly.kind in _VALUE_DROP_KINDS:
                self._dropped_property_values += anomaly.dropped_count
        log_method = (
            _LOGGER.warning if anomaly.kind in _RECORD_LEVEL_KINDS else _LOGGER.info
        )
        log_method(
            "property_anomaly" if anomaly.key is not None else "record_anomaly",
            index_name=self._index_name,
            kind=anomaly.kind,
            source_index=anomaly.source_index,
            document_id=anomaly.document_id,
            key=anomaly.key,
            detail=anomaly.detail,
            dropped_count=anomaly.dropped_count,
        )

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    @property
    def dropped_property_values(self) -> int:
        with self._lock:
            return self._dropped_property_values
