"""Batch writer with bounded retries.

This module applies one batch to a bulk sink. Settled documents (indexed
or rejected) are never resent; unsettled documents are retried with
exponential backoff until the attempt budget runs out or cancellation is
requested. A refused request fails the batch at once.
"""

from __future__ import annotations

import threading

from core.errors import SluiceSinkRequestError, SluiceSinkTransportError
from core.logging_config import get_logger
from core.types import Batch, BatchResult, Document, DocumentOutcome
from sink.bulk_sink import BulkSink

_LOGGER = get_logger(__name__)


def backoff_delay(retry_number: int, base_delay: float, max_delay: float) -> float:
    """Return the delay before retry ``retry_number`` (1-based)."""
    return min(base_delay * (2 ** (retry_number - 1)), max_delay)


class BulkWriter:
    """Write batches to one destination index."""

    def __init__(
        self,
        sink: BulkSink,
        index_name: str,
        payload_field: str,
        max_attempts: int,
        retry_base_delay_seconds: float,
        retry_max_delay_seconds: float,
    ) -> None:
        self._sink = sink
        self._index_name = index_name
        self._payload_field = payload_field
        self._max_attempts = max_attempts
        self._base_delay = retry_base_delay_seconds
        self._max_delay = retry_max_delay_seconds

    def write(self, batch: Batch, cancel_event: threading.Event | None = None) -> BatchResult:
        """Write one batch and classify every document's outcome.

        Args:
            batch: Batch to write.
            cancel_event: When set, no further retries are attempted.

        Returns:
            Batch result; documents never settled are ``transport_failed``.
        """
        cancel_event = cancel_event or threading.Event()
        settled: dict[int, DocumentOutcome] = {}
        pending: list[tuple[int, Document]] = list(enumerate(batch.documents))
        attempts = 0
        failure_reason = "not attempted"
        while pending and attempts < self._max_attempts:
            if attempts > 0:
                delay = backoff_delay(attempts, self._base_delay, self._max_delay)
                _LOGGER.warning(
                    "batch_retry_scheduled",
                    batch_number=batch.batch_number,
                    attempt=attempts + 1,
                    pending_documents=len(pending),
                    delay_seconds=delay,
                    reason=failure_reason,
                )
                if cancel_event.wait(delay):
                    failure_reason = f"cancelled after {attempts} attempts: {failure_reason}"
                    break
            attempts += 1
            items = [
                (document.document_id, document.to_sink_body(self._payload_field))
                for _, document in pending
            ]
            try:
                results = self._sink.bulk_upsert(self._index_name, items)
            except SluiceSinkTransportError as error:
                failure_reason = str(error)
                continue
            except SluiceSinkRequestError as error:
                failure_reason = str(error)
                _LOGGER.error(
                    "batch_request_refused",
                    batch_number=batch.batch_number,
                    pending_documents=len(pending),
                    reason=failure_reason,
                )
                break
            retry: list[tuple[int, Document]] = []
            for (position, document), result in zip(pending, results):
                if result.status == "indexed":
                    settled[position] = DocumentOutcome(document.document_id, "indexed")
                elif result.status == "rejected":
                    settled[position] = DocumentOutcome(
                        document.document_id, "rejected", result.reason
                    )
                    _log_rejection(batch, document, result.reason)
                else:
                    failure_reason = result.reason or "not attempted by sink"
                    retry.append((position, document))
            retry.extend(pending[len(results):])
            pending = retry
        outcomes = tuple(
            settled.get(position)
            or DocumentOutcome(document.document_id, "transport_failed", failure_reason)
            for position, document in enumerate(batch.documents)
        )
        return BatchResult(batch=batch, outcomes=outcomes, attempts=attempts)


def _log_rejection(batch: Batch, document: Document, reason: str | None) -> None:
    _LOGGER.warning(
        "document_rejected",
        batch_number=batch.batch_number,
        document_id=document.document_id,
        source_index=document.source_index,
        reason=reason,
    )
