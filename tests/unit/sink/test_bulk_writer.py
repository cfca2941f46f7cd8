"""Unit tests for the retrying batch writer."""

from __future__ import annotations

import threading

from core.types import Batch, Document, SinkItemResult
from sink.bulk_writer import BulkWriter, backoff_delay
from tests.sink_fakes import InMemorySink


def _batch(*document_ids: str) -> Batch:
    documents = tuple(
        Document(document_id=document_id, source_index=position, fields={}, properties={})
        for position, document_id in enumerate(document_ids)
    )
    return Batch(batch_number=0, start_index=0, end_index=len(documents), documents=documents)


def _writer(sink: InMemorySink, max_attempts: int = 3) -> BulkWriter:
    return BulkWriter(sink, "nft", "raw_metadata", max_attempts, 0.0, 0.0)


def test_backoff_delay_doubles_and_caps() -> None:
    """Delays should grow exponentially up to the maximum."""
    delays = [backoff_delay(retry, 0.5, 3.0) for retry in range(1, 6)]

    assert delays == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_write_indexes_every_document() -> None:
    """A healthy sink should index the whole batch in one attempt."""
    sink = InMemorySink()

    result = _writer(sink).write(_batch("a", "b"))

    assert (result.indexed_count, result.attempts, result.failed) == (2, 1, False)


def test_write_retries_transport_failures() -> None:
    """Transient transport failures should be retried until success."""
    sink = InMemorySink(transport_failures=2)

    result = _writer(sink).write(_batch("a", "b"))

    assert (result.indexed_count, result.attempts) == (2, 3)


def test_write_marks_batch_failed_after_exhausting_attempts() -> None:
    """Persistent transport failures should fail the batch after max attempts."""
    sink = InMemorySink(transport_failures=10)

    result = _writer(sink, max_attempts=3).write(_batch("a", "b"))

    assert (result.failed, result.transport_failed_count, result.attempts) == (True, 2, 3)
    assert len(sink.bulk_calls) == 3


def test_write_resends_only_unsettled_documents() -> None:
    """Documents not attempted by the sink should be retried alone."""
    attempts: dict[str, int] = {}

    def decide(document_id: str, body: object) -> SinkItemResult | None:
        attempts[document_id] = attempts.get(document_id, 0) + 1
        if document_id == "b" and attempts[document_id] == 1:
            return SinkItemResult(document_id, "not_attempted", "429 es_rejected_execution")
        return None

    sink = InMemorySink(decide=decide)

    result = _writer(sink).write(_batch("a", "b", "c"))

    assert sink.bulk_calls == [["a", "b", "c"], ["b"]]
    assert result.indexed_count == 3


def test_write_counts_rejections_without_failing_batch() -> None:
    """Rejected documents should be settled, not retried, and not fail the batch."""
    sink = InMemorySink(
        decide=lambda document_id, body: (
            SinkItemResult(document_id, "rejected", "400 mapper_parsing_exception: bad")
            if document_id == "b"
            else None
        )
    )

    result = _writer(sink).write(_batch("a", "b"))

    assert (result.indexed_count, result.rejected_count, result.failed) == (1, 1, False)
    assert len(sink.bulk_calls) == 1


def test_write_empty_batch_is_settled_without_sink_call() -> None:
    """A batch covering only skipped rows should complete without a request."""
    sink = InMemorySink()

    result = _writer(sink).write(_batch())

    assert (result.failed, result.attempts, sink.bulk_calls) == (False, 0, [])


def test_write_stops_retrying_when_cancelled() -> None:
    """A set cancel event should end the retry loop early."""
    sink = InMemorySink(transport_failures=10)
    cancel_event = threading.Event()
    cancel_event.set()
    writer = BulkWriter(sink, "nft", "raw_metadata", 5, 30.0, 30.0)

    result = writer.write(_batch("a"), cancel_event)

    assert (result.failed, result.attempts) == (True, 1)


def test_write_fails_batch_without_retry_when_request_refused() -> None:
    """A refused bulk request should fail every document after one attempt."""
    sink = InMemorySink(refuse_requests=True)

    result = _writer(sink, max_attempts=3).write(_batch("a", "b"))

    assert (result.failed, result.transport_failed_count, result.rejected_count) == (True, 2, 0)
    assert (result.attempts, len(sink.bulk_calls)) == (1, 1)
    assert "HTTP 401" in (result.outcomes[0].reason or "")
