"""Unit tests for the bounded writer pool."""

from __future__ import annotations

import queue
import threading
from typing import Mapping, Sequence

from core.constants import WORKER_STOP_GRACE_SECONDS
from core.types import Batch, BatchResult, Document, SinkItemResult
from sink.bulk_writer import BulkWriter
from sink.writer_pool import BatchAbandoned, WriterPool
from tests.sink_fakes import InMemorySink


class _BlockingSink(InMemorySink):
    """Sink whose bulk calls wait until released."""

    def __init__(self) -> None:
        super().__init__()
        self.release = threading.Event()
        self.entered = threading.Event()

    def bulk_upsert(
        self,
        index_name: str,
        items: Sequence[tuple[str, Mapping[str, object]]],
    ) -> list[SinkItemResult]:
        self.entered.set()
        self.release.wait(5)
        return super().bulk_upsert(index_name, items)


def _batch(batch_number: int) -> Batch:
    document = Document(
        document_id=f"doc-{batch_number}",
        source_index=batch_number,
        fields={},
        properties={},
    )
    return Batch(batch_number, batch_number, batch_number + 1, (document,))


def _pool(sink: InMemorySink, worker_count: int, cancel_event: threading.Event, capacity=None):
    results: queue.Queue = queue.Queue()
    writer = BulkWriter(sink, "nft", "raw_metadata", 3, 0.0, 0.0)
    return WriterPool(writer, worker_count, results, cancel_event, capacity), results


def test_pool_reports_one_result_per_batch() -> None:
    """Every submitted batch should produce one result."""
    pool, results = _pool(InMemorySink(), 3, threading.Event())
    pool.start()

    for batch_number in range(6):
        assert pool.submit(_batch(batch_number))
    received = [results.get(timeout=5) for _ in range(6)]
    pool.shutdown(timeout=5)

    assert sorted(result.batch.batch_number for result in received) == list(range(6))
    assert all(isinstance(result, BatchResult) for result in received)


def test_submit_blocks_when_queue_is_full() -> None:
    """A full queue should block the producer until cancellation releases it."""
    sink = _BlockingSink()
    cancel_event = threading.Event()
    pool, _ = _pool(sink, 1, cancel_event, capacity=1)
    pool.start()
    pool.submit(_batch(0))
    assert sink.entered.wait(5)
    pool.submit(_batch(1))
    outcome: list[bool] = []
    producer = threading.Thread(target=lambda: outcome.append(pool.submit(_batch(2))))

    producer.start()
    producer.join(0.5)
    blocked = producer.is_alive()
    cancel_event.set()
    producer.join(5)
    sink.release.set()
    pool.shutdown(timeout=5)

    assert blocked and outcome == [False]


def test_pool_abandons_queued_batches_after_cancellation() -> None:
    """Batches queued before cancellation should be reported as abandoned."""
    sink = _BlockingSink()
    cancel_event = threading.Event()
    pool, results = _pool(sink, 1, cancel_event, capacity=2)
    pool.start()
    pool.submit(_batch(0))
    assert sink.entered.wait(5)
    pool.submit(_batch(1))

    cancel_event.set()
    sink.release.set()
    first = results.get(timeout=5)
    second = results.get(timeout=5)
    pool.shutdown(timeout=5)

    assert isinstance(first, BatchResult) and first.indexed_count == 1
    assert isinstance(second, BatchAbandoned) and second.batch.batch_number == 1


def test_pool_reports_writer_crash_as_failed_batch() -> None:
    """Unexpected writer errors should become failed batch results."""

    class _BrokenSink(InMemorySink):
        def bulk_upsert(self, index_name, items):
            raise RuntimeError("serializer exploded")

    pool, results = _pool(_BrokenSink(), 1, threading.Event())
    pool.start()
    pool.submit(_batch(0))

    result = results.get(timeout=5)
    pool.shutdown(timeout=5)

    assert result.failed and result.transport_failed_count == 1


def test_cancelled_idle_pool_stops_within_grace() -> None:
    """Idle workers should exit within a short grace after cancellation."""
    cancel_event = threading.Event()
    pool, _ = _pool(InMemorySink(), 4, cancel_event)
    pool.start()
    cancel_event.set()

    assert pool.shutdown(timeout=WORKER_STOP_GRACE_SECONDS)
