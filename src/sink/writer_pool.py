"""Bounded pool of batch writer threads.

Batches flow through a queue with a fixed number of slots, so a slow sink
blocks the producer instead of letting batches pile up in memory. Results
are posted to a caller-owned queue read by a single consumer.
"""

from __future__ import annotations

from dataclasses import dataclass
import queue
import threading
import time

from core.constants import RESULT_POLL_INTERVAL_SECONDS, WRITER_QUEUE_SLOTS_PER_WORKER
from core.logging_config import get_logger
from core.types import Batch, BatchResult, DocumentOutcome
from sink.bulk_writer import BulkWriter

_LOGGER = get_logger(__name__)
_STOP = object()


@dataclass(frozen=True)
class BatchAbandoned:
    """A queued batch that was never started because of cancellation."""

    batch: Batch


class WriterPool:
    """Run ``worker_count`` writer threads over a bounded batch queue."""

    def __init__(
        self,
        writer: BulkWriter,
        worker_count: int,
        results: queue.Queue,
        cancel_event: threading.Event,
        queue_capacity: int | None = None,
    ) -> None:
        if worker_count <= 0:
            raise ValueError(f"worker_count must be positive, got {worker_count}")
        self._writer = writer
        self._worker_count = worker_count
        self._results = results
        self._cancel_event = cancel_event
        capacity = queue_capacity or worker_count * WRITER_QUEUE_SLOTS_PER_WORKER
        self._batches: queue.Queue = queue.Queue(maxsize=capacity)
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        for worker_number in range(self._worker_count):
            thread = threading.Thread(
                target=self._run_worker,
                name=f"sluice-writer-{worker_number}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        _LOGGER.info("writer_pool_started", worker_count=self._worker_count)

    def submit(self, batch: Batch) -> bool:
        """Queue a batch, blocking while every slot is taken.

        Returns:
            False when cancellation was requested before a slot opened.
        """
        while not self._cancel_event.is_set():
            try:
                self._batches.put(batch, timeout=RESULT_POLL_INTERVAL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def shutdown(self, timeout: float | None = None) -> bool:
        """Stop the workers after queued batches are handled.

        Args:
            timeout: Total seconds to wait for all workers to exit; None waits
                forever.

        Returns:
            True when every worker exited within the timeout.
        """
        for _ in self._threads:
            try:
                self._batches.put(_STOP, timeout=RESULT_POLL_INTERVAL_SECONDS)
            except queue.Full:
                _LOGGER.warning("writer_pool_stop_not_queued", reason="queue full")
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            thread.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
        alive = [thread.name for thread in self._threads if thread.is_alive()]
        if alive:
            _LOGGER.warning("writer_pool_workers_still_running", workers=alive)
        return not alive

    def _run_worker(self) -> None:
        while True:
            item = self._batches.get()
            try:
                if item is _STOP:
                    return
                if self._cancel_event.is_set():
                    self._results.put(BatchAbandoned(item))
                    continue
                self._results.put(self._write(item))
            finally:
                self._batches.task_done()

    def _write(self, batch: Batch) -> BatchResult:
        try:
            return self._writer.write(batch, self._cancel_event)
        except Exception as error:
            _LOGGER.error(
                "batch_write_crashed",
                batch_number=batch.batch_number,
                error=f"{type(error).__name__}: {error}",
            )
            reason = f"writer error: {error}"
            outcomes = tuple(
                DocumentOutcome(document.document_id, "transport_failed", reason)
                for document in batch.documents
            )
            return BatchResult(batch=batch, outcomes=outcomes, attempts=0)
