"""Migration lifecycle orchestration.

This module wires the record source, transformer, batcher, and writer pool
together and owns the migration checkpoint. A producer thread streams
batches into the bounded writer pool while the calling thread consumes
batch results, so every checkpoint mutation happens on one thread.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import queue
import signal
import threading
import time
from typing import Callable, Iterator, Mapping

from core.config import SluiceConfig
from core.constants import (
    PROGRESS_LOG_INTERVAL_BATCHES,
    RESULT_POLL_INTERVAL_SECONDS,
    WORKER_STOP_GRACE_SECONDS,
)
from core.errors import (
    RecordMalformedError,
    SluiceCheckpointError,
    SluiceStateError,
)
from core.logging_config import get_logger
from core.options import validate_migration_options
from core.types import (
    Anomaly,
    BatchResult,
    CollectionConfig,
    Document,
    MigrationOptions,
    MigrationState,
    MigrationSummary,
)
from ingest.batcher import iter_batches
from ingest.checkpoint_store import (
    CheckpointStore,
    MigrationCheckpoint,
    record_batch_completed,
    record_batch_failed,
    record_property_types,
    record_total_records,
)
from ingest.record_source import RecordCursor, open_record_source
from sink.bulk_sink import BulkSink
from sink.bulk_writer import BulkWriter
from sink.elasticsearch_sink import ElasticsearchSink
from sink.writer_pool import BatchAbandoned, WriterPool
from transforms.anomaly_log import AnomalyLog
from transforms.collection_fields import DEFAULT_COLLECTION_CONFIGS
from transforms.document_transformer import DocumentTransformer
from transforms.property_registry import PropertyTypeRegistry

_LOGGER = get_logger(__name__)

_ALLOWED_TRANSITIONS: dict[MigrationState, frozenset[MigrationState]] = {
    "initializing": frozenset({"resuming"}),
    "resuming": frozenset({"running", "completed"}),
    "running": frozenset({"draining", "interrupted"}),
    "draining": frozenset({"completed", "interrupted"}),
    "completed": frozenset(),
    "interrupted": frozenset(),
}


@dataclass(frozen=True)
class ProducerFinished:
    """Producer stopped after submitting ``submitted_batches`` batches."""

    submitted_batches: int
    exhausted: bool
    source_position: int
    skipped_records: int


@dataclass(frozen=True)
class ProducerFailed:
    """Producer stopped because the source or transformer raised."""

    submitted_batches: int
    error: BaseException


@dataclass
class _RunTally:
    """Per-run counters reported in the summary."""

    submitted_batches: int | None = None
    received_batches: int = 0
    successful_batches: int = 0
    failed_batches: int = 0
    indexed_documents: int = 0
    rejected_documents: int = 0
    records_read: int = 0
    skipped_records: int = 0
    results_since_save: int = 0

    @property
    def all_received(self) -> bool:
        return (
            self.submitted_batches is not None
            and self.received_batches >= self.submitted_batches
        )


class MigrationCoordinator:
    """Stateful runner for one resumable migration."""

    def __init__(
        self,
        options: MigrationOptions,
        config: SluiceConfig,
        sink: BulkSink | None = None,
    ) -> None:
        self._options = options
        self._config = config
        self._sink = sink
        self._state: MigrationState = "initializing"
        self._cancel_event = threading.Event()
        self._results: queue.Queue = queue.Queue()
        self._store = CheckpointStore(config.data_root, options.source_uri)
        self._registry = PropertyTypeRegistry(options.index_name)
        self._anomaly_log = AnomalyLog(options.index_name)
        self._missing_id_count = 0

    @property
    def state(self) -> MigrationState:
        return self._state

    def request_cancel(self) -> None:
        """Stop producing new batches and drain in-flight ones."""
        if not self._cancel_event.is_set():
            _LOGGER.warning("cancellation_requested", source_uri=self._options.source_uri)
        self._cancel_event.set()

    def run(self) -> MigrationSummary:
        """Execute the migration until completion or interruption.

        Returns:
            Summary of this run.

        Raises:
            SluiceConfigError: If options are invalid.
            SluiceSinkError: If the sink is unreachable at startup.
            SluiceSourceError: If the source cannot be read.
            SluiceCheckpointError: If progress cannot be persisted.
        """
        started_at = time.monotonic()
        sink = self._initialize()
        checkpoint = self._resume()
        resume_index = checkpoint.resume_index
        if checkpoint.completed:
            _LOGGER.info(
                "migration_already_completed",
                source_uri=self._options.source_uri,
                path=str(self._store.path),
            )
            self._transition("completed")
            return self._summarize(checkpoint, _RunTally(), resume_index, started_at)
        with _cancellation_signals(self.request_cancel):
            checkpoint, tally = self._run_pipeline(sink, checkpoint)
        summary = self._summarize(checkpoint, tally, resume_index, started_at)
        _LOGGER.info("migration_summary", **_summary_fields(summary))
        return summary

    def _initialize(self) -> BulkSink:
        validate_migration_options(self._options)
        sink = self._sink or ElasticsearchSink.from_config(self._config)
        sink.check_health(self._options.index_name)
        self._transition("resuming")
        return sink

    def _resume(self) -> MigrationCheckpoint:
        if self._options.fresh:
            self._store.clear()
        checkpoint = self._store.load()
        if checkpoint is None:
            checkpoint = self._persist(MigrationCheckpoint(self._options.source_uri))
        else:
            self._registry = PropertyTypeRegistry(
                self._options.index_name, checkpoint.property_types
            )
        _LOGGER.info(
            "migration_resumed",
            source_uri=self._options.source_uri,
            resume_index=checkpoint.resume_index,
            pending_ranges=len(checkpoint.completed_ranges),
            progress_percentage=round(checkpoint.progress_percentage(), 2),
            registered_properties=len(self._registry),
        )
        return checkpoint

    def _run_pipeline(
        self,
        sink: BulkSink,
        checkpoint: MigrationCheckpoint,
    ) -> tuple[MigrationCheckpoint, _RunTally]:
        resume_index = checkpoint.resume_index
        cursor = open_record_source(
            self._options.source_uri,
            resume_index,
            self._config,
            required_columns=(self._options.id_field, self._options.payload_field),
            on_malformed=self._record_malformed,
        )
        writer = BulkWriter(
            sink,
            self._options.index_name,
            self._options.payload_field,
            self._options.max_retry_attempts,
            self._options.retry_base_delay_seconds,
            self._options.retry_max_delay_seconds,
        )
        pool = WriterPool(writer, self._options.worker_count, self._results, self._cancel_event)
        producer = threading.Thread(
            target=self._produce,
            args=(cursor, pool, resume_index),
            name="sluice-producer",
            daemon=True,
        )
        tally = _RunTally()
        failure: BaseException | None = None
        pool.start()
        self._transition("running")
        producer.start()
        try:
            checkpoint, failure = self._consume_results(checkpoint, tally, resume_index)
        except BaseException:
            self._cancel_event.set()
            raise
        finally:
            producer.join(RESULT_POLL_INTERVAL_SECONDS)
            stop_timeout = WORKER_STOP_GRACE_SECONDS if self._cancel_event.is_set() else None
            pool.shutdown(timeout=stop_timeout)
        checkpoint = self._persist(checkpoint)
        if failure is not None:
            raise failure
        if self._state == "draining":
            self._transition("completed")
        return checkpoint, tally

    def _consume_results(
        self,
        checkpoint: MigrationCheckpoint,
        tally: _RunTally,
        resume_index: int,
    ) -> tuple[MigrationCheckpoint, BaseException | None]:
        """Apply batch results on the calling thread until all are in."""
        failure: BaseException | None = None
        deadline: float | None = None
        while True:
            if self._cancel_event.is_set() and self._state in ("running", "draining"):
                self._transition("interrupted")
                deadline = time.monotonic() + self._options.drain_grace_seconds
            if tally.all_received:
                break
            if deadline is not None and time.monotonic() >= deadline:
                _LOGGER.warning(
                    "drain_grace_expired",
                    outstanding_batches=_outstanding(tally),
                    grace_seconds=self._options.drain_grace_seconds,
                )
                break
            try:
                message = self._results.get(timeout=RESULT_POLL_INTERVAL_SECONDS)
            except queue.Empty:
                continue
            if isinstance(message, ProducerFinished):
                tally.submitted_batches = message.submitted_batches
                tally.records_read = max(0, message.source_position - resume_index)
                tally.skipped_records = message.skipped_records
                if message.exhausted:
                    checkpoint = record_total_records(checkpoint, message.source_position)
                    if self._state == "running":
                        self._transition("draining")
            elif isinstance(message, ProducerFailed):
                tally.submitted_batches = message.submitted_batches
                failure = message.error
                _LOGGER.error(
                    "source_failed",
                    source_uri=self._options.source_uri,
                    error=str(message.error),
                )
                self.request_cancel()
            elif isinstance(message, BatchAbandoned):
                tally.received_batches += 1
            else:
                checkpoint = self._apply_result(checkpoint, tally, message)
        return checkpoint, failure

    def _apply_result(
        self,
        checkpoint: MigrationCheckpoint,
        tally: _RunTally,
        result: BatchResult,
    ) -> MigrationCheckpoint:
        batch = result.batch
        tally.received_batches += 1
        tally.indexed_documents += result.indexed_count
        tally.rejected_documents += result.rejected_count
        if result.failed:
            tally.failed_batches += 1
            checkpoint = record_batch_failed(
                checkpoint, result.indexed_count, result.rejected_count
            )
            _LOGGER.error(
                "batch_failed",
                batch_number=batch.batch_number,
                start_index=batch.start_index,
                end_index=batch.end_index,
                attempts=result.attempts,
                transport_failed=result.transport_failed_count,
            )
        else:
            tally.successful_batches += 1
            checkpoint = record_batch_completed(
                checkpoint,
                batch.start_index,
                batch.end_index,
                result.indexed_count,
                result.rejected_count,
            )
            _LOGGER.info(
                "batch_completed",
                batch_number=batch.batch_number,
                start_index=batch.start_index,
                end_index=batch.end_index,
                indexed=result.indexed_count,
                rejected=result.rejected_count,
                attempts=result.attempts,
            )
        tally.results_since_save += 1
        if tally.results_since_save >= self._options.checkpoint_interval:
            checkpoint = self._persist(checkpoint)
            tally.results_since_save = 0
        if tally.received_batches % PROGRESS_LOG_INTERVAL_BATCHES == 0:
            _LOGGER.info(
                "migration_progress",
                state=self._state,
                received_batches=tally.received_batches,
                highest_contiguous_completed_index=checkpoint.highest_contiguous_completed_index,
                progress_percentage=round(checkpoint.progress_percentage(), 2),
            )
        return checkpoint

    def _produce(self, cursor: RecordCursor, pool: WriterPool, resume_index: int) -> None:
        """Stream batches from the source into the writer pool."""
        submitted = 0
        exhausted = False
        transformer = DocumentTransformer(
            self._registry,
            self._anomaly_log,
            id_field=self._options.id_field,
            payload_field=self._options.payload_field,
            properties_cap=self._options.properties_cap,
            properties_key=self._options.properties_key,
            collection_configs=_collection_configs(self._options),
        )
        try:
            documents = self._transform_records(cursor, transformer)
            batches = iter_batches(
                documents,
                self._options.batch_size,
                resume_index,
                lambda: cursor.position,
            )
            for batch in batches:
                if self._cancel_event.is_set() or not pool.submit(batch):
                    break
                submitted += 1
            else:
                exhausted = True
        except Exception as error:
            cursor.close()
            self._results.put(ProducerFailed(submitted, error))
            return
        cursor.close()
        self._results.put(
            ProducerFinished(
                submitted_batches=submitted,
                exhausted=exhausted,
                source_position=cursor.position,
                skipped_records=cursor.skipped_count + self._missing_id_count,
            )
        )

    def _transform_records(
        self,
        cursor: RecordCursor,
        transformer: DocumentTransformer,
    ) -> Iterator[Document]:
        for record in cursor:
            try:
                yield transformer.transform(record)
            except RecordMalformedError as error:
                self._missing_id_count += 1
                self._anomaly_log.record(
                    Anomaly(
                        kind="missing_document_id",
                        source_index=record.index,
                        detail=str(error),
                    )
                )

    def _record_malformed(self, error: RecordMalformedError) -> None:
        self._anomaly_log.record(
            Anomaly(kind="record_malformed", source_index=error.index, detail=str(error))
        )

    def _persist(self, checkpoint: MigrationCheckpoint) -> MigrationCheckpoint:
        """Save the checkpoint, retrying once before failing the run."""
        checkpoint = record_property_types(checkpoint, self._registry.snapshot())
        try:
            return self._store.save(checkpoint)
        except SluiceCheckpointError as error:
            _LOGGER.warning("checkpoint_save_retry", error=str(error))
            return self._store.save(checkpoint)

    def _transition(self, target: MigrationState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self._state]:
            raise SluiceStateError(
                f"Illegal migration state transition {self._state} -> {target}."
            )
        _LOGGER.info(
            "migration_state_changed",
            source_uri=self._options.source_uri,
            previous_state=self._state,
            state=target,
        )
        self._state = target

    def _summarize(
        self,
        checkpoint: MigrationCheckpoint,
        tally: _RunTally,
        resume_index: int,
        started_at: float,
    ) -> MigrationSummary:
        return MigrationSummary(
            state=self._state,
            source_uri=self._options.source_uri,
            resume_index=resume_index,
            total_records=checkpoint.total_records,
            records_read=tally.records_read,
            skipped_records=tally.skipped_records,
            successful_batches=tally.successful_batches,
            failed_batches=tally.failed_batches,
            indexed_documents=tally.indexed_documents,
            rejected_documents=tally.rejected_documents,
            dropped_property_values=self._anomaly_log.dropped_property_values,
            highest_contiguous_completed_index=checkpoint.highest_contiguous_completed_index,
            duration_seconds=round(time.monotonic() - started_at, 3),
            anomaly_counts=self._anomaly_log.counts(),
        )


def run_migration(
    options: MigrationOptions,
    config: SluiceConfig,
    sink: BulkSink | None = None,
) -> MigrationSummary:
    """Run one migration and return its summary.

    Args:
        options: Migration options.
        config: Runtime configuration.
        sink: Optional sink; defaults to Elasticsearch from ``config``.

    Returns:
        Summary with state ``completed`` or ``interrupted``.
    """
    return MigrationCoordinator(options, config, sink).run()


def read_checkpoint_status(source_uri: str, config: SluiceConfig) -> MigrationCheckpoint | None:
    """Load stored progress for a source without running anything."""
    return CheckpointStore(config.data_root, source_uri).load()


def _collection_configs(options: MigrationOptions) -> Mapping[str, CollectionConfig]:
    if not options.collection_configs:
        return DEFAULT_COLLECTION_CONFIGS
    return {**DEFAULT_COLLECTION_CONFIGS, **options.collection_configs}


def _outstanding(tally: _RunTally) -> int | None:
    if tally.submitted_batches is None:
        return None
    return tally.submitted_batches - tally.received_batches


def _summary_fields(summary: MigrationSummary) -> dict[str, object]:
    return {
        "state": summary.state,
        "source_uri": summary.source_uri,
        "resume_index": summary.resume_index,
        "total_records": summary.total_records,
        "records_read": summary.records_read,
        "skipped_records": summary.skipped_records,
        "successful_batches": summary.successful_batches,
        "failed_batches": summary.failed_batches,
        "indexed_documents": summary.indexed_documents,
        "rejected_documents": summary.rejected_documents,
        "dropped_property_values": summary.dropped_property_values,
        "highest_contiguous_completed_index": summary.highest_contiguous_completed_index,
        "duration_seconds": summary.duration_seconds,
        "anomaly_counts": dict(summary.anomaly_counts),
    }


@contextmanager
def _cancellation_signals(on_cancel: Callable[[], None]) -> Iterator[None]:
    """Route SIGINT and SIGTERM to ``on_cancel`` while the block runs.

    Handlers can only be installed from the main thread; elsewhere the block
    runs without them and callers cancel through ``request_cancel``.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    signal_numbers = (signal.SIGINT, signal.SIGTERM)
    previous = {number: signal.getsignal(number) for number in signal_numbers}

    def _handle(signal_number: int, _frame: object) -> None:
        _LOGGER.warning("signal_received", signal=signal.Signals(signal_number).name)
        on_cancel()

    for number in signal_numbers:
        signal.signal(number, _handle)
    try:
        yield
    finally:
        for number, handler in previous.items():
            signal.signal(number, handler)
