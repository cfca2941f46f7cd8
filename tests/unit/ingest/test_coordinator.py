"""Unit tests for the migration coordinator."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from core.config import SluiceConfig
from core.constants import WORKER_STOP_GRACE_SECONDS
from core.errors import SluiceCheckpointError, SluiceSinkError, SluiceStateError
from core.types import MigrationOptions
from ingest.checkpoint_store import CheckpointStore, MigrationCheckpoint
from ingest.coordinator import MigrationCoordinator, read_checkpoint_status, run_migration
from sink.writer_pool import WriterPool
from tests.fixture_paths import fixture_path
from tests.sink_fakes import InMemorySink


def _config(tmp_path: Path) -> SluiceConfig:
    return replace(SluiceConfig.from_env(), data_root=tmp_path)


def _options(source: str, **overrides: object) -> MigrationOptions:
    options = MigrationOptions(
        source_uri=source,
        index_name="nft",
        batch_size=2,
        worker_count=2,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        drain_grace_seconds=5.0,
    )
    return replace(options, **overrides)


def test_run_completes_and_marks_checkpoint(tmp_path: Path) -> None:
    """A clean run should end completed with the completion marker set."""
    source = str(fixture_path("csv/scenario.csv"))
    config = _config(tmp_path)

    summary = run_migration(_options(source), config, InMemorySink())
    checkpoint = read_checkpoint_status(source, config)

    assert (summary.state, summary.indexed_documents, summary.total_records) == ("completed", 2, 2)
    assert checkpoint is not None and checkpoint.completed


def test_run_recovers_record_level_anomalies(tmp_path: Path) -> None:
    """Malformed rows, missing ids, and broken payloads should not fail batches."""
    sink = InMemorySink()

    summary = run_migration(
        _options(str(fixture_path("csv/mixed_quality.csv")), batch_size=5),
        _config(tmp_path),
        sink,
    )

    assert sorted(sink.documents) == ["1", "2", "3", "4", "7"]
    assert (summary.skipped_records, summary.failed_batches) == (2, 0)
    assert summary.highest_contiguous_completed_index == 7
    assert summary.anomaly_counts == {
        "payload_unparsable": 1,
        "record_malformed": 1,
        "missing_document_id": 1,
    }


def test_run_fails_fast_when_sink_unhealthy(tmp_path: Path) -> None:
    """An unreachable sink at startup should abort before any checkpoint is written."""
    source = str(fixture_path("csv/scenario.csv"))
    config = _config(tmp_path)

    with pytest.raises(SluiceSinkError):
        run_migration(_options(source), config, InMemorySink(healthy=False))

    assert read_checkpoint_status(source, config) is None


def test_cancelled_run_ends_interrupted_with_checkpoint(tmp_path: Path) -> None:
    """Cancellation should stop producing and persist the checkpoint."""
    source = str(fixture_path("csv/scenario.csv"))
    config = _config(tmp_path)
    sink = InMemorySink()
    coordinator = MigrationCoordinator(_options(source), config, sink)
    coordinator.request_cancel()

    summary = coordinator.run()

    assert (summary.state, sink.bulk_calls) == ("interrupted", [])
    assert read_checkpoint_status(source, config) is not None


def test_cancelled_run_gives_workers_a_stop_grace(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """An interrupted run should wait briefly for workers instead of not at all."""
    timeouts: list[float | None] = []
    original_shutdown = WriterPool.shutdown

    def recording_shutdown(self: WriterPool, timeout: float | None = None) -> bool:
        timeouts.append(timeout)
        return original_shutdown(self, timeout)

    monkeypatch.setattr(WriterPool, "shutdown", recording_shutdown)
    coordinator = MigrationCoordinator(
        _options(str(fixture_path("csv/scenario.csv"))), _config(tmp_path), InMemorySink()
    )
    coordinator.request_cancel()

    coordinator.run()

    assert timeouts == [WORKER_STOP_GRACE_SECONDS]


def test_failed_batches_leave_progress_open(tmp_path: Path) -> None:
    """Batches that exhaust retries should be counted and not advance progress."""
    source = str(fixture_path("csv/scenario.csv"))
    config = _config(tmp_path)

    summary = run_migration(
        _options(source, max_retry_attempts=2),
        config,
        InMemorySink(transport_failures=100),
    )
    checkpoint = read_checkpoint_status(source, config)

    assert (summary.state, summary.failed_batches) == ("completed", 1)
    assert checkpoint is not None
    assert (checkpoint.highest_contiguous_completed_index, checkpoint.completed) == (0, False)


def test_refused_requests_fail_batches_and_keep_ranges_open(tmp_path: Path) -> None:
    """A sink refusing every request should not mark the migration done."""
    source = str(fixture_path("csv/scenario.csv"))
    config = _config(tmp_path)

    summary = run_migration(
        _options(source, batch_size=1), config, InMemorySink(refuse_requests=True)
    )
    checkpoint = read_checkpoint_status(source, config)

    assert (summary.indexed_documents, summary.rejected_documents) == (0, 0)
    assert (summary.successful_batches, summary.failed_batches) == (0, 2)
    assert checkpoint is not None and checkpoint.failed_batch_count == 2
    assert (checkpoint.highest_contiguous_completed_index, checkpoint.completed) == (0, False)


def test_completed_checkpoint_skips_work(tmp_path: Path) -> None:
    """A second run over a completed source should do nothing."""
    source = str(fixture_path("csv/scenario.csv"))
    config = _config(tmp_path)
    run_migration(_options(source), config, InMemorySink())
    sink = InMemorySink()

    summary = run_migration(_options(source), config, sink)

    assert (summary.state, summary.records_read, sink.bulk_calls) == ("completed", 0, [])


def test_fresh_option_discards_completed_checkpoint(tmp_path: Path) -> None:
    """The fresh option should migrate again from the first row."""
    source = str(fixture_path("csv/scenario.csv"))
    config = _config(tmp_path)
    run_migration(_options(source), config, InMemorySink())
    sink = InMemorySink()

    summary = run_migration(_options(source, fresh=True), config, sink)

    assert (summary.resume_index, summary.indexed_documents) == (0, 2)


def test_registered_property_types_survive_resume(tmp_path: Path) -> None:
    """Kinds stored in the checkpoint should keep winning after a restart."""
    source = str(fixture_path("csv/scenario.csv"))
    config = _config(tmp_path)
    CheckpointStore(tmp_path, source).save(
        MigrationCheckpoint(source, property_types={"tier": "string"})
    )
    sink = InMemorySink()

    run_migration(_options(source), config, sink)

    assert sink.documents["409192"]["properties"] == {"level": 5, "rarity": "Common"}
    assert sink.documents["12345"]["properties"] == {"tier": "unknown", "level": 7}


def test_checkpoint_write_is_retried_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A single transient checkpoint failure should not abort the run."""
    original_save = CheckpointStore.save
    calls = {"count": 0}

    def flaky_save(self, checkpoint):
        calls["count"] += 1
        if calls["count"] == 1:
            raise SluiceCheckpointError("disk hiccup")
        return original_save(self, checkpoint)

    monkeypatch.setattr(CheckpointStore, "save", flaky_save)

    summary = run_migration(
        _options(str(fixture_path("csv/scenario.csv"))), _config(tmp_path), InMemorySink()
    )

    assert summary.state == "completed"


def test_persistent_checkpoint_failure_is_fatal(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Two consecutive checkpoint failures should abort the run."""

    def failing_save(self, checkpoint):
        raise SluiceCheckpointError("disk full")

    monkeypatch.setattr(CheckpointStore, "save", failing_save)

    with pytest.raises(SluiceCheckpointError):
        run_migration(
            _options(str(fixture_path("csv/scenario.csv"))), _config(tmp_path), InMemorySink()
        )


def test_illegal_state_transition_raises(tmp_path: Path) -> None:
    """The coordinator should refuse transitions outside the lifecycle."""
    coordinator = MigrationCoordinator(
        _options(str(fixture_path("csv/scenario.csv"))), _config(tmp_path), InMemorySink()
    )

    with pytest.raises(SluiceStateError):
        coordinator._transition("completed")
