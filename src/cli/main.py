"""Sluice CLI entry points.
This module exposes the migrate, status, and run-spec commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
import sys
from typing import Any, Sequence

from core.config import SluiceConfig
from core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHECKPOINT_INTERVAL,
    DEFAULT_DRAIN_GRACE_SECONDS,
    DEFAULT_ID_FIELD,
    DEFAULT_MAX_RETRY_ATTEMPTS,
    DEFAULT_PAYLOAD_FIELD,
    DEFAULT_PROPERTIES_CAP,
    DEFAULT_WORKER_COUNT,
    INTERRUPTED_EXIT_CODE,
)
from core.errors import SluiceError
from core.types import MigrationOptions, MigrationSummary
from ingest.checkpoint_store import MigrationCheckpoint
from ingest.migration_sdk import SluiceClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(
        prog="sluice",
        description="Resumable CSV to Elasticsearch bulk migration",
    )
    parser.add_argument("--data-root", help="Override SLUICE_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_migrate_command(subparsers)
    _add_status_command(subparsers)
    _add_run_spec_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Sluice CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code: 0 completed, 130 interrupted, 1 on fatal errors.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(args.data_root, getattr(args, "timeout", None))
        if args.command == "migrate":
            return _run_migrate_command(client, args)
        if args.command == "status":
            return _run_status_command(client, args)
        if args.command == "run-spec":
            return _run_run_spec_command(client, args)
    except SluiceError as error:
        print(f"error: {error}", file=sys.stderr)
        return 1
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(data_root: str | None, timeout_seconds: float | None) -> SluiceClient:
    """Build SDK client with optional overrides.

    Args:
        data_root: Optional data-root override path.
        timeout_seconds: Optional sink request timeout override.

    Returns:
        Configured SDK client.
    """
    config = SluiceConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    if timeout_seconds is not None:
        config = replace(config, request_timeout_seconds=timeout_seconds)
    return SluiceClient(config)


def _run_migrate_command(client: SluiceClient, args: argparse.Namespace) -> int:
    options = MigrationOptions(
        source_uri=args.source,
        index_name=args.index,
        batch_size=args.batch_size,
        worker_count=args.workers,
        max_retry_attempts=args.max_retries,
        checkpoint_interval=args.checkpoint_interval,
        properties_cap=args.properties_cap,
        id_field=args.id_field,
        payload_field=args.payload_field,
        properties_key=args.properties_key,
        drain_grace_seconds=args.drain_grace,
        fresh=args.fresh,
    )
    summary = client.migrate(options)
    _print_summary(summary)
    return _exit_code(summary)


def _run_status_command(client: SluiceClient, args: argparse.Namespace) -> int:
    checkpoint = client.status(args.source)
    if checkpoint is None:
        print(f"no checkpoint for {args.source}")
        return 0
    _print_checkpoint(checkpoint)
    return 0


def _run_run_spec_command(client: SluiceClient, args: argparse.Namespace) -> int:
    summaries = client.run_spec(args.spec_file)
    for summary in summaries:
        _print_summary(summary)
    if any(summary.state == "interrupted" for summary in summaries):
        return INTERRUPTED_EXIT_CODE
    return 0


def _exit_code(summary: MigrationSummary) -> int:
    return INTERRUPTED_EXIT_CODE if summary.state == "interrupted" else 0


def _print_summary(summary: MigrationSummary) -> None:
    print(f"source={summary.source_uri}")
    print(f"state={summary.state}")
    print(f"resume_index={summary.resume_index}")
    print(f"total_records={_or_dash(summary.total_records)}")
    print(f"records_read={summary.records_read}")
    print(f"skipped_records={summary.skipped_records}")
    print(f"successful_batches={summary.successful_batches}")
    print(f"failed_batches={summary.failed_batches}")
    print(f"indexed_documents={summary.indexed_documents}")
    print(f"rejected_documents={summary.rejected_documents}")
    print(f"dropped_property_values={summary.dropped_property_values}")
    print(f"highest_contiguous_completed_index={summary.highest_contiguous_completed_index}")
    print(f"duration_seconds={summary.duration_seconds}")
    for kind in sorted(summary.anomaly_counts):
        print(f"anomaly.{kind}={summary.anomaly_counts[kind]}")


def _print_checkpoint(checkpoint: MigrationCheckpoint) -> None:
    ranges = ",".join(f"{start}-{end}" for start, end in checkpoint.completed_ranges)
    print(f"source={checkpoint.source_identifier}")
    print(f"progress_percentage={checkpoint.progress_percentage():.2f}")
    print(f"total_records={_or_dash(checkpoint.total_records)}")
    print(f"highest_contiguous_completed_index={checkpoint.highest_contiguous_completed_index}")
    print(f"pending_ranges={ranges or '-'}")
    print(f"successful_batches={checkpoint.successful_batch_count}")
    print(f"failed_batches={checkpoint.failed_batch_count}")
    print(f"indexed_documents={checkpoint.indexed_document_count}")
    print(f"rejected_documents={checkpoint.rejected_document_count}")
    print(f"registered_properties={len(checkpoint.property_types)}")
    print(f"completed={str(checkpoint.completed).lower()}")
    last_updated = checkpoint.last_updated.isoformat() if checkpoint.last_updated else "-"
    print(f"last_updated={last_updated}")


def _or_dash(value: object) -> str:
    return "-" if value is None else str(value)


def _add_migrate_command(subparsers: Any) -> None:
    """Register migrate subcommand."""
    parser = subparsers.add_parser("migrate", help="Migrate a CSV source into an index")
    parser.add_argument("source", help="Local CSV path or s3://bucket/key")
    parser.add_argument("--index", required=True, help="Destination index name")
    parser.add_argument(
        "--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Documents per bulk request"
    )
    parser.add_argument(
        "--workers", type=int, default=DEFAULT_WORKER_COUNT, help="Concurrent writer threads"
    )
    parser.add_argument(
        "--timeout", type=float, help="Override SLUICE_REQUEST_TIMEOUT_SECS for sink requests"
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=DEFAULT_MAX_RETRY_ATTEMPTS,
        help="Bulk attempts per batch before it is marked failed",
    )
    parser.add_argument(
        "--checkpoint-interval",
        type=int,
        default=DEFAULT_CHECKPOINT_INTERVAL,
        help="Completed batches between checkpoint writes",
    )
    parser.add_argument(
        "--properties-cap",
        type=int,
        default=DEFAULT_PROPERTIES_CAP,
        help="Maximum extracted properties per document",
    )
    parser.add_argument(
        "--id-field", default=DEFAULT_ID_FIELD, help="Column holding the document id"
    )
    parser.add_argument(
        "--payload-field", default=DEFAULT_PAYLOAD_FIELD, help="Column holding the JSON payload"
    )
    parser.add_argument(
        "--properties-key", help="Payload key whose object holds the properties"
    )
    parser.add_argument(
        "--drain-grace",
        type=float,
        default=DEFAULT_DRAIN_GRACE_SECONDS,
        help="Seconds to wait for in-flight batches after interruption",
    )
    parser.add_argument(
        "--fresh", action="store_true", help="Discard the existing checkpoint and start over"
    )


def _add_status_command(subparsers: Any) -> None:
    """Register status subcommand."""
    parser = subparsers.add_parser("status", help="Show stored migration progress")
    parser.add_argument("source", help="Source location used for the migration")


def _add_run_spec_command(subparsers: Any) -> None:
    """Register run-spec subcommand."""
    parser = subparsers.add_parser("run-spec", help="Run migrations listed in a YAML spec")
    parser.add_argument("spec_file", help="Path to YAML run-spec file")
