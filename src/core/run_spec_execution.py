"""Shared run-spec execution engine for CLI and SDK workflows.

This module maps validated run-spec migration entries onto client calls so
the CLI and the SDK run one declarative path without drift. Migrations run
sequentially; an interrupted migration stops the remaining ones.
"""

from __future__ import annotations

from typing import Mapping, Protocol

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
from core.errors import SluiceRunSpecError
from core.logging_config import get_logger
from core.run_spec import RunSpec, load_run_spec
from core.run_spec_fields import (
    bool_with_default,
    collection_configs,
    float_with_default,
    int_with_default,
    optional_string,
    required_string,
)
from core.types import MigrationOptions, MigrationSummary

_LOGGER = get_logger(__name__)


class RunSpecClient(Protocol):
    """Client API contract required by run-spec execution."""

    def with_data_root(self, data_root: str) -> "RunSpecClient": ...

    def migrate(self, options: MigrationOptions) -> MigrationSummary: ...


def execute_run_spec_file(client: RunSpecClient, spec_file: str) -> tuple[MigrationSummary, ...]:
    """Load and execute a run-spec file, returning one summary per run migration."""
    return execute_run_spec(client, load_run_spec(spec_file))


def execute_run_spec(client: RunSpecClient, spec: RunSpec) -> tuple[MigrationSummary, ...]:
    """Execute a parsed run-spec object.

    Args:
        client: Client running each migration.
        spec: Validated run-spec.

    Returns:
        Summaries in execution order; shorter than the migration list when a
        migration was interrupted.
    """
    execution_client = (
        client.with_data_root(spec.defaults.data_root) if spec.defaults.data_root else client
    )
    all_options = [
        build_migration_options(entry, spec.defaults.index_name) for entry in spec.migrations
    ]
    summaries: list[MigrationSummary] = []
    for options in all_options:
        summary = execution_client.migrate(options)
        summaries.append(summary)
        if summary.state == "interrupted":
            _LOGGER.warning(
                "run_spec_stopped",
                source_uri=options.source_uri,
                remaining_migrations=len(all_options) - len(summaries),
            )
            break
    return tuple(summaries)


def build_migration_options(
    entry: Mapping[str, object],
    default_index_name: str | None,
) -> MigrationOptions:
    """Build migration options from one run-spec entry."""
    index_name = optional_string(entry, "index") or default_index_name
    if index_name is None:
        raise SluiceRunSpecError(
            "Run-spec migration requires index. Set 'index' on the migration or in defaults."
        )
    return MigrationOptions(
        source_uri=required_string(entry, "source"),
        index_name=index_name,
        batch_size=int_with_default(entry, "batch_size", DEFAULT_BATCH_SIZE),
        worker_count=int_with_default(entry, "workers", DEFAULT_WORKER_COUNT),
        max_retry_attempts=int_with_default(entry, "max_retries", DEFAULT_MAX_RETRY_ATTEMPTS),
        checkpoint_interval=int_with_default(
            entry, "checkpoint_interval", DEFAULT_CHECKPOINT_INTERVAL
        ),
        properties_cap=int_with_default(entry, "properties_cap", DEFAULT_PROPERTIES_CAP),
        id_field=optional_string(entry, "id_field") or DEFAULT_ID_FIELD,
        payload_field=optional_string(entry, "payload_field") or DEFAULT_PAYLOAD_FIELD,
        properties_key=optional_string(entry, "properties_key"),
        retry_base_delay_seconds=float_with_default(
            entry, "retry_base_delay", DEFAULT_RETRY_BASE_DELAY_SECONDS
        ),
        retry_max_delay_seconds=float_with_default(
            entry, "retry_max_delay", DEFAULT_RETRY_MAX_DELAY_SECONDS
        ),
        drain_grace_seconds=float_with_default(entry, "drain_grace", DEFAULT_DRAIN_GRACE_SECONDS),
        fresh=bool_with_default(entry, "fresh", False),
        collection_configs=collection_configs(entry, "collections"),
    )
