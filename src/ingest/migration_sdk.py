"""Python SDK for migration operations.

This module exposes high-level APIs to run migrations, inspect stored
progress, and execute declarative run-specs.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from core.config import SluiceConfig
from core.run_spec_execution import execute_run_spec_file
from core.types import MigrationOptions, MigrationSummary
from ingest.checkpoint_store import MigrationCheckpoint
from ingest.coordinator import read_checkpoint_status, run_migration
from sink.bulk_sink import BulkSink


class SluiceClient:
    """Primary SDK entry point for migration workflows."""

    def __init__(self, config: SluiceConfig | None = None, sink: BulkSink | None = None) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration; read from the environment when omitted.
            sink: Optional sink; an Elasticsearch sink is built per migration when omitted.
        """
        self._config = config or SluiceConfig.from_env()
        self._sink = sink

    @property
    def config(self) -> SluiceConfig:
        return self._config

    def migrate(self, options: MigrationOptions) -> MigrationSummary:
        """Run one resumable migration.

        Args:
            options: Migration options.

        Returns:
            Run summary with state ``completed`` or ``interrupted``.

        Raises:
            SluiceError: For fatal configuration, source, sink, or checkpoint failures.
        """
        return run_migration(options, self._config, self._sink)

    def status(self, source_uri: str) -> MigrationCheckpoint | None:
        """Return stored progress for a source, or None when nothing was recorded."""
        return read_checkpoint_status(source_uri, self._config)

    def with_data_root(self, data_root: str) -> "SluiceClient":
        """Clone the client with a different local data root.

        Args:
            data_root: New data root path.

        Returns:
            New SDK client sharing this client's sink.
        """
        resolved_root = Path(data_root).expanduser().resolve()
        return SluiceClient(replace(self._config, data_root=resolved_root), self._sink)

    def run_spec(self, spec_file: str) -> tuple[MigrationSummary, ...]:
        """Execute a YAML run-spec through the shared execution engine."""
        return execute_run_spec_file(self, spec_file)
