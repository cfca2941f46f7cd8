"""Public SDK surface for Sluice.

This module provides a stable import path for library users.
It re-exports the client, the migration entry points, and typed models.
"""

from __future__ import annotations

from core.config import SluiceConfig
from core.types import CollectionConfig, CollectionField, MigrationOptions, MigrationSummary
from ingest.checkpoint_store import MigrationCheckpoint
from ingest.coordinator import read_checkpoint_status, run_migration
from ingest.migration_sdk import SluiceClient

__all__ = [
    "CollectionConfig",
    "CollectionField",
    "MigrationCheckpoint",
    "MigrationOptions",
    "MigrationSummary",
    "SluiceClient",
    "SluiceConfig",
    "read_checkpoint_status",
    "run_migration",
]
