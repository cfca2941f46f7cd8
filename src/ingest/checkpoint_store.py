"""Migration checkpoint persistence.

This module tracks completed source ranges for resumable migrations.
Out-of-order batch completions are kept as a set of ranges and folded into
the contiguous marker once the gaps below them close.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import hashlib
import json
import os
from pathlib import Path
import re
import tempfile
from typing import Any, Mapping, Sequence

from core.constants import (
    CHECKPOINT_FILE_SUFFIX,
    CHECKPOINT_SOURCE_HASH_LENGTH,
    CHECKPOINTS_DIR_NAME,
    HASH_ALGORITHM,
)
from core.errors import SluiceCheckpointError
from core.logging_config import get_logger
from core.types import PropertyKind

_LOGGER = get_logger(__name__)
_SAFE_NAME_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")
_PROPERTY_KINDS = frozenset({"boolean", "integer", "float", "string"})

SourceRange = tuple[int, int]


@dataclass(frozen=True)
class MigrationCheckpoint:
    """Durable migration progress.

    Attributes:
        source_identifier: Source location the progress belongs to.
        total_records: Data rows in the source, once fully read.
        highest_contiguous_completed_index: Every row below this is done.
        completed_ranges: Completed ranges above the contiguous marker.
        failed_batch_count: Batches that exhausted their retries.
        successful_batch_count: Batches fully settled by the sink.
        indexed_document_count: Documents acknowledged as indexed.
        rejected_document_count: Documents the sink rejected.
        property_types: First-seen property kinds registered so far.
        completed: Whether every source row is covered.
        last_updated: UTC time of the last successful save.
    """

    source_identifier: str
    total_records: int | None = None
    highest_contiguous_completed_index: int = 0
    completed_ranges: tuple[SourceRange, ...] = ()
    failed_batch_count: int = 0
    successful_batch_count: int = 0
    indexed_document_count: int = 0
    rejected_document_count: int = 0
    property_types: Mapping[str, PropertyKind] = field(default_factory=dict)
    completed: bool = False
    last_updated: datetime | None = None

    @property
    def resume_index(self) -> int:
        """Source row the next run starts reading at."""
        return self.highest_contiguous_completed_index

    def progress_percentage(self) -> float:
        if not self.total_records:
            return 0.0
        return min(100.0, self.highest_contiguous_completed_index / self.total_records * 100)


def compact_ranges(
    highest_contiguous: int,
    ranges: Sequence[SourceRange],
) -> tuple[int, tuple[SourceRange, ...]]:
    """Merge ranges and advance the contiguous marker over closed gaps.

    Args:
        highest_contiguous: Current contiguous completion marker.
        ranges: Completed half-open ranges in any order.

    Returns:
        Updated marker and the sorted, merged ranges still above it.
    """
    merged: list[list[int]] = []
    for start, end in sorted(ranges):
        if end <= start:
            continue
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    remaining: list[SourceRange] = []
    for start, end in merged:
        if start <= highest_contiguous:
            highest_contiguous = max(highest_contiguous, end)
        elif end > highest_contiguous:
            remaining.append((start, end))
    return highest_contiguous, tuple(remaining)


def record_batch_completed(
    checkpoint: MigrationCheckpoint,
    start_index: int,
    end_index: int,
    indexed_count: int,
    rejected_count: int,
) -> MigrationCheckpoint:
    """Return a checkpoint with one settled batch range added."""
    highest, ranges = compact_ranges(
        checkpoint.highest_contiguous_completed_index,
        (*checkpoint.completed_ranges, (start_index, end_index)),
    )
    updated = replace(
        checkpoint,
        highest_contiguous_completed_index=highest,
        completed_ranges=ranges,
        successful_batch_count=checkpoint.successful_batch_count + 1,
        indexed_document_count=checkpoint.indexed_document_count + indexed_count,
        rejected_document_count=checkpoint.rejected_document_count + rejected_count,
    )
    return _with_completion(updated)


def record_batch_failed(
    checkpoint: MigrationCheckpoint,
    indexed_count: int = 0,
    rejected_count: int = 0,
) -> MigrationCheckpoint:
    """Return a checkpoint counting one failed batch; its range stays open."""
    return replace(
        checkpoint,
        failed_batch_count=checkpoint.failed_batch_count + 1,
        indexed_document_count=checkpoint.indexed_document_count + indexed_count,
        rejected_document_count=checkpoint.rejected_document_count + rejected_count,
    )


def record_total_records(
    checkpoint: MigrationCheckpoint,
    total_records: int,
) -> MigrationCheckpoint:
    """Return a checkpoint with the source row count filled in."""
    return _with_completion(replace(checkpoint, total_records=total_records))


def record_property_types(
    checkpoint: MigrationCheckpoint,
    property_types: Mapping[str, PropertyKind],
) -> MigrationCheckpoint:
    return replace(checkpoint, property_types=dict(property_types))


def checkpoint_path_for(data_root: Path, source_uri: str) -> Path:
    """Build the checkpoint file path for a source location.

    Args:
        data_root: Sluice data root directory.
        source_uri: Source location.

    Returns:
        Path unique to the source, readable by humans.
    """
    hasher = hashlib.new(HASH_ALGORITHM)
    hasher.update(source_uri.encode("utf-8"))
    digest = hasher.hexdigest()[:CHECKPOINT_SOURCE_HASH_LENGTH]
    base_name = _SAFE_NAME_PATTERN.sub("_", Path(source_uri.rstrip("/")).name) or "source"
    return data_root / CHECKPOINTS_DIR_NAME / f"{base_name}-{digest}{CHECKPOINT_FILE_SUFFIX}"


class CheckpointStore:
    """Filesystem-backed checkpoint store with atomic overwrite."""

    def __init__(self, data_root: Path, source_uri: str) -> None:
        self._source_uri = source_uri
        self._path = checkpoint_path_for(data_root, source_uri)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> MigrationCheckpoint | None:
        """Read the checkpoint for this source if present.

        Returns:
            Stored checkpoint, or None when absent or written for another source.

        Raises:
            SluiceCheckpointError: If the file exists but cannot be parsed.
        """
        if not self._path.exists():
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            checkpoint = _checkpoint_from_payload(payload)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
            raise SluiceCheckpointError(
                f"Failed to read checkpoint at {self._path}: {error}. "
                "Delete the checkpoint file or rerun with --fresh."
            ) from error
        if checkpoint.source_identifier != self._source_uri:
            _LOGGER.warning(
                "checkpoint_source_mismatch",
                path=str(self._path),
                expected=self._source_uri,
                found=checkpoint.source_identifier,
            )
            return None
        return checkpoint

    def save(self, checkpoint: MigrationCheckpoint) -> MigrationCheckpoint:
        """Atomically persist a checkpoint.

        Args:
            checkpoint: Progress to persist.

        Returns:
            The persisted checkpoint with ``last_updated`` refreshed.

        Raises:
            SluiceCheckpointError: If the file cannot be written.
        """
        stamped = replace(checkpoint, last_updated=datetime.now(timezone.utc))
        serialized = json.dumps(_checkpoint_to_payload(stamped), indent=2, sort_keys=True) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write_text(self._path, serialized)
        except OSError as error:
            raise SluiceCheckpointError(
                f"Failed to write checkpoint at {self._path}: {error}. "
                "Check free disk space and permissions on the data root."
            ) from error
        _LOGGER.info(
            "checkpoint_saved",
            path=str(self._path),
            highest_contiguous_completed_index=stamped.highest_contiguous_completed_index,
            pending_ranges=len(stamped.completed_ranges),
            completed=stamped.completed,
        )
        return stamped

    def clear(self) -> None:
        """Remove the checkpoint file for this source."""
        if self._path.exists():
            self._path.unlink()
            _LOGGER.info("checkpoint_cleared", path=str(self._path))


def _with_completion(checkpoint: MigrationCheckpoint) -> MigrationCheckpoint:
    total = checkpoint.total_records
    completed = total is not None and checkpoint.highest_contiguous_completed_index >= total
    return replace(checkpoint, completed=completed)


def _atomic_write_text(path: Path, text: str) -> None:
    """Write text via a temp file in the same directory and rename it into place."""
    file_descriptor, temp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(file_descriptor, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def _checkpoint_to_payload(checkpoint: MigrationCheckpoint) -> dict[str, Any]:
    return {
        "source_identifier": checkpoint.source_identifier,
        "total_records": checkpoint.total_records,
        "highest_contiguous_completed_index": checkpoint.highest_contiguous_completed_index,
        "completed_ranges": [list(source_range) for source_range in checkpoint.completed_ranges],
        "failed_batch_count": checkpoint.failed_batch_count,
        "successful_batch_count": checkpoint.successful_batch_count,
        "indexed_document_count": checkpoint.indexed_document_count,
        "rejected_document_count": checkpoint.rejected_document_count,
        "property_types": dict(checkpoint.property_types),
        "completed": checkpoint.completed,
        "last_updated": checkpoint.last_updated.isoformat() if checkpoint.last_updated else None,
    }


def _checkpoint_from_payload(payload: dict[str, Any]) -> MigrationCheckpoint:
    """Parse a checkpoint payload.

    Raises:
        KeyError: If a required field is missing.
        TypeError: If a field has the wrong shape.
        ValueError: If a field has an invalid value.
    """
    total_records = payload.get("total_records")
    highest, ranges = compact_ranges(
        int(payload["highest_contiguous_completed_index"]),
        [(int(start), int(end)) for start, end in payload.get("completed_ranges", [])],
    )
    property_types = {
        str(key): kind
        for key, kind in dict(payload.get("property_types", {})).items()
        if kind in _PROPERTY_KINDS
    }
    last_updated = payload.get("last_updated")
    checkpoint = MigrationCheckpoint(
        source_identifier=str(payload["source_identifier"]),
        total_records=int(total_records) if total_records is not None else None,
        highest_contiguous_completed_index=highest,
        completed_ranges=ranges,
        failed_batch_count=int(payload.get("failed_batch_count", 0)),
        successful_batch_count=int(payload.get("successful_batch_count", 0)),
        indexed_document_count=int(payload.get("indexed_document_count", 0)),
        rejected_document_count=int(payload.get("rejected_document_count", 0)),
        property_types=property_types,
        last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
    )
    return _with_completion(checkpoint)
