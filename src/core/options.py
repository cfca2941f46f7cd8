"""Migration option validation.

This module checks run options before any source or sink work starts,
so invalid settings fail fast with actionable messages.
"""

from __future__ import annotations

from core.errors import SluiceConfigError
from core.types import MigrationOptions


def validate_migration_options(options: MigrationOptions) -> MigrationOptions:
    """Validate migration options.

    Args:
        options: Options to validate.

    Returns:
        The same options when valid.

    Raises:
        SluiceConfigError: If any option is out of range.
    """
    if not options.source_uri.strip():
        raise SluiceConfigError("Migration source is empty. Provide a CSV path or s3:// URI.")
    if not options.index_name.strip():
        raise SluiceConfigError("Destination index name is empty. Pass --index NAME.")
    _require_positive("batch_size", options.batch_size)
    _require_positive("worker_count", options.worker_count)
    _require_positive("max_retry_attempts", options.max_retry_attempts)
    _require_positive("checkpoint_interval", options.checkpoint_interval)
    _require_positive("properties_cap", options.properties_cap)
    if options.id_field == options.payload_field:
        raise SluiceConfigError(
            f"id_field and payload_field are both '{options.id_field}'. "
            "Use distinct columns for the document id and the payload."
        )
    for name, value in (
        ("retry_base_delay_seconds", options.retry_base_delay_seconds),
        ("retry_max_delay_seconds", options.retry_max_delay_seconds),
        ("drain_grace_seconds", options.drain_grace_seconds),
    ):
        if value < 0:
            raise SluiceConfigError(f"Option {name} must be >= 0, got {value}.")
    return options


def _require_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise SluiceConfigError(f"Option {name} must be a positive integer, got {value!r}.")
