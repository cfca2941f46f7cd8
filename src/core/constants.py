"""Core constants used across Sluice modules.

This module centralizes defaults and file layout names.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".sluice")
CHECKPOINTS_DIR_NAME = "checkpoints"
CHECKPOINT_FILE_SUFFIX = ".json"
CHECKPOINT_SOURCE_HASH_LENGTH = 12
HASH_ALGORITHM = "sha256"
DEFAULT_SINK_URL = "http://localhost:9200"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_BATCH_SIZE = 1000
DEFAULT_WORKER_COUNT = 4
DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_CHECKPOINT_INTERVAL = 10
DEFAULT_PROPERTIES_CAP = 60
DEFAULT_RETRY_BASE_DELAY_SECONDS = 0.5
DEFAULT_RETRY_MAX_DELAY_SECONDS = 30.0
DEFAULT_DRAIN_GRACE_SECONDS = 30.0
DEFAULT_ID_FIELD = "token_id"
DEFAULT_PAYLOAD_FIELD = "raw_metadata"
WRITER_QUEUE_SLOTS_PER_WORKER = 2
RESULT_POLL_INTERVAL_SECONDS = 0.2
WORKER_STOP_GRACE_SECONDS = 1.0
PROGRESS_LOG_INTERVAL_BATCHES = 10
RETRYABLE_SINK_STATUSES = (429, 500, 502, 503, 504)
INTERRUPTED_EXIT_CODE = 130
